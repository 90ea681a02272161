# app/services/text_extraction_service.py
"""
Text Extraction Service
Turns an uploaded credit report into plain text for the analysis model.

Strategies by media type:
    text/*   - UTF-8 decode
    PDF      - pypdf page by page, PyMuPDF as fallback
    images   - passed through as a base64 data URL; the vision model reads them

Every attempt leaves a trail in pdf_processing_logs keyed by processing_id.
A failed log write never stops an extraction.
"""

import asyncio
import base64
import io
import mimetypes
import time
import uuid
from dataclasses import dataclass
from typing import Any, Literal

import fitz
from pypdf import PdfReader

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.repositories.processing_log_repository import ProcessingLogRepository

logger = get_logger(__name__)

ExtractionMethod = Literal["plain_text", "pypdf", "pymupdf", "image_passthrough"]

PDF_MIME = "application/pdf"
TEXT_MIME_TYPES = {"text/plain", "text/csv", "text/markdown"}
IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif"}
SUPPORTED_MIME_TYPES = TEXT_MIME_TYPES | IMAGE_MIME_TYPES | {PDF_MIME}

_GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}
_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "application/x-pdf": PDF_MIME,
}


class ExtractionError(Exception):
    """Raised by a strategy that could not produce any text."""

    def __init__(self, message: str, error_code: str = "extraction_failed"):
        super().__init__(message)
        self.error_code = error_code


@dataclass(slots=True)
class ExtractionResult:
    success: bool
    processing_id: str
    mime_type: str
    text: str = ""
    page_count: int | None = None
    method: ExtractionMethod | None = None
    fallback_used: bool = False
    error: str | None = None
    error_code: str | None = None
    image_data_url: str | None = None
    duration_ms: int = 0

    @property
    def is_image(self) -> bool:
        return self.method == "image_passthrough"


def detect_mime_type(data: bytes, declared: str | None, file_name: str | None = None) -> str:
    """
    Resolve the media type of an upload.

    A specific declared type wins; a missing or generic one is replaced by
    magic-byte sniffing, then by the file extension.
    """
    mime = (declared or "").split(";")[0].strip().lower()
    mime = _MIME_ALIASES.get(mime, mime)
    if mime not in _GENERIC_MIME_TYPES:
        return mime

    sniffed = _sniff_magic(data)
    if sniffed:
        return sniffed

    if file_name:
        guessed, _ = mimetypes.guess_type(file_name)
        if guessed:
            return _MIME_ALIASES.get(guessed, guessed)

    return mime or "application/octet-stream"


def _sniff_magic(data: bytes) -> str | None:
    head = data[:16]
    if head.startswith(b"%PDF"):
        return PDF_MIME
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


def _join_pages(page_texts: list[str]) -> str:
    return "\n\n".join(
        f"--- Page {number} ---\n{text.strip()}" for number, text in enumerate(page_texts, start=1)
    )


def _extract_with_pypdf(data: bytes, max_pages: int) -> tuple[str, int]:
    reader = PdfReader(io.BytesIO(data))
    page_count = len(reader.pages)

    page_texts = [
        reader.pages[index].extract_text() or "" for index in range(min(page_count, max_pages))
    ]
    if not any(text.strip() for text in page_texts):
        raise ExtractionError("pypdf found no extractable text")

    return _join_pages(page_texts), page_count


def _extract_with_pymupdf(data: bytes, max_pages: int) -> tuple[str, int]:
    with fitz.open(stream=data, filetype="pdf") as doc:
        page_count = doc.page_count
        page_texts = [doc[index].get_text("text") for index in range(min(page_count, max_pages))]

    if not any(text.strip() for text in page_texts):
        raise ExtractionError("PyMuPDF found no extractable text")

    return _join_pages(page_texts), page_count


class TextExtractor:
    """Extracts text from uploaded documents and records each attempt."""

    def __init__(self, max_pages: int | None = None, log_repository=ProcessingLogRepository):
        self.max_pages = max_pages or settings.PDF_MAX_PAGES
        self.log_repository = log_repository

    async def extract(
        self,
        document_bytes: bytes,
        mime_type: str | None,
        *,
        file_name: str | None = None,
        user_id: str | None = None,
    ) -> ExtractionResult:
        processing_id = str(uuid.uuid4())
        resolved_mime = detect_mime_type(document_bytes, mime_type, file_name)
        start = time.monotonic()

        log_context = {
            "user_id": user_id,
            "file_name": file_name,
            "file_size": len(document_bytes),
        }

        await self._log_event(
            processing_id,
            "processing_started",
            details={"mime_type": resolved_mime, "declared_mime_type": mime_type},
            **log_context,
        )

        try:
            if resolved_mime in TEXT_MIME_TYPES:
                result = self._extract_plain_text(document_bytes, processing_id, resolved_mime)
            elif resolved_mime == PDF_MIME:
                result = await self._extract_pdf(document_bytes, processing_id, log_context)
            elif resolved_mime in IMAGE_MIME_TYPES:
                result = self._image_passthrough(document_bytes, processing_id, resolved_mime)
            else:
                raise ExtractionError(
                    f"Unsupported file type: {resolved_mime}", error_code="unsupported_media_type"
                )

        except ExtractionError as e:
            result = ExtractionResult(
                success=False,
                processing_id=processing_id,
                mime_type=resolved_mime,
                error=str(e),
                error_code=e.error_code,
            )

        result.duration_ms = int((time.monotonic() - start) * 1000)

        if result.success:
            await self._log_event(
                processing_id,
                "processing_complete",
                details={
                    "method": result.method,
                    "page_count": result.page_count,
                    "text_length": len(result.text),
                    "fallback_used": result.fallback_used,
                    "duration_ms": result.duration_ms,
                },
                **log_context,
            )
            logger.info(
                "Document extraction completed",
                processing_id=processing_id,
                method=result.method,
                page_count=result.page_count,
                fallback_used=result.fallback_used,
                duration_ms=result.duration_ms,
            )
        else:
            await self._log_event(
                processing_id,
                "processing_error",
                details={"error_code": result.error_code, "duration_ms": result.duration_ms},
                error_message=result.error,
                **log_context,
            )
            logger.warning(
                "Document extraction failed",
                processing_id=processing_id,
                mime_type=resolved_mime,
                error_code=result.error_code,
                error=result.error,
            )

        return result

    def _extract_plain_text(self, data: bytes, processing_id: str, mime: str) -> ExtractionResult:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(
                f"Text file is not valid UTF-8: {e}", error_code="invalid_encoding"
            ) from e

        return ExtractionResult(
            success=True,
            processing_id=processing_id,
            mime_type=mime,
            text=text,
            method="plain_text",
        )

    def _image_passthrough(self, data: bytes, processing_id: str, mime: str) -> ExtractionResult:
        encoded = base64.b64encode(data).decode("ascii")
        return ExtractionResult(
            success=True,
            processing_id=processing_id,
            mime_type=mime,
            method="image_passthrough",
            image_data_url=f"data:{mime};base64,{encoded}",
        )

    async def _extract_pdf(
        self, data: bytes, processing_id: str, log_context: dict[str, Any]
    ) -> ExtractionResult:
        try:
            text, page_count = await asyncio.to_thread(_extract_with_pypdf, data, self.max_pages)
            return ExtractionResult(
                success=True,
                processing_id=processing_id,
                mime_type=PDF_MIME,
                text=text,
                page_count=page_count,
                method="pypdf",
            )
        except Exception as primary_error:
            logger.warning(
                "Primary PDF extraction failed, trying fallback",
                processing_id=processing_id,
                error=str(primary_error),
                error_type=type(primary_error).__name__,
            )
            await self._log_event(
                processing_id,
                "primary_extraction_failed",
                details={"strategy": "pypdf", "error_type": type(primary_error).__name__},
                error_message=str(primary_error),
                **log_context,
            )

        try:
            text, page_count = await asyncio.to_thread(_extract_with_pymupdf, data, self.max_pages)
        except Exception as fallback_error:
            raise ExtractionError(
                f"Could not extract text from PDF: {fallback_error}"
            ) from fallback_error

        await self._log_event(
            processing_id,
            "fallback_extraction_success",
            details={"strategy": "pymupdf", "page_count": page_count},
            **log_context,
        )
        return ExtractionResult(
            success=True,
            processing_id=processing_id,
            mime_type=PDF_MIME,
            text=text,
            page_count=page_count,
            method="pymupdf",
            fallback_used=True,
        )

    async def _log_event(
        self,
        processing_id: str,
        event: str,
        *,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
        user_id: str | None = None,
        file_name: str | None = None,
        file_size: int | None = None,
    ) -> None:
        try:
            await self.log_repository.record_pdf_event(
                processing_id,
                event,
                user_id=user_id,
                file_name=file_name,
                file_size=file_size,
                details=details,
                error_message=error_message,
            )
        except Exception as e:
            logger.warning(
                "Failed to write processing log",
                processing_id=processing_id,
                log_event=event,
                error=str(e),
            )

    async def get_processing_logs(self, processing_id: str) -> list[dict[str, Any]]:
        return await self.log_repository.get_by_processing_id(processing_id)

    async def get_user_processing_logs(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return await self.log_repository.get_by_user(user_id, limit=limit)


text_extractor = TextExtractor()
