# app/routes/disputes.py
"""
Dispute letter and note endpoints.
"""

from fastapi import APIRouter, Depends, Query, status

from app.auth.verify import auth_dependency, get_user_id, pro_dependency
from app.dependencies import get_letter_service
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.models.api.analysis_request import CreateNoteRequest, GenerateLetterRequest
from app.models.api.analysis_response import (
    DisputeLetterResponse,
    DisputeLettersResponse,
    GenerateLetterResponse,
    NoteResponse,
    NotesResponse,
    SuccessResponse,
)
from app.repositories.analysis_repository import AnalysisRepository
from app.repositories.dispute_repository import DisputeLetterRepository, NoteRepository
from app.services.analysis_pipeline import AnalysisNotFoundError
from app.services.dispute_letter_service import (
    DisputeLetterError,
    DisputeLetterService,
    SenderInfo,
)

logger = get_logger(__name__)

router = APIRouter(tags=["disputes"])


@router.post("/generate-letter", response_model=GenerateLetterResponse)
async def generate_letter(
    body: GenerateLetterRequest,
    claims: dict = Depends(pro_dependency),
    letter_service: DisputeLetterService = Depends(get_letter_service),
):
    """Generate an FCRA dispute letter for one dispute item (Pro)."""
    user_id = get_user_id(claims)
    sender = SenderInfo(**body.user_info.model_dump()) if body.user_info else None

    try:
        letter = await letter_service.generate_letter(
            user_id, body.analysis_id, body.dispute, sender
        )
    except AnalysisNotFoundError as e:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found") from e
    except DisputeLetterError as e:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            str(e),
            "letter_generation_failed",
            extra={"errorKind": e.kind.value if e.kind else None},
        ) from e

    return GenerateLetterResponse(
        letter=letter.content, letter_id=letter.letter_id, stored=letter.stored
    )


@router.get("/dispute-letters", response_model=DisputeLettersResponse)
async def list_dispute_letters(
    analysis_id: str | None = Query(default=None, alias="analysisId"),
    claims: dict = Depends(auth_dependency),
):
    user_id = get_user_id(claims)

    letters = await DisputeLetterRepository.list_for_user(user_id, analysis_id=analysis_id)
    return DisputeLettersResponse(
        letters=[DisputeLetterResponse.from_letter(letter) for letter in letters]
    )


@router.get("/notes", response_model=NotesResponse)
async def list_notes(
    analysis_id: str = Query(..., alias="analysisId"),
    claims: dict = Depends(auth_dependency),
):
    user_id = get_user_id(claims)

    notes = await NoteRepository.list_for_analysis(user_id, analysis_id)
    return NotesResponse(notes=[NoteResponse.from_note(n) for n in notes])


@router.post("/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(body: CreateNoteRequest, claims: dict = Depends(auth_dependency)):
    user_id = get_user_id(claims)

    analysis = await AnalysisRepository.get_for_user(body.analysis_id, user_id)
    if analysis is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Analysis not found", "not_found")

    note = await NoteRepository.create(user_id, body.analysis_id, body.content)
    logger.info("Note created", user_id=user_id, analysis_id=body.analysis_id, note_id=note.id)
    return NoteResponse.from_note(note)


@router.delete("/notes/{note_id}", response_model=SuccessResponse)
async def delete_note(note_id: str, claims: dict = Depends(auth_dependency)):
    user_id = get_user_id(claims)

    if not await NoteRepository.delete(note_id, user_id):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Note not found", "not_found")

    return SuccessResponse(message="Note deleted")
