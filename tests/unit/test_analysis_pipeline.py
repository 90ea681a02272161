import asyncio
import json
from unittest.mock import AsyncMock

import openai
import pytest

from app.services.analysis_pipeline import (
    AnalysisNotFoundError,
    AnalysisPipeline,
    PipelineInputError,
    UploadedDocument,
)
from app.services.openai_service import AnalysisOptions, ErrorKind
from app.services.text_extraction_service import TextExtractor
from tests.fakes import (
    USER_ID,
    VALID_ANALYSIS,
    FakeNotifier,
    make_completion,
    openai_status_error,
)


@pytest.fixture
def extractor(call_log):
    return TextExtractor(max_pages=20, log_repository=call_log)


@pytest.fixture
def pipeline(llm_client, extractor, analyses, scores, notifier):
    return AnalysisPipeline(
        llm_client, extractor=extractor, analyses=analyses, scores=scores, notifier=notifier
    )


@pytest.fixture
def valid_model_output(fake_openai):
    fake_openai.chat.completions.create.return_value = make_completion(json.dumps(VALID_ANALYSIS))


@pytest.mark.asyncio
async def test_text_submission_completes_and_persists(
    pipeline, analyses, notifier, scores, valid_model_output
):
    outcome = await pipeline.submit_text(USER_ID, "EXPERIAN REPORT\nScore 712")

    assert outcome.success
    assert outcome.persisted
    assert outcome.result.overview.score == 712

    stored = analyses.rows[outcome.analysis_id]
    assert stored.status == "completed"
    assert stored.ocr_text == "EXPERIAN REPORT\nScore 712"
    assert stored.result["overview"]["score"] == 712

    assert notifier.titles == ["Analysis started", "Analysis complete"]
    assert scores.recorded == [(USER_ID, outcome.analysis_id, 712)]
    assert outcome.metrics["extraction_method"] == "plain_text"
    assert outcome.metrics["normalization"] == "parsed"


@pytest.mark.asyncio
async def test_blank_text_is_rejected_before_anything_is_stored(pipeline, analyses):
    with pytest.raises(PipelineInputError):
        await pipeline.submit_text(USER_ID, "   ")

    assert analyses.rows == {}


@pytest.mark.asyncio
async def test_unreadable_document_marks_analysis_as_error(
    pipeline, analyses, notifier, scores, fake_openai
):
    outcome = await pipeline.submit_document(
        USER_ID, b"%PDF-1.4\nbroken", "application/pdf", "report.pdf"
    )

    assert not outcome.success
    assert outcome.error_kind is ErrorKind.EXTRACTION
    assert analyses.rows[outcome.analysis_id].status == "error"
    assert notifier.titles == ["Analysis started", "Analysis failed"]
    assert scores.recorded == []
    fake_openai.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_model_failure_is_reported_with_its_kind(pipeline, analyses, fake_openai, scores):
    fake_openai.chat.completions.create.side_effect = openai_status_error(
        openai.AuthenticationError, 401
    )

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert not outcome.success
    assert outcome.error_kind is ErrorKind.AUTHENTICATION
    assert outcome.metrics["llm"]["attempts"] == 1

    stored = analyses.rows[outcome.analysis_id]
    assert stored.status == "error"
    assert stored.error_message == outcome.error
    assert scores.recorded == []


@pytest.mark.asyncio
async def test_text_document_is_extracted_and_stored(pipeline, analyses, valid_model_output):
    outcome = await pipeline.submit_document(
        USER_ID, b"TransUnion report body", "text/plain", "report.txt"
    )

    assert outcome.success
    assert analyses.rows[outcome.analysis_id].ocr_text == "TransUnion report body"
    assert analyses.rows[outcome.analysis_id].file_name == "report.txt"
    assert outcome.metrics["extraction_method"] == "plain_text"


@pytest.mark.asyncio
async def test_image_document_is_sent_to_the_model_directly(
    pipeline, analyses, fake_openai, valid_model_output
):
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16

    outcome = await pipeline.submit_document(USER_ID, png, "image/png", "scan.png")

    assert outcome.success
    assert analyses.rows[outcome.analysis_id].ocr_text is None
    content = fake_openai.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_empty_upload_is_rejected(pipeline, analyses, notifier):
    with pytest.raises(PipelineInputError):
        await pipeline.submit_document(USER_ID, b"", "application/pdf")

    assert analyses.rows == {}
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_retry_reuses_stored_text(pipeline, analyses, fake_openai, valid_model_output):
    previous = analyses.add(status="error", ocr_text="stored report text", error_message="boom")

    outcome = await pipeline.retry(USER_ID, previous.id)

    assert outcome.success
    assert outcome.analysis_id == previous.id
    assert outcome.metrics["extraction_method"] == "stored_text"
    assert ("mark_processing", previous.id) in analyses.calls
    assert ("save_ocr_text", previous.id) not in analyses.calls

    stored = analyses.rows[previous.id]
    assert stored.status == "completed"
    assert stored.error_message is None

    user_message = fake_openai.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "stored report text" in user_message


@pytest.mark.asyncio
async def test_retry_with_fresh_document_replaces_stored_text(
    pipeline, analyses, valid_model_output
):
    previous = analyses.add(status="completed", ocr_text="old text", result=VALID_ANALYSIS)

    outcome = await pipeline.retry(
        USER_ID,
        previous.id,
        UploadedDocument(data=b"new report text", mime_type="text/plain", file_name="new.txt"),
    )

    assert outcome.success
    assert analyses.rows[previous.id].ocr_text == "new report text"
    assert analyses.rows[previous.id].file_name == "new.txt"


@pytest.mark.asyncio
async def test_retry_without_any_text_is_an_input_error(pipeline, analyses):
    previous = analyses.add(status="error", ocr_text=None)

    with pytest.raises(PipelineInputError):
        await pipeline.retry(USER_ID, previous.id)

    assert analyses.rows[previous.id].status == "error"


@pytest.mark.asyncio
async def test_retry_of_another_users_analysis_is_not_found(pipeline, analyses):
    foreign = analyses.add(user_id="someone-else", ocr_text="text")

    with pytest.raises(AnalysisNotFoundError):
        await pipeline.retry(USER_ID, foreign.id)


@pytest.mark.asyncio
async def test_failed_final_write_still_returns_result(pipeline, analyses, valid_model_output):
    analyses.fail_mark_completed = True

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert outcome.success
    assert outcome.persisted is False
    assert outcome.result.overview.score == 712


@pytest.mark.asyncio
async def test_notification_failures_are_swallowed(
    llm_client, extractor, analyses, scores, valid_model_output
):
    pipeline = AnalysisPipeline(
        llm_client,
        extractor=extractor,
        analyses=analyses,
        scores=scores,
        notifier=FakeNotifier(fail=True),
    )

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert outcome.success


@pytest.mark.asyncio
async def test_invalid_score_is_not_recorded(pipeline, fake_openai, scores):
    fake_openai.chat.completions.create.return_value = make_completion(
        json.dumps({"overview": {"score": 950, "summary": "?"}})
    )

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert outcome.success
    assert outcome.result.overview.score is None
    assert scores.recorded == []


@pytest.mark.asyncio
async def test_unparseable_model_output_still_completes_with_defaults(
    pipeline, analyses, fake_openai
):
    fake_openai.chat.completions.create.return_value = make_completion("I cannot help with that.")

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert outcome.success
    assert outcome.metrics["normalization"] == "default"
    assert analyses.rows[outcome.analysis_id].status == "completed"


@pytest.mark.asyncio
async def test_model_timeout_keeps_report_text_for_retry(
    pipeline, analyses, notifier, fake_openai
):
    async def hang(**kwargs):
        await asyncio.sleep(10)

    fake_openai.chat.completions.create = hang

    outcome = await pipeline.submit_text(
        USER_ID, "EQUIFAX REPORT\nScore 640", options=AnalysisOptions(timeout=0.05)
    )

    assert not outcome.success
    assert outcome.error_kind is ErrorKind.TIMEOUT

    stored = analyses.rows[outcome.analysis_id]
    assert stored.status == "error"
    assert stored.error_message == outcome.error
    assert stored.ocr_text == "EQUIFAX REPORT\nScore 640"
    assert notifier.titles == ["Analysis started", "Analysis failed"]


@pytest.mark.asyncio
async def test_timed_out_analysis_completes_on_retry(pipeline, analyses, fake_openai):
    async def hang(**kwargs):
        await asyncio.sleep(10)

    fake_openai.chat.completions.create = hang
    failed = await pipeline.submit_text(
        USER_ID, "EQUIFAX REPORT\nScore 640", options=AnalysisOptions(timeout=0.05)
    )

    fake_openai.chat.completions.create = AsyncMock(
        return_value=make_completion(json.dumps(VALID_ANALYSIS))
    )
    outcome = await pipeline.retry(USER_ID, failed.analysis_id)

    assert outcome.success
    assert outcome.metrics["extraction_method"] == "stored_text"
    assert analyses.rows[failed.analysis_id].status == "completed"


@pytest.mark.asyncio
async def test_deeply_nested_model_output_still_completes(
    pipeline, analyses, notifier, fake_openai
):
    fake_openai.chat.completions.create.return_value = make_completion(
        "[" * 100_000 + "]" * 100_000
    )

    outcome = await pipeline.submit_text(USER_ID, "report text")

    assert outcome.success
    assert outcome.metrics["normalization"] == "default"
    assert analyses.rows[outcome.analysis_id].status == "completed"
    assert notifier.titles == ["Analysis started", "Analysis complete"]
