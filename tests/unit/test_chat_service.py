import openai
import pytest

from app.services.analysis_pipeline import AnalysisNotFoundError
from app.services.chat_service import ChatService, ChatServiceError, build_system_prompt
from app.services.openai_service import ErrorKind
from app.services.response_cache import ResponseCache
from tests.fakes import USER_ID, VALID_ANALYSIS, make_completion, openai_status_error


@pytest.fixture
def chat_service(llm_client, analyses, chat_repository):
    return ChatService(
        llm_client, ResponseCache(ttl_seconds=300), analyses=analyses, messages=chat_repository
    )


@pytest.fixture
def analysis(analyses):
    return analyses.add(status="completed", result=VALID_ANALYSIS)


@pytest.mark.asyncio
async def test_reply_is_stored_after_user_message(chat_service, analysis, fake_openai):
    fake_openai.chat.completions.create.return_value = make_completion("Pay down your cards.")

    reply = await chat_service.send_message(USER_ID, analysis.id, "How do I raise my score?")

    assert reply.response == "Pay down your cards."
    assert not reply.cached
    assert [(m.role, m.content) for m in reply.messages] == [
        ("user", "How do I raise my score?"),
        ("assistant", "Pay down your cards."),
    ]

    messages = fake_openai.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert "Credit Score: 712" in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "How do I raise my score?"}


@pytest.mark.asyncio
async def test_repeated_question_is_served_from_cache(chat_service, analysis, fake_openai):
    fake_openai.chat.completions.create.return_value = make_completion("Utilization is high.")

    await chat_service.send_message(USER_ID, analysis.id, "What hurts my score?")
    reply = await chat_service.send_message(USER_ID, analysis.id, "What hurts my score?")

    assert reply.cached
    assert reply.response == "Utilization is high."
    assert fake_openai.chat.completions.create.call_count == 1
    assert len(reply.messages) == 4


@pytest.mark.asyncio
async def test_model_failure_stores_system_message_and_raises(
    chat_service, analysis, fake_openai, chat_repository
):
    fake_openai.chat.completions.create.side_effect = openai_status_error(
        openai.AuthenticationError, 401
    )

    with pytest.raises(ChatServiceError) as exc_info:
        await chat_service.send_message(USER_ID, analysis.id, "hello")

    assert exc_info.value.kind is ErrorKind.AUTHENTICATION
    assert [m.role for m in chat_repository.messages] == ["user", "system"]
    assert chat_repository.messages[-1].content == (
        "Error: API authentication error. Please contact support."
    )


@pytest.mark.asyncio
async def test_system_messages_are_not_sent_back_to_the_model(
    chat_service, analysis, fake_openai, chat_repository
):
    await chat_repository.add_message(analysis.id, USER_ID, "system", "Error: earlier failure")
    fake_openai.chat.completions.create.return_value = make_completion("ok")

    await chat_service.send_message(USER_ID, analysis.id, "try again")

    messages = fake_openai.chat.completions.create.call_args.kwargs["messages"]
    assert all("earlier failure" not in m["content"] for m in messages)


@pytest.mark.asyncio
async def test_chat_about_unknown_analysis_is_not_found(chat_service, chat_repository):
    with pytest.raises(AnalysisNotFoundError):
        await chat_service.send_message(USER_ID, "missing", "hello")

    assert chat_repository.messages == []


@pytest.mark.asyncio
async def test_history_for_latest_analysis(chat_service, analyses, chat_repository):
    from datetime import UTC, datetime, timedelta

    now = datetime.now(UTC)
    analyses.add(id="older", created_at=now - timedelta(days=1))
    analyses.add(id="newer", created_at=now)
    await chat_repository.add_message("newer", USER_ID, "user", "hi")
    await chat_repository.add_message("older", USER_ID, "user", "old question")

    analysis_id, history = await chat_service.get_history(USER_ID, "latest")

    assert analysis_id == "newer"
    assert [m.content for m in history] == ["hi"]


@pytest.mark.asyncio
async def test_history_without_any_analysis_is_not_found(chat_service):
    with pytest.raises(AnalysisNotFoundError):
        await chat_service.get_history(USER_ID, "latest")


def test_system_prompt_handles_missing_result():
    prompt = build_system_prompt(None)

    assert "Credit Score: Unknown" in prompt
