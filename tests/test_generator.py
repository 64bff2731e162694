"""Generation gateway retry and fallback tests."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from conftest import StatusError, chat_model
from core.exceptions import GenerationError
from core.generator import GenerationGateway, message_text, status_code_of

MESSAGES = [SystemMessage(content="инструкция"), HumanMessage(content="вопрос")]


def make_gateway(primary, secondary=None, sleep=None) -> GenerationGateway:
    return GenerationGateway(
        primary=primary,
        secondary=secondary,
        max_retries=3,
        backoff_base=1.0,
        transient_status_codes=[503],
        sleep=sleep or AsyncMock(),
    )


@pytest.mark.asyncio
async def test_success_on_first_attempt() -> None:
    primary = chat_model("ответ")
    secondary = chat_model("запасной")

    assert await make_gateway(primary, secondary).generate(MESSAGES) == "ответ"
    secondary.ainvoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_two_transient_failures_then_success() -> None:
    primary = chat_model(StatusError(503), StatusError(503), "ответ")
    secondary = chat_model("запасной")
    sleep = AsyncMock()

    result = await make_gateway(primary, secondary, sleep).generate(MESSAGES)

    assert result == "ответ"
    assert primary.ainvoke.await_count == 3
    secondary.ainvoke.assert_not_awaited()
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_invoke_secondary_once() -> None:
    primary = chat_model(StatusError(503), StatusError(503), StatusError(503))
    secondary = chat_model("запасной")

    result = await make_gateway(primary, secondary).generate(MESSAGES)

    assert result == "запасной"
    assert primary.ainvoke.await_count == 3
    assert secondary.ainvoke.await_count == 1


@pytest.mark.asyncio
async def test_non_transient_error_fails_immediately() -> None:
    primary = chat_model(StatusError(400, "bad request"))
    secondary = chat_model("запасной")
    sleep = AsyncMock()

    with pytest.raises(GenerationError) as exc_info:
        await make_gateway(primary, secondary, sleep).generate(MESSAGES)

    assert primary.ainvoke.await_count == 1
    secondary.ainvoke.assert_not_awaited()
    sleep.assert_not_awaited()
    assert exc_info.value.last_error.status_code == 400


@pytest.mark.asyncio
async def test_secondary_failure_carries_last_error() -> None:
    last = RuntimeError("secondary down")
    primary = chat_model(StatusError(503), StatusError(503), StatusError(503))
    secondary = chat_model(last)

    with pytest.raises(GenerationError) as exc_info:
        await make_gateway(primary, secondary).generate(MESSAGES)

    assert exc_info.value.last_error is last
    assert secondary.ainvoke.await_count == 1


@pytest.mark.asyncio
async def test_exhausted_without_secondary_raises() -> None:
    primary = chat_model(StatusError(503), StatusError(503), StatusError(503))

    with pytest.raises(GenerationError):
        await make_gateway(primary).generate(MESSAGES)


@pytest.mark.asyncio
async def test_history_goes_between_instruction_and_question() -> None:
    primary = chat_model("ответ")
    history = [HumanMessage(content="раньше"), AIMessage(content="тогда")]

    await make_gateway(primary).generate(MESSAGES, history=history)

    sent = primary.ainvoke.await_args.args[0]
    assert [m.content for m in sent] == ["инструкция", "раньше", "тогда", "вопрос"]


def test_transient_detection() -> None:
    gateway = make_gateway(chat_model())

    assert gateway.is_transient(StatusError(503))
    assert not gateway.is_transient(StatusError(500))
    assert not gateway.is_transient(ValueError("boom"))


def test_status_code_from_response() -> None:
    error = Exception("wrapped")
    error.response = SimpleNamespace(status_code=503)

    assert status_code_of(error) == 503
    assert status_code_of(ValueError("plain")) is None


def test_message_text_joins_content_parts() -> None:
    message = AIMessage(content=[{"type": "text", "text": "часть 1, "}, "часть 2"])

    assert message_text(message) == "часть 1, часть 2"
