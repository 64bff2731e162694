"""End-to-end pipeline tests with scripted chat backends."""

import asyncio
import re
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import BaseMessage

from conftest import (
    EMBEDDING_DIMENSION,
    FailingEmbedder,
    HashEmbedder,
    StatusError,
    chat_model,
    prompt_text,
    responding_model,
)
from core.classifiers import IntentClassifier, LanguageClassifier
from core.context import ContextAssembler
from core.exceptions import HistoryError
from core.generator import GenerationGateway
from core.history import HistoryStore, InMemoryHistoryStore
from core.index_service import IndexService
from core.pipeline import AdvisorService
from core.prompts import (
    ADVISORY_DISCLAIMERS,
    APOLOGY_MESSAGES,
    DOCUMENT_REDIRECT_MESSAGE,
    EMPTY_QUESTION_MESSAGE,
    GREETING_FRESH,
    GREETING_ONGOING,
)
from core.retriever import HybridRetriever, PassthroughRetriever, Retriever
from core.router import TopicRouter
from ingestion.loader import CorpusLoader
from ingestion.splitter import CorpusSplitter
from models.schema import Language

MARKUP = re.compile(r"[*#_`~]")

GROUNDED_REPLY = (
    "## Капитальный ремонт\n"
    "**Капитальный ремонт** это замена изношенных конструкций (источник: standard_capital_repair)."
)


def probe_model(wants_document: bool = False, language: Language = Language.RU) -> MagicMock:
    def respond(messages: list[BaseMessage]) -> str:
        text = prompt_text(messages)
        if "YES или NO" in text:
            return "YES" if wants_document else "NO"
        return language.value.upper()

    return responding_model(respond)


def gateway(model) -> GenerationGateway:
    return GenerationGateway(
        primary=model,
        max_retries=1,
        backoff_base=0.0,
        transient_status_codes=[503],
        sleep=AsyncMock(),
    )


async def make_advisor(
    corpus_dir: Path,
    index_dir: Path,
    chat=None,
    probe=None,
    embedder: Optional[HashEmbedder] = None,
    retriever: Optional[Retriever] = None,
    history: Optional[HistoryStore] = None,
    request_timeout: Optional[float] = None,
) -> AdvisorService:
    embedder = embedder or HashEmbedder()
    index_service = IndexService(
        embedder=embedder,
        loader=CorpusLoader(corpus_dir=corpus_dir),
        splitter=CorpusSplitter(chunk_size=200, chunk_overlap=40),
        index_dir=index_dir,
        embedding_model=embedder.model_name,
        dimension=EMBEDDING_DIMENSION,
    )
    probe_gateway = gateway(probe or probe_model())
    advisor = AdvisorService(
        index_service=index_service,
        retriever=retriever or HybridRetriever(
            snapshot_provider=lambda: index_service.snapshot,
            embedder=embedder,
            top_k=10,
        ),
        router=TopicRouter(baseline_documents=["law_housing_relations"]),
        assembler=ContextAssembler(max_chars=20000),
        chat_gateway=gateway(chat or chat_model(GROUNDED_REPLY)),
        intent_classifier=IntentClassifier(probe_gateway),
        language_classifier=LanguageClassifier(probe_gateway),
        history=history or InMemoryHistoryStore(max_turns=10),
        request_timeout=request_timeout,
    )
    await advisor.start()
    return advisor


def sent_prompt(model: MagicMock) -> tuple[str, str]:
    """System and last human message of the latest chat call."""
    messages = model.ainvoke.await_args.args[0]
    return str(messages[0].content), str(messages[-1].content)


@pytest.mark.asyncio
async def test_definition_question_is_grounded(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model(GROUNDED_REPLY)
    history = InMemoryHistoryStore(max_turns=10)
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, history=history)

    answer = await advisor.answer("Что такое капитальный ремонт?", "user-1")
    await advisor.drain()

    system, human = sent_prompt(chat)
    assert "SOURCE: standard_capital_repair" in human
    assert "полностью основан" in system
    assert "русском" in system
    assert ADVISORY_DISCLAIMERS[Language.RU] not in system
    assert not MARKUP.search(answer)
    assert answer.startswith("Капитальный ремонт")
    assert [t.answer for t in await history.get("user-1")] == [answer]


@pytest.mark.asyncio
async def test_blank_question_prompts_without_backend_calls(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model()
    probe = probe_model()
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, probe=probe)

    assert await advisor.answer("   ", "user-1") == EMPTY_QUESTION_MESSAGE
    chat.ainvoke.assert_not_awaited()
    probe.ainvoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_document_intent_redirects(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model()
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, probe=probe_model(wants_document=True))

    answer = await advisor.answer("Составьте заявление о перерасчете", "user-1")

    assert answer == DOCUMENT_REDIRECT_MESSAGE
    chat.ainvoke.assert_not_awaited()


@pytest.mark.asyncio
async def test_embedding_failure_falls_back_to_advisory(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model("Общие рекомендации")
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, embedder=FailingEmbedder())

    answer = await advisor.answer("Что такое капитальный ремонт?", "user-1")

    system, human = sent_prompt(chat)
    assert answer == "Общие рекомендации"
    assert ADVISORY_DISCLAIMERS[Language.RU] in system
    assert "SOURCE:" not in human


@pytest.mark.asyncio
async def test_passthrough_retriever_answers_advisory(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model("Общие рекомендации")
    probe = probe_model(language=Language.KZ)
    advisor = await make_advisor(
        corpus_dir, index_dir, chat=chat, probe=probe, retriever=PassthroughRetriever()
    )

    await advisor.answer("Қоқыс қашан шығарылады?", "user-1")

    system, _ = sent_prompt(chat)
    assert ADVISORY_DISCLAIMERS[Language.KZ] in system


@pytest.mark.asyncio
async def test_generation_failure_returns_apology_in_detected_language(
    corpus_dir: Path, index_dir: Path
) -> None:
    chat = chat_model(StatusError(400, "bad request"))
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, probe=probe_model(language=Language.KZ))

    answer = await advisor.answer("Күрделі жөндеу дегеніміз не?", "user-1")

    assert answer == APOLOGY_MESSAGES[Language.KZ]


@pytest.mark.asyncio
async def test_history_write_failure_does_not_block_answer(corpus_dir: Path, index_dir: Path) -> None:
    history = AsyncMock(spec=HistoryStore)
    history.get.return_value = []
    history.append.side_effect = HistoryError(message="storage down")
    advisor = await make_advisor(corpus_dir, index_dir, history=history)

    answer = await advisor.answer("Что такое капитальный ремонт?", "user-1")
    await advisor.drain()

    assert answer.startswith("Капитальный ремонт")
    history.append.assert_awaited_once()


@pytest.mark.asyncio
async def test_history_read_failure_treated_as_fresh(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model(GROUNDED_REPLY)
    history = AsyncMock(spec=HistoryStore)
    history.get.side_effect = HistoryError(message="storage down")
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, history=history)

    await advisor.answer("Что такое капитальный ремонт?", "user-1")

    system, _ = sent_prompt(chat)
    assert GREETING_FRESH in system


@pytest.mark.asyncio
async def test_follow_up_is_not_greeted_and_replays_history(corpus_dir: Path, index_dir: Path) -> None:
    chat = chat_model(GROUNDED_REPLY, "Вывоз мусора ежедневный.")
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat)

    first = await advisor.answer("Что такое капитальный ремонт?", "user-1")
    await advisor.drain()
    await advisor.answer("Как часто вывозят мусор?", "user-1")

    messages = chat.ainvoke.await_args.args[0]
    assert GREETING_ONGOING in str(messages[0].content)
    assert [str(m.content) for m in messages[1:3]] == ["Что такое капитальный ремонт?", first]


@pytest.mark.asyncio
async def test_request_deadline_returns_apology(corpus_dir: Path, index_dir: Path) -> None:
    async def slow_reply(messages):
        await asyncio.sleep(5)

    chat = MagicMock()
    chat.ainvoke = AsyncMock(side_effect=slow_reply)
    advisor = await make_advisor(corpus_dir, index_dir, chat=chat, request_timeout=0.2)

    answer = await advisor.answer("Что такое капитальный ремонт?", "user-1")

    assert answer == APOLOGY_MESSAGES[Language.RU]


@pytest.mark.asyncio
async def test_rebuild_index_replaces_snapshot(corpus_dir: Path, index_dir: Path) -> None:
    advisor = await make_advisor(corpus_dir, index_dir)
    before = advisor.index_service.snapshot

    after = await advisor.rebuild_index()

    assert advisor.index_service.snapshot is after
    assert after is not before


@pytest.mark.asyncio
async def test_close_releases_index(corpus_dir: Path, index_dir: Path) -> None:
    history = AsyncMock(spec=HistoryStore)
    advisor = await make_advisor(corpus_dir, index_dir, history=history)

    await advisor.close()

    history.close.assert_awaited_once()
    assert not advisor.index_service.is_ready
