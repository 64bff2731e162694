"""
Question answering pipeline.

One request runs as a sequence of awaited steps:

    intent probe -> language probe -> history lookup -> topic routing ->
    hybrid retrieval -> context assembly -> generation -> markup stripping

and the finished turn is written to history in the background. Failures
inside a request never reach the caller; they become an apology in the
question's language.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from structlog.contextvars import bound_contextvars

from core.classifiers import IntentClassifier, LanguageClassifier
from core.config import Settings, get_settings
from core.context import ContextAssembler
from core.embedding import EmbeddingService
from core.exceptions import EmbeddingError, HistoryError, RequestTimeoutError
from core.generator import GenerationGateway, build_chat_gateway, build_probe_gateway
from core.history import HistoryStore, build_history_store
from core.index_service import IndexService, IndexSnapshot
from core.logger import LoggerMixin, get_logger
from core.prompts import (
    APOLOGY_MESSAGES,
    DOCUMENT_REDIRECT_MESSAGE,
    EMPTY_QUESTION_MESSAGE,
    compose_messages,
    strip_markup,
)
from core.retriever import Retriever, build_retriever
from core.router import TopicRouter
from models.schema import ChatCategory, ChatTurn, Language, RetrievalResult

logger = get_logger(__name__)

# Prior turns replayed to the conversation model
HISTORY_CONTEXT_TURNS = 5


@dataclass
class _RequestState:
    language: Language = Language.RU


def history_messages(turns: list[ChatTurn], limit: int = HISTORY_CONTEXT_TURNS) -> list[BaseMessage]:
    """Newest ``limit`` turns as alternating human/AI messages."""
    messages: list[BaseMessage] = []
    for turn in turns[-limit:] if limit > 0 else []:
        messages.append(HumanMessage(content=turn.question))
        messages.append(AIMessage(content=turn.answer))
    return messages


class AdvisorService(LoggerMixin):
    """
    Entry point for answering questions and maintaining the index.

    Collaborators are injected so each one can be replaced in tests;
    ``build_advisor`` wires the production set from settings.
    """

    def __init__(
        self,
        index_service: IndexService,
        retriever: Retriever,
        router: TopicRouter,
        assembler: ContextAssembler,
        chat_gateway: GenerationGateway,
        intent_classifier: IntentClassifier,
        language_classifier: LanguageClassifier,
        history: HistoryStore,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._index_service = index_service
        self._retriever = retriever
        self._router = router
        self._assembler = assembler
        self._chat_gateway = chat_gateway
        self._intent_classifier = intent_classifier
        self._language_classifier = language_classifier
        self._history = history
        self._request_timeout = request_timeout
        self._pending: set[asyncio.Task] = set()

    @property
    def index_service(self) -> IndexService:
        return self._index_service

    async def start(self) -> IndexSnapshot:
        """
        Load or build the index. Must finish before serving.

        Raises:
            IngestError: If the corpus is empty or unreadable.
        """
        return await self._index_service.start()

    async def rebuild_index(self) -> IndexSnapshot:
        """Re-ingest and re-embed the corpus, swapping the index in on completion."""
        return await self._index_service.rebuild()

    async def answer(self, question: str, user_id: str) -> str:
        """
        Answer one question for one user.

        Returns:
            str: Plain-text answer, a canned redirect or prompt, or an
            apology when anything fails.
        """
        if not question or not question.strip():
            return EMPTY_QUESTION_MESSAGE

        state = _RequestState()
        with bound_contextvars(request_id=uuid.uuid4().hex[:12], user_id=user_id):
            try:
                return await self._answer_within_deadline(question.strip(), user_id, state)
            except Exception as e:
                self.logger.error(
                    "Answer failed, returning apology",
                    language=state.language.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return APOLOGY_MESSAGES[state.language]

    async def _answer_within_deadline(self, question: str, user_id: str, state: _RequestState) -> str:
        if not self._request_timeout:
            return await self._answer(question, user_id, state)
        try:
            return await asyncio.wait_for(
                self._answer(question, user_id, state),
                timeout=self._request_timeout,
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                message="Request deadline exceeded",
                details={"timeout_seconds": self._request_timeout},
            ) from e

    async def _answer(self, question: str, user_id: str, state: _RequestState) -> str:
        if await self._intent_classifier.wants_document(question):
            self.logger.info("Document intent detected, redirecting")
            return DOCUMENT_REDIRECT_MESSAGE

        state.language = await self._language_classifier.detect(question)

        turns = await self._load_history(user_id)
        route = self._router.route(question)
        result = await self._retrieve(question, route.documents)
        context = self._assembler.build(result.chunks)

        messages = compose_messages(
            question=question,
            context=context,
            language=state.language,
            fresh_conversation=not turns,
        )
        raw_answer = await self._chat_gateway.generate(messages, history=history_messages(turns))
        answer = strip_markup(raw_answer).strip()

        self.logger.info(
            "Question answered",
            language=state.language.value,
            matched_rules=route.matched_rules,
            legal=route.legal,
            grounded=bool(result.chunks),
            documents=result.documents,
            answer_length=len(answer),
        )
        self._schedule_persist(user_id, question, answer)
        return answer

    async def _load_history(self, user_id: str) -> list[ChatTurn]:
        try:
            return await self._history.get(user_id, ChatCategory.GENERAL)
        except HistoryError as e:
            self.logger.warning("History unavailable, treating as fresh conversation", error=e.message)
            return []

    async def _retrieve(self, question: str, documents: frozenset[str]) -> RetrievalResult:
        try:
            return await self._retriever.retrieve(question, documents)
        except EmbeddingError as e:
            self.logger.warning(
                "Question embedding failed, answering without retrieval",
                error=e.message,
            )
            return RetrievalResult(restricted_to=documents)

    def _schedule_persist(self, user_id: str, question: str, answer: str) -> None:
        task = asyncio.create_task(self._persist(user_id, question, answer))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, user_id: str, question: str, answer: str) -> None:
        try:
            await self._history.append(user_id, question, answer, ChatCategory.GENERAL)
        except Exception as e:
            self.logger.error(
                "Failed to persist chat turn",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def drain(self) -> None:
        """Wait for background history writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        await self._history.close()
        self._index_service.close()


def build_advisor(settings: Optional[Settings] = None) -> AdvisorService:
    """Wire the production advisor from settings."""
    settings = settings or get_settings()

    embedder = EmbeddingService(
        model_name=settings.EMBEDDING_MODEL_NAME,
        batch_size=settings.EMBEDDING_BATCH_SIZE,
    )
    index_service = IndexService(
        embedder=embedder,
        index_dir=settings.INDEX_DIR,
        embedding_model=settings.EMBEDDING_MODEL_NAME,
        dimension=settings.EMBEDDING_DIMENSION,
    )
    probe_gateway = build_probe_gateway(settings)

    return AdvisorService(
        index_service=index_service,
        retriever=build_retriever(settings, lambda: index_service.snapshot, embedder),
        router=TopicRouter(),
        assembler=ContextAssembler(max_chars=settings.MAX_CONTEXT_CHARS),
        chat_gateway=build_chat_gateway(settings),
        intent_classifier=IntentClassifier(probe_gateway),
        language_classifier=LanguageClassifier(probe_gateway),
        history=build_history_store(),
        request_timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
