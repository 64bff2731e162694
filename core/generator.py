"""Generation gateway: resilient calls to Groq chat models with retry and fallback."""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage
from langchain_groq import ChatGroq
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import Settings, get_settings
from core.exceptions import GenerationError
from core.logger import LoggerMixin, get_logger

logger = get_logger(__name__)


def status_code_of(error: BaseException) -> Optional[int]:
    """Backend status code carried by an exception, if any."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def message_text(message: Any) -> str:
    """Plain text of a chat model response."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content)


class GenerationGateway(LoggerMixin):
    """
    Sends messages to a primary chat model, falling back to a secondary one.

    Per call: the primary is attempted up to ``max_retries`` times while its
    failures are transient, waiting ``backoff_base * 2**i`` seconds between
    attempts. Once those attempts are exhausted the secondary is tried
    exactly once. A non-transient failure ends the call immediately.

    Backoff waits go through ``sleep`` (``asyncio.sleep`` by default), so
    they suspend only the calling request.
    """

    def __init__(
        self,
        primary: BaseChatModel,
        secondary: Optional[BaseChatModel] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        transient_status_codes: Optional[Iterable[int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "chat",
    ) -> None:
        """
        Initialize the gateway.

        Args:
            primary: Main chat model.
            secondary: Fallback chat model, tried once after retries run out.
            max_retries: Attempts on the primary (default: GENERATION_MAX_RETRIES).
            backoff_base: Seconds multiplier (default: GENERATION_BACKOFF_BASE_SECONDS).
            transient_status_codes: Retryable statuses (default: TRANSIENT_STATUS_CODES).
            sleep: Awaitable used for backoff waits.
            name: Label used in logs.
        """
        settings = get_settings()
        self._primary = primary
        self._secondary = secondary
        self._max_retries = (
            settings.GENERATION_MAX_RETRIES if max_retries is None else max_retries
        )
        self._backoff_base = (
            settings.GENERATION_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        )
        self._transient_status_codes = frozenset(
            settings.TRANSIENT_STATUS_CODES
            if transient_status_codes is None
            else transient_status_codes
        )
        self._sleep = sleep
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    def is_transient(self, error: BaseException) -> bool:
        return status_code_of(error) in self._transient_status_codes

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            "Transient generation failure, backing off",
            gateway=self._name,
            attempt=retry_state.attempt_number,
            max_retries=self._max_retries,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error),
            status_code=status_code_of(error) if error else None,
        )

    async def _invoke(self, model: BaseChatModel, messages: Sequence[BaseMessage]) -> str:
        response = await model.ainvoke(list(messages))
        return message_text(response)

    async def _call_primary(self, messages: Sequence[BaseMessage]) -> str:
        retrying = AsyncRetrying(
            retry=retry_if_exception(self.is_transient),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff_base, exp_base=2, min=0),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._invoke(self._primary, messages)
        raise GenerationError(message="Primary backend produced no result")

    async def generate(
        self,
        messages: Sequence[BaseMessage],
        history: Optional[Sequence[BaseMessage]] = None,
    ) -> str:
        """
        Generate a reply.

        Args:
            messages: Composed prompt (system instruction first).
            history: Prior conversation turns, placed after the system
                instruction and before the new question.

        Returns:
            str: Generated text.

        Raises:
            GenerationError: On a non-transient failure, or when the
                secondary backend fails too. ``last_error`` holds the
                underlying exception.
        """
        conversation = list(messages)
        if history:
            system = [m for m in conversation if isinstance(m, SystemMessage)]
            rest = [m for m in conversation if not isinstance(m, SystemMessage)]
            conversation = [*system, *history, *rest]

        try:
            return await self._call_primary(conversation)
        except Exception as e:
            if not self.is_transient(e):
                self.logger.error(
                    "Generation failed",
                    gateway=self._name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise GenerationError(
                    message="Generation backend failed",
                    details={"gateway": self._name, "error": str(e)},
                    last_error=e,
                ) from e
            primary_error = e

        if self._secondary is None:
            raise GenerationError(
                message="Primary backend exhausted retries and no secondary is configured",
                details={"gateway": self._name, "error": str(primary_error)},
                last_error=primary_error,
            ) from primary_error

        self.logger.warning(
            "Primary backend exhausted, switching to secondary",
            gateway=self._name,
            attempts=self._max_retries,
            error=str(primary_error),
        )
        try:
            return await self._invoke(self._secondary, conversation)
        except Exception as e:
            self.logger.error(
                "Secondary backend failed",
                gateway=self._name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GenerationError(
                message="Both generation backends failed",
                details={"gateway": self._name, "error": str(e)},
                last_error=e,
            ) from e


def _groq_model(settings: Settings, model_name: str, max_tokens: int) -> ChatGroq:
    return ChatGroq(
        model=model_name,
        api_key=settings.GROQ_API_KEY,
        temperature=settings.GENERATION_TEMPERATURE,
        max_tokens=max_tokens,
        # Retries are owned by the gateway
        max_retries=0,
    )


def build_chat_gateway(settings: Optional[Settings] = None) -> GenerationGateway:
    """Gateway for conversation answers."""
    settings = settings or get_settings()
    return GenerationGateway(
        primary=_groq_model(settings, settings.CHAT_PRIMARY_MODEL, settings.GENERATION_MAX_TOKENS),
        secondary=_groq_model(settings, settings.CHAT_SECONDARY_MODEL, settings.GENERATION_MAX_TOKENS),
        max_retries=settings.GENERATION_MAX_RETRIES,
        backoff_base=settings.GENERATION_BACKOFF_BASE_SECONDS,
        transient_status_codes=settings.TRANSIENT_STATUS_CODES,
        name="chat",
    )


def build_probe_gateway(settings: Optional[Settings] = None) -> GenerationGateway:
    """Gateway for single-shot intent and language probes."""
    settings = settings or get_settings()
    return GenerationGateway(
        primary=_groq_model(settings, settings.PROBE_PRIMARY_MODEL, 8),
        secondary=_groq_model(settings, settings.PROBE_SECONDARY_MODEL, 8),
        max_retries=settings.GENERATION_MAX_RETRIES,
        backoff_base=settings.GENERATION_BACKOFF_BASE_SECONDS,
        transient_status_codes=settings.TRANSIENT_STATUS_CODES,
        name="probe",
    )
