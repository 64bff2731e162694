"""Chat history collaborators: in-process and Redis-backed stores."""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from core.config import get_settings
from core.exceptions import HistoryError
from core.logger import LoggerMixin, get_logger
from models.schema import ChatCategory, ChatTurn

logger = get_logger(__name__)


class HistoryStore(ABC):
    """Append-only chat log keyed by user and conversation category."""

    @abstractmethod
    async def append(
        self,
        user_id: str,
        question: str,
        answer: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> ChatTurn:
        """Record one exchange."""

    @abstractmethod
    async def get(
        self,
        user_id: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> list[ChatTurn]:
        """Turns for a user and category, oldest first."""

    async def close(self) -> None:
        return None


class InMemoryHistoryStore(HistoryStore, LoggerMixin):
    """Per-process history; lost on restart."""

    def __init__(self, max_turns: Optional[int] = None) -> None:
        self._max_turns = get_settings().HISTORY_MAX_TURNS if max_turns is None else max_turns
        self._turns: dict[tuple[str, ChatCategory], deque[ChatTurn]] = defaultdict(
            lambda: deque(maxlen=self._max_turns)
        )
        self._lock = asyncio.Lock()

    async def append(
        self,
        user_id: str,
        question: str,
        answer: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> ChatTurn:
        turn = ChatTurn(user_id=user_id, question=question, answer=answer, category=category)
        async with self._lock:
            self._turns[(user_id, category)].append(turn)
        return turn

    async def get(
        self,
        user_id: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> list[ChatTurn]:
        async with self._lock:
            return list(self._turns.get((user_id, category), ()))


class RedisHistoryStore(HistoryStore, LoggerMixin):
    """
    History in Redis lists, one JSON-encoded turn per element.

    Keys are ``history:{user_id}:{category}``; each list is trimmed to the
    newest ``max_turns`` entries on append.
    """

    KEY_PREFIX: str = "history"

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        url: Optional[str] = None,
        max_turns: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._max_turns = settings.HISTORY_MAX_TURNS if max_turns is None else max_turns
        if client is None:
            url = url or settings.REDIS_URL
            if not url:
                raise HistoryError(message="REDIS_URL is not configured")
            client = aioredis.from_url(url, decode_responses=True)
        self._client = client

    def key(self, user_id: str, category: ChatCategory) -> str:
        return f"{self.KEY_PREFIX}:{user_id}:{ChatCategory(category).value}"

    async def append(
        self,
        user_id: str,
        question: str,
        answer: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> ChatTurn:
        turn = ChatTurn(user_id=user_id, question=question, answer=answer, category=category)
        key = self.key(user_id, category)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, turn.model_dump_json())
                pipe.ltrim(key, -self._max_turns, -1)
                await pipe.execute()
        except RedisError as e:
            self.logger.error("Failed to append chat turn", key=key, error=str(e))
            raise HistoryError(
                message="Failed to append chat turn",
                details={"key": key, "error": str(e)},
            ) from e
        return turn

    async def get(
        self,
        user_id: str,
        category: ChatCategory = ChatCategory.GENERAL,
    ) -> list[ChatTurn]:
        key = self.key(user_id, category)
        try:
            raw_turns = await self._client.lrange(key, 0, -1)
        except RedisError as e:
            self.logger.error("Failed to read chat history", key=key, error=str(e))
            raise HistoryError(
                message="Failed to read chat history",
                details={"key": key, "error": str(e)},
            ) from e

        turns: list[ChatTurn] = []
        for raw in raw_turns:
            try:
                turns.append(ChatTurn.model_validate_json(raw))
            except ValidationError as e:
                self.logger.warning("Skipping malformed chat turn", key=key, error=str(e))
        return turns

    async def close(self) -> None:
        await self._client.aclose()


def build_history_store() -> HistoryStore:
    """History store named by HISTORY_BACKEND."""
    settings = get_settings()
    if settings.HISTORY_BACKEND == "redis":
        return RedisHistoryStore(url=settings.REDIS_URL)
    return InMemoryHistoryStore(max_turns=settings.HISTORY_MAX_TURNS)
