"""Shared pytest fixtures and test environment defaults."""

import os
import re
import sys
import zlib
from pathlib import Path
from typing import Callable, Iterable
from unittest.mock import AsyncMock, MagicMock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read once at import time, so these must be set first
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ["EMBEDDING_DIMENSION"] = "64"
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["HISTORY_BACKEND"] = "memory"
os.environ["RETRIEVAL_MODE"] = "hybrid"
os.environ.pop("REDIS_URL", None)
os.environ.pop("TOPIC_RULES_PATH", None)
os.environ.pop("REQUEST_TIMEOUT_SECONDS", None)

import pytest
from langchain_core.messages import AIMessage, BaseMessage

from core.exceptions import EmbeddingError

EMBEDDING_DIMENSION = 64

CORPUS = {
    "law_housing_relations": (
        "Статья 1. Основные понятия.\n\n"
        "Общее имущество объекта кондоминиума означает части объекта, "
        "не являющиеся квартирами.\n\n"
        "Собственник квартиры обязан участвовать в расходах на содержание "
        "общего имущества."
    ),
    "standard_capital_repair": (
        "Капитальный ремонт общего имущества включает замену изношенных "
        "конструкций и инженерных систем.\n\n"
        "Решение о проведении капитального ремонта принимает собрание собственников."
    ),
    "standard_waste_removal": (
        "Вывоз мусора из контейнеров производится ежедневно.\n\n"
        "Контейнерная площадка содержится в чистоте."
    ),
    "standard_heating": (
        "Отопление жилых помещений обеспечивает температуру не ниже 18 градусов.\n\n"
        "Отопительный сезон начинается при среднесуточной температуре ниже 10 градусов."
    ),
}


class HashEmbedder:
    """Deterministic bag-of-words embedder for tests."""

    model_name = "test-hash-embedder"

    def __init__(self, dimension: int = EMBEDDING_DIMENSION) -> None:
        self.dimension = dimension
        self.query_calls: list[str] = []

    def _embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        # Constant component keeps every vector non-zero
        vector[0] = 1.0
        for token in re.findall(r"\w+", text.lower()):
            vector[1 + zlib.crc32(token.encode("utf-8")) % (self.dimension - 1)] += 1.0
        norm = sum(v * v for v in vector) ** 0.5
        return [v / norm for v in vector]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self._embed(text)

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]


class FailingEmbedder(HashEmbedder):
    """Builds indexes but cannot embed questions."""

    def embed_query(self, text: str) -> list[float]:
        raise EmbeddingError(message="Embedding backend unavailable")


class StatusError(Exception):
    """Backend error carrying an HTTP-like status code."""

    def __init__(self, status_code: int, message: str = "backend error") -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code


def chat_model(*outcomes) -> MagicMock:
    """Chat model double whose ainvoke yields the given texts or raises the given errors."""
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=[
        outcome if isinstance(outcome, BaseException) else AIMessage(content=outcome)
        for outcome in outcomes
    ])
    return model


def responding_model(respond: Callable[[list[BaseMessage]], str]) -> MagicMock:
    """Chat model double computing each reply from the prompt."""
    model = MagicMock()

    async def ainvoke(messages: list[BaseMessage]) -> AIMessage:
        return AIMessage(content=respond(messages))

    model.ainvoke = AsyncMock(side_effect=ainvoke)
    return model


def write_corpus(directory: Path, documents: dict[str, str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, text in documents.items():
        (directory / f"{name}.txt").write_text(text, encoding="utf-8")
    return directory


def prompt_text(messages: Iterable[BaseMessage]) -> str:
    return "\n".join(str(message.content) for message in messages)


@pytest.fixture
def corpus_dir(tmp_path: Path) -> Path:
    return write_corpus(tmp_path / "corpus", CORPUS)


@pytest.fixture
def index_dir(tmp_path: Path) -> Path:
    return tmp_path / "index"


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()
