"""Pydantic schemas for the advisor's retrieval and chat data flow."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Namespace for deterministic chunk ids (document id + ordinal)
CHUNK_NAMESPACE = uuid.UUID("6f1c2b9e-4d3a-5e8f-9a70-1b2c3d4e5f60")


class Language(str, Enum):
    """Languages the advisor answers in."""

    RU = "ru"
    KZ = "kz"


class ChatCategory(str, Enum):
    """Conversation types that keep separate histories."""

    GENERAL = "general"
    DOCUMENT = "document"


class Document(BaseModel):
    """A named unit of source text (one standard or one law)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        description="Stable document id (file stem)",
        min_length=1,
        examples=["law_housing_relations", "standard_capital_repair"],
    )
    text: str = Field(..., description="Full document text")
    source_path: Optional[Path] = Field(
        default=None,
        description="File the document was read from",
    )


class Chunk(BaseModel):
    """A contiguous slice of one document; the unit of indexing and retrieval."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(..., description="Owning document id", min_length=1)
    ordinal: int = Field(
        ...,
        description="0-based position within the document, in segmentation order",
        ge=0,
    )
    text: str = Field(..., description="Chunk text content", min_length=1)
    start_offset: int = Field(
        default=0,
        description="Character offset of the chunk inside its document",
        ge=0,
    )

    @property
    def chunk_id(self) -> str:
        """Deterministic UUID derived from document id and ordinal."""
        return str(uuid.uuid5(CHUNK_NAMESPACE, f"{self.document_id}:{self.ordinal}"))


class ScoredChunk(BaseModel):
    """A vector query hit."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(..., description="Similarity score, higher is closer")


class TopicRule(BaseModel):
    """Static mapping from trigger keywords to candidate documents."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    keywords: tuple[str, ...] = Field(..., min_length=1)
    documents: tuple[str, ...] = Field(..., min_length=1)


class RetrievalResult(BaseModel):
    """Ordered chunks selected for one question; consumed once, never persisted."""

    model_config = ConfigDict(frozen=True)

    chunks: tuple[Chunk, ...] = Field(default=())
    restricted_to: frozenset[str] = Field(
        default=frozenset(),
        description="Routed document set; empty means the whole corpus",
    )
    strong_matches: int = 0
    weak_matches: int = 0
    vector_matches: int = 0

    @property
    def documents(self) -> list[str]:
        """Distinct documents present in the result, in result order."""
        return list(dict.fromkeys(chunk.document_id for chunk in self.chunks))


class ChatTurn(BaseModel):
    """One question/answer exchange stored in chat history."""

    user_id: str
    question: str
    answer: str
    category: ChatCategory = ChatCategory.GENERAL
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IndexManifest(BaseModel):
    """Metadata written next to a persisted index generation."""

    schema_version: int
    collection_name: str
    embedding_model: str
    dimension: int = Field(..., ge=1)
    chunk_count: int = Field(..., ge=0)
    corpus_fingerprint: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
