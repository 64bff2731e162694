"""
Hybrid Retrieval Engine for housing standards.

Combines exact keyword matching with vector similarity over the chunks of
the routed documents, then widens every hit to its whole source document.

Architecture:
    Step 1: Terms         - Extract search terms from the question
    Step 2: Keyword Hop   - Strong (all terms) and weak (any term) matches
    Step 3: Vector Hop    - Global top_k * 2 similarity search, filtered to D
    Step 4: Merge         - strong ++ weak ++ vector, deduplicated by text
    Step 5: Expansion     - Every chunk of each touched document
    Step 6: Ordering      - (document_id, ordinal)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Iterable, Optional, Protocol

from core.config import Settings, get_settings
from core.index_service import IndexSnapshot
from core.keywords import KeywordFilter, extract_terms
from core.logger import LoggerMixin, get_logger
from models.schema import Chunk, RetrievalResult

logger = get_logger(__name__)


class QueryEmbedder(Protocol):
    """What retrieval needs from an embedding service."""

    def embed_query(self, text: str) -> list[float]: ...


# =============================================================================
# Merge helpers
# =============================================================================

def merge_candidates(*groups: Iterable[Chunk]) -> list[Chunk]:
    """
    Concatenate candidate groups, dropping chunks whose text was already seen.

    Earlier groups outrank later ones, so callers pass keyword matches
    before vector hits.
    """
    seen: set[str] = set()
    merged: list[Chunk] = []
    for group in groups:
        for chunk in group:
            if chunk.text in seen:
                continue
            seen.add(chunk.text)
            merged.append(chunk)
    return merged


def expand_documents(hits: Iterable[Chunk], universe: Iterable[Chunk]) -> list[Chunk]:
    """Every chunk of ``universe`` whose document owns at least one hit."""
    touched = {chunk.document_id for chunk in hits}
    return [chunk for chunk in universe if chunk.document_id in touched]


def order_chunks(chunks: Iterable[Chunk]) -> list[Chunk]:
    """Sort by document id, then ordinal."""
    return sorted(chunks, key=lambda c: (c.document_id, c.ordinal))


# =============================================================================
# Strategies
# =============================================================================

class Retriever(ABC):
    """Chooses the chunks an answer may be grounded in."""

    @abstractmethod
    async def retrieve(
        self,
        question: str,
        documents: frozenset[str] = frozenset(),
    ) -> RetrievalResult:
        """
        Select chunks for a question.

        Args:
            question: User question.
            documents: Routed document ids; empty means the whole corpus.
        """


class PassthroughRetriever(Retriever, LoggerMixin):
    """Retrieves nothing, so every answer takes the advisory path."""

    async def retrieve(
        self,
        question: str,
        documents: frozenset[str] = frozenset(),
    ) -> RetrievalResult:
        self.logger.debug("Passthrough retrieval", restricted_to=sorted(documents))
        return RetrievalResult(restricted_to=documents)


class HybridRetriever(Retriever, LoggerMixin):
    """
    Keyword-first retrieval with a vector-similarity recall backstop.

    Expansion to whole documents can return far more than ``top_k`` chunks;
    the context budget is what bounds the final prompt.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], IndexSnapshot],
        embedder: QueryEmbedder,
        keyword_filter: Optional[KeywordFilter] = None,
        top_k: Optional[int] = None,
        min_term_length: Optional[int] = None,
    ) -> None:
        """
        Initialize the retriever.

        Args:
            snapshot_provider: Returns the current index snapshot; called once
                per request.
            embedder: Object with ``embed_query``.
            keyword_filter: Term matcher (default: KeywordFilter()).
            top_k: Vector candidates are ``top_k * 2`` (default: TOP_K_RESULTS).
            min_term_length: Shortest search term (default: MIN_TERM_LENGTH).
        """
        settings = get_settings()
        self._snapshot_provider = snapshot_provider
        self._embedder = embedder
        self._keyword_filter = keyword_filter or KeywordFilter()
        self._top_k = settings.TOP_K_RESULTS if top_k is None else top_k
        self._min_term_length = (
            settings.MIN_TERM_LENGTH if min_term_length is None else min_term_length
        )

        self.logger.info("HybridRetriever initialized", top_k=self._top_k)

    @property
    def top_k(self) -> int:
        return self._top_k

    async def retrieve(
        self,
        question: str,
        documents: frozenset[str] = frozenset(),
    ) -> RetrievalResult:
        """
        Run keyword and vector matching, merge, expand and order.

        Raises:
            EmbeddingError: If the question cannot be embedded.
            SearchError: If the index is unavailable or the query fails.
        """
        snapshot = self._snapshot_provider()
        loop = asyncio.get_running_loop()

        terms = extract_terms(question, self._min_term_length)
        universe = [
            chunk for chunk in snapshot.chunks
            if not documents or chunk.document_id in documents
        ]
        matches = self._keyword_filter.classify(terms, universe)

        query_vector = await loop.run_in_executor(None, self._embedder.embed_query, question)
        hits = await loop.run_in_executor(
            None, snapshot.index.query, query_vector, self._top_k * 2
        )
        vector_chunks = [
            hit.chunk for hit in hits
            if not documents or hit.chunk.document_id in documents
        ]

        merged = merge_candidates(matches.strong, matches.weak, vector_chunks)
        if not merged:
            self.logger.info(
                "No relevant chunks found",
                terms=sorted(terms),
                restricted_to=sorted(documents),
            )
            return RetrievalResult(restricted_to=documents)

        ordered = order_chunks(expand_documents(merged, universe))
        result = RetrievalResult(
            chunks=tuple(ordered),
            restricted_to=documents,
            strong_matches=len(matches.strong),
            weak_matches=len(matches.weak),
            vector_matches=len(vector_chunks),
        )

        self.logger.info(
            "Retrieval completed",
            terms=sorted(terms),
            strong=result.strong_matches,
            weak=result.weak_matches,
            vector=result.vector_matches,
            merged=len(merged),
            documents=result.documents,
            chunks=len(result.chunks),
        )
        return result


def build_retriever(
    settings: Settings,
    snapshot_provider: Callable[[], IndexSnapshot],
    embedder: QueryEmbedder,
) -> Retriever:
    """Pick the retrieval strategy named by RETRIEVAL_MODE."""
    if settings.RETRIEVAL_MODE == "passthrough":
        return PassthroughRetriever()
    return HybridRetriever(
        snapshot_provider=snapshot_provider,
        embedder=embedder,
        top_k=settings.TOP_K_RESULTS,
        min_term_length=settings.MIN_TERM_LENGTH,
    )
