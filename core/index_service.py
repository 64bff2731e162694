"""Ownership of the live vector index: warm start, cold build and atomic rebuilds."""

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from core.config import get_settings
from core.exceptions import IndexLoadError, SearchError
from core.logger import LoggerMixin, get_logger
from database.vector_store import TextEmbedder, VectorIndex
from ingestion.loader import CorpusLoader, corpus_fingerprint
from ingestion.splitter import CorpusSplitter
from models.schema import Chunk

logger = get_logger(__name__)


@dataclass(frozen=True)
class IndexSnapshot:
    """
    Immutable read handle on one index generation.

    A request takes a single snapshot and uses it for every step, so a
    rebuild finishing mid-request never mixes two generations.
    """

    index: VectorIndex
    chunks: tuple[Chunk, ...]
    fingerprint: str
    rebuilt: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def documents(self) -> list[str]:
        return list(dict.fromkeys(chunk.document_id for chunk in self.chunks))


class IndexService(LoggerMixin):
    """
    Holds exclusive write access to the current index reference.

    Readers get the current IndexSnapshot; ``rebuild`` builds a new
    generation off the event loop, publishes it, and only then replaces the
    reference. Rebuilds are serialized with an asyncio lock.

    The replaced snapshot stays open for in-flight readers until the next
    rebuild prunes its generation directory; it is closed then.
    """

    def __init__(
        self,
        embedder: TextEmbedder,
        loader: Optional[CorpusLoader] = None,
        splitter: Optional[CorpusSplitter] = None,
        index_dir: Optional[Path] = None,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._embedder = embedder
        self._loader = loader or CorpusLoader()
        self._splitter = splitter or CorpusSplitter()
        self._index_dir = Path(index_dir or settings.INDEX_DIR)
        self._embedding_model = embedding_model or settings.EMBEDDING_MODEL_NAME
        self._dimension = settings.EMBEDDING_DIMENSION if dimension is None else dimension
        self._snapshot: Optional[IndexSnapshot] = None
        self._retired: Optional[IndexSnapshot] = None
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> IndexSnapshot:
        """
        Current index snapshot.

        Raises:
            SearchError: If the service has not been started.
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise SearchError(message="Vector index is not ready; call start() first")
        return snapshot

    def _prepare_corpus(self) -> tuple[list[Chunk], str]:
        """Load and split the corpus; IngestError propagates."""
        documents = self._loader.load()
        chunks = self._splitter.split_corpus(documents)
        digest = hashlib.sha256()
        digest.update(corpus_fingerprint(documents).encode("ascii"))
        # Chunking parameters are part of the index identity
        digest.update(f":{self._splitter.chunk_size}:{self._splitter.chunk_overlap}".encode("ascii"))
        return chunks, digest.hexdigest()

    def _build_and_publish(self, chunks: list[Chunk], fingerprint: str) -> VectorIndex:
        index = VectorIndex.build(
            chunks=chunks,
            embedder=self._embedder,
            location=VectorIndex.new_location(self._index_dir),
            embedding_model=self._embedding_model,
            dimension=self._dimension,
        )
        index.save(self._index_dir, corpus_fingerprint=fingerprint)
        return index

    def _load(self, fingerprint: str) -> Optional[VectorIndex]:
        return VectorIndex.load(
            self._index_dir,
            corpus_fingerprint=fingerprint,
            embedding_model=self._embedding_model,
            dimension=self._dimension,
        )

    async def start(self) -> IndexSnapshot:
        """
        Warm-start from the persisted index, or cold-build it.

        A persisted index that cannot be loaded is rebuilt from source.

        Raises:
            IngestError: If the corpus is empty or unreadable (fatal).
        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            chunks, fingerprint = await loop.run_in_executor(None, self._prepare_corpus)

            index: Optional[VectorIndex] = None
            try:
                index = await loop.run_in_executor(None, self._load, fingerprint)
            except IndexLoadError as e:
                self.logger.warning(
                    "Persisted index unusable, rebuilding from source",
                    error=e.message,
                    details=e.details,
                )

            rebuilt = index is None
            if index is None:
                self.logger.info("Building vector index", chunks=len(chunks))
                index = await loop.run_in_executor(None, self._build_and_publish, chunks, fingerprint)

            indexed_chunks = await loop.run_in_executor(None, index.chunks)
            self._snapshot = IndexSnapshot(
                index=index,
                chunks=tuple(indexed_chunks),
                fingerprint=fingerprint,
                rebuilt=rebuilt,
            )

        self.logger.info(
            "Index service started",
            rebuilt=rebuilt,
            chunks=len(indexed_chunks),
            documents=len(self._snapshot.documents),
        )
        return self._snapshot

    async def rebuild(self) -> IndexSnapshot:
        """
        Re-ingest and re-embed the whole corpus, then swap the index in.

        In-flight queries keep the snapshot they started with. On failure
        the previous index stays current and the error propagates.
        """
        loop = asyncio.get_running_loop()
        async with self._lock:
            self.logger.info("Index rebuild started")
            chunks, fingerprint = await loop.run_in_executor(None, self._prepare_corpus)
            index = await loop.run_in_executor(None, self._build_and_publish, chunks, fingerprint)
            indexed_chunks = await loop.run_in_executor(None, index.chunks)

            previous = self._snapshot
            pruned = self._retired
            self._snapshot = IndexSnapshot(
                index=index,
                chunks=tuple(indexed_chunks),
                fingerprint=fingerprint,
                rebuilt=True,
            )
            self._retired = previous
            # Its generation directory was pruned by the save above
            if pruned is not None:
                pruned.index.close()

        self.logger.info(
            "Index rebuild completed",
            chunks=len(indexed_chunks),
            previous_chunks=len(previous.chunks) if previous else 0,
        )
        return self._snapshot

    def close(self) -> None:
        """Release the current and the retired index."""
        for snapshot in (self._retired, self._snapshot):
            if snapshot is not None:
                snapshot.index.close()
        self._retired = None
        self._snapshot = None
