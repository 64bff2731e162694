"""Vector index over chunk embeddings, stored with Qdrant in embedded local mode."""

import os
import shutil
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import ValidationError
from qdrant_client import QdrantClient
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from core.config import get_settings
from core.exceptions import IndexLoadError, SearchError, VectorIndexError
from core.logger import LoggerMixin, get_logger
from models.schema import Chunk, IndexManifest, ScoredChunk

logger = get_logger(__name__)


class TextEmbedder(Protocol):
    """What the index needs from an embedding service."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...


def _atomic_write(path: Path, content: str) -> None:
    """Write a file so readers see either the old or the new content, never a partial one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class VectorIndex(LoggerMixin):
    """
    Approximate nearest-neighbor index over chunk embeddings.

    Every build writes a fresh *generation* directory under
    ``<root>/generations``. ``save`` publishes a generation by atomically
    replacing the ``<root>/CURRENT`` pointer file, so ``load`` sees either
    the previous index or the complete new one. The index is never updated
    in place; a changed corpus means a full rebuild.
    """

    SCHEMA_VERSION: int = 1
    DISTANCE_METRIC: Distance = Distance.COSINE
    GENERATIONS_DIR: str = "generations"
    POINTER_FILE: str = "CURRENT"
    MANIFEST_FILE: str = "manifest.json"
    UPSERT_BATCH_SIZE: int = 128
    SCROLL_PAGE_SIZE: int = 256

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        dimension: int,
        embedding_model: str,
        chunk_count: int,
        location: Optional[Path] = None,
    ) -> None:
        self._client = client
        self._collection_name = collection_name
        self._dimension = dimension
        self._embedding_model = embedding_model
        self._chunk_count = chunk_count
        self._location = location

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    @property
    def location(self) -> Optional[Path]:
        return self._location

    # =========================================================================
    # Build
    # =========================================================================

    @classmethod
    def new_location(cls, root: Path) -> Path:
        """Pick an unused generation directory under ``root``."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        return Path(root) / cls.GENERATIONS_DIR / f"{stamp}-{uuid.uuid4().hex[:8]}"

    @classmethod
    def build(
        cls,
        chunks: list[Chunk],
        embedder: TextEmbedder,
        location: Optional[Path] = None,
        collection_name: Optional[str] = None,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> "VectorIndex":
        """
        Embed every chunk and build a new index.

        Args:
            chunks: All chunks of the corpus.
            embedder: Object with ``embed_texts``; this is the slow path.
            location: Generation directory; ``None`` keeps the index in memory.
            collection_name: Qdrant collection (default: INDEX_COLLECTION_NAME).
            embedding_model: Model name recorded in the manifest.
            dimension: Expected vector size; checked against the embeddings.

        Returns:
            VectorIndex: Ready-to-query index (not yet published).

        Raises:
            VectorIndexError: If there is nothing to index or storage fails.
            EmbeddingError: If the embedder fails.
        """
        settings = get_settings()
        collection_name = collection_name or settings.INDEX_COLLECTION_NAME
        embedding_model = embedding_model or settings.EMBEDDING_MODEL_NAME

        if not chunks:
            raise VectorIndexError(message="Cannot build an index from zero chunks")

        ids = [chunk.chunk_id for chunk in chunks]
        if len(set(ids)) != len(ids):
            raise VectorIndexError(message="Duplicate (document, ordinal) pairs in chunks")

        vectors = embedder.embed_texts([chunk.text for chunk in chunks])
        if len(vectors) != len(chunks):
            raise VectorIndexError(
                message="Embedder returned a different number of vectors than chunks",
                details={"chunks": len(chunks), "vectors": len(vectors)},
            )

        actual_dimension = len(vectors[0])
        if dimension is not None and actual_dimension != dimension:
            raise VectorIndexError(
                message="Embedding dimension does not match configuration",
                details={"expected": dimension, "actual": actual_dimension},
            )

        try:
            if location is None:
                client = QdrantClient(location=":memory:")
            else:
                Path(location).mkdir(parents=True, exist_ok=True)
                client = QdrantClient(path=str(location))

            client.create_collection(
                collection_name=collection_name,
                vectors_config=VectorParams(
                    size=actual_dimension,
                    distance=cls.DISTANCE_METRIC,
                ),
            )

            points = [
                PointStruct(
                    id=chunk.chunk_id,
                    vector=vector,
                    payload={
                        "document_id": chunk.document_id,
                        "ordinal": chunk.ordinal,
                        "text": chunk.text,
                        "start_offset": chunk.start_offset,
                    },
                )
                for chunk, vector in zip(chunks, vectors)
            ]
            for i in range(0, len(points), cls.UPSERT_BATCH_SIZE):
                client.upsert(
                    collection_name=collection_name,
                    points=points[i:i + cls.UPSERT_BATCH_SIZE],
                    wait=True,
                )

        except Exception as e:
            logger.error(
                "Failed to build vector index",
                location=str(location),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise VectorIndexError(
                message="Failed to build vector index",
                details={"location": str(location), "error": str(e)},
            ) from e

        index = cls(
            client=client,
            collection_name=collection_name,
            dimension=actual_dimension,
            embedding_model=embedding_model,
            chunk_count=len(chunks),
            location=Path(location) if location is not None else None,
        )
        index.logger.info(
            "Vector index built",
            location=str(location),
            chunks=len(chunks),
            dimension=actual_dimension,
        )
        return index

    # =========================================================================
    # Persistence
    # =========================================================================

    @classmethod
    def _read_pointer(cls, root: Path) -> Optional[str]:
        pointer = Path(root) / cls.POINTER_FILE
        if not pointer.exists():
            return None
        return pointer.read_text(encoding="utf-8").strip() or None

    def save(self, root: Path, corpus_fingerprint: str) -> IndexManifest:
        """
        Publish this index as the current one under ``root``.

        The manifest is written first, then the pointer file is replaced;
        a crash between the two leaves the previous index current.

        Raises:
            VectorIndexError: If the index is not stored under ``root``.
        """
        root = Path(root)
        generations = root / self.GENERATIONS_DIR
        if self._location is None or self._location.parent.resolve() != generations.resolve():
            raise VectorIndexError(
                message="Index must be built inside the generations directory it is saved to",
                details={"location": str(self._location), "root": str(root)},
            )

        manifest = IndexManifest(
            schema_version=self.SCHEMA_VERSION,
            collection_name=self._collection_name,
            embedding_model=self._embedding_model,
            dimension=self._dimension,
            chunk_count=self._chunk_count,
            corpus_fingerprint=corpus_fingerprint,
        )

        try:
            _atomic_write(self._location / self.MANIFEST_FILE, manifest.model_dump_json(indent=2))
            previous = self._read_pointer(root)
            _atomic_write(root / self.POINTER_FILE, self._location.name)
        except OSError as e:
            self.logger.error(
                "Failed to publish vector index",
                location=str(self._location),
                error=str(e),
            )
            raise VectorIndexError(
                message="Failed to publish vector index",
                details={"location": str(self._location), "error": str(e)},
            ) from e

        self._prune(generations, keep={self._location.name, previous})

        self.logger.info(
            "Vector index saved",
            location=str(self._location),
            chunks=self._chunk_count,
            previous=previous,
        )
        return manifest

    def _prune(self, generations: Path, keep: set[Optional[str]]) -> None:
        """Delete generations that are neither current nor the one just replaced."""
        for candidate in generations.iterdir():
            if not candidate.is_dir() or candidate.name in keep:
                continue
            try:
                shutil.rmtree(candidate)
                self.logger.debug("Pruned stale index generation", generation=candidate.name)
            except OSError as e:
                self.logger.warning(
                    "Failed to prune index generation",
                    generation=candidate.name,
                    error=str(e),
                )

    @classmethod
    def load(
        cls,
        root: Path,
        corpus_fingerprint: Optional[str] = None,
        embedding_model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> Optional["VectorIndex"]:
        """
        Restore the current index under ``root`` without re-embedding.

        Returns:
            Optional[VectorIndex]: ``None`` if no index was ever published.

        Raises:
            IndexLoadError: If the published index is missing, corrupt, or
                was built for another corpus, model or dimension.
        """
        settings = get_settings()
        root = Path(root)
        embedding_model = embedding_model or settings.EMBEDDING_MODEL_NAME
        dimension = settings.EMBEDDING_DIMENSION if dimension is None else dimension

        try:
            generation = cls._read_pointer(root)
        except OSError as e:
            raise IndexLoadError(
                message="Index pointer is unreadable",
                details={"root": str(root), "error": str(e)},
            ) from e
        if generation is None:
            return None

        location = root / cls.GENERATIONS_DIR / generation
        manifest_path = location / cls.MANIFEST_FILE
        if not manifest_path.is_file():
            raise IndexLoadError(
                message="Published index generation has no manifest",
                details={"location": str(location)},
            )

        try:
            manifest = IndexManifest.model_validate_json(manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            raise IndexLoadError(
                message="Index manifest is corrupt",
                details={"location": str(location), "error": str(e)},
            ) from e

        mismatches: dict[str, Any] = {}
        if manifest.schema_version != cls.SCHEMA_VERSION:
            mismatches["schema_version"] = manifest.schema_version
        if manifest.embedding_model != embedding_model:
            mismatches["embedding_model"] = manifest.embedding_model
        if manifest.dimension != dimension:
            mismatches["dimension"] = manifest.dimension
        if corpus_fingerprint is not None and manifest.corpus_fingerprint != corpus_fingerprint:
            mismatches["corpus_fingerprint"] = manifest.corpus_fingerprint
        if mismatches:
            raise IndexLoadError(
                message="Persisted index does not match the current configuration",
                details={"location": str(location), "mismatches": mismatches},
            )

        client: Optional[QdrantClient] = None
        try:
            client = QdrantClient(path=str(location))
            if not client.collection_exists(manifest.collection_name):
                raise IndexLoadError(
                    message="Index collection is missing",
                    details={"location": str(location), "collection": manifest.collection_name},
                )
            stored = client.count(collection_name=manifest.collection_name, exact=True).count
            if stored != manifest.chunk_count:
                raise IndexLoadError(
                    message="Index point count does not match manifest",
                    details={"expected": manifest.chunk_count, "stored": stored},
                )
        except IndexLoadError:
            if client is not None:
                client.close()
            raise
        except Exception as e:
            if client is not None:
                client.close()
            raise IndexLoadError(
                message="Failed to open persisted index",
                details={"location": str(location), "error": str(e)},
            ) from e

        index = cls(
            client=client,
            collection_name=manifest.collection_name,
            dimension=manifest.dimension,
            embedding_model=manifest.embedding_model,
            chunk_count=manifest.chunk_count,
            location=location,
        )
        index.logger.info(
            "Vector index loaded",
            location=str(location),
            chunks=manifest.chunk_count,
        )
        return index

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _payload_to_chunk(payload: dict[str, Any]) -> Chunk:
        return Chunk(
            document_id=payload["document_id"],
            ordinal=payload["ordinal"],
            text=payload["text"],
            start_offset=payload.get("start_offset", 0),
        )

    def query(self, query_vector: list[float], k: int) -> list[ScoredChunk]:
        """
        Nearest chunks to ``query_vector``, closest first.

        Returns fewer than ``k`` results when the index is smaller.

        Raises:
            SearchError: If the query fails.
        """
        if k <= 0:
            return []

        try:
            response = self._client.query_points(
                collection_name=self._collection_name,
                query=query_vector,
                limit=k,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            self.logger.error(
                "Vector query failed",
                collection=self._collection_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SearchError(
                message="Vector search failed",
                details={"collection": self._collection_name, "error": str(e)},
            ) from e

        results = [
            ScoredChunk(chunk=self._payload_to_chunk(point.payload or {}), score=point.score)
            for point in response.points
        ]
        self.logger.debug("Vector query completed", k=k, results_count=len(results))
        return results

    def chunks(self) -> list[Chunk]:
        """All indexed chunks ordered by (document_id, ordinal)."""
        collected: list[Chunk] = []
        offset = None
        while True:
            points, offset = self._client.scroll(
                collection_name=self._collection_name,
                limit=self.SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            collected.extend(self._payload_to_chunk(point.payload or {}) for point in points)
            if offset is None:
                break
        collected.sort(key=lambda c: (c.document_id, c.ordinal))
        return collected

    def close(self) -> None:
        """Release the underlying storage."""
        try:
            self._client.close()
        except Exception as e:
            self.logger.warning("Failed to close vector index", error=str(e))

    def get_info(self) -> dict[str, Any]:
        return {
            "collection": self._collection_name,
            "location": str(self._location) if self._location else ":memory:",
            "chunks": self._chunk_count,
            "dimension": self._dimension,
            "embedding_model": self._embedding_model,
            "distance": str(self.DISTANCE_METRIC),
        }
