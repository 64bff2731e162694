"""Embedding service module for vector generation using HuggingFace models."""

from typing import Optional

from langchain_huggingface import HuggingFaceEmbeddings

from core.config import get_settings
from core.exceptions import EmbeddingError
from core.logger import LoggerMixin, get_logger

logger = get_logger(__name__)


class EmbeddingService(LoggerMixin):
    """
    Text-to-vector function backed by a HuggingFace sentence-transformer.

    The default model is multilingual so Russian and Kazakh questions land
    near the standards they ask about. Embeddings are normalized for cosine
    similarity.
    """

    DEFAULT_DEVICE: str = "cpu"

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        """
        Initialize the EmbeddingService.

        Args:
            model_name: HuggingFace model name (default: EMBEDDING_MODEL_NAME).
            device: Device to run model on (default: cpu).
            batch_size: Texts per model call in embed_texts (default: EMBEDDING_BATCH_SIZE).
        """
        self._settings = get_settings()
        self._model_name = model_name or self._settings.EMBEDDING_MODEL_NAME
        self._device = device or self.DEFAULT_DEVICE
        self._batch_size = (
            self._settings.EMBEDDING_BATCH_SIZE if batch_size is None else batch_size
        )
        self._model: Optional[HuggingFaceEmbeddings] = None

        self.logger.info(
            "EmbeddingService initialized",
            model_name=self._model_name,
            device=self._device,
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def model(self) -> HuggingFaceEmbeddings:
        """
        Lazily initialize and return the embedding model.

        Raises:
            EmbeddingError: If model loading fails.
        """
        if self._model is None:
            try:
                self._model = HuggingFaceEmbeddings(
                    model_name=self._model_name,
                    model_kwargs={"device": self._device},
                    encode_kwargs={"normalize_embeddings": True},
                )
                self.logger.info(
                    "Embedding model loaded",
                    model_name=self._model_name,
                    device=self._device,
                )
            except Exception as e:
                self.logger.error(
                    "Failed to load embedding model",
                    model_name=self._model_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise EmbeddingError(
                    message=f"Failed to load embedding model: {self._model_name}",
                    details={"model_name": self._model_name, "error": str(e)},
                ) from e
        return self._model

    @property
    def embedding_dimension(self) -> int:
        return self._settings.EMBEDDING_DIMENSION

    def embed_query(self, text: str) -> list[float]:
        """
        Generate embedding for a single question.

        Raises:
            ValueError: If the text is blank.
            EmbeddingError: If embedding generation fails.
        """
        if not text or not text.strip():
            raise ValueError("Query text cannot be empty")

        try:
            embedding = self.model.embed_query(text)
            self.logger.debug(
                "Query embedded",
                text_length=len(text),
                embedding_dim=len(embedding),
            )
            return embedding

        except EmbeddingError:
            raise
        except Exception as e:
            self.logger.error(
                "Failed to embed query",
                text_length=len(text),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingError(
                message="Failed to generate query embedding",
                details={"text_length": len(text), "error": str(e)},
            ) from e

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for many texts, one model call per batch.

        Returns:
            list[list[float]]: Vectors aligned with the input order.

        Raises:
            EmbeddingError: If embedding generation fails.
        """
        if not texts:
            return []

        self.logger.info(
            "Starting batch embedding",
            text_count=len(texts),
            batch_size=self._batch_size,
        )

        vectors: list[list[float]] = []
        try:
            for i in range(0, len(texts), self._batch_size):
                batch = texts[i:i + self._batch_size]
                vectors.extend(self.model.embed_documents(batch))
                self.logger.debug(
                    "Batch processed",
                    batch_start=i,
                    batch_size=len(batch),
                    total_processed=len(vectors),
                )
        except EmbeddingError:
            raise
        except Exception as e:
            self.logger.error(
                "Failed to embed texts",
                text_count=len(texts),
                embedded=len(vectors),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EmbeddingError(
                message="Failed to generate text embeddings",
                details={"text_count": len(texts), "error": str(e)},
            ) from e

        self.logger.info(
            "Batch embedding completed",
            text_count=len(texts),
            embedding_dim=len(vectors[0]) if vectors else 0,
        )
        return vectors
