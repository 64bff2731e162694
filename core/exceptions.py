"""Custom exceptions for the Housing Standards Advisor."""

from typing import Any, Optional


class AdvisorException(Exception):
    """Base exception for the advisor application."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AdvisorException):
    """Raised when there's a configuration error."""

    pass


class IngestError(AdvisorException):
    """Raised when the source corpus is missing, empty or unreadable."""

    pass


class VectorIndexError(AdvisorException):
    """Raised when vector index storage operations fail."""

    pass


class IndexLoadError(VectorIndexError):
    """Raised when a persisted index cannot be restored and must be rebuilt."""

    pass


class SearchError(AdvisorException):
    """Raised when vector search fails."""

    pass


class EmbeddingError(AdvisorException):
    """Raised when embedding generation fails."""

    pass


class GenerationError(AdvisorException):
    """Raised when both generation backends fail or a terminal error occurs."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, details)
        self.last_error = last_error


class ClassificationParseError(AdvisorException):
    """Raised when a classifier response is outside its closed answer set."""

    pass


class HistoryError(AdvisorException):
    """Raised when chat history storage fails."""

    pass


class RequestTimeoutError(AdvisorException):
    """Raised when a request exceeds its overall deadline."""

    pass
