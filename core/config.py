"""Configuration module using pydantic-settings for environment validation."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All required environment variables must be set for the application to start.
    Use a .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ============================================
    # Application Settings
    # ============================================
    APP_NAME: str = Field(default="Housing Standards Advisor", description="Application name")
    APP_VERSION: str = Field(default="0.1.0", description="Application version")
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    DEBUG: bool = Field(default=False, description="Debug mode flag")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # ============================================
    # API Keys (Required)
    # ============================================
    GROQ_API_KEY: str = Field(
        ...,
        description="Groq API key for LLM access",
        min_length=1,
    )

    # ============================================
    # Corpus & Index Storage
    # ============================================
    CORPUS_DIR: Path = Field(
        default=Path("data/corpus"),
        description="Directory holding the regulatory text corpus (read-only input)",
    )
    CORPUS_GLOB: str = Field(
        default="*.txt",
        description="Glob pattern selecting corpus files inside CORPUS_DIR",
    )
    INDEX_DIR: Path = Field(
        default=Path("data/index"),
        description="Directory holding the durable vector index artifact",
    )
    INDEX_COLLECTION_NAME: str = Field(
        default="housing_standards",
        description="Qdrant collection name for storing chunk embeddings",
    )

    # ============================================
    # Embedding Model Settings
    # ============================================
    EMBEDDING_MODEL_NAME: str = Field(
        default="sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
        description="HuggingFace embedding model name",
    )
    EMBEDDING_DIMENSION: int = Field(
        default=384,
        description="Embedding vector dimension",
        ge=1,
    )
    EMBEDDING_BATCH_SIZE: int = Field(
        default=32,
        description="Number of chunks embedded per model call during index builds",
        ge=1,
    )

    # ============================================
    # Chunking Settings
    # ============================================
    CHUNK_SIZE: int = Field(
        default=1000,
        description="Maximum chunk size in characters",
        ge=100,
        le=10000,
    )
    CHUNK_OVERLAP: int = Field(
        default=300,
        description="Overlap between chunks in characters",
        ge=0,
    )

    # ============================================
    # Retrieval Settings
    # ============================================
    RETRIEVAL_MODE: Literal["hybrid", "passthrough"] = Field(
        default="hybrid",
        description="Retrieval strategy: hybrid keyword+vector search or no retrieval",
    )
    TOP_K_RESULTS: int = Field(
        default=10,
        description="Vector candidates per question; the index is queried for twice this many",
        ge=1,
        le=50,
    )
    MIN_TERM_LENGTH: int = Field(
        default=3,
        description="Shortest question token kept as a keyword term",
        ge=1,
    )
    MAX_CONTEXT_CHARS: int = Field(
        default=20000,
        description="Hard character budget of the assembled context",
        ge=100,
    )
    TOPIC_RULES_PATH: Optional[Path] = Field(
        default=None,
        description="Optional JSON file replacing the built-in topic rules",
    )
    BASELINE_LAW_DOCUMENTS: list[str] = Field(
        default_factory=lambda: ["law_housing_relations"],
        description="Statutory documents always searched for legal/definition questions",
    )

    # ============================================
    # Generation Settings
    # ============================================
    CHAT_PRIMARY_MODEL: str = Field(
        default="llama-3.3-70b-versatile",
        description="Groq model answering user questions",
    )
    CHAT_SECONDARY_MODEL: str = Field(
        default="llama-3.1-8b-instant",
        description="Groq model used once when the primary keeps failing",
    )
    PROBE_PRIMARY_MODEL: str = Field(
        default="llama-3.1-8b-instant",
        description="Groq model for intent and language probes",
    )
    PROBE_SECONDARY_MODEL: str = Field(
        default="llama-3.3-70b-versatile",
        description="Fallback Groq model for intent and language probes",
    )
    GENERATION_TEMPERATURE: float = Field(
        default=0.1,
        description="Sampling temperature for answers",
        ge=0.0,
        le=2.0,
    )
    GENERATION_MAX_TOKENS: int = Field(
        default=2048,
        description="Maximum tokens in a generated answer",
        ge=1,
    )
    GENERATION_MAX_RETRIES: int = Field(
        default=3,
        description="Attempts on the primary backend before switching to the secondary",
        ge=1,
    )
    GENERATION_BACKOFF_BASE_SECONDS: float = Field(
        default=1.0,
        description="Backoff multiplier; attempt i waits base * 2**i seconds",
        ge=0.0,
    )
    TRANSIENT_STATUS_CODES: list[int] = Field(
        default_factory=lambda: [503],
        description="Backend status codes treated as transient (retryable)",
    )
    REQUEST_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        description="Optional overall deadline for one answer() call",
        gt=0,
    )

    # ============================================
    # Chat History
    # ============================================
    HISTORY_BACKEND: Literal["memory", "redis"] = Field(
        default="memory",
        description="Chat history storage backend",
    )
    REDIS_URL: Optional[str] = Field(
        default=None,
        description="Redis connection URL (required for the redis history backend)",
    )
    HISTORY_MAX_TURNS: int = Field(
        default=200,
        description="Turns kept per user and category",
        ge=1,
    )

    @field_validator("CHUNK_OVERLAP")
    @classmethod
    def validate_chunk_overlap(cls, v: int, info) -> int:
        """Ensure chunk overlap is less than chunk size."""
        chunk_size = info.data.get("CHUNK_SIZE", 1000)
        if v >= chunk_size:
            raise ValueError(
                f"CHUNK_OVERLAP ({v}) must be less than CHUNK_SIZE ({chunk_size})"
            )
        return v

    @field_validator("REDIS_URL")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Basic URL validation."""
        if v is not None and not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(
                "URL must start with redis://, rediss://, or unix://"
            )
        return v

    @model_validator(mode="after")
    def validate_history_backend(self) -> "Settings":
        """The redis history backend needs a connection URL."""
        if self.HISTORY_BACKEND == "redis" and not self.REDIS_URL:
            raise ValueError("REDIS_URL is required when HISTORY_BACKEND is 'redis'")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required environment variables are missing.
    """
    return Settings()


# Convenience export for direct import
settings = get_settings()
