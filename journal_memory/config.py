"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from journal_memory.models.embedding import EMBEDDING_DIMENSION, MODEL_VERSION_PATTERN


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Storage
    db_path: str = Field(
        default="./data/journal.db", description="SQLite database file path for documents"
    )
    queue_db_path: str = Field(
        default="./data/index_queue.db",
        description="SQLite database file path for the durable indexing queue",
    )

    # Embedding (Local model using fastembed)
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Local embedding model name (fastembed)",
    )
    embedding_model_version: str = Field(
        default="all-MiniLM-L6-v2@v0",
        pattern=MODEL_VERSION_PATTERN,
        description="Version tag stored on every embedding (<model-name>@v<N>)",
    )
    fastembed_cache_dir: str = Field(
        default="./data/models", description="Directory to cache embedding model"
    )
    embedding_dimension: int = Field(
        default=EMBEDDING_DIMENSION,
        ge=1,
        description="Embedding vector dimension (384 for all-MiniLM-L6-v2)",
    )
    embedding_batch_size: int = Field(
        default=10, ge=1, le=256, description="Batch size for bulk embedding generation"
    )
    embedding_threads: int = Field(
        default=4, ge=1, le=64, description="Threads used by the embedding runtime"
    )

    # Search
    search_default_limit: int = Field(
        default=10, ge=1, le=100, description="Default maximum number of search results"
    )
    search_min_score: float = Field(
        default=0.0, ge=-1.0, le=1.0, description="Default minimum similarity score"
    )
    excerpt_max_length: int = Field(
        default=150, ge=20, description="Maximum excerpt length attached to search results"
    )

    # Theme analysis
    key_phrase_max_length: int = Field(
        default=40, ge=10, description="Maximum key phrase length used in insights"
    )
    theme_min_frequency: int = Field(
        default=3, ge=1, description="Minimum cluster size to count as a recurring theme"
    )
    theme_max_themes: int = Field(
        default=10, ge=1, le=50, description="Maximum number of themes returned"
    )
    theme_max_iterations: int = Field(
        default=10, ge=1, le=100, description="Maximum k-means iterations"
    )
    theme_summary_size: int = Field(
        default=5, ge=1, description="Number of themes included in the short summary"
    )
    theme_random_seed: int | None = Field(
        default=None, description="Seed for centroid initialization (None = nondeterministic)"
    )

    # Background maintenance
    maintenance_enabled: bool = Field(
        default=False, description="Run periodic queue drains and orphan sweeps"
    )
    maintenance_drain_interval_minutes: int = Field(
        default=5, ge=1, description="Minutes between scheduled queue drains"
    )
    maintenance_orphan_sweep_hours: int = Field(
        default=24, ge=1, description="Hours between scheduled orphan sweeps"
    )

    # OpenTelemetry
    otel_logging_enabled: bool = Field(default=False, description="Enable OpenTelemetry logging")
    otel_tracing_enabled: bool = Field(default=False, description="Enable OpenTelemetry tracing")
    otel_endpoint: str = Field(
        default="http://localhost:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(
        default="journal-memory", description="Service name for OpenTelemetry"
    )
    otel_service_version: str = Field(
        default="1.0.0", description="Service version for OpenTelemetry"
    )
    otel_log_full_results: bool = Field(
        default=False,
        description="Include full query text and results in telemetry logs",
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


# Default config instance
config = AppConfig()
