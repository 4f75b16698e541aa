"""
Core configuration settings for the docrag service.
"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
import json
from pathlib import Path


DEFAULT_ALLOWED_MIME_TYPES = [
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
    "text/plain",
    "text/csv",
    "text/markdown",
    "text/x-markdown",
    "application/json",
]


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Database
    database_url: str = "sqlite:///./data/docrag.db"

    # OpenAI
    openai_api_key: str = ""
    # LLM configuration
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1000

    # Embeddings
    embedding_provider: str = "openai"  # openai, fake
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 256  # only used by the fake provider
    embedding_batch_size: int = 64

    # Vector Database
    chroma_persist_directory: str = "./chroma_db"
    collection_strategy: str = "per_owner"  # per_owner, shared
    shared_collection_name: str = "user-docs"

    # File Storage
    upload_dir: str = "./uploads"
    max_file_size: int = 52428800  # 50MB (50 * 1024 * 1024)
    allowed_mime_types: List[str] = DEFAULT_ALLOWED_MIME_TYPES

    # Job queue (Celery)
    broker_url: str = "sqla+sqlite:///./data/celery-broker.sqlite"
    result_backend: str = "db+sqlite:///./data/celery-results.sqlite"
    job_concurrency: int = 2
    job_max_attempts: int = 3
    job_backoff_delay_ms: int = 1000
    job_worker_pool: str = "threads"  # threads, prefork, solo
    job_always_eager: bool = False  # run jobs inline, for development without a worker
    job_result_retention_seconds: int = 24 * 60 * 60
    job_lease_seconds: int = 15 * 60
    job_worker_ping_timeout: float = 1.0

    # Chunking and retrieval
    chunk_size: int = 1000
    chunk_overlap: int = 200
    retrieval_top_k: int = 5
    dedup_by_content_hash: bool = True

    # CORS
    allowed_origins: List[str] = ["*"]

    # Development
    debug: bool = False
    log_level: str = "INFO"

    # Error Logging
    error_logging: int = 1  # 1 = local file, 2 = Sentry
    error_log_dir: str = "./logs"
    sentry_dsn: str = ""

    # API
    api_prefix: str = "/api"
    project_name: str = "docrag"
    port: int = 7000

    @field_validator("allowed_origins", "allowed_mime_types", mode="before")
    def assemble_list(cls, v):
        if isinstance(v, str):
            # Handle both comma-separated and JSON array formats
            if v.startswith('[') and v.endswith(']'):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("collection_strategy")
    def check_collection_strategy(cls, v):
        if v not in ("per_owner", "shared"):
            raise ValueError("collection_strategy must be 'per_owner' or 'shared'")
        return v

    @field_validator("embedding_provider")
    def check_embedding_provider(cls, v):
        if v not in ("openai", "fake"):
            raise ValueError("embedding_provider must be 'openai' or 'fake'")
        return v

    @field_validator("job_worker_pool")
    def check_job_worker_pool(cls, v):
        if v not in ("threads", "prefork", "solo"):
            raise ValueError("job_worker_pool must be 'threads', 'prefork' or 'solo'")
        return v

    @field_validator("job_concurrency", "job_max_attempts", "job_lease_seconds", "chunk_size", "retrieval_top_k")
    def check_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("upload_dir", "chroma_persist_directory", "error_log_dir")
    def create_dir(cls, v):
        """Create the directory if it doesn't exist."""
        Path(v).mkdir(parents=True, exist_ok=True)
        return v

    @model_validator(mode="after")
    def check_chunk_overlap(self):
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        return self

    @property
    def embedding_model_id(self) -> str:
        """Identifier recorded on documents for the embedding function in use."""
        if self.embedding_provider == "fake":
            return f"fake-{self.embedding_dimension}"
        return self.embedding_model

    # Pydantic v2 settings config
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Settings read once per process; pass the instance on explicitly."""
    return Settings()
