"""Runtime configuration for the groundedqa services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from groundedqa.resilience.breaker import CircuitConfig
from groundedqa.resilience.retry import RetryConfig


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="groundedqa_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    # Metadata store / uploads
    database_url: str = "sqlite:///./data/groundedqa.db"
    upload_dir: Path = Path("./data/uploads")

    # Vector store
    chroma_persist_dir: Path | None = Path("./.chroma")
    chroma_host: str | None = None
    chroma_port: int = Field(default=8000, ge=1, le=65535)
    chroma_ssl: bool = False

    # Embeddings
    embedding_provider: Literal["hash", "huggingface"] = "hash"
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dim: int = Field(default=384, gt=0)
    embedding_device: str | None = None

    # Generation
    generator_provider: Literal["template", "openai_compatible", "transformers"] = "template"
    generator_model: str = "Qwen/Qwen2.5-1.8B-Instruct"
    generator_endpoint: str | None = None
    generator_api_key: str | None = None
    generator_max_new_tokens: int = Field(default=1024, gt=0)
    generator_temperature: float = Field(default=0.3, ge=0.0, le=1.0)

    # Chunking and retrieval
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    retrieval_top_k: int = Field(default=5, ge=1)
    relevance_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    context_token_budget: int = Field(default=3000, ge=1)

    # Upload limits
    max_pdf_size_mb: int = Field(default=10, gt=0)
    max_docx_size_mb: int = Field(default=10, gt=0)
    max_txt_size_mb: int = Field(default=5, gt=0)

    # Resilience
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0.0)
    retry_backoff_factor: float = Field(default=2.0, gt=1.0)
    retry_attempt_timeout_seconds: float | None = Field(default=30.0, gt=0.0)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_reset_timeout_seconds: float = Field(default=60.0, gt=0.0)
    breaker_monitoring_period_seconds: float = Field(default=60.0, gt=0.0)
    request_timeout_seconds: float = Field(default=120.0, gt=0.0)
    http_timeout_seconds: float = Field(default=30.0, gt=0.0)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            raise ValueError("retry_max_delay_seconds must be >= retry_base_delay_seconds")
        if self.generator_provider == "openai_compatible" and not self.generator_endpoint:
            raise ValueError("generator_endpoint is required for the openai_compatible provider")
        return self

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
            backoff_factor=self.retry_backoff_factor,
            attempt_timeout=self.retry_attempt_timeout_seconds,
        )

    def circuit_config(self) -> CircuitConfig:
        return CircuitConfig(
            failure_threshold=self.breaker_failure_threshold,
            reset_timeout=self.breaker_reset_timeout_seconds,
            monitoring_period=self.breaker_monitoring_period_seconds,
        )

    @property
    def upload_size_limits(self) -> dict[str, int]:
        mb = 1024 * 1024
        return {
            "pdf": self.max_pdf_size_mb * mb,
            "docx": self.max_docx_size_mb * mb,
            "txt": self.max_txt_size_mb * mb,
        }


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
