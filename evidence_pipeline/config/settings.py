"""Application settings loaded from environment variables via pydantic-settings.

Values come from, in priority order:

  1. Environment variables, e.g. ``OPENROUTER_API_KEY=sk-or-...``
  2. A ``.env`` file in the working directory (local development)
  3. The defaults declared below

Field names map to upper-cased environment variables automatically
(``embedding_batch_size`` <- ``EMBEDDING_BATCH_SIZE``).

The model is frozen: a ``Settings`` instance is built once at startup and
handed to every provider and service constructor.  Nothing in the package
reads ``os.environ`` for configuration after that point.
"""

from __future__ import annotations

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from evidence_pipeline.utils.errors import ConfigurationError
from evidence_pipeline.utils.retry import RetryPolicy


class Settings(BaseSettings):
    """Evidence pipeline settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # === Embedding / completion providers ===
    # Empty key = "not configured"; the factory falls back to the mock
    # providers, which keep local development working without credentials.
    openrouter_api_key: str = ""
    openai_api_key: str = ""
    openai_base_url: str = "https://openrouter.ai/api/v1"
    anthropic_api_key: str = ""

    embedding_provider: str = "auto"  # auto | openai | mock
    embedding_model: str = "openai/text-embedding-3-small"
    embedding_dimension: int = 1536
    mock_embedding_dimension: int = 768

    completion_provider: str = "auto"  # auto | openai | anthropic | mock
    summary_model: str = "openai/gpt-4o-mini"
    drafting_model: str = "openai/gpt-4o-mini"
    anthropic_model: str = "claude-sonnet-4-20250514"
    completion_timeout_s: float = 60.0

    # === Ingestion ===
    chunk_target_tokens: int = 800
    chunk_min_tokens: int = 50
    embedding_batch_size: int = 50
    embedding_batch_pause_ms: int = 100
    store_batch_limit: int = 400
    summary_input_chars: int = 8000
    summary_max_tokens: int = 500
    summary_temperature: float = 0.1
    ingestion_concurrency: int = 3

    # === Retry policies ===
    # Delays in seconds.  Embeddings back off faster than completions.
    embedding_max_retries: int = 3
    embedding_base_delay_s: float = 1.0
    embedding_max_delay_s: float = 15.0
    completion_max_retries: int = 3
    completion_base_delay_s: float = 2.0
    completion_max_delay_s: float = 15.0
    persistence_max_retries: int = 3
    persistence_base_delay_s: float = 0.5
    persistence_max_delay_s: float = 5.0
    backoff_multiplier: float = 2.0

    # === Retrieval ranking ===
    ranking_weight_semantic: float = 0.45
    ranking_weight_recency: float = 0.10
    ranking_weight_reliability: float = 0.15
    ranking_weight_contextual: float = 0.20
    ranking_weight_diversity: float = 0.10
    retrieval_default_top_k: int = 8
    retrieval_max_top_k: int = 15
    retrieval_max_per_source: int = 2
    recency_half_life_days: float = 365.0

    # === Document store ===
    store_backend: str = "memory"  # memory | sqlite
    sqlite_path: str = "data/evidence.db"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_ranges(self) -> Settings:
        if self.chunk_target_tokens <= self.chunk_min_tokens:
            raise ValueError("chunk_target_tokens must be greater than chunk_min_tokens")
        if self.embedding_batch_size < 1 or self.store_batch_limit < 1:
            raise ValueError("batch sizes must be positive")
        if self.embedding_provider not in {"auto", "openai", "mock"}:
            raise ValueError(f"unknown embedding_provider {self.embedding_provider!r}")
        if self.completion_provider not in {"auto", "openai", "anthropic", "mock"}:
            raise ValueError(f"unknown completion_provider {self.completion_provider!r}")
        if self.store_backend not in {"memory", "sqlite"}:
            raise ValueError(f"unknown store_backend {self.store_backend!r}")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def remote_api_key(self) -> str:
        """The key used for the OpenAI-compatible endpoint (OpenRouter first)."""
        return self.openrouter_api_key or self.openai_api_key

    def embedding_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.embedding_max_retries,
            base_delay=self.embedding_base_delay_s,
            max_delay=self.embedding_max_delay_s,
            backoff_multiplier=self.backoff_multiplier,
        )

    def completion_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.completion_max_retries,
            base_delay=self.completion_base_delay_s,
            max_delay=self.completion_max_delay_s,
            backoff_multiplier=self.backoff_multiplier,
        )

    def persistence_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.persistence_max_retries,
            base_delay=self.persistence_base_delay_s,
            max_delay=self.persistence_max_delay_s,
            backoff_multiplier=self.backoff_multiplier,
        )

    def get_available_completion_providers(self) -> list[str]:
        """Return completion provider names that have credentials configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.remote_api_key:
            providers.append("openai")
        providers.append("mock")
        return providers


def load_settings(**overrides: object) -> Settings:
    """Build :class:`Settings`, converting validation failures to ConfigurationError."""
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid configuration: {exc}") from exc
