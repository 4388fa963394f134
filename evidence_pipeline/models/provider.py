"""Result types returned by embedding providers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingUsage(BaseModel):
    """Token usage reported by an embedding backend for one request."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    def __add__(self, other: EmbeddingUsage) -> EmbeddingUsage:
        return EmbeddingUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class EmbeddingResult(BaseModel):
    """Vectors for one ``embed`` call, positionally aligned with the input texts."""

    model_config = ConfigDict(frozen=True)

    vectors: list[list[float]]
    model_id: str
    latency_ms: float = Field(default=0.0, ge=0.0)
    usage: EmbeddingUsage | None = None
