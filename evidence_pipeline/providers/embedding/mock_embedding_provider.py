"""Deterministic local embedding provider.

Used whenever no embedding credentials are configured, and throughout the
test suite.  Vectors are built by feature hashing: every lower-cased word
is hashed with SHA-256 to a dimension and a sign, the counts are summed and
the result is normalized to unit length.  Texts that share vocabulary
therefore get a positive cosine similarity, which keeps retrieval
meaningful without a network call.
"""

from __future__ import annotations

import hashlib
import math
import re
import time

import structlog

from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.models.provider import EmbeddingResult, EmbeddingUsage

logger = structlog.get_logger(logger_name=__name__)

MOCK_MODEL_ID = "mock-embedding"

_WORD_RE = re.compile(r"\w+")


def hash_to_vector(text: str, dim: int) -> list[float]:
    """Return a deterministic unit vector of length *dim* for *text*."""
    values = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "little") % dim
        values[index] += 1.0 if digest[4] & 1 else -1.0

    if not any(values):
        # No word characters at all: seed every component from the raw text.
        raw = hashlib.sha256(text.encode("utf-8")).digest()
        while len(raw) < dim:
            raw += hashlib.sha256(raw).digest()
        values = [(b - 127.5) / 127.5 for b in raw[:dim]]

    magnitude = max(math.sqrt(sum(v * v for v in values)), 1e-10)
    return [v / magnitude for v in values]


class MockEmbeddingProvider(IEmbeddingProvider):
    """In-process deterministic embedding provider.

    Parameters
    ----------
    dimension:
        Length of every vector (default 768).
    """

    def __init__(self, dimension: int = 768) -> None:
        self._dimension = dimension

    async def embed(self, texts: list[str]) -> EmbeddingResult:
        start = time.perf_counter()
        vectors = [hash_to_vector(t, self._dimension) for t in texts]
        tokens = sum(max(1, len(t) // 4) for t in texts)
        logger.debug("mock_embedding_batch", batch_size=len(texts), dimension=self._dimension)
        return EmbeddingResult(
            vectors=vectors,
            model_id=MOCK_MODEL_ID,
            latency_ms=(time.perf_counter() - start) * 1000,
            usage=EmbeddingUsage(prompt_tokens=tokens, total_tokens=tokens),
        )

    async def embed_single(self, text: str) -> list[float]:
        return hash_to_vector(text, self._dimension)

    def get_dimension(self) -> int:
        return self._dimension

    def get_model_id(self) -> str:
        return MOCK_MODEL_ID

    def get_provider_name(self) -> str:
        return "mock_embedding"

    def is_available(self) -> bool:
        return True

    def is_mock(self) -> bool:
        return True
