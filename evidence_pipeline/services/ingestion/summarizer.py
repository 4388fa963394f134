"""Structured source summaries via the completion provider.

The model is asked for strict JSON ``{"abstract", "bulletPoints"}``.
Parsing is explicitly two-stage:

1. **Strict** -- ``json.loads`` on the raw response, validated against
   :class:`SourceSummary`.
2. **Repair** -- strip markdown fences, cut the outermost ``{...}``,
   normalize smart quotes and drop trailing commas, then parse again.

If both stages fail a :class:`SummaryMalformedError` is raised internally
and :meth:`SourceSummarizer.summarize` substitutes a deterministic
fallback summary.  Completion failures are treated the same way: a
summary problem never aborts ingestion.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Awaitable, Callable

import structlog
from pydantic import ValidationError

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.interfaces.llm_provider import ILLMProvider
from evidence_pipeline.models.source import SourceMetadata, SourceSummary
from evidence_pipeline.utils.errors import PipelineError, SummaryMalformedError
from evidence_pipeline.utils.retry import RetryContext, with_retry

logger = structlog.get_logger(logger_name=__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

_MAX_BULLETS = 10
_FALLBACK_ABSTRACT_CHARS = 300

_SYSTEM_PROMPT = """\
You are an expert academic research assistant. Your task is to create \
high-quality summaries of academic sources that will help thesis writers \
understand and cite the content effectively.

Guidelines:
- Write a concise but comprehensive abstract (2-4 sentences)
- Extract 4-6 key insights that would be useful for thesis research
- Focus on methodology, findings, arguments, and implications
- Use clear, academic language
- Return ONLY valid JSON in the specified format"""

_USER_PROMPT_TEMPLATE = """\
Analyze this academic source and create a structured summary.

Source Title: {title}
Author: {author}
Word Count: ~{word_count} words

Content:
{content}

Return JSON with this exact structure:
{{
  "abstract": "A concise 2-4 sentence summary of the main content and contributions",
  "bulletPoints": [
    "Key insight or finding #1",
    "Key insight or finding #2",
    "Key insight or finding #3",
    "Key insight or finding #4"
  ]
}}"""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _to_summary(data: Any) -> SourceSummary:
    if not isinstance(data, dict):
        raise SummaryMalformedError(message=f"Expected a JSON object, got {type(data).__name__}")
    try:
        return SourceSummary.model_validate(data)
    except ValidationError as exc:
        raise SummaryMalformedError(message=f"Summary JSON has the wrong shape: {exc}") from exc


def _repair(raw: str) -> str:
    text = raw.strip().translate(_SMART_QUOTES)
    fence = _JSON_FENCE_RE.search(text)
    if fence:
        text = fence.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def parse_summary(raw: str) -> SourceSummary:
    """Parse a model response into a :class:`SourceSummary`.

    Raises
    ------
    SummaryMalformedError
        When neither the strict parse nor the repaired parse succeeds.
    """
    try:
        return _to_summary(json.loads(raw))
    except (json.JSONDecodeError, SummaryMalformedError):
        pass

    repaired = _repair(raw)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError as exc:
        raise SummaryMalformedError(
            message=f"Summary response is not valid JSON after repair: {exc.msg}",
            context={"preview": raw[:200]},
        ) from exc

    # Over-long bullet lists are trimmed rather than rejected.
    if isinstance(data, dict) and isinstance(data.get("bulletPoints"), list):
        data["bulletPoints"] = data["bulletPoints"][:_MAX_BULLETS]
    return _to_summary(data)


def fallback_summary(excerpt: str, word_count: int) -> SourceSummary:
    """Deterministic summary used when the model output is unusable."""
    return SourceSummary(
        abstract=excerpt[:_FALLBACK_ABSTRACT_CHARS] + "...",
        bullet_points=[
            "Failed to generate structured summary",
            f"Source contains approximately {word_count} words",
            "Manual review recommended for key insights",
        ],
    )


# ---------------------------------------------------------------------------
# Summarizer
# ---------------------------------------------------------------------------

class SourceSummarizer:
    """Generates a :class:`SourceSummary` for extracted source text."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._llm = llm_provider
        self._settings = settings
        self._sleep = sleep
        self._retry_policy = settings.completion_retry_policy()

    async def summarize(
        self,
        text: str,
        metadata: SourceMetadata,
        retry_context: RetryContext | None = None,
    ) -> SourceSummary:
        """Summarize *text*; always returns a summary.

        Parameters
        ----------
        text:
            Full extracted text.  Only the first ``summary_input_chars``
            characters are sent to the model.
        metadata:
            Source metadata (title and author go into the prompt).
        retry_context:
            Correlation context for the completion call; transient
            failures are appended to its ``failures`` list.
        """
        excerpt = text[: self._settings.summary_input_chars]
        word_count = len(text.split())
        user_prompt = _USER_PROMPT_TEMPLATE.format(
            title=metadata.title or "Untitled",
            author=metadata.author or "Unknown",
            word_count=word_count,
            content=excerpt,
        )

        async def _complete() -> str:
            return await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=user_prompt,
                temperature=self._settings.summary_temperature,
                max_tokens=self._settings.summary_max_tokens,
                model=self._settings.summary_model,
            )

        ctx = retry_context or RetryContext(operation="summarize")
        try:
            raw = await with_retry(_complete, self._retry_policy, ctx, sleep=self._sleep)
        except PipelineError as exc:
            logger.warning(
                "summary_completion_failed",
                error_kind=exc.kind.value,
                error=str(exc),
                provider=self._llm.get_provider_name(),
            )
            return fallback_summary(excerpt, word_count)

        try:
            summary = parse_summary(raw)
        except SummaryMalformedError as exc:
            logger.warning("summary_malformed", error=exc.message, preview=raw[:200])
            return fallback_summary(excerpt, word_count)

        logger.debug(
            "summary_generated",
            bullets=len(summary.bullet_points),
            abstract_chars=len(summary.abstract or ""),
        )
        return summary
