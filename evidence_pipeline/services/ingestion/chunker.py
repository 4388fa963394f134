"""Heading-aware text chunking with paragraph boundary preservation.

Splits extracted source text into :class:`~evidence_pipeline.models.source.TextChunk`
objects sized for embedding (800 approximate tokens by default).

The algorithm:

1. **Pages** -- Form feeds (``\\f``, emitted by PDF extraction between
   pages) are tracked so each chunk can carry a 1-based ``page_range``.
2. **Paragraphs** -- Text is split on blank lines.  Chunk boundaries only
   fall between paragraphs unless a paragraph is itself too large.
3. **Headings** -- Numbered section markers (``1.``, ``2.3``), chapter /
   part / section / appendix markers, short ALL-CAPS lines and short
   Title-Case lines start a new chunk.  The heading stays in the text and
   is attached as metadata to every chunk that follows it, until the next
   heading.
4. **Long paragraphs** -- A paragraph estimated above 80% of the budget is
   split at sentence boundaries with an abbreviation-aware splitter that
   avoids breaking on "Dr.", "et al.", "e.g.", etc.
5. **Runt merge** -- Chunks under ``min_tokens`` are merged into the
   preceding chunk (the first chunk merges forward instead).

Token counts come from :func:`estimate_tokens`, a deterministic
word/character blend.  It is an approximation, not a tokenizer: treat the
numbers as a budget heuristic and never as exact model token counts.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

import structlog

from evidence_pipeline.models.source import TextChunk

logger = structlog.get_logger(logger_name=__name__)

# Blend constants: English prose averages ~1.3 tokens per word and
# ~4 characters per token.  The estimate is the mean of both views.
_TOKENS_PER_WORD = 1.3
_TOKENS_PER_CHAR = 0.25

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Vol",
        "No",
        "Fig",
        "Eq",
        "Ref",
        "Ch",
        "vs",
        "etc",
        "al",
        "approx",
        "cf",
        "ca",
        "pp",
        "e.g",
        "i.e",
    }
)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
_NUMBERED_HEADING_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3})*\.?\s+[A-Z]")
_BARE_NUMBER_RE = re.compile(r"^\d{1,3}(?:\.\d{1,3})*\.$")
_MARKER_HEADING_RE = re.compile(
    r"^(?:chapter|part|section|appendix)\s+[\w.]+", re.IGNORECASE
)
_TERMINAL_PUNCTUATION = (".", ",", ";", ":", "!", "?")
_MINOR_WORDS = frozenset(
    {"a", "an", "and", "as", "at", "but", "by", "for", "from", "in", "of", "on", "or", "the", "to", "vs", "with"}
)
_MAX_HEADING_WORDS = 12
_MAX_TITLE_CASE_WORDS = 8


def estimate_tokens(text: str) -> int:
    """Approximate token count for *text* (word/character blend, rounded up)."""
    if not text:
        return 0
    words = len(text.split())
    return math.ceil((words * _TOKENS_PER_WORD + len(text) * _TOKENS_PER_CHAR) / 2)


def is_heading(line: str) -> bool:
    """Return ``True`` if *line* looks like a section heading."""
    line = line.strip()
    if not line or "\n" in line:
        return False
    words = line.split()
    if len(words) > _MAX_HEADING_WORDS:
        return False

    if _MARKER_HEADING_RE.match(line):
        return True
    if _NUMBERED_HEADING_RE.match(line) or _BARE_NUMBER_RE.match(line):
        # "1. Introduction" is a heading; "1. We measured the flux." is a list item.
        return not line.endswith(_TERMINAL_PUNCTUATION) or _BARE_NUMBER_RE.match(line) is not None
    if line.endswith(_TERMINAL_PUNCTUATION):
        return False

    letters = [c for c in line if c.isalpha()]
    if len(letters) >= 2 and line == line.upper():
        return True

    if len(words) <= _MAX_TITLE_CASE_WORDS and words[0][:1].isupper():
        significant = [w for w in words[1:] if w.lower() not in _MINOR_WORDS]
        return all(w[:1].isupper() or not w[:1].isalpha() for w in significant)
    return False


@dataclass
class _Unit:
    """One paragraph or sentence piece waiting to be packed into a chunk."""

    text: str
    tokens: int
    page: int | None
    joiner: str = "\n\n"


@dataclass
class _Draft:
    units: list[_Unit] = field(default_factory=list)
    heading: str | None = None

    @property
    def tokens(self) -> int:
        return sum(u.tokens for u in self.units)

    def render(self) -> str:
        parts: list[str] = []
        for i, unit in enumerate(self.units):
            if i:
                parts.append(unit.joiner)
            parts.append(unit.text)
        return "".join(parts)

    def page_range(self) -> tuple[int, int] | None:
        pages = [u.page for u in self.units if u.page is not None]
        return (min(pages), max(pages)) if pages else None


class TextChunker:
    """Splits text into heading-aware chunks bounded by an approximate token budget.

    Parameters
    ----------
    target_tokens:
        Target maximum approximate token count per chunk (default 800).
    min_tokens:
        Chunks below this floor are merged into a neighbour (default 50).
    sentence_split_ratio:
        Paragraphs estimated above ``target_tokens * sentence_split_ratio``
        are split into sentences before packing (default 0.8).
    """

    def __init__(
        self,
        target_tokens: int = 800,
        min_tokens: int = 50,
        sentence_split_ratio: float = 0.8,
    ) -> None:
        if target_tokens <= 0:
            raise ValueError("target_tokens must be positive")
        self._target_tokens = target_tokens
        self._min_tokens = min_tokens
        self._sentence_split_ratio = sentence_split_ratio

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, target_tokens: int | None = None) -> list[TextChunk]:
        """Split *text* into ordered :class:`TextChunk` objects.

        Parameters
        ----------
        text:
            The full text to chunk.  Form feeds mark page boundaries.
        target_tokens:
            Per-call override of the budget given at construction.

        Returns
        -------
        list[TextChunk]
            Chunks in document order.  Empty or whitespace-only input
            returns an empty list.
        """
        if not text or not text.strip():
            return []

        budget = target_tokens or self._target_tokens
        drafts = self._accumulate(self._paragraphs(text), budget)
        drafts = self._merge_runts(drafts)

        chunks = [
            TextChunk(
                text=rendered,
                approx_token_count=estimate_tokens(rendered),
                heading=draft.heading,
                page_range=draft.page_range(),
            )
            for draft in drafts
            if (rendered := draft.render().strip())
        ]

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            budget=budget,
            avg_tokens=sum(c.approx_token_count for c in chunks) // max(len(chunks), 1),
        )
        return chunks

    # ------------------------------------------------------------------
    # Paragraph / sentence splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _paragraphs(text: str) -> list[tuple[str, int | None]]:
        """Split *text* into ``(paragraph, page)`` pairs, discarding blanks.

        A paragraph whose first line is a heading is split so the heading
        becomes its own paragraph.
        """
        pages = text.split("\f")
        paged = len(pages) > 1
        result: list[tuple[str, int | None]] = []
        for page_no, page in enumerate(pages, start=1):
            for part in _PARAGRAPH_SPLIT_RE.split(page):
                part = part.strip()
                if not part:
                    continue
                first, _, rest = part.partition("\n")
                if rest.strip() and is_heading(first):
                    result.append((first.strip(), page_no if paged else None))
                    part = rest.strip()
                result.append((part, page_no if paged else None))
        return result

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        """Split *text* at sentence boundaries while respecting abbreviations.

        Periods after known abbreviations are masked with ``\\x00`` (same
        length, so indices stay aligned with the original text) before
        matching ``.``, ``!`` or ``?`` followed by whitespace.
        """
        masked = text
        for abbr in _ABBREVIATIONS:
            masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

        sentences: list[str] = []
        last = 0
        for match in re.finditer(r"[.!?](?:\s|$)", masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)
        return sentences if sentences else [text]

    @staticmethod
    def _wrap_words(sentence: str, budget: int) -> list[str]:
        """Hard-wrap a single sentence that alone exceeds *budget*."""
        pieces: list[str] = []
        current: list[str] = []
        for word in sentence.split():
            candidate = " ".join([*current, word])
            if current and estimate_tokens(candidate) > budget:
                pieces.append(" ".join(current))
                current = [word]
            else:
                current.append(word)
        if current:
            pieces.append(" ".join(current))
        return pieces

    def _units_for(self, paragraph: str, page: int | None, budget: int) -> list[_Unit]:
        tokens = estimate_tokens(paragraph)
        if tokens <= budget * self._sentence_split_ratio:
            return [_Unit(paragraph, tokens, page)]

        units: list[_Unit] = []
        for sentence in self._split_sentences(paragraph):
            pieces = (
                self._wrap_words(sentence, budget)
                if estimate_tokens(sentence) > budget
                else [sentence]
            )
            for piece in pieces:
                joiner = "\n\n" if not units else " "
                units.append(_Unit(piece, estimate_tokens(piece), page, joiner))
        return units

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate(self, paragraphs: list[tuple[str, int | None]], budget: int) -> list[_Draft]:
        """Greedily pack paragraphs (or their sentences) into drafts.

        A heading flushes the current draft, unless the draft holds
        nothing but headings, in which case the new heading replaces the
        label so stacked headings ("CHAPTER 2" then "2.1 Scope") stay
        together with the text beneath them.
        """
        drafts: list[_Draft] = []
        current = _Draft()
        heading: str | None = None
        only_headings = False

        for paragraph, page in paragraphs:
            if is_heading(paragraph):
                if current.units and not only_headings:
                    drafts.append(current)
                    current = _Draft()
                heading = paragraph
                current.heading = heading
                current.units.append(_Unit(paragraph, estimate_tokens(paragraph), page))
                only_headings = True
                continue

            for unit in self._units_for(paragraph, page, budget):
                if current.units and not only_headings and current.tokens + unit.tokens > budget:
                    drafts.append(current)
                    current = _Draft(heading=heading)
                    unit = _Unit(unit.text, unit.tokens, unit.page)
                current.units.append(unit)
                only_headings = False

        if current.units:
            drafts.append(current)
        return drafts

    def _merge_runts(self, drafts: list[_Draft]) -> list[_Draft]:
        """Merge drafts under the minimum token floor into their predecessor."""
        merged: list[_Draft] = []
        for draft in drafts:
            if merged and estimate_tokens(draft.render()) < self._min_tokens:
                previous = merged[-1]
                previous.units.extend(_Unit(u.text, u.tokens, u.page, u.joiner) for u in draft.units)
                if previous.heading is None:
                    previous.heading = draft.heading
                continue
            merged.append(draft)

        # The first draft has no predecessor; fold it forward instead.
        if len(merged) > 1 and estimate_tokens(merged[0].render()) < self._min_tokens:
            first, second = merged[0], merged[1]
            second.units = [*first.units, *second.units]
            second.heading = first.heading or second.heading
            merged = merged[1:]
        return merged
