"""Unit tests for the TextChunker: heading-aware, paragraph-preserving chunking."""

from __future__ import annotations

import pytest

from evidence_pipeline.services.ingestion.chunker import TextChunker, estimate_tokens, is_heading

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _paragraph(index: int) -> str:
    sentence = f"Paragraph {index} discusses sediment transport in braided rivers across many seasons."
    return " ".join([sentence] * 3)


def _long_text(paragraphs: int = 12) -> str:
    return "\n\n".join(_paragraph(i) for i in range(paragraphs))


# ---------------------------------------------------------------------------
# Token estimation
# ---------------------------------------------------------------------------


class TestEstimateTokens:
    def test_empty_is_zero(self) -> None:
        assert estimate_tokens("") == 0

    def test_deterministic(self) -> None:
        text = "The same input always yields the same estimate."
        assert estimate_tokens(text) == estimate_tokens(text)

    def test_grows_with_text(self) -> None:
        assert estimate_tokens("one two three four") < estimate_tokens("one two three four " * 5)


# ---------------------------------------------------------------------------
# Heading detection
# ---------------------------------------------------------------------------


class TestIsHeading:
    @pytest.mark.parametrize(
        "line",
        ["1. Introduction", "2.3 Sampling Design", "CHAPTER 2", "Appendix A", "METHODS",
         "Results and Discussion"],
    )
    def test_headings(self, line: str) -> None:
        assert is_heading(line) is True

    @pytest.mark.parametrize(
        "line",
        [
            "1. We measured the flux.",
            "This is an ordinary sentence.",
            "",
            "a lowercase fragment without capitals",
        ],
    )
    def test_non_headings(self, line: str) -> None:
        assert is_heading(line) is False


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class TestEmptyInput:
    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
    def test_empty_or_whitespace_returns_empty_list(self, text: str) -> None:
        assert TextChunker().chunk(text) == []


class TestHeadings:
    def test_each_heading_starts_a_chunk(self, three_section_text: str) -> None:
        chunks = TextChunker().chunk(three_section_text)

        assert len(chunks) == 3
        assert [c.heading for c in chunks] == ["1. Introduction", "2. Methods", "3. Results"]
        assert chunks[0].text.startswith("1. Introduction")

    def test_heading_propagates_to_continuation_chunks(self) -> None:
        text = "1. Background\n\n" + _long_text(10)
        chunks = TextChunker(target_tokens=200, min_tokens=20).chunk(text)

        assert len(chunks) > 1
        assert all(c.heading == "1. Background" for c in chunks)

    def test_stacked_headings_stay_with_body(self) -> None:
        text = "CHAPTER 2\n\n2.1 Scope\n\n" + _paragraph(0)
        chunks = TextChunker(min_tokens=5).chunk(text)

        assert len(chunks) == 1
        assert chunks[0].heading == "2.1 Scope"
        assert chunks[0].text.startswith("CHAPTER 2")


class TestBudget:
    def test_chunks_respect_budget(self) -> None:
        chunks = TextChunker(target_tokens=200, min_tokens=20).chunk(_long_text(12))

        assert len(chunks) > 1
        assert all(c.approx_token_count <= 200 for c in chunks)

    def test_per_call_budget_override(self) -> None:
        chunker = TextChunker(target_tokens=800, min_tokens=20)
        assert len(chunker.chunk(_long_text(12), target_tokens=150)) > len(
            chunker.chunk(_long_text(12))
        )

    def test_paragraphs_are_not_split_when_they_fit(self) -> None:
        text = _long_text(8)
        paragraphs = [p for p in text.split("\n\n")]
        chunks = TextChunker(target_tokens=200, min_tokens=20).chunk(text)

        for chunk in chunks:
            for part in chunk.text.split("\n\n"):
                assert part in paragraphs

    def test_oversized_paragraph_splits_at_sentences(self) -> None:
        sentences = [f"Dr. Smith measured the flux in sample {i}." for i in range(60)]
        chunks = TextChunker(target_tokens=100, min_tokens=10).chunk(" ".join(sentences))

        assert len(chunks) > 1
        for chunk in chunks:
            assert not chunk.text.startswith("Smith")
            assert chunk.text.endswith(".")

    def test_runt_is_merged_into_previous_chunk(self) -> None:
        text = _long_text(3) + "\n\nNOTES\n\nShort tail."
        chunks = TextChunker(target_tokens=800, min_tokens=50).chunk(text)

        assert len(chunks) == 1
        assert chunks[0].text.endswith("NOTES\n\nShort tail.")


class TestPages:
    def test_page_range_from_form_feeds(self) -> None:
        text = "First page discusses tides at length.\fSecond page continues the discussion."
        chunks = TextChunker(min_tokens=1).chunk(text)

        assert len(chunks) == 1
        assert chunks[0].page_range == (1, 2)

    def test_no_page_range_without_form_feeds(self, three_section_text: str) -> None:
        chunks = TextChunker().chunk(three_section_text)
        assert all(c.page_range is None for c in chunks)


class TestDeterminism:
    def test_same_input_same_chunks(self, three_section_text: str) -> None:
        chunker = TextChunker(target_tokens=120, min_tokens=10)
        assert chunker.chunk(three_section_text) == chunker.chunk(three_section_text)

    def test_invalid_budget_rejected(self) -> None:
        with pytest.raises(ValueError):
            TextChunker(target_tokens=0)
