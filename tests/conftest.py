"""Shared pytest fixtures for the evidence pipeline test suite."""

from __future__ import annotations

import base64
from collections.abc import Callable

import fitz
import pytest

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.providers.embedding.mock_embedding_provider import MockEmbeddingProvider
from evidence_pipeline.providers.llm.mock_provider import MockLLMProvider
from evidence_pipeline.providers.store.memory_document_store import MemoryDocumentStore
from evidence_pipeline.services.source_service import SourceService

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Offline settings: mock providers, memory store, no completion backoff."""
    return Settings(
        openrouter_api_key="",
        openai_api_key="",
        anthropic_api_key="",
        embedding_provider="mock",
        completion_provider="mock",
        store_backend="memory",
        mock_embedding_dimension=64,
        completion_base_delay_s=0.0,
        persistence_base_delay_s=0.0,
    )


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def source_service(store: MemoryDocumentStore) -> SourceService:
    return SourceService(store)


@pytest.fixture
def mock_embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider(dimension=64)


@pytest.fixture
def mock_llm() -> MockLLMProvider:
    return MockLLMProvider()


# ---------------------------------------------------------------------------
# Sample content
# ---------------------------------------------------------------------------

_SECTION_BODIES = {
    "Introduction": (
        "Coral reefs cover less than one percent of the ocean floor yet support a quarter "
        "of all marine species. Over the last four decades repeated marine heatwaves have "
        "caused mass bleaching events across the tropics. This review gathers field surveys "
        "and laboratory studies to explain why some reefs recover while others collapse."
    ),
    "Methods": (
        "We compiled survey transects from forty reef sites monitored between 1998 and 2020. "
        "Each transect recorded live coral cover, bleaching prevalence and water temperature. "
        "Degree heating weeks were computed from satellite sea surface temperature products "
        "and matched to every survey by date and location."
    ),
    "Results": (
        "Bleaching prevalence rose sharply once heat stress exceeded eight degree heating weeks. "
        "Sites with strong tidal mixing lost 35 percent less coral cover than sheltered lagoons. "
        "According to the recovery surveys, reefs with intact herbivore populations regained "
        "their pre-bleaching cover within a decade."
    ),
    "Discussion": (
        "However, recovery windows are shrinking as heatwaves become more frequent. Therefore "
        "local management that protects herbivores and water quality buys time but cannot "
        "replace global emission cuts. Evidence suggests that thermal tolerance varies between "
        "coral lineages, which may shape the composition of future reefs."
    ),
}


def sample_sections(count: int) -> str:
    """Text with *count* numbered sections; each section becomes one chunk."""
    parts: list[str] = []
    for number, (heading, body) in enumerate(list(_SECTION_BODIES.items())[:count], start=1):
        parts.append(f"{number}. {heading}\n\n{body}")
    return "\n\n".join(parts)


@pytest.fixture
def three_section_text() -> str:
    return sample_sections(3)


@pytest.fixture
def four_section_text() -> str:
    return sample_sections(4)


@pytest.fixture
def sectioned_text() -> Callable[[int], str]:
    return sample_sections


def make_pdf_bytes(pages: list[str]) -> bytes:
    """Build an in-memory PDF with one line of text per page."""
    doc = fitz.open()
    try:
        for text in pages:
            page = doc.new_page()
            page.insert_text((72, 72), text)
        return doc.tobytes()
    finally:
        doc.close()


def make_pdf_base64(pages: list[str]) -> str:
    return base64.b64encode(make_pdf_bytes(pages)).decode("ascii")


@pytest.fixture
def pdf_base64() -> Callable[[list[str]], str]:
    """Factory: page texts -> base64-encoded PDF."""
    return make_pdf_base64
