"""End-to-end pipeline tests against the SQLite document store."""

from __future__ import annotations

import pytest
import pytest_asyncio

from evidence_pipeline.config.settings import Settings
from evidence_pipeline.main import build_components
from evidence_pipeline.models.source import (
    SourceCreateInput,
    SourceKind,
    SourceMetadata,
    SourceStatus,
    SourceUploadInput,
    UploadContentType,
)

_OWNER = "researcher"


@pytest_asyncio.fixture
async def components(settings: Settings, tmp_path):
    sqlite_settings = settings.model_copy(
        update={"store_backend": "sqlite", "sqlite_path": str(tmp_path / "pipeline.db")}
    )
    parts = build_components(sqlite_settings)
    await parts["store"].initialize()
    yield parts
    await parts["http_client"].aclose()
    await parts["store"].close()


class TestPipeline:
    @pytest.mark.asyncio
    async def test_pdf_source_is_citable_by_page(self, components, pdf_base64) -> None:
        sources = components["source_service"]
        source = await sources.create_source(
            _OWNER,
            SourceCreateInput(
                project_id="thesis",
                kind=SourceKind.PDF,
                metadata=SourceMetadata(title="Tidal Mixing", venue="Coral Reefs"),
                upload=SourceUploadInput(
                    content_type=UploadContentType.PDF,
                    data=pdf_base64(
                        ["Tidal mixing cools reef flats.", "Cooler flats bleach less often."]
                    ),
                    original_filename="tidal.pdf",
                ),
            ),
        )

        result = await components["ingestion_service"].ingest_source(_OWNER, source.id)

        assert result is not None
        assert result.status == SourceStatus.READY
        assert result.chunk_count == 1

        response = await components["retrieval_service"].retrieve(
            "thesis", "does tidal mixing reduce bleaching"
        )
        assert len(response.chunks) == 1
        top = response.chunks[0]
        assert top.citation == "pp. 1-2"
        assert top.source_title == "Tidal Mixing"

    @pytest.mark.asyncio
    async def test_reingest_and_delete(self, components, three_section_text) -> None:
        sources = components["source_service"]
        ingestion = components["ingestion_service"]
        upload = SourceUploadInput(data=three_section_text)
        source = await sources.create_source(
            _OWNER, SourceCreateInput(project_id="thesis", upload=upload)
        )

        await ingestion.ingest_source(_OWNER, source.id)
        await sources.upload_content(_OWNER, source.id, upload)
        second = await ingestion.ingest_source(_OWNER, source.id)

        assert second is not None and second.status == SourceStatus.READY
        assert len(await sources.get_chunks_for_project("thesis")) == 3
        stored = await sources.get_source(source.id)
        assert stored is not None and stored.chunk_count == 3

        assert await sources.delete_source(_OWNER, source.id) is True
        assert await sources.get_chunks_for_project("thesis") == []
        assert await sources.list_sources(_OWNER, "thesis") == []
