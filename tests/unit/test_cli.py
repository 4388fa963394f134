"""Tests for the command-line entry point."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from evidence_pipeline.cli.ingest import main, read_upload
from evidence_pipeline.models.source import SourceKind, UploadContentType


@pytest.fixture(autouse=True)
def _offline_env(monkeypatch) -> None:
    for key in ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.setenv(key, "")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "mock")
    monkeypatch.setenv("COMPLETION_PROVIDER", "mock")
    monkeypatch.setenv("MOCK_EMBEDDING_DIMENSION", "64")


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestReadUpload:
    def test_text_file(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.md"
        path.write_text("# Notes\n\nSome text.", encoding="utf-8")

        kind, upload = read_upload(path)

        assert kind == SourceKind.TEXT
        assert upload.content_type == UploadContentType.TEXT
        assert upload.data.startswith("# Notes")
        assert upload.original_filename == "notes.md"

    def test_pdf_is_base64(self, tmp_path: Path) -> None:
        path = tmp_path / "paper.PDF"
        path.write_bytes(b"%PDF-1.4 fake")

        kind, upload = read_upload(path)

        assert kind == SourceKind.PDF
        assert base64.b64decode(upload.data) == b"%PDF-1.4 fake"


class TestCommands:
    def test_no_command_prints_help(self, capsys) -> None:
        assert _run([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_ingest_then_query_then_list(self, tmp_path: Path, capsys, three_section_text) -> None:
        db = str(tmp_path / "cli.db")
        paper = tmp_path / "reefs.txt"
        paper.write_text(three_section_text, encoding="utf-8")

        assert _run(["--db", db, "ingest", "--project", "thesis", "--file", str(paper),
                     "--title", "Reef Recovery"]) == 0
        ingest_out = capsys.readouterr().out
        assert "READY" in ingest_out
        assert "Chunks:       3" in ingest_out

        assert _run(["--db", db, "query", "--project", "thesis", "--text", "coral bleaching",
                     "--top-k", "2"]) == 0
        query_out = capsys.readouterr().out
        assert "#1 Reef Recovery" in query_out
        assert "#3" not in query_out

        assert _run(["--db", db, "list", "--project", "thesis"]) == 0
        assert "Reef Recovery" in capsys.readouterr().out

    def test_directory(self, tmp_path: Path, capsys, sectioned_text) -> None:
        folder = tmp_path / "sources"
        folder.mkdir()
        (folder / "a.txt").write_text(sectioned_text(2), encoding="utf-8")
        (folder / "b.md").write_text(sectioned_text(3), encoding="utf-8")
        (folder / "ignored.csv").write_text("x,y", encoding="utf-8")

        code = _run(["--db", str(tmp_path / "d.db"), "directory", "--project", "thesis",
                     "--path", str(folder)])

        out = capsys.readouterr().out
        assert code == 0
        assert "Ingesting 2 files" in out
        assert "a.txt: READY" in out and "b.md: READY" in out

    def test_missing_file_exits_with_error(self, tmp_path: Path, capsys) -> None:
        code = _run(["--db", str(tmp_path / "e.db"), "ingest", "--project", "thesis",
                     "--file", str(tmp_path / "nope.txt")])

        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_empty_project_list(self, tmp_path: Path, capsys) -> None:
        assert _run(["--db", str(tmp_path / "f.db"), "list", "--project", "empty"]) == 0
        assert "No sources in project empty" in capsys.readouterr().out


class TestShutdown:
    @pytest.mark.asyncio
    async def test_close_components_closes_providers_before_shared_client(self) -> None:
        from evidence_pipeline.main import close_components

        order: list[str] = []
        llm = MagicMock()
        llm.aclose = AsyncMock(side_effect=lambda: order.append("llm"))
        embedder = MagicMock()
        embedder.aclose = AsyncMock(side_effect=lambda: order.append("embedding"))
        http_client = MagicMock()
        http_client.aclose = AsyncMock(side_effect=lambda: order.append("http"))
        store = MagicMock()
        store.close = AsyncMock(side_effect=lambda: order.append("store"))

        await close_components(
            {
                "llm_provider": llm,
                "embedding_provider": embedder,
                "http_client": http_client,
                "store": store,
            }
        )

        assert order == ["llm", "embedding", "http", "store"]

    @pytest.mark.asyncio
    async def test_providers_without_aclose_are_skipped(self) -> None:
        from evidence_pipeline.main import close_components

        http_client = MagicMock(aclose=AsyncMock())
        store = MagicMock(close=AsyncMock())

        await close_components(
            {
                "llm_provider": object(),
                "embedding_provider": object(),
                "http_client": http_client,
                "store": store,
            }
        )

        http_client.aclose.assert_awaited_once()
        store.close.assert_awaited_once()

    def test_cli_closes_components(self, tmp_path: Path) -> None:
        from evidence_pipeline.main import close_components

        spy = AsyncMock(wraps=close_components)
        with patch("evidence_pipeline.main.close_components", new=spy) as close:
            assert _run(["--db", str(tmp_path / "g.db"), "list", "--project", "empty"]) == 0

        close.assert_awaited_once()
