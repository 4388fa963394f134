"""Standalone CLI for ingesting sources and querying them without the API.

Usage::

    python -m evidence_pipeline.cli ingest --project thesis \\
        --file /path/to/paper.pdf --title "Paper title" --author "A. Author"

    python -m evidence_pipeline.cli directory --project thesis --path ./sources/

    python -m evidence_pipeline.cli query --project thesis \\
        --text "What drives coral bleaching?" --top-k 5

    python -m evidence_pipeline.cli list --project thesis

The CLI always uses the SQLite document store (``--db``, default
``SQLITE_PATH``) so sources survive between invocations; providers are
selected exactly as the API selects them.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import sys
from pathlib import Path
from typing import Any

from evidence_pipeline.config.settings import Settings, load_settings
from evidence_pipeline.models.source import (
    IngestionResult,
    SourceCreateInput,
    SourceKind,
    SourceMetadata,
    SourceUploadInput,
    UploadContentType,
)
from evidence_pipeline.utils.errors import PipelineError

_DEFAULT_OWNER = "cli"
_SUPPORTED_SUFFIXES = {".txt", ".md", ".pdf"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def read_upload(path: Path) -> tuple[SourceKind, SourceUploadInput]:
    """Read *path* into an upload; PDFs are base64-encoded, everything else is text."""
    if path.suffix.lower() == ".pdf":
        data = base64.b64encode(path.read_bytes()).decode("ascii")
        upload = SourceUploadInput(
            content_type=UploadContentType.PDF, data=data, original_filename=path.name
        )
        return SourceKind.PDF, upload
    upload = SourceUploadInput(
        content_type=UploadContentType.TEXT,
        data=path.read_text(encoding="utf-8"),
        original_filename=path.name,
    )
    return SourceKind.TEXT, upload


def _print_result(result: IngestionResult | None, label: str) -> int:
    if result is None:
        print(f"  {label}: source not found", file=sys.stderr)
        return 1
    if result.error is not None:
        print(f"  {label}: {result.status.value} [{result.error.code}] {result.error.message}")
        return 1
    print(f"  {label}: {result.status.value}")
    print(f"    Chunks:       {result.chunk_count}")
    print(f"    Total tokens: {result.total_tokens}")
    print(f"    Model:        {result.embedding_model}")
    print(f"    Time:         {result.processing_time_ms / 1000:.2f}s")
    if result.transient_failures:
        print(f"    Retried:      {', '.join(result.transient_failures)}")
    print(f"    Source ID:    {result.source_id}")
    return 0


async def _with_components(app_settings: Settings, handler: Any, args: argparse.Namespace) -> int:
    # Imported here so parsing --help never loads the web stack.
    from evidence_pipeline.main import build_components, close_components

    components = build_components(app_settings)
    await components["store"].initialize()
    try:
        return await handler(args, components)
    finally:
        await close_components(components)


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Create one source from a file and ingest it."""
    path = Path(args.file)
    kind, upload = read_upload(path)
    metadata = SourceMetadata(title=args.title or path.stem, author=args.author, venue=args.venue)

    source = await components["source_service"].create_source(
        args.owner,
        SourceCreateInput(project_id=args.project, kind=kind, metadata=metadata, upload=upload),
    )
    print(f"Ingesting {kind.value}: {metadata.title}")
    print(f"  File: {path}")
    result = await components["ingestion_service"].ingest_source(args.owner, source.id)
    return _print_result(result, path.name)


async def _handle_directory(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Create a source for every supported file in a directory and ingest them concurrently."""
    root = Path(args.path)
    files = sorted(p for p in root.iterdir() if p.suffix.lower() in _SUPPORTED_SUFFIXES)
    if not files:
        print(f"No .txt, .md or .pdf files found in {root}", file=sys.stderr)
        return 1

    source_ids: list[str] = []
    for path in files:
        kind, upload = read_upload(path)
        source = await components["source_service"].create_source(
            args.owner,
            SourceCreateInput(
                project_id=args.project,
                kind=kind,
                metadata=SourceMetadata(title=path.stem),
                upload=upload,
            ),
        )
        source_ids.append(source.id)

    print(f"Ingesting {len(files)} files from {root}")
    results = await components["ingestion_service"].ingest_many(args.owner, source_ids)
    exit_code = 0
    for path, result in zip(files, results):
        exit_code |= _print_result(result, path.name)
    return exit_code


async def _handle_query(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """Rank the project's evidence for a query and print it."""
    response = await components["retrieval_service"].retrieve(
        project_id=args.project, query=args.text, top_k=args.top_k
    )
    intent = response.intent.intent.value if response.intent else "unknown"
    print(f"Query: {response.query}")
    print(f"  Intent: {intent} | Candidates: {response.total_candidates}", end="")
    print(" | degraded ranking" if response.degraded else "")
    if not response.chunks:
        print("  No evidence found.")
        return 0

    for ranked in response.chunks:
        preview = " ".join(ranked.chunk.text.split())[:160]
        print(f"\n  #{ranked.rank} {ranked.source_title} ({ranked.citation})")
        print(f"     score {ranked.score.total:.3f} | {ranked.explanation}")
        print(f"     {preview}")
    return 0


async def _handle_list(args: argparse.Namespace, components: dict[str, Any]) -> int:
    """List the owner's sources in a project."""
    sources = await components["source_service"].list_sources(args.owner, args.project)
    if not sources:
        print(f"No sources in project {args.project}")
        return 0
    for source in sources:
        print(
            f"  {source.id}  {source.status.value:<10}  {source.chunk_count:>4} chunks  "
            f"{source.title}"
        )
        if source.error:
            print(f"      error: {source.error}")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the evidence CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m evidence_pipeline.cli",
        description="Ingest research sources and query ranked evidence.",
    )
    parser.add_argument("--db", default=None, help="SQLite database path (default: SQLITE_PATH)")
    parser.add_argument("--owner", default=_DEFAULT_OWNER, help="Owner id for created sources")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- ingest --
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a text or PDF file")
    ingest_parser.add_argument("--project", required=True, help="Project id")
    ingest_parser.add_argument("--file", required=True, help="Path to a .txt, .md or .pdf file")
    ingest_parser.add_argument("--title", default=None, help="Source title (default: file name)")
    ingest_parser.add_argument("--author", default=None, help="Author name")
    ingest_parser.add_argument("--venue", default=None, help="Journal, conference or publisher")

    # -- directory --
    dir_parser = subparsers.add_parser("directory", help="Ingest every file in a directory")
    dir_parser.add_argument("--project", required=True, help="Project id")
    dir_parser.add_argument("--path", required=True, help="Directory path")

    # -- query --
    query_parser = subparsers.add_parser("query", help="Retrieve ranked evidence")
    query_parser.add_argument("--project", required=True, help="Project id")
    query_parser.add_argument("--text", required=True, help="Query text")
    query_parser.add_argument("--top-k", type=int, default=None, dest="top_k", help="Results")

    # -- list --
    list_parser = subparsers.add_parser("list", help="List a project's sources")
    list_parser.add_argument("--project", required=True, help="Project id")

    return parser


_HANDLERS = {
    "ingest": _handle_ingest,
    "directory": _handle_directory,
    "query": _handle_query,
    "list": _handle_list,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, build components, dispatch, exit."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        overrides: dict[str, Any] = {"store_backend": "sqlite"}
        if args.db:
            overrides["sqlite_path"] = args.db
        app_settings = load_settings(**overrides)
        exit_code = asyncio.run(_with_components(app_settings, _HANDLERS[args.command], args))
    except PipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
