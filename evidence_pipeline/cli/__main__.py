"""Allow ``python -m evidence_pipeline.cli`` execution."""

from evidence_pipeline.cli.ingest import main

main()
