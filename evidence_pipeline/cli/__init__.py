"""Command-line tools for operators working outside the HTTP API.

    ingest.py  -- ingest files, bulk-ingest a directory, list sources and
                  run retrieval queries against the SQLite store
"""
