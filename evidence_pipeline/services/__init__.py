"""Business-logic services.

    - source_service  -- sources, uploads and chunk lookups
    - ingestion/      -- extract, chunk, embed, summarize, persist
    - retrieval/      -- multi-factor ranking of persisted chunks
    - streaming/      -- streaming completion consumer for drafting
"""
