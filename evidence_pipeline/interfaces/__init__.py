"""Public interface definitions for all external collaborators.

Every external service the pipeline touches is reached through one of the
abstract base classes in this package.  Concrete adapters live in
``evidence_pipeline/providers/`` and are chosen once at startup by
``evidence_pipeline/providers/factory.py``.

    Interface            ->  Concrete implementations
    ---------------------------------------------------------------
    IEmbeddingProvider   ->  OpenAIEmbeddingProvider, MockEmbeddingProvider
    ILLMProvider         ->  OpenAILLMProvider, AnthropicLLMProvider,
                             MockLLMProvider
    IDocumentStore       ->  MemoryDocumentStore, SQLiteDocumentStore
"""

from evidence_pipeline.interfaces.document_store import BatchOperation, IDocumentStore
from evidence_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from evidence_pipeline.interfaces.llm_provider import ILLMProvider

__all__ = [
    "BatchOperation",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
]
