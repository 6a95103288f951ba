"""Public interface definitions for all storage and external service providers.

Every backend the knowledge engine talks to is accessed exclusively through
the abstract base classes defined in this package.  Concrete adapters
implement these interfaces and are wired together in ``src/main.py``; unit
tests inject mocks or temporary SQLite-backed adapters instead.

CONCRETE PROVIDER MAP:
    Interface            →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    ILLMProvider         →  AnthropicLLMProvider, OpenAILLMProvider,
                            OllamaLLMProvider
    ITextIndexProvider   →  SQLiteFTSProvider, PostgresFTSProvider
    IEntityStore         →  SQLiteEntityStore
    IMentionStore        →  SQLiteMentionStore
    IQueryLogProvider    →  SQLiteQueryLogProvider
    IRelationshipStore   →  SQLiteRelationshipStore
    IDocumentSource      →  SQLiteDocumentSource
"""

from __future__ import annotations

from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.mention_store import IMentionStore
from src.interfaces.query_log_provider import IQueryLogProvider
from src.interfaces.relationship_store import IRelationshipStore
from src.interfaces.text_index_provider import ITextIndexProvider

__all__ = [
    "IDocumentSource",
    "IEntityStore",
    "ILLMProvider",
    "IMentionStore",
    "IQueryLogProvider",
    "IRelationshipStore",
    "ITextIndexProvider",
]
