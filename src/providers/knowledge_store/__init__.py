"""SQLite-backed knowledge stores sharing one database file."""

from src.providers.knowledge_store.sqlite_document_source import SQLiteDocumentSource
from src.providers.knowledge_store.sqlite_entity_store import SQLiteEntityStore
from src.providers.knowledge_store.sqlite_mention_store import SQLiteMentionStore
from src.providers.knowledge_store.sqlite_query_log import SQLiteQueryLogProvider
from src.providers.knowledge_store.sqlite_relationship_store import SQLiteRelationshipStore

__all__ = [
    "SQLiteDocumentSource",
    "SQLiteEntityStore",
    "SQLiteMentionStore",
    "SQLiteQueryLogProvider",
    "SQLiteRelationshipStore",
]
