"""Shared pytest fixtures for the knowledge engine test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from src.interfaces.llm_provider import ILLMProvider
from src.providers.knowledge_store.sqlite_document_source import SQLiteDocumentSource
from src.providers.knowledge_store.sqlite_entity_store import SQLiteEntityStore
from src.providers.knowledge_store.sqlite_mention_store import SQLiteMentionStore
from src.providers.knowledge_store.sqlite_query_log import SQLiteQueryLogProvider
from src.providers.knowledge_store.sqlite_relationship_store import SQLiteRelationshipStore
from src.providers.text_index.sqlite_fts_provider import SQLiteFTSProvider

WORKSPACE = "ws-test"


# ---------------------------------------------------------------------------
# Sample extraction payloads (camelCase, as stored upstream)
# ---------------------------------------------------------------------------

CONTRACT_DATA: dict[str, Any] = {
    "title": "Master Services Agreement",
    "parties": [
        {"name": "Acme Corp", "role": "client", "address": "1 Main St, Springfield"},
        {"name": "Jane Doe", "role": "contractor"},
    ],
    "effectiveDate": "2024-01-01",
    "expirationDate": "2025-01-01",
    "paymentTerms": {"amount": 150000, "currency": "USD", "frequency": "annual"},
    "governingLaw": "Delaware",
    "keyObligations": ["Monthly status reports"],
}

INVOICE_DATA: dict[str, Any] = {
    "invoiceNumber": "INV-001",
    "vendor": {"name": "Jane Doe Consulting"},
    "customer": {"name": "Acme Corp"},
    "issueDate": "2024-02-01",
    "dueDate": "2024-03-01",
    "lineItems": [{"description": "Consulting hours", "amount": 5000}],
    "total": 5000,
    "currency": "USD",
}

MEETING_DATA: dict[str, Any] = {
    "title": "Kickoff",
    "date": "2024-01-05",
    "attendees": ["Jane Doe", "Bob Smith"],
    "actionItems": [{"task": "Send SOW", "assignee": "Bob Smith", "dueDate": "2024-01-10"}],
}


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider.

    Override ``complete.return_value`` / ``complete.side_effect`` per test.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.validate_credentials = AsyncMock(return_value=True)
    mock.complete = AsyncMock(return_value="")
    return mock


# ---------------------------------------------------------------------------
# Real SQLite stack on a temporary database
# ---------------------------------------------------------------------------


@pytest.fixture
def knowledge_db_path(tmp_path: Path) -> Path:
    return tmp_path / "knowledge.db"


@pytest_asyncio.fixture
async def sqlite_stack(knowledge_db_path: Path) -> dict[str, Any]:
    """Initialized stores, document source and FTS5 index sharing one database file."""
    stack: dict[str, Any] = {
        "entity_store": SQLiteEntityStore(db_path=knowledge_db_path),
        "mention_store": SQLiteMentionStore(db_path=knowledge_db_path),
        "document_source": SQLiteDocumentSource(db_path=knowledge_db_path),
        "query_log": SQLiteQueryLogProvider(db_path=knowledge_db_path),
        "relationship_store": SQLiteRelationshipStore(db_path=knowledge_db_path),
        "text_index": SQLiteFTSProvider(db_path=knowledge_db_path, batch_size=2),
    }
    for component in stack.values():
        await component.initialize()
    return stack


async def seed_document(
    source: SQLiteDocumentSource,
    doc_id: str,
    title: str,
    document_type: str | None = None,
    data: dict[str, Any] | None = None,
    content_html: str = "",
    workspace_id: str = WORKSPACE,
    field_confidences: dict[str, float] | None = None,
) -> None:
    """Insert a document and, when *document_type* is given, its extraction."""
    await source.put_document(doc_id, workspace_id, title, content_html)
    if document_type is not None:
        await source.put_extraction(doc_id, document_type, data or {}, field_confidences)
