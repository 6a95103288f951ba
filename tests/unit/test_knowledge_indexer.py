"""Unit tests for KnowledgeIndexer (reindex, cleanup, status, summary)."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.entities import EntityType
from src.models.search import QueryType
from src.services.entity_harvester import EntityHarvester
from src.services.knowledge_indexer import KnowledgeIndexer
from src.services.relationship_detector import RelationshipDetector
from src.utils.errors import IndexSyncError
from tests.conftest import CONTRACT_DATA, INVOICE_DATA, MEETING_DATA, WORKSPACE, seed_document


async def _seed(stack: dict[str, Any]) -> None:
    source = stack["document_source"]
    await seed_document(
        source, "d1", "MSA", "contract", CONTRACT_DATA, content_html="<p>Acme services agreement</p>"
    )
    await seed_document(
        source, "d2", "Invoice 001", "invoice", INVOICE_DATA, content_html="<p>Consulting invoice</p>"
    )
    await seed_document(source, "d3", "Scratch notes", content_html="<p>Loose notes</p>")


def _indexer(
    stack: dict[str, Any],
    text_index: ITextIndexProvider | None = None,
    relationships: bool = False,
) -> KnowledgeIndexer:
    harvester = EntityHarvester(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        text_index=stack["text_index"],
        document_source=stack["document_source"],
    )
    return KnowledgeIndexer(
        harvester=harvester,
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        text_index=text_index or stack["text_index"],
        document_source=stack["document_source"],
        query_log=stack["query_log"],
        relationship_detector=_detector(stack) if relationships else None,
    )


def _detector(stack: dict[str, Any]) -> RelationshipDetector:
    return RelationshipDetector(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        relationship_store=stack["relationship_store"],
    )


# ======================================================================
# Reindex
# ======================================================================


class TestReindex:
    @pytest.mark.asyncio()
    async def test_full_reindex(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)

        result = await _indexer(sqlite_stack).reindex_workspace(WORKSPACE)

        assert result.docs_processed == 3
        assert result.docs_indexed == 3
        assert result.entities_created == 13
        assert result.entities_indexed == 13
        assert result.mentions_created == 14
        assert result.errors == []
        hits = await sqlite_stack["text_index"].search_documents(WORKSPACE, "notes")
        assert [h.doc_id for h in hits] == ["d3"]

    @pytest.mark.asyncio()
    async def test_reindex_is_repeatable(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)

        again = await indexer.reindex_workspace(WORKSPACE)

        assert again.entities_created == 0
        assert again.entities_reused == 14
        assert again.mentions_created == 0
        assert again.entities_indexed == 13
        assert await sqlite_stack["entity_store"].count(WORKSPACE) == 13

    @pytest.mark.asyncio()
    async def test_stage_failure_does_not_stop_later_stages(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        broken_index = MagicMock(spec=ITextIndexProvider)
        broken_index.sync_workspace_documents = AsyncMock(
            side_effect=IndexSyncError("boom", "sqlite_fts5")
        )
        broken_index.sync_workspace_entities = AsyncMock(return_value=13)

        result = await _indexer(sqlite_stack, text_index=broken_index).reindex_workspace(WORKSPACE)

        assert result.errors == ["Document index rebuild failed: [sqlite_fts5] boom"]
        assert result.docs_indexed == 0
        assert result.entities_indexed == 13
        broken_index.sync_workspace_entities.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_unknown_mode_rejected(self, sqlite_stack) -> None:
        with pytest.raises(ValueError, match="Unknown reindex mode: partial"):
            await _indexer(sqlite_stack).reindex_workspace(WORKSPACE, mode="partial")

    @pytest.mark.asyncio()
    async def test_incremental_touches_only_new_documents(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)
        await asyncio.sleep(0.01)
        await seed_document(
            sqlite_stack["document_source"],
            "d4",
            "Kickoff",
            "meeting_notes",
            MEETING_DATA,
            content_html="<p>Kickoff meeting</p>",
        )

        result = await indexer.reindex_workspace(WORKSPACE, mode="incremental")

        assert result.mode == "incremental"
        assert result.docs_processed == 1
        assert result.docs_indexed == 1
        assert result.entities_created > 0
        assert result.entities_indexed == result.entities_created
        assert result.errors == []
        bob = await sqlite_stack["entity_store"].get_by_normalized_name(
            WORKSPACE, "bob smith", EntityType.PERSON
        )
        assert bob is not None
        hits = await sqlite_stack["text_index"].search_documents(WORKSPACE, "kickoff")
        assert [h.doc_id for h in hits] == ["d4"]

    @pytest.mark.asyncio()
    async def test_incremental_with_nothing_changed(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)

        result = await indexer.reindex_workspace(WORKSPACE, mode="incremental")

        assert result.mode == "incremental"
        assert result.docs_processed == 0
        assert result.entities_created == 0

    @pytest.mark.asyncio()
    async def test_incremental_on_fresh_workspace_runs_full(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)

        result = await _indexer(sqlite_stack).reindex_workspace(WORKSPACE, mode="incremental")

        assert result.mode == "full"
        assert result.docs_processed == 3
        assert result.entities_created == 13

    @pytest.mark.asyncio()
    async def test_reindex_detects_relationships(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack, relationships=True)

        first = await indexer.reindex_workspace(WORKSPACE)
        second = await indexer.reindex_workspace(WORKSPACE)

        # 8 entities in the contract, 6 in the invoice, Acme Corp in both.
        assert first.relationships_created == 28 + 15
        assert first.relationships_updated == 0
        assert second.relationships_created == 0
        assert second.relationships_updated == 43
        assert await sqlite_stack["relationship_store"].count(WORKSPACE) == 43


# ======================================================================
# Cleanup
# ======================================================================


class TestCleanup:
    @pytest.mark.asyncio()
    async def test_cleanup_after_document_removal(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)

        removed = await indexer.remove_document("d2")
        result = await indexer.cleanup_workspace(WORKSPACE)

        assert removed == 6
        assert result.entities_recalculated == 13
        assert result.stale_entities_deleted == 5
        store = sqlite_stack["entity_store"]
        acme = await store.get_by_normalized_name(WORKSPACE, "acme corp", EntityType.ORGANIZATION)
        assert acme.doc_count == 1
        assert acme.mention_count == 1
        assert await sqlite_stack["text_index"].search_entities(WORKSPACE, "Consulting") == []
        assert await sqlite_stack["text_index"].search_documents(WORKSPACE, "invoice") == []

    @pytest.mark.asyncio()
    async def test_cleanup_on_clean_workspace(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)

        result = await indexer.cleanup_workspace(WORKSPACE)

        assert result.stale_entities_deleted == 0

    @pytest.mark.asyncio()
    async def test_cleanup_prunes_relationships_of_deleted_entities(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack, relationships=True)
        await indexer.reindex_workspace(WORKSPACE)

        await indexer.remove_document("d2")
        result = await indexer.cleanup_workspace(WORKSPACE)

        assert result.stale_entities_deleted == 5
        assert result.relationships_deleted == 15
        assert await sqlite_stack["relationship_store"].count(WORKSPACE) == 28


# ======================================================================
# Reporting
# ======================================================================


class TestReporting:
    @pytest.mark.asyncio()
    async def test_status(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)

        status = await indexer.get_status(WORKSPACE)

        assert status.entity_count == 13
        assert status.mention_count == 14
        assert status.indexed_doc_count == 2
        assert status.total_doc_count == 3
        assert status.last_indexed_at is not None

    @pytest.mark.asyncio()
    async def test_status_empty_workspace(self, sqlite_stack) -> None:
        status = await _indexer(sqlite_stack).get_status("ws-empty")
        assert status.entity_count == 0
        assert status.last_indexed_at is None

    @pytest.mark.asyncio()
    async def test_summary(self, sqlite_stack) -> None:
        await _seed(sqlite_stack)
        indexer = _indexer(sqlite_stack)
        await indexer.reindex_workspace(WORKSPACE)
        await sqlite_stack["query_log"].log_query(
            WORKSPACE, "acme", QueryType.ENTITY_SEARCH, queried_by="u"
        )

        summary = await indexer.get_summary(WORKSPACE)

        assert summary.entity_count == 13
        assert summary.entity_type_breakdown[EntityType.ORGANIZATION] == 2
        assert summary.top_entities[0].name == "Acme Corp"
        assert len(summary.top_entities) == 10
        assert [q.query_text for q in summary.recent_queries] == ["acme"]
