"""End-to-end knowledge flow on SQLite: harvest, index, search, relate, clean up.

Exercises the services together the way the API drives them, with a
mocked LLM so every AI stage returns a known response.
"""

from __future__ import annotations

from typing import Any

import pytest

from src.models.entities import EntityType
from src.models.search import QueryType
from src.services.entity_harvester import EntityHarvester
from src.services.knowledge_indexer import KnowledgeIndexer
from src.services.related_docs import RelatedDocsService
from src.services.semantic_search import SemanticSearchService
from tests.conftest import CONTRACT_DATA, INVOICE_DATA, MEETING_DATA, WORKSPACE, seed_document


def _wire(stack: dict[str, Any], llm) -> dict[str, Any]:
    harvester = EntityHarvester(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        text_index=stack["text_index"],
        document_source=stack["document_source"],
    )
    return {
        "harvester": harvester,
        "indexer": KnowledgeIndexer(
            harvester=harvester,
            entity_store=stack["entity_store"],
            mention_store=stack["mention_store"],
            text_index=stack["text_index"],
            document_source=stack["document_source"],
            query_log=stack["query_log"],
        ),
        "search": SemanticSearchService(
            text_index=stack["text_index"],
            entity_store=stack["entity_store"],
            mention_store=stack["mention_store"],
            document_source=stack["document_source"],
            query_log=stack["query_log"],
            llm_provider=llm,
        ),
        "related": RelatedDocsService(
            entity_store=stack["entity_store"],
            mention_store=stack["mention_store"],
            document_source=stack["document_source"],
            llm_provider=llm,
        ),
    }


async def _seed(stack: dict[str, Any]) -> None:
    source = stack["document_source"]
    await seed_document(
        source, "d1", "MSA", "contract", CONTRACT_DATA,
        content_html="<h1>MSA</h1><p>Payment terms with Acme Corp are Net-30.</p>",
    )
    await seed_document(
        source, "d2", "Invoice 001", "invoice", INVOICE_DATA,
        content_html="<p>Consulting hours billed to Acme Corp.</p>",
    )
    await seed_document(
        source, "m1", "Kickoff", "meeting_notes", MEETING_DATA,
        content_html="<p>Kickoff with Jane and Bob.</p>",
    )


class TestKnowledgePipeline:
    @pytest.mark.asyncio()
    async def test_full_flow(self, sqlite_stack, mock_llm_provider) -> None:
        await _seed(sqlite_stack)
        services = _wire(sqlite_stack, mock_llm_provider)

        reindex = await services["indexer"].reindex_workspace(WORKSPACE)
        assert reindex.errors == []
        assert reindex.docs_indexed == 3

        acme = await sqlite_stack["entity_store"].get_by_normalized_name(
            WORKSPACE, "acme corp", EntityType.ORGANIZATION
        )
        assert acme.doc_count == 2

        # Semantic search: term extraction, then synthesis citing the MSA.
        mock_llm_provider.complete.side_effect = [
            "Acme Corp",
            "ANSWER: Acme pays Net-30 per [Doc 1].\nRESULT 1: 0.9 - Acme Corp - Net-30 terms",
        ]
        result = await services["search"].search(
            WORKSPACE, "What are the payment terms with Acme?", queried_by="user-1"
        )
        assert result.answer == "Acme pays Net-30 per [Doc 1]."
        assert result.results[0].relevance == pytest.approx(0.9)
        assert "d2" in {r.doc_id for r in result.results}

        # Related docs for the contract: the invoice shares Acme Corp.
        mock_llm_provider.complete.side_effect = None
        related = await services["related"].find_related("d1", WORKSPACE, ai_rerank=False)
        assert "d2" in {r.doc_id for r in related.related_docs}
        assert all(0.0 <= r.relevance <= 1.0 for r in related.related_docs)

        # Removing the invoice and cleaning up drops its exclusive entities.
        await services["indexer"].remove_document("d2")
        cleanup = await services["indexer"].cleanup_workspace(WORKSPACE)
        assert cleanup.stale_entities_deleted > 0
        acme = await sqlite_stack["entity_store"].get_by_id(acme.id)
        assert acme.doc_count == 1

        summary = await services["indexer"].get_summary(WORKSPACE)
        assert [q.query_type for q in summary.recent_queries] == [QueryType.SEMANTIC_SEARCH]

    @pytest.mark.asyncio()
    async def test_harvest_then_incremental_doc(self, sqlite_stack, mock_llm_provider) -> None:
        await _seed(sqlite_stack)
        services = _wire(sqlite_stack, mock_llm_provider)
        await services["indexer"].reindex_workspace(WORKSPACE)
        before = await sqlite_stack["entity_store"].count(WORKSPACE)

        await seed_document(
            sqlite_stack["document_source"], "d4", "Renewal", "contract",
            {"parties": [{"name": "Acme Corp"}, {"name": "Globex"}]},
        )
        result = await services["harvester"].harvest_from_doc("d4", WORKSPACE)

        assert result.entities_created == 1
        assert result.entities_reused == 1
        assert await sqlite_stack["entity_store"].count(WORKSPACE) == before + 1
        hits = await sqlite_stack["text_index"].search_entities(WORKSPACE, "Globex")
        assert [h.name for h in hits] == ["Globex"]
