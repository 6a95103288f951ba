"""Unit tests for RelationshipDetector.

The graph seeded by ``_seed_graph``:

    Acme Corp  in d1, d2, d3
    Jane Doe   in d1, d2
    Bob Smith  in d3

gives two co-occurring pairs: Acme/Jane over two documents (base strength
0.2, eligible for AI labelling) and Acme/Bob over one (0.1).
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.interfaces.relationship_store import IRelationshipStore
from src.models.entities import CanonicalEntity, EntityType
from src.models.relationships import RelationshipType
from src.services.relationship_detector import (
    NO_CONTEXT,
    RelationshipDetector,
    blend_strength,
    calculate_base_strength,
)
from src.utils.errors import LLMError
from tests.conftest import WORKSPACE


async def _entity(
    stack: dict[str, Any], name: str, entity_type: EntityType = EntityType.ORGANIZATION
) -> CanonicalEntity:
    entity, _ = await stack["entity_store"].create(WORKSPACE, entity_type, name, name.lower())
    return entity


async def _mention(
    stack: dict[str, Any], entity: CanonicalEntity, doc_id: str, field: str, context: str | None
) -> None:
    await stack["mention_store"].create(WORKSPACE, entity.id, doc_id, field, context)


async def _seed_graph(stack: dict[str, Any]) -> dict[str, CanonicalEntity]:
    acme = await _entity(stack, "Acme Corp")
    jane = await _entity(stack, "Jane Doe", EntityType.PERSON)
    bob = await _entity(stack, "Bob Smith", EntityType.PERSON)
    await _mention(stack, acme, "d1", "parties[0].name", "Party: client")
    await _mention(stack, acme, "d1", "customer.name", "Customer")
    await _mention(stack, acme, "d1", "billTo.name", "Billed to")
    await _mention(stack, jane, "d1", "parties[1].name", "Party: contractor")
    await _mention(stack, acme, "d2", "customer.name", None)
    await _mention(stack, jane, "d2", "vendor.name", None)
    await _mention(stack, acme, "d3", "parties[0].name", "Party: buyer")
    await _mention(stack, bob, "d3", "attendees[0]", None)
    return {"acme": acme, "jane": jane, "bob": bob}


def _detector(stack: dict[str, Any], llm=None, **kwargs: Any) -> RelationshipDetector:
    return RelationshipDetector(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        relationship_store=stack["relationship_store"],
        llm_provider=llm,
        **kwargs,
    )


def _pair(a: CanonicalEntity, b: CanonicalEntity) -> tuple[str, str]:
    return (a.id, b.id) if a.id < b.id else (b.id, a.id)


# ======================================================================
# Strength helpers
# ======================================================================


class TestStrength:
    @pytest.mark.parametrize(
        ("shared", "expected"),
        [(1, 0.1), (2, 0.2), (5, 0.5), (10, 1.0), (25, 1.0), (0, 0.1)],
    )
    def test_base_strength(self, shared: int, expected: float) -> None:
        assert calculate_base_strength(shared) == pytest.approx(expected)

    def test_blend(self) -> None:
        assert blend_strength(0.2, 90) == pytest.approx(0.62)
        assert blend_strength(1.0, 100) == pytest.approx(1.0)


# ======================================================================
# Co-occurrence detection
# ======================================================================


class TestCoOccurrence:
    @pytest.mark.asyncio()
    async def test_pairs_are_hydrated_and_ordered(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)

        found = await _detector(sqlite_stack).find_co_occurrences(WORKSPACE)

        assert [co.shared_doc_count for co in found] == [2, 1]
        assert {found[0].entity_a.name, found[0].entity_b.name} == {"Acme Corp", "Jane Doe"}
        assert found[0].shared_doc_ids == ["d1", "d2"]
        assert (found[1].entity_a.id, found[1].entity_b.id) == _pair(e["acme"], e["bob"])

    @pytest.mark.asyncio()
    async def test_evidence_joins_contexts(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)

        evidence = await _detector(sqlite_stack).gather_evidence(
            e["acme"].id, e["jane"].id, ["d1", "d2"]
        )

        assert [item.doc_id for item in evidence] == ["d1", "d2"]
        assert evidence[0].context == "Party: client; Customer | Party: contractor"
        assert evidence[1].context == NO_CONTEXT

    @pytest.mark.asyncio()
    async def test_evidence_capped_at_five_documents(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)
        doc_ids = [f"x{i}" for i in range(7)]

        evidence = await _detector(sqlite_stack).gather_evidence(
            e["acme"].id, e["jane"].id, doc_ids
        )

        assert [item.doc_id for item in evidence] == doc_ids[:5]

    @pytest.mark.asyncio()
    async def test_detect_without_llm(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)
        detector = _detector(sqlite_stack)

        result = await detector.detect_workspace_relationships(WORKSPACE)

        assert result.co_occurrences_found == 2
        assert result.relationships_created == 2
        assert result.relationships_updated == 0
        assert result.ai_labeled == 0
        assert result.errors == []
        edge = await sqlite_stack["relationship_store"].get_by_pair(
            *_pair(e["acme"], e["jane"]), RelationshipType.CO_OCCURRENCE
        )
        assert edge.strength == pytest.approx(0.2)
        assert len(edge.evidence) == 2

    @pytest.mark.asyncio()
    async def test_second_run_updates_in_place(self, sqlite_stack) -> None:
        await _seed_graph(sqlite_stack)
        detector = _detector(sqlite_stack)
        await detector.detect_workspace_relationships(WORKSPACE)

        again = await detector.detect_workspace_relationships(WORKSPACE)

        assert again.relationships_created == 0
        assert again.relationships_updated == 2
        assert await sqlite_stack["relationship_store"].count(WORKSPACE) == 2

    @pytest.mark.asyncio()
    async def test_update_for_one_entity(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)

        result = await _detector(sqlite_stack).update_relationships_for_entity(
            e["bob"].id, WORKSPACE
        )

        assert result.co_occurrences_found == 1
        (edge,) = await sqlite_stack["relationship_store"].list_by_workspace(WORKSPACE)
        assert (edge.from_entity_id, edge.to_entity_id) == _pair(e["acme"], e["bob"])

    @pytest.mark.asyncio()
    async def test_store_failure_is_reported(self, sqlite_stack) -> None:
        store = MagicMock(spec=IRelationshipStore)
        store.find_co_occurrences = AsyncMock(side_effect=RuntimeError("disk gone"))
        detector = RelationshipDetector(
            sqlite_stack["entity_store"], sqlite_stack["mention_store"], store
        )

        result = await detector.detect_workspace_relationships(WORKSPACE)

        assert result.errors == ["Detection failed: disk gone"]
        assert result.relationships_created == 0


# ======================================================================
# AI labelling
# ======================================================================


class TestAILabelling:
    @pytest.mark.asyncio()
    async def test_confident_label_adds_typed_edge(self, sqlite_stack, mock_llm_provider) -> None:
        e = await _seed_graph(sqlite_stack)
        mock_llm_provider.complete.return_value = (
            "1: contractual - contracted with - 90 - Both are parties to the MSA"
        )

        result = await _detector(sqlite_stack, mock_llm_provider).detect_workspace_relationships(
            WORKSPACE
        )

        assert result.ai_labeled == 1
        assert result.relationships_created == 3
        edge = await sqlite_stack["relationship_store"].get_by_pair(
            *_pair(e["acme"], e["jane"]), RelationshipType.CONTRACTUAL
        )
        assert edge.label == "contracted with"
        assert edge.strength == pytest.approx(0.62)
        kwargs = mock_llm_provider.complete.await_args.kwargs
        assert kwargs["max_tokens"] == 500
        assert "PAIR 1:" in kwargs["user_prompt"]
        assert "Shared documents: 2" in kwargs["user_prompt"]
        assert "PAIR 2:" not in kwargs["user_prompt"]

    @pytest.mark.asyncio()
    async def test_weak_co_occurrence_answer_skipped(self, sqlite_stack, mock_llm_provider) -> None:
        await _seed_graph(sqlite_stack)
        mock_llm_provider.complete.return_value = "1: co_occurrence - seen together - 40 - unclear"

        result = await _detector(sqlite_stack, mock_llm_provider).detect_workspace_relationships(
            WORKSPACE
        )

        assert result.ai_labeled == 0
        assert result.relationships_created == 2
        assert await sqlite_stack["relationship_store"].count(WORKSPACE) == 2

    @pytest.mark.asyncio()
    async def test_confident_co_occurrence_relabels_edge(
        self, sqlite_stack, mock_llm_provider
    ) -> None:
        e = await _seed_graph(sqlite_stack)
        mock_llm_provider.complete.return_value = "1: co_occurrence - work together - 80 - repeated"

        result = await _detector(sqlite_stack, mock_llm_provider).detect_workspace_relationships(
            WORKSPACE
        )

        assert result.ai_labeled == 1
        assert result.relationships_created == 2
        assert result.relationships_updated == 1
        edge = await sqlite_stack["relationship_store"].get_by_pair(
            *_pair(e["acme"], e["jane"]), RelationshipType.CO_OCCURRENCE
        )
        assert edge.label == "work together"
        assert edge.strength == pytest.approx(0.2 * 0.4 + 0.8 * 0.6)

    @pytest.mark.asyncio()
    async def test_skip_ai_label(self, sqlite_stack, mock_llm_provider) -> None:
        await _seed_graph(sqlite_stack)

        result = await _detector(sqlite_stack, mock_llm_provider).detect_workspace_relationships(
            WORKSPACE, ai_label=False
        )

        assert result.relationships_created == 2
        mock_llm_provider.complete.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_llm_error_keeps_co_occurrence_edges(
        self, sqlite_stack, mock_llm_provider
    ) -> None:
        await _seed_graph(sqlite_stack)
        mock_llm_provider.complete.side_effect = LLMError("rate limited", "mock-llm")

        result = await _detector(sqlite_stack, mock_llm_provider).detect_workspace_relationships(
            WORKSPACE
        )

        assert result.relationships_created == 2
        (error,) = result.errors
        assert error.startswith("AI batch labeling failed:")
        assert "rate limited" in error

    @pytest.mark.asyncio()
    async def test_timeout_is_reported(self, sqlite_stack, mock_llm_provider) -> None:
        await _seed_graph(sqlite_stack)

        async def slow(**_: Any) -> str:
            await asyncio.sleep(1)
            return "1: contractual - contracted with - 90 - late"

        mock_llm_provider.complete.side_effect = slow
        detector = _detector(sqlite_stack, mock_llm_provider, label_timeout_s=0.01)

        result = await detector.detect_workspace_relationships(WORKSPACE)

        assert result.ai_labeled == 0
        (error,) = result.errors
        assert "timed out" in error


# ======================================================================
# Read views and pruning
# ======================================================================


class TestViews:
    @pytest.mark.asyncio()
    async def test_list_relationships(self, sqlite_stack) -> None:
        await _seed_graph(sqlite_stack)
        detector = _detector(sqlite_stack)
        await detector.detect_workspace_relationships(WORKSPACE)

        views, total = await detector.list_relationships(WORKSPACE, limit=1)

        assert total == 2
        (view,) = views
        assert {view.from_entity.name, view.to_entity.name} == {"Acme Corp", "Jane Doe"}
        assert view.evidence_count == 2
        assert view.relationship_type == RelationshipType.CO_OCCURRENCE

    @pytest.mark.asyncio()
    async def test_entity_view_shows_other_side(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)
        detector = _detector(sqlite_stack)
        await detector.detect_workspace_relationships(WORKSPACE)

        views = await detector.relationships_for_entity(e["acme"].id)

        assert [v.related_entity.name for v in views] == ["Jane Doe", "Bob Smith"]
        assert views[1].related_entity.entity_type == EntityType.PERSON

    @pytest.mark.asyncio()
    async def test_deleted_endpoint_is_marked(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)
        await sqlite_stack["relationship_store"].upsert(
            WORKSPACE, e["acme"].id, "zz-gone", RelationshipType.CUSTOM, 0.5, []
        )
        detector = _detector(sqlite_stack)

        (view,) = await detector.relationships_for_entity(e["acme"].id)

        assert view.related_entity.name == "(deleted)"
        assert view.related_entity.entity_type == "unknown"

    @pytest.mark.asyncio()
    async def test_prune_removes_orphans(self, sqlite_stack) -> None:
        e = await _seed_graph(sqlite_stack)
        await sqlite_stack["relationship_store"].upsert(
            WORKSPACE, e["acme"].id, "zz-gone", RelationshipType.CUSTOM, 0.5, []
        )

        assert await _detector(sqlite_stack).prune(WORKSPACE) == 1
        assert await sqlite_stack["relationship_store"].count(WORKSPACE) == 0
