"""Unit tests for the SQLite knowledge stores.

Covers the entity, mention and relationship stores, the query log and the
document source, all sharing one temp database through the ``sqlite_stack`` fixture.
"""

from __future__ import annotations

import asyncio
import datetime

import pytest

from src.models.entities import EntityType, MentionSource
from src.models.extraction import ContractExtraction
from src.models.relationships import RelationshipEvidence, RelationshipType
from src.models.search import QueryType
from src.providers.knowledge_store.sqlite_entity_store import SQLiteEntityStore
from src.utils.errors import EntityLimitExceededError
from tests.conftest import CONTRACT_DATA, WORKSPACE, seed_document


async def _create(store, name: str, entity_type: EntityType = EntityType.ORGANIZATION, **kwargs):
    entity, _ = await store.create(
        workspace_id=kwargs.pop("workspace_id", WORKSPACE),
        entity_type=entity_type,
        name=name,
        normalized_name=name.strip().lower(),
        **kwargs,
    )
    return entity


# ======================================================================
# Entity store
# ======================================================================


class TestSQLiteEntityStore:
    @pytest.mark.asyncio()
    async def test_create_and_fetch(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        entity, inserted = await store.create(
            WORKSPACE,
            EntityType.ORGANIZATION,
            "Acme Corp",
            "acme corp",
            aliases=["ACME"],
            metadata={"source": "test"},
        )

        assert inserted is True
        assert entity.mention_count == 0
        assert entity.doc_count == 0
        fetched = await store.get_by_id(entity.id)
        assert fetched.name == "Acme Corp"
        assert fetched.aliases == ["ACME"]
        assert fetched.metadata == {"source": "test"}
        assert fetched.first_seen_at is not None

    @pytest.mark.asyncio()
    async def test_duplicate_create_returns_existing(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        first, _ = await store.create(WORKSPACE, EntityType.ORGANIZATION, "Acme Corp", "acme corp")
        second, inserted = await store.create(
            WORKSPACE, EntityType.ORGANIZATION, "ACME CORP", "acme corp"
        )

        assert inserted is False
        assert second.id == first.id
        assert second.name == "Acme Corp"
        assert await store.count(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_concurrent_create_inserts_once(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]

        results = await asyncio.gather(
            store.create(WORKSPACE, EntityType.ORGANIZATION, "Globex Corp", "globex corp"),
            store.create(WORKSPACE, EntityType.ORGANIZATION, "GLOBEX CORP", "globex corp"),
        )

        assert sorted(inserted for _, inserted in results) == [False, True]
        assert results[0][0].id == results[1][0].id
        assert await store.count(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_same_name_different_type_is_distinct(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        org = await _create(store, "Jordan", EntityType.ORGANIZATION)
        person = await _create(store, "Jordan", EntityType.PERSON)
        assert org.id != person.id
        assert await store.count_by_type(WORKSPACE) == {
            EntityType.ORGANIZATION: 1,
            EntityType.PERSON: 1,
        }

    @pytest.mark.asyncio()
    async def test_entity_limit(self, knowledge_db_path) -> None:
        store = SQLiteEntityStore(db_path=knowledge_db_path, entity_limit=1)
        await store.initialize()
        await _create(store, "Acme Corp")

        with pytest.raises(EntityLimitExceededError) as exc_info:
            await _create(store, "Globex")

        assert exc_info.value.current_count == 1
        assert exc_info.value.limit == 1

    @pytest.mark.asyncio()
    async def test_limit_is_per_workspace(self, knowledge_db_path) -> None:
        store = SQLiteEntityStore(db_path=knowledge_db_path, entity_limit=1)
        await store.initialize()
        await _create(store, "Acme Corp")
        other = await _create(store, "Acme Corp", workspace_id="ws-other")
        assert other.workspace_id == "ws-other"

    @pytest.mark.asyncio()
    async def test_list_filter_search_and_sort(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        acme = await _create(store, "Acme Corp", aliases=["Roadrunner Supplies"])
        globex = await _create(store, "Globex")
        await _create(store, "Jane Doe", EntityType.PERSON)
        await store.increment_counts(globex.id, 3, 2)
        await store.increment_counts(acme.id, 1, 1)

        orgs = await store.list_by_workspace(WORKSPACE, entity_type=EntityType.ORGANIZATION)
        assert [e.name for e in orgs] == ["Globex", "Acme Corp"]

        by_name = await store.list_by_workspace(WORKSPACE, sort="name", order="asc")
        assert [e.name for e in by_name] == ["Acme Corp", "Globex", "Jane Doe"]

        by_alias = await store.list_by_workspace(WORKSPACE, search="roadrunner")
        assert [e.id for e in by_alias] == [acme.id]

        page = await store.list_by_workspace(WORKSPACE, sort="name", order="asc", limit=1, offset=1)
        assert [e.name for e in page] == ["Globex"]

    @pytest.mark.asyncio()
    async def test_recalculate_and_delete_without_mentions(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        mentions = sqlite_stack["mention_store"]
        kept = await _create(store, "Acme Corp")
        orphan = await _create(store, "Globex")
        await mentions.create(WORKSPACE, kept.id, "d1", "parties[0].name")
        await mentions.create(WORKSPACE, kept.id, "d1", "customer.name")
        await mentions.create(WORKSPACE, kept.id, "d2", "client")
        await store.increment_counts(kept.id, 10, 10)

        updated = await store.recalculate_all_counts(WORKSPACE)
        deleted = await store.delete_without_mentions(WORKSPACE)

        assert updated == 2
        assert deleted == [orphan.id]
        refreshed = await store.get_by_id(kept.id)
        assert refreshed.mention_count == 3
        assert refreshed.doc_count == 2
        assert await store.get_by_id(orphan.id) is None

    @pytest.mark.asyncio()
    async def test_latest_seen_at(self, sqlite_stack) -> None:
        store = sqlite_stack["entity_store"]
        assert await store.latest_seen_at(WORKSPACE) is None
        entity = await _create(store, "Acme Corp")
        await store.increment_counts(entity.id, 1, 1)
        assert await store.latest_seen_at(WORKSPACE) is not None


# ======================================================================
# Mention store
# ======================================================================


class TestSQLiteMentionStore:
    @pytest.mark.asyncio()
    async def test_duplicate_mention_returns_none(self, sqlite_stack) -> None:
        store = sqlite_stack["mention_store"]
        first = await store.create(WORKSPACE, "e1", "d1", "parties[0].name", confidence=0.9)
        again = await store.create(WORKSPACE, "e1", "d1", "parties[0].name", confidence=0.1)

        assert first is not None
        assert first.source == MentionSource.EXTRACTION
        assert again is None
        assert await store.count_by_workspace(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_get_by_entity_joins_title(self, sqlite_stack) -> None:
        await seed_document(sqlite_stack["document_source"], "d1", "Master Agreement")
        store = sqlite_stack["mention_store"]
        await store.create(WORKSPACE, "e1", "d1", "parties[0].name", context="Party (client) in contract")

        (mention,) = await store.get_by_entity("e1")

        assert mention.doc_title == "Master Agreement"
        assert mention.context == "Party (client) in contract"

    @pytest.mark.asyncio()
    async def test_get_by_doc_oldest_first(self, sqlite_stack) -> None:
        store = sqlite_stack["mention_store"]
        await store.create(WORKSPACE, "e1", "d1", "a")
        await store.create(WORKSPACE, "e2", "d1", "b")
        await store.create(WORKSPACE, "e3", "d2", "c")

        mentions = await store.get_by_doc("d1")

        assert [m.entity_id for m in mentions] == ["e1", "e2"]

    @pytest.mark.asyncio()
    async def test_delete_by_doc(self, sqlite_stack) -> None:
        store = sqlite_stack["mention_store"]
        await store.create(WORKSPACE, "e1", "d1", "a")
        await store.create(WORKSPACE, "e2", "d1", "b")
        assert await store.delete_by_doc("d1") == 2
        assert await store.get_by_doc("d1") == []


# ======================================================================
# Query log
# ======================================================================


class TestSQLiteQueryLog:
    @pytest.mark.asyncio()
    async def test_log_and_read_back(self, sqlite_stack) -> None:
        log = sqlite_stack["query_log"]
        entry = await log.log_query(
            WORKSPACE,
            "payment terms",
            QueryType.SEMANTIC_SEARCH,
            queried_by="user-1",
            results=[{"doc_id": "d1", "relevance": 0.9}],
            result_count=1,
            duration_ms=42,
            query_id="q-1",
        )

        assert entry.id == "q-1"
        (recent,) = await log.get_recent(WORKSPACE)
        assert recent.id == "q-1"
        assert recent.query_type == QueryType.SEMANTIC_SEARCH
        assert recent.results == [{"doc_id": "d1", "relevance": 0.9}]
        assert recent.duration_ms == 42
        assert await log.count(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_recent_is_newest_first(self, sqlite_stack) -> None:
        log = sqlite_stack["query_log"]
        for text in ("first", "second", "third"):
            await log.log_query(WORKSPACE, text, QueryType.ENTITY_SEARCH, queried_by="u")

        recent = await log.get_recent(WORKSPACE, limit=2)

        assert [e.query_text for e in recent] == ["third", "second"]


# ======================================================================
# Document source
# ======================================================================


class TestSQLiteDocumentSource:
    @pytest.mark.asyncio()
    async def test_documents_and_titles(self, sqlite_stack) -> None:
        source = sqlite_stack["document_source"]
        await seed_document(source, "d1", "MSA", content_html="<p>Body</p>")
        await seed_document(source, "d2", "Invoice")
        await seed_document(source, "x1", "Elsewhere", workspace_id="ws-other")

        doc = await source.get_document("d1")
        assert doc.workspace_id == WORKSPACE
        assert doc.content_html == "<p>Body</p>"
        assert {d.id for d in await source.list_documents(WORKSPACE)} == {"d1", "d2"}
        assert await source.get_titles(["d1", "missing"]) == {"d1": "MSA"}
        assert await source.get_document("missing") is None

    @pytest.mark.asyncio()
    async def test_extraction_round_trip(self, sqlite_stack) -> None:
        source = sqlite_stack["document_source"]
        await seed_document(
            source, "d1", "MSA", "contract", CONTRACT_DATA, field_confidences={"governingLaw": 0.8}
        )
        await seed_document(source, "d2", "No extraction")

        extraction = await source.get_extraction("d1")

        assert isinstance(extraction.payload, ContractExtraction)
        assert extraction.payload.governing_law == "Delaware"
        assert extraction.field_confidences == {"governingLaw": 0.8}
        assert await source.get_extraction("d2") is None
        assert set(await source.get_extractions(["d1", "d2"])) == {"d1"}
        assert await source.count_extracted(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_changed_since_sees_new_documents_and_extractions(self, sqlite_stack) -> None:
        source = sqlite_stack["document_source"]
        await seed_document(source, "d1", "MSA", "contract", CONTRACT_DATA)
        await seed_document(source, "d2", "Untouched")
        await asyncio.sleep(0.01)
        cutoff = datetime.datetime.now(datetime.timezone.utc)
        await asyncio.sleep(0.01)

        await seed_document(source, "d3", "New doc")
        await source.put_extraction("d1", "contract", {"governingLaw": "Ohio"})

        changed = await source.list_changed_since(WORKSPACE, cutoff)
        assert {d.id for d in changed} == {"d1", "d3"}
        assert await source.list_changed_since("ws-other", cutoff) == []


# ======================================================================
# Relationship store
# ======================================================================


def _evidence(*doc_ids: str) -> list[RelationshipEvidence]:
    return [RelationshipEvidence(doc_id=d, context="Co-occurrence in document") for d in doc_ids]


class TestSQLiteRelationshipStore:
    @pytest.mark.asyncio()
    async def test_co_occurrences_from_shared_documents(self, sqlite_stack) -> None:
        entities = sqlite_stack["entity_store"]
        mentions = sqlite_stack["mention_store"]
        acme = await _create(entities, "Acme Corp")
        jane = await _create(entities, "Jane Doe", EntityType.PERSON)
        bob = await _create(entities, "Bob Smith", EntityType.PERSON)
        for entity, doc_id, field in (
            (acme, "d1", "parties[0].name"),
            (acme, "d1", "customer.name"),
            (jane, "d1", "parties[1].name"),
            (acme, "d2", "customer.name"),
            (jane, "d2", "vendor.name"),
            (bob, "d3", "attendees[0]"),
        ):
            await mentions.create(WORKSPACE, entity.id, doc_id, field)

        pairs = await sqlite_stack["relationship_store"].find_co_occurrences(WORKSPACE)

        assert len(pairs) == 1
        entity_a, entity_b, doc_ids = pairs[0]
        assert (entity_a, entity_b) == tuple(sorted((acme.id, jane.id)))
        assert doc_ids == ["d1", "d2"]

    @pytest.mark.asyncio()
    async def test_co_occurrences_for_one_entity(self, sqlite_stack) -> None:
        entities = sqlite_stack["entity_store"]
        mentions = sqlite_stack["mention_store"]
        acme = await _create(entities, "Acme Corp")
        jane = await _create(entities, "Jane Doe", EntityType.PERSON)
        bob = await _create(entities, "Bob Smith", EntityType.PERSON)
        for entity in (acme, jane, bob):
            await mentions.create(WORKSPACE, entity.id, "d1", None)

        store = sqlite_stack["relationship_store"]

        assert len(await store.find_co_occurrences(WORKSPACE)) == 3
        touching_bob = await store.find_co_occurrences(WORKSPACE, entity_id=bob.id)
        assert len(touching_bob) == 2
        assert all(bob.id in (a, b) for a, b, _ in touching_bob)

    @pytest.mark.asyncio()
    async def test_upsert_creates_then_updates(self, sqlite_stack) -> None:
        store = sqlite_stack["relationship_store"]

        first, created = await store.upsert(
            WORKSPACE, "e1", "e2", RelationshipType.CONTRACTUAL, 0.5, _evidence("d1"),
            label="contracted with",
        )
        second, created_again = await store.upsert(
            WORKSPACE, "e1", "e2", RelationshipType.CONTRACTUAL, 1.7, _evidence("d1", "d2")
        )

        assert created is True
        assert created_again is False
        assert second.id == first.id
        assert second.strength == 1.0
        assert second.label == "contracted with"
        assert [e.doc_id for e in second.evidence] == ["d1", "d2"]
        assert await store.count(WORKSPACE) == 1

    @pytest.mark.asyncio()
    async def test_type_is_part_of_the_key(self, sqlite_stack) -> None:
        store = sqlite_stack["relationship_store"]
        await store.upsert(WORKSPACE, "e1", "e2", RelationshipType.CO_OCCURRENCE, 0.2, [])
        await store.upsert(WORKSPACE, "e1", "e2", RelationshipType.FINANCIAL, 0.8, [], label="pays")

        assert await store.count(WORKSPACE) == 2
        edge = await store.get_by_pair("e1", "e2", RelationshipType.FINANCIAL)
        assert edge.label == "pays"
        assert await store.get_by_pair("e2", "e1", RelationshipType.FINANCIAL) is None

    @pytest.mark.asyncio()
    async def test_list_filters_and_order(self, sqlite_stack) -> None:
        store = sqlite_stack["relationship_store"]
        await store.upsert(WORKSPACE, "e1", "e2", RelationshipType.CO_OCCURRENCE, 0.2, [])
        await store.upsert(WORKSPACE, "e1", "e3", RelationshipType.CO_OCCURRENCE, 0.9, [])
        await store.upsert(WORKSPACE, "e2", "e3", RelationshipType.FINANCIAL, 0.6, [])
        await store.upsert("ws-other", "x1", "x2", RelationshipType.CO_OCCURRENCE, 1.0, [])

        everything = await store.list_by_workspace(WORKSPACE)
        assert [e.strength for e in everything] == [0.9, 0.6, 0.2]

        strong = await store.list_by_workspace(WORKSPACE, min_strength=0.5)
        assert len(strong) == 2
        assert await store.count(WORKSPACE, min_strength=0.5) == 2

        financial = await store.list_by_workspace(
            WORKSPACE, relationship_type=RelationshipType.FINANCIAL
        )
        assert [(e.from_entity_id, e.to_entity_id) for e in financial] == [("e2", "e3")]

        assert await store.count(WORKSPACE, entity_id="e1") == 2
        page = await store.list_by_workspace(WORKSPACE, limit=1, offset=1)
        assert [e.strength for e in page] == [0.6]
        assert [e.to_entity_id for e in await store.get_by_entity("e3", limit=1)] == ["e3"]

    @pytest.mark.asyncio()
    async def test_delete_orphans(self, sqlite_stack) -> None:
        acme = await _create(sqlite_stack["entity_store"], "Acme Corp")
        jane = await _create(sqlite_stack["entity_store"], "Jane Doe", EntityType.PERSON)
        store = sqlite_stack["relationship_store"]
        await store.upsert(WORKSPACE, acme.id, jane.id, RelationshipType.CO_OCCURRENCE, 0.1, [])
        await store.upsert(WORKSPACE, acme.id, "gone", RelationshipType.CO_OCCURRENCE, 0.1, [])
        await store.upsert(WORKSPACE, "gone", "also-gone", RelationshipType.CUSTOM, 0.1, [])

        removed = await store.delete_orphans(WORKSPACE)

        assert removed == 2
        (kept,) = await store.list_by_workspace(WORKSPACE)
        assert {kept.from_entity_id, kept.to_entity_id} == {acme.id, jane.id}
