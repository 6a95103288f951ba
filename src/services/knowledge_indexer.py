"""Workspace-level maintenance of the knowledge index.

Covers the operations that act on a whole workspace rather than a single
document or query:

- **reindex**  -- harvest every document, then rebuild both text indexes
  from scratch and refresh entity relationships.  Each stage is
  independent: a failing stage records an error and the next one still
  runs.  The incremental mode limits harvesting and document indexing to
  documents changed since the last harvest.
- **cleanup**  -- recompute entity counters from mentions and delete
  entities nothing mentions any more, along with their relationships.
  This is an explicit operator action; harvesting never deletes entities.
- **status** / **summary** -- read-only counters for dashboards.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field

import structlog

from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.mention_store import IMentionStore
from src.interfaces.query_log_provider import IQueryLogProvider
from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.entities import CanonicalEntity, HarvestResult
from src.models.indexing import CleanupResult, IndexStatus, ReindexResult, WorkspaceSummary
from src.services.entity_harvester import EntityHarvester
from src.services.relationship_detector import RelationshipDetector
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

_ENTITY_PAGE_SIZE = 500
TOP_ENTITY_COUNT = 10
RECENT_QUERY_COUNT = 5
REINDEX_MODES = ("full", "incremental")


@dataclass
class _Pass:
    harvest: HarvestResult
    docs_processed: int = 0
    docs_indexed: int = 0
    entities_indexed: int = 0
    errors: list[str] = field(default_factory=list)


class KnowledgeIndexer:
    """Full re-index, cleanup and reporting for a workspace's knowledge data."""

    def __init__(
        self,
        harvester: EntityHarvester,
        entity_store: IEntityStore,
        mention_store: IMentionStore,
        text_index: ITextIndexProvider,
        document_source: IDocumentSource,
        query_log: IQueryLogProvider,
        relationship_detector: RelationshipDetector | None = None,
    ) -> None:
        self._harvester = harvester
        self._entities = entity_store
        self._mentions = mention_store
        self._index = text_index
        self._documents = document_source
        self._query_log = query_log
        self._relationships = relationship_detector

    async def reindex_workspace(self, workspace_id: str, mode: str = "full") -> ReindexResult:
        """Harvest documents, rebuild the text indexes and refresh relationships.

        Args:
            workspace_id: The workspace to rebuild.
            mode: ``"full"`` harvests and re-indexes every document.
                ``"incremental"`` only touches documents whose body or
                extraction changed since the newest entity ``last_seen_at``,
                and falls back to full when the workspace has no entities.

        Returns:
            Counters from every stage plus any stage errors.

        Raises:
            ValueError: If *mode* is not a known mode.
        """
        if mode not in REINDEX_MODES:
            raise ValueError(f"Unknown reindex mode: {mode}")

        since = None
        if mode == "incremental":
            since = await self._entities.latest_seen_at(workspace_id)
        if since is None:
            result = await self._full_pass(workspace_id)
        else:
            result = await self._incremental_pass(workspace_id, since)

        errors = list(result.errors)
        detection = None
        if self._relationships is not None:
            detection = await self._relationships.detect_workspace_relationships(workspace_id)
            errors.extend(detection.errors)

        reindex = ReindexResult(
            workspace_id=workspace_id,
            mode="full" if since is None else "incremental",
            docs_processed=result.docs_processed,
            entities_created=result.harvest.entities_created,
            entities_reused=result.harvest.entities_reused,
            mentions_created=result.harvest.mentions_created,
            docs_indexed=result.docs_indexed,
            entities_indexed=result.entities_indexed,
            relationships_created=detection.relationships_created if detection else 0,
            relationships_updated=detection.relationships_updated if detection else 0,
            errors=errors,
        )
        logger.info(
            "reindex_completed",
            workspace_id=workspace_id,
            mode=reindex.mode,
            docs_processed=reindex.docs_processed,
            entities_created=reindex.entities_created,
            mentions_created=reindex.mentions_created,
            docs_indexed=reindex.docs_indexed,
            entities_indexed=reindex.entities_indexed,
            relationships_created=reindex.relationships_created,
            error_count=len(errors),
        )
        return reindex

    async def _full_pass(self, workspace_id: str) -> _Pass:
        errors: list[str] = []
        docs_processed = docs_indexed = entities_indexed = 0

        harvest = await self._harvester.harvest_workspace(workspace_id)
        errors.extend(harvest.errors)

        try:
            docs = await self._documents.list_documents(workspace_id)
            docs_processed = len(docs)
            docs_indexed = await self._index.sync_workspace_documents(workspace_id, docs)
        except Exception as exc:
            logger.error("reindex_docs_failed", workspace_id=workspace_id, error=str(exc))
            errors.append(f"Document index rebuild failed: {exc}")

        try:
            entities = await self._all_entities(workspace_id)
            entities_indexed = await self._index.sync_workspace_entities(workspace_id, entities)
        except Exception as exc:
            logger.error("reindex_entities_failed", workspace_id=workspace_id, error=str(exc))
            errors.append(f"Entity index rebuild failed: {exc}")

        return _Pass(harvest, docs_processed, docs_indexed, entities_indexed, errors)

    async def _incremental_pass(
        self, workspace_id: str, since: datetime.datetime
    ) -> _Pass:
        """Re-harvest and re-index only what changed after *since*.

        New entities are indexed by the harvester as it creates them, so
        ``entities_indexed`` equals ``entities_created`` here.
        """
        errors: list[str] = []
        docs_indexed = 0
        try:
            changed = await self._documents.list_changed_since(workspace_id, since)
        except Exception as exc:
            logger.error("reindex_changes_failed", workspace_id=workspace_id, error=str(exc))
            changed = []
            errors.append(f"Change detection failed: {exc}")

        harvest = await self._harvester.harvest_documents(workspace_id, [d.id for d in changed])
        errors.extend(harvest.errors)

        for doc in changed:
            try:
                await self._index.sync_document(doc.id, workspace_id, doc.title, doc.content_html)
                docs_indexed += 1
            except Exception as exc:
                logger.warning("reindex_doc_failed", doc_id=doc.id, error=str(exc))
                errors.append(f"Document index update failed for {doc.id}: {exc}")

        logger.debug(
            "incremental_changes", workspace_id=workspace_id, since=since.isoformat(), docs=len(changed)
        )
        return _Pass(harvest, len(changed), docs_indexed, harvest.entities_created, errors)

    async def cleanup_workspace(self, workspace_id: str) -> CleanupResult:
        """Recalculate counters, then drop unmentioned entities and their relationships."""
        recalculated = await self._entities.recalculate_all_counts(workspace_id)
        deleted = await self._entities.delete_without_mentions(workspace_id)
        for entity_id in deleted:
            try:
                await self._index.remove_entity(entity_id)
            except Exception as exc:
                logger.warning("cleanup_index_remove_failed", entity_id=entity_id, error=str(exc))

        relationships_deleted = 0
        if self._relationships is not None:
            relationships_deleted = await self._relationships.prune(workspace_id)

        logger.info(
            "cleanup_completed",
            workspace_id=workspace_id,
            entities_recalculated=recalculated,
            stale_entities_deleted=len(deleted),
            relationships_deleted=relationships_deleted,
        )
        return CleanupResult(
            workspace_id=workspace_id,
            entities_recalculated=recalculated,
            stale_entities_deleted=len(deleted),
            relationships_deleted=relationships_deleted,
        )

    async def remove_document(self, doc_id: str) -> int:
        """Forget a deleted document: drop its mentions and its index row."""
        removed = await self._mentions.delete_by_doc(doc_id)
        await self._index.remove_document(doc_id)
        return removed

    async def get_status(self, workspace_id: str) -> IndexStatus:
        docs = await self._documents.list_documents(workspace_id)
        return IndexStatus(
            workspace_id=workspace_id,
            entity_count=await self._entities.count(workspace_id),
            mention_count=await self._mentions.count_by_workspace(workspace_id),
            indexed_doc_count=await self._documents.count_extracted(workspace_id),
            total_doc_count=len(docs),
            last_indexed_at=await self._entities.latest_seen_at(workspace_id),
        )

    async def get_summary(self, workspace_id: str) -> WorkspaceSummary:
        return WorkspaceSummary(
            workspace_id=workspace_id,
            entity_count=await self._entities.count(workspace_id),
            mention_count=await self._mentions.count_by_workspace(workspace_id),
            entity_type_breakdown=await self._entities.count_by_type(workspace_id),
            top_entities=await self._entities.list_by_workspace(
                workspace_id, sort="doc_count", order="desc", limit=TOP_ENTITY_COUNT
            ),
            recent_queries=await self._query_log.get_recent(workspace_id, limit=RECENT_QUERY_COUNT),
        )

    async def _all_entities(self, workspace_id: str) -> list[CanonicalEntity]:
        entities: list[CanonicalEntity] = []
        offset = 0
        while True:
            page = await self._entities.list_by_workspace(
                workspace_id, sort="created_at", order="asc",
                limit=_ENTITY_PAGE_SIZE, offset=offset,
            )
            entities.extend(page)
            if len(page) < _ENTITY_PAGE_SIZE:
                return entities
            offset += _ENTITY_PAGE_SIZE
