"""Models for workspace-level index maintenance and reporting."""

from __future__ import annotations

import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models.entities import CanonicalEntity, EntityType
from src.models.search import QueryLogEntry


class ReindexResult(BaseModel):
    """Outcome of a workspace re-index.

    ``mode`` is the mode that actually ran: an incremental request on a
    workspace that was never indexed runs in full.
    """

    model_config = ConfigDict(frozen=True)

    workspace_id: str
    mode: Literal["full", "incremental"] = "full"
    docs_processed: int = 0
    entities_created: int = 0
    entities_reused: int = 0
    mentions_created: int = 0
    docs_indexed: int = 0
    entities_indexed: int = 0
    relationships_created: int = 0
    relationships_updated: int = 0
    errors: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace_id: str
    entities_recalculated: int = 0
    stale_entities_deleted: int = 0
    relationships_deleted: int = 0


class IndexStatus(BaseModel):
    """Point-in-time counters for a workspace's knowledge index."""

    model_config = ConfigDict(frozen=True)

    workspace_id: str
    entity_count: int = 0
    mention_count: int = 0
    indexed_doc_count: int = 0
    total_doc_count: int = 0
    last_indexed_at: datetime.datetime | None = None


class WorkspaceSummary(BaseModel):
    """Dashboard view: totals, most-connected entities and recent queries."""

    model_config = ConfigDict(frozen=True)

    workspace_id: str
    entity_count: int = 0
    mention_count: int = 0
    entity_type_breakdown: dict[EntityType, int] = Field(default_factory=dict)
    top_entities: list[CanonicalEntity] = Field(default_factory=list)
    recent_queries: list[QueryLogEntry] = Field(default_factory=list)


class DuplicateCandidate(BaseModel):
    """Two entities that probably denote the same real-world thing.

    Produced for human review only; nothing in the engine merges entities
    automatically.
    """

    model_config = ConfigDict(frozen=True)

    entity_a: CanonicalEntity
    entity_b: CanonicalEntity
    similarity: float = Field(ge=0.0, le=1.0)
    reason: str
