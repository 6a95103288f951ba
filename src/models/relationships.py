"""Entity relationship models for the workspace knowledge graph.

Two entities are related when they appear in the same documents.  Every
co-occurring pair gets a deterministic ``co_occurrence`` edge whose strength
grows with the number of shared documents; an optional AI pass may add a
typed, labelled edge (``contractual``, ``financial`` ...) for the same pair.

An edge is unique per ``(from_entity_id, to_entity_id, relationship_type)``
and always stored with the lexically smaller entity id on the ``from`` side.
"""

from __future__ import annotations

import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.entities import CanonicalEntity, EntityType


class RelationshipType(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    CO_OCCURRENCE = "co_occurrence"
    CONTRACTUAL = "contractual"
    FINANCIAL = "financial"
    ORGANIZATIONAL = "organizational"
    TEMPORAL = "temporal"
    CUSTOM = "custom"


class RelationshipEvidence(BaseModel):
    """Why two entities are linked in one shared document."""

    model_config = ConfigDict(frozen=True)

    doc_id: str
    context: str


class EntityRelationship(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    from_entity_id: str
    to_entity_id: str
    relationship_type: RelationshipType
    label: str | None = None
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: list[RelationshipEvidence] = Field(default_factory=list)
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class CoOccurrence(BaseModel):
    """Two entities found together in at least one document."""

    model_config = ConfigDict(frozen=True)

    entity_a: CanonicalEntity
    entity_b: CanonicalEntity
    shared_doc_ids: list[str]

    @property
    def shared_doc_count(self) -> int:
        return len(self.shared_doc_ids)


class RelationshipDetectionResult(BaseModel):
    """Counters from one detection pass; ``errors`` never means it aborted."""

    model_config = ConfigDict(frozen=True)

    workspace_id: str
    co_occurrences_found: int = 0
    ai_labeled: int = 0
    relationships_created: int = 0
    relationships_updated: int = 0
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

class RelatedEntityRef(BaseModel):
    """Compact entity reference on a hydrated relationship.

    A relationship whose endpoint was deleted shows ``(deleted)`` with an
    ``unknown`` type instead of disappearing.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    entity_type: EntityType | str


class RelationshipView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    from_entity: RelatedEntityRef
    to_entity: RelatedEntityRef
    relationship_type: RelationshipType
    label: str | None = None
    strength: float
    evidence_count: int
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class EntityRelationshipView(BaseModel):
    """A relationship seen from one entity: the other endpoint is ``related_entity``."""

    model_config = ConfigDict(frozen=True)

    id: str
    related_entity: RelatedEntityRef
    relationship_type: RelationshipType
    label: str | None = None
    strength: float
    evidence_count: int
