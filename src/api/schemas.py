"""Pydantic request/response schemas for the knowledge API.

Defines the public contract for the REST endpoints.  Where a domain model
already has the right shape (``SemanticSearchResult``,
``RelatedDocsResult``, ``IndexStatus`` ...) routes return it directly; the
schemas here cover request bodies, list envelopes and system endpoints.

# ─── HOW SCHEMAS WORK ─────────────────────────────────────────────────
#
# FastAPI uses these models to validate incoming JSON (invalid requests
# get a 422), to serialize responses (via response_model=...), and to
# generate the OpenAPI docs at /docs.
#
# Convention: request schemas end with "Request", response schemas end
# with "Response".
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.models.entities import CanonicalEntity, EntityMention, EntityType
from src.models.indexing import DuplicateCandidate
from src.models.relationships import EntityRelationshipView, RelationshipView


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class EntityListResponse(BaseModel):
    """One page of workspace entities plus the unpaged total."""

    entities: list[CanonicalEntity]
    total: int
    limit: int
    offset: int


class EntityDetailResponse(BaseModel):
    entity: CanonicalEntity
    mentions: list[EntityMention] = Field(default_factory=list)
    relationships: list[EntityRelationshipView] = Field(default_factory=list)


class DuplicateListResponse(BaseModel):
    candidates: list[DuplicateCandidate]
    total: int


class RelationshipListResponse(BaseModel):
    """One page of hydrated relationships plus the unpaged total."""

    relationships: list[RelationshipView]
    total: int
    limit: int
    offset: int


class DocEntity(BaseModel):
    """An entity as it appears in one document (first mention wins)."""

    entity_id: str
    entity_type: EntityType
    name: str
    context: str | None = None
    confidence: float
    field_path: str | None = None


class DocEntitiesResponse(BaseModel):
    entities: list[DocEntity]
    total: int


# ---------------------------------------------------------------------------
# Search & indexing
# ---------------------------------------------------------------------------


class SemanticSearchRequest(BaseModel):
    """Natural-language question; ``limit`` is clamped to 1-20 (default 10)."""

    query: str = Field(..., description="The question to answer from workspace documents")
    limit: int | None = None


class IndexAcceptedResponse(BaseModel):
    """Returned with 202 when a re-index has been scheduled."""

    workspace_id: str
    status: str = "accepted"
    mode: str = "full"
    message: str
