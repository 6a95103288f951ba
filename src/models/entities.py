"""Core domain entities for the knowledge engine.

Defines enums and Pydantic v2 models for canonical workspace entities, their
per-document mentions, and the intermediate "raw" entities produced while
harvesting structured extraction data.  All models use frozen config to
enforce immutability.

Key relationships:
    - CanonicalEntity is unique per (workspace_id, entity_type, normalized_name)
    - EntityMention links one CanonicalEntity to one document field path
    - RawEntity is the harvester's pre-canonicalization output; it never
      reaches storage directly
    - HarvestResult summarizes one harvesting run
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class EntityType(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Kinds of real-world things a canonical entity can represent.

    Values are lowercase so they round-trip unchanged through SQLite,
    Postgres and the JSON API.
    """

    PERSON = "person"
    ORGANIZATION = "organization"
    DATE = "date"
    AMOUNT = "amount"
    LOCATION = "location"
    PRODUCT = "product"
    CONCEPT = "concept"
    TERM = "term"


class MentionSource(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Where a mention came from."""

    EXTRACTION = "extraction"
    MANUAL = "manual"
    AI_INDEX = "ai_index"


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

class CanonicalEntity(BaseModel):
    """A deduplicated, workspace-scoped real-world entity.

    ``mention_count`` counts every (document, field path) occurrence, while
    ``doc_count`` counts distinct documents; the related-documents ranker
    derives its importance weight from ``doc_count``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    entity_type: EntityType
    name: str
    normalized_name: str
    aliases: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    mention_count: int = 0
    doc_count: int = 0
    first_seen_at: datetime.datetime | None = None
    last_seen_at: datetime.datetime | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class EntityMention(BaseModel):
    """One occurrence of a canonical entity in a specific document field."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    entity_id: str
    doc_id: str
    field_path: str | None = None
    context: str | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source: MentionSource = MentionSource.EXTRACTION
    created_at: datetime.datetime | None = None
    # Joined from the documents table on read paths only.
    doc_title: str | None = None


# ---------------------------------------------------------------------------
# Harvesting
# ---------------------------------------------------------------------------

class RawEntity(BaseModel):
    """An entity as read off an extraction payload, before canonicalization."""

    model_config = ConfigDict(frozen=True)

    name: str
    entity_type: EntityType
    field_path: str
    context: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HarvestResult(BaseModel):
    """Counters and error notes from a single harvesting run.

    ``errors`` collects per-entity failures; a non-empty list never means
    the run was aborted.
    """

    model_config = ConfigDict(frozen=True)

    doc_id: str
    workspace_id: str
    entities_created: int = 0
    entities_reused: int = 0
    mentions_created: int = 0
    mentions_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
