"""Result models for text-index search, related documents and semantic search.

Every score exposed here as ``relevance`` is normalized to 0.0-1.0 so that
results from either text-index backend, the deterministic ranker and the AI
stages can be compared directly.  ``notes`` fields carry human-readable
descriptions of any degradation (AI timeout, store error, ...) that occurred
while producing a result.
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.entities import EntityType


# ---------------------------------------------------------------------------
# Text index hits
# ---------------------------------------------------------------------------

class DocSearchHit(BaseModel):
    """A document matched by the text index.

    ``rank`` is the backend's native score (FTS5: negative is better;
    Postgres: positive is better).  ``relevance`` is the normalized score.
    """

    model_config = ConfigDict(frozen=True)

    doc_id: str
    title: str = ""
    snippet: str = ""
    rank: float = 0.0
    relevance: float = Field(default=0.1, ge=0.0, le=1.0)


class EntitySearchHit(BaseModel):
    """A canonical entity matched by the text index."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str = ""
    aliases: str = ""
    rank: float = 0.0
    relevance: float = Field(default=0.1, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Related documents
# ---------------------------------------------------------------------------

class SharedEntity(BaseModel):
    """An entity the source document shares with a related document."""

    model_config = ConfigDict(frozen=True)

    name: str
    entity_type: EntityType


class RelatedDoc(BaseModel):
    model_config = ConfigDict(frozen=True)

    doc_id: str
    title: str
    relevance: float = Field(ge=0.0, le=1.0)
    shared_entities: list[SharedEntity] = Field(default_factory=list)
    shared_entity_count: int = 0


class RelatedDocsResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    related_docs: list[RelatedDoc] = Field(default_factory=list)
    entity_count: int = 0
    total_related: int = 0
    notes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Semantic search
# ---------------------------------------------------------------------------

class SearchSnippet(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    field_path: str | None = None


class SearchResult(BaseModel):
    """One cited document in a semantic search answer."""

    model_config = ConfigDict(frozen=True)

    doc_id: str
    doc_title: str
    relevance: float = Field(ge=0.0, le=1.0)
    snippets: list[SearchSnippet] = Field(default_factory=list)
    matched_entities: list[str] = Field(default_factory=list)


class SemanticSearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query_id: str
    query: str
    answer: str
    results: list[SearchResult] = Field(default_factory=list)
    result_count: int = 0
    duration_ms: int = 0
    notes: list[str] = Field(default_factory=list)


class KeywordSearchResult(BaseModel):
    """Both index searches side by side, without any AI involvement."""

    model_config = ConfigDict(frozen=True)

    query: str
    entities: list[EntitySearchHit] = Field(default_factory=list)
    documents: list[DocSearchHit] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Query log
# ---------------------------------------------------------------------------

class QueryType(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    SEMANTIC_SEARCH = "semantic_search"
    ENTITY_SEARCH = "entity_search"
    RELATED_DOCS = "related_docs"


class QueryLogEntry(BaseModel):
    """An append-only record of one knowledge query."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    query_text: str
    query_type: QueryType
    results: Any = None
    result_count: int = 0
    queried_by: str
    duration_ms: int | None = None
    created_at: datetime.datetime | None = None
