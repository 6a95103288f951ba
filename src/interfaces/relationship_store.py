"""Abstract base class for entity-relationship persistence.

A relationship is unique per ``(from_entity_id, to_entity_id,
relationship_type)``.  Callers pass the pair in canonical order (smaller
entity id first); implementations do not reorder it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.relationships import (
    EntityRelationship,
    RelationshipEvidence,
    RelationshipType,
)


class IRelationshipStore(ABC):
    """Contract for relationship storage.  All operations are async."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def find_co_occurrences(
        self, workspace_id: str, entity_id: str | None = None
    ) -> list[tuple[str, str, list[str]]]:
        """Entity pairs that share documents, most shared documents first.

        Returns ``(entity_a_id, entity_b_id, shared_doc_ids)`` with
        ``entity_a_id < entity_b_id``.  With *entity_id*, only pairs that
        include that entity.
        """

    @abstractmethod
    async def upsert(
        self,
        workspace_id: str,
        from_entity_id: str,
        to_entity_id: str,
        relationship_type: RelationshipType,
        strength: float,
        evidence: list[RelationshipEvidence],
        label: str | None = None,
    ) -> tuple[EntityRelationship, bool]:
        """Create or update one edge.

        Returns the stored edge and ``True`` when this call created it.  An
        update keeps the existing label when *label* is ``None``.
        """

    @abstractmethod
    async def get_by_pair(
        self, from_entity_id: str, to_entity_id: str, relationship_type: RelationshipType
    ) -> EntityRelationship | None:
        """Return one edge or ``None``."""

    @abstractmethod
    async def get_by_entity(self, entity_id: str, limit: int = 20) -> list[EntityRelationship]:
        """Edges touching *entity_id* on either side, strongest first."""

    @abstractmethod
    async def list_by_workspace(
        self,
        workspace_id: str,
        entity_id: str | None = None,
        relationship_type: RelationshipType | None = None,
        min_strength: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EntityRelationship]:
        """List edges, strongest first, with optional filters."""

    @abstractmethod
    async def count(
        self,
        workspace_id: str,
        entity_id: str | None = None,
        relationship_type: RelationshipType | None = None,
        min_strength: float | None = None,
    ) -> int:
        """Number of edges matching the same filters as ``list_by_workspace``."""

    @abstractmethod
    async def delete_orphans(self, workspace_id: str) -> int:
        """Delete edges whose endpoints no longer exist; returns rows removed."""
