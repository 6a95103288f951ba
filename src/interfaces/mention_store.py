"""Abstract base class for entity-mention persistence.

A mention is unique per ``(entity_id, doc_id, field_path)``; inserting a
duplicate is a no-op reported as ``None`` rather than an error, which is
what makes harvesting idempotent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.entities import EntityMention, MentionSource


class IMentionStore(ABC):
    """Contract for mention storage.  All operations are async."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def create(
        self,
        workspace_id: str,
        entity_id: str,
        doc_id: str,
        field_path: str | None,
        context: str | None = None,
        confidence: float = 0.5,
        source: MentionSource = MentionSource.EXTRACTION,
    ) -> EntityMention | None:
        """Insert a mention; return ``None`` if it already existed."""

    @abstractmethod
    async def get_by_entity(self, entity_id: str, limit: int = 50) -> list[EntityMention]:
        """Mentions of one entity, newest first, with ``doc_title`` joined."""

    @abstractmethod
    async def get_by_doc(self, doc_id: str) -> list[EntityMention]:
        """Mentions inside one document, oldest first."""

    @abstractmethod
    async def count_by_workspace(self, workspace_id: str) -> int:
        """Total mentions in the workspace."""

    @abstractmethod
    async def delete_by_doc(self, doc_id: str) -> int:
        """Remove every mention of a deleted document; returns rows removed."""
