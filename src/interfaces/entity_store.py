"""Abstract base class for canonical-entity persistence.

Canonical entities are unique per ``(workspace_id, entity_type,
normalized_name)``.  Implementations enforce that with a storage-level
unique constraint and resolve concurrent creation by fetching the winning
row, so two harvesters racing on the same name converge on one entity.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from typing import Any

from src.models.entities import CanonicalEntity, EntityType


class IEntityStore(ABC):
    """Contract for workspace entity storage.  All operations are async."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""

    @abstractmethod
    async def create(
        self,
        workspace_id: str,
        entity_type: EntityType,
        name: str,
        normalized_name: str,
        aliases: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[CanonicalEntity, bool]:
        """Create an entity, or fetch it if a concurrent writer got there first.

        Returns
        -------
        tuple[CanonicalEntity, bool]
            The entity and ``True`` when this call inserted it.

        Raises
        ------
        src.utils.errors.EntityLimitExceededError
            If the workspace already holds the configured maximum.
        """

    @abstractmethod
    async def get_by_id(self, entity_id: str) -> CanonicalEntity | None:
        """Return one entity or ``None``."""

    @abstractmethod
    async def get_by_normalized_name(
        self, workspace_id: str, normalized_name: str, entity_type: EntityType
    ) -> CanonicalEntity | None:
        """Look up the canonical entity for a normalized name and type."""

    @abstractmethod
    async def list_by_workspace(
        self,
        workspace_id: str,
        entity_type: EntityType | None = None,
        search: str | None = None,
        sort: str = "doc_count",
        order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> list[CanonicalEntity]:
        """List entities with optional type filter and name/alias substring search.

        Parameters
        ----------
        sort:
            One of ``doc_count``, ``mention_count``, ``name``, ``created_at``.
        order:
            ``asc`` or ``desc``.
        """

    @abstractmethod
    async def count(self, workspace_id: str, entity_type: EntityType | None = None) -> int:
        """Number of entities in the workspace, optionally of one type."""

    @abstractmethod
    async def count_by_type(self, workspace_id: str) -> dict[EntityType, int]:
        """Entity counts per type for the workspace."""

    @abstractmethod
    async def increment_counts(
        self, entity_id: str, mention_delta: int, doc_delta: int
    ) -> None:
        """Bump ``mention_count`` and ``doc_count`` and touch ``last_seen_at``."""

    @abstractmethod
    async def recalculate_all_counts(self, workspace_id: str) -> int:
        """Recompute counts from mentions for every entity; returns rows updated."""

    @abstractmethod
    async def delete_without_mentions(self, workspace_id: str) -> list[str]:
        """Delete entities no mention refers to; returns the deleted ids."""

    @abstractmethod
    async def latest_seen_at(self, workspace_id: str) -> datetime.datetime | None:
        """Most recent ``last_seen_at`` across the workspace's entities."""
