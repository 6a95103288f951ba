"""Abstract base class for the append-only knowledge query log."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from src.models.search import QueryLogEntry, QueryType


class IQueryLogProvider(ABC):
    """Contract for recording and reading back knowledge queries."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the query log table if it does not exist."""

    @abstractmethod
    async def log_query(
        self,
        workspace_id: str,
        query_text: str,
        query_type: QueryType,
        queried_by: str,
        results: Any = None,
        result_count: int = 0,
        duration_ms: int | None = None,
        query_id: str | None = None,
    ) -> QueryLogEntry:
        """Append one entry.

        Parameters
        ----------
        results:
            Any JSON-serializable summary of the returned results.
        query_id:
            Caller-supplied id so the entry can share the id returned to the
            user; generated when omitted.
        """

    @abstractmethod
    async def get_recent(self, workspace_id: str, limit: int = 10) -> list[QueryLogEntry]:
        """Most recent entries first."""

    @abstractmethod
    async def count(self, workspace_id: str) -> int:
        """Total entries logged for the workspace."""
