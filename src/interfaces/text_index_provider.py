"""Abstract base class for lexical text-index backends.

Two interchangeable backends implement this contract: an embedded SQLite
FTS5 index and a Postgres ``tsvector`` index.  Both follow the same sync
rules (delete-then-insert per record, batched workspace resync where every
batch commits in its own short transaction) and return hits whose
``relevance`` is already normalized to 0.0-1.0, so callers never need to
know which engine produced them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from src.models.document import Document
from src.models.entities import CanonicalEntity
from src.models.search import DocSearchHit, EntitySearchHit


# Concrete implementations: SQLiteFTSProvider, PostgresFTSProvider
# Located in: src/providers/text_index/
class ITextIndexProvider(ABC):
    """Contract for full-text indexing of documents and canonical entities.

    Sync methods raise :class:`~src.utils.errors.IndexSyncError` on failure.
    Search methods never raise: engine errors are logged and surface as an
    empty list, and an empty query returns ``[]`` without touching the
    engine.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create index tables if they do not exist."""

    # -- Documents -------------------------------------------------------

    @abstractmethod
    async def sync_document(
        self, doc_id: str, workspace_id: str, title: str, html: str
    ) -> None:
        """Replace the index record for one document.

        Parameters
        ----------
        doc_id:
            Document identifier.
        workspace_id:
            Owning workspace; every search is scoped to it.
        title:
            Document title, indexed alongside the body.
        html:
            Document body as HTML; converted to plain text before indexing.
        """

    @abstractmethod
    async def remove_document(self, doc_id: str) -> None:
        """Delete the index record for one document, if any."""

    @abstractmethod
    async def sync_workspace_documents(
        self, workspace_id: str, docs: Iterable[Document]
    ) -> int:
        """Rebuild every document record of a workspace.

        Returns
        -------
        int
            Number of documents indexed.
        """

    # -- Entities --------------------------------------------------------

    @abstractmethod
    async def sync_entity(
        self, entity_id: str, workspace_id: str, name: str, aliases: list[str]
    ) -> None:
        """Replace the index record for one canonical entity.

        Aliases are indexed as a single space-joined string.
        """

    @abstractmethod
    async def remove_entity(self, entity_id: str) -> None:
        """Delete the index record for one canonical entity, if any."""

    @abstractmethod
    async def sync_workspace_entities(
        self, workspace_id: str, entities: Iterable[CanonicalEntity]
    ) -> int:
        """Rebuild every entity record of a workspace; returns the count."""

    # -- Queries ---------------------------------------------------------

    @abstractmethod
    async def search_documents(
        self,
        workspace_id: str,
        query: str,
        limit: int = 20,
        offset: int = 0,
        snippet_tokens: int = 64,
    ) -> list[DocSearchHit]:
        """Full-text search over document titles and bodies.

        Parameters
        ----------
        workspace_id:
            Only documents of this workspace are considered.
        query:
            Free text.  Backends neutralize any query-language syntax.
        limit, offset:
            Pagination window.
        snippet_tokens:
            Upper bound on the highlighted snippet length.

        Returns
        -------
        list[DocSearchHit]
            Hits ordered best first with ``<mark>``-highlighted snippets.
        """

    @abstractmethod
    async def search_entities(
        self,
        workspace_id: str,
        query: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[EntitySearchHit]:
        """Full-text search over entity names and aliases."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the backend identifier, e.g. ``"sqlite_fts5"``."""
