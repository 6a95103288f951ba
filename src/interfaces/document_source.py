"""Abstract base class for the read-only document and extraction source.

Document CRUD and AI extraction happen elsewhere in the platform; the
knowledge engine only reads their results through this contract.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod

from src.models.document import Document
from src.models.extraction import Extraction


class IDocumentSource(ABC):
    """Read access to workspace documents and their structured extractions."""

    @abstractmethod
    async def get_document(self, doc_id: str) -> Document | None:
        """Return one document or ``None`` if it does not exist."""

    @abstractmethod
    async def get_titles(self, doc_ids: list[str]) -> dict[str, str]:
        """Batch title lookup; unknown ids are absent from the result."""

    @abstractmethod
    async def list_documents(self, workspace_id: str) -> list[Document]:
        """Every live document in the workspace."""

    @abstractmethod
    async def list_changed_since(
        self, workspace_id: str, since: datetime.datetime
    ) -> list[Document]:
        """Live documents whose body or extraction changed after *since*."""

    @abstractmethod
    async def get_extraction(self, doc_id: str) -> Extraction | None:
        """The document's extraction, or ``None`` if it has none."""

    @abstractmethod
    async def get_extractions(self, doc_ids: list[str]) -> dict[str, Extraction]:
        """Batch extraction lookup keyed by document id."""

    @abstractmethod
    async def count_extracted(self, workspace_id: str) -> int:
        """Number of live documents in the workspace that have an extraction."""
