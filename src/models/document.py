"""Read-only view of a workspace document as supplied by the document source."""

from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict


class Document(BaseModel):
    """A document's identity, title and HTML body.

    The engine never writes documents; it only indexes and cross-references
    them.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    title: str = "Untitled"
    content_html: str = ""
    updated_at: datetime.datetime | None = None
