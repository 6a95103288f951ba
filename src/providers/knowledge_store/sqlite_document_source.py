"""SQLite-backed document and extraction source.

Reads the ``docs`` and ``extractions`` tables of the knowledge database.
In a full deployment those tables are owned by the platform's document
service; ``put_document`` and ``put_extraction`` exist so the CLI ``load``
command and the test-suite can seed a standalone database.
"""

from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.document_source import IDocumentSource
from src.models.document import Document
from src.models.extraction import Extraction
from src.providers.knowledge_store.schema import NOW_SQL, ensure_schema

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_UPSERT_DOC_SQL = f"""\
INSERT INTO docs (id, workspace_id, title, content_html)
VALUES (?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET workspace_id = excluded.workspace_id,
                              title        = excluded.title,
                              content_html = excluded.content_html,
                              updated_at   = {NOW_SQL},
                              deleted_at   = NULL;
"""

_UPSERT_EXTRACTION_SQL = f"""\
INSERT INTO extractions (doc_id, document_type, extraction_json, field_confidences_json)
VALUES (?, ?, ?, ?)
ON CONFLICT(doc_id) DO UPDATE SET document_type          = excluded.document_type,
                                  extraction_json        = excluded.extraction_json,
                                  field_confidences_json = excluded.field_confidences_json,
                                  updated_at             = {NOW_SQL};
"""

_SELECT_DOC_SQL = """\
SELECT id, workspace_id, title, content_html, updated_at FROM docs
"""


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document(
        id=row["id"],
        workspace_id=row["workspace_id"],
        title=row["title"] or "Untitled",
        content_html=row["content_html"] or "",
        updated_at=row["updated_at"],
    )


def _row_to_extraction(row: aiosqlite.Row) -> Extraction:
    return Extraction.from_stored(
        doc_id=row["doc_id"],
        document_type=row["document_type"],
        data=json.loads(row["extraction_json"] or "{}"),
        field_confidences=json.loads(row["field_confidences_json"] or "{}"),
    )


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _to_sql_timestamp(value: datetime.datetime) -> str:
    """Render *value* the way ``NOW_SQL`` stores timestamps (UTC, milliseconds, trailing Z)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    value = value.astimezone(datetime.timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class SQLiteDocumentSource(IDocumentSource):
    """Read documents and extractions from the shared knowledge database."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await ensure_schema(db)
        logger.info("document_source_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    async def put_document(
        self, doc_id: str, workspace_id: str, title: str, content_html: str = ""
    ) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_DOC_SQL, (doc_id, workspace_id, title, content_html))
            await db.commit()

    async def put_extraction(
        self,
        doc_id: str,
        document_type: str,
        data: dict[str, Any],
        field_confidences: dict[str, float] | None = None,
    ) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_EXTRACTION_SQL,
                (doc_id, document_type, json.dumps(data), json.dumps(field_confidences or {})),
            )
            await db.commit()

    # ------------------------------------------------------------------
    # IDocumentSource
    # ------------------------------------------------------------------

    async def get_document(self, doc_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_DOC_SQL + "WHERE id = ? AND deleted_at IS NULL", (doc_id,)
            )
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def get_titles(self, doc_ids: list[str]) -> dict[str, str]:
        if not doc_ids:
            return {}
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                f"SELECT id, title FROM docs WHERE id IN ({_placeholders(len(doc_ids))})",
                list(doc_ids),
            )
            rows = await cursor.fetchall()
        return {r[0]: r[1] or "Untitled" for r in rows}

    async def list_documents(self, workspace_id: str) -> list[Document]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_DOC_SQL
                + "WHERE workspace_id = ? AND deleted_at IS NULL ORDER BY updated_at DESC, id",
                (workspace_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def list_changed_since(
        self, workspace_id: str, since: datetime.datetime
    ) -> list[Document]:
        cutoff = _to_sql_timestamp(since)
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT d.id, d.workspace_id, d.title, d.content_html, d.updated_at FROM docs d "
                "LEFT JOIN extractions e ON e.doc_id = d.id "
                "WHERE d.workspace_id = ? AND d.deleted_at IS NULL "
                "AND (d.updated_at > ? OR e.updated_at > ?) ORDER BY d.updated_at DESC, d.id",
                (workspace_id, cutoff, cutoff),
            )
            rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def get_extraction(self, doc_id: str) -> Extraction | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT doc_id, document_type, extraction_json, field_confidences_json "
                "FROM extractions WHERE doc_id = ?",
                (doc_id,),
            )
            row = await cursor.fetchone()
        return _row_to_extraction(row) if row else None

    async def get_extractions(self, doc_ids: list[str]) -> dict[str, Extraction]:
        if not doc_ids:
            return {}
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT doc_id, document_type, extraction_json, field_confidences_json "
                f"FROM extractions WHERE doc_id IN ({_placeholders(len(doc_ids))})",
                list(doc_ids),
            )
            rows = await cursor.fetchall()
        return {r["doc_id"]: _row_to_extraction(r) for r in rows}

    async def count_extracted(self, workspace_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(DISTINCT e.doc_id) FROM extractions e "
                "JOIN docs d ON d.id = e.doc_id "
                "WHERE d.workspace_id = ? AND d.deleted_at IS NULL",
                (workspace_id,),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def get_provider_name(self) -> str:
        return "sqlite_document_source"
