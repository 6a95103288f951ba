"""SQLite-backed entity mention store.

Mentions are written with ``INSERT OR IGNORE`` against the
``UNIQUE(entity_id, doc_id, field_path)`` constraint, so re-harvesting a
document never duplicates rows.  Read paths left-join ``docs`` to expose the
document title alongside each mention.
"""

from __future__ import annotations

import datetime
import uuid
from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.mention_store import IMentionStore
from src.models.entities import EntityMention, MentionSource
from src.providers.knowledge_store.schema import ensure_schema
from src.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_INSERT_SQL = """\
INSERT OR IGNORE INTO entity_mentions (
    id, workspace_id, entity_id, doc_id, field_path, context,
    confidence, source, created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_WITH_TITLE = """\
SELECT m.id, m.workspace_id, m.entity_id, m.doc_id, m.field_path, m.context,
       m.confidence, m.source, m.created_at, d.title AS doc_title
FROM entity_mentions m
LEFT JOIN docs d ON d.id = m.doc_id
"""


def _row_to_mention(row: aiosqlite.Row) -> EntityMention:
    return EntityMention(
        id=row["id"],
        workspace_id=row["workspace_id"],
        entity_id=row["entity_id"],
        doc_id=row["doc_id"],
        field_path=row["field_path"],
        context=row["context"],
        confidence=row["confidence"],
        source=MentionSource(row["source"]),
        created_at=row["created_at"],
        doc_title=row["doc_title"],
    )


class SQLiteMentionStore(IMentionStore):
    """SQLite-backed mention persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await ensure_schema(db)
        logger.info("mention_store_initialized", path=str(self._db_path))

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
        """Insert a mention.  Returns ``None`` when it already existed."""
        mention_id = uuid.uuid4().hex
        created_at = datetime.datetime.now(datetime.timezone.utc)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    _INSERT_SQL,
                    (
                        mention_id,
                        workspace_id,
                        entity_id,
                        doc_id,
                        field_path,
                        context,
                        confidence,
                        MentionSource(source).value,
                        created_at.isoformat(timespec="milliseconds"),
                    ),
                )
                inserted = cursor.rowcount == 1
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to record mention: {exc}", "sqlite") from exc

        if not inserted:
            return None
        return EntityMention(
            id=mention_id,
            workspace_id=workspace_id,
            entity_id=entity_id,
            doc_id=doc_id,
            field_path=field_path,
            context=context,
            confidence=confidence,
            source=MentionSource(source),
            created_at=created_at,
        )

    async def get_by_entity(self, entity_id: str, limit: int = 50) -> list[EntityMention]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_WITH_TITLE
                + "WHERE m.entity_id = ? ORDER BY m.created_at DESC, m.rowid DESC LIMIT ?",
                (entity_id, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_mention(r) for r in rows]

    async def get_by_doc(self, doc_id: str) -> list[EntityMention]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _SELECT_WITH_TITLE + "WHERE m.doc_id = ? ORDER BY m.created_at ASC, m.rowid ASC",
                (doc_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_mention(r) for r in rows]

    async def count_by_workspace(self, workspace_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM entity_mentions WHERE workspace_id = ?",
                (workspace_id,),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def delete_by_doc(self, doc_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM entity_mentions WHERE doc_id = ?", (doc_id,))
            removed = cursor.rowcount
            await db.commit()
        logger.info("doc_mentions_deleted", doc_id=doc_id, removed=removed)
        return removed

    def get_provider_name(self) -> str:
        return "sqlite_mention_store"
