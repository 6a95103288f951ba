"""SQLite-backed canonical entity store.

Persists workspace entities to the shared knowledge database using
``aiosqlite``.  Uniqueness of ``(workspace_id, entity_type,
normalized_name)`` is enforced by the table's UNIQUE constraint; ``create``
inserts with ``ON CONFLICT DO NOTHING`` and falls back to fetching the
existing row, which resolves concurrent harvesters without locking.
"""

from __future__ import annotations

import datetime
import json
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.entity_store import IEntityStore
from src.models.entities import CanonicalEntity, EntityType
from src.providers.knowledge_store.schema import ensure_schema
from src.utils.errors import EntityLimitExceededError, StoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")
DEFAULT_ENTITY_LIMIT = 10000

_SORT_COLUMNS = {
    "doc_count": "doc_count",
    "mention_count": "mention_count",
    "name": "name COLLATE NOCASE",
    "created_at": "created_at",
}

_INSERT_SQL = """\
INSERT INTO workspace_entities (
    id, workspace_id, entity_type, name, normalized_name,
    aliases_json, metadata_json, mention_count, doc_count,
    first_seen_at, last_seen_at, created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?)
ON CONFLICT(workspace_id, entity_type, normalized_name) DO NOTHING;
"""

_SELECT_COLUMNS = """\
id, workspace_id, entity_type, name, normalized_name, aliases_json,
metadata_json, mention_count, doc_count, first_seen_at, last_seen_at,
created_at, updated_at"""

_RECALCULATE_SQL = """\
UPDATE workspace_entities
SET mention_count = (
        SELECT COUNT(*) FROM entity_mentions m
        WHERE m.entity_id = workspace_entities.id
    ),
    doc_count = (
        SELECT COUNT(DISTINCT m.doc_id) FROM entity_mentions m
        WHERE m.entity_id = workspace_entities.id
    ),
    updated_at = ?
WHERE workspace_id = ?;
"""

_STALE_IDS_SQL = """\
SELECT id FROM workspace_entities e
WHERE e.workspace_id = ?
  AND NOT EXISTS (SELECT 1 FROM entity_mentions m WHERE m.entity_id = e.id);
"""


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds")


def _row_to_entity(row: aiosqlite.Row) -> CanonicalEntity:
    return CanonicalEntity(
        id=row["id"],
        workspace_id=row["workspace_id"],
        entity_type=EntityType(row["entity_type"]),
        name=row["name"],
        normalized_name=row["normalized_name"],
        aliases=json.loads(row["aliases_json"] or "[]"),
        metadata=json.loads(row["metadata_json"] or "{}"),
        mention_count=row["mention_count"],
        doc_count=row["doc_count"],
        first_seen_at=row["first_seen_at"],
        last_seen_at=row["last_seen_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SQLiteEntityStore(IEntityStore):
    """SQLite-backed canonical entity persistence."""

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        entity_limit: int = DEFAULT_ENTITY_LIMIT,
    ) -> None:
        self._db_path = Path(db_path)
        self._entity_limit = entity_limit

    @property
    def entity_limit(self) -> int:
        return self._entity_limit

    async def initialize(self) -> None:
        """Create the knowledge tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await ensure_schema(db)
        logger.info("entity_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        workspace_id: str,
        entity_type: EntityType,
        name: str,
        normalized_name: str,
        aliases: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[CanonicalEntity, bool]:
        """Insert a new entity, or return the row a concurrent writer created."""
        current = await self.count(workspace_id)
        if current >= self._entity_limit:
            raise EntityLimitExceededError(
                workspace_id=workspace_id,
                current_count=current,
                limit=self._entity_limit,
                provider_name="sqlite",
            )

        entity_id = uuid.uuid4().hex
        now = _now_iso()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    _INSERT_SQL,
                    (
                        entity_id,
                        workspace_id,
                        EntityType(entity_type).value,
                        name,
                        normalized_name,
                        json.dumps(aliases or []),
                        json.dumps(metadata or {}),
                        now,
                        now,
                        now,
                        now,
                    ),
                )
                inserted = cursor.rowcount == 1
                await db.commit()
                cursor = await db.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM workspace_entities "
                    "WHERE workspace_id = ? AND entity_type = ? AND normalized_name = ?",
                    (workspace_id, EntityType(entity_type).value, normalized_name),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to create entity '{name}': {exc}", "sqlite") from exc

        if row is None:
            raise StoreError(f"Entity '{name}' vanished after insert", "sqlite")

        entity = _row_to_entity(row)
        if inserted:
            logger.debug(
                "entity_created",
                entity_id=entity.id,
                workspace_id=workspace_id,
                entity_type=entity.entity_type.value,
            )
        return entity, inserted

    async def increment_counts(
        self, entity_id: str, mention_delta: int, doc_delta: int
    ) -> None:
        now = _now_iso()
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE workspace_entities "
                "SET mention_count = mention_count + ?, doc_count = doc_count + ?, "
                "last_seen_at = ?, updated_at = ? WHERE id = ?",
                (mention_delta, doc_delta, now, now, entity_id),
            )
            await db.commit()

    async def recalculate_all_counts(self, workspace_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_RECALCULATE_SQL, (_now_iso(), workspace_id))
            updated = cursor.rowcount
            await db.commit()
        logger.info("entity_counts_recalculated", workspace_id=workspace_id, updated=updated)
        return updated

    async def delete_without_mentions(self, workspace_id: str) -> list[str]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_STALE_IDS_SQL, (workspace_id,))
            stale_ids = [row[0] for row in await cursor.fetchall()]
            if stale_ids:
                await db.executemany(
                    "DELETE FROM workspace_entities WHERE id = ?",
                    [(entity_id,) for entity_id in stale_ids],
                )
                await db.commit()
        if stale_ids:
            logger.info(
                "stale_entities_deleted", workspace_id=workspace_id, count=len(stale_ids)
            )
        return stale_ids

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, entity_id: str) -> CanonicalEntity | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM workspace_entities WHERE id = ?",
                (entity_id,),
            )
            row = await cursor.fetchone()
        return _row_to_entity(row) if row else None

    async def get_by_normalized_name(
        self, workspace_id: str, normalized_name: str, entity_type: EntityType
    ) -> CanonicalEntity | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM workspace_entities "
                "WHERE workspace_id = ? AND entity_type = ? AND normalized_name = ?",
                (workspace_id, EntityType(entity_type).value, normalized_name),
            )
            row = await cursor.fetchone()
        return _row_to_entity(row) if row else None

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
        """List entities, filtered and sorted.

        Unknown ``sort`` values fall back to ``doc_count``; ``search`` is a
        case-insensitive substring match on the name or any alias.
        """
        clauses = ["workspace_id = ?"]
        params: list[Any] = [workspace_id]
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(EntityType(entity_type).value)
        if search:
            pattern = f"%{search.lower()}%"
            clauses.append("(LOWER(name) LIKE ? OR LOWER(aliases_json) LIKE ?)")
            params.extend([pattern, pattern])

        sort_sql = _SORT_COLUMNS.get(sort, _SORT_COLUMNS["doc_count"])
        direction = "ASC" if order.lower() == "asc" else "DESC"
        params.extend([limit, offset])

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM workspace_entities "
                f"WHERE {' AND '.join(clauses)} "
                f"ORDER BY {sort_sql} {direction}, id ASC LIMIT ? OFFSET ?",
                params,
            )
            rows = await cursor.fetchall()
        return [_row_to_entity(r) for r in rows]

    async def count(self, workspace_id: str, entity_type: EntityType | None = None) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            if entity_type is None:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM workspace_entities WHERE workspace_id = ?",
                    (workspace_id,),
                )
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM workspace_entities "
                    "WHERE workspace_id = ? AND entity_type = ?",
                    (workspace_id, EntityType(entity_type).value),
                )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def count_by_type(self, workspace_id: str) -> dict[EntityType, int]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT entity_type, COUNT(*) FROM workspace_entities "
                "WHERE workspace_id = ? GROUP BY entity_type",
                (workspace_id,),
            )
            rows = await cursor.fetchall()
        return {EntityType(r[0]): int(r[1]) for r in rows}

    async def latest_seen_at(self, workspace_id: str) -> datetime.datetime | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT MAX(last_seen_at) FROM workspace_entities WHERE workspace_id = ?",
                (workspace_id,),
            )
            row = await cursor.fetchone()
        if not row or row[0] is None:
            return None
        return datetime.datetime.fromisoformat(row[0].replace("Z", "+00:00"))

    def get_provider_name(self) -> str:
        return "sqlite_entity_store"
