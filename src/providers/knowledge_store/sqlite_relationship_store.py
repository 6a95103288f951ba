"""SQLite-backed entity relationship store.

Edges live in ``entity_relationships`` in the shared knowledge database.
``upsert`` writes with ``ON CONFLICT ... DO UPDATE`` against the
``UNIQUE(from_entity_id, to_entity_id, relationship_type)`` constraint, so
re-running detection refreshes strength and evidence in place.

Co-occurrences are computed from ``entity_mentions`` with a self-join on
``doc_id``; the ``em1.entity_id < em2.entity_id`` condition yields each
unordered pair once, already in canonical order.
"""

from __future__ import annotations

import datetime
import json
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.relationship_store import IRelationshipStore
from src.models.relationships import (
    EntityRelationship,
    RelationshipEvidence,
    RelationshipType,
)
from src.providers.knowledge_store.schema import ensure_schema
from src.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_SELECT_COLUMNS = """\
id, workspace_id, from_entity_id, to_entity_id, relationship_type, label,
strength, evidence_json, created_at, updated_at"""

_UPSERT_SQL = """\
INSERT INTO entity_relationships (
    id, workspace_id, from_entity_id, to_entity_id, relationship_type,
    label, strength, evidence_json, created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(from_entity_id, to_entity_id, relationship_type) DO UPDATE SET
    label = COALESCE(excluded.label, entity_relationships.label),
    strength = excluded.strength,
    evidence_json = excluded.evidence_json,
    updated_at = excluded.updated_at;
"""

_CO_OCCURRENCE_SQL = """\
SELECT DISTINCT em1.entity_id, em2.entity_id, em1.doc_id
FROM entity_mentions em1
INNER JOIN entity_mentions em2
    ON em1.doc_id = em2.doc_id AND em1.entity_id < em2.entity_id
WHERE em1.workspace_id = ?
"""

_ORPHANS_SQL = """\
DELETE FROM entity_relationships
WHERE workspace_id = ?
  AND (
    NOT EXISTS (SELECT 1 FROM workspace_entities e WHERE e.id = from_entity_id)
    OR NOT EXISTS (SELECT 1 FROM workspace_entities e WHERE e.id = to_entity_id)
  );
"""


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds")


def _row_to_relationship(row: aiosqlite.Row) -> EntityRelationship:
    return EntityRelationship(
        id=row["id"],
        workspace_id=row["workspace_id"],
        from_entity_id=row["from_entity_id"],
        to_entity_id=row["to_entity_id"],
        relationship_type=RelationshipType(row["relationship_type"]),
        label=row["label"],
        strength=row["strength"],
        evidence=[
            RelationshipEvidence(**item) for item in json.loads(row["evidence_json"] or "[]")
        ],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _filters(
    workspace_id: str,
    entity_id: str | None,
    relationship_type: RelationshipType | None,
    min_strength: float | None,
) -> tuple[str, list[Any]]:
    clauses = ["workspace_id = ?"]
    params: list[Any] = [workspace_id]
    if entity_id:
        clauses.append("(from_entity_id = ? OR to_entity_id = ?)")
        params.extend([entity_id, entity_id])
    if relationship_type is not None:
        clauses.append("relationship_type = ?")
        params.append(RelationshipType(relationship_type).value)
    if min_strength is not None:
        clauses.append("strength >= ?")
        params.append(min_strength)
    return " AND ".join(clauses), params


class SQLiteRelationshipStore(IRelationshipStore):
    """SQLite-backed relationship persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await ensure_schema(db)
        logger.info("relationship_store_initialized", path=str(self._db_path))

    async def find_co_occurrences(
        self, workspace_id: str, entity_id: str | None = None
    ) -> list[tuple[str, str, list[str]]]:
        sql = _CO_OCCURRENCE_SQL
        params: list[Any] = [workspace_id]
        if entity_id:
            sql += "  AND (em1.entity_id = ? OR em2.entity_id = ?)\n"
            params.extend([entity_id, entity_id])
        sql += "ORDER BY em1.entity_id, em2.entity_id, em1.doc_id"

        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        shared: dict[tuple[str, str], list[str]] = {}
        for entity_a, entity_b, doc_id in rows:
            shared.setdefault((entity_a, entity_b), []).append(doc_id)
        pairs = [(a, b, docs) for (a, b), docs in shared.items()]
        pairs.sort(key=lambda p: len(p[2]), reverse=True)
        return pairs

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
        rel_type = RelationshipType(relationship_type).value
        now = _now_iso()
        key = (from_entity_id, to_entity_id, rel_type)
        where = "WHERE from_entity_id = ? AND to_entity_id = ? AND relationship_type = ?"
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(f"SELECT id FROM entity_relationships {where}", key)
                existed = await cursor.fetchone() is not None
                await db.execute(
                    _UPSERT_SQL,
                    (
                        uuid.uuid4().hex,
                        workspace_id,
                        from_entity_id,
                        to_entity_id,
                        rel_type,
                        label,
                        max(0.0, min(1.0, strength)),
                        json.dumps([e.model_dump() for e in evidence]),
                        now,
                        now,
                    ),
                )
                await db.commit()
                cursor = await db.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM entity_relationships {where}", key
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to store relationship: {exc}", "sqlite") from exc

        if row is None:
            raise StoreError("Relationship vanished after upsert", "sqlite")
        return _row_to_relationship(row), not existed

    async def get_by_pair(
        self, from_entity_id: str, to_entity_id: str, relationship_type: RelationshipType
    ) -> EntityRelationship | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM entity_relationships "
                "WHERE from_entity_id = ? AND to_entity_id = ? AND relationship_type = ?",
                (from_entity_id, to_entity_id, RelationshipType(relationship_type).value),
            )
            row = await cursor.fetchone()
        return _row_to_relationship(row) if row else None

    async def get_by_entity(self, entity_id: str, limit: int = 20) -> list[EntityRelationship]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM entity_relationships "
                "WHERE from_entity_id = ? OR to_entity_id = ? "
                "ORDER BY strength DESC, id ASC LIMIT ?",
                (entity_id, entity_id, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_relationship(r) for r in rows]

    async def list_by_workspace(
        self,
        workspace_id: str,
        entity_id: str | None = None,
        relationship_type: RelationshipType | None = None,
        min_strength: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[EntityRelationship]:
        where, params = _filters(workspace_id, entity_id, relationship_type, min_strength)
        params.extend([limit, offset])
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM entity_relationships WHERE {where} "
                "ORDER BY strength DESC, id ASC LIMIT ? OFFSET ?",
                params,
            )
            rows = await cursor.fetchall()
        return [_row_to_relationship(r) for r in rows]

    async def count(
        self,
        workspace_id: str,
        entity_id: str | None = None,
        relationship_type: RelationshipType | None = None,
        min_strength: float | None = None,
    ) -> int:
        where, params = _filters(workspace_id, entity_id, relationship_type, min_strength)
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM entity_relationships WHERE {where}", params
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def delete_orphans(self, workspace_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(_ORPHANS_SQL, (workspace_id,))
            removed = cursor.rowcount
            await db.commit()
        if removed:
            logger.info("orphan_relationships_deleted", workspace_id=workspace_id, count=removed)
        return removed

    def get_provider_name(self) -> str:
        return "sqlite_relationship_store"
