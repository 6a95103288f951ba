"""SQLite-backed append-only knowledge query log."""

from __future__ import annotations

import datetime
import json
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from src.interfaces.query_log_provider import IQueryLogProvider
from src.models.search import QueryLogEntry, QueryType
from src.providers.knowledge_store.schema import ensure_schema
from src.utils.errors import StoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_INSERT_SQL = """\
INSERT INTO knowledge_queries (
    id, workspace_id, query_text, query_type, results_json,
    result_count, queried_by, duration_ms, created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""


class SQLiteQueryLogProvider(IQueryLogProvider):
    """Writes one row per knowledge query to ``knowledge_queries``."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await ensure_schema(db)
        logger.info("query_log_initialized", path=str(self._db_path))

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
        entry = QueryLogEntry(
            id=query_id or uuid.uuid4().hex,
            workspace_id=workspace_id,
            query_text=query_text,
            query_type=QueryType(query_type),
            results=results,
            result_count=result_count,
            queried_by=queried_by,
            duration_ms=duration_ms,
            created_at=datetime.datetime.now(datetime.timezone.utc),
        )
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _INSERT_SQL,
                    (
                        entry.id,
                        entry.workspace_id,
                        entry.query_text,
                        entry.query_type.value,
                        json.dumps(results, default=str) if results is not None else None,
                        entry.result_count,
                        entry.queried_by,
                        entry.duration_ms,
                        entry.created_at.isoformat(timespec="milliseconds"),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to log query: {exc}", "sqlite") from exc

        logger.debug(
            "knowledge_query_logged",
            query_id=entry.id,
            query_type=entry.query_type.value,
            result_count=result_count,
        )
        return entry

    async def get_recent(self, workspace_id: str, limit: int = 10) -> list[QueryLogEntry]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, workspace_id, query_text, query_type, results_json, "
                "result_count, queried_by, duration_ms, created_at "
                "FROM knowledge_queries WHERE workspace_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (workspace_id, limit),
            )
            rows = await cursor.fetchall()

        return [
            QueryLogEntry(
                id=r["id"],
                workspace_id=r["workspace_id"],
                query_text=r["query_text"],
                query_type=QueryType(r["query_type"]),
                results=json.loads(r["results_json"]) if r["results_json"] else None,
                result_count=r["result_count"],
                queried_by=r["queried_by"],
                duration_ms=r["duration_ms"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def count(self, workspace_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM knowledge_queries WHERE workspace_id = ?",
                (workspace_id,),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def get_provider_name(self) -> str:
        return "sqlite_query_log"
