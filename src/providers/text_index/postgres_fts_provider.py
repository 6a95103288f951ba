"""Postgres ``tsvector`` text-index provider.

Mirrors the SQLite FTS5 index with two ordinary tables whose
``search_vector`` column is generated by Postgres itself:

    docs_fts_pg(doc_id, workspace_id, title, content_text, search_vector)
    entities_fts_pg(entity_id, workspace_id, name, aliases, search_vector)

Queries go through ``plainto_tsquery('english', ...)``, which treats its
input as plain words, so user text can never inject tsquery operators.
``ts_rank`` is called with normalization flag 32 (``rank / (rank + 1)``),
already bounded to 0-1; it is clamped to 0.1-1.0 to match the FTS5
backend.  Highlighted snippets use the same ``<mark>`` markers.
"""

from __future__ import annotations

from collections.abc import Iterable

import asyncpg
import structlog

from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.document import Document
from src.models.entities import CanonicalEntity
from src.models.search import DocSearchHit, EntitySearchHit
from src.utils.errors import IndexSyncError, ProviderUnavailableError
from src.utils.text_normalizer import html_to_plain_text

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_BATCH_SIZE = 100

_CREATE_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS docs_fts_pg (
    doc_id        TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    title         TEXT NOT NULL DEFAULT '',
    content_text  TEXT NOT NULL DEFAULT '',
    search_vector tsvector GENERATED ALWAYS AS (
        to_tsvector('english', coalesce(title, '') || ' ' || coalesce(content_text, ''))
    ) STORED
);
CREATE INDEX IF NOT EXISTS idx_docs_fts_pg_vector ON docs_fts_pg USING GIN (search_vector);
CREATE INDEX IF NOT EXISTS idx_docs_fts_pg_workspace ON docs_fts_pg (workspace_id);

CREATE TABLE IF NOT EXISTS entities_fts_pg (
    entity_id     TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    name          TEXT NOT NULL DEFAULT '',
    aliases       TEXT NOT NULL DEFAULT '',
    search_vector tsvector GENERATED ALWAYS AS (
        to_tsvector('english', coalesce(name, '') || ' ' || coalesce(aliases, ''))
    ) STORED
);
CREATE INDEX IF NOT EXISTS idx_entities_fts_pg_vector ON entities_fts_pg USING GIN (search_vector);
CREATE INDEX IF NOT EXISTS idx_entities_fts_pg_workspace ON entities_fts_pg (workspace_id);
"""

_INSERT_DOC_SQL = (
    "INSERT INTO docs_fts_pg (doc_id, workspace_id, title, content_text) "
    "VALUES ($1, $2, $3, $4)"
)
_INSERT_ENTITY_SQL = (
    "INSERT INTO entities_fts_pg (entity_id, workspace_id, name, aliases) "
    "VALUES ($1, $2, $3, $4)"
)

_SEARCH_DOCS_SQL = """\
SELECT doc_id, title,
       ts_headline('english', content_text, plainto_tsquery('english', $1), $5) AS snippet,
       ts_rank(search_vector, plainto_tsquery('english', $1), 32) AS rank
FROM docs_fts_pg
WHERE workspace_id = $2 AND search_vector @@ plainto_tsquery('english', $1)
ORDER BY rank DESC
LIMIT $3 OFFSET $4
"""

_SEARCH_ENTITIES_SQL = """\
SELECT entity_id, name, aliases,
       ts_rank(search_vector, plainto_tsquery('english', $1), 32) AS rank
FROM entities_fts_pg
WHERE workspace_id = $2 AND search_vector @@ plainto_tsquery('english', $1)
ORDER BY rank DESC
LIMIT $3 OFFSET $4
"""


def normalize_ts_rank(rank: float) -> float:
    """Clamp a normalized ``ts_rank`` (flag 32) onto 0.1-1.0."""
    return max(0.1, min(1.0, float(rank)))


def headline_options(snippet_tokens: int) -> str:
    """Build ``ts_headline`` options bounded by *snippet_tokens* words."""
    max_words = max(2, min(35, snippet_tokens))
    min_words = min(15, max_words - 1)
    return (
        f"MaxWords={max_words}, MinWords={min_words}, ShortWord=3, "
        "HighlightAll=FALSE, MaxFragments=1, StartSel=<mark>, StopSel=</mark>"
    )


class PostgresFTSProvider(ITextIndexProvider):
    """Client-server text index backed by an ``asyncpg`` connection pool.

    Pass either a DSN (the pool is created in :meth:`initialize`) or an
    existing pool.
    """

    def __init__(
        self,
        dsn: str = "",
        pool: asyncpg.Pool | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_size: int = 2,
        max_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._pool = pool
        self._batch_size = max(1, batch_size)
        self._min_size = min_size
        self._max_size = max_size

    async def initialize(self) -> None:
        """Create the pool (when given a DSN) and the index tables."""
        if self._pool is None:
            if not self._dsn:
                raise ProviderUnavailableError(
                    "POSTGRES_DSN is required for the postgres text index",
                    self.get_provider_name(),
                )
            try:
                self._pool = await asyncpg.create_pool(
                    self._dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=60,
                )
            except (asyncpg.PostgresError, OSError) as exc:
                raise ProviderUnavailableError(
                    f"Cannot connect to Postgres: {exc}", self.get_provider_name()
                ) from exc

        async with self._pool.acquire() as conn:
            await conn.execute(_CREATE_SCHEMA_SQL)
        logger.info("fts_index_initialized", backend="postgres_tsvector")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise IndexSyncError("Postgres text index not initialized", self.get_provider_name())
        return self._pool

    # ------------------------------------------------------------------
    # Document sync
    # ------------------------------------------------------------------

    async def sync_document(
        self, doc_id: str, workspace_id: str, title: str, html: str
    ) -> None:
        content = html_to_plain_text(html)
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("DELETE FROM docs_fts_pg WHERE doc_id = $1", doc_id)
                    await conn.execute(_INSERT_DOC_SQL, doc_id, workspace_id, title or "", content)
        except asyncpg.PostgresError as exc:
            raise IndexSyncError(
                f"Failed to index document {doc_id}: {exc}", self.get_provider_name()
            ) from exc

    async def remove_document(self, doc_id: str) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("DELETE FROM docs_fts_pg WHERE doc_id = $1", doc_id)
        except asyncpg.PostgresError as exc:
            raise IndexSyncError(
                f"Failed to remove document {doc_id}: {exc}", self.get_provider_name()
            ) from exc

    async def sync_workspace_documents(
        self, workspace_id: str, docs: Iterable[Document]
    ) -> int:
        rows = [
            (d.id, workspace_id, d.title or "", html_to_plain_text(d.content_html))
            for d in docs
        ]
        await self._resync(
            "DELETE FROM docs_fts_pg WHERE workspace_id = $1", _INSERT_DOC_SQL, workspace_id, rows
        )
        logger.info("fts_docs_resynced", workspace_id=workspace_id, count=len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Entity sync
    # ------------------------------------------------------------------

    async def sync_entity(
        self, entity_id: str, workspace_id: str, name: str, aliases: list[str]
    ) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "DELETE FROM entities_fts_pg WHERE entity_id = $1", entity_id
                    )
                    await conn.execute(
                        _INSERT_ENTITY_SQL, entity_id, workspace_id, name, " ".join(aliases)
                    )
        except asyncpg.PostgresError as exc:
            raise IndexSyncError(
                f"Failed to index entity {entity_id}: {exc}", self.get_provider_name()
            ) from exc

    async def remove_entity(self, entity_id: str) -> None:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute("DELETE FROM entities_fts_pg WHERE entity_id = $1", entity_id)
        except asyncpg.PostgresError as exc:
            raise IndexSyncError(
                f"Failed to remove entity {entity_id}: {exc}", self.get_provider_name()
            ) from exc

    async def sync_workspace_entities(
        self, workspace_id: str, entities: Iterable[CanonicalEntity]
    ) -> int:
        rows = [(e.id, workspace_id, e.name, " ".join(e.aliases)) for e in entities]
        await self._resync(
            "DELETE FROM entities_fts_pg WHERE workspace_id = $1",
            _INSERT_ENTITY_SQL,
            workspace_id,
            rows,
        )
        logger.info("fts_entities_resynced", workspace_id=workspace_id, count=len(rows))
        return len(rows)

    async def _resync(
        self,
        delete_sql: str,
        insert_sql: str,
        workspace_id: str,
        rows: list[tuple[str, str, str, str]],
    ) -> None:
        """Delete workspace rows, then insert in batches, one transaction per batch."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(delete_sql, workspace_id)
                for start in range(0, len(rows), self._batch_size):
                    async with conn.transaction():
                        await conn.executemany(insert_sql, rows[start : start + self._batch_size])
        except asyncpg.PostgresError as exc:
            raise IndexSyncError(
                f"Failed to resync workspace {workspace_id}: {exc}", self.get_provider_name()
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search_documents(
        self,
        workspace_id: str,
        query: str,
        limit: int = 20,
        offset: int = 0,
        snippet_tokens: int = 64,
    ) -> list[DocSearchHit]:
        if not query.strip() or self._pool is None:
            return []
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    _SEARCH_DOCS_SQL,
                    query,
                    workspace_id,
                    limit,
                    offset,
                    headline_options(snippet_tokens),
                )
        except (asyncpg.PostgresError, OSError) as exc:
            logger.warning("fts_doc_search_failed", workspace_id=workspace_id, error=str(exc))
            return []

        return [
            DocSearchHit(
                doc_id=r["doc_id"],
                title=r["title"] or "",
                snippet=r["snippet"] or "",
                rank=float(r["rank"]),
                relevance=normalize_ts_rank(r["rank"]),
            )
            for r in rows
        ]

    async def search_entities(
        self,
        workspace_id: str,
        query: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[EntitySearchHit]:
        if not query.strip() or self._pool is None:
            return []
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(_SEARCH_ENTITIES_SQL, query, workspace_id, limit, offset)
        except (asyncpg.PostgresError, OSError) as exc:
            logger.warning("fts_entity_search_failed", workspace_id=workspace_id, error=str(exc))
            return []

        return [
            EntitySearchHit(
                entity_id=r["entity_id"],
                name=r["name"] or "",
                aliases=r["aliases"] or "",
                rank=float(r["rank"]),
                relevance=normalize_ts_rank(r["rank"]),
            )
            for r in rows
        ]

    def get_provider_name(self) -> str:
        return "postgres_tsvector"
