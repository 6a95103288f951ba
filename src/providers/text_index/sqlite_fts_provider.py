"""SQLite FTS5 text-index provider.

Keeps two FTS5 virtual tables in the knowledge database:

    docs_fts(doc_id, workspace_id, title, content_text)
    entities_fts(entity_id, workspace_id, name, aliases)

Identifier columns are ``UNINDEXED`` so only text is tokenized (Porter
stemming over ``unicode61``).  FTS5 has no UPDATE-in-place semantics worth
relying on, so every sync deletes the old row and inserts a fresh one.

FTS5's ``rank`` is BM25 scaled so that *more negative is better* and has no
fixed bound; :func:`normalize_fts5_rank` maps it onto 0.1-1.0.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.document import Document
from src.models.entities import CanonicalEntity
from src.models.search import DocSearchHit, EntitySearchHit
from src.utils.errors import IndexSyncError
from src.utils.text_normalizer import html_to_plain_text, sanitize_fts_query

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")
DEFAULT_BATCH_SIZE = 100
_MAX_SNIPPET_TOKENS = 64

_CREATE_DOCS_FTS_SQL = """\
CREATE VIRTUAL TABLE IF NOT EXISTS docs_fts USING fts5(
    doc_id UNINDEXED,
    workspace_id UNINDEXED,
    title,
    content_text,
    tokenize='porter unicode61'
);
"""

_CREATE_ENTITIES_FTS_SQL = """\
CREATE VIRTUAL TABLE IF NOT EXISTS entities_fts USING fts5(
    entity_id UNINDEXED,
    workspace_id UNINDEXED,
    name,
    aliases,
    tokenize='porter unicode61'
);
"""

_INSERT_DOC_SQL = (
    "INSERT INTO docs_fts (doc_id, workspace_id, title, content_text) VALUES (?, ?, ?, ?)"
)
_INSERT_ENTITY_SQL = (
    "INSERT INTO entities_fts (entity_id, workspace_id, name, aliases) VALUES (?, ?, ?, ?)"
)

_SEARCH_DOCS_SQL = """\
SELECT doc_id, title,
       snippet(docs_fts, 3, '<mark>', '</mark>', '...', {tokens}) AS snippet,
       rank
FROM docs_fts
WHERE docs_fts MATCH ? AND workspace_id = ?
ORDER BY rank
LIMIT ? OFFSET ?;
"""

_SEARCH_ENTITIES_SQL = """\
SELECT entity_id, name, aliases, rank
FROM entities_fts
WHERE entities_fts MATCH ? AND workspace_id = ?
ORDER BY rank
LIMIT ? OFFSET ?;
"""


def normalize_fts5_rank(rank: float) -> float:
    """Map an FTS5 rank (negative is better) onto 0.1-1.0.

    ``clamp(-rank / 10, 0.1, 1.0)``; zero or positive ranks give 0.1.
    """
    return max(0.1, min(1.0, -rank / 10.0))


def _batched(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SQLiteFTSProvider(ITextIndexProvider):
    """Embedded FTS5 index stored alongside the knowledge tables."""

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._db_path = Path(db_path)
        self._batch_size = max(1, batch_size)

    async def initialize(self) -> None:
        """Create the FTS5 virtual tables if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_DOCS_FTS_SQL)
            await db.execute(_CREATE_ENTITIES_FTS_SQL)
            await db.commit()
        logger.info("fts_index_initialized", path=str(self._db_path), backend="sqlite_fts5")

    # ------------------------------------------------------------------
    # Document sync
    # ------------------------------------------------------------------

    async def sync_document(
        self, doc_id: str, workspace_id: str, title: str, html: str
    ) -> None:
        content = html_to_plain_text(html)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM docs_fts WHERE doc_id = ?", (doc_id,))
                await db.execute(_INSERT_DOC_SQL, (doc_id, workspace_id, title or "", content))
                await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to index document {doc_id}: {exc}", self.get_provider_name()
            ) from exc

    async def remove_document(self, doc_id: str) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM docs_fts WHERE doc_id = ?", (doc_id,))
                await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to remove document {doc_id}: {exc}", self.get_provider_name()
            ) from exc

    async def sync_workspace_documents(
        self, workspace_id: str, docs: Iterable[Document]
    ) -> int:
        """Delete all workspace rows, then insert in batches, one commit per batch."""
        rows = [
            (d.id, workspace_id, d.title or "", html_to_plain_text(d.content_html))
            for d in docs
        ]
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM docs_fts WHERE workspace_id = ?", (workspace_id,))
                await db.commit()
                for batch in _batched(rows, self._batch_size):
                    await db.executemany(_INSERT_DOC_SQL, batch)
                    await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to resync documents for workspace {workspace_id}: {exc}",
                self.get_provider_name(),
            ) from exc

        logger.info("fts_docs_resynced", workspace_id=workspace_id, count=len(rows))
        return len(rows)

    # ------------------------------------------------------------------
    # Entity sync
    # ------------------------------------------------------------------

    async def sync_entity(
        self, entity_id: str, workspace_id: str, name: str, aliases: list[str]
    ) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM entities_fts WHERE entity_id = ?", (entity_id,))
                await db.execute(
                    _INSERT_ENTITY_SQL, (entity_id, workspace_id, name, " ".join(aliases))
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to index entity {entity_id}: {exc}", self.get_provider_name()
            ) from exc

    async def remove_entity(self, entity_id: str) -> None:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("DELETE FROM entities_fts WHERE entity_id = ?", (entity_id,))
                await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to remove entity {entity_id}: {exc}", self.get_provider_name()
            ) from exc

    async def sync_workspace_entities(
        self, workspace_id: str, entities: Iterable[CanonicalEntity]
    ) -> int:
        rows = [(e.id, workspace_id, e.name, " ".join(e.aliases)) for e in entities]
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    "DELETE FROM entities_fts WHERE workspace_id = ?", (workspace_id,)
                )
                await db.commit()
                for batch in _batched(rows, self._batch_size):
                    await db.executemany(_INSERT_ENTITY_SQL, batch)
                    await db.commit()
        except aiosqlite.Error as exc:
            raise IndexSyncError(
                f"Failed to resync entities for workspace {workspace_id}: {exc}",
                self.get_provider_name(),
            ) from exc

        logger.info("fts_entities_resynced", workspace_id=workspace_id, count=len(rows))
        return len(rows)

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
        match = sanitize_fts_query(query)
        if not match:
            return []

        tokens = max(1, min(_MAX_SNIPPET_TOKENS, int(snippet_tokens)))
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    _SEARCH_DOCS_SQL.format(tokens=tokens),
                    (match, workspace_id, limit, offset),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            logger.warning(
                "fts_doc_search_failed", workspace_id=workspace_id, error=str(exc)
            )
            return []

        return [
            DocSearchHit(
                doc_id=r["doc_id"],
                title=r["title"] or "",
                snippet=r["snippet"] or "",
                rank=r["rank"],
                relevance=normalize_fts5_rank(r["rank"]),
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
        match = sanitize_fts_query(query)
        if not match:
            return []

        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    _SEARCH_ENTITIES_SQL, (match, workspace_id, limit, offset)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            logger.warning(
                "fts_entity_search_failed", workspace_id=workspace_id, error=str(exc)
            )
            return []

        return [
            EntitySearchHit(
                entity_id=r["entity_id"],
                name=r["name"] or "",
                aliases=r["aliases"] or "",
                rank=r["rank"],
                relevance=normalize_fts5_rank(r["rank"]),
            )
            for r in rows
        ]

    def get_provider_name(self) -> str:
        return "sqlite_fts5"
