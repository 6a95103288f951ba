"""Unit tests for the Postgres tsvector text-index provider.

No database is needed: the asyncpg pool is replaced by a MagicMock whose
``acquire()`` and ``transaction()`` are async context managers, and the
tests assert on the SQL and parameters sent to the connection.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from src.models.document import Document
from src.providers.text_index.postgres_fts_provider import (
    PostgresFTSProvider,
    headline_options,
    normalize_ts_rank,
)
from src.utils.errors import IndexSyncError, ProviderUnavailableError

WS = "ws-pg"


def _mock_pool(fetch_rows: list[dict] | None = None) -> tuple[MagicMock, MagicMock]:
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.executemany = AsyncMock()
    conn.fetch = AsyncMock(return_value=fetch_rows or [])
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.close = AsyncMock()
    return pool, conn


# ======================================================================
# Helpers
# ======================================================================


class TestHelpers:
    def test_rank_clamped_to_floor(self) -> None:
        assert normalize_ts_rank(0.01) == pytest.approx(0.1)

    def test_rank_passthrough(self) -> None:
        assert normalize_ts_rank(0.42) == pytest.approx(0.42)

    def test_rank_capped(self) -> None:
        assert normalize_ts_rank(1.5) == 1.0

    def test_headline_options_bounds(self) -> None:
        options = headline_options(64)
        assert "MaxWords=35" in options
        assert "MinWords=15" in options
        assert "StartSel=<mark>" in options

    def test_headline_options_small(self) -> None:
        assert "MaxWords=5, MinWords=4" in headline_options(5)


# ======================================================================
# Lifecycle
# ======================================================================


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_initialize_with_pool_creates_schema(self) -> None:
        pool, conn = _mock_pool()
        provider = PostgresFTSProvider(pool=pool)

        await provider.initialize()

        sql = conn.execute.await_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS docs_fts_pg" in sql
        assert "GENERATED ALWAYS AS" in sql

    @pytest.mark.asyncio()
    async def test_initialize_without_dsn_raises(self) -> None:
        provider = PostgresFTSProvider()
        with pytest.raises(ProviderUnavailableError):
            await provider.initialize()

    @pytest.mark.asyncio()
    async def test_close(self) -> None:
        pool, _ = _mock_pool()
        provider = PostgresFTSProvider(pool=pool)
        await provider.close()
        pool.close.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_sync_before_initialize_raises(self) -> None:
        provider = PostgresFTSProvider(dsn="postgresql://localhost/x")
        with pytest.raises(IndexSyncError):
            await provider.sync_document("d1", WS, "T", "<p>x</p>")


# ======================================================================
# Sync
# ======================================================================


class TestSync:
    @pytest.mark.asyncio()
    async def test_sync_document_deletes_then_inserts_plain_text(self) -> None:
        pool, conn = _mock_pool()
        provider = PostgresFTSProvider(pool=pool)

        await provider.sync_document("d1", WS, "MSA", "<p>Hello <b>world</b></p>")

        calls = conn.execute.await_args_list
        assert calls[0].args == ("DELETE FROM docs_fts_pg WHERE doc_id = $1", "d1")
        assert calls[1].args[1:] == ("d1", WS, "MSA", "Hello world")
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio()
    async def test_sync_entity_joins_aliases(self) -> None:
        pool, conn = _mock_pool()
        provider = PostgresFTSProvider(pool=pool)

        await provider.sync_entity("e1", WS, "Acme Corp", ["ACME", "Acme Inc"])

        assert conn.execute.await_args_list[1].args[1:] == ("e1", WS, "Acme Corp", "ACME Acme Inc")

    @pytest.mark.asyncio()
    async def test_workspace_resync_batches(self) -> None:
        pool, conn = _mock_pool()
        provider = PostgresFTSProvider(pool=pool, batch_size=2)
        docs = [Document(id=f"d{i}", workspace_id=WS, title=f"T{i}") for i in range(5)]

        count = await provider.sync_workspace_documents(WS, docs)

        assert count == 5
        conn.execute.assert_awaited_once_with("DELETE FROM docs_fts_pg WHERE workspace_id = $1", WS)
        batch_sizes = [len(c.args[1]) for c in conn.executemany.await_args_list]
        assert batch_sizes == [2, 2, 1]
        assert conn.transaction.call_count == 3

    @pytest.mark.asyncio()
    async def test_postgres_error_becomes_index_sync_error(self) -> None:
        pool, conn = _mock_pool()
        conn.execute.side_effect = asyncpg.PostgresError("boom")
        provider = PostgresFTSProvider(pool=pool)

        with pytest.raises(IndexSyncError):
            await provider.remove_entity("e1")


# ======================================================================
# Search
# ======================================================================


class TestSearch:
    @pytest.mark.asyncio()
    async def test_search_documents_maps_rows(self) -> None:
        rows = [{"doc_id": "d1", "title": "MSA", "snippet": "<mark>payment</mark> terms", "rank": 0.6}]
        pool, conn = _mock_pool(rows)
        provider = PostgresFTSProvider(pool=pool)

        hits = await provider.search_documents(WS, "payment", limit=5, offset=0, snippet_tokens=20)

        assert hits[0].doc_id == "d1"
        assert hits[0].relevance == pytest.approx(0.6)
        args = conn.fetch.await_args.args
        assert "plainto_tsquery('english', $1)" in args[0]
        assert args[1:5] == ("payment", WS, 5, 0)
        assert "MaxWords=20" in args[5]

    @pytest.mark.asyncio()
    async def test_search_entities_floor_relevance(self) -> None:
        rows = [{"entity_id": "e1", "name": "Acme Corp", "aliases": "", "rank": 0.0}]
        pool, _ = _mock_pool(rows)
        provider = PostgresFTSProvider(pool=pool)

        hits = await provider.search_entities(WS, "acme")

        assert hits[0].name == "Acme Corp"
        assert hits[0].relevance == pytest.approx(0.1)

    @pytest.mark.asyncio()
    async def test_empty_query_skips_database(self) -> None:
        pool, conn = _mock_pool()
        provider = PostgresFTSProvider(pool=pool)
        assert await provider.search_documents(WS, "  ") == []
        conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_connection_error_returns_empty(self) -> None:
        pool, conn = _mock_pool()
        conn.fetch.side_effect = OSError("connection reset")
        provider = PostgresFTSProvider(pool=pool)
        assert await provider.search_entities(WS, "acme") == []

    def test_provider_name(self) -> None:
        assert PostgresFTSProvider().get_provider_name() == "postgres_tsvector"
