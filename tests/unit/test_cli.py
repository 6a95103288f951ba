"""Unit tests for the knowledge CLI (src.cli.knowledge)."""

from __future__ import annotations

import json
from argparse import Namespace
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.cli.knowledge import (
    _build_parser,
    _handle_harvest,
    _handle_load,
    _handle_related,
    _handle_reindex,
    _handle_relationships,
    _handle_search,
    _handle_status,
    _run,
    main,
)
from src.config.settings import Settings
from src.models.search import SearchResult, SearchSnippet, SemanticSearchResult
from src.services.entity_harvester import EntityHarvester
from src.services.knowledge_indexer import KnowledgeIndexer
from src.services.related_docs import RelatedDocsService
from src.services.relationship_detector import RelationshipDetector
from tests.conftest import CONTRACT_DATA, WORKSPACE


def _services(stack: dict[str, Any]) -> dict[str, Any]:
    harvester = EntityHarvester(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        text_index=stack["text_index"],
        document_source=stack["document_source"],
    )
    detector = RelationshipDetector(
        entity_store=stack["entity_store"],
        mention_store=stack["mention_store"],
        relationship_store=stack["relationship_store"],
    )
    return {
        **stack,
        "harvester": harvester,
        "relationship_detector": detector,
        "indexer": KnowledgeIndexer(
            harvester=harvester,
            entity_store=stack["entity_store"],
            mention_store=stack["mention_store"],
            text_index=stack["text_index"],
            document_source=stack["document_source"],
            query_log=stack["query_log"],
            relationship_detector=detector,
        ),
        "related_docs": RelatedDocsService(
            entity_store=stack["entity_store"],
            mention_store=stack["mention_store"],
            document_source=stack["document_source"],
        ),
    }


def _write_seed(tmp_path: Path, **extra: Any) -> Path:
    seed = {
        "workspace_id": WORKSPACE,
        "documents": [
            {
                "id": "d1",
                "title": "MSA",
                "content_html": "<p>Acme agreement</p>",
                "extraction": {"document_type": "contract", "data": CONTRACT_DATA},
            },
            {"id": "d2", "title": "", "content_html": "<p>Notes</p>"},
        ],
        **extra,
    }
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(seed), encoding="utf-8")
    return path


# ======================================================================
# Argument parser
# ======================================================================


class TestParser:
    def test_search_joins_query_words(self) -> None:
        args = _build_parser().parse_args(
            ["search", "--workspace", "ws-1", "--keyword", "payment", "terms"]
        )
        assert args.command == "search"
        assert args.query == ["payment", "terms"]
        assert args.keyword is True
        assert args.limit == 10
        assert args.user == "cli"

    def test_related_no_rerank(self) -> None:
        args = _build_parser().parse_args(["related", "--doc", "d1", "--no-rerank"])
        assert args.no_rerank is True

    def test_reindex_incremental_flag(self) -> None:
        args = _build_parser().parse_args(["reindex", "--workspace", "ws-1", "--incremental"])
        assert args.incremental is True
        assert _build_parser().parse_args(["reindex", "--workspace", "ws-1"]).incremental is False

    def test_relationships_options(self) -> None:
        args = _build_parser().parse_args(
            ["relationships", "--workspace", "ws-1", "--min-strength", "0.3", "--detect"]
        )
        assert args.min_strength == 0.3
        assert args.detect is True
        assert args.entity is None

    def test_workspace_required(self) -> None:
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["reindex"])

    def test_no_command_prints_help_and_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1
        assert "Knowledge commands" in capsys.readouterr().out


# ======================================================================
# Handlers
# ======================================================================


class TestLoadAndHarvest:
    @pytest.mark.asyncio()
    async def test_load_seed_file(
        self, sqlite_stack, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = _write_seed(tmp_path)

        code = await _handle_load(Namespace(file=str(path), workspace=None), sqlite_stack)

        assert code == 0
        assert "Loaded 2 documents (1 with extractions)" in capsys.readouterr().out
        source = sqlite_stack["document_source"]
        assert (await source.get_document("d2")).title == "Untitled"
        assert (await source.get_extraction("d1")).payload.governing_law == "Delaware"

    @pytest.mark.asyncio()
    async def test_load_missing_file(self, sqlite_stack, tmp_path: Path) -> None:
        code = await _handle_load(
            Namespace(file=str(tmp_path / "nope.json"), workspace=None), sqlite_stack
        )
        assert code == 1

    @pytest.mark.asyncio()
    async def test_load_without_workspace(self, sqlite_stack, tmp_path: Path) -> None:
        path = _write_seed(tmp_path, workspace_id="")
        code = await _handle_load(Namespace(file=str(path), workspace=None), sqlite_stack)
        assert code == 1

    @pytest.mark.asyncio()
    async def test_harvest_single_doc(
        self, sqlite_stack, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await _handle_load(Namespace(file=str(_write_seed(tmp_path)), workspace=None), sqlite_stack)
        capsys.readouterr()

        code = await _handle_harvest(
            Namespace(workspace=WORKSPACE, doc="d1"), _services(sqlite_stack)
        )

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["doc_id"] == "d1"
        assert output["entities_created"] > 0

    @pytest.mark.asyncio()
    async def test_status_after_harvest(
        self, sqlite_stack, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await _handle_load(Namespace(file=str(_write_seed(tmp_path)), workspace=None), sqlite_stack)
        services = _services(sqlite_stack)
        await _handle_harvest(Namespace(workspace=WORKSPACE, doc=None), services)
        capsys.readouterr()

        await _handle_status(Namespace(workspace=WORKSPACE), services)

        status = json.loads(capsys.readouterr().out)
        assert status["total_doc_count"] == 2
        assert status["indexed_doc_count"] == 1

    @pytest.mark.asyncio()
    async def test_reindex_then_incremental(
        self, sqlite_stack, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await _handle_load(Namespace(file=str(_write_seed(tmp_path)), workspace=None), sqlite_stack)
        services = _services(sqlite_stack)
        await _handle_reindex(Namespace(workspace=WORKSPACE, incremental=False), services)
        capsys.readouterr()

        code = await _handle_reindex(Namespace(workspace=WORKSPACE, incremental=True), services)

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["mode"] == "incremental"
        assert output["docs_processed"] == 0

    @pytest.mark.asyncio()
    async def test_relationships_detect_and_list(
        self, sqlite_stack, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        await _handle_load(Namespace(file=str(_write_seed(tmp_path)), workspace=None), sqlite_stack)
        services = _services(sqlite_stack)
        await _handle_harvest(Namespace(workspace=WORKSPACE, doc=None), services)
        capsys.readouterr()

        code = await _handle_relationships(
            Namespace(workspace=WORKSPACE, entity=None, min_strength=None, limit=5, detect=True),
            services,
        )

        assert code == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "28 relationships"
        assert len(lines) == 6
        assert lines[1].startswith("  [0.10] ")
        assert lines[1].endswith(": co_occurrence")


class TestSearchAndRelated:
    @pytest.mark.asyncio()
    async def test_empty_query_rejected(self) -> None:
        args = Namespace(query=["  "], workspace=WORKSPACE, keyword=False)
        assert await _handle_search(args, {"semantic_search": MagicMock()}) == 1

    @pytest.mark.asyncio()
    async def test_search_prints_answer_and_results(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        search = MagicMock()
        search.search = AsyncMock(
            return_value=SemanticSearchResult(
                query_id="q1",
                query="acme terms",
                answer="Net-30 per [Doc 1].",
                results=[
                    SearchResult(
                        doc_id="d1",
                        doc_title="MSA",
                        relevance=0.9,
                        snippets=[SearchSnippet(text="Payment terms are Net-30")],
                    )
                ],
                result_count=1,
                notes=["AI synthesis unavailable: slow"],
            )
        )
        args = Namespace(
            query=["acme", "terms"],
            workspace=WORKSPACE,
            keyword=False,
            json_output=False,
            user="cli",
            limit=5,
        )

        code = await _handle_search(args, {"semantic_search": search})

        assert code == 0
        search.search.assert_awaited_once_with(WORKSPACE, "acme terms", queried_by="cli", limit=5)
        out = capsys.readouterr().out
        assert "Net-30 per [Doc 1]." in out
        assert "[0.90] MSA (d1)" in out
        assert "note: AI synthesis unavailable: slow" in out

    @pytest.mark.asyncio()
    async def test_related_unknown_doc(self, sqlite_stack) -> None:
        args = Namespace(doc="ghost", limit=10, no_rerank=True)
        assert await _handle_related(args, _services(sqlite_stack)) == 1


# ======================================================================
# Runner
# ======================================================================


class TestRun:
    @pytest.mark.asyncio()
    async def test_run_initializes_and_closes(self) -> None:
        services = {"indexer": MagicMock()}
        services["indexer"].cleanup_workspace = AsyncMock(
            return_value=MagicMock(model_dump=MagicMock(return_value={"workspace_id": WORKSPACE}))
        )
        mock_init = AsyncMock()
        mock_close = AsyncMock()

        with patch("src.main.build_services", return_value=services), \
             patch("src.main.initialize_services", mock_init), \
             patch("src.main.close_services", mock_close):
            code = await _run(Namespace(command="cleanup", workspace=WORKSPACE), Settings())

        assert code == 0
        mock_init.assert_awaited_once_with(services)
        mock_close.assert_awaited_once_with(services)
