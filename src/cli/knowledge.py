# =============================================================================
# src/cli/knowledge.py — Knowledge Engine CLI
# =============================================================================
#
# Operator tool for a workspace's knowledge index without running the web
# server.  Every subcommand builds the same providers and services as the
# FastAPI app (via src.main.build_services), initializes the stores, runs
# one operation and exits.
#
# Supported subcommands:
#
#   load     — Seed documents + extractions from a JSON file into the store
#   harvest  — Harvest entities from one document (--doc) or a workspace
#   reindex  — Re-index: harvest all docs, rebuild both text indexes,
#              detect relationships (--incremental: changed docs only)
#   cleanup  — Recalculate entity counters and drop entities with no mentions
#   search   — Semantic search (or --keyword for keyword-only search)
#   related  — Documents related to a document by shared entities
#   relationships — Entity relationships, strongest first (--entity to filter)
#   status   — Index counters for a workspace
#
# Seed file format (load):
#   {
#     "workspace_id": "ws-1",
#     "documents": [
#       {"id": "d1", "title": "MSA", "content_html": "<p>...</p>",
#        "extraction": {"document_type": "contract", "data": {...},
#                       "field_confidences": {"parties": 0.9}}}
#     ]
#   }
#
# Usage examples:
#   python -m src.cli.knowledge load --file seed.json
#   python -m src.cli.knowledge reindex --workspace ws-1
#   python -m src.cli.knowledge reindex --workspace ws-1 --incremental
#   python -m src.cli.knowledge search --workspace ws-1 "which contracts mention Acme?"
#   python -m src.cli.knowledge related --doc d1 --no-rerank
# =============================================================================

"""Standalone CLI for the knowledge engine.

Usage::

    python -m src.cli.knowledge load --file seed.json
    python -m src.cli.knowledge reindex --workspace ws-1
    python -m src.cli.knowledge search --workspace ws-1 "payment terms with Acme"
    python -m src.cli.knowledge related --doc d1
    python -m src.cli.knowledge relationships --workspace ws-1 --detect
    python -m src.cli.knowledge status --workspace ws-1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from src.config.settings import Settings


def _suppress_logs() -> None:
    """Send structlog and stdlib logging to stderr at WARNING+.

    Must run before ``src.main`` is imported so cached loggers pick up
    the quiet configuration.
    """
    import logging
    import os

    import structlog

    os.environ["LOG_LEVEL"] = "WARNING"
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


async def _handle_load(args: argparse.Namespace, services: dict[str, Any]) -> int:
    """Seed documents and extractions from a JSON file."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    seed = json.loads(path.read_text(encoding="utf-8"))
    workspace_id = args.workspace or seed.get("workspace_id")
    if not workspace_id:
        print("Error: no workspace_id in file and --workspace not given", file=sys.stderr)
        return 1

    source = services["document_source"]
    loaded = extracted = 0
    for doc in seed.get("documents", []):
        await source.put_document(
            doc["id"], workspace_id, doc.get("title") or "Untitled", doc.get("content_html", "")
        )
        loaded += 1
        extraction = doc.get("extraction")
        if extraction:
            await source.put_extraction(
                doc["id"],
                extraction["document_type"],
                extraction.get("data", {}),
                extraction.get("field_confidences"),
            )
            extracted += 1

    print(f"Loaded {loaded} documents ({extracted} with extractions) into {workspace_id}")
    return 0


async def _handle_harvest(args: argparse.Namespace, services: dict[str, Any]) -> int:
    harvester = services["harvester"]
    if args.doc:
        result = await harvester.harvest_from_doc(args.doc, args.workspace)
    else:
        result = await harvester.harvest_workspace(args.workspace)
    _print_json(result.model_dump())
    return 1 if result.errors else 0


async def _handle_reindex(args: argparse.Namespace, services: dict[str, Any]) -> int:
    mode = "incremental" if args.incremental else "full"
    result = await services["indexer"].reindex_workspace(args.workspace, mode=mode)
    _print_json(result.model_dump())
    return 1 if result.errors else 0


async def _handle_cleanup(args: argparse.Namespace, services: dict[str, Any]) -> int:
    result = await services["indexer"].cleanup_workspace(args.workspace)
    _print_json(result.model_dump())
    return 0


async def _handle_search(args: argparse.Namespace, services: dict[str, Any]) -> int:
    query = " ".join(args.query).strip()
    if not query:
        print("Error: query is required", file=sys.stderr)
        return 1

    search = services["semantic_search"]
    if args.keyword:
        result = await search.keyword_search(
            args.workspace, query, queried_by=args.user, limit=args.limit
        )
        _print_json(result.model_dump())
        return 0

    result = await search.search(args.workspace, query, queried_by=args.user, limit=args.limit)
    if args.json_output:
        _print_json(result.model_dump())
        return 0

    print(result.answer)
    print()
    for item in result.results:
        print(f"  [{item.relevance:.2f}] {item.doc_title} ({item.doc_id})")
        for snippet in item.snippets[:2]:
            print(f"         {snippet.text[:120]}")
    for note in result.notes:
        print(f"  note: {note}")
    return 0


async def _handle_related(args: argparse.Namespace, services: dict[str, Any]) -> int:
    doc = await services["document_source"].get_document(args.doc)
    if doc is None:
        print(f"Error: document {args.doc} not found", file=sys.stderr)
        return 1

    result = await services["related_docs"].find_related(
        args.doc, doc.workspace_id, limit=args.limit, ai_rerank=not args.no_rerank
    )
    _print_json(result.model_dump())
    return 0


async def _handle_relationships(args: argparse.Namespace, services: dict[str, Any]) -> int:
    detector = services["relationship_detector"]
    if args.detect:
        detection = await detector.detect_workspace_relationships(args.workspace)
        for error in detection.errors:
            print(f"warning: {error}", file=sys.stderr)

    views, total = await detector.list_relationships(
        args.workspace, entity_id=args.entity, min_strength=args.min_strength, limit=args.limit
    )
    print(f"{total} relationships")
    for view in views:
        label = f" ({view.label})" if view.label else ""
        print(
            f"  [{view.strength:.2f}] {view.from_entity.name} <-> {view.to_entity.name}: "
            f"{view.relationship_type.value}{label}"
        )
    return 0


async def _handle_status(args: argparse.Namespace, services: dict[str, Any]) -> int:
    status = await services["indexer"].get_status(args.workspace)
    _print_json(status.model_dump())
    return 0


_HANDLERS = {
    "load": _handle_load,
    "harvest": _handle_harvest,
    "reindex": _handle_reindex,
    "cleanup": _handle_cleanup,
    "search": _handle_search,
    "related": _handle_related,
    "relationships": _handle_relationships,
    "status": _handle_status,
}


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    # Deferred: src.main builds the FastAPI app and configures logging on import.
    from src.main import build_services, close_services, initialize_services

    services = build_services(app_settings)
    await initialize_services(services)
    try:
        return await _HANDLERS[args.command](args, services)
    finally:
        await close_services(services)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.knowledge",
        description="Harvest, index and query a workspace's knowledge base.",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log warnings")
    subparsers = parser.add_subparsers(dest="command", help="Knowledge commands")

    # -- load --
    load_parser = subparsers.add_parser("load", help="Seed documents from a JSON file")
    load_parser.add_argument("--file", required=True, help="Path to the seed JSON file")
    load_parser.add_argument("--workspace", help="Override the file's workspace_id")

    # -- harvest --
    harvest_parser = subparsers.add_parser("harvest", help="Harvest entities")
    harvest_parser.add_argument("--workspace", required=True, help="Workspace ID")
    harvest_parser.add_argument("--doc", help="Only harvest this document")

    # -- reindex --
    reindex_parser = subparsers.add_parser(
        "reindex", help="Harvest documents, rebuild the text indexes and relationships"
    )
    reindex_parser.add_argument("--workspace", required=True, help="Workspace ID")
    reindex_parser.add_argument(
        "--incremental", action="store_true", help="Only documents changed since the last run"
    )

    # -- cleanup / status --
    for name, help_text in (
        ("cleanup", "Recalculate counters and delete entities without mentions"),
        ("status", "Show index counters"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--workspace", required=True, help="Workspace ID")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search the workspace")
    search_parser.add_argument("--workspace", required=True, help="Workspace ID")
    search_parser.add_argument("--keyword", action="store_true", help="Keyword search, no AI")
    search_parser.add_argument("--limit", type=int, default=10, help="Max results")
    search_parser.add_argument("--user", default="cli", help="Recorded as queried_by")
    search_parser.add_argument(
        "--json", action="store_true", dest="json_output", help="Print the raw result"
    )
    search_parser.add_argument("query", nargs="+", help="Query text")

    # -- related --
    related_parser = subparsers.add_parser("related", help="Find related documents")
    related_parser.add_argument("--doc", required=True, help="Source document ID")
    related_parser.add_argument("--limit", type=int, default=10, help="Max results")
    related_parser.add_argument(
        "--no-rerank", action="store_true", dest="no_rerank", help="Skip the AI re-rank"
    )

    # -- relationships --
    rel_parser = subparsers.add_parser("relationships", help="List entity relationships")
    rel_parser.add_argument("--workspace", required=True, help="Workspace ID")
    rel_parser.add_argument("--entity", help="Only relationships touching this entity ID")
    rel_parser.add_argument("--min-strength", type=float, dest="min_strength", help="0..1")
    rel_parser.add_argument("--limit", type=int, default=20, help="Max results")
    rel_parser.add_argument(
        "--detect", action="store_true", help="Run co-occurrence detection first"
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.quiet:
        _suppress_logs()

    exit_code = asyncio.run(_run(args, Settings()))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
