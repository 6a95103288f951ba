"""Knowledge engine FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.

Also exposes ``build_services`` for CLI or scripting usage outside the web
server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router as api_router
from src.config.loader import load_config
from src.config.settings import Settings
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.text_index_provider import ITextIndexProvider
from src.providers.knowledge_store.sqlite_document_source import SQLiteDocumentSource
from src.providers.knowledge_store.sqlite_entity_store import SQLiteEntityStore
from src.providers.knowledge_store.sqlite_mention_store import SQLiteMentionStore
from src.providers.knowledge_store.sqlite_query_log import SQLiteQueryLogProvider
from src.providers.knowledge_store.sqlite_relationship_store import SQLiteRelationshipStore
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.text_index.postgres_fts_provider import PostgresFTSProvider
from src.providers.text_index.sqlite_fts_provider import SQLiteFTSProvider
from src.services.duplicate_detector import DuplicateDetector
from src.services.entity_harvester import EntityHarvester
from src.services.knowledge_indexer import KnowledgeIndexer
from src.services.related_docs import RelatedDocsService
from src.services.relationship_detector import RelationshipDetector
from src.services.semantic_search import SemanticSearchService
from src.utils.errors import ConfigurationError
from src.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider | None:
    """Select the first configured LLM provider.

    Priority order: Anthropic -> OpenAI -> Ollama.  Ollama is only chosen
    when a model name is configured for it.  Returns ``None`` when nothing
    is configured; search and related-docs then run without AI.
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    if app_settings.ollama_model and app_settings.ollama_base_url:
        return OllamaLLMProvider(settings=app_settings)
    return None


def _build_text_index(app_settings: Settings) -> ITextIndexProvider:
    """Build the text index for the configured backend (``sqlite`` or ``postgres``)."""
    backend = app_settings.text_index_backend.strip().lower()
    if backend == "sqlite":
        return SQLiteFTSProvider(
            db_path=app_settings.knowledge_db_path,
            batch_size=app_settings.index_batch_size,
        )
    if backend == "postgres":
        return PostgresFTSProvider(
            dsn=app_settings.postgres_dsn,
            batch_size=app_settings.index_batch_size,
            min_size=app_settings.postgres_pool_min_size,
            max_size=app_settings.postgres_pool_max_size,
        )
    raise ConfigurationError(
        f"Unknown TEXT_INDEX_BACKEND '{app_settings.text_index_backend}' "
        "(expected 'sqlite' or 'postgres')"
    )


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_services(app_settings: Settings) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components; the web app stores them on
    ``app.state`` and the CLI uses them directly.  Nothing is initialized
    here: call :func:`initialize_services` before first use.
    """
    db_path = app_settings.knowledge_db_path

    # -- Stores --
    entity_store = SQLiteEntityStore(
        db_path=db_path, entity_limit=app_settings.knowledge_entity_limit
    )
    mention_store = SQLiteMentionStore(db_path=db_path)
    document_source = SQLiteDocumentSource(db_path=db_path)
    query_log = SQLiteQueryLogProvider(db_path=db_path)
    relationship_store = SQLiteRelationshipStore(db_path=db_path)
    text_index = _build_text_index(app_settings)

    # -- LLM (optional) --
    llm = _build_llm_provider(app_settings)

    # -- Services --
    harvester = EntityHarvester(
        entity_store=entity_store,
        mention_store=mention_store,
        text_index=text_index,
        document_source=document_source,
    )
    related_docs = RelatedDocsService(
        entity_store=entity_store,
        mention_store=mention_store,
        document_source=document_source,
        llm_provider=llm,
        rerank_timeout_s=app_settings.rerank_timeout_s,
    )
    semantic_search = SemanticSearchService(
        text_index=text_index,
        entity_store=entity_store,
        mention_store=mention_store,
        document_source=document_source,
        query_log=query_log,
        llm_provider=llm,
        term_extraction_timeout_s=app_settings.term_extraction_timeout_s,
        synthesis_timeout_s=app_settings.synthesis_timeout_s,
        overall_timeout_s=app_settings.search_timeout_s,
    )
    relationship_detector = RelationshipDetector(
        entity_store=entity_store,
        mention_store=mention_store,
        relationship_store=relationship_store,
        llm_provider=llm,
        label_timeout_s=app_settings.relationship_label_timeout_s,
    )
    indexer = KnowledgeIndexer(
        harvester=harvester,
        entity_store=entity_store,
        mention_store=mention_store,
        text_index=text_index,
        document_source=document_source,
        query_log=query_log,
        relationship_detector=relationship_detector,
    )
    duplicate_detector = DuplicateDetector(entity_store=entity_store)

    # -- Provider registry for /health --
    provider_registry: dict[str, Any] = {
        "text_index": text_index.get_provider_name(),
        "llm": llm.get_provider_name() if llm is not None else None,
        "store": document_source.get_provider_name(),
    }

    return {
        "entity_store": entity_store,
        "mention_store": mention_store,
        "document_source": document_source,
        "query_log": query_log,
        "relationship_store": relationship_store,
        "text_index": text_index,
        "llm": llm,
        "harvester": harvester,
        "related_docs": related_docs,
        "semantic_search": semantic_search,
        "indexer": indexer,
        "duplicate_detector": duplicate_detector,
        "relationship_detector": relationship_detector,
        "provider_registry": provider_registry,
    }


async def initialize_services(components: dict[str, Any]) -> None:
    """Create tables (and the Postgres pool) for every storage component."""
    for key in (
        "entity_store",
        "mention_store",
        "document_source",
        "query_log",
        "relationship_store",
        "text_index",
    ):
        await components[key].initialize()


async def close_services(components: dict[str, Any]) -> None:
    text_index = components["text_index"]
    if isinstance(text_index, PostgresFTSProvider):
        await text_index.close()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = build_services(settings)
    await initialize_services(components)

    for key, value in components.items():
        setattr(application.state, key, value)

    _logger.info(
        "app_startup",
        version="0.1.0",
        environment=settings.app_env,
        text_index=components["provider_registry"]["text_index"],
        llm=components["provider_registry"]["llm"],
    )

    yield

    await close_services(components)
    _logger.info("app_shutdown")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="Knowledge Engine API",
        version="0.1.0",
        description=(
            "Cross-document knowledge for a workspace: canonical entities "
            "harvested from document extractions, keyword and AI-synthesized "
            "search, and related-document ranking by shared entities."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=config.get("app", {}).get("cors_origins"))

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
