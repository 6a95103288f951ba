"""FastAPI routes for the knowledge engine.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                                          Method  Description
# ───────────────────────────────────────────────────────────────────────
# /api/v1/workspaces/{wid}/knowledge/entities       GET     List entities
# /api/v1/workspaces/{wid}/knowledge/entities/duplicates
#                                                   GET     Duplicate suggestions
# /api/v1/workspaces/{wid}/knowledge/entities/{eid} GET     Entity + mentions + relationships
# /api/v1/workspaces/{wid}/knowledge/relationships  GET     List relationships
# /api/v1/workspaces/{wid}/knowledge/search         GET     Keyword search (no AI)
# /api/v1/workspaces/{wid}/knowledge/search         POST    Semantic search
# /api/v1/workspaces/{wid}/knowledge/index          POST    Re-index, ?mode=full|incremental (202)
# /api/v1/workspaces/{wid}/knowledge/cleanup        POST    Recount + drop orphans
# /api/v1/workspaces/{wid}/knowledge/status         GET     Index counters
# /api/v1/workspaces/{wid}/knowledge/summary        GET     Dashboard summary
# /api/v1/docs/{doc_id}/entities                    GET     Entities in a doc
# /api/v1/docs/{doc_id}/related                     GET     Related documents
# /api/v1/health                                    GET     Health + providers
#
# The caller's identity for the query log comes from the ``X-User-Id``
# header; authentication itself happens upstream of this service.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from src.api.schemas import (
    DocEntitiesResponse,
    DocEntity,
    DuplicateListResponse,
    EntityDetailResponse,
    EntityListResponse,
    ErrorResponse,
    HealthResponse,
    IndexAcceptedResponse,
    RelationshipListResponse,
    SemanticSearchRequest,
)
from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.mention_store import IMentionStore
from src.models.entities import EntityType
from src.models.indexing import CleanupResult, IndexStatus, WorkspaceSummary
from src.models.relationships import RelationshipType
from src.models.search import KeywordSearchResult, RelatedDocsResult, SemanticSearchResult
from src.services.duplicate_detector import DuplicateDetector
from src.services.knowledge_indexer import REINDEX_MODES, KnowledgeIndexer
from src.services.related_docs import RelatedDocsService
from src.services.relationship_detector import RelationshipDetector
from src.services.semantic_search import SemanticSearchService
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_VALID_SORTS = frozenset({"doc_count", "mention_count", "name", "created_at"})
_VALID_ORDERS = frozenset({"asc", "desc"})


def _clamp(raw: int | None, default: int, maximum: int) -> int:
    """Missing or zero → default; otherwise clamp to 1..maximum."""
    return min(max(raw or default, 1), maximum)


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


# ---------------------------------------------------------------------------
# Dependency injection helpers (resolve singletons from app.state)
# ---------------------------------------------------------------------------


def _get_entity_store(request: Request) -> IEntityStore:
    return request.app.state.entity_store


def _get_mention_store(request: Request) -> IMentionStore:
    return request.app.state.mention_store


def _get_document_source(request: Request) -> IDocumentSource:
    return request.app.state.document_source


def _get_semantic_search(request: Request) -> SemanticSearchService:
    return request.app.state.semantic_search


def _get_related_docs(request: Request) -> RelatedDocsService:
    return request.app.state.related_docs


def _get_indexer(request: Request) -> KnowledgeIndexer:
    return request.app.state.indexer


def _get_duplicate_detector(request: Request) -> DuplicateDetector:
    return request.app.state.duplicate_detector


def _get_relationship_detector(request: Request) -> RelationshipDetector:
    return request.app.state.relationship_detector


EntityStoreDep = Annotated[IEntityStore, Depends(_get_entity_store)]
MentionStoreDep = Annotated[IMentionStore, Depends(_get_mention_store)]
DocumentSourceDep = Annotated[IDocumentSource, Depends(_get_document_source)]
SemanticSearchDep = Annotated[SemanticSearchService, Depends(_get_semantic_search)]
RelatedDocsDep = Annotated[RelatedDocsService, Depends(_get_related_docs)]
IndexerDep = Annotated[KnowledgeIndexer, Depends(_get_indexer)]
DuplicateDetectorDep = Annotated[DuplicateDetector, Depends(_get_duplicate_detector)]
RelationshipDetectorDep = Annotated[RelationshipDetector, Depends(_get_relationship_detector)]
UserIdHeader = Annotated[str, Header(alias="X-User-Id")]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@router.get(
    "/workspaces/{workspace_id}/knowledge/entities",
    response_model=EntityListResponse,
    responses={400: {"model": ErrorResponse}},
    summary="List canonical entities in a workspace",
)
async def list_entities(
    workspace_id: str,
    entity_store: EntityStoreDep,
    type: str | None = None,
    search: str | None = None,
    sort: str = "doc_count",
    order: str = "desc",
    limit: Annotated[int | None, Query()] = None,
    offset: Annotated[int, Query()] = 0,
) -> Any:
    """Filter by type, substring-search names and aliases, sort and page."""
    entity_type: EntityType | None = None
    if type:
        try:
            entity_type = EntityType(type)
        except ValueError:
            return _error(400, "invalid_entity_type", f"Unknown entity type: {type}")
    if sort not in _VALID_SORTS:
        return _error(400, "invalid_sort", f"sort must be one of {sorted(_VALID_SORTS)}")
    if order not in _VALID_ORDERS:
        return _error(400, "invalid_order", "order must be 'asc' or 'desc'")

    page_size = _clamp(limit, 50, 200)
    start = max(offset, 0)
    entities = await entity_store.list_by_workspace(
        workspace_id,
        entity_type=entity_type,
        search=search or None,
        sort=sort,
        order=order,
        limit=page_size,
        offset=start,
    )
    total = await entity_store.count(workspace_id, entity_type)
    return EntityListResponse(entities=entities, total=total, limit=page_size, offset=start)


@router.get(
    "/workspaces/{workspace_id}/knowledge/entities/duplicates",
    response_model=DuplicateListResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Suggest probable duplicate entities for review",
)
async def list_duplicates(
    workspace_id: str,
    detector: DuplicateDetectorDep,
    type: str | None = None,
    min_similarity: Annotated[float, Query(ge=0.0, le=1.0)] = 0.75,
    limit: Annotated[int | None, Query()] = None,
) -> Any:
    entity_type: EntityType | None = None
    if type:
        try:
            entity_type = EntityType(type)
        except ValueError:
            return _error(400, "invalid_entity_type", f"Unknown entity type: {type}")

    candidates = await detector.find_candidates(
        workspace_id,
        entity_type=entity_type,
        min_similarity=min_similarity,
        limit=_clamp(limit, 50, 200),
    )
    return DuplicateListResponse(candidates=candidates, total=len(candidates))


@router.get(
    "/workspaces/{workspace_id}/knowledge/entities/{entity_id}",
    response_model=EntityDetailResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Entity detail with its mentions and relationships",
)
async def get_entity(
    workspace_id: str,
    entity_id: str,
    entity_store: EntityStoreDep,
    mention_store: MentionStoreDep,
    detector: RelationshipDetectorDep,
) -> Any:
    entity = await entity_store.get_by_id(entity_id)
    if entity is None or entity.workspace_id != workspace_id:
        return _error(404, "entity_not_found", f"Entity {entity_id} not found in workspace")
    mentions = await mention_store.get_by_entity(entity_id)
    relationships = await detector.relationships_for_entity(entity_id)
    return EntityDetailResponse(entity=entity, mentions=mentions, relationships=relationships)


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


@router.get(
    "/workspaces/{workspace_id}/knowledge/relationships",
    response_model=RelationshipListResponse,
    responses={400: {"model": ErrorResponse}},
    summary="List entity relationships in a workspace",
)
async def list_relationships(
    workspace_id: str,
    detector: RelationshipDetectorDep,
    entity_id: str | None = None,
    type: str | None = None,
    min_strength: float | None = None,
    limit: Annotated[int | None, Query()] = None,
    offset: Annotated[int, Query()] = 0,
) -> Any:
    """Strongest first; filter by endpoint entity, type and minimum strength."""
    relationship_type: RelationshipType | None = None
    if type:
        try:
            relationship_type = RelationshipType(type)
        except ValueError:
            return _error(400, "invalid_relationship_type", f"Unknown relationship type: {type}")
    if min_strength is not None and not 0.0 <= min_strength <= 1.0:
        return _error(400, "invalid_min_strength", "min_strength must be between 0 and 1")

    page_size = _clamp(limit, 50, 200)
    start = max(offset, 0)
    relationships, total = await detector.list_relationships(
        workspace_id,
        entity_id=entity_id or None,
        relationship_type=relationship_type,
        min_strength=min_strength,
        limit=page_size,
        offset=start,
    )
    return RelationshipListResponse(
        relationships=relationships, total=total, limit=page_size, offset=start
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get(
    "/workspaces/{workspace_id}/knowledge/search",
    response_model=KeywordSearchResult,
    responses={400: {"model": ErrorResponse}},
    summary="Keyword search over entities and documents (no AI)",
)
async def keyword_search(
    workspace_id: str,
    search_service: SemanticSearchDep,
    q: str | None = None,
    limit: Annotated[int | None, Query()] = None,
    user_id: UserIdHeader = "anonymous",
) -> Any:
    if not q or not q.strip():
        return _error(400, "query_required", "Query parameter 'q' is required")
    return await search_service.keyword_search(
        workspace_id, q.strip(), queried_by=user_id, limit=_clamp(limit, 20, 50)
    )


@router.post(
    "/workspaces/{workspace_id}/knowledge/search",
    response_model=SemanticSearchResult,
    responses={400: {"model": ErrorResponse}},
    summary="Answer a natural-language question from workspace documents",
)
async def semantic_search(
    workspace_id: str,
    body: SemanticSearchRequest,
    search_service: SemanticSearchDep,
    user_id: UserIdHeader = "anonymous",
) -> Any:
    query = body.query.strip()
    if not query:
        return _error(400, "query_required", "Query text is required and must be non-empty")
    return await search_service.search(
        workspace_id, query, queried_by=user_id, limit=_clamp(body.limit, 10, 20)
    )


# ---------------------------------------------------------------------------
# Indexing & reporting
# ---------------------------------------------------------------------------


async def _run_reindex(indexer: KnowledgeIndexer, workspace_id: str, mode: str) -> None:
    try:
        await indexer.reindex_workspace(workspace_id, mode=mode)
    except Exception as exc:
        _logger.error("reindex_background_failed", workspace_id=workspace_id, error=str(exc))


@router.post(
    "/workspaces/{workspace_id}/knowledge/index",
    response_model=IndexAcceptedResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse}},
    summary="Schedule a full or incremental workspace re-index",
)
async def trigger_reindex(
    workspace_id: str,
    background_tasks: BackgroundTasks,
    indexer: IndexerDep,
    mode: str = "full",
) -> Any:
    if mode not in REINDEX_MODES:
        return _error(400, "invalid_mode", f"mode must be one of {list(REINDEX_MODES)}")
    background_tasks.add_task(_run_reindex, indexer, workspace_id, mode)
    _logger.info("reindex_scheduled", workspace_id=workspace_id, mode=mode)
    return IndexAcceptedResponse(
        workspace_id=workspace_id,
        mode=mode,
        message="Re-index scheduled. Poll the status endpoint for progress.",
    )


@router.post(
    "/workspaces/{workspace_id}/knowledge/cleanup",
    response_model=CleanupResult,
    summary="Recalculate entity counts and delete entities without mentions",
)
async def cleanup(workspace_id: str, indexer: IndexerDep) -> CleanupResult:
    return await indexer.cleanup_workspace(workspace_id)


@router.get(
    "/workspaces/{workspace_id}/knowledge/status",
    response_model=IndexStatus,
    summary="Knowledge index counters",
)
async def index_status(workspace_id: str, indexer: IndexerDep) -> IndexStatus:
    return await indexer.get_status(workspace_id)


@router.get(
    "/workspaces/{workspace_id}/knowledge/summary",
    response_model=WorkspaceSummary,
    summary="Entity statistics, top entities and recent queries",
)
async def workspace_summary(workspace_id: str, indexer: IndexerDep) -> WorkspaceSummary:
    return await indexer.get_summary(workspace_id)


# ---------------------------------------------------------------------------
# Per-document
# ---------------------------------------------------------------------------


@router.get(
    "/docs/{doc_id}/entities",
    response_model=DocEntitiesResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Entities mentioned in a document",
)
async def doc_entities(
    doc_id: str,
    document_source: DocumentSourceDep,
    entity_store: EntityStoreDep,
    mention_store: MentionStoreDep,
) -> Any:
    if await document_source.get_document(doc_id) is None:
        return _error(404, "doc_not_found", f"Document {doc_id} not found")

    entities: dict[str, DocEntity] = {}
    for mention in await mention_store.get_by_doc(doc_id):
        if mention.entity_id in entities:
            continue
        entity = await entity_store.get_by_id(mention.entity_id)
        if entity is None:
            continue
        entities[mention.entity_id] = DocEntity(
            entity_id=entity.id,
            entity_type=entity.entity_type,
            name=entity.name,
            context=mention.context,
            confidence=mention.confidence,
            field_path=mention.field_path,
        )
    return DocEntitiesResponse(entities=list(entities.values()), total=len(entities))


@router.get(
    "/docs/{doc_id}/related",
    response_model=RelatedDocsResult,
    responses={404: {"model": ErrorResponse}},
    summary="Documents related through shared entities",
)
async def related_docs(
    doc_id: str,
    document_source: DocumentSourceDep,
    related_service: RelatedDocsDep,
    limit: Annotated[int | None, Query()] = None,
    ai_rerank: bool = True,
) -> Any:
    doc = await document_source.get_document(doc_id)
    if doc is None:
        return _error(404, "doc_not_found", f"Document {doc_id} not found")
    return await related_service.find_related(
        doc_id, doc.workspace_id, limit=_clamp(limit, 10, 50), ai_rerank=ai_rerank
    )


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Healthy with an index and an LLM; degraded without an LLM (keyword-only answers)."""
    providers: dict[str, Any] = {}
    if hasattr(request.app.state, "provider_registry"):
        providers = dict(request.app.state.provider_registry)

    if not providers.get("text_index"):
        status = "unhealthy"
    elif not providers.get("llm"):
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(status=status, version="0.1.0", providers=providers)

