"""Knowledge engine API layer: routes, schemas, and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    DocEntitiesResponse,
    DuplicateListResponse,
    EntityDetailResponse,
    EntityListResponse,
    ErrorResponse,
    HealthResponse,
    IndexAcceptedResponse,
    SemanticSearchRequest,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "DocEntitiesResponse",
    "DuplicateListResponse",
    "EntityDetailResponse",
    "EntityListResponse",
    "ErrorResponse",
    "HealthResponse",
    "IndexAcceptedResponse",
    "SemanticSearchRequest",
]
