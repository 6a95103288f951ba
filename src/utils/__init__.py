"""Utility modules for the knowledge engine.

Available utility modules (all re-exported here for convenience):

- **errors** -- Domain-specific exception hierarchy rooted at
  KnowledgeEngineError; each concern raises its own subclass so callers can
  handle failures granularly without broad ``except Exception`` blocks.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **text_normalizer** -- Entity name normalization, organization detection,
  amount formatting, HTML stripping and FTS query sanitization.
- **timeouts** -- ``with_timeout`` deadline wrapper for AI calls.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    ConfigurationError,
    EntityLimitExceededError,
    IndexSyncError,
    KnowledgeEngineError,
    LLMError,
    OperationTimeoutError,
    ProviderUnavailableError,
    StoreError,
)

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import configure_logging, get_logger

# -- Text normalization (entity names, amounts, index input) ---------------
from src.utils.text_normalizer import (
    format_amount,
    html_to_plain_text,
    looks_like_organization,
    name_similarity,
    normalize_name,
    sanitize_fts_query,
)

# -- Deadlines --------------------------------------------------------------
from src.utils.timeouts import with_timeout

__all__ = [
    "ConfigurationError",
    "EntityLimitExceededError",
    "IndexSyncError",
    "KnowledgeEngineError",
    "LLMError",
    "OperationTimeoutError",
    "ProviderUnavailableError",
    "StoreError",
    "configure_logging",
    "format_amount",
    "get_logger",
    "html_to_plain_text",
    "looks_like_organization",
    "name_similarity",
    "normalize_name",
    "sanitize_fts_query",
    "with_timeout",
]
