"""Custom exception hierarchy for the knowledge engine.

All application exceptions inherit from :class:`KnowledgeEngineError`, which
carries an optional ``provider_name`` so error handlers can identify which
backend (e.g. "anthropic", "sqlite_fts5", "postgres_tsvector") caused the
failure.

The hierarchy is organized by concern:

    KnowledgeEngineError  (base -- catch-all for any engine error)
    +-- ConfigurationError        (startup / missing config)
    +-- LLMError                  (any LLM API call failure)
    +-- ProviderUnavailableError  (external service down / unreachable)
    +-- StoreError                (entity / mention / query-log persistence)
    +-- IndexSyncError            (text index write failure)
    +-- EntityLimitExceededError  (workspace entity ceiling reached)
    +-- OperationTimeoutError     (a time-boxed stage ran out of time)

Callers handle errors at the level they care about -- e.g. the harvester
stops creating entities on EntityLimitExceededError but keeps recording
mentions, and the search orchestrator falls back to keyword results on
LLMError or OperationTimeoutError.
"""


class KnowledgeEngineError(Exception):
    """Base exception for all knowledge engine errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which backend triggered the error.  The
    ``__str__`` method prefixes the provider name in brackets for structured
    log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class ProviderUnavailableError(KnowledgeEngineError):
    """Raised when an external service or provider is unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowledgeEngineError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Persistence / index errors
# ---------------------------------------------------------------------------

class StoreError(KnowledgeEngineError):
    """Raised when an entity, mention, or query-log store operation fails."""

    def __init__(
        self,
        message: str = "Knowledge store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IndexSyncError(KnowledgeEngineError):
    """Raised when writing to the text index fails."""

    def __init__(
        self,
        message: str = "Text index sync failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EntityLimitExceededError(KnowledgeEngineError):
    """Raised when a workspace already holds its maximum number of entities.

    Carries the offending ``workspace_id`` together with the current count
    and the configured ceiling so the harvester can report it verbatim.
    """

    def __init__(
        self,
        workspace_id: str,
        current_count: int,
        limit: int,
        provider_name: str | None = None,
    ) -> None:
        self.workspace_id = workspace_id
        self.current_count = current_count
        self.limit = limit
        super().__init__(
            message=(
                f"Entity limit reached: workspace {workspace_id} has "
                f"{current_count} entities (max {limit})"
            ),
            provider_name=provider_name,
        )


class OperationTimeoutError(KnowledgeEngineError):
    """Raised by :func:`src.utils.timeouts.with_timeout` when a stage expires."""

    def __init__(
        self,
        message: str = "Operation timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(KnowledgeEngineError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
