"""Application settings loaded from environment variables via pydantic-settings.

Values come from two sources, highest priority first:

  1. Environment variables, e.g. ``KNOWLEDGE_DB_PATH=/data/knowledge.db``
  2. A ``.env`` file in the working directory

Field names map to upper-cased environment variables automatically.  Empty
strings mean "not configured": provider selection in ``src.main`` skips any
LLM provider whose key is empty and falls through to the next one.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge engine settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === LLM Providers ===
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoints (TogetherAI, vLLM, ...)
    openai_text_model: str = ""
    anthropic_api_key: str = ""
    anthropic_model: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = ""

    # === Storage ===
    knowledge_db_path: str = "data/knowledge.db"
    text_index_backend: str = "sqlite"  # "sqlite" | "postgres"
    postgres_dsn: str = ""
    postgres_pool_min_size: int = 2
    postgres_pool_max_size: int = 10

    # === Knowledge Engine ===
    knowledge_entity_limit: int = 10000
    index_batch_size: int = 100
    search_timeout_s: float = 20.0
    term_extraction_timeout_s: float = 5.0
    synthesis_timeout_s: float = 12.0
    rerank_timeout_s: float = 5.0
    relationship_label_timeout_s: float = 15.0

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty credentials configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url and self.ollama_model:
            providers.append("ollama")
        return providers
