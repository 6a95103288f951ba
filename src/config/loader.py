"""YAML configuration loader with environment variable overrides.

Configuration is layered, later layers winning:

  1. ``config/config.yaml`` -- static defaults checked into the repo
  2. ``.env`` file          -- local developer overrides
  3. Environment variables  -- deploy-time values

``load_config`` reads the YAML file, then deep-merges the values resolved
by :class:`~src.config.settings.Settings` on top of it.
"""

from pathlib import Path

import yaml

from src.config.settings import Settings


def load_config(path: str = "config/config.yaml") -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = Settings()
    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "available_providers": settings.get_available_llm_providers(),
            "ollama_base_url": settings.ollama_base_url,
        },
        "storage": {
            "knowledge_db_path": settings.knowledge_db_path,
            "text_index_backend": settings.text_index_backend,
        },
        "knowledge": {
            "entity_limit": settings.knowledge_entity_limit,
            "index_batch_size": settings.index_batch_size,
        },
        "timeouts": {
            "search_s": settings.search_timeout_s,
            "term_extraction_s": settings.term_extraction_timeout_s,
            "synthesis_s": settings.synthesis_timeout_s,
            "rerank_s": settings.rerank_timeout_s,
            "relationship_label_s": settings.relationship_label_timeout_s,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
