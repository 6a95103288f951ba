"""Text-index backends implementing ITextIndexProvider.

    - SQLiteFTSProvider   — embedded FTS5 virtual tables (default)
    - PostgresFTSProvider — generated ``tsvector`` columns with GIN indexes

main.py selects one via the ``TEXT_INDEX_BACKEND`` setting.
"""

from src.providers.text_index.postgres_fts_provider import PostgresFTSProvider
from src.providers.text_index.sqlite_fts_provider import SQLiteFTSProvider

__all__ = ["PostgresFTSProvider", "SQLiteFTSProvider"]
