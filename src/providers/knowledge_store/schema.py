"""SQLite schema shared by the knowledge stores and the document source.

All stores live in one database file; each store's ``initialize`` calls
:func:`ensure_schema` so start-up order does not matter.  Timestamps are
ISO-8601 UTC strings with millisecond precision.
"""

from __future__ import annotations

import aiosqlite

NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_CREATE_DOCS_SQL = f"""\
CREATE TABLE IF NOT EXISTS docs (
    id            TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    title         TEXT NOT NULL DEFAULT 'Untitled',
    content_html  TEXT NOT NULL DEFAULT '',
    created_at    TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at    TEXT NOT NULL DEFAULT ({NOW_SQL}),
    deleted_at    TEXT
);
"""

_CREATE_EXTRACTIONS_SQL = f"""\
CREATE TABLE IF NOT EXISTS extractions (
    doc_id                  TEXT PRIMARY KEY,
    document_type           TEXT NOT NULL,
    extraction_json         TEXT NOT NULL DEFAULT '{{}}',
    field_confidences_json  TEXT NOT NULL DEFAULT '{{}}',
    created_at              TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at              TEXT NOT NULL DEFAULT ({NOW_SQL})
);
"""

_CREATE_ENTITIES_SQL = """\
CREATE TABLE IF NOT EXISTS workspace_entities (
    id               TEXT PRIMARY KEY,
    workspace_id     TEXT NOT NULL,
    entity_type      TEXT NOT NULL CHECK (entity_type IN (
        'person', 'organization', 'date', 'amount',
        'location', 'product', 'concept', 'term'
    )),
    name             TEXT NOT NULL,
    normalized_name  TEXT NOT NULL,
    aliases_json     TEXT NOT NULL DEFAULT '[]',
    metadata_json    TEXT NOT NULL DEFAULT '{}',
    mention_count    INTEGER NOT NULL DEFAULT 0,
    doc_count        INTEGER NOT NULL DEFAULT 0,
    first_seen_at    TEXT NOT NULL,
    last_seen_at     TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    UNIQUE(workspace_id, entity_type, normalized_name)
);
"""

_CREATE_MENTIONS_SQL = """\
CREATE TABLE IF NOT EXISTS entity_mentions (
    id            TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    entity_id     TEXT NOT NULL,
    doc_id        TEXT NOT NULL,
    field_path    TEXT,
    context       TEXT,
    confidence    REAL NOT NULL DEFAULT 0.5,
    source        TEXT NOT NULL DEFAULT 'extraction'
        CHECK (source IN ('extraction', 'manual', 'ai_index')),
    created_at    TEXT NOT NULL,
    UNIQUE(entity_id, doc_id, field_path)
);
"""

_CREATE_QUERIES_SQL = """\
CREATE TABLE IF NOT EXISTS knowledge_queries (
    id            TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    query_text    TEXT NOT NULL,
    query_type    TEXT NOT NULL CHECK (query_type IN (
        'semantic_search', 'entity_search', 'related_docs'
    )),
    results_json  TEXT,
    result_count  INTEGER NOT NULL DEFAULT 0,
    queried_by    TEXT NOT NULL,
    duration_ms   INTEGER,
    created_at    TEXT NOT NULL
);
"""

_CREATE_RELATIONSHIPS_SQL = """\
CREATE TABLE IF NOT EXISTS entity_relationships (
    id                 TEXT PRIMARY KEY,
    workspace_id       TEXT NOT NULL,
    from_entity_id     TEXT NOT NULL,
    to_entity_id       TEXT NOT NULL,
    relationship_type  TEXT NOT NULL CHECK (relationship_type IN (
        'co_occurrence', 'contractual', 'financial',
        'organizational', 'temporal', 'custom'
    )),
    label              TEXT,
    strength           REAL NOT NULL DEFAULT 0.5,
    evidence_json      TEXT NOT NULL DEFAULT '[]',
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    UNIQUE(from_entity_id, to_entity_id, relationship_type)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_docs_workspace ON docs(workspace_id);",
    "CREATE INDEX IF NOT EXISTS idx_ws_entities_workspace ON workspace_entities(workspace_id);",
    "CREATE INDEX IF NOT EXISTS idx_ws_entities_type ON workspace_entities(workspace_id, entity_type);",
    "CREATE INDEX IF NOT EXISTS idx_ws_entities_doc_count "
    "ON workspace_entities(workspace_id, doc_count DESC);",
    "CREATE INDEX IF NOT EXISTS idx_mentions_entity ON entity_mentions(entity_id);",
    "CREATE INDEX IF NOT EXISTS idx_mentions_doc ON entity_mentions(doc_id);",
    "CREATE INDEX IF NOT EXISTS idx_mentions_workspace ON entity_mentions(workspace_id);",
    "CREATE INDEX IF NOT EXISTS idx_kq_workspace ON knowledge_queries(workspace_id);",
    "CREATE INDEX IF NOT EXISTS idx_kq_created ON knowledge_queries(created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_rel_workspace ON entity_relationships(workspace_id);",
    "CREATE INDEX IF NOT EXISTS idx_rel_from ON entity_relationships(from_entity_id);",
    "CREATE INDEX IF NOT EXISTS idx_rel_to ON entity_relationships(to_entity_id);",
]


async def ensure_schema(db: aiosqlite.Connection) -> None:
    """Create every knowledge table and index on an open connection."""
    for create_sql in (
        _CREATE_DOCS_SQL,
        _CREATE_EXTRACTIONS_SQL,
        _CREATE_ENTITIES_SQL,
        _CREATE_MENTIONS_SQL,
        _CREATE_QUERIES_SQL,
        _CREATE_RELATIONSHIPS_SQL,
    ):
        await db.execute(create_sql)
    for idx_sql in _CREATE_INDICES_SQL:
        await db.execute(idx_sql)
    await db.commit()
