"""Knowledge engine domain models — re-exports all public model classes.

Other parts of the codebase can import directly from ``src.models`` instead
of the individual submodules.  The models are organized by concern:
    - document.py   — Read-only document view from the document source
    - entities.py   — Canonical entities, mentions, raw harvested entities
    - extraction.py — Discriminated union of structured extraction payloads
    - indexing.py   — Re-index, cleanup, status and duplicate-candidate reports
    - relationships.py — Entity-to-entity edges and their hydrated read views
    - search.py     — Index hits, related documents, semantic search, query log

If you add a new model class, remember to add it to ``__all__`` too.
"""

from __future__ import annotations

from src.models.document import Document
from src.models.entities import (
    CanonicalEntity,
    EntityMention,
    EntityType,
    HarvestResult,
    MentionSource,
    RawEntity,
)
from src.models.extraction import (
    ContractExtraction,
    Extraction,
    ExtractionPayload,
    GenericExtraction,
    InvoiceExtraction,
    MeetingNotesExtraction,
    ProposalExtraction,
    ReportExtraction,
)
from src.models.indexing import (
    CleanupResult,
    DuplicateCandidate,
    IndexStatus,
    ReindexResult,
    WorkspaceSummary,
)
from src.models.relationships import (
    CoOccurrence,
    EntityRelationship,
    EntityRelationshipView,
    RelatedEntityRef,
    RelationshipDetectionResult,
    RelationshipEvidence,
    RelationshipType,
    RelationshipView,
)
from src.models.search import (
    DocSearchHit,
    EntitySearchHit,
    KeywordSearchResult,
    QueryLogEntry,
    QueryType,
    RelatedDoc,
    RelatedDocsResult,
    SearchResult,
    SearchSnippet,
    SemanticSearchResult,
    SharedEntity,
)

__all__ = [
    "CanonicalEntity",
    "CleanupResult",
    "CoOccurrence",
    "ContractExtraction",
    "DocSearchHit",
    "Document",
    "DuplicateCandidate",
    "EntityMention",
    "EntityRelationship",
    "EntityRelationshipView",
    "EntitySearchHit",
    "EntityType",
    "Extraction",
    "ExtractionPayload",
    "GenericExtraction",
    "HarvestResult",
    "IndexStatus",
    "InvoiceExtraction",
    "KeywordSearchResult",
    "MeetingNotesExtraction",
    "MentionSource",
    "ProposalExtraction",
    "QueryLogEntry",
    "QueryType",
    "RawEntity",
    "ReindexResult",
    "RelatedDoc",
    "RelatedDocsResult",
    "RelatedEntityRef",
    "RelationshipDetectionResult",
    "RelationshipEvidence",
    "RelationshipType",
    "RelationshipView",
    "ReportExtraction",
    "SearchResult",
    "SearchSnippet",
    "SemanticSearchResult",
    "SharedEntity",
    "WorkspaceSummary",
]
