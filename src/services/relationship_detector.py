"""Entity relationship detection for the workspace knowledge graph.

Two stages, the second optional:

1. **Co-occurrence** (no AI).  Every pair of entities mentioned in the same
   document gets a ``co_occurrence`` edge.  Strength grows linearly with the
   number of shared documents, from 0.1 for one document to 1.0 at ten.
   Evidence records up to five shared documents with the mention contexts
   of both entities.
2. **AI labelling**.  Pairs sharing at least two documents are sent to the
   LLM in batches of eight.  A confident answer adds a typed edge
   (``contractual``, ``financial`` ...) with a short label and a strength
   blending co-occurrence (40%) with the model's confidence (60%).  A
   failing or timed-out batch is recorded as an error; the co-occurrence
   edges from stage 1 stay in place.

The detector also hydrates stored edges into the read views the API
returns.  Detection never raises: failures land in
``RelationshipDetectionResult.errors``.
"""

from __future__ import annotations

import structlog

from src.interfaces.entity_store import IEntityStore
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.mention_store import IMentionStore
from src.interfaces.relationship_store import IRelationshipStore
from src.models.entities import CanonicalEntity, EntityMention
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
from src.services.response_parsers import parse_relationship_labels
from src.utils.logging import get_logger
from src.utils.timeouts import with_timeout

logger: structlog.BoundLogger = get_logger(__name__)

LABEL_TIMEOUT_S = 15.0
LABEL_MAX_TOKENS = 500
LABEL_BATCH_SIZE = 8
MIN_SHARED_DOCS_FOR_AI = 2
MIN_CO_OCCURRENCE_CONFIDENCE = 50
MAX_EVIDENCE_DOCS = 5
PROMPT_EVIDENCE_DOCS = 3
STRENGTH_CAP_DOCS = 10
MAX_CONTEXTS_PER_ENTITY = 2

BASE_STRENGTH_WEIGHT = 0.4
AI_CONFIDENCE_WEIGHT = 0.6

NO_CONTEXT = "Co-occurrence in document"
CONTEXT_UNAVAILABLE = "Context unavailable"

_KNOWN_TYPES = frozenset(t.value for t in RelationshipType)


def calculate_base_strength(shared_doc_count: int) -> float:
    """0.1 for one shared document, rising linearly to 1.0 at ten or more."""
    step = 0.9 / (STRENGTH_CAP_DOCS - 1)
    return min(0.1 + (max(shared_doc_count, 1) - 1) * step, 1.0)


def blend_strength(base: float, confidence: int) -> float:
    return base * BASE_STRENGTH_WEIGHT + (confidence / 100) * AI_CONFIDENCE_WEIGHT


def _entity_ref(entity: CanonicalEntity | None, entity_id: str) -> RelatedEntityRef:
    if entity is None:
        return RelatedEntityRef(id=entity_id, name="(deleted)", entity_type="unknown")
    return RelatedEntityRef(id=entity.id, name=entity.name, entity_type=entity.entity_type)


class RelationshipDetector:
    """Builds and reads the entity relationship graph of a workspace."""

    _SYSTEM_PROMPT = (
        "You are a relationship analysis expert for a document management system. "
        "For each numbered PAIR below, determine the nature of the relationship "
        "between the two entities based on the documents they appear in together.\n\n"
        "Output EXACTLY one line per pair in this format: N: TYPE - LABEL - CONFIDENCE - REASON\n"
        "Where:\n"
        "  N = pair number\n"
        "  TYPE = one of: contractual, financial, organizational, temporal, custom\n"
        "  LABEL = short human-readable relationship description "
        "(e.g., 'contracted with', 'pays', 'reports to')\n"
        "  CONFIDENCE = 0-100 confidence in the relationship type\n"
        "  REASON = brief explanation\n\n"
        "If the relationship is unclear or purely coincidental, use TYPE=co_occurrence "
        "with a low confidence.\n\n"
        "Example: 1: contractual - contracted with - 92 - Both entities appear as "
        "parties in a services agreement"
    )

    def __init__(
        self,
        entity_store: IEntityStore,
        mention_store: IMentionStore,
        relationship_store: IRelationshipStore,
        llm_provider: ILLMProvider | None = None,
        label_timeout_s: float = LABEL_TIMEOUT_S,
    ) -> None:
        self._entities = entity_store
        self._mentions = mention_store
        self._relationships = relationship_store
        self._llm = llm_provider
        self._label_timeout_s = label_timeout_s

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def find_co_occurrences(
        self, workspace_id: str, entity_id: str | None = None
    ) -> list[CoOccurrence]:
        """Hydrated co-occurring pairs, most shared documents first.

        Pairs whose entity has since been deleted are skipped.
        """
        pairs = await self._relationships.find_co_occurrences(workspace_id, entity_id)
        cache: dict[str, CanonicalEntity | None] = {}
        found: list[CoOccurrence] = []
        for entity_a_id, entity_b_id, doc_ids in pairs:
            for eid in (entity_a_id, entity_b_id):
                if eid not in cache:
                    cache[eid] = await self._entities.get_by_id(eid)
            entity_a, entity_b = cache[entity_a_id], cache[entity_b_id]
            if entity_a is None or entity_b is None:
                continue
            found.append(
                CoOccurrence(entity_a=entity_a, entity_b=entity_b, shared_doc_ids=doc_ids)
            )
        return found

    async def gather_evidence(
        self,
        entity_a_id: str,
        entity_b_id: str,
        shared_doc_ids: list[str],
        max_docs: int = MAX_EVIDENCE_DOCS,
    ) -> list[RelationshipEvidence]:
        """One evidence item per shared document (at most *max_docs*).

        The context joins up to two mention contexts of each entity: ``; ``
        within an entity, `` | `` between the two.
        """
        evidence: list[RelationshipEvidence] = []
        for doc_id in shared_doc_ids[:max_docs]:
            try:
                mentions = await self._mentions.get_by_doc(doc_id)
            except Exception as exc:
                logger.warning("relationship_evidence_failed", doc_id=doc_id, error=str(exc))
                evidence.append(RelationshipEvidence(doc_id=doc_id, context=CONTEXT_UNAVAILABLE))
                continue
            parts = [
                "; ".join(ctx)
                for ctx in (_contexts(mentions, entity_a_id), _contexts(mentions, entity_b_id))
                if ctx
            ]
            evidence.append(
                RelationshipEvidence(doc_id=doc_id, context=" | ".join(parts) or NO_CONTEXT)
            )
        return evidence

    async def detect_workspace_relationships(
        self, workspace_id: str, ai_label: bool = True
    ) -> RelationshipDetectionResult:
        """Rebuild co-occurrence edges for the workspace, then AI-label strong pairs."""
        return await self._detect(workspace_id, None, ai_label)

    async def update_relationships_for_entity(
        self, entity_id: str, workspace_id: str, ai_label: bool = True
    ) -> RelationshipDetectionResult:
        """Refresh only the edges touching *entity_id*."""
        return await self._detect(workspace_id, entity_id, ai_label)

    async def prune(self, workspace_id: str) -> int:
        """Drop edges whose entities were deleted."""
        return await self._relationships.delete_orphans(workspace_id)

    async def _detect(
        self, workspace_id: str, entity_id: str | None, ai_label: bool
    ) -> RelationshipDetectionResult:
        created = updated = ai_labeled = 0
        errors: list[str] = []
        try:
            co_occurrences = await self.find_co_occurrences(workspace_id, entity_id)
        except Exception as exc:
            logger.error("relationship_detection_failed", workspace_id=workspace_id, error=str(exc))
            return RelationshipDetectionResult(
                workspace_id=workspace_id, errors=[f"Detection failed: {exc}"]
            )

        for co in co_occurrences:
            try:
                evidence = await self.gather_evidence(
                    co.entity_a.id, co.entity_b.id, co.shared_doc_ids
                )
                _, inserted = await self._relationships.upsert(
                    workspace_id,
                    co.entity_a.id,
                    co.entity_b.id,
                    RelationshipType.CO_OCCURRENCE,
                    calculate_base_strength(co.shared_doc_count),
                    evidence,
                )
            except Exception as exc:
                logger.warning(
                    "co_occurrence_write_failed",
                    entity_a=co.entity_a.name,
                    entity_b=co.entity_b.name,
                    error=str(exc),
                )
                errors.append(
                    f"Failed to process co-occurrence for {co.entity_a.name} <-> "
                    f"{co.entity_b.name}: {exc}"
                )
                continue
            if inserted:
                created += 1
            else:
                updated += 1

        if ai_label and self._llm is not None:
            candidates = [c for c in co_occurrences if c.shared_doc_count >= MIN_SHARED_DOCS_FOR_AI]
            for start in range(0, len(candidates), LABEL_BATCH_SIZE):
                batch = candidates[start : start + LABEL_BATCH_SIZE]
                try:
                    labeled, batch_created, batch_updated = await self._label_batch(
                        workspace_id, batch
                    )
                except Exception as exc:
                    logger.warning(
                        "relationship_labeling_failed", workspace_id=workspace_id, error=str(exc)
                    )
                    errors.append(f"AI batch labeling failed: {exc}")
                    continue
                ai_labeled += labeled
                created += batch_created
                updated += batch_updated

        logger.info(
            "relationships_detected",
            workspace_id=workspace_id,
            entity_id=entity_id,
            co_occurrences=len(co_occurrences),
            created=created,
            updated=updated,
            ai_labeled=ai_labeled,
        )
        return RelationshipDetectionResult(
            workspace_id=workspace_id,
            co_occurrences_found=len(co_occurrences),
            ai_labeled=ai_labeled,
            relationships_created=created,
            relationships_updated=updated,
            errors=errors,
        )

    async def _label_batch(
        self, workspace_id: str, batch: list[CoOccurrence]
    ) -> tuple[int, int, int]:
        """Label one batch; returns (labeled, created, updated)."""
        prompt = await self._build_label_prompt(batch)
        text = await with_timeout(
            self._llm.complete(
                system_prompt=self._SYSTEM_PROMPT,
                user_prompt=prompt,
                max_tokens=LABEL_MAX_TOKENS,
            ),
            self._label_timeout_s,
            "Relationship labelling",
        )
        labels = parse_relationship_labels(text, len(batch), _KNOWN_TYPES)

        labeled = created = updated = 0
        for i, co in enumerate(batch):
            answer = labels.get(i)
            if answer is None:
                continue
            if (
                answer.relationship_type == RelationshipType.CO_OCCURRENCE.value
                and answer.confidence < MIN_CO_OCCURRENCE_CONFIDENCE
            ):
                continue
            labeled += 1
            evidence = await self.gather_evidence(co.entity_a.id, co.entity_b.id, co.shared_doc_ids)
            _, inserted = await self._relationships.upsert(
                workspace_id,
                co.entity_a.id,
                co.entity_b.id,
                RelationshipType(answer.relationship_type),
                blend_strength(calculate_base_strength(co.shared_doc_count), answer.confidence),
                evidence,
                label=answer.label,
            )
            if inserted:
                created += 1
            else:
                updated += 1
        return labeled, created, updated

    async def _build_label_prompt(self, batch: list[CoOccurrence]) -> str:
        blocks = []
        for i, co in enumerate(batch, start=1):
            lines = [f"PAIR {i}:"]
            for tag, entity in (("A", co.entity_a), ("B", co.entity_b)):
                line = f'  Entity {tag}: "{entity.name}" ({entity.entity_type.value})'
                if entity.aliases:
                    line += f" [aliases: {', '.join(entity.aliases[:3])}]"
                lines.append(line)
            lines.append(f"  Shared documents: {co.shared_doc_count}")
            evidence = await self.gather_evidence(
                co.entity_a.id, co.entity_b.id, co.shared_doc_ids, max_docs=PROMPT_EVIDENCE_DOCS
            )
            if evidence:
                lines.append("  Document contexts:")
                lines.extend(f"    - {e.context}" for e in evidence)
            blocks.append("\n".join(lines))
        return "Analyze the relationship between each entity pair:\n\n" + "\n\n".join(blocks)

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def list_relationships(
        self,
        workspace_id: str,
        entity_id: str | None = None,
        relationship_type: RelationshipType | None = None,
        min_strength: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[RelationshipView], int]:
        """One page of hydrated edges plus the unpaged total."""
        edges = await self._relationships.list_by_workspace(
            workspace_id,
            entity_id=entity_id,
            relationship_type=relationship_type,
            min_strength=min_strength,
            limit=limit,
            offset=offset,
        )
        total = await self._relationships.count(
            workspace_id,
            entity_id=entity_id,
            relationship_type=relationship_type,
            min_strength=min_strength,
        )
        entities = await self._load_endpoints(edges)
        views = [
            RelationshipView(
                id=edge.id,
                from_entity=_entity_ref(entities.get(edge.from_entity_id), edge.from_entity_id),
                to_entity=_entity_ref(entities.get(edge.to_entity_id), edge.to_entity_id),
                relationship_type=edge.relationship_type,
                label=edge.label,
                strength=edge.strength,
                evidence_count=len(edge.evidence),
                created_at=edge.created_at,
                updated_at=edge.updated_at,
            )
            for edge in edges
        ]
        return views, total

    async def relationships_for_entity(
        self, entity_id: str, limit: int = 20
    ) -> list[EntityRelationshipView]:
        """Edges touching *entity_id*, each seen from that entity's side."""
        edges = await self._relationships.get_by_entity(entity_id, limit=limit)
        entities = await self._load_endpoints(edges)
        views = []
        for edge in edges:
            other_id = edge.to_entity_id if edge.from_entity_id == entity_id else edge.from_entity_id
            views.append(
                EntityRelationshipView(
                    id=edge.id,
                    related_entity=_entity_ref(entities.get(other_id), other_id),
                    relationship_type=edge.relationship_type,
                    label=edge.label,
                    strength=edge.strength,
                    evidence_count=len(edge.evidence),
                )
            )
        return views

    async def _load_endpoints(
        self, edges: list[EntityRelationship]
    ) -> dict[str, CanonicalEntity]:
        entities: dict[str, CanonicalEntity] = {}
        for edge in edges:
            for eid in (edge.from_entity_id, edge.to_entity_id):
                if eid in entities:
                    continue
                entity = await self._entities.get_by_id(eid)
                if entity is not None:
                    entities[eid] = entity
        return entities


def _contexts(mentions: list[EntityMention], entity_id: str) -> list[str]:
    found = [m.context for m in mentions if m.entity_id == entity_id and m.context]
    return found[:MAX_CONTEXTS_PER_ENTITY]
