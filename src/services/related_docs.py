"""Related-documents ranking through shared canonical entities.

Given a document, find the other documents in its workspace that mention
the same canonical entities and rank them by how much they share.

Pipeline
--------
1. Collect the entities the source document mentions.
2. Weight each entity by how discriminating it is: an entity found in only
   one document is worth 1.0, one found everywhere is worth little
   (``1 / log2(doc_count + 1)``).
3. Walk each entity's mentions (capped at 50) and accumulate the weight of
   every shared entity per candidate document.
4. Normalize each candidate's score by the source document's maximum
   possible score, then sort.
5. Optionally let the LLM re-rank the top candidates.  The deterministic
   ranking is always kept as the fallback.

The ranker is read-only and never raises; store failures produce an empty
result with a note.
"""

from __future__ import annotations

import math

import structlog

from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.mention_store import IMentionStore
from src.models.entities import CanonicalEntity
from src.models.search import RelatedDoc, RelatedDocsResult, SharedEntity
from src.services.extraction_summarizer import summarize_extraction
from src.services.response_parsers import parse_rank_lines
from src.utils.logging import get_logger
from src.utils.timeouts import with_timeout

logger: structlog.BoundLogger = get_logger(__name__)

DEFAULT_LIMIT = 10
MAX_MENTIONS_PER_ENTITY = 50
MAX_CANDIDATES_FOR_AI = 10
MIN_CANDIDATES_FOR_AI = 3
RERANK_TIMEOUT_S = 5.0
RERANK_MAX_TOKENS = 400
UNRANKED_PENALTY = 0.8


def entity_weight(doc_count: int) -> float:
    """Importance weight of an entity appearing in *doc_count* documents."""
    return 1.0 / math.log2(max(doc_count, 1) + 1)


def calculate_relevance(weighted_score: float, max_possible_score: float) -> float:
    """``weighted_score / max_possible_score`` clamped to 0-1; 0 when the max is not positive."""
    if max_possible_score <= 0:
        return 0.0
    return min(1.0, max(0.0, weighted_score / max_possible_score))


class _Candidate:
    __slots__ = ("doc_id", "title", "shared", "score")

    def __init__(self, doc_id: str, title: str) -> None:
        self.doc_id = doc_id
        self.title = title
        self.shared: list[SharedEntity] = []
        self.score = 0.0


class RelatedDocsService:
    """Ranks documents related to a source document by shared entities."""

    _SYSTEM_PROMPT = (
        "You are a document relationship analyzer for a legal/business document "
        "management system. Given a source document and a list of candidate related "
        "documents with their shared entities and summaries, re-rank the candidates "
        "by how closely related they are to the source document.\n\n"
        "For each candidate, output a RANK line in this format:\n"
        "  RANK N: RELEVANCE - REASON\n"
        "Where N=candidate number (from the list), RELEVANCE=0.00-1.00, "
        "REASON=brief explanation of the relationship.\n\n"
        "Order by relevance (highest first). Only include candidates that are "
        "genuinely related.\n\n"
        "Example:\n"
        "RANK 1: 0.92 - Same vendor and overlapping payment terms\n"
        "RANK 3: 0.75 - References same project deliverables"
    )

    def __init__(
        self,
        entity_store: IEntityStore,
        mention_store: IMentionStore,
        document_source: IDocumentSource,
        llm_provider: ILLMProvider | None = None,
        rerank_timeout_s: float = RERANK_TIMEOUT_S,
    ) -> None:
        self._entities = entity_store
        self._mentions = mention_store
        self._documents = document_source
        self._llm = llm_provider
        self._rerank_timeout_s = rerank_timeout_s

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def find_related(
        self,
        doc_id: str,
        workspace_id: str,
        limit: int = DEFAULT_LIMIT,
        ai_rerank: bool = True,
    ) -> RelatedDocsResult:
        """Find documents sharing entities with *doc_id*.

        Args:
            doc_id: The source document.
            workspace_id: Workspace the source document belongs to.
            limit: Maximum number of related documents returned.
            ai_rerank: Let the LLM refine the order of the top candidates
                when at least three exist and a provider is configured.

        Returns:
            Related documents sorted by relevance, highest first.
            ``total_related`` counts every candidate before the limit.
        """
        try:
            candidates, entity_count, max_score = await self._build_candidates(doc_id)
        except Exception as exc:
            logger.error(
                "related_docs_failed", doc_id=doc_id, workspace_id=workspace_id, error=str(exc)
            )
            return RelatedDocsResult(notes=[f"Related documents unavailable: {exc}"])

        if not candidates:
            return RelatedDocsResult(entity_count=entity_count)

        related = [
            RelatedDoc(
                doc_id=c.doc_id,
                title=c.title,
                relevance=calculate_relevance(c.score, max_score),
                shared_entities=c.shared,
                shared_entity_count=len(c.shared),
            )
            for c in candidates
        ]
        related.sort(key=lambda r: r.relevance, reverse=True)
        total_related = len(related)

        notes: list[str] = []
        top = related[: min(limit, MAX_CANDIDATES_FOR_AI)]
        if ai_rerank and self._llm is not None and len(top) >= MIN_CANDIDATES_FOR_AI:
            try:
                reranked = await self._rerank(doc_id, top)
            except Exception as exc:
                logger.warning("related_docs_rerank_failed", doc_id=doc_id, error=str(exc))
                notes.append(f"AI re-ranking unavailable, using entity-overlap ranking: {exc}")
            else:
                if reranked is None:
                    notes.append("AI re-ranking returned no usable ranks, using entity-overlap ranking.")
                else:
                    related = reranked + related[len(top):]

        logger.info(
            "related_docs_found",
            doc_id=doc_id,
            entity_count=entity_count,
            total_related=total_related,
        )
        return RelatedDocsResult(
            related_docs=related[:limit],
            entity_count=entity_count,
            total_related=total_related,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Deterministic ranking
    # ------------------------------------------------------------------

    async def _build_candidates(self, doc_id: str) -> tuple[list[_Candidate], int, float]:
        """Return (candidates, entity_count, max_possible_score) for *doc_id*."""
        doc_mentions = await self._mentions.get_by_doc(doc_id)

        entities: dict[str, CanonicalEntity] = {}
        for mention in doc_mentions:
            if mention.entity_id in entities:
                continue
            entity = await self._entities.get_by_id(mention.entity_id)
            if entity is not None:
                entities[mention.entity_id] = entity

        if not entities:
            return [], 0, 0.0

        max_score = sum(entity_weight(e.doc_count) for e in entities.values())

        candidates: dict[str, _Candidate] = {}
        for entity_id, entity in entities.items():
            weight = entity_weight(entity.doc_count)
            mentions = await self._mentions.get_by_entity(entity_id, limit=MAX_MENTIONS_PER_ENTITY)
            for mention in mentions:
                if not mention.doc_id or mention.doc_id == doc_id:
                    continue
                candidate = candidates.get(mention.doc_id)
                if candidate is None:
                    title = mention.doc_title
                    if not title:
                        doc = await self._documents.get_document(mention.doc_id)
                        title = doc.title if doc is not None else None
                    candidate = _Candidate(mention.doc_id, title or "Untitled")
                    candidates[mention.doc_id] = candidate

                if any(
                    s.name == entity.name and s.entity_type == entity.entity_type
                    for s in candidate.shared
                ):
                    continue
                candidate.shared.append(SharedEntity(name=entity.name, entity_type=entity.entity_type))
                candidate.score += weight

        return list(candidates.values()), len(entities), max_score

    # ------------------------------------------------------------------
    # AI re-ranking
    # ------------------------------------------------------------------

    async def _build_rerank_prompt(self, doc_id: str, candidates: list[RelatedDoc]) -> str:
        source = await self._documents.get_document(doc_id)
        source_extraction = await self._documents.get_extraction(doc_id)
        extractions = await self._documents.get_extractions([c.doc_id for c in candidates])

        lines = [f'Source Document: "{source.title if source else "Untitled"}"']
        if source_extraction is not None:
            lines.append(f"  Summary: {summarize_extraction(source_extraction)}")
        lines.append("")
        lines.append("Candidate Related Documents:")
        for i, c in enumerate(candidates, start=1):
            shared = ", ".join(f"{s.name} ({s.entity_type.value})" for s in c.shared_entities)
            lines.append(f'[{i}] "{c.title}" - Shared: {shared} (score: {c.relevance:.2f})')
            extraction = extractions.get(c.doc_id)
            if extraction is not None:
                lines.append(f"    Summary: {summarize_extraction(extraction)}")
        return "\n".join(lines)

    async def _rerank(self, doc_id: str, candidates: list[RelatedDoc]) -> list[RelatedDoc] | None:
        """Ask the LLM for new relevances; ``None`` when it returned no usable RANK line.

        Candidates the model leaves out keep their score times 0.8.
        """
        prompt = await self._build_rerank_prompt(doc_id, candidates)
        text = await with_timeout(
            self._llm.complete(
                system_prompt=self._SYSTEM_PROMPT,
                user_prompt=prompt,
                max_tokens=RERANK_MAX_TOKENS,
            ),
            self._rerank_timeout_s,
            "AI re-ranking",
        )

        ranks = parse_rank_lines(text, len(candidates))
        if not ranks:
            return None

        reranked = [
            c.model_copy(update={"relevance": ranks[i].relevance})
            if i in ranks
            else c.model_copy(update={"relevance": c.relevance * UNRANKED_PENALTY})
            for i, c in enumerate(candidates)
        ]
        reranked.sort(key=lambda r: r.relevance, reverse=True)
        logger.debug("related_docs_reranked", doc_id=doc_id, ranked=len(ranks))
        return reranked
