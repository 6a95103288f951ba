"""Natural-language search across a workspace, with cited results.

Data flow
---------
  1. TERMS     -- The LLM turns the question into search terms, one per
                  line.  On failure or timeout the query is split into
                  keywords instead.
  2. CANDIDATES -- The combined terms hit both text indexes.  Document hits
                  keep their index relevance; entity hits are mapped to the
                  documents that mention them at a placeholder relevance.
  3. CONTEXT   -- Each candidate gets its extraction summary and a few
                  entity mentions.
  4. SYNTHESIS -- The LLM writes a short answer citing ``[Doc N]`` and one
                  RESULT line per relevant document.  On failure the
                  keyword ranking is returned with a canned answer.

The whole pipeline runs under an overall deadline; when it passes, a
keyword-only search is returned instead.  Exactly one query-log entry is
written per call, by :meth:`SemanticSearchService.search` itself, whatever
path produced the result.  No public method raises.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.interfaces.document_source import IDocumentSource
from src.interfaces.entity_store import IEntityStore
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.mention_store import IMentionStore
from src.interfaces.query_log_provider import IQueryLogProvider
from src.interfaces.text_index_provider import ITextIndexProvider
from src.models.search import (
    KeywordSearchResult,
    QueryType,
    SearchResult,
    SearchSnippet,
    SemanticSearchResult,
)
from src.services.extraction_summarizer import summarize_extraction
from src.services.response_parsers import fallback_terms, parse_synthesis, parse_terms
from src.utils.errors import OperationTimeoutError
from src.utils.logging import get_logger
from src.utils.timeouts import with_timeout

logger: structlog.BoundLogger = get_logger(__name__)

DEFAULT_LIMIT = 10
OVERALL_TIMEOUT_S = 20.0
TERM_EXTRACTION_TIMEOUT_S = 5.0
SYNTHESIS_TIMEOUT_S = 12.0
TERM_EXTRACTION_MAX_TOKENS = 200
SYNTHESIS_MAX_TOKENS = 800
MAX_INDEX_RESULTS = 20
MAX_MENTIONS_PER_ENTITY_HIT = 10
MAX_MENTIONS_PER_DOC = 5
ENTITY_HIT_RELEVANCE = 0.1
UNCITED_RELEVANCE = 0.1

NO_MATCHES_ANSWER = "No matching documents found for this query."
SYNTHESIS_UNAVAILABLE_ANSWER = (
    "Results found but AI summarization was unavailable. Showing keyword-matched results."
)
TIMED_OUT_ANSWER = "Search timed out. Showing keyword-matched results only."
FAILED_ANSWER = "Search failed. Showing keyword-matched results only."


@dataclass
class _Candidate:
    doc_id: str
    title: str
    snippet: str
    relevance: float
    field_path: str | None = None
    document_type: str = "unknown"
    summary: str = ""
    entities: list[tuple[str, str, str | None]] = field(default_factory=list)

    def snippets(self) -> list[SearchSnippet]:
        if not self.snippet:
            return []
        return [SearchSnippet(text=self.snippet, field_path=self.field_path)]


class SemanticSearchService:
    """Orchestrates the four-stage semantic search pipeline.

    The LLM is optional: without one, term extraction falls back to keyword
    splitting and results come back in index order with the canned
    "summarization unavailable" answer.
    """

    _TERM_SYSTEM_PROMPT = (
        "You are a search query analyzer for a document management system. "
        "Given a natural language query, extract the key search terms and entity names. "
        "Output one term per line. Include entity names (people, organizations, amounts, "
        "dates) and important keywords. Do NOT include common words (the, is, what, are, "
        "how, do, etc.). Do NOT include explanations, only output search terms, one per line."
    )

    _SYNTHESIS_SYSTEM_PROMPT = (
        "You are a document search assistant for a legal/business document management "
        "system. Given a user query and candidate documents with their extraction summaries "
        "and entity data, produce:\n\n"
        "1. First line: ANSWER: A concise answer (1-3 sentences) citing specific documents "
        "by their [Doc N] number.\n"
        "2. Then for each relevant document, output a RESULT line in this format:\n"
        "   RESULT N: RELEVANCE - ENTITIES - REASON\n"
        "   Where N=document number (from the candidate list), RELEVANCE=0.00-1.00, "
        "ENTITIES=comma-separated matched entity names, REASON=brief explanation of "
        "relevance.\n\n"
        "Only include documents that are actually relevant to the query. Order by relevance "
        "(highest first).\n"
        "If no documents are relevant, output: ANSWER: No relevant documents found for "
        "this query.\n\n"
        "Example:\n"
        "ANSWER: Based on [Doc 1] and [Doc 3], your payment terms with Acme Corp are Net-30 "
        "at $150,000/year.\n"
        "RESULT 1: 0.95 - Acme Corp, $150,000 - Services agreement specifying payment terms\n"
        "RESULT 3: 0.72 - Acme Corp - Invoice referencing the same payment schedule"
    )

    def __init__(
        self,
        text_index: ITextIndexProvider,
        entity_store: IEntityStore,
        mention_store: IMentionStore,
        document_source: IDocumentSource,
        query_log: IQueryLogProvider,
        llm_provider: ILLMProvider | None = None,
        term_extraction_timeout_s: float = TERM_EXTRACTION_TIMEOUT_S,
        synthesis_timeout_s: float = SYNTHESIS_TIMEOUT_S,
        overall_timeout_s: float = OVERALL_TIMEOUT_S,
    ) -> None:
        self._index = text_index
        self._entities = entity_store
        self._mentions = mention_store
        self._documents = document_source
        self._query_log = query_log
        self._llm = llm_provider
        self._term_timeout_s = term_extraction_timeout_s
        self._synthesis_timeout_s = synthesis_timeout_s
        self._overall_timeout_s = overall_timeout_s

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        workspace_id: str,
        query: str,
        queried_by: str,
        limit: int = DEFAULT_LIMIT,
        timeout_s: float | None = None,
    ) -> SemanticSearchResult:
        """Answer *query* from the workspace's documents.

        Args:
            workspace_id: Workspace to search.
            query: Natural-language question.
            queried_by: User id recorded in the query log.
            limit: Maximum number of cited documents.
            timeout_s: Overall deadline; defaults to the service setting.

        Returns:
            The answer, cited results sorted by relevance and any degradation
            notes.  ``query_id`` matches the query-log entry.
        """
        started = time.monotonic()
        query_id = uuid.uuid4().hex
        deadline = timeout_s if timeout_s is not None else self._overall_timeout_s

        try:
            answer, results, notes = await with_timeout(
                self._run_pipeline(workspace_id, query, limit),
                deadline,
                "Semantic search",
            )
        except OperationTimeoutError as exc:
            logger.warning("semantic_search_timeout", workspace_id=workspace_id, error=str(exc))
            results = await self._keyword_fallback(workspace_id, query, limit)
            answer = TIMED_OUT_ANSWER
            notes = [str(exc)]
        except Exception as exc:
            logger.error("semantic_search_failed", workspace_id=workspace_id, error=str(exc))
            results = await self._keyword_fallback(workspace_id, query, limit)
            answer = FAILED_ANSWER
            notes = [f"Search pipeline failed: {exc}"]

        duration_ms = int((time.monotonic() - started) * 1000)
        await self._log(
            workspace_id,
            query,
            QueryType.SEMANTIC_SEARCH,
            queried_by,
            [r.model_dump(mode="json") for r in results],
            len(results),
            duration_ms,
            query_id,
        )
        logger.info(
            "semantic_search_completed",
            workspace_id=workspace_id,
            result_count=len(results),
            duration_ms=duration_ms,
            degraded=bool(notes),
        )
        return SemanticSearchResult(
            query_id=query_id,
            query=query,
            answer=answer,
            results=results,
            result_count=len(results),
            duration_ms=duration_ms,
            notes=notes,
        )

    async def keyword_search(
        self,
        workspace_id: str,
        query: str,
        queried_by: str,
        limit: int = 20,
    ) -> KeywordSearchResult:
        """Run both index searches without any AI and log one ``entity_search`` entry."""
        started = time.monotonic()
        entities = await self._index.search_entities(workspace_id, query, limit=limit)
        documents = await self._index.search_documents(workspace_id, query, limit=limit)
        duration_ms = int((time.monotonic() - started) * 1000)

        await self._log(
            workspace_id,
            query,
            QueryType.ENTITY_SEARCH,
            queried_by,
            {
                "entity_ids": [e.entity_id for e in entities],
                "doc_ids": [d.doc_id for d in documents],
            },
            len(entities) + len(documents),
            duration_ms,
        )
        return KeywordSearchResult(query=query, entities=entities, documents=documents)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(
        self, workspace_id: str, query: str, limit: int
    ) -> tuple[str, list[SearchResult], list[str]]:
        notes: list[str] = []

        terms = await self._extract_terms(query, notes)
        candidates = await self._gather_candidates(workspace_id, terms, limit)
        if not candidates:
            return NO_MATCHES_ANSWER, [], notes

        await self._add_context(candidates)

        if self._llm is None:
            notes.append("No LLM provider configured; results are keyword-ranked.")
            return SYNTHESIS_UNAVAILABLE_ANSWER, self._index_ranked(candidates), notes

        try:
            text = await with_timeout(
                self._llm.complete(
                    system_prompt=self._SYNTHESIS_SYSTEM_PROMPT,
                    user_prompt=(
                        f'Query: "{query}"\n\nCandidate Documents:\n'
                        f"{format_candidates(candidates)}"
                    ),
                    max_tokens=SYNTHESIS_MAX_TOKENS,
                ),
                self._synthesis_timeout_s,
                "Answer synthesis",
            )
        except Exception as exc:
            logger.warning("semantic_search_synthesis_failed", error=str(exc))
            notes.append(f"AI synthesis unavailable: {exc}")
            return SYNTHESIS_UNAVAILABLE_ANSWER, self._index_ranked(candidates), notes

        parsed = parse_synthesis(text, len(candidates))
        results: list[SearchResult] = []
        cited: set[str] = set()
        for line in parsed.results:
            c = candidates[line.index]
            cited.add(c.doc_id)
            results.append(SearchResult(
                doc_id=c.doc_id,
                doc_title=c.title,
                relevance=line.relevance,
                snippets=c.snippets(),
                matched_entities=line.matched_entities,
            ))
        for c in candidates:
            if c.doc_id in cited or len(results) >= limit:
                continue
            results.append(SearchResult(
                doc_id=c.doc_id,
                doc_title=c.title,
                relevance=UNCITED_RELEVANCE,
                snippets=c.snippets(),
                matched_entities=[name for name, _, _ in c.entities],
            ))
        return parsed.answer, results, notes

    async def _extract_terms(self, query: str, notes: list[str]) -> list[str]:
        fallback = fallback_terms(query)
        if self._llm is None:
            return fallback
        try:
            text = await with_timeout(
                self._llm.complete(
                    system_prompt=self._TERM_SYSTEM_PROMPT,
                    user_prompt=query,
                    max_tokens=TERM_EXTRACTION_MAX_TOKENS,
                ),
                self._term_timeout_s,
                "Term extraction",
            )
        except Exception as exc:
            logger.warning("semantic_search_term_extraction_failed", error=str(exc))
            notes.append(f"AI term extraction unavailable, using keywords: {exc}")
            return fallback
        return parse_terms(text) or fallback

    async def _gather_candidates(
        self, workspace_id: str, terms: list[str], limit: int
    ) -> list[_Candidate]:
        search_query = " ".join(terms)
        if not search_query.strip():
            return []

        doc_hits = await self._index.search_documents(
            workspace_id, search_query, limit=MAX_INDEX_RESULTS
        )
        entity_hits = await self._index.search_entities(
            workspace_id, search_query, limit=MAX_INDEX_RESULTS
        )

        found: dict[str, _Candidate] = {}
        for hit in doc_hits:
            if hit.doc_id not in found:
                found[hit.doc_id] = _Candidate(
                    doc_id=hit.doc_id,
                    title=hit.title,
                    snippet=hit.snippet,
                    relevance=hit.relevance,
                )
        for hit in entity_hits:
            mentions = await self._mentions.get_by_entity(
                hit.entity_id, limit=MAX_MENTIONS_PER_ENTITY_HIT
            )
            for mention in mentions:
                if not mention.doc_id or mention.doc_id in found:
                    continue
                found[mention.doc_id] = _Candidate(
                    doc_id=mention.doc_id,
                    title=mention.doc_title or "Untitled",
                    snippet=mention.context or "",
                    relevance=ENTITY_HIT_RELEVANCE,
                    field_path=mention.field_path,
                )

        return list(found.values())[:limit]

    async def _add_context(self, candidates: list[_Candidate]) -> None:
        extractions = await self._documents.get_extractions([c.doc_id for c in candidates])
        for c in candidates:
            extraction = extractions.get(c.doc_id)
            if extraction is not None:
                c.document_type = extraction.document_type
                c.summary = summarize_extraction(extraction)

            mentions = await self._mentions.get_by_doc(c.doc_id)
            for mention in mentions[:MAX_MENTIONS_PER_DOC]:
                entity = await self._entities.get_by_id(mention.entity_id)
                if entity is not None:
                    c.entities.append((entity.name, entity.entity_type.value, mention.context))

    # ------------------------------------------------------------------
    # Fallbacks & logging
    # ------------------------------------------------------------------

    @staticmethod
    def _index_ranked(candidates: list[_Candidate]) -> list[SearchResult]:
        return [
            SearchResult(
                doc_id=c.doc_id,
                doc_title=c.title,
                relevance=c.relevance,
                snippets=c.snippets(),
                matched_entities=[name for name, _, _ in c.entities],
            )
            for c in candidates
        ]

    async def _keyword_fallback(
        self, workspace_id: str, query: str, limit: int
    ) -> list[SearchResult]:
        terms = [t for t in query.split() if len(t) > 2]
        try:
            candidates = await self._gather_candidates(workspace_id, terms, limit)
        except Exception as exc:
            logger.warning("semantic_search_fallback_failed", error=str(exc))
            return []
        return self._index_ranked(candidates)

    async def _log(
        self,
        workspace_id: str,
        query: str,
        query_type: QueryType,
        queried_by: str,
        results: Any,
        result_count: int,
        duration_ms: int,
        query_id: str | None = None,
    ) -> None:
        try:
            await self._query_log.log_query(
                workspace_id=workspace_id,
                query_text=query,
                query_type=query_type,
                queried_by=queried_by,
                results=results,
                result_count=result_count,
                duration_ms=duration_ms,
                query_id=query_id,
            )
        except Exception as exc:
            logger.warning(
                "query_log_write_failed",
                workspace_id=workspace_id,
                query_type=query_type.value,
                error=str(exc),
            )


def format_candidates(candidates: list[_Candidate]) -> str:
    """Render candidates as the ``[Doc N]`` blocks the synthesis prompt expects."""
    lines: list[str] = []
    for i, c in enumerate(candidates, start=1):
        lines.append(f'[Doc {i}] "{c.title}" ({c.document_type})')
        if c.summary:
            lines.append(f"  Extraction: {c.summary}")
        if c.snippet:
            lines.append(f"  Snippet: {c.snippet}")
        if c.entities:
            entity_list = ", ".join(f"{name} ({etype})" for name, etype, _ in c.entities)
            lines.append(f"  Entities: {entity_list}")
        lines.append("")
    return "\n".join(lines)
