"""Read-only duplicate-entity suggestions.

Exact duplicates never exist (the store enforces one entity per normalized
name and type), but near duplicates do: "Acme Corp" and "Acme
Corporation", "J. Smith" and "John Smith", "Smith John" and "John Smith".
This module finds such pairs with plain string similarity so a human can
review them.  Nothing here merges or modifies entities.

Pairs are only compared within the same entity type and, to keep the
comparison count manageable on large workspaces, only when they share a
blocking key: the first three characters of a name or alias, or any word of
three or more characters in one.  Each pair is scored once even when it
shares several keys.
"""

from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

from src.interfaces.entity_store import IEntityStore
from src.models.entities import CanonicalEntity, EntityType
from src.models.indexing import DuplicateCandidate
from src.utils.logging import get_logger
from src.utils.text_normalizer import name_similarity

logger = get_logger(__name__)

DEFAULT_MIN_SIMILARITY = 0.75
ALIAS_MATCH_SCORE = 0.85
MIN_NAME_LENGTH = 3
BLOCK_PREFIX_LEN = 3
_PAGE_SIZE = 500

_WORD_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset({
    "the", "and", "for", "with", "from", "into", "that", "this", "of", "a", "an",
})


def keywords(text: str) -> set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in _STOPWORDS}


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def levenshtein_similarity(a: str, b: str) -> float:
    """Normalized edit similarity; 0 for names too short to compare meaningfully."""
    if a == b:
        return 1.0
    if len(a) < MIN_NAME_LENGTH or len(b) < MIN_NAME_LENGTH:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def word_order_similarity(a: str, b: str) -> float:
    if len(a) < MIN_NAME_LENGTH or len(b) < MIN_NAME_LENGTH:
        return 0.0
    return name_similarity(a, b)


def _all_names(entity: CanonicalEntity) -> set[str]:
    return {entity.normalized_name} | {alias.strip().lower() for alias in entity.aliases}


def _block_keys(entity: CanonicalEntity) -> set[str]:
    keys: set[str] = set()
    for name in _all_names(entity):
        keys.add(name[:BLOCK_PREFIX_LEN])
        keys.update(w for w in _WORD_RE.findall(name) if len(w) >= MIN_NAME_LENGTH)
    return keys


def combined_similarity(a: CanonicalEntity, b: CanonicalEntity) -> tuple[float, str]:
    """Highest of the individual similarity signals, with the reason that produced it."""
    if a.normalized_name == b.normalized_name:
        return 1.0, "identical normalized name"

    scores = [
        (levenshtein_similarity(a.normalized_name, b.normalized_name), "similar spelling"),
        (word_order_similarity(a.normalized_name, b.normalized_name), "same words, different order"),
        (jaccard_similarity(keywords(a.name), keywords(b.name)), "shared keywords"),
        (ALIAS_MATCH_SCORE if _all_names(a) & _all_names(b) else 0.0, "alias overlap"),
    ]
    return max(scores, key=lambda s: s[0])


class DuplicateDetector:
    """Suggests probable duplicate entity pairs within a workspace."""

    def __init__(self, entity_store: IEntityStore) -> None:
        self._entities = entity_store

    async def find_candidates(
        self,
        workspace_id: str,
        entity_type: EntityType | None = None,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        limit: int = 50,
    ) -> list[DuplicateCandidate]:
        """Return up to *limit* pairs scoring at least *min_similarity*, best first."""
        types = [entity_type] if entity_type is not None else list(EntityType)
        found: list[DuplicateCandidate] = []

        for etype in types:
            entities = await self._load(workspace_id, etype)
            blocks: dict[str, list[CanonicalEntity]] = {}
            for entity in entities:
                for key in _block_keys(entity):
                    blocks.setdefault(key, []).append(entity)

            compared: set[tuple[str, str]] = set()
            for block in blocks.values():
                for i, a in enumerate(block):
                    for b in block[i + 1 :]:
                        pair = (a.id, b.id) if a.id < b.id else (b.id, a.id)
                        if pair in compared:
                            continue
                        compared.add(pair)
                        score, reason = combined_similarity(a, b)
                        if score >= min_similarity:
                            found.append(DuplicateCandidate(
                                entity_a=a, entity_b=b, similarity=score, reason=reason
                            ))

        found.sort(key=lambda c: c.similarity, reverse=True)
        logger.info(
            "duplicate_candidates_found",
            workspace_id=workspace_id,
            entity_type=entity_type.value if entity_type else None,
            count=len(found),
        )
        return found[:limit]

    async def _load(self, workspace_id: str, entity_type: EntityType) -> list[CanonicalEntity]:
        entities: list[CanonicalEntity] = []
        offset = 0
        while True:
            page = await self._entities.list_by_workspace(
                workspace_id,
                entity_type=entity_type,
                sort="mention_count",
                order="desc",
                limit=_PAGE_SIZE,
                offset=offset,
            )
            entities.extend(page)
            if len(page) < _PAGE_SIZE:
                return entities
            offset += _PAGE_SIZE
