"""Line-grammar parsers for AI responses.

The knowledge engine never asks a model for JSON.  Every AI stage instead
requests a small, line-oriented grammar that is cheap to parse and
degrades gracefully: a line that does not match is skipped, an empty parse
is a valid result, and nothing here ever raises on malformed text.

Grammars (keywords case-insensitive; the separator may be a hyphen, an en
dash or an em dash):

    RANK <n>: <relevance> - <reason>
    ANSWER: <free text, may continue on following lines>
    RESULT <n>: <relevance> - <entity, entity, ...> - <reason>
    <n>: <type> - <label> - <confidence 0-100> - <reason>

Separators between RESULT fields must have whitespace on both sides so
hyphenated names such as "Coca-Cola" survive intact.

``<n>`` is the 1-based position of the candidate in the list sent to the
model; parsers return 0-based indices and drop anything out of range.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

DEFAULT_RELEVANCE = 0.5
MAX_TERM_LENGTH = 100

_SEP = "[-–—]"

_RANK_RE = re.compile(
    rf"^\s*RANK\s+(\d+)\s*:\s*([\d.]+)\s*{_SEP}\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)
_RESULT_RE = re.compile(
    rf"^RESULT\s+(\d+)\s*:\s*([\d.]+)\s*{_SEP}\s*(.*?)\s+{_SEP}\s+(.+)$",
    re.IGNORECASE,
)
_RESULT_START_RE = re.compile(r"^RESULT\s+\d", re.IGNORECASE)
_LABEL_RE = re.compile(
    rf"^\s*(\d+)\s*:\s*(\w+)\s*{_SEP}\s*(.+?)\s*{_SEP}\s*(\d+)\s*{_SEP}\s*(.+?)\s*$",
    re.MULTILINE,
)

_FALLBACK_STRIP = "?!.,;:'\"()[]{}"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _to_float(raw: str) -> float | None:
    try:
        return float(raw)
    except ValueError:
        return None


# ------------------------------------------------------------------
# RANK lines (related-documents re-rank)
# ------------------------------------------------------------------

@dataclass(frozen=True)
class RankLine:
    relevance: float
    reason: str


def parse_rank_lines(text: str, candidate_count: int) -> dict[int, RankLine]:
    """Parse ``RANK`` lines into ``{0-based index: RankLine}``.

    Lines whose score is not a number are skipped.  If the model ranks the
    same candidate twice, the first line wins.
    """
    ranks: dict[int, RankLine] = {}
    for match in _RANK_RE.finditer(text or ""):
        index = int(match.group(1)) - 1
        if index < 0 or index >= candidate_count or index in ranks:
            continue
        score = _to_float(match.group(2))
        if score is None:
            continue
        ranks[index] = RankLine(relevance=_clamp(score), reason=match.group(3).strip())
    return ranks


# ------------------------------------------------------------------
# ANSWER / RESULT (semantic search synthesis)
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ResultLine:
    index: int
    relevance: float
    matched_entities: list[str]
    reason: str


@dataclass(frozen=True)
class SynthesisParse:
    answer: str
    results: list[ResultLine] = field(default_factory=list)


def parse_synthesis(text: str, candidate_count: int) -> SynthesisParse:
    """Split a synthesis response into its answer and its RESULT lines.

    The answer starts on the ``ANSWER:`` line and runs until the first
    ``RESULT <n>`` line (prose such as "Results show" does not end it), non-empty lines joined by single spaces.  Without an
    ``ANSWER:`` section the whole stripped response becomes the answer.
    RESULT scores that are not numbers default to 0.5; all scores are
    clamped to 0-1.  Results come back sorted by relevance, highest first.
    """
    text = text or ""
    lines = [line.strip() for line in text.splitlines()]

    answer_parts: list[str] = []
    in_answer = False
    for line in lines:
        if _RESULT_START_RE.match(line):
            break
        if line.upper().startswith("ANSWER:"):
            answer_parts.append(line[len("ANSWER:"):].strip())
            in_answer = True
        elif in_answer and line:
            answer_parts.append(line)
    answer = " ".join(part for part in answer_parts if part).strip() or text.strip()

    results: list[ResultLine] = []
    seen: set[int] = set()
    for line in lines:
        match = _RESULT_RE.match(line)
        if not match:
            continue
        index = int(match.group(1)) - 1
        if index < 0 or index >= candidate_count or index in seen:
            continue
        score = _to_float(match.group(2))
        entities = [e.strip() for e in match.group(3).split(",") if e.strip()]
        results.append(
            ResultLine(
                index=index,
                relevance=_clamp(DEFAULT_RELEVANCE if score is None else score),
                matched_entities=entities,
                reason=match.group(4).strip(),
            )
        )
        seen.add(index)

    results.sort(key=lambda r: r.relevance, reverse=True)
    return SynthesisParse(answer=answer, results=results)


# ------------------------------------------------------------------
# Relationship labels
# ------------------------------------------------------------------

@dataclass(frozen=True)
class LabelLine:
    relationship_type: str
    label: str
    confidence: int
    reason: str


def parse_relationship_labels(
    text: str, pair_count: int, known_types: frozenset[str] | set[str]
) -> dict[int, LabelLine]:
    """Parse ``<n>: TYPE - LABEL - CONFIDENCE - REASON`` lines.

    Returns ``{0-based index: LabelLine}``.  A type outside *known_types*
    becomes ``custom``; confidences above 100 and out-of-range pair numbers
    are dropped.  A later line for the same pair replaces an earlier one.
    """
    labels: dict[int, LabelLine] = {}
    for match in _LABEL_RE.finditer(text or ""):
        index = int(match.group(1)) - 1
        confidence = int(match.group(4))
        if index < 0 or index >= pair_count or confidence > 100:
            continue
        raw_type = match.group(2).strip().lower()
        labels[index] = LabelLine(
            relationship_type=raw_type if raw_type in known_types else "custom",
            label=match.group(3).strip(),
            confidence=confidence,
            reason=match.group(5).strip(),
        )
    return labels


# ------------------------------------------------------------------
# Search terms
# ------------------------------------------------------------------

def parse_terms(text: str) -> list[str]:
    """One search term per non-empty line, each shorter than 100 characters."""
    terms = []
    for line in (text or "").splitlines():
        term = line.strip()
        if term and len(term) < MAX_TERM_LENGTH:
            terms.append(term)
    return terms


def fallback_terms(query: str) -> list[str]:
    """Keyword terms without AI: words longer than two characters, punctuation trimmed."""
    terms = []
    for word in query.split():
        if len(word) <= 2:
            continue
        word = word.strip(_FALLBACK_STRIP)
        if word:
            terms.append(word)
    return terms
