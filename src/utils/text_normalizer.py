"""Text normalization utilities for entity names, amounts, and index input.

This module handles four distinct normalization concerns:

1. **Entity name normalization** -- Unicode NFC, trimming and lowercasing so
   that "Acme Corp", "  ACME CORP " and "acme corp" all collapse onto the
   same canonical entity.

2. **Organization detection** -- A suffix heuristic ("Inc", "LLC", "GmbH",
   "University", ...) that decides whether a bare party name is a company
   or a person.

3. **Amount formatting** -- en-US digit grouping with an optional currency
   so that amounts become stable, searchable entity names.

4. **Index input preparation** -- HTML-to-text conversion via BeautifulSoup
   and FTS5 query sanitization so user text is never interpreted as query
   syntax.  Fuzzy name similarity via rapidfuzz backs the duplicate
   candidate detector.
"""

import re
import unicodedata

from bs4 import BeautifulSoup
from rapidfuzz import fuzz


def normalize_name(name: str) -> str:
    """Normalize an entity name for canonical matching.

    Args:
        name: Raw entity name string.

    Returns:
        NFC-normalized, trimmed, lowercased name.  Empty when the input
        contained only whitespace.
    """
    return unicodedata.normalize("NFC", name).strip().lower()


# ------------------------------------------------------------------
# Organization detection
# ------------------------------------------------------------------

ORG_SUFFIXES: frozenset[str] = frozenset(
    {
        "corp", "corporation", "inc", "incorporated", "llc", "llp",
        "ltd", "limited", "co", "company", "gmbh", "ag", "sa", "plc",
        "pllc", "lp", "group", "partners", "associates", "holdings",
        "enterprises", "foundation", "trust", "bank", "institute",
        "university", "college",
    }
)


def looks_like_organization(name: str) -> bool:
    """Return True when any word of *name* is a known organization suffix.

    Each word is lowercased and stripped of one trailing ``.`` or ``,``
    before comparison, so "Acme Corp." and "Widgets, Inc," both qualify.
    """
    for word in name.lower().split():
        if word.endswith((".", ",")):
            word = word[:-1]
        if word in ORG_SUFFIXES:
            return True
    return False


# ------------------------------------------------------------------
# Amount formatting
# ------------------------------------------------------------------

def format_amount(value: float | int, currency: str | None = None) -> str:
    """Format a numeric amount with en-US grouping and up to two decimals.

    Args:
        value: The numeric amount.
        currency: ISO currency code or symbol.  ``"USD"`` and ``"$"`` render
            as a ``$`` prefix; any other code is appended after a space.

    Returns:
        The formatted string, e.g. ``"$150,000"``, ``"1,234.5 EUR"`` or
        ``"42"`` when no currency is given.
    """
    text = f"{round(float(value), 2):,.2f}".rstrip("0").rstrip(".")
    if not currency:
        return text
    if currency.upper() == "USD" or currency == "$":
        return f"${text}"
    return f"{text} {currency}"


# ------------------------------------------------------------------
# Index input preparation
# ------------------------------------------------------------------

def html_to_plain_text(html: str) -> str:
    """Strip markup from *html* and collapse whitespace.

    Script and style contents are dropped entirely; block-level boundaries
    become single spaces so words from adjacent paragraphs never fuse.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def sanitize_fts_query(query: str) -> str:
    """Turn free text into a safe FTS5 MATCH expression.

    Every whitespace-separated token is wrapped in double quotes (inner
    quotes doubled), so operators such as ``AND``, ``NEAR`` or ``*`` are
    matched literally.  Tokens are joined with spaces, which FTS5 treats as
    an implicit AND.

    Args:
        query: Raw user or AI supplied query text.

    Returns:
        The sanitized expression, or ``""`` when the query has no tokens.
    """
    tokens = query.strip().split()
    return " ".join('"' + token.replace('"', '""') + '"' for token in tokens)


# ------------------------------------------------------------------
# Fuzzy similarity
# ------------------------------------------------------------------

def name_similarity(a: str, b: str) -> float:
    """Return a 0.0-1.0 similarity between two names.

    Uses rapidfuzz ``token_sort_ratio`` so word-order differences
    ("Doe Jane" vs "Jane Doe") still score highly.
    """
    return fuzz.token_sort_ratio(a, b) / 100.0

