"""Code-aware text analysis shared by the keyword index, embedder, and intent rules.

Mirrors a ``standard`` tokenizer followed by ``word_delimiter_graph`` and
``lowercase`` filters: identifiers are split on case changes, digits, and
underscores, and the original compound token is kept alongside its parts so
exact identifier matches still score.
"""

from __future__ import annotations

import re
from typing import List

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")

STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "code", "does", "do",
    "for", "from", "how", "i", "in", "is", "it", "me", "my", "of", "on",
    "or", "show", "that", "the", "this", "to", "what", "when", "where",
    "which", "who", "with", "find", "get", "all",
})


def split_identifier(token: str) -> List[str]:
    """``parseHTTPResponse_v2`` -> ``["parse", "http", "response", "v", "2"]``."""
    parts: List[str] = []
    for chunk in token.split("_"):
        if chunk:
            parts.extend(p.lower() for p in _CAMEL_RE.findall(chunk))
    return parts


def code_tokens(text: str, keep_compound: bool = True) -> List[str]:
    """Tokenize *text* for indexing and querying."""
    tokens: List[str] = []
    for word in _WORD_RE.findall(text):
        parts = split_identifier(word)
        lowered = word.lower().strip("_")
        if keep_compound and lowered and (len(parts) != 1 or parts[0] != lowered):
            tokens.append(lowered)
        tokens.extend(parts)
    return tokens


def query_keywords(text: str) -> List[str]:
    """Distinct, stopword-free keywords of a query in first-seen order."""
    seen: List[str] = []
    for token in code_tokens(text, keep_compound=False):
        if len(token) < 2 or token in STOPWORDS or token in seen:
            continue
        seen.append(token)
    return seen


def auto_fuzziness(term: str) -> int:
    """Edit budget for fuzzy matching: 0 for 1-2 chars, 1 for 3-5, 2 above."""
    if len(term) <= 2:
        return 0
    if len(term) <= 5:
        return 1
    return 2


def within_edit_distance(a: str, b: str, max_edits: int) -> bool:
    """Bounded Levenshtein check; stops early once the budget is exceeded."""
    if a == b:
        return True
    if max_edits <= 0 or abs(len(a) - len(b)) > max_edits:
        return False
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i] + [0] * len(b)
        row_min = current[0]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            row_min = min(row_min, current[j])
        if row_min > max_edits:
            return False
        previous = current
    return previous[-1] <= max_edits
