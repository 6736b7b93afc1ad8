"""Search backend interface and the in-memory reference backend.

A backend owns one index of :class:`IndexDocument` rows and answers two
kinds of query: keyword (multi-field BM25 with fuzzy term matching) and
vector (cosine similarity over a fixed-dimension column).  Backends are
async so remote engines and local ones look the same to the adapter.

Index mapping shared by every backend:

============ ============ =======================================
Field        Type         Notes
============ ============ =======================================
id           keyword      Node id (``node_<n>``) or ``file:<path>``
content      text         Code-aware analyzer, boost 2
identifier   text         Display name / qualname
file_path    text         Relative path
node_type    keyword      Filterable
language     keyword      Filterable
vector       float[dim]   Cosine similarity
metadata     object       Free-form, filterable by equality
============ ============ =======================================
"""

from __future__ import annotations

import abc
import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import SearchSettings
from .embeddings import cosine_similarity
from .errors import SchemaError
from .models import SearchHit
from .text_analysis import auto_fuzziness, code_tokens, within_edit_distance

logger = logging.getLogger(__name__)

KEYWORD_FIELDS: Tuple[Tuple[str, float], ...] = (
    ("content", 2.0),
    ("identifier", 1.0),
    ("file_path", 1.0),
)

BM25_K1 = 1.2
BM25_B = 0.75
FUZZY_PENALTY = 0.5

Filters = Optional[Dict[str, Any]]


@dataclass
class IndexDocument:
    """One row of the search index."""

    id: str
    content: str
    identifier: str = ""
    file_path: str = ""
    node_type: str = ""
    language: str = ""
    name: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    vector: Optional[List[float]] = None

    def hit_metadata(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.metadata)
        out.update({
            "identifier": self.identifier,
            "file_path": self.file_path,
            "node_type": self.node_type,
            "language": self.language,
            "name": self.name,
        })
        return out

    def field_value(self, key: str) -> Any:
        if key in ("id", "content", "identifier", "file_path", "node_type", "language", "name"):
            return getattr(self, key)
        return self.metadata.get(key)


def matches_filters(doc: IndexDocument, filters: Filters) -> bool:
    """Equality match of every filter key against the document."""
    if not filters:
        return True
    return all(doc.field_value(key) == value for key, value in filters.items())


class SearchBackend(abc.ABC):
    """Abstract similarity backend.

    Implementations raise :class:`~codegraph_search.errors.BackendConnectionError`
    for transient transport failures (retried by the adapter) and
    :class:`~codegraph_search.errors.SchemaError` for mapping conflicts.
    """

    name: str = "backend"

    @abc.abstractmethod
    async def ensure_index(self, index_name: str, dim: int) -> None:
        """Create the index if missing; validate its vector dimension otherwise."""

    @abc.abstractmethod
    async def replace_documents(self, docs: Sequence[IndexDocument]) -> None:
        """Atomically replace the index contents with *docs*."""

    @abc.abstractmethod
    async def keyword_query(self, query: str, limit: int, filters: Filters = None) -> List[SearchHit]:
        ...

    @abc.abstractmethod
    async def vector_query(
        self, vector: List[float], limit: int, filters: Filters = None,
    ) -> List[SearchHit]:
        ...

    @abc.abstractmethod
    async def count(self) -> int:
        ...

    async def close(self) -> None:
        return None


# ===================================================================
# In-memory backend
# ===================================================================

class InMemoryBackend(SearchBackend):
    """Process-local backend: BM25 keyword scoring plus brute-force cosine.

    Good for tests, the CLI, and small repositories.  ``replace_documents``
    rebuilds the inverted index and swaps it in one assignment, so a
    concurrent query sees either the old or the new contents.
    """

    name = "memory"

    def __init__(self) -> None:
        self.index_name: Optional[str] = None
        self.dim: Optional[int] = None
        self._state = _KeywordIndex([])

    async def ensure_index(self, index_name: str, dim: int) -> None:
        if self.index_name == index_name and self.dim is not None:
            if self.dim != dim:
                raise SchemaError(
                    f"Index '{index_name}' has vector dimension {self.dim}, "
                    f"requested {dim}",
                    {"index": index_name, "existing_dim": self.dim, "requested_dim": dim},
                )
            return
        self.index_name = index_name
        self.dim = dim
        self._state = _KeywordIndex([])
        logger.debug("Created in-memory index '%s' (dim=%d)", index_name, dim)

    async def replace_documents(self, docs: Sequence[IndexDocument]) -> None:
        if self.dim is None:
            raise SchemaError("Index has not been created; call ensure_index first")
        for doc in docs:
            if doc.vector is not None and len(doc.vector) != self.dim:
                raise SchemaError(
                    f"Document '{doc.id}' has vector dimension {len(doc.vector)}, "
                    f"index expects {self.dim}",
                )
        self._state = _KeywordIndex(list(docs))
        logger.debug("In-memory index '%s' now holds %d documents", self.index_name, len(docs))

    async def keyword_query(self, query: str, limit: int, filters: Filters = None) -> List[SearchHit]:
        state = self._state
        scored = state.score(query, filters)
        return [
            SearchHit(
                id=doc.id,
                score=score,
                content=doc.content,
                metadata=doc.hit_metadata(),
                search_type="keyword",
            )
            for doc, score in scored[:limit]
        ]

    async def vector_query(
        self, vector: List[float], limit: int, filters: Filters = None,
    ) -> List[SearchHit]:
        if self.dim is not None and len(vector) != self.dim:
            raise SchemaError(
                f"Query vector has dimension {len(vector)}, index expects {self.dim}",
            )
        scored: List[Tuple[IndexDocument, float]] = []
        for doc in self._state.docs:
            if doc.vector is None or not matches_filters(doc, filters):
                continue
            scored.append((doc, cosine_similarity(vector, doc.vector)))
        scored.sort(key=lambda item: (-item[1], item[0].id))
        return [
            SearchHit(
                id=doc.id,
                score=score,
                content=doc.content,
                metadata=doc.hit_metadata(),
                search_type="vector",
            )
            for doc, score in scored[:limit]
        ]

    async def count(self) -> int:
        return len(self._state.docs)


class _KeywordIndex:
    """Immutable per-field inverted index with BM25 scoring."""

    def __init__(self, docs: List[IndexDocument]) -> None:
        self.docs = docs
        self.postings: Dict[str, Dict[str, Dict[int, int]]] = {}
        self.lengths: Dict[str, List[int]] = {}
        self.avg_length: Dict[str, float] = {}
        for field_name, _boost in KEYWORD_FIELDS:
            postings: Dict[str, Dict[int, int]] = defaultdict(dict)
            lengths: List[int] = []
            for pos, doc in enumerate(docs):
                tokens = code_tokens(getattr(doc, field_name))
                lengths.append(len(tokens))
                for term, tf in Counter(tokens).items():
                    postings[term][pos] = tf
            self.postings[field_name] = dict(postings)
            self.lengths[field_name] = lengths
            self.avg_length[field_name] = (sum(lengths) / len(lengths)) if lengths else 0.0

    def _expand(self, field_name: str, term: str) -> List[Tuple[str, float]]:
        vocab = self.postings[field_name]
        budget = auto_fuzziness(term)
        out: List[Tuple[str, float]] = []
        if term in vocab:
            out.append((term, 1.0))
        if budget:
            for candidate in vocab:
                if candidate != term and within_edit_distance(term, candidate, budget):
                    out.append((candidate, FUZZY_PENALTY))
        return out

    def score(self, query: str, filters: Filters) -> List[Tuple[IndexDocument, float]]:
        terms = list(dict.fromkeys(code_tokens(query)))
        if not terms or not self.docs:
            return []
        n_docs = len(self.docs)
        totals: Dict[int, float] = defaultdict(float)
        for field_name, boost in KEYWORD_FIELDS:
            avg_len = self.avg_length[field_name] or 1.0
            lengths = self.lengths[field_name]
            for term in terms:
                for matched, factor in self._expand(field_name, term):
                    postings = self.postings[field_name][matched]
                    df = len(postings)
                    idf = math.log(1.0 + (n_docs - df + 0.5) / (df + 0.5))
                    for pos, tf in postings.items():
                        norm = BM25_K1 * (1.0 - BM25_B + BM25_B * lengths[pos] / avg_len)
                        totals[pos] += boost * factor * idf * (tf * (BM25_K1 + 1.0)) / (tf + norm)
        results = [
            (self.docs[pos], score)
            for pos, score in totals.items()
            if score > 0.0 and matches_filters(self.docs[pos], filters)
        ]
        results.sort(key=lambda item: (-item[1], item[0].id))
        return results


def create_backend(settings: SearchSettings) -> SearchBackend:
    """Instantiate the backend named by ``settings.backend``."""
    kind = settings.backend.lower()
    if kind == "memory":
        return InMemoryBackend()
    if kind == "lancedb":
        from .vector_store import LanceDBBackend

        return LanceDBBackend(settings.index_dir)
    raise ValueError(f"Unknown search backend '{settings.backend}' (expected memory or lancedb)")
