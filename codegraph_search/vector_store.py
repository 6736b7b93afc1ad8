"""Search backend backed by LanceDB: serverless, local-first vector database.

- Zero-server architecture (embedded, like SQLite for vectors)
- Fixed-size float32 vector column searched with the cosine metric
- Native full-text indexes on ``content``, ``identifier`` and ``file_path``
  queried together with a boosted multi-match query

All data stays on disk under ``settings.index_dir``.  LanceDB calls are
blocking, so each one runs in a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .backends import KEYWORD_FIELDS, Filters, IndexDocument, SearchBackend
from .errors import BackendConnectionError, SchemaError
from .models import SearchHit

logger = logging.getLogger(__name__)

try:
    import lancedb  # type: ignore[import-untyped]
    import pyarrow as pa  # type: ignore[import-untyped]
    from lancedb.query import MultiMatchQuery  # type: ignore[import-untyped]
    LANCE_AVAILABLE = True
except ImportError:
    LANCE_AVAILABLE = False

_COLUMNS = ("id", "content", "identifier", "file_path", "node_type", "language", "name")

# Over-fetch factor when some filters can only be applied after the query.
_POST_FILTER_FETCH = 4


def _schema(dim: int) -> "pa.Schema":
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("content", pa.utf8()),
        pa.field("identifier", pa.utf8()),
        pa.field("file_path", pa.utf8()),
        pa.field("node_type", pa.utf8()),
        pa.field("language", pa.utf8()),
        pa.field("name", pa.utf8()),
        pa.field("metadata", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dim)),
    ])


def _sql_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def split_filters(filters: Filters) -> Tuple[Optional[str], Dict[str, Any]]:
    """Split *filters* into a SQL ``WHERE`` clause and metadata-only leftovers."""
    if not filters:
        return None, {}
    clauses: List[str] = []
    leftover: Dict[str, Any] = {}
    for key, value in filters.items():
        if key in _COLUMNS:
            clauses.append(f"{key} = {_sql_literal(value)}")
        else:
            leftover[key] = value
    return (" AND ".join(clauses) or None), leftover


class LanceDBBackend(SearchBackend):
    """LanceDB-backed :class:`~codegraph_search.backends.SearchBackend`.

    Schema per row:

    ========== ============ =====================================
    Column     Type         Description
    ========== ============ =====================================
    id         utf8         Node id or ``file:<path>``
    content    utf8         Indexed text (FTS)
    identifier utf8         Display name / qualname (FTS)
    file_path  utf8         Relative path (FTS)
    node_type  utf8         Entity kind
    language   utf8         Language id
    name       utf8         Short symbol name
    metadata   utf8         JSON-encoded free-form metadata
    vector     float32[dim] Embedding vector
    ========== ============ =====================================
    """

    name = "lancedb"

    def __init__(self, index_dir: Union[str, Path]) -> None:
        if not LANCE_AVAILABLE:
            raise ImportError(
                "lancedb is not installed. Install with: pip install lancedb pyarrow"
            )
        self.index_dir = Path(index_dir)
        self.index_name: Optional[str] = None
        self.dim: Optional[int] = None
        self._db: Any = None
        self._table: Optional[Any] = None

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def _connect(self) -> Any:
        if self._db is None:
            try:
                self.index_dir.mkdir(parents=True, exist_ok=True)
                self._db = lancedb.connect(str(self.index_dir))
            except OSError as exc:
                raise BackendConnectionError(
                    f"Cannot open LanceDB at {self.index_dir}: {exc}",
                    {"index_dir": str(self.index_dir)},
                ) from exc
        return self._db

    def _ensure_index_sync(self, index_name: str, dim: int) -> None:
        db = self._connect()
        if index_name in db.table_names():
            table = db.open_table(index_name)
            vector_type = table.schema.field("vector").type
            existing = getattr(vector_type, "list_size", -1)
            if existing != dim:
                raise SchemaError(
                    f"Index '{index_name}' has vector dimension {existing}, requested {dim}",
                    {"index": index_name, "existing_dim": existing, "requested_dim": dim},
                )
            self._table = table
        else:
            self._table = db.create_table(index_name, schema=_schema(dim), mode="create")
            logger.info("Created LanceDB table '%s' (dim=%d)", index_name, dim)
        self.index_name = index_name
        self.dim = dim

    async def ensure_index(self, index_name: str, dim: int) -> None:
        await asyncio.to_thread(self._ensure_index_sync, index_name, dim)

    def _replace_sync(self, docs: Sequence[IndexDocument]) -> None:
        if self.index_name is None or self.dim is None:
            raise SchemaError("Index has not been created; call ensure_index first")
        rows: List[Dict[str, Any]] = []
        for doc in docs:
            vector = doc.vector if doc.vector is not None else [0.0] * self.dim
            if len(vector) != self.dim:
                raise SchemaError(
                    f"Document '{doc.id}' has vector dimension {len(vector)}, "
                    f"index expects {self.dim}",
                )
            rows.append({
                "id": doc.id,
                "content": doc.content,
                "identifier": doc.identifier,
                "file_path": doc.file_path,
                "node_type": doc.node_type,
                "language": doc.language,
                "name": doc.name,
                "metadata": json.dumps(doc.metadata, sort_keys=True, default=str),
                "vector": vector,
            })
        db = self._connect()
        table = db.create_table(
            self.index_name, data=rows or None, schema=_schema(self.dim), mode="overwrite",
        )
        if rows:
            for field_name, _boost in KEYWORD_FIELDS:
                table.create_fts_index(field_name, replace=True)
        self._table = table
        logger.info("Indexed %d documents into LanceDB table '%s'", len(rows), self.index_name)

    async def replace_documents(self, docs: Sequence[IndexDocument]) -> None:
        await asyncio.to_thread(self._replace_sync, list(docs))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _to_hits(
        self, rows: List[Dict[str, Any]], search_type: str, leftover: Dict[str, Any], limit: int,
    ) -> List[SearchHit]:
        hits: List[SearchHit] = []
        for row in rows:
            metadata = json.loads(row.get("metadata") or "{}")
            if any(metadata.get(key) != value for key, value in leftover.items()):
                continue
            if search_type == "vector":
                # Cosine metric: _distance is 1 - cos_sim, in [0, 2].
                score = 1.0 - float(row.get("_distance", 1.0))
            else:
                score = float(row.get("_score", 0.0))
            metadata.update({key: row.get(key, "") for key in _COLUMNS if key not in ("id", "content")})
            hits.append(SearchHit(
                id=row.get("id", ""),
                score=score,
                content=row.get("content", ""),
                metadata=metadata,
                search_type=search_type,
            ))
            if len(hits) >= limit:
                break
        return hits

    def _keyword_sync(self, query: str, limit: int, filters: Filters) -> List[SearchHit]:
        if self._table is None or self._table.count_rows() == 0:
            return []
        where, leftover = split_filters(filters)
        columns = [name for name, _boost in KEYWORD_FIELDS]
        boosts = [boost for _name, boost in KEYWORD_FIELDS]
        builder = self._table.search(
            MultiMatchQuery(query, columns, boosts=boosts), query_type="fts",
        )
        if where:
            builder = builder.where(where)
        fetch = limit * _POST_FILTER_FETCH if leftover else limit
        rows = builder.limit(fetch).to_list()
        return self._to_hits(rows, "keyword", leftover, limit)

    async def keyword_query(self, query: str, limit: int, filters: Filters = None) -> List[SearchHit]:
        try:
            return await asyncio.to_thread(self._keyword_sync, query, limit, filters)
        except OSError as exc:
            raise BackendConnectionError(f"LanceDB keyword query failed: {exc}") from exc

    def _vector_sync(self, vector: List[float], limit: int, filters: Filters) -> List[SearchHit]:
        if self._table is None:
            return []
        if self.dim is not None and len(vector) != self.dim:
            raise SchemaError(
                f"Query vector has dimension {len(vector)}, index expects {self.dim}",
            )
        where, leftover = split_filters(filters)
        builder = (
            self._table
            .search(vector, vector_column_name="vector")
            .distance_type("cosine")
        )
        if where:
            builder = builder.where(where, prefilter=True)
        fetch = limit * _POST_FILTER_FETCH if leftover else limit
        rows = builder.limit(fetch).to_list()
        return self._to_hits(rows, "vector", leftover, limit)

    async def vector_query(
        self, vector: List[float], limit: int, filters: Filters = None,
    ) -> List[SearchHit]:
        try:
            return await asyncio.to_thread(self._vector_sync, vector, limit, filters)
        except OSError as exc:
            raise BackendConnectionError(f"LanceDB vector query failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Informational
    # ------------------------------------------------------------------

    async def count(self) -> int:
        if self._table is None:
            return 0
        return await asyncio.to_thread(self._table.count_rows)
