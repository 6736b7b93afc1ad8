"""Query API: hybrid search, impact analysis, and graph metadata.

``CodeSearchService`` wires the pieces together::

    query -> validate -> classify intent
          -> keyword channel  \\
          -> vector channel   /  (concurrent, each with a deadline)
          -> RRF fusion -> intelligent ranking over the current snapshot

Impact analysis and metadata read the graph snapshot directly.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .backends import SearchBackend, create_backend
from .config import Settings, load_settings
from .embeddings import EmbeddingProvider, get_embedder, validate_embedding
from .errors import InvalidQueryError, SchemaError, SearchUnavailableError, UnknownNodeError
from .fusion import fuse_channels
from .graph import CodeGraph, SnapshotStore
from .impact import ImpactAnalyzer
from .indexer import CodeIndexer
from .intent import IntentClassifier
from .models import BuildReport, FileRecord, GraphMetadata, ImpactReport, RankedResult, SearchContext
from .ranker import IntelligentRanker
from .similarity import ChannelResult, SimilarityAdapter

logger = logging.getLogger(__name__)


def _matching_snapshot(result: ChannelResult, version: int) -> ChannelResult:
    """Drop hits indexed for a different graph snapshot than *version*."""
    if not result.ok:
        return result
    hits = [hit for hit in result.hits if hit.metadata.get("graph_version", version) == version]
    if len(hits) < len(result.hits):
        logger.debug(
            "%s channel: dropped %d hits not built from snapshot v%d",
            result.channel, len(result.hits) - len(hits), version,
        )
    return ChannelResult(channel=result.channel, hits=hits)


class CodeSearchService:
    """Facade over indexing, retrieval, ranking, and impact analysis."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[SearchBackend] = None,
        embedder: Optional[EmbeddingProvider] = None,
        classifier: Optional[IntentClassifier] = None,
        store: Optional[SnapshotStore] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.backend = backend or create_backend(self.settings.search)
        self.embedder = embedder or get_embedder(self.settings.search.embedding_dim)
        self.classifier = classifier or IntentClassifier()
        self.store = store or SnapshotStore()
        self.adapter = SimilarityAdapter(self.backend, self.settings.search)
        self.indexer = CodeIndexer(
            self.adapter, self.store, self.settings, embedder=self.embedder,
        )

    @property
    def graph(self) -> CodeGraph:
        return self.store.current

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        await self.adapter.initialize(self.settings.search.index_name)

    async def index_files(self, files: List[FileRecord]) -> BuildReport:
        await self.initialize()
        return await self.indexer.rebuild(files)

    async def index_path(self, root: Path) -> BuildReport:
        await self.initialize()
        return await self.indexer.rebuild_from_path(root)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def validate(self, query: str, limit: int) -> str:
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        if len(query) > self.settings.search.max_query_length:
            raise InvalidQueryError(
                f"Query is {len(query)} characters; the limit is "
                f"{self.settings.search.max_query_length}",
                {"length": len(query)},
            )
        if limit < 1:
            raise InvalidQueryError(f"limit must be at least 1, got {limit}", {"limit": limit})
        return query.strip()

    async def _vector_channel(
        self, query: str, fetch: int, filters: Optional[Dict[str, Any]], timeout: Optional[float],
    ) -> ChannelResult:
        try:
            embedding = await asyncio.to_thread(self.embedder.embed_text, query)
        except Exception as exc:
            logger.warning("Query embedding failed, vector channel skipped: %s", exc)
            return ChannelResult(channel="vector", error=exc)
        check = validate_embedding(embedding, self.settings.search.embedding_dim)
        if not check["ok"]:
            error = SchemaError("Query embedding rejected: " + "; ".join(check["warnings"]), check)
            logger.warning("%s", error)
            return ChannelResult(channel="vector", error=error)
        return await self.adapter.vector_channel(embedding, fetch, filters, timeout)

    async def search(
        self,
        query: str,
        context: Optional[SearchContext] = None,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> List[RankedResult]:
        """Hybrid search re-ranked with graph signals.

        Raises:
            InvalidQueryError: empty, oversized, or malformed request.
            SearchUnavailableError: both retrieval channels failed.
        """
        query = self.validate(query, limit)
        context = context or SearchContext()
        intent = self.classifier.classify(query, context)
        logger.debug("Search intent: %s (confidence: %.2f)", intent.type, intent.confidence)

        graph = self.store.current
        fetch = limit * max(1, self.settings.search.candidate_multiplier)
        keyword, vector = await asyncio.gather(
            self.adapter.keyword_channel(query, fetch, filters, timeout),
            self._vector_channel(query, fetch, filters, timeout),
        )
        channels = {"keyword": keyword, "vector": vector}
        if not keyword.ok and not vector.ok:
            raise SearchUnavailableError(
                "All retrieval channels failed",
                {name: str(result.error) for name, result in channels.items()},
            )

        channels = {name: _matching_snapshot(result, graph.version) for name, result in channels.items()}
        fused = fuse_channels(channels, self.settings.search.rrf_k)
        ranked = IntelligentRanker(graph).rank(fused, intent, context)[:limit]
        logger.info(
            "Search '%s' -> %d results (%s, snapshot v%d)",
            query, len(ranked), ranked[0].search_type if ranked else "empty", graph.version,
        )
        return ranked

    # ------------------------------------------------------------------
    # Graph queries
    # ------------------------------------------------------------------

    def resolve_node(self, node_id_or_symbol: str, graph: Optional[CodeGraph] = None) -> str:
        node = (graph if graph is not None else self.store.current).find_node(node_id_or_symbol)
        if node is None:
            raise UnknownNodeError(
                f"No node matches '{node_id_or_symbol}'", {"symbol": node_id_or_symbol},
            )
        return node.node_id

    def analyze_impact(self, node_id_or_symbol: str, max_distance: Optional[int] = None) -> ImpactReport:
        graph = self.store.current
        node_id = self.resolve_node(node_id_or_symbol, graph)
        return ImpactAnalyzer(graph, self.settings.impact).analyze(node_id, max_distance)

    def graph_metadata(self, node_id_or_symbol: str, max_depth: Optional[int] = None) -> GraphMetadata:
        depth = self.settings.graph.dependency_depth if max_depth is None else max_depth
        graph = self.store.current
        return graph.metadata(self.resolve_node(node_id_or_symbol, graph), depth)

    async def stats(self) -> Dict[str, Any]:
        out = self.store.current.stats()
        out["backend"] = self.backend.name
        out["documents"] = await self.adapter.count()
        return out
