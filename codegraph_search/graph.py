"""Code relationship graph: builder, immutable snapshot, and snapshot store.

The builder collects nodes and deferred symbolic relations from extractors,
binds relation endpoints to node ids in one resolution pass, then computes
every metric in full.  The result is a :class:`CodeGraph` that never changes
after construction; :class:`SnapshotStore` swaps snapshots atomically.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from . import graph_metrics
from .config import GraphSettings
from .errors import ResolutionWarning, UnknownNodeError
from .models import (
    RELATION_TYPES,
    Centrality,
    ClusterInfo,
    Edge,
    Extraction,
    ExtractedEntity,
    ExtractedRelation,
    GraphMetadata,
    GraphMetrics,
    Node,
)
from .patterns import PatternRegistry, default_registry

logger = logging.getLogger(__name__)

_EMPTY_CLUSTER = ClusterInfo(cluster_id="", cohesion=0.0, coupling=0.0, role="peripheral")


class CodeGraph:
    """Immutable snapshot of nodes, edges, and derived metrics."""

    def __init__(
        self,
        nodes: Mapping[str, Node],
        edges: Sequence[Edge],
        metrics: GraphMetrics,
        centrality: Mapping[str, Centrality],
        clusters: Mapping[str, ClusterInfo],
        version: int = 0,
        pattern_registry: Optional[PatternRegistry] = None,
        patterns: Optional[Mapping[str, Tuple[str, ...]]] = None,
    ) -> None:
        self.nodes: Mapping[str, Node] = MappingProxyType(dict(nodes))
        self.edges: Tuple[Edge, ...] = tuple(edges)
        self.metrics = metrics
        self.centrality: Mapping[str, Centrality] = MappingProxyType(dict(centrality))
        self.clusters: Mapping[str, ClusterInfo] = MappingProxyType(dict(clusters))
        self.version = version

        out: Dict[str, List[Edge]] = {nid: [] for nid in self.nodes}
        inc: Dict[str, List[Edge]] = {nid: [] for nid in self.nodes}
        for edge in self.edges:
            out[edge.source].append(edge)
            inc[edge.target].append(edge)
        self._out = {nid: tuple(edges_) for nid, edges_ in out.items()}
        self._in = {nid: tuple(edges_) for nid, edges_ in inc.items()}

        self._by_qualname: Dict[str, str] = {}
        self._by_name: Dict[str, str] = {}
        # Symbols win over same-named modules.
        ordered = sorted(self.nodes.items(), key=lambda item: item[1].node_type == "module")
        for nid, node in ordered:
            self._by_qualname.setdefault(node.display_name, nid)
            self._by_name.setdefault(node.name, nid)

        self.max_pagerank = max((c.pagerank for c in self.centrality.values()), default=0.0)
        self.max_degree = max((c.degree for c in self.centrality.values()), default=0)

        if patterns is None:
            registry = pattern_registry or default_registry()
            patterns = {nid: tuple(registry.detect(self, nid)) for nid in self.nodes}
        self.patterns: Mapping[str, Tuple[str, ...]] = MappingProxyType(dict(patterns))

    @classmethod
    def empty(cls) -> "CodeGraph":
        return cls({}, (), GraphMetrics(), {}, {}, patterns={})

    def with_version(self, version: int) -> "CodeGraph":
        return CodeGraph(
            self.nodes, self.edges, self.metrics, self.centrality, self.clusters,
            version=version, patterns=self.patterns,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise UnknownNodeError(f"Unknown node '{node_id}'", {"node_id": node_id}) from None

    def find_node(self, symbol: str) -> Optional[Node]:
        """Resolve *symbol* by node id, then qualname, then short name."""
        if symbol in self.nodes:
            return self.nodes[symbol]
        nid = self._by_qualname.get(symbol) or self._by_name.get(symbol)
        return self.nodes[nid] if nid else None

    def outgoing(self, node_id: str) -> Tuple[Edge, ...]:
        self.node(node_id)
        return self._out[node_id]

    def incoming(self, node_id: str) -> Tuple[Edge, ...]:
        self.node(node_id)
        return self._in[node_id]

    def centrality_of(self, node_id: str) -> Centrality:
        return self.centrality.get(node_id, Centrality())

    def cluster_of(self, node_id: str) -> ClusterInfo:
        return self.clusters.get(node_id, _EMPTY_CLUSTER)

    def normalized_pagerank(self, node_id: str) -> float:
        if self.max_pagerank <= 0.0:
            return 0.0
        return self.centrality_of(node_id).pagerank / self.max_pagerank

    def cluster_members(self, cluster_id: str) -> List[str]:
        return [nid for nid, info in self.clusters.items() if info.cluster_id == cluster_id]

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _bfs(
        self,
        start: str,
        max_depth: Optional[int],
        relation_types: Optional[Iterable[str]],
        forward: bool,
    ) -> List[str]:
        self.node(start)
        allowed = frozenset(relation_types) if relation_types is not None else None
        seen = {start}
        found: List[str] = []
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            edges = self._out[current] if forward else self._in[current]
            for edge in edges:
                if allowed is not None and edge.relation_type not in allowed:
                    continue
                nxt = edge.target if forward else edge.source
                if nxt not in seen:
                    seen.add(nxt)
                    found.append(nxt)
                    queue.append((nxt, depth + 1))
        return found

    def find_dependencies(
        self,
        node_id: str,
        max_depth: Optional[int] = 3,
        relation_types: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Nodes reachable over outgoing edges within *max_depth* hops."""
        return self._bfs(node_id, max_depth, relation_types, forward=True)

    def find_dependents(
        self,
        node_id: str,
        max_depth: Optional[int] = 3,
        relation_types: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Nodes that reach *node_id* over edges within *max_depth* hops."""
        return self._bfs(node_id, max_depth, relation_types, forward=False)

    def find_siblings(self, node_id: str) -> List[str]:
        """Nodes sharing a ``contains`` parent with *node_id*."""
        siblings: List[str] = []
        for parent_edge in self.incoming(node_id):
            if parent_edge.relation_type != "contains":
                continue
            for child_edge in self._out[parent_edge.source]:
                child = child_edge.target
                if child_edge.relation_type == "contains" and child != node_id and child not in siblings:
                    siblings.append(child)
        return siblings

    def neighbours(self, node_id: str) -> List[str]:
        """Direct neighbours in either direction, deduplicated."""
        out: List[str] = []
        for edge in self.outgoing(node_id):
            if edge.target not in out and edge.target != node_id:
                out.append(edge.target)
        for edge in self.incoming(node_id):
            if edge.source not in out and edge.source != node_id:
                out.append(edge.source)
        return out

    def metadata(self, node_id: str, max_depth: int = 3) -> GraphMetadata:
        node = self.node(node_id)
        return GraphMetadata(
            node_id=node_id,
            node_type=node.node_type,
            signature=node.signature,
            incoming=[
                {"node_id": e.source, "relation_type": e.relation_type, "weight": e.weight}
                for e in self._in[node_id]
            ],
            outgoing=[
                {"node_id": e.target, "relation_type": e.relation_type, "weight": e.weight}
                for e in self._out[node_id]
            ],
            dependencies=self.find_dependencies(node_id, max_depth),
            dependents=self.find_dependents(node_id, max_depth),
            siblings=self.find_siblings(node_id),
            patterns=list(self.patterns.get(node_id, ())),
            centrality=self.centrality_of(node_id),
            cluster=self.cluster_of(node_id),
        )

    def stats(self) -> Dict[str, Any]:
        by_type: Dict[str, int] = {}
        for node in self.nodes.values():
            by_type[node.node_type] = by_type.get(node.node_type, 0) + 1
        by_relation: Dict[str, int] = {}
        for edge in self.edges:
            by_relation[edge.relation_type] = by_relation.get(edge.relation_type, 0) + 1
        return {
            "version": self.version,
            "nodes": self.metrics.node_count,
            "edges": self.metrics.edge_count,
            "avg_degree": round(self.metrics.avg_degree, 3),
            "max_depth": self.metrics.max_depth,
            "cycles": self.metrics.cycle_count,
            "clusters": len({info.cluster_id for info in self.clusters.values()}),
            "node_types": dict(sorted(by_type.items())),
            "relation_types": dict(sorted(by_relation.items())),
        }


# ===================================================================
# Builder
# ===================================================================

class GraphBuilder:
    """Single-use builder: register nodes, defer relations, then :meth:`build`."""

    def __init__(
        self,
        settings: Optional[GraphSettings] = None,
        pattern_registry: Optional[PatternRegistry] = None,
    ) -> None:
        self.settings = settings or GraphSettings()
        self.pattern_registry = pattern_registry or default_registry()
        self._nodes: Dict[str, Node] = {}
        self._edges: List[Edge] = []
        self._edge_keys: Set[Tuple[str, str, str]] = set()
        self._pending: List[Tuple[str, ExtractedRelation]] = []
        self._counter = 0
        self._by_key: Dict[Tuple[str, str], str] = {}
        self._by_file_name: Dict[Tuple[str, str], str] = {}
        self._by_qualname: Dict[str, str] = {}
        self._by_name: Dict[str, str] = {}
        # Modules live apart so ``main()`` in main.py stays distinct from the module.
        self._module_by_key: Dict[Tuple[str, str], str] = {}
        self._module_by_file: Dict[str, str] = {}
        self._modules: Dict[str, str] = {}
        self.dropped: List[ResolutionWarning] = []

    def add_node(self, entity: ExtractedEntity, file_path: str, language: str = "") -> str:
        """Register *entity*; returns the existing id for a duplicate key."""
        key = (entity.qualname or entity.name, file_path)
        is_module = entity.node_type == "module"
        existing = (self._module_by_key if is_module else self._by_key).get(key)
        if existing is not None:
            return existing
        self._counter += 1
        node_id = f"node_{self._counter}"
        self._nodes[node_id] = Node(
            node_id=node_id,
            name=entity.name,
            node_type=entity.node_type,
            file_path=file_path,
            start_line=entity.start_line,
            end_line=entity.end_line,
            qualname=entity.qualname or entity.name,
            signature=entity.signature,
            visibility=entity.visibility,
            is_abstract=entity.is_abstract,
            is_static=entity.is_static,
            namespace=entity.namespace,
            language=language,
            code=entity.code,
            docstring=entity.docstring,
        )
        if is_module:
            self._module_by_key[key] = node_id
            self._module_by_file.setdefault(file_path, node_id)
            self._modules.setdefault(key[0], node_id)
            return node_id
        self._by_key[key] = node_id
        self._by_file_name.setdefault((entity.name, file_path), node_id)
        self._by_qualname.setdefault(entity.qualname or entity.name, node_id)
        self._by_name.setdefault(entity.name, node_id)
        return node_id

    def add_edge(self, source: str, target: str, relation_type: str, weight: float = 1.0) -> bool:
        """Add an edge between known ids.

        Unknown ids drop the edge with a warning; a repeated
        ``(source, target, relation_type)`` is ignored.
        """
        if relation_type not in RELATION_TYPES:
            self._drop(f"Unknown relation type '{relation_type}' ({source} -> {target})",
                       source, target, relation_type)
            return False
        missing = [nid for nid in (source, target) if nid not in self._nodes]
        if missing:
            self._drop(f"Edge {source} -{relation_type}-> {target} references unknown node(s) "
                       f"{', '.join(missing)}", source, target, relation_type)
            return False
        key = (source, target, relation_type)
        if key in self._edge_keys:
            return False
        self._edge_keys.add(key)
        self._edges.append(Edge(source, target, relation_type, weight))
        return True

    def add_extraction(self, extraction: Extraction) -> List[str]:
        """Register every entity now; relations wait for :meth:`build`."""
        ids = [self.add_node(entity, extraction.path, extraction.language) for entity in extraction.entities]
        self._pending.extend((extraction.path, rel) for rel in extraction.relations)
        return ids

    def _drop(
        self, message: str, source: str, target: str, relation_type: str, file_path: str = "",
    ) -> None:
        self.dropped.append(ResolutionWarning(message, source, target, relation_type, file_path))
        logger.debug("Dropped relation: %s", message)

    def _lookup(self, symbol: str, file_path: str, hint: Optional[str] = None) -> Optional[str]:
        found = self._by_key.get((symbol, file_path)) or self._by_file_name.get((symbol, file_path))
        if found is None and hint:
            found = self._by_key.get((symbol, hint)) or self._by_file_name.get((symbol, hint))
        if found is None:
            found = self._by_qualname.get(symbol) or self._by_name.get(symbol)
        if found is None and "." in symbol:
            return self._lookup(symbol.rsplit(".", 1)[-1], file_path, hint)
        return found

    def _lookup_module(self, symbol: str, file_path: str, hint: Optional[str] = None) -> Optional[str]:
        own = self._module_by_file.get(file_path)
        if own is not None and self._nodes[own].qualname == symbol:
            return own
        if hint and hint in self._module_by_file:
            return self._module_by_file[hint]
        return self._modules.get(symbol)

    def _endpoints(self, file_path: str, rel: ExtractedRelation) -> Tuple[Optional[str], Optional[str]]:
        if rel.relation_type == "imports":
            return (
                self._lookup_module(rel.source_name, file_path),
                self._lookup_module(rel.target_name, file_path, rel.target_file),
            )
        source = None
        if rel.relation_type == "contains":
            source = self._lookup_module(rel.source_name, file_path)
        if source is None:
            source = self._lookup(rel.source_name, file_path)
        return source, self._lookup(rel.target_name, file_path, rel.target_file)

    def _refine(self, relation_type: str, target: str) -> str:
        if relation_type == "extends":
            node = self._nodes[target]
            if node.node_type == "interface" or node.is_abstract:
                return "implements"
        return relation_type

    def resolve(self) -> None:
        """Bind pending symbolic relations: same file, then hinted file, then global name."""
        pending, self._pending = self._pending, []
        before = len(self.dropped)
        for file_path, rel in pending:
            source, target = self._endpoints(file_path, rel)
            if source is None or target is None:
                unresolved = rel.source_name if source is None else rel.target_name
                self._drop(
                    f"{file_path}: cannot resolve '{unresolved}' in "
                    f"{rel.source_name} -{rel.relation_type}-> {rel.target_name}",
                    rel.source_name, rel.target_name, rel.relation_type, file_path,
                )
                continue
            if source == target and rel.relation_type == "contains":
                continue
            self.add_edge(source, target, self._refine(rel.relation_type, target), rel.weight)
        dropped = len(self.dropped) - before
        if dropped:
            logger.warning(
                "%s: %d of %d relations could not be resolved and were dropped",
                ResolutionWarning.__name__, dropped, len(pending),
            )

    def build(self, version: int = 0) -> CodeGraph:
        """Resolve relations and compute metrics; returns an immutable snapshot."""
        self.resolve()
        node_ids = list(self._nodes)
        edges = list(self._edges)
        cfg = self.settings

        nx_graph = graph_metrics.to_networkx(node_ids, edges)
        centrality = graph_metrics.centrality(
            nx_graph, cfg.pagerank_damping, cfg.pagerank_epsilon, cfg.pagerank_max_iter,
        )
        ranks = {nid: c.pagerank for nid, c in centrality.items()}
        components = graph_metrics.weakly_connected_components(nx_graph, cfg.cluster_relation_types)
        clusters = graph_metrics.cluster_info(components, edges, ranks)
        n = len(node_ids)
        metrics = GraphMetrics(
            node_count=n,
            edge_count=len(edges),
            avg_degree=(2.0 * len(edges) / n) if n else 0.0,
            max_depth=graph_metrics.max_depth(nx_graph),
            cycle_count=graph_metrics.cycle_count(nx_graph),
        )
        graph = CodeGraph(
            self._nodes, edges, metrics, centrality, clusters,
            version=version, pattern_registry=self.pattern_registry,
        )
        logger.info(
            "Built code graph: %d nodes, %d edges, %d clusters, %d dropped relations",
            n, len(edges), len(components), len(self.dropped),
        )
        return graph


def build_graph(
    extractions: Iterable[Extraction],
    settings: Optional[GraphSettings] = None,
    pattern_registry: Optional[PatternRegistry] = None,
) -> Tuple[CodeGraph, List[ResolutionWarning]]:
    builder = GraphBuilder(settings, pattern_registry)
    for extraction in extractions:
        builder.add_extraction(extraction)
    graph = builder.build()
    return graph, list(builder.dropped)


# ===================================================================
# Snapshot store
# ===================================================================

class SnapshotStore:
    """Holds the published graph; readers always get a complete snapshot."""

    def __init__(self, initial: Optional[CodeGraph] = None) -> None:
        self._lock = threading.Lock()
        self._current = initial if initial is not None else CodeGraph.empty()

    @property
    def current(self) -> CodeGraph:
        return self._current

    @property
    def version(self) -> int:
        return self._current.version

    def publish(self, graph: CodeGraph, version: Optional[int] = None) -> CodeGraph:
        """Swap in *graph* as the next snapshot.

        *version* defaults to the current version plus one and must be
        greater than the current version.
        """
        with self._lock:
            if version is None:
                version = self._current.version + 1
            elif version <= self._current.version:
                raise ValueError(
                    f"Snapshot version {version} is not newer than v{self._current.version}"
                )
            published = graph.with_version(version)
            self._current = published
        logger.info("Published graph snapshot v%d (%d nodes)", published.version, len(published))
        return published
