"""Tests for graph building, traversal, metrics, and snapshots."""

from typing import Dict

import networkx as nx
import pytest

from codegraph_search import graph_metrics
from codegraph_search.config import GraphSettings
from codegraph_search.errors import ResolutionWarning, UnknownNodeError
from codegraph_search.extractors import PythonExtractor
from codegraph_search.graph import CodeGraph, GraphBuilder, SnapshotStore, build_graph
from codegraph_search.models import Edge, ExtractedEntity


@pytest.fixture
def sample_graph(sample_files):
    extractor = PythonExtractor()
    extractions = [extractor.extract(path, content) for path, content in sample_files if path.endswith(".py")]
    graph, dropped = build_graph(extractions)
    return graph, dropped


def _id(graph: CodeGraph, symbol: str) -> str:
    node = graph.find_node(symbol)
    assert node is not None, symbol
    return node.node_id


class TestTraversal:
    """Test bounded BFS over dependencies and dependents."""

    def test_dependencies_respect_depth(self, chain_graph):
        """Only nodes within max_depth hops are returned, nearest first."""
        graph, ids = chain_graph
        assert graph.find_dependencies(ids["a"], max_depth=2) == [ids["b"], ids["c"]]
        assert graph.find_dependencies(ids["a"], max_depth=0) == []

    def test_unbounded_depth(self, chain_graph):
        """``max_depth=None`` walks the whole chain."""
        graph, ids = chain_graph
        assert graph.find_dependencies(ids["a"], max_depth=None) == [ids[n] for n in "bcde"]

    def test_dependents(self, chain_graph):
        """Dependents follow edges backwards."""
        graph, ids = chain_graph
        assert graph.find_dependents(ids["e"], max_depth=1) == [ids["d"]]
        assert graph.find_dependents(ids["e"], max_depth=3) == [ids["d"], ids["c"], ids["b"]]
        assert graph.find_dependents(ids["a"]) == []

    def test_relation_filter(self, make_graph):
        """Traversal can be restricted to relation types."""
        graph, ids = make_graph(
            ["a", "b", "c"], [("a", "b", "calls"), ("a", "c", "imports")],
        )
        assert graph.find_dependencies(ids["a"], relation_types=["calls"]) == [ids["b"]]

    def test_cycles_terminate(self, make_graph):
        """Cycles do not revisit nodes."""
        graph, ids = make_graph(["a", "b"], [("a", "b", "calls"), ("b", "a", "calls")])
        assert graph.find_dependencies(ids["a"], max_depth=None) == [ids["b"]]

    def test_unknown_node(self, chain_graph):
        """Unknown ids raise UnknownNodeError."""
        graph, _ids = chain_graph
        with pytest.raises(UnknownNodeError):
            graph.find_dependencies("node_999")
        with pytest.raises(UnknownNodeError):
            graph.node("node_999")

    def test_siblings_and_neighbours(self, make_graph):
        """Siblings share a contains parent; neighbours go both ways."""
        graph, ids = make_graph(
            ["mod", "f", "g", "h"],
            [("mod", "f", "contains"), ("mod", "g", "contains"), ("h", "f", "calls")],
        )
        assert graph.find_siblings(ids["f"]) == [ids["g"]]
        assert graph.neighbours(ids["f"]) == [ids["mod"], ids["h"]]


class TestMetrics:
    """Test graph-wide metrics and centrality."""

    def test_chain_metrics(self, chain_graph):
        graph, _ids = chain_graph
        metrics = graph.metrics
        assert metrics.node_count == 5
        assert metrics.edge_count == 4
        assert metrics.avg_degree == pytest.approx(1.6)
        assert metrics.max_depth == 4
        assert metrics.cycle_count == 0

    def test_cycle_count(self, make_graph):
        """A two-node loop and a self-loop are two cycles."""
        graph, _ids = make_graph(
            ["a", "b", "c"], [("a", "b", "calls"), ("b", "a", "calls"), ("c", "c", "calls")],
        )
        assert graph.metrics.cycle_count == 2

    def test_pagerank_matches_networkx(self, make_graph):
        """Typed parallel edges both carry weight, as in networkx's multigraph PageRank."""
        graph, ids = make_graph(
            ["a", "b", "c"],
            [("a", "b", "calls"), ("a", "b", "depends_on"), ("a", "c", "calls"), ("c", "a", "calls")],
        )
        a, b, c = ids["a"], ids["b"], ids["c"]
        reference = nx.pagerank(nx.MultiDiGraph([(a, b), (a, b), (a, c), (c, a)]))
        for nid in (a, b, c):
            assert graph.centrality_of(nid).pagerank == pytest.approx(reference[nid], abs=1e-6)
        assert graph.centrality_of(a).degree == 4
        assert graph.metrics.cycle_count == 1

    def test_typed_edges_kept_apart(self):
        """Each relation type between a pair is its own multigraph edge."""
        nx_graph = graph_metrics.to_networkx(
            ["n1", "n2"], [Edge("n1", "n2", "calls"), Edge("n1", "n2", "imports", 0.5)],
        )
        assert nx_graph.number_of_edges("n1", "n2") == 2
        assert nx_graph["n1"]["n2"]["imports"]["weight"] == 0.5

    def test_pagerank_distribution(self, chain_graph):
        """PageRank sums to one and grows down the chain."""
        graph, ids = chain_graph
        ranks = [graph.centrality_of(ids[n]).pagerank for n in "abcde"]
        assert sum(ranks) == pytest.approx(1.0, abs=1e-4)
        assert ranks == sorted(ranks)
        assert graph.normalized_pagerank(ids["e"]) == pytest.approx(1.0)

    def test_betweenness(self, chain_graph):
        """The middle of a chain brokers the most shortest paths."""
        graph, ids = chain_graph
        assert graph.centrality_of(ids["c"]).betweenness == pytest.approx(4 / 12)
        assert graph.centrality_of(ids["b"]).betweenness == pytest.approx(3 / 12)
        assert graph.centrality_of(ids["a"]).betweenness == 0.0

    def test_closeness_and_degree(self, chain_graph):
        graph, ids = chain_graph
        assert graph.centrality_of(ids["a"]).closeness == pytest.approx(0.4)
        assert graph.centrality_of(ids["e"]).closeness == 0.0
        assert graph.centrality_of(ids["b"]).degree == 2

    def test_empty_graph(self):
        """An empty build yields zeroed metrics."""
        graph = GraphBuilder().build()
        assert graph.metrics.node_count == 0
        assert graph.metrics.max_depth == 0
        assert graph.max_pagerank == 0.0


class TestClusters:
    """Test cluster membership, cohesion, coupling, and roles."""

    def test_single_component(self, chain_graph):
        """One component: cohesion from internal edges, top PageRank is core."""
        graph, ids = chain_graph
        info = graph.cluster_of(ids["a"])
        assert info.cohesion == pytest.approx(4 / 20)
        assert info.coupling == 0.0
        assert {n for n in "abcde" if graph.cluster_of(ids[n]).role == "core"} == {"d", "e"}
        assert len(graph.cluster_members(info.cluster_id)) == 5

    def test_disconnected_components(self, make_graph):
        """Separate components get separate ids; singletons are peripheral."""
        graph, ids = make_graph(["a", "b", "lonely"], [("a", "b", "calls")])
        assert graph.cluster_of(ids["a"]).cluster_id == graph.cluster_of(ids["b"]).cluster_id
        lonely = graph.cluster_of(ids["lonely"])
        assert lonely.cluster_id != graph.cluster_of(ids["a"]).cluster_id
        assert lonely.cohesion == 0.0
        assert lonely.role == "peripheral"

    def test_default_clusters_span_every_relation(self, make_graph):
        """Clustering over every relation type leaves no edge crossing a cluster."""
        graph, ids = make_graph(["p", "x", "y"], [("p", "x", "contains"), ("x", "y", "calls")])
        infos = [graph.cluster_of(ids[n]) for n in "pxy"]
        assert len({info.cluster_id for info in infos}) == 1
        assert all(info.coupling == 0.0 for info in infos)
        assert all(info.role != "connector" for info in infos)

    def test_connector_role(self):
        """Clustering on a subset of relations exposes cross-cluster connectors."""
        builder = GraphBuilder(GraphSettings(cluster_relation_types=frozenset({"contains"})))
        ids: Dict[str, str] = {}
        for i, name in enumerate(["p", "x", "y"], 1):
            ids[name] = builder.add_node(ExtractedEntity(name, "function", i, i), "m.py")
        builder.add_edge(ids["p"], ids["x"], "contains")
        builder.add_edge(ids["x"], ids["y"], "calls")
        graph = builder.build()
        assert graph.cluster_of(ids["x"]).role == "core"
        assert graph.cluster_of(ids["x"]).coupling == pytest.approx(0.5)
        assert graph.cluster_of(ids["p"]).role == "peripheral"
        assert graph.cluster_of(ids["y"]).role == "connector"


class TestGraphBuilder:
    """Test node registration, edge validation, and resolution."""

    def test_sequential_ids_and_dedup(self):
        """Ids are node_<n>; the same entity in the same file is one node."""
        builder = GraphBuilder()
        entity = ExtractedEntity("f", "function", 1, 2)
        first = builder.add_node(entity, "a.py")
        assert first == "node_1"
        assert builder.add_node(entity, "a.py") == first
        assert builder.add_node(entity, "b.py") == "node_2"

    def test_edge_to_unknown_node_dropped(self):
        """Edges with unknown endpoints are dropped and recorded."""
        builder = GraphBuilder()
        nid = builder.add_node(ExtractedEntity("f", "function", 1, 1), "a.py")
        assert not builder.add_edge(nid, "node_42", "calls")
        assert not builder.add_edge(nid, nid, "befriends")
        graph = builder.build()
        assert graph.metrics.edge_count == 0
        assert len(builder.dropped) == 2
        assert all(isinstance(w, ResolutionWarning) for w in builder.dropped)
        assert builder.dropped[0].target == "node_42"

    def test_repeated_edge_ignored(self):
        """The same typed edge between two nodes is kept once, without a warning."""
        builder = GraphBuilder()
        f = builder.add_node(ExtractedEntity("f", "function", 1, 1), "a.py")
        g = builder.add_node(ExtractedEntity("g", "function", 2, 2), "a.py")
        assert builder.add_edge(f, g, "calls")
        assert not builder.add_edge(f, g, "calls")
        assert builder.add_edge(f, g, "depends_on")
        graph = builder.build()
        assert graph.metrics.edge_count == 2
        assert builder.dropped == []

    def test_repeated_calls_are_one_edge(self):
        """Three calls to the same helper resolve to one ``calls`` edge."""
        code = "def helper():\n    return 1\n\n\ndef run():\n    helper()\n    helper()\n    helper()\n"
        graph, _dropped = build_graph([PythonExtractor().extract("jobs.py", code)])
        run = _id(graph, "run")
        assert [e.relation_type for e in graph.outgoing(run)] == ["calls"]
        assert graph.centrality_of(run).degree == 2

    def test_unresolved_imports_dropped(self, sample_graph):
        """Imports of external modules cannot resolve and are reported."""
        _graph, dropped = sample_graph
        targets = {w.target for w in dropped}
        assert "typing" in targets
        assert "abc" in targets

    def test_resolution_across_files(self, sample_graph):
        """Calls and imports bind to nodes in other files."""
        graph, _dropped = sample_graph
        create_order = _id(graph, "OrderProcessor.create_order")
        calls = {graph.nodes[e.target].display_name for e in graph.outgoing(create_order) if e.relation_type == "calls"}
        assert {"UserProcessor.get_user", "Order"} <= calls

        main = _id(graph, "main")
        main_module = next(n.node_id for n in graph.nodes.values() if n.node_type == "module" and n.name == "main")
        imported = {graph.nodes[e.target].display_name for e in graph.outgoing(main_module) if e.relation_type == "imports"}
        assert imported == {"models", "processor", "utils"}
        assert graph.nodes[main].node_type == "function"

    def test_extends_refined_to_implements(self, sample_graph):
        """Subclassing an abstract class becomes ``implements``."""
        graph, _dropped = sample_graph
        email = _id(graph, "EmailNotifier")
        relations = {(graph.nodes[e.target].name, e.relation_type) for e in graph.outgoing(email)}
        assert ("Notifier", "implements") in relations

    def test_throws_and_catches(self, sample_graph):
        graph, _dropped = sample_graph
        error = _id(graph, "DeliveryError")
        kinds = {(graph.nodes[e.source].display_name, e.relation_type) for e in graph.incoming(error)}
        assert ("EmailNotifier.send", "throws") in kinds
        assert ("NotificationService.broadcast", "catches") in kinds

    def test_patterns(self, sample_graph):
        """Structural and naming patterns are tagged per node."""
        graph, _dropped = sample_graph
        assert "polymorphic_interface" in graph.patterns[_id(graph, "Notifier")]
        assert "implementation" in graph.patterns[_id(graph, "EmailNotifier")]
        assert "service" in graph.patterns[_id(graph, "NotificationService")]

    def test_deterministic_rebuild(self, sample_files):
        """The same files always produce the same ids, edges, and metrics."""
        extractor = PythonExtractor()

        def build():
            return build_graph(
                extractor.extract(p, c) for p, c in sample_files if p.endswith(".py")
            )[0]

        first, second = build(), build()
        assert dict(first.nodes) == dict(second.nodes)
        assert first.edges == second.edges
        assert dict(first.centrality) == dict(second.centrality)
        assert dict(first.clusters) == dict(second.clusters)

    def test_metadata(self, sample_graph):
        """Metadata bundles edges, traversal, patterns, and metrics."""
        graph, _dropped = sample_graph
        nid = _id(graph, "Notifier")
        meta = graph.metadata(nid)
        assert meta.node_type == "class"
        assert meta.signature == "class Notifier(ABC)"
        assert "polymorphic_interface" in meta.patterns
        assert {e["relation_type"] for e in meta.incoming} >= {"contains", "implements"}
        assert _id(graph, "EmailNotifier") in meta.dependents
        assert meta.cluster.cluster_id

    def test_find_node(self, sample_graph):
        """Symbols resolve by id, qualname, then short name."""
        graph, _dropped = sample_graph
        node = graph.find_node("UserProcessor.create_user")
        assert node is not None and node.name == "create_user"
        assert graph.find_node(node.node_id) is node
        assert graph.find_node("create_user") == node
        assert graph.find_node("no_such_symbol") is None

    def test_stats(self, sample_graph):
        graph, _dropped = sample_graph
        stats = graph.stats()
        assert stats["nodes"] == len(graph)
        assert stats["node_types"]["module"] == 5
        assert stats["relation_types"]["implements"] == 2


class TestSnapshotStore:
    """Test atomic snapshot publication."""

    def test_starts_empty(self):
        store = SnapshotStore()
        assert store.version == 0
        assert len(store.current) == 0

    def test_publish_bumps_version(self, chain_graph):
        """Each publish produces the next version; old snapshots stay intact."""
        graph, _ids = chain_graph
        store = SnapshotStore()
        first = store.publish(graph)
        second = store.publish(graph)
        assert (first.version, second.version) == (1, 2)
        assert store.current is second
        assert first.version == 1
        assert dict(first.nodes) == dict(second.nodes)

    def test_publish_explicit_version(self, chain_graph):
        """A reserved version is published as given; going backwards is refused."""
        graph, _ids = chain_graph
        store = SnapshotStore()
        assert store.publish(graph, 3).version == 3
        with pytest.raises(ValueError):
            store.publish(graph, 3)
        assert store.version == 3

    def test_snapshot_is_read_only(self, chain_graph):
        graph, ids = chain_graph
        with pytest.raises(TypeError):
            graph.nodes["x"] = graph.nodes[ids["a"]]
