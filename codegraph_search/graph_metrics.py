"""Graph algorithms behind the structural signals.

Metrics run on a ``networkx.MultiDiGraph`` built once per graph build.  Node
insertion order follows the builder's node ids, so rebuilding a graph from
the same files yields identical metrics.
"""

from __future__ import annotations

import math
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

import networkx as nx

from .models import Centrality, ClusterInfo, Edge


def to_networkx(node_ids: Sequence[str], edges: Iterable[Edge]) -> nx.MultiDiGraph:
    """Directed multigraph keyed by relation type, weights on ``weight``."""
    graph = nx.MultiDiGraph()
    graph.add_nodes_from(node_ids)
    for edge in edges:
        graph.add_edge(edge.source, edge.target, key=edge.relation_type, weight=edge.weight)
    return graph


def centrality(
    graph: nx.MultiDiGraph,
    damping: float = 0.85,
    epsilon: float = 1e-6,
    max_iter: int = 100,
) -> Dict[str, Centrality]:
    """Degree, betweenness, closeness and weighted PageRank per node.

    Betweenness is normalised by ``(n - 1) * (n - 2)``.  Closeness follows
    outgoing edges with Wasserman-Faust scaling, so a node that reaches
    nothing scores ``0.0``.
    """
    if graph.number_of_nodes() == 0:
        return {}
    ranks = nx.pagerank(graph, alpha=damping, max_iter=max_iter, tol=epsilon, weight="weight")
    between = nx.betweenness_centrality(graph, normalized=True)
    close = nx.closeness_centrality(graph.reverse(copy=False), wf_improved=True)
    return {
        nid: Centrality(
            degree=graph.degree(nid),
            betweenness=between[nid],
            closeness=close[nid],
            pagerank=ranks[nid],
        )
        for nid in graph.nodes
    }


def weakly_connected_components(
    graph: nx.MultiDiGraph,
    relation_types: Optional[FrozenSet[str]] = None,
) -> List[List[str]]:
    """Components of the undirected view, restricted to *relation_types*.

    Components are ordered by their first node and list members in node order.
    """
    view = graph
    if relation_types is not None:
        view = nx.subgraph_view(graph, filter_edge=lambda u, v, key: key in relation_types)
    order = {nid: idx for idx, nid in enumerate(graph.nodes)}
    components = [sorted(members, key=order.__getitem__) for members in nx.weakly_connected_components(view)]
    components.sort(key=lambda members: order[members[0]])
    return components


def cycle_count(graph: nx.MultiDiGraph) -> int:
    """Number of strongly connected components that contain a cycle.

    A component counts when it has more than one node or a self-loop.
    """
    looped = set(nx.nodes_with_selfloops(graph))
    return sum(
        1 for component in nx.strongly_connected_components(graph)
        if len(component) > 1 or component & looped
    )


def max_depth(graph: nx.MultiDiGraph) -> int:
    """Longest shortest-path length over all reachable pairs."""
    longest = 0
    for _, dist in nx.all_pairs_shortest_path_length(graph):
        longest = max(longest, max(dist.values()))
    return longest


def cluster_info(
    components: Sequence[Sequence[str]],
    edges: Sequence[Edge],
    ranks: Dict[str, float],
) -> Dict[str, ClusterInfo]:
    """Cohesion, coupling, and per-node role for each component.

    Edge counts use every relation type, whatever the clustering used.
    """
    membership: Dict[str, int] = {}
    for idx, members in enumerate(components):
        for nid in members:
            membership[nid] = idx

    internal = [0] * len(components)
    external = [0] * len(components)
    node_total: Dict[str, int] = {}
    node_external: Dict[str, int] = {}
    for edge in edges:
        cs, ct = membership[edge.source], membership[edge.target]
        for nid in {edge.source, edge.target}:
            node_total[nid] = node_total.get(nid, 0) + 1
        if cs == ct:
            internal[cs] += 1
        else:
            external[cs] += 1
            external[ct] += 1
            node_external[edge.source] = node_external.get(edge.source, 0) + 1
            node_external[edge.target] = node_external.get(edge.target, 0) + 1

    out: Dict[str, ClusterInfo] = {}
    for idx, members in enumerate(components):
        m = len(members)
        cohesion = min(1.0, internal[idx] / (m * (m - 1))) if m > 1 else 0.0
        touching = internal[idx] + external[idx]
        coupling = external[idx] / touching if touching else 0.0
        core: Set[str] = set()
        if m > 1:
            ordered = sorted(members, key=lambda nid: -ranks.get(nid, 0.0))
            core = set(ordered[: math.ceil(m / 4)])
        for nid in members:
            total = node_total.get(nid, 0)
            if nid in core:
                role = "core"
            elif total and node_external.get(nid, 0) / total > 0.5:
                role = "connector"
            else:
                role = "peripheral"
            out[nid] = ClusterInfo(
                cluster_id=f"cluster_{idx + 1}",
                cohesion=cohesion,
                coupling=coupling,
                role=role,
            )
    return out
