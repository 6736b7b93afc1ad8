"""Change-impact analysis over one graph snapshot."""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import ImpactSettings
from .graph import CodeGraph
from .models import ImpactReport

logger = logging.getLogger(__name__)

DIRECT_RELATIONS = frozenset({"depends_on", "calls", "extends", "implements"})


def risk_level(total_affected: int, high_centrality_count: int, settings: ImpactSettings) -> str:
    if total_affected > settings.high_total or high_centrality_count > settings.high_central:
        return "high"
    if total_affected > settings.medium_total or high_centrality_count > settings.medium_central:
        return "medium"
    return "low"


class ImpactAnalyzer:
    """Walks the graph from a changed node to the nodes it may affect.

    ``direct``   sources of depends_on / calls / extends / implements edges
                 into the node, then every dependent within ``max_distance``.
    ``indirect`` other members of the node's cluster that are not direct.
    """

    def __init__(self, graph: CodeGraph, settings: Optional[ImpactSettings] = None) -> None:
        self.graph = graph
        self.settings = settings or ImpactSettings()

    def direct_dependents(self, node_id: str, max_distance: int) -> List[str]:
        direct: List[str] = []
        for edge in self.graph.incoming(node_id):
            if edge.relation_type in DIRECT_RELATIONS and edge.source != node_id and edge.source not in direct:
                direct.append(edge.source)
        for dependent in self.graph.find_dependents(node_id, max_distance):
            if dependent not in direct:
                direct.append(dependent)
        return direct

    def analyze(self, node_id: str, max_distance: Optional[int] = None) -> ImpactReport:
        """Raises :class:`~codegraph_search.errors.UnknownNodeError` for an unknown id."""
        self.graph.node(node_id)
        distance = self.settings.default_max_distance if max_distance is None else max_distance
        direct = self.direct_dependents(node_id, distance)

        excluded = set(direct) | {node_id}
        cluster_id = self.graph.cluster_of(node_id).cluster_id
        indirect = [
            nid for nid in self.graph.cluster_members(cluster_id)
            if nid not in excluded
        ] if cluster_id else []

        threshold = self.settings.high_centrality_threshold
        high = [
            nid for nid in direct + indirect
            if self.graph.normalized_pagerank(nid) > threshold
        ]
        level = risk_level(len(direct) + len(indirect), len(high), self.settings)
        logger.info(
            "Impact of %s: %d direct, %d indirect, %d high-centrality -> %s",
            node_id, len(direct), len(indirect), len(high), level,
        )
        return ImpactReport(
            node_id=node_id,
            direct=direct,
            indirect=indirect,
            risk_level=level,
            high_centrality=high,
        )


def analyze_impact(
    graph: CodeGraph,
    node_id: str,
    max_distance: Optional[int] = None,
    settings: Optional[ImpactSettings] = None,
) -> ImpactReport:
    return ImpactAnalyzer(graph, settings).analyze(node_id, max_distance)
