"""Intelligent re-ranking of fused hits with graph-derived relevance factors.

Scoring policy lives in one declarative table, :data:`INTENT_WEIGHTS`::

    final = sum(factor * weight for each factor) * intent.confidence

Every factor is normalised to ``[0, 1]``.  Hits without a graph node (e.g.
file-level documents) score zero on the graph factors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set

from .graph import CodeGraph
from .models import (
    RankedResult,
    RelatedNode,
    RelevanceFactors,
    SearchContext,
    SearchHit,
    SearchIntent,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS: Dict[str, float] = {
    "semantic_similarity": 0.30,
    "structural_relevance": 0.25,
    "contextual_fit": 0.15,
    "pattern_match": 0.10,
    "importance": 0.20,
}

INTENT_WEIGHTS: Dict[str, Dict[str, float]] = {
    "default": DEFAULT_WEIGHTS,
    "find_pattern": {**DEFAULT_WEIGHTS, "pattern_match": 0.40, "semantic_similarity": 0.20},
    "find_dependencies": {**DEFAULT_WEIGHTS, "structural_relevance": 0.40, "importance": 0.30},
    "impact_analysis": {**DEFAULT_WEIGHTS, "structural_relevance": 0.35, "importance": 0.35},
}

SAME_FILE_BONUS = 0.5
RECENTLY_VIEWED_BONUS = 0.3
MAX_RELATED_NODES = 5

# Similarity -> impact level for impact-intent queries.
HIGH_IMPACT_SIMILARITY = 0.8
MEDIUM_IMPACT_SIMILARITY = 0.6

SUGGEST_IMPORTANT = "This code plays a central role in the system; change it with care."
SUGGEST_PATTERN = "This code applies a design pattern; keep the pattern's intent when editing."
SUGGEST_CONNECTED = "Check the components connected to this code as well."
SUGGEST_DEGRADED = "Results come from a reduced set of retrieval channels; confidence is lower."


def weights_for(intent_type: str) -> Dict[str, float]:
    return INTENT_WEIGHTS.get(intent_type, INTENT_WEIGHTS["default"])


def impact_level(similarity: float) -> str:
    if similarity > HIGH_IMPACT_SIMILARITY:
        return "high"
    if similarity > MEDIUM_IMPACT_SIMILARITY:
        return "medium"
    return "low"


class IntelligentRanker:
    """Re-rank fused hits against one graph snapshot."""

    def __init__(self, graph: Optional[CodeGraph] = None) -> None:
        self.graph = graph if graph is not None else CodeGraph.empty()

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def _recent_ids(self, context: SearchContext) -> Set[str]:
        ids: Set[str] = set()
        for ref in context.recently_viewed:
            node = self.graph.find_node(ref)
            ids.add(node.node_id if node else ref)
        return ids

    def contextual_fit(self, hit: SearchHit, context: SearchContext, recent: Set[str]) -> float:
        score = 0.0
        file_path = hit.metadata.get("file_path")
        if hit.id in self.graph:
            file_path = self.graph.nodes[hit.id].file_path
        if context.current_file and file_path == context.current_file:
            score += SAME_FILE_BONUS
        if recent:
            nearby = {hit.id}
            if hit.id in self.graph:
                nearby.update(self.graph.neighbours(hit.id))
                nearby.update(self.graph.find_siblings(hit.id))
            if nearby & recent:
                score += RECENTLY_VIEWED_BONUS
        return min(score, 1.0)

    def pattern_match(self, hit: SearchHit, intent: SearchIntent) -> float:
        if intent.type != "find_pattern" or not intent.patterns or hit.id not in self.graph:
            return 0.0
        tags = set(self.graph.patterns.get(hit.id, ()))
        matched = [tag for tag in intent.patterns if tag in tags]
        return len(matched) / len(intent.patterns)

    def factors(
        self,
        hit: SearchHit,
        intent: SearchIntent,
        context: SearchContext,
        max_score: float,
        recent: Set[str],
    ) -> RelevanceFactors:
        in_graph = hit.id in self.graph
        degree = self.graph.centrality_of(hit.id).degree if in_graph else 0
        return RelevanceFactors(
            semantic_similarity=(hit.score / max_score) if max_score > 0 else 0.0,
            structural_relevance=self.graph.normalized_pagerank(hit.id) if in_graph else 0.0,
            contextual_fit=self.contextual_fit(hit, context, recent),
            pattern_match=self.pattern_match(hit, intent),
            importance=(degree / self.graph.max_degree) if self.graph.max_degree else 0.0,
        )

    @staticmethod
    def score(factors: RelevanceFactors, intent: SearchIntent) -> float:
        weights = weights_for(intent.type)
        total = sum(getattr(factors, name) * weight for name, weight in weights.items())
        return total * intent.confidence

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def related_nodes(self, node_id: str) -> List[RelatedNode]:
        if node_id not in self.graph:
            return []
        related: List[RelatedNode] = []
        for edge in self.graph.outgoing(node_id):
            if edge.target == node_id:
                continue
            related.append(RelatedNode(
                edge.target, self.graph.nodes[edge.target].node_type, edge.relation_type, "outgoing",
            ))
        for edge in self.graph.incoming(node_id):
            if edge.source == node_id:
                continue
            related.append(RelatedNode(
                edge.source, self.graph.nodes[edge.source].node_type, edge.relation_type, "incoming",
            ))
        unique: List[RelatedNode] = []
        for item in related:
            if item not in unique:
                unique.append(item)
        return unique[:MAX_RELATED_NODES]

    @staticmethod
    def suggestions(
        factors: RelevanceFactors, context: SearchContext, degraded: bool,
    ) -> List[str]:
        out: List[str] = []
        if factors.importance > 0.7:
            out.append(SUGGEST_IMPORTANT)
        if factors.pattern_match > 0.5:
            out.append(SUGGEST_PATTERN)
        if context.task_context == "debugging" and factors.structural_relevance > 0.6:
            out.append(SUGGEST_CONNECTED)
        if degraded:
            out.append(SUGGEST_DEGRADED)
        return out

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def rank(
        self,
        hits: Sequence[SearchHit],
        intent: SearchIntent,
        context: Optional[SearchContext] = None,
    ) -> List[RankedResult]:
        """Score, enrich, and stably sort *hits* (ties keep fusion order)."""
        context = context or SearchContext()
        max_score = max((hit.score for hit in hits), default=0.0)
        recent = self._recent_ids(context)
        results: List[RankedResult] = []
        for hit in hits:
            factors = self.factors(hit, intent, context, max_score, recent)
            results.append(RankedResult(
                hit=hit,
                final_score=self.score(factors, intent),
                factors=factors,
                intent=intent.type,
                related_nodes=self.related_nodes(hit.id),
                suggested_actions=self.suggestions(factors, context, hit.explanation.degraded),
                impact_level=(
                    impact_level(factors.semantic_similarity)
                    if intent.type == "impact_analysis" else None
                ),
            ))
        results.sort(key=lambda result: -result.final_score)
        logger.debug("Ranked %d hits for intent %s", len(results), intent.type)
        return results


def rank_results(
    hits: Sequence[SearchHit],
    intent: SearchIntent,
    graph: CodeGraph,
    context: Optional[SearchContext] = None,
) -> List[RankedResult]:
    return IntelligentRanker(graph).rank(hits, intent, context)
