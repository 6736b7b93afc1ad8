"""Core data models used by extraction, graph, retrieval, and ranking layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import ResolutionWarning

NODE_TYPES = frozenset({"class", "function", "interface", "module", "variable", "enum"})

VISIBILITIES = frozenset({"public", "private", "protected", "internal"})

RELATION_TYPES = frozenset({
    "extends", "implements", "imports", "calls", "uses", "contains",
    "aggregates", "composes", "associates", "depends_on", "overrides",
    "decorates", "observes", "throws", "catches",
})

SEARCH_TYPES = frozenset({"vector", "keyword", "hybrid"})

CLUSTER_ROLES = frozenset({"core", "peripheral", "connector"})


# ---------------------------------------------------------------------------
# Graph entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    node_id: str
    name: str
    node_type: str
    file_path: str
    start_line: int
    end_line: int
    qualname: str = ""
    signature: str = ""
    visibility: str = "public"
    is_abstract: bool = False
    is_static: bool = False
    namespace: str = ""
    language: str = ""
    code: str = ""
    docstring: str = ""

    @property
    def display_name(self) -> str:
        return self.qualname or self.name


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    relation_type: str
    weight: float = 1.0


# ---------------------------------------------------------------------------
# Extractor output schema (language-agnostic, id-free)
# ---------------------------------------------------------------------------

@dataclass
class ExtractedEntity:
    name: str
    node_type: str
    start_line: int
    end_line: int
    qualname: str = ""
    signature: str = ""
    visibility: str = "public"
    is_abstract: bool = False
    is_static: bool = False
    namespace: str = ""
    code: str = ""
    docstring: str = ""


@dataclass
class ExtractedRelation:
    """Symbolic relation: names are resolved to node ids after extraction."""

    source_name: str
    target_name: str
    relation_type: str
    target_file: Optional[str] = None
    weight: float = 1.0


@dataclass
class Extraction:
    path: str
    language: str
    content: str = ""
    entities: List[ExtractedEntity] = field(default_factory=list)
    relations: List[ExtractedRelation] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Derived graph metrics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Centrality:
    degree: int = 0
    betweenness: float = 0.0
    closeness: float = 0.0
    pagerank: float = 0.0


@dataclass(frozen=True)
class ClusterInfo:
    cluster_id: str
    cohesion: float
    coupling: float
    role: str


@dataclass(frozen=True)
class GraphMetrics:
    node_count: int = 0
    edge_count: int = 0
    avg_degree: float = 0.0
    max_depth: int = 0
    cycle_count: int = 0


@dataclass
class GraphMetadata:
    node_id: str
    node_type: str
    signature: str
    incoming: List[Dict[str, Any]]
    outgoing: List[Dict[str, Any]]
    dependencies: List[str]
    dependents: List[str]
    siblings: List[str]
    patterns: List[str]
    centrality: Centrality
    cluster: ClusterInfo


@dataclass
class BuildReport:
    files_processed: int = 0
    files_failed: List[str] = field(default_factory=list)
    files_skipped: List[str] = field(default_factory=list)
    dropped_relations: List[ResolutionWarning] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@dataclass
class ScoreExplanation:
    fused_score: float = 0.0
    channel_ranks: Dict[str, int] = field(default_factory=dict)
    channel_scores: Dict[str, float] = field(default_factory=dict)
    degraded_channels: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_channels)


@dataclass
class SearchHit:
    id: str
    score: float
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    search_type: str = "hybrid"
    explanation: ScoreExplanation = field(default_factory=ScoreExplanation)


@dataclass
class SearchContext:
    current_file: Optional[str] = None
    current_function: Optional[str] = None
    current_class: Optional[str] = None
    recently_viewed: List[str] = field(default_factory=list)
    task_context: Optional[str] = None
    codebase_area: Optional[str] = None


@dataclass
class SearchIntent:
    type: str
    confidence: float
    keywords: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)


@dataclass
class RelevanceFactors:
    semantic_similarity: float = 0.0
    structural_relevance: float = 0.0
    contextual_fit: float = 0.0
    pattern_match: float = 0.0
    importance: float = 0.0


@dataclass
class RelatedNode:
    node_id: str
    node_type: str
    relation: str
    direction: str


@dataclass
class RankedResult:
    hit: SearchHit
    final_score: float
    factors: RelevanceFactors
    intent: str
    related_nodes: List[RelatedNode] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    impact_level: Optional[str] = None

    @property
    def id(self) -> str:
        return self.hit.id

    @property
    def search_type(self) -> str:
        return self.hit.search_type

    @property
    def degraded(self) -> bool:
        return self.hit.explanation.degraded


# ---------------------------------------------------------------------------
# Impact analysis
# ---------------------------------------------------------------------------

@dataclass
class ImpactReport:
    node_id: str
    direct: List[str]
    indirect: List[str]
    risk_level: str
    high_centrality: List[str] = field(default_factory=list)

    @property
    def total_affected(self) -> int:
        return len(self.direct) + len(self.indirect)

    @property
    def high_centrality_count(self) -> int:
        return len(self.high_centrality)


FileRecord = Tuple[str, str]
"""``(relative_path, content)`` pair fed to the ingest pipeline."""
