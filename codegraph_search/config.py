"""Configuration paths and typed settings for CodeGraph Search."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)

BASE_DIR = Path(
    os.environ.get("CODEGRAPH_SEARCH_HOME", str(Path.home() / ".codegraph-search"))
).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"
INDEX_DIR = BASE_DIR / "indexes"

DEFAULT_INDEX_NAME = "codebase-index"
DEFAULT_EMBEDDING_DIM = 256


@dataclass
class SearchSettings:
    """Retrieval knobs: backend choice, fusion, and channel resilience."""

    backend: str = os.environ.get("CODEGRAPH_SEARCH_BACKEND", "memory")
    index_name: str = DEFAULT_INDEX_NAME
    index_dir: str = str(INDEX_DIR)
    embedding_dim: int = DEFAULT_EMBEDDING_DIM
    rrf_k: int = 60
    candidate_multiplier: int = 2
    channel_timeout: float = 5.0
    max_retries: int = 2
    retry_backoff: float = 0.05
    max_query_length: int = 2000
    max_workers: int = 4


@dataclass
class GraphSettings:
    """Graph build and centrality parameters."""

    dependency_depth: int = 3
    pagerank_damping: float = 0.85
    pagerank_epsilon: float = 1e-6
    pagerank_max_iter: int = 100
    # None clusters over every relation type, so no edge crosses a cluster:
    # coupling stays 0 and no node is a connector.  A subset such as
    # {"contains", "extends", "implements"} yields structural clusters.
    cluster_relation_types: Optional[FrozenSet[str]] = None


@dataclass
class ImpactSettings:
    """Risk classification thresholds for impact analysis."""

    high_total: int = 20
    high_central: int = 5
    medium_total: int = 10
    medium_central: int = 2
    high_centrality_threshold: float = 0.5
    default_max_distance: int = 3


@dataclass
class Settings:
    search: SearchSettings = field(default_factory=SearchSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)
    impact: ImpactSettings = field(default_factory=ImpactSettings)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        out = dataclasses.asdict(self)
        types = out["graph"]["cluster_relation_types"]
        if types is not None:
            out["graph"]["cluster_relation_types"] = sorted(types)
        return out


def _apply_section(target: Any, section: str, values: Dict[str, Any]) -> None:
    known = {f.name: f for f in dataclasses.fields(target)}
    for key, value in values.items():
        if key not in known:
            logger.warning("Unknown setting [%s].%s ignored", section, key)
            continue
        if key == "cluster_relation_types" and value is not None:
            value = frozenset(value)
        setattr(target, key, value)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Build :class:`Settings` from defaults overlaid with the TOML file.

    Resolution order per key: ``[section]`` table in ``config.toml``,
    then the dataclass default.
    """
    from .config_manager import load_full_config

    settings = Settings()
    payload = load_full_config(path)
    for section in ("search", "graph", "impact"):
        values = payload.get(section)
        if isinstance(values, dict):
            _apply_section(getattr(settings, section), section, values)
    return settings


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    INDEX_DIR.mkdir(parents=True, exist_ok=True)
