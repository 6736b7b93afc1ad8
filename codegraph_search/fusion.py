"""Reciprocal Rank Fusion of independent result channels.

``score(d) = sum over lists L containing d of 1 / (k + rank_L(d))`` with
1-based ranks.  Output is ordered by score descending, then id ascending,
so fusion is deterministic and independent of the order the lists arrive.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence, Tuple

from .models import ScoreExplanation, SearchHit
from .similarity import ChannelResult

logger = logging.getLogger(__name__)

DEFAULT_RRF_K = 60


def _best_ranks(ids: Sequence[str]) -> Dict[str, int]:
    ranks: Dict[str, int] = {}
    for position, doc_id in enumerate(ids, 1):
        ranks.setdefault(doc_id, position)
    return ranks


def reciprocal_rank_fusion(
    lists: Sequence[Sequence[str]], k: int = DEFAULT_RRF_K,
) -> List[Tuple[str, float]]:
    """Fuse ranked id lists.

    Duplicates inside one list count once, at their best rank.  Empty lists
    contribute nothing.

    Example::

        >>> reciprocal_rank_fusion([["d1", "d2"], ["d2", "d3"]])[0][0]
        'd2'
    """
    if k < 0:
        raise ValueError(f"RRF constant k must be non-negative, got {k}")
    scores: Dict[str, float] = {}
    for ids in lists:
        for doc_id, rank in _best_ranks(ids).items():
            scores[doc_id] = scores.get(doc_id, 0.0) + 1.0 / (k + rank)
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))


def fuse_channels(
    channels: Mapping[str, ChannelResult], k: int = DEFAULT_RRF_K,
) -> List[SearchHit]:
    """Fuse per-channel hits into :class:`SearchHit` objects with explanations.

    ``search_type`` is ``hybrid`` when every channel succeeded; otherwise it
    is the name of the surviving channel (or ``hybrid`` if several survived)
    and the explanation lists the degraded ones.
    """
    succeeded = sorted(name for name, result in channels.items() if result.ok)
    degraded = sorted(name for name, result in channels.items() if not result.ok)
    if degraded and len(succeeded) == 1:
        search_type = succeeded[0]
    else:
        search_type = "hybrid"

    fused = reciprocal_rank_fusion(
        [[hit.id for hit in channels[name].hits] for name in succeeded], k,
    )

    first_seen: Dict[str, SearchHit] = {}
    ranks: Dict[str, Dict[str, int]] = {}
    raw: Dict[str, Dict[str, float]] = {}
    for name in succeeded:
        for rank, hit in enumerate(channels[name].hits, 1):
            first_seen.setdefault(hit.id, hit)
            if hit.id not in ranks.get(name, {}):
                ranks.setdefault(name, {})[hit.id] = rank
                raw.setdefault(name, {})[hit.id] = hit.score

    out: List[SearchHit] = []
    for doc_id, score in fused:
        source = first_seen[doc_id]
        metadata = dict(source.metadata)
        content = source.content
        for name in succeeded:
            for hit in channels[name].hits:
                if hit.id == doc_id:
                    content = content or hit.content
                    for key, value in hit.metadata.items():
                        metadata.setdefault(key, value)
                    break
        out.append(SearchHit(
            id=doc_id,
            score=score,
            content=content,
            metadata=metadata,
            search_type=search_type,
            explanation=ScoreExplanation(
                fused_score=score,
                channel_ranks={name: ranks[name][doc_id] for name in succeeded if doc_id in ranks.get(name, {})},
                channel_scores={name: raw[name][doc_id] for name in succeeded if doc_id in raw.get(name, {})},
                degraded_channels=list(degraded),
            ),
        ))
    if degraded:
        logger.warning(
            "Fused %d hits from %s only; degraded channels: %s",
            len(out), ", ".join(succeeded) or "none", ", ".join(degraded),
        )
    return out
