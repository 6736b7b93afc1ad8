"""Embedding provider interface and the built-in hash embedder.

Real embedding generation is delegated to an external provider; anything
with ``embed_text(str) -> List[float]`` and a ``dim`` attribute fits.
``HashEmbeddingModel`` is the deterministic, zero-dependency default used for
local indexing and tests: it gives keyword-level similarity only.
"""

from __future__ import annotations

import logging
import math
from hashlib import blake2b
from typing import Any, Dict, Iterable, List, Protocol, Sequence, Tuple, runtime_checkable

from .config import DEFAULT_EMBEDDING_DIM
from .text_analysis import code_tokens

logger = logging.getLogger(__name__)

_HASH_PERSON = b"cg-search"


@runtime_checkable
class EmbeddingProvider(Protocol):
    """``embed(text) -> vector<float, D>``; fallible, called synchronously."""

    dim: int

    def embed_text(self, text: str) -> List[float]:
        ...


class HashEmbeddingModel:
    """Deterministic token-hashing embedder, no ML dependencies.

    Tokens come from the code-aware analyzer so ``getUserName`` and
    ``get_user_name`` land on the same buckets.
    """

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        if dim <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dim}")
        self.dim = dim

    def _bucket(self, token: str) -> Tuple[int, float]:
        digest = blake2b(token.encode("utf-8"), digest_size=8, person=_HASH_PERSON).digest()
        value = int.from_bytes(digest, "little")
        return value % self.dim, -1.0 if value >> 63 else 1.0

    def embed_text(self, text: str) -> List[float]:
        counts: Dict[int, float] = {}
        for token in code_tokens(text):
            slot, sign = self._bucket(token)
            counts[slot] = counts.get(slot, 0.0) + sign
        vec = [counts.get(slot, 0.0) for slot in range(self.dim)]
        length = _norm(vec)
        return [v / length for v in vec] if length else vec

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return list(map(self.embed_text, texts))


def get_embedder(dim: int = DEFAULT_EMBEDDING_DIM) -> HashEmbeddingModel:
    """Return the default local embedder for *dim*-sized vectors."""
    return HashEmbeddingModel(dim=dim)


# ===================================================================
# Vector helpers
# ===================================================================

def _norm(vec: Sequence[float]) -> float:
    return math.sqrt(math.fsum(v * v for v in vec))


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine of the angle between *vec_a* and *vec_b*, in ``[-1, 1]``.

    Empty, zero, or differently sized vectors score ``0.0``.
    """
    if len(vec_a) != len(vec_b) or not vec_a:
        return 0.0
    denominator = _norm(vec_a) * _norm(vec_b)
    if denominator == 0.0:
        return 0.0
    return math.fsum(a * b for a, b in zip(vec_a, vec_b)) / denominator


def validate_embedding(vec: Sequence[float], expected_dim: int) -> Dict[str, Any]:
    """Check a provider's output before it reaches the vector channel.

    Returns ``{"ok": bool, "dim": int, "warnings": [...]}``.
    """
    problems: List[str] = []
    if len(vec) != expected_dim:
        problems.append(f"expected {expected_dim} dimensions, got {len(vec)}")
    if not all(math.isfinite(v) for v in vec):
        problems.append("non-finite component")
    return {"ok": not problems, "dim": len(vec), "warnings": problems}
