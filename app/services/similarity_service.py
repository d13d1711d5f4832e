"""
Nestmate — Embedding similarity.

Cosine similarity between two embedding vectors:

    cos(a, b) = (a · b) / (|a| x |b|)

The raw cosine lies in [-1, 1].  Hybrid scoring consumes ``embedding_score``,
which clamps the cosine into [0, 1] so every blended score stays in range.
Mismatched lengths, empty vectors and zero-magnitude vectors score 0.0.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import structlog

logger = structlog.get_logger("nestmate.similarity_service")


def cosine_similarity(vec_a: Sequence[float] | None, vec_b: Sequence[float] | None) -> float:
    if vec_a is None or vec_b is None:
        return 0.0
    if len(vec_a) != len(vec_b):
        logger.debug("cosine_length_mismatch", len_a=len(vec_a), len_b=len(vec_b))
        return 0.0
    if len(vec_a) == 0:
        return 0.0

    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    cosine = float(np.dot(a, b)) / (norm_a * norm_b)
    # guard against rounding drift just outside [-1, 1]
    return max(-1.0, min(1.0, cosine))


def embedding_score(vec_a: Sequence[float] | None, vec_b: Sequence[float] | None) -> float:
    """Cosine similarity clamped to [0, 1]."""
    return max(0.0, cosine_similarity(vec_a, vec_b))
