"""
Nestmate — Hybrid (attribute + embedding) scoring.

For requester A and candidate B:

  forward  = w x attribute(A, B) + (1 - w) x cos(pref_A, profile_B)
  reverse  = w x attribute(B, A) + (1 - w) x cos(pref_B, profile_A)
  mutual   = (forward + reverse) / 2

A single weight ``w`` (``HYBRID_ATTRIBUTE_WEIGHT``, default 0.5) is shared by
both directions, so swapping A and B swaps forward and reverse and leaves
the mutual score unchanged.
"""

from __future__ import annotations

from datetime import date
from typing import Sequence

import structlog

from app.config import get_settings
from app.schemas.match import HybridScore, ScoreBreakdown
from app.schemas.user import UserProfile
from app.services.attribute_service import AttributeScorer
from app.services.similarity_service import embedding_score

logger = structlog.get_logger("nestmate.hybrid_service")


class HybridScorer:
    """Blend attribute compatibility and embedding similarity in both directions."""

    def __init__(
        self,
        attribute_scorer: AttributeScorer,
        attribute_weight: float | None = None,
    ) -> None:
        self.attribute_scorer = attribute_scorer
        if attribute_weight is None:
            attribute_weight = get_settings().HYBRID_ATTRIBUTE_WEIGHT
        self.w_attr: float = attribute_weight
        self.w_emb: float = 1.0 - attribute_weight

    def blend(self, attribute: float, embedding: float) -> float:
        return max(0.0, min(1.0, self.w_attr * attribute + self.w_emb * embedding))

    def score(
        self,
        user_a: UserProfile,
        user_b: UserProfile,
        a_profile: Sequence[float],
        a_preference: Sequence[float],
        b_profile: Sequence[float],
        b_preference: Sequence[float],
        as_of: date | None = None,
    ) -> HybridScore:
        """Compute forward, reverse and mutual hybrid scores for A and B.

        Parameters
        ----------
        user_a, user_b:
            The two users; A is the requester in the forward direction.
        a_profile, a_preference, b_profile, b_preference:
            The four embedding vectors (who each user is / what each wants).
        as_of:
            Reference date for age calculation.

        Returns
        -------
        HybridScore
            Forward, reverse and mutual scores plus the attribute and
            embedding components behind them.
        """
        as_of = as_of or date.today()

        attr_forward = self.attribute_scorer.compatibility(user_a, user_b, as_of)
        attr_reverse = self.attribute_scorer.compatibility(user_b, user_a, as_of)

        emb_forward = embedding_score(a_preference, b_profile)
        emb_reverse = embedding_score(b_preference, a_profile)

        forward = self.blend(attr_forward, emb_forward)
        reverse = self.blend(attr_reverse, emb_reverse)
        mutual = (forward + reverse) / 2.0

        logger.debug(
            "hybrid_scored",
            user_a=user_a.id,
            user_b=user_b.id,
            forward=round(forward, 4),
            reverse=round(reverse, 4),
            mutual=round(mutual, 4),
        )

        return HybridScore(
            forward_score=forward,
            reverse_score=reverse,
            mutual_score=mutual,
            breakdown=ScoreBreakdown(
                attribute_forward=attr_forward,
                attribute_reverse=attr_reverse,
                attribute_mutual=(attr_forward + attr_reverse) / 2.0,
                embedding_forward=emb_forward,
                embedding_reverse=emb_reverse,
                embedding_mutual=(emb_forward + emb_reverse) / 2.0,
            ),
        )
