"""
Nestmate — Pairwise compatibility validation.

Scores an explicit pair of users.  The pair is put in canonical
(lexicographic) order before any lookup, so ``(a, b)`` and ``(b, a)`` always
produce the same result.  Every non-scoring outcome is reported as a zero
score with a ``failure_reason`` (or ``error`` for backend trouble) rather
than an exception; only an unknown user raises.
"""

from __future__ import annotations

import asyncio
from datetime import date

import structlog

from app.schemas.match import PairwiseScores
from app.schemas.vector import VectorType
from app.services.attribute_service import HardFilter
from app.services.candidate_service import BatchEmbeddingFetcher
from app.services.errors import UserNotFoundError
from app.services.hybrid_service import HybridScorer
from app.services.similarity_service import embedding_score
from app.services.user_store import UserStore

logger = structlog.get_logger("nestmate.pairwise_service")

_LOW_MATCH_THRESHOLD = 0.5

_REJECTION_REASONS = {
    "both_reject": "both_reject",
    "a_rejects_b": "user_1_rejects_user_2",
    "b_rejects_a": "user_2_rejects_user_1",
}


class PairwiseService:
    def __init__(
        self,
        user_store: UserStore,
        fetcher: BatchEmbeddingFetcher,
        hybrid_scorer: HybridScorer,
        hard_filter: HardFilter,
    ) -> None:
        self.user_store = user_store
        self.fetcher = fetcher
        self.hybrid_scorer = hybrid_scorer
        self.hard_filter = hard_filter

    async def calculate_pairwise_scores(
        self,
        user_id_1: str,
        user_id_2: str,
        as_of: date | None = None,
    ) -> PairwiseScores:
        """Mutual compatibility of two specific users.

        Parameters
        ----------
        user_id_1, user_id_2:
            The pair, in any order.
        as_of:
            Reference date for age calculations; defaults to today.

        Returns
        -------
        PairwiseScores
            Scores relative to the normalized (sorted) order.  On any
            non-scoring outcome ``mutual_score`` is 0.0 and either
            ``failure_reason`` or ``error`` is set.

        Raises
        ------
        UserNotFoundError
            If either user has no stored record.
        """
        as_of = as_of or date.today()
        first, second = sorted((user_id_1, user_id_2))
        log = logger.bind(user_id_1=first, user_id_2=second)

        result = PairwiseScores(
            user_id_1=user_id_1,
            user_id_2=user_id_2,
            normalized_user_id_1=first,
            normalized_user_id_2=second,
        )

        if first == second:
            result.failure_reason = "same_user"
            return result

        user_1, user_2 = await asyncio.gather(
            self.user_store.get(first), self.user_store.get(second)
        )
        if user_1 is None:
            raise UserNotFoundError(first)
        if user_2 is None:
            raise UserNotFoundError(second)

        if not user_1.is_complete or not user_2.is_complete:
            log.info(
                "pairwise_incomplete_profile",
                user_1_complete=user_1.is_complete,
                user_2_complete=user_2.is_complete,
            )
            result.failure_reason = "incomplete_profile"
            return result

        verdict = self.hard_filter.check(user_1, user_2, as_of)
        if not verdict.passed:
            result.failure_reason = _REJECTION_REASONS[verdict.reason]
            log.info("pairwise_hard_filter_failed", reason=result.failure_reason)
            return result

        # every fetch settles before returning, so none outlives the request
        fetched = await asyncio.gather(
            self.fetcher.fetch_one(first, VectorType.PROFILE),
            self.fetcher.fetch_one(first, VectorType.PREFERENCE),
            self.fetcher.fetch_one(second, VectorType.PROFILE),
            self.fetcher.fetch_one(second, VectorType.PREFERENCE),
            return_exceptions=True,
        )
        failure = next((item for item in fetched if isinstance(item, BaseException)), None)
        if failure is not None:
            if not isinstance(failure, Exception):
                raise failure
            log.warning("pairwise_vectors_unavailable", error=str(failure))
            result.error = f"Embeddings unavailable: {failure}"
            return result
        profile_1, preference_1, profile_2, preference_2 = fetched
        result.meets_requirements = True

        hybrid = self.hybrid_scorer.score(
            user_1, user_2, profile_1, preference_1, profile_2, preference_2, as_of
        )
        result.mutual_score = hybrid.mutual_score
        result.forward_score = hybrid.forward_score
        result.reverse_score = hybrid.reverse_score
        result.breakdown = hybrid.breakdown
        result.similarity_score = embedding_score(profile_1, profile_2)
        result.is_low_match = hybrid.mutual_score <= _LOW_MATCH_THRESHOLD

        log.info(
            "pairwise_scored",
            mutual=round(result.mutual_score, 4),
            similarity=round(result.similarity_score, 4),
        )
        return result
