"""
Nestmate — Mutual Roommate Matching Pipeline

Orchestrates one matching request end to end:
  Stage 1: Retrieval   — nearest profile vectors to the requester's
                         preference vector, local locality first
  Stage 2: Enrichment  — companion preference vectors, the requester's own
                         vectors and candidate records, fetched concurrently
  Stage 3: Filtering   — incomplete profiles and bidirectional hard
                         requirement failures are dropped
  Stage 4: Scoring     — hybrid forward / reverse / mutual scores

  mutual = (forward + reverse) / 2

Candidates whose vectors cannot be fetched are skipped and counted; a single
missing vector never fails the whole request.  Ad-hoc natural-language
search (``search_by_query`` / ``search_with_filters``) embeds the query and
ranks profile vectors by similarity alone.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Optional

import structlog

from app.config import get_settings
from app.schemas.match import (
    MatchResult,
    MutualMatchesResponse,
    PipelineDiagnostics,
    QueryMatch,
    QuerySearchResponse,
    SimilarRoommate,
    SimilarRoommatesResponse,
)
from app.schemas.user import UserProfile
from app.schemas.vector import Candidate, VectorType
from app.services.attribute_service import HardFilter
from app.services.candidate_service import BatchEmbeddingFetcher, CandidateRetriever
from app.services.embedding_service import EmbeddingProvider
from app.services.errors import EmbeddingServiceError, UserNotFoundError
from app.services.hybrid_service import HybridScorer
from app.services.similarity_service import embedding_score
from app.services.user_store import UserStore

logger = structlog.get_logger("nestmate.matching_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

_QUERY_PREFIX = "Looking for: "
_FILTERED_SEARCH_MULTIPLIER = 5


class MatchingService:
    """Retrieve, enrich, filter and rank roommate candidates.

    Every collaborator is injected so that the service can be exercised with
    in-memory fakes and wired once in the application lifespan.
    """

    def __init__(
        self,
        user_store: UserStore,
        retriever: CandidateRetriever,
        fetcher: BatchEmbeddingFetcher,
        hybrid_scorer: HybridScorer,
        hard_filter: HardFilter,
        embedding_provider: EmbeddingProvider | None = None,
        locality_prefix_length: int | None = None,
    ) -> None:
        """Initialise the pipeline.

        Parameters
        ----------
        user_store:
            Read-only source of user records.
        retriever:
            Two-phase nearest-neighbour candidate search.
        fetcher:
            Bounded-concurrency lookup of stored vectors.
        hybrid_scorer:
            Attribute + embedding blend; its ``attribute_scorer`` is also
            used for one-directional scoring.
        hard_filter:
            Bidirectional hard requirement gate.
        embedding_provider:
            Text embedder for ad-hoc query search.  Optional; query search
            raises ``EmbeddingServiceError`` without it.
        locality_prefix_length:
            Postal-code prefix length used as the locality tag.
        """
        self.user_store = user_store
        self.retriever = retriever
        self.fetcher = fetcher
        self.hybrid_scorer = hybrid_scorer
        self.attribute_scorer = hybrid_scorer.attribute_scorer
        self.hard_filter = hard_filter
        self.embedding_provider = embedding_provider
        self.locality_prefix_length: int = (
            locality_prefix_length or get_settings().LOCALITY_PREFIX_LENGTH
        )

    # ── Mutual matches ───────────────────────────────────────────────────

    async def find_mutual_matches(
        self,
        user_id: str,
        top_k: int = 10,
        as_of: date | None = None,
    ) -> MutualMatchesResponse:
        """Rank candidates by mutual (bidirectional) hybrid score.

        Parameters
        ----------
        user_id:
            The requester.
        top_k:
            Maximum number of matches to return.
        as_of:
            Reference date for age calculations; defaults to today.

        Returns
        -------
        MutualMatchesResponse
            Matches sorted by mutual score (descending, ties by user id)
            plus per-stage diagnostics.

        Raises
        ------
        UserNotFoundError
            If ``user_id`` has no stored record.
        BackendUnavailableError
            If candidate retrieval failed outright.
        """
        as_of = as_of or date.today()
        log = logger.bind(user_id=user_id, top_k=top_k)
        diagnostics = PipelineDiagnostics()

        requester = await self._require_user(user_id)
        if not requester.is_complete:
            log.info("requester_profile_incomplete")
            return MutualMatchesResponse(
                user_id=user_id, total_matches=0, matches=[], diagnostics=diagnostics
            )

        # ── Stage 1: Retrieval ────────────────────────────────────────
        candidates = await self.retriever.retrieve(
            user_id, top_k, locality=requester.locality(self.locality_prefix_length)
        )
        if not candidates:
            log.info("no_candidates_found")
            return MutualMatchesResponse(
                user_id=user_id, total_matches=0, matches=[], diagnostics=diagnostics
            )

        # ── Stage 2: Enrichment ───────────────────────────────────────
        candidate_ids = [c.user_id for c in candidates]
        missing_profile_ids = [c.user_id for c in candidates if not c.profile_vector]

        (
            preference_vectors,
            fetched_profiles,
            requester_profile,
            requester_preference,
            users,
        ) = await asyncio.gather(
            self.fetcher.fetch(candidate_ids, self.retriever.vector_type.companion),
            self.fetcher.fetch(missing_profile_ids, VectorType.PROFILE),
            self.fetcher.fetch([user_id], VectorType.PROFILE),
            self.fetcher.fetch([user_id], VectorType.PREFERENCE),
            self.user_store.get_many(candidate_ids),
        )
        a_profile = requester_profile.get(user_id)
        a_preference = requester_preference.get(user_id)
        if a_profile is None or a_preference is None:
            log.warning(
                "requester_vectors_unavailable",
                has_profile=a_profile is not None,
                has_preference=a_preference is not None,
            )

        # ── Stages 3 & 4: Filtering and scoring ───────────────────────
        matches: list[MatchResult] = []
        for candidate in candidates:
            diagnostics.attempted += 1
            user = users.get(candidate.user_id)
            if user is None or not user.is_complete:
                diagnostics.skipped_incomplete += 1
                continue

            if not self.hard_filter.check(requester, user, as_of).passed:
                diagnostics.skipped_hard_filter += 1
                continue

            b_profile = candidate.profile_vector or fetched_profiles.get(candidate.user_id)
            b_preference = preference_vectors.get(candidate.user_id)
            if a_profile is None or a_preference is None or b_profile is None or b_preference is None:
                diagnostics.skipped_missing_vector += 1
                continue

            hybrid = self.hybrid_scorer.score(
                requester, user, a_profile, a_preference, b_profile, b_preference, as_of
            )
            matches.append(
                MatchResult(
                    user_id=user.id,
                    user=user,
                    forward_score=hybrid.forward_score,
                    reverse_score=hybrid.reverse_score,
                    mutual_score=hybrid.mutual_score,
                    attribute_score=hybrid.breakdown.attribute_mutual,
                    embedding_score=hybrid.breakdown.embedding_mutual,
                    breakdown=hybrid.breakdown,
                )
            )
            diagnostics.scored += 1

        matches.sort(key=lambda m: (-m.mutual_score, m.user_id))
        matches = matches[:top_k]

        log.info("mutual_matching_complete", returned=len(matches), **diagnostics.model_dump())
        return MutualMatchesResponse(
            user_id=user_id,
            total_matches=len(matches),
            matches=matches,
            diagnostics=diagnostics,
        )

    # ── Similar roommates (one-directional) ──────────────────────────────

    async def find_similar_roommates(
        self,
        user_id: str,
        top_k: int = 10,
        as_of: date | None = None,
    ) -> SimilarRoommatesResponse:
        """Rank candidates by how well they fit the requester alone.

        Only the requester's hard requirements apply, and only the forward
        hybrid score (requester preferences vs candidate profile) is used.
        """
        as_of = as_of or date.today()
        log = logger.bind(user_id=user_id, top_k=top_k)
        diagnostics = PipelineDiagnostics()

        requester = await self._require_user(user_id)
        if not requester.is_complete:
            log.info("requester_profile_incomplete")
            return SimilarRoommatesResponse(
                user_id=user_id, total_matches=0, matches=[], diagnostics=diagnostics
            )

        candidates = await self.retriever.retrieve(
            user_id, top_k, locality=requester.locality(self.locality_prefix_length)
        )
        if not candidates:
            log.info("no_candidates_found")
            return SimilarRoommatesResponse(
                user_id=user_id, total_matches=0, matches=[], diagnostics=diagnostics
            )

        candidate_ids = [c.user_id for c in candidates]
        missing_profile_ids = [c.user_id for c in candidates if not c.profile_vector]
        fetched_profiles, requester_preference, users = await asyncio.gather(
            self.fetcher.fetch(missing_profile_ids, VectorType.PROFILE),
            self.fetcher.fetch([user_id], VectorType.PREFERENCE),
            self.user_store.get_many(candidate_ids),
        )
        a_preference = requester_preference.get(user_id)

        matches: list[SimilarRoommate] = []
        for candidate in candidates:
            diagnostics.attempted += 1
            user = users.get(candidate.user_id)
            if user is None or not user.is_complete:
                diagnostics.skipped_incomplete += 1
                continue

            if not self.attribute_scorer.meets_hard_requirements(requester, user, as_of):
                diagnostics.skipped_hard_filter += 1
                continue

            b_profile = candidate.profile_vector or fetched_profiles.get(candidate.user_id)
            if a_preference is None or b_profile is None:
                diagnostics.skipped_missing_vector += 1
                continue

            attribute = self.attribute_scorer.compatibility(requester, user, as_of)
            embedding = embedding_score(a_preference, b_profile)
            matches.append(
                SimilarRoommate(
                    user_id=user.id,
                    user=user,
                    score=self.hybrid_scorer.blend(attribute, embedding),
                    attribute_score=attribute,
                    embedding_score=embedding,
                )
            )
            diagnostics.scored += 1

        matches.sort(key=lambda m: (-m.score, m.user_id))
        matches = matches[:top_k]

        log.info("similar_roommates_complete", returned=len(matches), **diagnostics.model_dump())
        return SimilarRoommatesResponse(
            user_id=user_id,
            total_matches=len(matches),
            matches=matches,
            diagnostics=diagnostics,
        )

    # ── Ad-hoc query search ──────────────────────────────────────────────

    async def search_by_query(self, query: str, top_k: int = 10) -> QuerySearchResponse:
        """Find users whose profile vectors are closest to a free-text query."""
        candidates = await self._search_profiles(query, top_k)
        users = await self.user_store.get_many(c.user_id for c in candidates)
        matches = self._to_query_matches(candidates, users)[:top_k]

        logger.info("query_search_complete", top_k=top_k, returned=len(matches))
        return QuerySearchResponse(query=query, total_matches=len(matches), matches=matches)

    async def search_with_filters(
        self,
        query: str,
        min_budget: Optional[int] = None,
        max_budget: Optional[int] = None,
        zip_code: Optional[str] = None,
        top_k: int = 10,
    ) -> QuerySearchResponse:
        """Query search narrowed by budget overlap and exact postal code.

        Over-fetches ``top_k x 5`` neighbours so that filtering still leaves
        enough results.  A bound only applies to users who have the field:
        users without a budget or postal code pass that filter.
        """
        candidates = await self._search_profiles(query, top_k * _FILTERED_SEARCH_MULTIPLIER)
        users = await self.user_store.get_many(c.user_id for c in candidates)

        def _keep(user: UserProfile) -> bool:
            if user.budget is not None:
                if min_budget is not None and user.budget.max < min_budget:
                    return False
                if max_budget is not None and user.budget.min > max_budget:
                    return False
            if zip_code and user.zip_code and user.zip_code.strip() != zip_code.strip():
                return False
            return True

        matches = [
            match for match in self._to_query_matches(candidates, users) if _keep(match.user)
        ][:top_k]

        logger.info(
            "filtered_search_complete",
            top_k=top_k,
            fetched=len(candidates),
            returned=len(matches),
            min_budget=min_budget,
            max_budget=max_budget,
            zip_code=zip_code,
        )
        return QuerySearchResponse(query=query, total_matches=len(matches), matches=matches)

    # ── Internal helpers ─────────────────────────────────────────────────

    async def _require_user(self, user_id: str) -> UserProfile:
        user = await self.user_store.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def _search_profiles(self, query: str, limit: int) -> list[Candidate]:
        if self.embedding_provider is None:
            raise EmbeddingServiceError("No embedding provider configured")
        vector = await self.embedding_provider.embed(_QUERY_PREFIX + query)
        return await self.retriever.search(vector, limit)

    @staticmethod
    def _to_query_matches(
        candidates: list[Candidate],
        users: dict[str, UserProfile],
    ) -> list[QueryMatch]:
        # the index can return users deleted from the store
        return [
            QueryMatch(user_id=c.user_id, user=users[c.user_id], similarity_score=c.similarity)
            for c in candidates
            if c.user_id in users
        ]
