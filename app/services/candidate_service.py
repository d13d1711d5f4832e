"""
Nestmate — Candidate retrieval and companion-vector enrichment.

CandidateRetriever
  Asks the vector index for the requester's nearest profile vectors.  With a
  locality tag the search runs in two sequential phases:

    phase 1  restricted to the requester's locality (city_code)
    phase 2  unrestricted, only if phase 1 came back short

  Results are merged first-seen-wins, so a candidate id never appears twice
  and the merged list is never shorter than the unrestricted query alone.

BatchEmbeddingFetcher
  Looks up one datapoint per candidate with bounded concurrency and a
  per-call timeout.  A failed or timed-out lookup drops that candidate only.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional, Sequence

import structlog

from app.config import get_settings
from app.schemas.vector import (
    Candidate,
    NeighborQuery,
    VectorType,
    datapoint_id,
    user_id_from_datapoint,
)
from app.services.errors import BackendUnavailableError, VectorUnavailableError
from app.services.vector_search_service import VectorSearchBackend

logger = structlog.get_logger("nestmate.candidate_service")


class CandidateRetriever:
    """Two-phase (local, then global) nearest-neighbour candidate search."""

    def __init__(
        self,
        backend: VectorSearchBackend,
        multiplier: int | None = None,
        cap: int | None = None,
    ) -> None:
        settings = get_settings()
        self.backend = backend
        self.vector_type: VectorType = VectorType.PROFILE
        self.multiplier: int = multiplier or settings.CANDIDATE_MULTIPLIER
        self.cap: int = cap or settings.CANDIDATE_CAP

    def candidate_limit(self, top_k: int) -> int:
        return max(1, min(top_k * self.multiplier, self.cap))

    async def retrieve(
        self,
        requester_id: str,
        top_k: int,
        locality: Optional[str] = None,
        query_vector: Optional[Sequence[float]] = None,
        limit: Optional[int] = None,
    ) -> list[Candidate]:
        """Return up to ``limit`` candidates (profile vectors included).

        Parameters
        ----------
        requester_id:
            The requesting user; never returned as a candidate.
        top_k:
            Number of final results wanted; the candidate pool is
            ``min(top_k x multiplier, cap)`` unless ``limit`` is given.
        locality:
            Locality tag for the local-first phase, or ``None`` to search
            globally only.
        query_vector:
            Explicit query vector.  By default the requester's stored
            preference datapoint is used as the query.
        limit:
            Override for the candidate pool size.

        Raises
        ------
        BackendUnavailableError
            When every attempted phase failed and nothing was retrieved.
        """
        limit = limit or self.candidate_limit(top_k)
        log = logger.bind(requester_id=requester_id, limit=limit, locality=locality)

        candidates: list[Candidate] = []
        seen: set[str] = set()
        failures: list[BackendUnavailableError] = []

        if locality:
            try:
                local = await self._query(requester_id, limit, locality, query_vector)
                self._merge(candidates, seen, local)
                log.info("retrieval_phase_local_complete", found=len(local))
            except BackendUnavailableError as exc:
                log.warning("retrieval_phase_local_failed", error=str(exc))
                failures.append(exc)

        if len(candidates) < limit:
            try:
                global_ = await self._query(requester_id, limit, None, query_vector)
                before = len(candidates)
                self._merge(candidates, seen, global_)
                log.info(
                    "retrieval_phase_global_complete",
                    found=len(global_),
                    added=len(candidates) - before,
                )
            except BackendUnavailableError as exc:
                log.warning("retrieval_phase_global_failed", error=str(exc))
                failures.append(exc)

        if not candidates and failures:
            raise failures[-1]

        return candidates[:limit]

    async def search(
        self,
        query_vector: Sequence[float],
        limit: int,
        locality: Optional[str] = None,
    ) -> list[Candidate]:
        """Single-phase profile search for an arbitrary query vector."""
        found = await self._query(None, limit, locality, query_vector)
        return found[:limit]

    async def _query(
        self,
        requester_id: Optional[str],
        limit: int,
        locality: Optional[str],
        query_vector: Optional[Sequence[float]],
    ) -> list[Candidate]:
        if query_vector is not None:
            query = NeighborQuery(
                vector=list(query_vector),
                neighbor_count=limit + 1,
                vector_type=self.vector_type,
                locality=locality,
            )
        else:
            query = NeighborQuery(
                datapoint_id=datapoint_id(requester_id, self.vector_type.companion),
                neighbor_count=limit + 1,  # one spare slot for the requester
                vector_type=self.vector_type,
                locality=locality,
            )

        neighbors = await self.backend.find_neighbors(query)

        results: list[Candidate] = []
        for neighbor in neighbors:
            user_id = user_id_from_datapoint(neighbor.datapoint_id, self.vector_type)
            if user_id is None or user_id == requester_id:
                continue
            results.append(
                Candidate(
                    user_id=user_id,
                    profile_vector=neighbor.vector or None,
                    similarity=neighbor.similarity,
                )
            )
        return results

    @staticmethod
    def _merge(candidates: list[Candidate], seen: set[str], incoming: Iterable[Candidate]) -> None:
        for candidate in incoming:
            if candidate.user_id in seen:
                continue
            seen.add(candidate.user_id)
            candidates.append(candidate)


class BatchEmbeddingFetcher:
    """Fetch one stored vector per user id, tolerating per-item failure."""

    def __init__(
        self,
        backend: VectorSearchBackend,
        concurrency: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.backend = backend
        self.concurrency: int = concurrency or settings.FETCH_CONCURRENCY
        self.timeout_seconds: float = timeout_seconds or settings.BACKEND_TIMEOUT_SECONDS

    async def fetch_one(self, user_id: str, vector_type: VectorType) -> list[float]:
        """Fetch a single vector; raises on failure, timeout or empty result."""
        key = datapoint_id(user_id, vector_type)
        try:
            vector = await asyncio.wait_for(
                self.backend.read_datapoint(key), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise BackendUnavailableError(f"Timed out fetching {key}") from exc
        if not vector:
            raise VectorUnavailableError(key)
        return vector

    async def fetch(
        self,
        user_ids: Iterable[str],
        vector_type: VectorType,
    ) -> dict[str, list[float]]:
        """Fetch ``vector_type`` vectors for every id; failed ids are omitted."""
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _worker(user_id: str) -> tuple[str, list[float] | None]:
            async with semaphore:
                try:
                    return user_id, await self.fetch_one(user_id, vector_type)
                except Exception as exc:
                    logger.warning(
                        "companion_vector_unavailable",
                        user_id=user_id,
                        vector_type=vector_type.value,
                        error=str(exc),
                    )
                    return user_id, None

        results = await asyncio.gather(*(_worker(uid) for uid in unique_ids))
        vectors = {uid: vec for uid, vec in results if vec is not None}

        logger.info(
            "batch_fetch_complete",
            vector_type=vector_type.value,
            requested=len(unique_ids),
            fetched=len(vectors),
        )
        return vectors
