"""
Nestmate — Matching API

Endpoints for mutual and one-directional roommate matching, explicit
pairwise validation, and natural-language roommate search.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_matching_service, get_pairwise_service
from app.schemas.match import (
    FilteredSearchRequest,
    MutualMatchesResponse,
    PairwiseScores,
    QuerySearchResponse,
    SimilarRoommatesResponse,
)
from app.services.errors import (
    BackendUnavailableError,
    EmbeddingServiceError,
    UserNotFoundError,
)
from app.services.matching_service import MatchingService
from app.services.pairwise_service import PairwiseService

logger = structlog.get_logger("nestmate.api.matching")

router = APIRouter()


@contextmanager
def _translate_errors(**context: str) -> Iterator[None]:
    """Map engine exceptions onto HTTP status codes."""
    try:
        yield
    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {exc.user_id} not found.",
        ) from exc
    except (BackendUnavailableError, EmbeddingServiceError) as exc:
        logger.error("matching_backend_unavailable", error=str(exc), **context)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Matching backend temporarily unavailable.",
        ) from exc


# ──────────────────────────────────────────────────────────────────────────────
# GET /similar/{user_id}: One-directional matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/similar/{user_id}",
    response_model=SimilarRoommatesResponse,
    summary="Candidates who fit the requester's preferences",
)
async def find_similar_roommates(
    user_id: str,
    top_k: int = Query(10, ge=1, le=100),
    service: MatchingService = Depends(get_matching_service),
) -> SimilarRoommatesResponse:
    with _translate_errors(user_id=user_id):
        return await service.find_similar_roommates(user_id, top_k)


# ──────────────────────────────────────────────────────────────────────────────
# GET /mutual/{user_id}: Bidirectional matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/mutual/{user_id}",
    response_model=MutualMatchesResponse,
    summary="Candidates ranked by mutual compatibility",
)
async def find_mutual_matches(
    user_id: str,
    top_k: int = Query(10, ge=1, le=100),
    service: MatchingService = Depends(get_matching_service),
) -> MutualMatchesResponse:
    """Both users must clear each other's hard requirements; results are
    ranked by the average of the forward and reverse hybrid scores."""
    with _translate_errors(user_id=user_id):
        return await service.find_mutual_matches(user_id, top_k)


# ──────────────────────────────────────────────────────────────────────────────
# GET /pairwise/{user_id_1}/{user_id_2}: Explicit pair
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/pairwise/{user_id_1}/{user_id_2}",
    response_model=PairwiseScores,
    summary="Mutual compatibility of two specific users",
)
async def calculate_pairwise_scores(
    user_id_1: str,
    user_id_2: str,
    service: PairwiseService = Depends(get_pairwise_service),
) -> PairwiseScores:
    with _translate_errors(user_id_1=user_id_1, user_id_2=user_id_2):
        return await service.calculate_pairwise_scores(user_id_1, user_id_2)


# ──────────────────────────────────────────────────────────────────────────────
# Natural-language search
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/search",
    response_model=QuerySearchResponse,
    summary="Search roommates by free-text description",
)
async def search_by_query(
    query: str = Query(..., min_length=1),
    top_k: int = Query(10, ge=1, le=100),
    service: MatchingService = Depends(get_matching_service),
) -> QuerySearchResponse:
    with _translate_errors(query=query):
        return await service.search_by_query(query, top_k)


@router.post(
    "/search/filtered",
    response_model=QuerySearchResponse,
    summary="Free-text search narrowed by budget and postal code",
)
async def search_with_filters(
    body: FilteredSearchRequest,
    service: MatchingService = Depends(get_matching_service),
) -> QuerySearchResponse:
    with _translate_errors(query=body.query):
        return await service.search_with_filters(
            body.query,
            min_budget=body.min_budget,
            max_budget=body.max_budget,
            zip_code=body.zip_code,
            top_k=body.top_k,
        )
