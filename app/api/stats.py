"""
Nestmate — Locality Statistics API
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_locality_stats
from app.schemas.match import LocalityCount, LocalityStatsResponse
from app.services.locality_stats import LocalityStatsCache

logger = structlog.get_logger("nestmate.api.stats")

router = APIRouter()


@router.get(
    "/localities",
    response_model=LocalityStatsResponse,
    summary="Busiest localities by user count",
)
async def get_locality_stats_endpoint(
    limit: int = Query(10, ge=1, le=100),
    cache: LocalityStatsCache = Depends(get_locality_stats),
) -> LocalityStatsResponse:
    snapshot = cache.snapshot()
    top = cache.top(limit)
    logger.info("locality_stats_requested", limit=limit, localities=len(snapshot))
    return LocalityStatsResponse(
        total_localities=len(snapshot),
        top_localities=[LocalityCount(locality=tag, count=count) for tag, count in top],
    )
