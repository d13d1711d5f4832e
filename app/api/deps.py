"""
Nestmate — API dependencies.

The shared services are built once in the application lifespan and stored
on ``app.state``.  Routers reach them through these getters, which tests
replace with ``app.dependency_overrides``.
"""

from fastapi import Request

from app.services.locality_stats import LocalityStatsCache
from app.services.matching_service import MatchingService
from app.services.pairwise_service import PairwiseService


def get_matching_service(request: Request) -> MatchingService:
    return request.app.state.matching_service


def get_pairwise_service(request: Request) -> PairwiseService:
    return request.app.state.pairwise_service


def get_locality_stats(request: Request) -> LocalityStatsCache:
    return request.app.state.locality_stats
