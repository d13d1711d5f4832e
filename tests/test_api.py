"""API tests — routing, response models and error mapping."""
import pytest
from unittest.mock import AsyncMock, MagicMock

import httpx

from app.api.deps import get_locality_stats, get_matching_service, get_pairwise_service
from app.main import app
from app.schemas.match import (
    MutualMatchesResponse,
    PairwiseScores,
    PipelineDiagnostics,
    QueryMatch,
    QuerySearchResponse,
    SimilarRoommate,
    SimilarRoommatesResponse,
)
from app.services.errors import BackendUnavailableError, EmbeddingServiceError, UserNotFoundError
from app.services.locality_stats import LocalityStatsCache
from conftest import FakeUserStore, make_user


@pytest.fixture
def matching_service():
    return MagicMock()


@pytest.fixture
def pairwise_service():
    return MagicMock()


@pytest.fixture
async def locality_stats():
    cache = LocalityStatsCache(prefix_length=3)
    await cache.rebuild(FakeUserStore([
        make_user("a", zip_code="10001"),
        make_user("b", zip_code="10002"),
        make_user("c", zip_code="94110"),
    ]))
    return cache


@pytest.fixture
async def client(matching_service, pairwise_service, locality_stats):
    app.dependency_overrides[get_matching_service] = lambda: matching_service
    app.dependency_overrides[get_pairwise_service] = lambda: pairwise_service
    app.dependency_overrides[get_locality_stats] = lambda: locality_stats
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestMatchingEndpoints:
    """Matching routes delegate to the services."""

    async def test_mutual_matches(self, client, matching_service):
        matching_service.find_mutual_matches = AsyncMock(
            return_value=MutualMatchesResponse(
                user_id="req", total_matches=0, matches=[], diagnostics=PipelineDiagnostics(attempted=3)
            )
        )

        response = await client.get("/api/matching/mutual/req", params={"top_k": 5})

        assert response.status_code == 200
        assert response.json()["diagnostics"]["attempted"] == 3
        matching_service.find_mutual_matches.assert_awaited_once_with("req", 5)

    async def test_similar_roommates(self, client, matching_service):
        user = make_user("c1")
        matching_service.find_similar_roommates = AsyncMock(
            return_value=SimilarRoommatesResponse(
                user_id="req",
                total_matches=1,
                matches=[SimilarRoommate(user_id="c1", user=user, score=0.8, attribute_score=0.9, embedding_score=0.7)],
                diagnostics=PipelineDiagnostics(attempted=1, scored=1),
            )
        )

        response = await client.get("/api/matching/similar/req")

        body = response.json()
        assert response.status_code == 200
        assert body["matches"][0]["user_id"] == "c1"
        matching_service.find_similar_roommates.assert_awaited_once_with("req", 10)

    async def test_top_k_validated(self, client):
        response = await client.get("/api/matching/mutual/req", params={"top_k": 0})
        assert response.status_code == 422

    async def test_pairwise(self, client, pairwise_service):
        pairwise_service.calculate_pairwise_scores = AsyncMock(
            return_value=PairwiseScores(
                user_id_1="bob",
                user_id_2="alice",
                normalized_user_id_1="alice",
                normalized_user_id_2="bob",
                failure_reason="same_user",
            )
        )

        response = await client.get("/api/matching/pairwise/bob/alice")

        assert response.status_code == 200
        assert response.json()["normalized_user_id_1"] == "alice"

    async def test_query_search(self, client, matching_service):
        matching_service.search_by_query = AsyncMock(
            return_value=QuerySearchResponse(
                query="quiet",
                total_matches=1,
                matches=[QueryMatch(user_id="u1", user=make_user("u1"), similarity_score=0.9)],
            )
        )

        response = await client.get("/api/matching/search", params={"query": "quiet", "top_k": 3})

        assert response.status_code == 200
        assert response.json()["matches"][0]["similarity_score"] == pytest.approx(0.9)
        matching_service.search_by_query.assert_awaited_once_with("quiet", 3)

    async def test_filtered_search(self, client, matching_service):
        matching_service.search_with_filters = AsyncMock(
            return_value=QuerySearchResponse(query="tidy", total_matches=0, matches=[])
        )

        response = await client.post(
            "/api/matching/search/filtered",
            json={"query": "tidy", "min_budget": 800, "zip_code": "10001"},
        )

        assert response.status_code == 200
        matching_service.search_with_filters.assert_awaited_once_with(
            "tidy", min_budget=800, max_budget=None, zip_code="10001", top_k=10
        )


class TestErrorMapping:
    """Engine exceptions map onto HTTP status codes."""

    async def test_unknown_user_is_404(self, client, matching_service):
        matching_service.find_mutual_matches = AsyncMock(side_effect=UserNotFoundError("ghost"))

        response = await client.get("/api/matching/mutual/ghost")

        assert response.status_code == 404
        assert "ghost" in response.json()["detail"]

    async def test_backend_down_is_503(self, client, matching_service):
        matching_service.find_similar_roommates = AsyncMock(side_effect=BackendUnavailableError("down"))

        response = await client.get("/api/matching/similar/req")

        assert response.status_code == 503

    async def test_embedding_failure_is_503(self, client, matching_service):
        matching_service.search_by_query = AsyncMock(side_effect=EmbeddingServiceError("quota"))

        response = await client.get("/api/matching/search", params={"query": "x"})

        assert response.status_code == 503


class TestStatsEndpoint:
    async def test_locality_stats(self, client):
        response = await client.get("/api/stats/localities", params={"limit": 1})

        body = response.json()
        assert response.status_code == 200
        assert body["total_localities"] == 2
        assert body["top_localities"] == [{"locality": "100", "count": 2}]
