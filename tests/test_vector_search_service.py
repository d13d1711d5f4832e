"""Unit tests for datapoint helpers and the Vertex AI vector search adapter."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as gapi_exceptions
from pydantic import ValidationError

from app.schemas.vector import (
    Neighbor,
    NeighborQuery,
    VectorType,
    datapoint_id,
    user_id_from_datapoint,
)
from app.services.errors import BackendUnavailableError, VectorUnavailableError
from app.services.vector_search_service import (
    LOCALITY_NAMESPACE,
    VECTOR_TYPE_NAMESPACE,
    VertexVectorSearchBackend,
)


class TestDatapointHelpers:
    """Datapoint naming: {user_id}_profile / {user_id}_preference."""

    def test_datapoint_id(self):
        assert datapoint_id("abc", VectorType.PROFILE) == "abc_profile"
        assert datapoint_id("abc", VectorType.PREFERENCE) == "abc_preference"

    def test_user_id_from_datapoint(self):
        assert user_id_from_datapoint("user_42_profile", VectorType.PROFILE) == "user_42"

    def test_other_vector_type_rejected(self):
        assert user_id_from_datapoint("abc_preference", VectorType.PROFILE) is None
        assert user_id_from_datapoint("_profile", VectorType.PROFILE) is None

    def test_companion(self):
        assert VectorType.PROFILE.companion is VectorType.PREFERENCE
        assert VectorType.PREFERENCE.companion is VectorType.PROFILE

    def test_similarity_from_distance(self):
        assert Neighbor(datapoint_id="a_profile", distance=0.25).similarity == pytest.approx(0.75)
        assert Neighbor(datapoint_id="a_profile", distance=1.6).similarity == 0.0

    def test_query_needs_exactly_one_source(self):
        with pytest.raises(ValidationError):
            NeighborQuery(neighbor_count=5)
        with pytest.raises(ValidationError):
            NeighborQuery(neighbor_count=5, datapoint_id="a_preference", vector=[1.0])


def _neighbors_response(*items):
    return SimpleNamespace(
        nearest_neighbors=[
            SimpleNamespace(
                neighbors=[
                    SimpleNamespace(
                        distance=distance,
                        datapoint=SimpleNamespace(datapoint_id=dp_id, feature_vector=vector),
                    )
                    for dp_id, distance, vector in items
                ]
            )
        ]
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.find_neighbors = AsyncMock()
    mock.read_index_datapoints = AsyncMock()
    mock.transport.close = AsyncMock()
    return mock


@pytest.fixture
def backend(client):
    return VertexVectorSearchBackend(
        client=client,
        index_endpoint="projects/123/locations/us-central1/indexEndpoints/456",
        deployed_index_id="nestmate_deployed",
        retry_attempts=2,
        timeout_seconds=1.0,
    )


class TestFindNeighbors:
    """Nearest-neighbour queries against the deployed index."""

    async def test_parses_neighbors(self, backend, client):
        client.find_neighbors.return_value = _neighbors_response(
            ("u1_profile", 0.1, [1.0, 0.0]),
            ("u2_profile", 0.4, [0.5, 0.5]),
        )

        neighbors = await backend.find_neighbors(
            NeighborQuery(datapoint_id="req_preference", neighbor_count=3, vector_type=VectorType.PROFILE)
        )

        assert [n.datapoint_id for n in neighbors] == ["u1_profile", "u2_profile"]
        assert neighbors[0].vector == [1.0, 0.0]
        assert neighbors[1].similarity == pytest.approx(0.6)

    async def test_request_carries_restricts(self, backend, client):
        client.find_neighbors.return_value = _neighbors_response()

        await backend.find_neighbors(
            NeighborQuery(
                datapoint_id="req_preference",
                neighbor_count=11,
                vector_type=VectorType.PROFILE,
                locality="100",
            )
        )

        request = client.find_neighbors.call_args.kwargs["request"]
        query = request.queries[0]
        assert request.return_full_datapoint is True
        assert request.deployed_index_id == "nestmate_deployed"
        assert query.neighbor_count == 11
        assert query.datapoint.datapoint_id == "req_preference"
        restricts = {r.namespace: list(r.allow_list) for r in query.datapoint.restricts}
        assert restricts == {VECTOR_TYPE_NAMESPACE: ["profile"], LOCALITY_NAMESPACE: ["100"]}

    async def test_empty_response(self, backend, client):
        client.find_neighbors.return_value = SimpleNamespace(nearest_neighbors=[])

        neighbors = await backend.find_neighbors(NeighborQuery(vector=[1.0, 0.0], neighbor_count=2))

        assert neighbors == []

    async def test_transient_error_retried(self, backend, client):
        client.find_neighbors.side_effect = [
            gapi_exceptions.ServiceUnavailable("busy"),
            _neighbors_response(("u1_profile", 0.2, [1.0])),
        ]

        neighbors = await backend.find_neighbors(NeighborQuery(vector=[1.0], neighbor_count=1))

        assert len(neighbors) == 1
        assert client.find_neighbors.await_count == 2

    async def test_persistent_error_raises_backend_unavailable(self, backend, client):
        client.find_neighbors.side_effect = gapi_exceptions.ServiceUnavailable("down")

        with pytest.raises(BackendUnavailableError):
            await backend.find_neighbors(NeighborQuery(vector=[1.0], neighbor_count=1))
        assert client.find_neighbors.await_count == 2

    async def test_non_retryable_error_not_retried(self, backend, client):
        client.find_neighbors.side_effect = gapi_exceptions.PermissionDenied("nope")

        with pytest.raises(BackendUnavailableError):
            await backend.find_neighbors(NeighborQuery(vector=[1.0], neighbor_count=1))
        assert client.find_neighbors.await_count == 1


class TestReadDatapoint:
    """Single-datapoint lookup."""

    async def test_returns_vector(self, backend, client):
        client.read_index_datapoints.return_value = SimpleNamespace(
            datapoints=[SimpleNamespace(datapoint_id="u1_preference", feature_vector=[0.1, 0.2])]
        )

        assert await backend.read_datapoint("u1_preference") == [0.1, 0.2]

    async def test_absent_datapoint(self, backend, client):
        client.read_index_datapoints.return_value = SimpleNamespace(datapoints=[])

        with pytest.raises(VectorUnavailableError):
            await backend.read_datapoint("u1_preference")

    async def test_not_found_error(self, backend, client):
        client.read_index_datapoints.side_effect = gapi_exceptions.NotFound("missing")

        with pytest.raises(VectorUnavailableError):
            await backend.read_datapoint("u1_preference")

    async def test_close_releases_transport(self, backend, client):
        await backend.close()
        client.transport.close.assert_awaited_once()
