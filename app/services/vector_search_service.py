"""
Nestmate — Vector search backend contract and Vertex AI adapter.

Each user owns two datapoints in the nearest-neighbour index:

    {user_id}_profile     who the user is
    {user_id}_preference  what the user wants in a roommate

Datapoints carry a ``vector_type`` restrict (profile / preference) and an
optional ``city_code`` restrict (the locality tag) used for local-first
retrieval.  The backend returns each neighbour's stored vector alongside its
cosine distance, so callers never need to regenerate embeddings.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from google.api_core import exceptions as gapi_exceptions
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.schemas.vector import Neighbor, NeighborQuery
from app.services.errors import BackendUnavailableError, VectorUnavailableError

logger = structlog.get_logger("nestmate.vector_search_service")

VECTOR_TYPE_NAMESPACE = "vector_type"
LOCALITY_NAMESPACE = "city_code"

_RETRYABLE_ERRORS = (
    gapi_exceptions.ServiceUnavailable,
    gapi_exceptions.DeadlineExceeded,
    gapi_exceptions.ResourceExhausted,
    gapi_exceptions.InternalServerError,
)


class VectorSearchBackend(Protocol):
    """Read-only contract the matching engine needs from the index."""

    async def find_neighbors(self, query: NeighborQuery) -> list[Neighbor]:
        ...

    async def read_datapoint(self, datapoint_id: str) -> list[float]:
        """Return the stored vector or raise ``VectorUnavailableError``."""
        ...


class VertexVectorSearchBackend:
    """``VectorSearchBackend`` over a deployed Vertex AI Vector Search index."""

    def __init__(
        self,
        client: Any | None = None,
        index_endpoint: str | None = None,
        deployed_index_id: str | None = None,
        retry_attempts: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client
        self.api_endpoint: str = settings.VECTOR_SEARCH_PUBLIC_ENDPOINT_DOMAIN
        self.index_endpoint: str = index_endpoint or settings.index_endpoint_path
        self.deployed_index_id: str = deployed_index_id or settings.VECTOR_SEARCH_DEPLOYED_INDEX_ID
        self.retry_attempts: int = retry_attempts or settings.BACKEND_RETRY_ATTEMPTS
        self.timeout_seconds: float = timeout_seconds or settings.BACKEND_TIMEOUT_SECONDS

        if not settings.VECTOR_SEARCH_INDEX_ENDPOINT and index_endpoint is None:
            logger.warning("vector_search_not_configured", missing="VECTOR_SEARCH_INDEX_ENDPOINT")

    # ── Public API ────────────────────────────────────────────────────────

    async def find_neighbors(self, query: NeighborQuery) -> list[Neighbor]:
        """Run one nearest-neighbour query and return neighbours in rank order.

        Raises
        ------
        BackendUnavailableError
            If the backend call fails after retries.
        """
        from google.cloud import aiplatform_v1

        request = aiplatform_v1.FindNeighborsRequest(
            index_endpoint=self.index_endpoint,
            deployed_index_id=self.deployed_index_id,
            queries=[
                aiplatform_v1.FindNeighborsRequest.Query(
                    datapoint=self._build_query_datapoint(query),
                    neighbor_count=query.neighbor_count,
                )
            ],
            return_full_datapoint=True,
        )

        response = await self._call("find_neighbors", request)

        if not response.nearest_neighbors:
            return []
        return [
            Neighbor(
                datapoint_id=neighbor.datapoint.datapoint_id,
                distance=float(neighbor.distance),
                vector=list(neighbor.datapoint.feature_vector),
            )
            for neighbor in response.nearest_neighbors[0].neighbors
        ]

    async def read_datapoint(self, datapoint_id: str) -> list[float]:
        from google.cloud import aiplatform_v1

        request = aiplatform_v1.ReadIndexDatapointsRequest(
            index_endpoint=self.index_endpoint,
            deployed_index_id=self.deployed_index_id,
            ids=[datapoint_id],
        )

        try:
            response = await self._call("read_index_datapoints", request)
        except BackendUnavailableError as exc:
            if isinstance(exc.__cause__, gapi_exceptions.NotFound):
                raise VectorUnavailableError(datapoint_id) from exc
            raise

        for datapoint in response.datapoints:
            if datapoint.datapoint_id == datapoint_id and len(datapoint.feature_vector) > 0:
                return list(datapoint.feature_vector)

        raise VectorUnavailableError(datapoint_id)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.transport.close()
            self._client = None
            logger.info("vector_search_client_closed")

    # ── Internals ─────────────────────────────────────────────────────────

    def _get_client(self) -> Any:
        if self._client is None:
            from google.cloud import aiplatform_v1

            self._client = aiplatform_v1.MatchServiceAsyncClient(
                client_options={"api_endpoint": self.api_endpoint} if self.api_endpoint else None,
            )
            logger.info("vector_search_client_created", api_endpoint=self.api_endpoint)
        return self._client

    @staticmethod
    def _build_query_datapoint(query: NeighborQuery) -> Any:
        from google.cloud import aiplatform_v1

        restricts = []
        if query.vector_type is not None:
            restricts.append(
                aiplatform_v1.IndexDatapoint.Restriction(
                    namespace=VECTOR_TYPE_NAMESPACE,
                    allow_list=[query.vector_type.value],
                )
            )
        if query.locality:
            restricts.append(
                aiplatform_v1.IndexDatapoint.Restriction(
                    namespace=LOCALITY_NAMESPACE,
                    allow_list=[query.locality],
                )
            )

        datapoint = aiplatform_v1.IndexDatapoint(restricts=restricts)
        if query.datapoint_id is not None:
            datapoint.datapoint_id = query.datapoint_id
        else:
            datapoint.feature_vector = list(query.vector or [])
        return datapoint

    async def _call(self, method: str, request: Any) -> Any:
        """Invoke a client method with tenacity retry on transient errors."""
        client = self._get_client()
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_RETRYABLE_ERRORS),
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
                reraise=True,
            ):
                with attempt:
                    logger.debug(
                        "vector_search_call_attempt",
                        method=method,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    return await getattr(client, method)(
                        request=request, timeout=self.timeout_seconds
                    )
        except RetryError as retry_err:
            raise BackendUnavailableError(
                f"Vector search {method} failed after retries"
            ) from retry_err.last_attempt.exception()
        except gapi_exceptions.GoogleAPIError as exc:
            logger.warning("vector_search_call_failed", method=method, error=str(exc))
            raise BackendUnavailableError(f"Vector search {method} failed: {exc}") from exc
