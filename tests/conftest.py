"""Shared pytest fixtures and in-memory fakes for Nestmate tests."""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

import pytest

from app.schemas.user import Budget, Lifestyle, PreferenceProfile, UserProfile
from app.schemas.vector import Neighbor, NeighborQuery, VectorType, datapoint_id
from app.services.attribute_service import AttributeScorer, HardFilter
from app.services.candidate_service import BatchEmbeddingFetcher, CandidateRetriever
from app.services.errors import BackendUnavailableError, VectorUnavailableError
from app.services.hybrid_service import HybridScorer
from app.services.similarity_service import cosine_similarity

AS_OF = date(2026, 1, 1)

WEIGHTS = {"age": 0.20, "gender": 0.25, "lifestyle": 0.25, "budget": 0.10, "location": 0.20}


def dob_for_age(age: int) -> date:
    """Date of birth giving ``age`` whole years on ``AS_OF``."""
    return date(2025 - age, 6, 15)


def make_user(user_id: str, **overrides) -> UserProfile:
    """A complete profile with agreeable defaults; override any field."""
    fields = {
        "id": user_id,
        "first_name": "Test",
        "last_name": user_id.title(),
        "email": f"{user_id}@example.com",
        "date_of_birth": dob_for_age(28),
        "gender": "female",
        "zip_code": "10001",
        "more_about_me": "Tidy, works from home, loves cooking.",
        "budget": Budget(min=1000, max=1500),
        "lifestyle": Lifestyle(
            pet_friendly=False, smoking=False, night_owl=False, guest_frequency="Occasionally"
        ),
        "preferences": PreferenceProfile(
            pet_friendly=False, smoking=False, night_owl=False, guest_frequency="Occasionally"
        ),
    }
    fields.update(overrides)
    return UserProfile(**fields)


class FakeUserStore:
    """In-memory ``UserStore``."""

    def __init__(self, users: Iterable[UserProfile] = ()) -> None:
        self.users: dict[str, UserProfile] = {u.id: u for u in users}

    def add(self, *users: UserProfile) -> None:
        for user in users:
            self.users[user.id] = user

    async def get(self, user_id: str) -> Optional[UserProfile]:
        return self.users.get(user_id)

    async def get_many(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}

    async def find_all(self) -> list[UserProfile]:
        return list(self.users.values())


class FakeVectorBackend:
    """In-memory ``VectorSearchBackend`` ranking by exact cosine distance.

    ``failing_ids`` makes ``read_datapoint`` raise for those datapoints,
    ``fail_localities`` / ``fail_global`` make ``find_neighbors`` raise, and
    ``return_vectors=False`` omits stored vectors from neighbour results.
    """

    def __init__(self, return_vectors: bool = True) -> None:
        self.datapoints: dict[str, tuple[list[float], dict[str, str]]] = {}
        self.return_vectors = return_vectors
        self.failing_ids: set[str] = set()
        self.fail_localities: set[str] = set()
        self.fail_global = False
        self.queries: list[NeighborQuery] = []
        self.reads: list[str] = []

    def add(
        self,
        user_id: str,
        profile: list[float],
        preference: list[float],
        locality: Optional[str] = None,
    ) -> None:
        for vector_type, vector in ((VectorType.PROFILE, profile), (VectorType.PREFERENCE, preference)):
            restricts = {"vector_type": vector_type.value}
            if locality:
                restricts["city_code"] = locality
            self.datapoints[datapoint_id(user_id, vector_type)] = (vector, restricts)

    async def find_neighbors(self, query: NeighborQuery) -> list[Neighbor]:
        self.queries.append(query)
        if query.locality is None and self.fail_global:
            raise BackendUnavailableError("global search down")
        if query.locality in self.fail_localities:
            raise BackendUnavailableError("local search down")

        if query.vector is not None:
            query_vector = query.vector
        else:
            if query.datapoint_id not in self.datapoints:
                raise BackendUnavailableError(f"unknown query datapoint {query.datapoint_id}")
            query_vector = self.datapoints[query.datapoint_id][0]

        scored = []
        for dp_id, (vector, restricts) in self.datapoints.items():
            if query.vector_type is not None and restricts["vector_type"] != query.vector_type.value:
                continue
            if query.locality is not None and restricts.get("city_code") != query.locality:
                continue
            distance = 1.0 - cosine_similarity(query_vector, vector)
            scored.append((distance, dp_id, vector))

        scored.sort(key=lambda item: (item[0], item[1]))
        return [
            Neighbor(
                datapoint_id=dp_id,
                distance=distance,
                vector=list(vector) if self.return_vectors else [],
            )
            for distance, dp_id, vector in scored[: query.neighbor_count]
        ]

    async def read_datapoint(self, dp_id: str) -> list[float]:
        self.reads.append(dp_id)
        if dp_id in self.failing_ids or dp_id not in self.datapoints:
            raise VectorUnavailableError(dp_id)
        return list(self.datapoints[dp_id][0])


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def user_store():
    return FakeUserStore()


@pytest.fixture
def vector_backend():
    return FakeVectorBackend()


@pytest.fixture
def attribute_scorer():
    return AttributeScorer(
        weights=dict(WEIGHTS),
        policy="gender_only",
        age_out_of_range_policy="decay",
        locality_prefix_length=3,
    )


@pytest.fixture
def hard_filter(attribute_scorer):
    return HardFilter(attribute_scorer)


@pytest.fixture
def hybrid_scorer(attribute_scorer):
    return HybridScorer(attribute_scorer, attribute_weight=0.5)


@pytest.fixture
def retriever(vector_backend):
    return CandidateRetriever(vector_backend, multiplier=10, cap=150)


@pytest.fixture
def fetcher(vector_backend):
    return BatchEmbeddingFetcher(vector_backend, concurrency=4, timeout_seconds=1.0)
