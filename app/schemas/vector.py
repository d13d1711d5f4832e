from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, model_validator


class VectorType(str, Enum):
    PROFILE = "profile"
    PREFERENCE = "preference"

    @property
    def companion(self) -> "VectorType":
        if self is VectorType.PROFILE:
            return VectorType.PREFERENCE
        return VectorType.PROFILE


def datapoint_id(user_id: str, vector_type: VectorType) -> str:
    return f"{user_id}_{vector_type.value}"


def user_id_from_datapoint(datapoint: str, vector_type: VectorType) -> Optional[str]:
    """Strip the ``_{vector_type}`` suffix; ``None`` if the id is of another kind."""
    suffix = f"_{vector_type.value}"
    if not datapoint.endswith(suffix) or len(datapoint) == len(suffix):
        return None
    return datapoint[: -len(suffix)]


class NeighborQuery(BaseModel):
    """Nearest-neighbour request.  Exactly one of ``datapoint_id`` / ``vector``."""

    neighbor_count: int
    datapoint_id: Optional[str] = None
    vector: Optional[list[float]] = None
    vector_type: Optional[VectorType] = None
    locality: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_query_source(self) -> "NeighborQuery":
        if (self.datapoint_id is None) == (self.vector is None):
            raise ValueError("Provide exactly one of datapoint_id or vector")
        return self


class Neighbor(BaseModel):
    datapoint_id: str
    distance: float
    vector: list[float] = []

    @property
    def similarity(self) -> float:
        """Cosine distance converted to similarity, clamped to [0, 1]."""
        return max(0.0, min(1.0, 1.0 - self.distance))


class Candidate(BaseModel):
    user_id: str
    profile_vector: Optional[list[float]] = None
    similarity: float = 0.0
