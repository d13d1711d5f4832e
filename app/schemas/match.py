from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.user import UserProfile


class ScoreBreakdown(BaseModel):
    """Attribute and embedding components behind a hybrid score."""

    attribute_forward: float
    attribute_reverse: float
    attribute_mutual: float
    embedding_forward: float
    embedding_reverse: float
    embedding_mutual: float


class HybridScore(BaseModel):
    forward_score: float
    reverse_score: float
    mutual_score: float
    breakdown: ScoreBreakdown


class MatchResult(BaseModel):
    user_id: str
    user: UserProfile
    forward_score: float
    reverse_score: float
    mutual_score: float
    attribute_score: float
    embedding_score: float
    breakdown: ScoreBreakdown


class PipelineDiagnostics(BaseModel):
    attempted: int = 0
    skipped_incomplete: int = 0
    skipped_hard_filter: int = 0
    skipped_missing_vector: int = 0
    scored: int = 0


class MutualMatchesResponse(BaseModel):
    user_id: str
    total_matches: int
    matches: list[MatchResult]
    diagnostics: PipelineDiagnostics


class SimilarRoommate(BaseModel):
    user_id: str
    user: UserProfile
    score: float
    attribute_score: float
    embedding_score: float


class SimilarRoommatesResponse(BaseModel):
    user_id: str
    total_matches: int
    matches: list[SimilarRoommate]
    diagnostics: PipelineDiagnostics


class QueryMatch(BaseModel):
    user_id: str
    user: UserProfile
    similarity_score: float


class QuerySearchResponse(BaseModel):
    query: str
    total_matches: int
    matches: list[QueryMatch]


class FilteredSearchRequest(BaseModel):
    query: str
    min_budget: Optional[int] = None
    max_budget: Optional[int] = None
    zip_code: Optional[str] = None
    top_k: int = Field(10, ge=1, le=100)


class PairwiseScores(BaseModel):
    user_id_1: str
    user_id_2: str
    normalized_user_id_1: str
    normalized_user_id_2: str
    mutual_score: float = 0.0
    similarity_score: float = 0.0
    meets_requirements: bool = False
    is_low_match: bool = True
    failure_reason: Optional[str] = None
    error: Optional[str] = None
    breakdown: Optional[ScoreBreakdown] = None
    forward_score: Optional[float] = None
    reverse_score: Optional[float] = None


class LocalityCount(BaseModel):
    locality: str
    count: int


class LocalityStatsResponse(BaseModel):
    total_localities: int
    top_localities: list[LocalityCount]
