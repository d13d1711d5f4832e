"""
Nestmate — Rule-based attribute compatibility scoring.

Scores how well a candidate (B) fits what a requester (A) is looking for,
across five factors, and decides whether B clears A's hard requirements.

  compatibility(A, B) = 0.20 x age + 0.25 x gender + 0.25 x lifestyle
                      + 0.10 x budget + 0.20 x location

Every factor lies in [0, 1].  Scoring is directional: ``score(A, B)`` reads
A's preferences and B's facts; the reverse direction is a separate call.
The hard requirement check is a named policy so that the active rule set is
always explicit (see ``HardRequirementPolicy``).
"""

from __future__ import annotations

import re
from datetime import date
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel

from app.config import get_settings
from app.schemas.user import UserProfile, locality_code

logger = structlog.get_logger("nestmate.attribute_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

_NEUTRAL = 0.5
_NO_GENDER_PREFERENCE = {"no preference", "any"}

_AGE_EDGE_FLOOR = 0.7          # in-range score at the edges of the range
_AGE_OUTSIDE_START = 0.6       # score just outside the range
_AGE_OUTSIDE_PENALTY = 0.03    # per year outside the range
_AGE_OUTSIDE_FLOOR = 0.1

_SMOKING_MISMATCH = 0.3
_PETS_MISMATCH = 0.3
_NIGHT_OWL_MISMATCH = 0.4      # schedules adapt more easily

_LOCATION_MISSING = 0.1
_LOCATION_OTHER_LOCALITY = 0.1
_LOCATION_SAME_LOCALITY_FLOOR = 0.50
_LOCATION_UNPARSABLE = 0.70

_NON_DIGIT = re.compile(r"[^0-9]")


class HardRequirementPolicy(str, Enum):
    """Which checks make up the bidirectional hard filter."""

    GENDER_ONLY = "gender_only"
    GENDER_LOCATION = "gender_location"
    AGE_GENDER_LIFESTYLE = "age_gender_lifestyle"

    @property
    def checks(self) -> tuple[str, ...]:
        return _POLICY_CHECKS[self]


_POLICY_CHECKS: dict[HardRequirementPolicy, tuple[str, ...]] = {
    HardRequirementPolicy.GENDER_ONLY: ("gender",),
    HardRequirementPolicy.GENDER_LOCATION: ("gender", "location"),
    HardRequirementPolicy.AGE_GENDER_LIFESTYLE: ("age", "gender", "lifestyle"),
}


class AttributeScores(BaseModel):
    age: float
    gender: float
    lifestyle: float
    budget: float
    location: float
    total: float


class HardFilterResult(BaseModel):
    a_accepts_b: bool
    b_accepts_a: bool

    @property
    def passed(self) -> bool:
        return self.a_accepts_b and self.b_accepts_a

    @property
    def reason(self) -> Optional[str]:
        if self.passed:
            return None
        if not self.a_accepts_b and not self.b_accepts_a:
            return "both_reject"
        if not self.a_accepts_b:
            return "a_rejects_b"
        return "b_rejects_a"


class AttributeScorer:
    """Directional attribute compatibility plus the hard requirement check."""

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        policy: HardRequirementPolicy | str | None = None,
        age_out_of_range_policy: str | None = None,
        locality_prefix_length: int | None = None,
    ) -> None:
        settings = get_settings()
        self.weights: dict[str, float] = weights or settings.attribute_weights
        self.policy = HardRequirementPolicy(policy or settings.HARD_REQUIREMENT_POLICY)
        self.age_out_of_range_policy: str = (
            age_out_of_range_policy or settings.AGE_OUT_OF_RANGE_POLICY
        )
        self.locality_prefix_length: int = (
            locality_prefix_length or settings.LOCALITY_PREFIX_LENGTH
        )

        self._requirement_checks: dict[str, Callable[[UserProfile, UserProfile, date], bool]] = {
            "age": self.passes_age_requirement,
            "gender": lambda a, b, _as_of: self.passes_gender_requirement(a, b),
            "location": lambda a, b, _as_of: self.passes_location_requirement(a, b),
            "lifestyle": lambda a, b, _as_of: self.passes_lifestyle_requirements(a, b),
        }

    # ── Public API ────────────────────────────────────────────────────────

    def score(
        self,
        user_a: UserProfile,
        user_b: UserProfile,
        as_of: date | None = None,
    ) -> AttributeScores:
        """Score how well ``user_b`` fits ``user_a``'s preferences.

        Parameters
        ----------
        user_a:
            The requester whose preferences are being checked.
        user_b:
            The candidate being evaluated.
        as_of:
            Reference date for age calculation; defaults to today.

        Returns
        -------
        AttributeScores
            The five factor scores and their weighted total, all in [0, 1].
        """
        as_of = as_of or date.today()
        factors = {
            "age": self.age_score(user_a, user_b, as_of),
            "gender": self.gender_score(user_a, user_b),
            "lifestyle": self.lifestyle_score(user_a, user_b),
            "budget": self.budget_score(user_a, user_b),
            "location": self.location_score(user_a, user_b),
        }
        total = sum(self.weights[name] * value for name, value in factors.items())
        return AttributeScores(total=_clamp(total), **factors)

    def compatibility(
        self,
        user_a: UserProfile,
        user_b: UserProfile,
        as_of: date | None = None,
    ) -> float:
        return self.score(user_a, user_b, as_of).total

    def meets_hard_requirements(
        self,
        user_a: UserProfile,
        user_b: UserProfile,
        as_of: date | None = None,
    ) -> bool:
        """Does ``user_b`` pass every check of ``user_a``'s active policy?"""
        as_of = as_of or date.today()
        failed = [
            name
            for name in self.policy.checks
            if not self._requirement_checks[name](user_a, user_b, as_of)
        ]
        if failed:
            logger.debug(
                "hard_requirements_failed",
                requester=user_a.id,
                candidate=user_b.id,
                policy=self.policy.value,
                failed_checks=failed,
            )
            return False
        return True

    # ── Age ──────────────────────────────────────────────────────────────

    def age_score(self, user_a: UserProfile, user_b: UserProfile, as_of: date) -> float:
        prefs = user_a.preferences
        if prefs is None or (prefs.min_age is None and prefs.max_age is None):
            return 1.0

        age_b = user_b.age_on(as_of)
        if age_b is None:
            return _NEUTRAL

        min_age, max_age = prefs.min_age, prefs.max_age
        below = min_age is not None and age_b < min_age
        above = max_age is not None and age_b > max_age

        if not below and not above:
            if min_age is None or max_age is None:
                return 1.0
            span = max_age - min_age
            if span <= 0:
                return 1.0
            midpoint = (min_age + max_age) // 2
            distance = abs(age_b - midpoint)
            # 1.0 at the midpoint down to 0.7 at the edges
            return max(_AGE_EDGE_FLOOR, 1.0 - distance / (span / 2.0) * 0.3)

        if self.age_out_of_range_policy == "zero":
            return 0.0

        distance_from_range = (min_age - age_b) if below else (age_b - max_age)
        return max(_AGE_OUTSIDE_FLOOR, _AGE_OUTSIDE_START - distance_from_range * _AGE_OUTSIDE_PENALTY)

    def passes_age_requirement(self, user_a: UserProfile, user_b: UserProfile, as_of: date) -> bool:
        prefs = user_a.preferences
        if prefs is None or (prefs.min_age is None and prefs.max_age is None):
            return True
        age_b = user_b.age_on(as_of)
        if age_b is None:
            return False
        if prefs.min_age is not None and age_b < prefs.min_age:
            return False
        if prefs.max_age is not None and age_b > prefs.max_age:
            return False
        return True

    # ── Gender ───────────────────────────────────────────────────────────

    def passes_gender_requirement(self, user_a: UserProfile, user_b: UserProfile) -> bool:
        prefs = user_a.preferences
        if prefs is None or prefs.gender is None:
            return True
        preferred = prefs.gender.strip().lower()
        if not preferred or preferred in _NO_GENDER_PREFERENCE:
            return True
        if user_b.gender is None:
            return False
        return user_b.gender.strip().lower() == preferred

    def gender_score(self, user_a: UserProfile, user_b: UserProfile) -> float:
        return 1.0 if self.passes_gender_requirement(user_a, user_b) else 0.0

    # ── Lifestyle ────────────────────────────────────────────────────────

    def passes_lifestyle_requirements(self, user_a: UserProfile, user_b: UserProfile) -> bool:
        prefs, lifestyle = user_a.preferences, user_b.lifestyle
        if prefs is None or lifestyle is None:
            return True
        # A prefers non-smoking and B smokes
        if prefs.smoking is False and lifestyle.smoking is True:
            return False
        # A prefers no pets and B has pets
        if prefs.pet_friendly is False and lifestyle.pet_friendly is True:
            return False
        return True

    def lifestyle_score(self, user_a: UserProfile, user_b: UserProfile) -> float:
        """Average over smoking, pets, night-owl and guest frequency.

        A factor with data missing on either side contributes a neutral 0.5.
        """
        prefs, lifestyle = user_a.preferences, user_b.lifestyle
        if prefs is None or lifestyle is None:
            return _NEUTRAL

        factor_scores = [
            _boolean_match(prefs.smoking, lifestyle.smoking, _SMOKING_MISMATCH),
            _boolean_match(prefs.pet_friendly, lifestyle.pet_friendly, _PETS_MISMATCH),
            _boolean_match(prefs.night_owl, lifestyle.night_owl, _NIGHT_OWL_MISMATCH),
        ]
        if prefs.guest_frequency and lifestyle.guest_frequency:
            factor_scores.append(
                self.guest_frequency_score(prefs.guest_frequency, lifestyle.guest_frequency)
            )
        else:
            factor_scores.append(_NEUTRAL)

        return sum(factor_scores) / len(factor_scores)

    @staticmethod
    def guest_frequency_score(preferred: str, actual: str) -> float:
        """Fuzzy keyword match between a guest preference and a habit."""
        pref = preferred.strip().lower()
        act = actual.strip().lower()

        if pref == act:
            return 1.0

        if "quiet" in pref or "rarely" in pref:
            if "rarely" in act or "keep to myself" in act:
                return 1.0
            if "occasionally" in act:
                return 0.7
            if "frequently" in act or "gatherings" in act:
                return 0.0

        if "social" in pref or "gatherings" in pref:
            if "frequently" in act or "gatherings" in act:
                return 1.0
            if "occasionally" in act:
                return 0.7
            if "rarely" in act or "quiet" in act:
                return 0.0

        if "don't mind" in pref or "flexible" in pref:
            return 0.8

        return _NEUTRAL

    # ── Budget ───────────────────────────────────────────────────────────

    def budget_score(self, user_a: UserProfile, user_b: UserProfile) -> float:
        """Overlap of the two ranges over the wider of the two ranges."""
        if user_a.budget is None or user_b.budget is None:
            return _NEUTRAL

        a_min, a_max = sorted((user_a.budget.min, user_a.budget.max))
        b_min, b_max = sorted((user_b.budget.min, user_b.budget.max))

        overlap_min = max(a_min, b_min)
        overlap_max = min(a_max, b_max)
        if overlap_max < overlap_min:
            return 0.0

        widest = max(a_max - a_min, b_max - b_min)
        if widest == 0:
            # both ranges collapse onto the same single amount
            return 1.0
        return _clamp((overlap_max - overlap_min) / widest)

    # ── Location ─────────────────────────────────────────────────────────

    def passes_location_requirement(self, user_a: UserProfile, user_b: UserProfile) -> bool:
        locality_a = user_a.locality(self.locality_prefix_length)
        locality_b = user_b.locality(self.locality_prefix_length)
        return locality_a is not None and locality_a == locality_b

    def location_score(self, user_a: UserProfile, user_b: UserProfile) -> float:
        """Proximity score from postal codes.

        Same code 1.0; same locality decays with numeric code distance
        (<=10: 0.90-1.00, <=50: 0.75-0.89, <=100: 0.60-0.74, beyond: 0.50-0.59);
        different locality or missing code 0.1.
        """
        zip_a, zip_b = user_a.zip_code, user_b.zip_code
        if not zip_a or not zip_b:
            return _LOCATION_MISSING

        zip_a, zip_b = zip_a.strip(), zip_b.strip()
        if zip_a == zip_b:
            return 1.0

        locality_a = locality_code(zip_a, self.locality_prefix_length)
        locality_b = locality_code(zip_b, self.locality_prefix_length)
        if locality_a is None or locality_a != locality_b:
            return _LOCATION_OTHER_LOCALITY

        digits_a = _NON_DIGIT.sub("", zip_a)
        digits_b = _NON_DIGIT.sub("", zip_b)
        if not digits_a or not digits_b:
            return _LOCATION_UNPARSABLE

        distance = abs(int(digits_a) - int(digits_b))
        if distance <= 10:
            score = 1.0 - distance * 0.01
        elif distance <= 50:
            score = 0.89 - (distance - 10) * 0.0035
        elif distance <= 100:
            score = 0.74 - (distance - 50) * 0.0028
        else:
            score = 0.59 - (min(distance, 200) - 100) * 0.0009

        return max(_LOCATION_SAME_LOCALITY_FLOOR, score)


class HardFilter:
    """Bidirectional gate: both users must clear each other's requirements."""

    def __init__(self, scorer: AttributeScorer) -> None:
        self.scorer = scorer

    def check(
        self,
        user_a: UserProfile,
        user_b: UserProfile,
        as_of: date | None = None,
    ) -> HardFilterResult:
        as_of = as_of or date.today()
        return HardFilterResult(
            a_accepts_b=self.scorer.meets_hard_requirements(user_a, user_b, as_of),
            b_accepts_a=self.scorer.meets_hard_requirements(user_b, user_a, as_of),
        )


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _boolean_match(preferred: Optional[bool], actual: Optional[bool], mismatch: float) -> float:
    if preferred is None or actual is None:
        return _NEUTRAL
    return 1.0 if preferred == actual else mismatch


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
