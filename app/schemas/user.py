from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel


def locality_code(zip_code: Optional[str], prefix_length: int = 3) -> Optional[str]:
    """Coarse locality tag: the leading digits of a postal code."""
    if zip_code is None:
        return None
    zip_code = zip_code.strip()
    if len(zip_code) < prefix_length:
        return None
    return zip_code[:prefix_length]


class Budget(BaseModel):
    min: int
    max: int


class Lifestyle(BaseModel):
    pet_friendly: Optional[bool] = None
    smoking: Optional[bool] = None
    night_owl: Optional[bool] = None
    guest_frequency: Optional[str] = None


class PreferenceProfile(BaseModel):
    """What a user wants in a roommate.  ``None`` means no preference."""

    min_age: Optional[int] = None
    max_age: Optional[int] = None
    gender: Optional[str] = None
    pet_friendly: Optional[bool] = None
    smoking: Optional[bool] = None
    night_owl: Optional[bool] = None
    guest_frequency: Optional[str] = None
    more_about_roommate: Optional[str] = None


class UserProfile(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    zip_code: Optional[str] = None
    more_about_me: Optional[str] = None
    budget: Optional[Budget] = None
    lifestyle: Optional[Lifestyle] = None
    preferences: Optional[PreferenceProfile] = None

    model_config = {"from_attributes": True, "frozen": True}

    def age_on(self, as_of: date) -> Optional[int]:
        """Whole years between date of birth and ``as_of``."""
        if self.date_of_birth is None:
            return None
        dob = self.date_of_birth
        years = as_of.year - dob.year
        if (as_of.month, as_of.day) < (dob.month, dob.day):
            years -= 1
        return years

    @property
    def is_complete(self) -> bool:
        """Name, gender, postal code and date of birth are all present."""
        required = (self.first_name, self.last_name, self.gender, self.zip_code)
        if any(value is None or not value.strip() for value in required):
            return False
        return self.date_of_birth is not None

    def locality(self, prefix_length: int = 3) -> Optional[str]:
        return locality_code(self.zip_code, prefix_length)
