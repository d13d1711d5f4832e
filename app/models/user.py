"""
Nestmate — User model (identity, demographics, budget, lifestyle, preferences).
"""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, comment="Auth provider user id")
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, unique=True, index=True, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String, nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    more_about_me: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="{min, max}"
    )
    lifestyle: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="{pet_friendly, smoking, night_owl, guest_frequency}"
    )
    preferences: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="Desired roommate attributes"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<User {self.id!r} zip={self.zip_code!r}>"
