"""
Nestmate — User store contract and SQLAlchemy adapter.

The matching engine reads user records and never writes them.  Services
depend on the ``UserStore`` protocol; ``SqlUserStore`` maps rows of the
``users`` table to immutable ``UserProfile`` models.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.user import User
from app.schemas.user import UserProfile

logger = structlog.get_logger("nestmate.user_store")


class UserStore(Protocol):
    async def get(self, user_id: str) -> UserProfile | None:
        ...

    async def get_many(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ...

    async def find_all(self) -> Sequence[UserProfile]:
        ...


def to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        date_of_birth=user.date_of_birth,
        gender=user.gender,
        zip_code=user.zip_code,
        more_about_me=user.more_about_me,
        budget=user.budget,
        lifestyle=user.lifestyle,
        preferences=user.preferences,
    )


class SqlUserStore:
    """``UserStore`` backed by the ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> UserProfile | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            logger.debug("user_not_found", user_id=user_id)
            return None
        return to_profile(user)

    async def get_many(self, user_ids: Iterable[str]) -> dict[str, UserProfile]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id.in_(ids)))
            users = result.scalars().all()
        return {user.id: to_profile(user) for user in users}

    async def find_all(self) -> list[UserProfile]:
        async with self._session_factory() as session:
            result = await session.execute(select(User))
            users = result.scalars().all()
        logger.debug("users_loaded", count=len(users))
        return [to_profile(user) for user in users]
