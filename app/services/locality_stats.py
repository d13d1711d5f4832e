"""
Nestmate — Locality statistics cache.

Counts users per locality tag (leading digits of the postal code).  The
cache is owned by whoever creates it (the application lifespan) and is
recounted from the user store with ``rebuild``.
"""

from __future__ import annotations

import asyncio
from collections import Counter

import structlog

from app.config import get_settings
from app.schemas.user import locality_code
from app.services.user_store import UserStore

logger = structlog.get_logger("nestmate.locality_stats")


class LocalityStatsCache:
    def __init__(self, prefix_length: int | None = None) -> None:
        self.prefix_length: int = prefix_length or get_settings().LOCALITY_PREFIX_LENGTH
        self._counts: Counter[str] = Counter()
        self._lock = asyncio.Lock()

    async def rebuild(self, store: UserStore) -> int:
        """Recount every locality from the store; returns the number of localities."""
        users = await store.find_all()
        counts: Counter[str] = Counter()
        for user in users:
            tag = locality_code(user.zip_code, self.prefix_length)
            if tag:
                counts[tag] += 1

        async with self._lock:
            self._counts = counts

        logger.info("locality_stats_rebuilt", users=len(users), localities=len(counts))
        return len(counts)

    def top(self, limit: int = 10) -> list[tuple[str, int]]:
        """Busiest localities, ties broken by tag for a stable order."""
        ranked = sorted(self._counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)
