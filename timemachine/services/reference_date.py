"""The "as of" date the catalog is synthesized for."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from timemachine.services.cache_store import CacheStore
from timemachine.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DATE_STORE_KEY = "reference_date"
LAST_ADVANCED_STORE_KEY = "reference_date_last_advanced"


class ReferenceDateError(ValueError):
    """Raised when a requested reference date is not acceptable."""


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _parse_date(value: object) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


class ReferenceDateService:
    def __init__(
        self,
        store: KeyValueStore,
        cache: CacheStore,
        *,
        default_date: str,
        auto_advance: bool = True,
        today: Callable[[], date] = _today,
    ) -> None:
        self._store = store
        self._cache = cache
        self._default_date = date.fromisoformat(default_date)
        self._auto_advance = auto_advance
        self._today = today

    async def get(self) -> date:
        stored = _parse_date(await self._store.get(DATE_STORE_KEY))
        return stored or self._default_date

    async def set(self, value: date) -> date:
        if value > self._today():
            raise ReferenceDateError("Reference date cannot be in the future")
        await self._store.set(DATE_STORE_KEY, value.isoformat())
        await self._cache.clear()
        logger.info("Reference date set to %s", value.isoformat())
        return value

    async def advance_if_due(self) -> date:
        """Move the date forward one day when the real calendar day has changed."""

        current = await self.get()
        if not self._auto_advance:
            return current

        today = self._today()
        last_advanced = _parse_date(await self._store.get(LAST_ADVANCED_STORE_KEY))
        if last_advanced is None:
            await self._store.set(LAST_ADVANCED_STORE_KEY, today.isoformat())
            return current
        if last_advanced == today:
            return current

        candidate = current + timedelta(days=1)
        if candidate > today:
            return current

        await self._store.set(DATE_STORE_KEY, candidate.isoformat())
        await self._store.set(LAST_ADVANCED_STORE_KEY, today.isoformat())
        await self._cache.clear()
        logger.info("Reference date auto-advanced to %s", candidate.isoformat())
        return candidate
