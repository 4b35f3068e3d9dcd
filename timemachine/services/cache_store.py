"""TTL cache over the persisted key/value store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from timemachine.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache_"
DEFAULT_TTL = timedelta(hours=2)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """Stores ``{timestamp, value}`` envelopes under the ``cache_`` namespace.

    Entries are never evicted on read; an expired or undecodable entry is simply
    reported as a miss and overwritten by the next ``set``.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._default_ttl = default_ttl
        self._clock = clock

    async def get(self, key: str, *, bypass: bool = False, ttl: timedelta | None = None) -> Any:
        if bypass:
            return None

        entry = await self._store.get(CACHE_PREFIX + key)
        if not isinstance(entry, dict):
            return None

        timestamp = entry.get("timestamp")
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            return None

        age_ms = self._now_ms() - timestamp
        limit = ttl if ttl is not None else self._default_ttl
        if age_ms >= limit.total_seconds() * 1000:
            return None
        return entry.get("value")

    async def set(self, key: str, value: Any) -> None:
        await self._store.set(CACHE_PREFIX + key, {"timestamp": self._now_ms(), "value": value})

    async def clear(self, prefix: str = "") -> int:
        """Delete cached entries whose key starts with ``prefix``; returns how many went."""

        removed = 0
        for stored_key in await self._store.keys(CACHE_PREFIX + prefix):
            if await self._store.delete(stored_key):
                removed += 1
        logger.info("Cleared %s cache entries", removed, extra={"prefix": prefix})
        return removed

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)
