"""Ordered pool of API credentials with rotation and health bookkeeping."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from timemachine.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 35
QUOTA_ERROR_MARKERS = ("quota", "exceeded", "dailyLimitExceeded", "rateLimitExceeded")

KEYS_STORE_KEY = "api_keys"
INDEX_STORE_KEY = "api_key_index"
STATS_STORE_KEY = "api_key_stats"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mask_token(token: str) -> str:
    """Return a log-safe prefix of a credential."""

    return f"{token[:8]}..."


def is_quota_error(error_text: str) -> bool:
    lowered = error_text.lower()
    return any(marker.lower() in lowered for marker in QUOTA_ERROR_MARKERS)


@dataclass(slots=True)
class CredentialHealth:
    """Mutable usage and failure record for a single credential."""

    request_count: int = 0
    success_count: int = 0
    failed: bool = False
    quota_exceeded: bool = False
    last_used_at: datetime | None = None
    last_failed_at: datetime | None = None

    @property
    def usable(self) -> bool:
        return not self.failed and not self.quota_exceeded

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for name in ("last_used_at", "last_failed_at"):
            value = payload[name]
            payload[name] = value.isoformat() if value else None
        return payload

    @classmethod
    def from_dict(cls, raw: Any) -> "CredentialHealth":
        if not isinstance(raw, dict):
            return cls()
        return cls(
            request_count=int(raw.get("request_count") or 0),
            success_count=int(raw.get("success_count") or 0),
            failed=bool(raw.get("failed")),
            quota_exceeded=bool(raw.get("quota_exceeded")),
            last_used_at=_parse_datetime(raw.get("last_used_at")),
            last_failed_at=_parse_datetime(raw.get("last_failed_at")),
        )


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class CredentialSnapshot:
    """Read-only view of one credential for reporting."""

    position: int
    masked: str
    current: bool
    health: CredentialHealth


@dataclass
class CredentialPool:
    """Rotation order, current pointer and per-credential health.

    All mutating methods are synchronous and only touch memory; ``save`` writes
    the whole state back to the key/value store. ``lock`` serializes request
    attempts that read and rotate the pointer.
    """

    tokens: list[str] = field(default_factory=list)
    current_index: int | None = None
    stats: dict[str, CredentialHealth] = field(default_factory=dict)
    clock: Callable[[], datetime] = _utc_now
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __len__(self) -> int:
        return len(self.tokens)

    def __contains__(self, token: object) -> bool:
        return token in self.tokens

    def add(self, token: str) -> bool:
        token = (token or "").strip()
        if not token or len(token) < MIN_TOKEN_LENGTH or token in self.tokens:
            return False

        self.tokens.append(token)
        self.stats[token] = CredentialHealth()
        if self.current_index is None:
            self.current_index = 0
        logger.info("Added API key %s", mask_token(token))
        return True

    def remove(self, token: str) -> bool:
        try:
            index = self.tokens.index(token)
        except ValueError:
            return False

        del self.tokens[index]
        self.stats.pop(token, None)

        if not self.tokens:
            self.current_index = None
        elif self.current_index is not None:
            if index <= self.current_index:
                self.current_index = max(self.current_index - 1, 0)
            self.current_index = min(self.current_index, len(self.tokens) - 1)

        logger.info("Removed API key %s", mask_token(token))
        return True

    def current(self) -> str | None:
        if not self.tokens or self.current_index is None:
            return None
        return self.tokens[self.current_index]

    def health(self, token: str) -> CredentialHealth:
        record = self.stats.get(token)
        if record is None:
            record = self.stats[token] = CredentialHealth()
        return record

    def rotate(self) -> bool:
        """Move to the next clean credential; reset to 0 and return False if none."""

        if not self.tokens:
            self.current_index = None
            return False

        size = len(self.tokens)
        index = self.current_index if self.current_index is not None else -1
        for _ in range(size):
            index = (index + 1) % size
            if self.health(self.tokens[index]).usable:
                self.current_index = index
                logger.info("Rotated to key %s/%s", index + 1, size)
                return True

        self.current_index = 0
        logger.warning("All keys have issues, reset to first key")
        return False

    def mark_success(self, token: str) -> None:
        record = self.health(token)
        record.request_count += 1
        record.success_count += 1
        record.failed = False
        record.quota_exceeded = False
        record.last_used_at = self.clock()

    def mark_failed(self, token: str, error_text: str) -> None:
        record = self.health(token)
        record.failed = True
        record.last_failed_at = self.clock()
        if is_quota_error(error_text):
            record.quota_exceeded = True
        logger.warning("Key failed: %s - %s", mask_token(token), error_text)

    def reset_health(self) -> None:
        for record in self.stats.values():
            record.failed = False
            record.quota_exceeded = False

    def snapshot(self) -> list[CredentialSnapshot]:
        return [
            CredentialSnapshot(
                position=position,
                masked=mask_token(token),
                current=position == self.current_index,
                health=self.health(token),
            )
            for position, token in enumerate(self.tokens)
        ]

    def clear_stale_failures(self, *, max_age: timedelta) -> int:
        """Clear failure flags older than ``max_age``; returns how many were reset."""

        cutoff = self.clock() - max_age
        cleared = 0
        for record in self.stats.values():
            if record.last_failed_at is not None and record.last_failed_at < cutoff:
                if record.failed or record.quota_exceeded:
                    cleared += 1
                record.failed = False
                record.quota_exceeded = False
        return cleared

    @classmethod
    async def load(
        cls,
        store: KeyValueStore,
        *,
        failure_reset: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utc_now,
    ) -> "CredentialPool":
        raw_tokens = await store.get(KEYS_STORE_KEY, [])
        raw_index = await store.get(INDEX_STORE_KEY, 0)
        raw_stats = await store.get(STATS_STORE_KEY, {})

        tokens: list[str] = []
        if isinstance(raw_tokens, list):
            for token in raw_tokens:
                if isinstance(token, str) and token and token not in tokens:
                    tokens.append(token)

        stats_source = raw_stats if isinstance(raw_stats, dict) else {}
        stats = {token: CredentialHealth.from_dict(stats_source.get(token)) for token in tokens}

        index: int | None = None
        if tokens:
            index = raw_index if isinstance(raw_index, int) and 0 <= raw_index < len(tokens) else 0

        pool = cls(tokens=tokens, current_index=index, stats=stats, clock=clock)
        cleared = pool.clear_stale_failures(max_age=failure_reset)
        logger.info("API key pool loaded with %s keys (%s failures reset)", len(tokens), cleared)
        return pool

    async def save(self, store: KeyValueStore) -> None:
        await store.set(KEYS_STORE_KEY, list(self.tokens))
        await store.set(INDEX_STORE_KEY, self.current_index if self.current_index is not None else 0)
        await store.set(STATS_STORE_KEY, {token: self.health(token).to_dict() for token in self.tokens})
