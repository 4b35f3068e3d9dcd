"""Synthesized display fields: plausible view counts and relative upload ages."""

from __future__ import annotations

import random
from datetime import datetime, timezone

# (max days since upload, min views, max views); the last bucket is open-ended.
REGULAR_VIEW_RANGES: tuple[tuple[int | None, int, int], ...] = (
    (1, 50, 10_000),
    (7, 500, 100_000),
    (30, 2_000, 500_000),
    (365, 5_000, 2_000_000),
    (None, 10_000, 10_000_000),
)
VIRAL_VIEW_RANGES: tuple[tuple[int | None, int, int], ...] = (
    (1, 100_000, 5_000_000),
    (7, 100_000, 5_000_000),
    (30, 500_000, 20_000_000),
    (365, 1_000_000, 50_000_000),
    (None, 2_000_000, 100_000_000),
)

_SECONDS_PER_DAY = 86_400


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an API timestamp (``2014-06-01T12:00:00Z``) into an aware datetime."""

    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(published_at: str | datetime, reference_date: str | datetime) -> int:
    delta = parse_timestamp(reference_date) - parse_timestamp(published_at)
    return int(delta.total_seconds() // _SECONDS_PER_DAY)


def view_range(days: int, *, viral: bool = False) -> tuple[int, int]:
    ranges = VIRAL_VIEW_RANGES if viral else REGULAR_VIEW_RANGES
    for max_days, low, high in ranges:
        if max_days is None or days <= max_days:
            return low, high
    raise AssertionError("view ranges must end with an open bucket")


def generate_view_count(
    published_at: str | datetime,
    reference_date: str | datetime,
    *,
    viral: bool = False,
    rng: random.Random | None = None,
) -> str:
    rng = rng or random.Random()
    low, high = view_range(days_since(published_at, reference_date), viral=viral)
    multiplier = rng.uniform(0.2, 1.0)
    return format_view_count(int(low + (high - low) * multiplier))


def format_view_count(count: int) -> str:
    if count >= 1_000_000:
        return _strip_zero(f"{count / 1_000_000:.1f}") + "M"
    if count >= 1_000:
        return _strip_zero(f"{count / 1_000:.1f}") + "K"
    return f"{count:,}"


def _strip_zero(text: str) -> str:
    return text[:-2] if text.endswith(".0") else text


def _plural(count: int, unit: str) -> str:
    if count == 1:
        return f"1 {unit} ago"
    return f"{count} {unit}s ago"


def format_relative_date(published_at: str | datetime, reference_date: str | datetime) -> str:
    elapsed = parse_timestamp(reference_date) - parse_timestamp(published_at)
    seconds = int(elapsed.total_seconds())
    if seconds < 1:
        return "just now"

    days = seconds // _SECONDS_PER_DAY
    if days >= 365:
        return _plural(days // 365, "year")
    if days >= 30:
        return _plural(days // 30, "month")
    if days >= 7:
        return _plural(days // 7, "week")
    if days >= 1:
        return _plural(days, "day")

    hours = seconds // 3600
    if hours >= 1:
        return _plural(hours, "hour")
    minutes = seconds // 60
    if minutes >= 1:
        return _plural(minutes, "minute")
    return _plural(seconds, "second")
