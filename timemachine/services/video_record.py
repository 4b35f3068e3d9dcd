"""Immutable video record synthesized from YouTube search results."""

from __future__ import annotations

import random
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from timemachine.services.video_formatting import (
    format_relative_date,
    generate_view_count,
    parse_timestamp,
)


@dataclass(frozen=True, slots=True)
class VideoRecord:
    id: str
    title: str
    channel_name: str
    channel_id: str
    thumbnail_url: str
    published_at: str
    description: str
    view_count_display: str
    relative_date_display: str
    is_viral: bool = False

    @property
    def published(self) -> datetime:
        return parse_timestamp(self.published_at)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "VideoRecord":
        return cls(
            id=str(raw["id"]),
            title=str(raw.get("title") or ""),
            channel_name=str(raw.get("channel_name") or ""),
            channel_id=str(raw.get("channel_id") or ""),
            thumbnail_url=str(raw.get("thumbnail_url") or ""),
            published_at=str(raw["published_at"]),
            description=str(raw.get("description") or ""),
            view_count_display=str(raw.get("view_count_display") or ""),
            relative_date_display=str(raw.get("relative_date_display") or ""),
            is_viral=bool(raw.get("is_viral")),
        )


def _thumbnail(snippet: dict[str, Any]) -> str:
    thumbnails = snippet.get("thumbnails") or {}
    for size in ("medium", "default"):
        entry = thumbnails.get(size)
        if isinstance(entry, dict) and entry.get("url"):
            return str(entry["url"])
    return ""


def video_from_item(
    item: dict[str, Any],
    reference_date: datetime,
    *,
    fallback_channel_name: str = "",
    viral: bool = False,
    rng: random.Random | None = None,
) -> VideoRecord | None:
    """Map one raw search item; returns None for items without a video id or date."""

    identifier = item.get("id")
    video_id = identifier.get("videoId") if isinstance(identifier, dict) else None
    snippet = item.get("snippet")
    if not video_id or not isinstance(snippet, dict) or not snippet.get("publishedAt"):
        return None

    published_at = str(snippet["publishedAt"])
    return VideoRecord(
        id=str(video_id),
        title=str(snippet.get("title") or ""),
        channel_name=str(snippet.get("channelTitle") or fallback_channel_name),
        channel_id=str(snippet.get("channelId") or ""),
        thumbnail_url=_thumbnail(snippet),
        published_at=published_at,
        description=str(snippet.get("description") or ""),
        view_count_display=generate_view_count(published_at, reference_date, viral=viral, rng=rng),
        relative_date_display=format_relative_date(published_at, reference_date),
        is_viral=viral,
    )
