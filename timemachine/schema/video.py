"""Pydantic models for synthesized video listings."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class VideoResponse(BaseModel):
    id: str
    title: str
    channel_name: str
    channel_id: str
    thumbnail_url: str
    published_at: str
    description: str
    view_count_display: str
    relative_date_display: str
    is_viral: bool


class VideoListResponse(BaseModel):
    reference_date: date
    videos: list[VideoResponse]


class RecommendationRequest(BaseModel):
    """Current watch-page context."""

    current_video_title: str = Field(..., min_length=1)
    current_channel_id: str | None = None
    current_channel_name: str = ""
    force_refresh: bool = False


class ReferenceDatePayload(BaseModel):
    reference_date: date
