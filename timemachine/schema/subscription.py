"""Pydantic schemas for followed channels."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SubscriptionCreateRequest(BaseModel):
    """Inbound payload for following a channel."""

    name: str = Field(..., min_length=1, description="Channel display name")
    channel_id: str | None = Field(None, description="Channel id when already known")


class SubscriptionResponse(BaseModel):
    id: int
    name: str
    channel_id: str | None
    added_at: datetime


class SubscriptionListResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
