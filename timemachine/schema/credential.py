"""Pydantic models for the credential pool API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CredentialCreateRequest(BaseModel):
    """Inbound payload to add an API key."""

    token: str = Field(..., min_length=1, description="YouTube Data API key")


class CredentialHealthResponse(BaseModel):
    request_count: int
    success_count: int
    failed: bool
    quota_exceeded: bool
    last_used_at: datetime | None
    last_failed_at: datetime | None


class CredentialResponse(BaseModel):
    position: int
    masked: str
    current: bool
    health: CredentialHealthResponse


class SessionStatsResponse(BaseModel):
    api_calls: int
    cache_hits: int


class CredentialPoolResponse(BaseModel):
    """Snapshot of every key in rotation order."""

    current_index: int | None
    credentials: list[CredentialResponse]
    session_stats: SessionStatsResponse


class CredentialCheckResponse(BaseModel):
    position: int
    masked: str
    status: str
    message: str
