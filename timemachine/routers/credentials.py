"""API endpoints for managing the API key pool."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from timemachine.core.container import ServiceContainer, get_container
from timemachine.schema.credential import (
    CredentialCheckResponse,
    CredentialCreateRequest,
    CredentialHealthResponse,
    CredentialPoolResponse,
    CredentialResponse,
    SessionStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credentials", tags=["credentials"])


def _pool_response(container: ServiceContainer) -> CredentialPoolResponse:
    credentials = [
        CredentialResponse(
            position=entry.position,
            masked=entry.masked,
            current=entry.current,
            health=CredentialHealthResponse(**entry.health.to_dict()),
        )
        for entry in container.pool.snapshot()
    ]
    stats = container.fetcher.stats
    return CredentialPoolResponse(
        current_index=container.pool.current_index,
        credentials=credentials,
        session_stats=SessionStatsResponse(api_calls=stats.api_calls, cache_hits=stats.cache_hits),
    )


@router.get("", response_model=CredentialPoolResponse)
async def list_credentials(container: ServiceContainer = Depends(get_container)) -> CredentialPoolResponse:
    return _pool_response(container)


@router.post("", response_model=CredentialPoolResponse, status_code=status.HTTP_201_CREATED)
async def add_credential(
    payload: CredentialCreateRequest,
    container: ServiceContainer = Depends(get_container),
) -> CredentialPoolResponse:
    async with container.pool.lock:
        added = container.pool.add(payload.token)
        if added:
            await container.save_pool()
    if not added:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="API key rejected: too short, empty or already present",
        )
    return _pool_response(container)


@router.delete("/{token}", response_model=CredentialPoolResponse)
async def delete_credential(
    token: str,
    container: ServiceContainer = Depends(get_container),
) -> CredentialPoolResponse:
    async with container.pool.lock:
        removed = container.pool.remove(token)
        if removed:
            await container.save_pool()
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    return _pool_response(container)


@router.post("/check", response_model=list[CredentialCheckResponse])
async def check_credentials(container: ServiceContainer = Depends(get_container)) -> list[CredentialCheckResponse]:
    if len(container.pool) == 0:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No API keys configured")

    results = await container.router.check_all()
    logger.info("Checked %s API keys", len(results))
    return [
        CredentialCheckResponse(position=r.position, masked=r.masked, status=r.status, message=r.message)
        for r in results
    ]


@router.post("/reset", response_model=CredentialPoolResponse)
async def reset_credentials(container: ServiceContainer = Depends(get_container)) -> CredentialPoolResponse:
    async with container.pool.lock:
        container.pool.reset_health()
        await container.save_pool()
    return _pool_response(container)
