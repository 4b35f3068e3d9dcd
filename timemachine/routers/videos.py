"""API endpoints serving the synthesized "as of" catalog."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from timemachine.core.container import ServiceContainer, get_container
from timemachine.db.session import get_session
from timemachine.schema.video import (
    RecommendationRequest,
    ReferenceDatePayload,
    VideoListResponse,
    VideoResponse,
)
from timemachine.services.content_fetcher import end_of_day
from timemachine.services.recommendation_engine import RecommendationContext
from timemachine.services.reference_date import ReferenceDateError
from timemachine.services.subscription_registry import as_targets, list_subscriptions, remember_channel_ids
from timemachine.services.video_record import VideoRecord

logger = logging.getLogger(__name__)

router = APIRouter(tags=["videos"])


def _video_list(reference_date: date, videos: list[VideoRecord]) -> VideoListResponse:
    return VideoListResponse(
        reference_date=reference_date,
        videos=[VideoResponse(**video.to_dict()) for video in videos],
    )


async def _subscription_videos(
    container: ServiceContainer,
    session: AsyncSession,
    *,
    force_refresh: bool,
) -> list[VideoRecord]:
    reference_date = await container.reference_date.advance_if_due()
    targets = as_targets(await list_subscriptions(session))
    videos = await container.fetcher.load_subscription_videos(
        targets, end_of_day(reference_date), force_refresh=force_refresh
    )
    if await remember_channel_ids(session, targets):
        await session.commit()
    return videos


@router.get("/reference-date", response_model=ReferenceDatePayload)
async def get_reference_date(container: ServiceContainer = Depends(get_container)) -> ReferenceDatePayload:
    return ReferenceDatePayload(reference_date=await container.reference_date.advance_if_due())


@router.put("/reference-date", response_model=ReferenceDatePayload)
async def set_reference_date(
    payload: ReferenceDatePayload,
    container: ServiceContainer = Depends(get_container),
) -> ReferenceDatePayload:
    try:
        value = await container.reference_date.set(payload.reference_date)
    except ReferenceDateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ReferenceDatePayload(reference_date=value)


@router.delete("/cache", status_code=status.HTTP_200_OK)
async def clear_cache(container: ServiceContainer = Depends(get_container)) -> dict[str, int]:
    return {"removed": await container.cache.clear()}


@router.get("/videos/feed", response_model=VideoListResponse)
async def homepage_feed(
    refresh: bool = Query(False),
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session),
) -> VideoListResponse:
    """Subscription uploads mixed with a share of viral clips, shuffled."""

    config = container.config
    subscription_videos = await _subscription_videos(container, session, force_refresh=refresh)
    reference_date = await container.reference_date.get()

    viral_slots = int(config.max_homepage_videos * config.viral_video_percentage)
    viral_videos = await container.fetcher.get_viral_videos(reference_date, force_refresh=refresh)
    chosen_viral = container.engine.shuffle(viral_videos)[:viral_slots]

    regular_slots = config.max_homepage_videos - len(chosen_viral)
    seen = {video.id for video in chosen_viral}
    regular = [video for video in subscription_videos if video.id not in seen][:regular_slots]

    feed = container.engine.shuffle([*regular, *chosen_viral])
    return _video_list(reference_date, feed)


@router.get("/videos/search", response_model=VideoListResponse)
async def search(
    q: str = Query(..., min_length=1),
    max_results: int = Query(10, ge=1, le=50),
    container: ServiceContainer = Depends(get_container),
) -> VideoListResponse:
    reference_date = await container.reference_date.advance_if_due()
    videos = await container.fetcher.search_videos(
        q, max_results=max_results, end_date=end_of_day(reference_date)
    )
    return _video_list(reference_date, videos)


@router.get("/videos/channel/{channel_id}", response_model=VideoListResponse)
async def channel_page(
    channel_id: str,
    channel_name: str = Query(""),
    container: ServiceContainer = Depends(get_container),
) -> VideoListResponse:
    reference_date = await container.reference_date.advance_if_due()
    videos = await container.fetcher.get_channel_page_videos(channel_id, channel_name, end_of_day(reference_date))
    return _video_list(reference_date, videos)


@router.post("/recommendations", response_model=VideoListResponse)
async def recommendations(
    payload: RecommendationRequest,
    container: ServiceContainer = Depends(get_container),
    session: AsyncSession = Depends(get_session),
) -> VideoListResponse:
    """Watch-next list for the video currently being viewed."""

    all_videos = await _subscription_videos(container, session, force_refresh=False)
    reference_date = await container.reference_date.get()
    end_date = end_of_day(reference_date)
    context = RecommendationContext(
        current_channel_id=payload.current_channel_id,
        current_video_title=payload.current_video_title,
        reference_date=end_date,
    )

    fresh_videos: list[VideoRecord] = []
    if payload.current_channel_id:
        fresh_videos = await container.fetcher.get_channel_videos(
            payload.current_channel_id,
            payload.current_channel_name,
            end_date,
            force_refresh=payload.force_refresh,
        )
    series_videos = await container.fetcher.get_series_videos(context, channel_name=payload.current_channel_name)

    result = container.engine.generate(context, all_videos, fresh_videos, series_videos)
    logger.info(
        "Served %s recommendations",
        len(result),
        extra={"fresh": len(fresh_videos), "series": len(series_videos), "pool": len(all_videos)},
    )
    return _video_list(reference_date, result)
