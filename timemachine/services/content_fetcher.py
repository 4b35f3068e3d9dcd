"""Builds date-bounded YouTube search queries and caches the mapped results."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Sequence

from timemachine.core.config import Settings, settings as default_settings
from timemachine.services.cache_store import CacheStore
from timemachine.services.recommendation_engine import (
    RecommendationContext,
    extract_video_keywords,
    matches_keywords,
)
from timemachine.services.request_router import RequestRouter, RouterError, Sleeper
from timemachine.services.video_record import VideoRecord, video_from_item

logger = logging.getLogger(__name__)

VIRAL_QUERIES: tuple[str, ...] = (
    "viral meme",
    "funny viral video",
    "epic fail",
    "amazing viral",
    "internet meme",
    "viral compilation",
    "funny moments",
    "epic win",
    "viral trend",
    "popular meme",
    "viral challenge",
    "funny compilation",
    "viral clip",
    "internet famous",
    "viral sensation",
)
SERIES_QUERY_KEYWORDS = 2


@dataclass(slots=True)
class FetchStats:
    """Per-process counters of API round trips and cache hits."""

    api_calls: int = 0
    cache_hits: int = 0


@dataclass(slots=True)
class SubscriptionTarget:
    """A followed channel as seen by the fetcher."""

    name: str
    channel_id: str | None = None


def end_of_day(day: date | datetime) -> datetime:
    """Return the last representable instant of ``day`` in UTC."""

    if isinstance(day, datetime):
        day = day.astimezone(timezone.utc).date() if day.tzinfo else day.date()
    return datetime.combine(day, time(23, 59, 59, 999000), tzinfo=timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _date_key(moment: date | datetime) -> str:
    if isinstance(moment, datetime):
        return moment.date().isoformat()
    return moment.isoformat()


class ContentFetcher:
    """Channel, search and viral listings on top of the request router.

    Router failures never propagate: they are logged and an empty list is
    returned so callers degrade to fewer videos.
    """

    def __init__(
        self,
        router: RequestRouter,
        cache: CacheStore,
        *,
        config: Settings = default_settings,
        rng: random.Random | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._router = router
        self._cache = cache
        self._config = config
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.stats = FetchStats()

    @property
    def video_ttl(self) -> timedelta:
        return timedelta(minutes=self._config.video_cache_ttl_minutes)

    @property
    def channel_ttl(self) -> timedelta:
        return timedelta(minutes=self._config.channel_cache_ttl_minutes)

    @property
    def search_ttl(self) -> timedelta:
        return timedelta(minutes=self._config.search_cache_ttl_minutes)

    async def _cached_videos(self, key: str, *, ttl: timedelta, bypass: bool = False) -> list[VideoRecord] | None:
        cached = await self._cache.get(key, bypass=bypass, ttl=ttl)
        if not isinstance(cached, list):
            return None
        try:
            videos = [VideoRecord.from_dict(entry) for entry in cached]
        except (KeyError, TypeError, AttributeError):
            logger.warning("Ignoring malformed cache entry", extra={"cache_key": key})
            return None
        self.stats.cache_hits += 1
        return videos

    async def _store_videos(self, key: str, videos: Sequence[VideoRecord]) -> None:
        await self._cache.set(key, [video.to_dict() for video in videos])

    async def _search(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self._router.execute(self._router.endpoint("search"), params)
        self.stats.api_calls += 1
        items = response.get("items")
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    def _map_items(
        self,
        items: Iterable[dict[str, Any]],
        reference_date: datetime,
        *,
        channel_name: str = "",
        viral: bool = False,
    ) -> list[VideoRecord]:
        videos: list[VideoRecord] = []
        for item in items:
            video = video_from_item(
                item,
                reference_date,
                fallback_channel_name=channel_name,
                viral=viral,
                rng=self._rng,
            )
            if video is not None:
                videos.append(video)
        return videos

    async def get_channel_videos(
        self,
        channel_id: str,
        channel_name: str,
        end_date: datetime,
        *,
        force_refresh: bool = False,
    ) -> list[VideoRecord]:
        """Latest uploads of a channel published before ``end_date``."""

        cache_key = f"channel_videos_{channel_id}_{_date_key(end_date)}"
        cached = await self._cached_videos(cache_key, ttl=self.channel_ttl, bypass=force_refresh)
        if cached is not None:
            return cached

        params = {
            "part": "snippet",
            "channelId": channel_id,
            "type": "video",
            "order": "date",
            "publishedBefore": _iso(end_date),
            "maxResults": self._config.videos_per_channel,
        }
        try:
            items = await self._search(params)
        except RouterError as exc:
            logger.warning("Failed to get videos for channel %s: %s", channel_name or channel_id, exc)
            return []

        videos = self._map_items(items, end_date, channel_name=channel_name)
        await self._store_videos(cache_key, videos)
        return videos

    async def get_channel_page_videos(
        self,
        channel_id: str,
        channel_name: str,
        end_date: datetime,
        start_date: datetime | None = None,
    ) -> list[VideoRecord]:
        window = _date_key(start_date) if start_date else "latest"
        cache_key = f"channel_page_videos_{channel_id}_{_date_key(end_date)}_{window}"
        cached = await self._cached_videos(cache_key, ttl=self.channel_ttl)
        if cached is not None:
            return cached

        params: dict[str, Any] = {
            "part": "snippet",
            "channelId": channel_id,
            "type": "video",
            "order": "date",
            "publishedBefore": _iso(end_date),
            "maxResults": self._config.channel_page_videos_per_month,
        }
        if start_date:
            params["publishedAfter"] = _iso(start_date)

        try:
            items = await self._search(params)
        except RouterError as exc:
            logger.warning("Failed to get channel page videos for %s: %s", channel_name or channel_id, exc)
            return []

        videos = self._map_items(items, end_date, channel_name=channel_name)
        await self._store_videos(cache_key, videos)
        return videos

    async def search_videos(
        self,
        query: str,
        *,
        max_results: int = 10,
        end_date: datetime | None = None,
        force_refresh: bool = False,
    ) -> list[VideoRecord]:
        query = query.strip()
        if not query:
            return []

        window = _date_key(end_date) if end_date else "now"
        cache_key = f"search_{query.lower()}_{max_results}_{window}"
        cached = await self._cached_videos(cache_key, ttl=self.search_ttl, bypass=force_refresh)
        if cached is not None:
            return cached

        params: dict[str, Any] = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "order": "relevance",
            "maxResults": max_results,
        }
        if end_date:
            params["publishedBefore"] = _iso(end_date)

        try:
            items = await self._search(params)
        except RouterError as exc:
            logger.warning("Search failed for query %r: %s", query, exc)
            return []

        videos = self._map_items(items, end_date or datetime.now(timezone.utc))
        await self._store_videos(cache_key, videos)
        return videos

    async def get_viral_videos(self, max_date: date | datetime, *, force_refresh: bool = False) -> list[VideoRecord]:
        """Popular short clips from the two years leading up to ``max_date``."""

        date_key = _date_key(max_date)
        cache_key = f"viral_videos_{date_key}"
        cached = await self._cached_videos(cache_key, ttl=self.video_ttl, bypass=force_refresh)
        if cached is not None:
            return cached

        end_date = end_of_day(max_date)
        try:
            start_date = end_date.replace(year=end_date.year - 2, hour=0, minute=0, second=0, microsecond=0)
        except ValueError:
            # 29 February
            start_date = end_date.replace(year=end_date.year - 2, day=28, hour=0, minute=0, second=0, microsecond=0)

        logger.info("Fetching viral videos for %s", date_key)
        collected: list[VideoRecord] = []
        for _ in range(min(len(VIRAL_QUERIES), self._config.viral_query_limit)):
            query = self._rng.choice(VIRAL_QUERIES)
            params = {
                "part": "snippet",
                "q": query,
                "type": "video",
                "order": "relevance",
                "publishedBefore": _iso(end_date),
                "publishedAfter": _iso(start_date),
                "maxResults": 5,
                "videoDuration": "short",
            }
            try:
                items = await self._search(params)
            except RouterError as exc:
                logger.warning("Failed to fetch viral videos for query %r: %s", query, exc)
            else:
                collected.extend(self._map_items(items, end_date, viral=True))
            await self._sleep(self._config.viral_query_delay_ms / 1000.0)

        by_id: dict[str, VideoRecord] = {}
        for video in collected:
            by_id.setdefault(video.id, video)
        unique = list(by_id.values())
        self._rng.shuffle(unique)
        videos = unique[: self._config.viral_videos_count]
        await self._store_videos(cache_key, videos)
        logger.info("Cached %s viral videos for %s", len(videos), date_key)
        return videos

    async def get_series_videos(
        self,
        context: RecommendationContext,
        *,
        channel_name: str = "",
        max_results: int = 10,
    ) -> list[VideoRecord]:
        """Search for videos sharing the current title's strongest keywords."""

        keywords = extract_video_keywords(context.current_video_title)
        if not keywords:
            return []

        query = " ".join([channel_name, *keywords[:SERIES_QUERY_KEYWORDS]]).strip()
        results = await self.search_videos(
            query,
            max_results=max_results,
            end_date=end_of_day(context.reference_date),
        )
        return [
            video
            for video in results
            if video.title != context.current_video_title and matches_keywords(video, keywords)
        ]

    async def resolve_channel_id(self, channel_name: str) -> str | None:
        cache_key = f"channel_id_{channel_name}"
        cached = await self._cache.get(cache_key, ttl=self.video_ttl)
        if isinstance(cached, str) and cached:
            self.stats.cache_hits += 1
            return cached

        params = {"part": "snippet", "q": channel_name, "type": "channel", "maxResults": 1}
        try:
            items = await self._search(params)
        except RouterError as exc:
            logger.warning("Failed to find channel id for %s: %s", channel_name, exc)
            return None

        for item in items:
            snippet = item.get("snippet")
            channel_id = snippet.get("channelId") if isinstance(snippet, dict) else None
            if channel_id:
                await self._cache.set(cache_key, channel_id)
                return str(channel_id)
        return None

    async def load_subscription_videos(
        self,
        subscriptions: Sequence[SubscriptionTarget],
        end_date: datetime,
        *,
        force_refresh: bool = False,
    ) -> list[VideoRecord]:
        """Fetch every followed channel in small concurrent batches and merge the results.

        Channel ids resolved along the way are written back onto the targets.
        """

        cache_key = f"subscription_videos_{_date_key(end_date)}"
        cached = await self._cached_videos(cache_key, ttl=self.video_ttl, bypass=force_refresh)
        if cached is not None:
            return cached

        async def _load(target: SubscriptionTarget) -> list[VideoRecord]:
            if not target.channel_id:
                target.channel_id = await self.resolve_channel_id(target.name)
            if not target.channel_id:
                return []
            return await self.get_channel_videos(
                target.channel_id, target.name, end_date, force_refresh=force_refresh
            )

        batch_size = max(self._config.batch_size, 1)
        merged: list[VideoRecord] = []
        for offset in range(0, len(subscriptions), batch_size):
            batch = subscriptions[offset : offset + batch_size]
            results = await asyncio.gather(*(_load(target) for target in batch))
            for videos in results:
                merged.extend(videos)
            if offset + batch_size < len(subscriptions):
                await self._sleep(self._config.api_cooldown_ms / 1000.0)

        merged.sort(key=lambda video: video.published, reverse=True)
        await self._store_videos(cache_key, merged)
        logger.info("Loaded %s videos from %s subscriptions", len(merged), len(subscriptions))
        return merged
