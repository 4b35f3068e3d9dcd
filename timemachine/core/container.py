"""Per-application wiring of the stateful services."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import timedelta

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timemachine.core.config import Settings
from timemachine.services.cache_store import CacheStore
from timemachine.services.content_fetcher import ContentFetcher
from timemachine.services.credential_pool import CredentialPool
from timemachine.services.kv_store import KeyValueStore, SqlKeyValueStore
from timemachine.services.recommendation_engine import RecommendationEngine
from timemachine.services.reference_date import ReferenceDateService
from timemachine.services.request_router import RequestRouter, Sleeper

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything a request handler needs, owned by one application instance."""

    config: Settings
    store: KeyValueStore
    client: httpx.AsyncClient
    pool: CredentialPool
    cache: CacheStore
    router: RequestRouter
    fetcher: ContentFetcher
    engine: RecommendationEngine
    reference_date: ReferenceDateService
    rng: random.Random

    async def save_pool(self) -> None:
        await self.pool.save(self.store)

    async def aclose(self) -> None:
        await self.client.aclose()


async def build_container(
    config: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    client: httpx.AsyncClient | None = None,
    rng: random.Random | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> ServiceContainer:
    store = SqlKeyValueStore(session_factory)
    rng = rng or random.Random()
    client = client or httpx.AsyncClient(headers={"User-Agent": "yt-time-machine/0.1"})

    pool = await CredentialPool.load(store, failure_reset=timedelta(hours=config.failure_reset_hours))
    seeded = [token for token in config.youtube_api_keys if pool.add(token)]
    if seeded:
        logger.info("Seeded %s API keys from configuration", len(seeded))
    await pool.save(store)

    cache = CacheStore(store, default_ttl=timedelta(minutes=config.video_cache_ttl_minutes))
    router = RequestRouter(pool, store, client, config=config, sleep=sleep)
    return ServiceContainer(
        config=config,
        store=store,
        client=client,
        pool=pool,
        cache=cache,
        router=router,
        fetcher=ContentFetcher(router, cache, config=config, rng=rng, sleep=sleep),
        engine=RecommendationEngine(config=config, rng=rng),
        reference_date=ReferenceDateService(
            store,
            cache,
            default_date=config.default_reference_date,
            auto_advance=config.auto_advance_days,
        ),
        rng=rng,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's service container."""

    return request.app.state.container
