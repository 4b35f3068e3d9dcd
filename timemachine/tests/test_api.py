from __future__ import annotations

import random
from datetime import date, timedelta
from urllib.parse import quote

import httpx
import pytest
import pytest_asyncio

from timemachine.core.config import Settings
from timemachine.core.container import build_container
from timemachine.db.session import get_session
from timemachine.main import create_app
from timemachine.tests.factories import make_token, search_item

TOKEN = make_token("A")


def _youtube(request: httpx.Request) -> httpx.Response:
    params = request.url.params
    if params.get("type") == "channel":
        return httpx.Response(200, json={"items": [{"snippet": {"channelId": "UCdw20"}}]})
    return httpx.Response(
        200,
        json={"items": [search_item(f"v{i}", channel_id="UCdw20", channel_title="Direwolf20") for i in range(3)]},
    )


async def _client(session_factory, *, keys: list[str]) -> tuple[httpx.AsyncClient, object]:
    config = Settings(youtube_api_keys=keys, viral_query_limit=1, auto_advance_days=False)
    youtube = httpx.AsyncClient(transport=httpx.MockTransport(_youtube))
    container = await build_container(
        config, session_factory, client=youtube, rng=random.Random(11), sleep=_no_sleep
    )

    app = create_app()
    app.state.container = container

    async def _session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return client, container


async def _no_sleep(seconds: float) -> None:
    return None


@pytest_asyncio.fixture
async def api(session_factory):
    client, container = await _client(session_factory, keys=[TOKEN])
    async with client:
        yield client
    await container.aclose()


@pytest.mark.asyncio
async def test_healthcheck(api: httpx.AsyncClient) -> None:
    response = await api.get("/healthz")
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_credentials_are_masked_and_validated(api: httpx.AsyncClient) -> None:
    listing = (await api.get("/credentials")).json()
    assert listing["current_index"] == 0
    assert listing["credentials"][0]["masked"] == TOKEN[:8] + "..."
    assert TOKEN not in str(listing)
    assert listing["session_stats"] == {"api_calls": 0, "cache_hits": 0}

    assert (await api.post("/credentials", json={"token": "short"})).status_code == 400
    created = await api.post("/credentials", json={"token": make_token("B")})
    assert created.status_code == 201
    assert len(created.json()["credentials"]) == 2

    assert (await api.delete(f"/credentials/{make_token('Z')}")).status_code == 404
    assert (await api.delete(f"/credentials/{make_token('B')}")).status_code == 200


@pytest.mark.asyncio
async def test_check_without_keys_is_unavailable(session_factory) -> None:
    client, container = await _client(session_factory, keys=[])
    async with client:
        response = await client.post("/credentials/check")
    await container.aclose()

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_subscription_lifecycle(api: httpx.AsyncClient) -> None:
    created = await api.post("/subscriptions", json={"name": "Direwolf20"})
    assert created.status_code == 201
    subscription_id = created.json()["id"]

    assert (await api.post("/subscriptions", json={"name": "direwolf20"})).status_code == 400
    assert len((await api.get("/subscriptions")).json()["subscriptions"]) == 1

    assert (await api.delete(f"/subscriptions/{subscription_id}")).status_code == 204
    assert (await api.delete(f"/subscriptions/{subscription_id}")).status_code == 404


@pytest.mark.asyncio
async def test_reference_date_rejects_future(api: httpx.AsyncClient) -> None:
    future = (date.today() + timedelta(days=2)).isoformat()
    assert (await api.put("/reference-date", json={"reference_date": future})).status_code == 400

    assert (await api.put("/reference-date", json={"reference_date": "2013-01-05"})).status_code == 200
    assert (await api.get("/reference-date")).json() == {"reference_date": "2013-01-05"}


@pytest.mark.asyncio
async def test_search_and_feed(api: httpx.AsyncClient) -> None:
    await api.put("/reference-date", json={"reference_date": "2014-06-14"})
    search = (await api.get("/videos/search", params={"q": "feed the beast"})).json()
    assert [video["id"] for video in search["videos"]] == ["v0", "v1", "v2"]

    await api.post("/subscriptions", json={"name": "Direwolf20"})
    feed = (await api.get("/videos/feed")).json()
    assert {video["id"] for video in feed["videos"]} == {"v0", "v1", "v2"}

    subscriptions = (await api.get("/subscriptions")).json()["subscriptions"]
    assert subscriptions[0]["channel_id"] == "UCdw20"


@pytest.mark.asyncio
async def test_recommendations_exclude_current_video(api: httpx.AsyncClient) -> None:
    await api.put("/reference-date", json={"reference_date": "2014-06-14"})
    await api.post("/subscriptions", json={"name": "Direwolf20", "channel_id": "UCdw20"})

    response = await api.post(
        "/recommendations",
        json={"current_video_title": "Video v0", "current_channel_id": "UCdw20", "current_channel_name": "Direwolf20"},
    )

    assert response.status_code == 200
    assert {video["id"] for video in response.json()["videos"]} == {"v1", "v2"}


@pytest.mark.asyncio
async def test_delete_credential_with_percent_sequence(api: httpx.AsyncClient) -> None:
    token = "AIza%41" + "x" * 35
    assert (await api.post("/credentials", json={"token": token})).status_code == 201

    response = await api.delete(f"/credentials/{quote(token, safe='')}")

    assert response.status_code == 200
    assert len(response.json()["credentials"]) == 1


@pytest.mark.asyncio
async def test_session_stats_count_search_requests(api: httpx.AsyncClient) -> None:
    await api.put("/reference-date", json={"reference_date": "2014-06-14"})
    await api.get("/videos/search", params={"q": "feed the beast"})
    await api.get("/videos/search", params={"q": "feed the beast"})

    stats = (await api.get("/credentials")).json()["session_stats"]

    assert stats == {"api_calls": 1, "cache_hits": 1}
