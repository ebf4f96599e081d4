from __future__ import annotations

import httpx
import pytest

from watchparty.services.media import WidgetApi

from helpers import STREAM_URL, FakeYoutubeDL, MonotonicClock, WallClock, media_playlist


@pytest.fixture
def wall_clock() -> WallClock:
    return WallClock()


@pytest.fixture
def mono() -> MonotonicClock:
    return MonotonicClock()


@pytest.fixture
def manifests() -> dict[str, httpx.Response]:
    return {STREAM_URL: httpx.Response(200, text=media_playlist())}


@pytest.fixture
async def http_client(manifests):
    def handler(request: httpx.Request) -> httpx.Response:
        return manifests.get(str(request.url), httpx.Response(404))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture
def ydl() -> FakeYoutubeDL:
    return FakeYoutubeDL()


@pytest.fixture
def widget_api(ydl):
    async def loader():
        return ydl

    api = WidgetApi(loader=loader)
    WidgetApi.install(api)
    yield api
    WidgetApi.install(None)


@pytest.fixture
def adapter_options(http_client, widget_api) -> dict:
    return {"http_client": http_client, "api": widget_api}
