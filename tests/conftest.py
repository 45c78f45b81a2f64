"""Shared fixtures: proxy settings, a stub fetcher and an app client."""

from __future__ import annotations

import pytest

from core.proxy.settings import ProxySettings
from core.proxy_manager import create_app
from tests.helpers import PROXY_BASE, StubFetcher


@pytest.fixture
def settings() -> ProxySettings:
    return ProxySettings(public_url=PROXY_BASE)


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
async def proxy_client(aiohttp_client, settings, stub_fetcher):
    return await aiohttp_client(create_app(settings, stub_fetcher))
