from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from webtags.config import get_settings
from webtags.main import app
from webtags.observability.metrics import reset_metrics


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "METRICS_REQUEST_NAME",
        "METRICS_IGNORE_TRAILING_SLASH",
        "METRICS_LONG_REQUESTS_ENABLED",
        "ENABLE_METRICS_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_metrics()

    yield

    reset_metrics()
    get_settings.cache_clear()


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
