"""Shared fixtures: a controllable clock and a fake upstream for every API."""

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from fakes import FakeClock, FakeUpstream


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1000.0)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def settings(monkeypatch) -> Settings:
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("GIT_SHA", "abc123")
    monkeypatch.setenv("RATE_LIMIT_REQUESTS", "100")
    monkeypatch.delenv("COINGECKO_API_KEY", raising=False)
    return Settings()


@pytest.fixture
def client(settings, upstream, clock):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app = create_app(settings, http_client=http, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
