"""Shared fixtures for the test-suite."""

from __future__ import annotations

from typing import Any, Callable, List

import httpx
import pytest

from settings import Settings
from store import MemoryStore


class FakeClock:
    """Manually advanced replacement for `time.time`."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the developer's environment."""
    values: dict = {
        "secret": "s3cret",
        "site_name": None,
        "site_url": None,
        "feed_url": None,
        "ping_endpoints": None,
        "detector": "github",
        "github_repo": None,
        "github_branch": "main",
        "github_token": None,
        "cloudflare_api_token": None,
        "cloudflare_account_id": None,
        "cloudflare_pages_project": None,
        "subreq_budget": 45,
        "concurrency": 6,
        "timeout_ms": 2_000,
        "deadline_seconds": 0,
        "kv_backend": "memory",
        "kv_path": "data/kv.json",
        "redis_url": "",
    }
    values.update(overrides)
    return Settings(**values)


class RecordingHandler:
    """MockTransport handler answering per-URL status codes and recording calls."""

    def __init__(self, statuses: dict | None = None, default: int = 200, body: str = "") -> None:
        self.statuses = statuses or {}
        self.default = default
        self.body = body
        self.calls: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        status = self.statuses.get(str(request.url), self.default)
        return httpx.Response(status, text=self.body)

    @property
    def urls(self) -> List[str]:
        return [str(r.url) for r in self.calls]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings
