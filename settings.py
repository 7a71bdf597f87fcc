"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_KV_PATH,
    DEFAULT_SUBREQ_BUDGET,
    DEFAULT_TIMEOUT_MS,
)

__all__ = ["Settings", "load_settings"]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    s = raw.strip()
    return s or None


@dataclass(frozen=True)
class Settings:
    # Manual trigger auth; an empty secret rejects every request.
    secret: str = field(default_factory=lambda: os.getenv("XMLRPC_PING_SECRET", ""))

    site_name: Optional[str] = field(default_factory=lambda: _env_optional("SITE_NAME"))
    site_url: Optional[str] = field(default_factory=lambda: _env_optional("SITE_URL"))
    feed_url: Optional[str] = field(default_factory=lambda: _env_optional("FEED_URL"))
    # JSON array of endpoint URLs
    ping_endpoints: Optional[str] = field(default_factory=lambda: _env_optional("PING_ENDPOINTS"))

    detector: str = field(default_factory=lambda: _env_str("DETECTOR", "github").lower())
    github_repo: Optional[str] = field(default_factory=lambda: _env_optional("GITHUB_REPO"))
    github_branch: str = field(default_factory=lambda: _env_str("GITHUB_BRANCH", "main"))
    github_token: Optional[str] = field(default_factory=lambda: _env_optional("GITHUB_TOKEN"))
    cloudflare_api_token: Optional[str] = field(default_factory=lambda: _env_optional("CLOUDFLARE_API_TOKEN"))
    cloudflare_account_id: Optional[str] = field(default_factory=lambda: _env_optional("CLOUDFLARE_ACCOUNT_ID"))
    cloudflare_pages_project: Optional[str] = field(
        default_factory=lambda: _env_optional("CLOUDFLARE_PAGES_PROJECT")
    )

    subreq_budget: int = field(default_factory=lambda: _env_int("SUBREQ_BUDGET", DEFAULT_SUBREQ_BUDGET))
    concurrency: int = field(default_factory=lambda: _env_int("PING_CONCURRENCY", DEFAULT_CONCURRENCY))
    timeout_ms: int = field(default_factory=lambda: _env_int("PING_TIMEOUT_MS", DEFAULT_TIMEOUT_MS))
    # 0 disables the orchestrator deadline
    deadline_seconds: int = field(default_factory=lambda: _env_int("PING_DEADLINE_SECONDS", 0))

    kv_backend: str = field(default_factory=lambda: _env_str("KV_BACKEND", "file").lower())
    kv_path: str = field(default_factory=lambda: _env_str("KV_PATH", str(DEFAULT_KV_PATH)))
    redis_url: str = field(default_factory=lambda: os.getenv("REDIS_URL", ""))


def load_settings() -> Settings:
    """Read a fresh `Settings` snapshot from the environment."""
    return Settings()
