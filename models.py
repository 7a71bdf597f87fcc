"""Data structures used across the application."""

from __future__ import annotations

from typing import Any, List, Optional, TypedDict


class SiteInfo(TypedDict):
    """Site announced to the update services."""

    name: str
    url: str
    feedUrl: Optional[str]


class PingOutcome(TypedDict):
    """Structured result returned after pinging a single endpoint."""

    url: str
    ok: bool
    status: int
    ms: int
    error: Optional[str]
    bodySnippet: Optional[str]


class Totals(TypedDict):
    total: int
    batchStart: int
    batchEnd: int
    batchCount: int
    ok: int
    fail: int


class BatchPlan(TypedDict):
    """Contiguous window of the endpoint list processed by one invocation."""

    slice: List[str]
    batchStart: int
    batchEnd: int
    nextCursor: Optional[int]


class BatchReport(TypedDict, total=False):
    """Report returned by a ping run, either done or skipped."""

    status: str
    reason: str
    dryRun: bool
    method: str
    siteName: str
    siteUrl: str
    feedUrl: Optional[str]
    totals: Totals
    summary: List[PingOutcome]
    nextCursor: Optional[int]
    subrequestBudget: int
    concurrencyUsed: int


class PingPayload(TypedDict, total=False):
    """Optional overrides accepted by the manual trigger."""

    siteName: str
    siteUrl: str
    feedUrl: Optional[str]
    endpoints: List[str]
    cursor: int


class PingOptions(TypedDict, total=False):
    dryRun: bool
    verbose: bool
    only: str
    limit: int
    cursor: int


class LatestChange(TypedDict):
    id: str


class StoredResult(TypedDict, total=False):
    """Value kept under the last-result and last-dry keys."""

    time: int
    latest: LatestChange
    result: BatchReport


class StoredRequest(TypedDict):
    time: int
    body: Any


class HealthSite(TypedDict):
    name: Optional[str]
    url: Optional[str]
    feed: Optional[str]


class HealthData(TypedDict):
    """Snapshot shown by the status page."""

    site: HealthSite
    latestId: Optional[str]
    endpointsCount: int
    lastPingAt: Optional[int]
    nextAllowedInMs: int
    lastResultAt: Optional[int]
    successes: int
    failures: int
    lastRequestAt: Optional[int]
    lastRequestBody: Any
    summary: List[PingOutcome]


__all__ = [
    "SiteInfo",
    "PingOutcome",
    "Totals",
    "BatchPlan",
    "BatchReport",
    "PingPayload",
    "PingOptions",
    "LatestChange",
    "StoredResult",
    "StoredRequest",
    "HealthSite",
    "HealthData",
]
