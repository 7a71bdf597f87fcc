"""Ping runs: rate check, input resolution, batching, dispatch and persistence."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx
import requests

from constants import (
    DEFAULT_SITE_NAME,
    DEFAULT_SITE_URL,
    ENDPOINTS_KEY,
    LAST_DRY_KEY,
    LAST_DRY_TTL,
    LAST_REQUEST_KEY,
    LAST_REQUEST_TTL,
    LAST_RESULT_KEY,
    LAST_RESULT_TTL,
    LAST_SEEN_KEY,
    MINIMAL_ENDPOINTS,
    OUTPUT_FILTERS,
    SKIPPED_RATE_LIMITED,
)
from detectors import detect_latest_change
from gate import RateGate, now_ms
from models import BatchReport, HealthData, PingOptions, PingOutcome, SiteInfo, StoredResult
from pinger import count_ok, fetch_all, filter_outcomes
from planner import clamp_budget, clamp_concurrency, plan_batch
from rpc_encoder import encode_method_call, select_ping_method
from settings import Settings
from store import KeyValueStore

__all__ = [
    "resolve_site",
    "resolve_endpoints",
    "run_ping",
    "run_scheduled",
    "record_manual_request",
    "read_health",
]

LOGGER = logging.getLogger("xmlrpc-pinger")

ChangeDetector = Callable[[Settings], Optional[str]]


def _first_str(*candidates: Any) -> Optional[str]:
    for value in candidates:
        if isinstance(value, str):
            return value
    return None


def _url_list(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    return [str(u) for u in raw if isinstance(u, str) and u.strip()]


def resolve_site(settings: Settings, payload: Mapping[str, Any]) -> SiteInfo:
    """Payload fields win over environment values, which win over defaults."""
    return {
        "name": _first_str(payload.get("siteName"), settings.site_name, DEFAULT_SITE_NAME) or DEFAULT_SITE_NAME,
        "url": _first_str(payload.get("siteUrl"), settings.site_url, DEFAULT_SITE_URL) or DEFAULT_SITE_URL,
        "feedUrl": _first_str(payload.get("feedUrl"), settings.feed_url),
    }


async def resolve_endpoints(
    store: KeyValueStore, settings: Settings, payload: Mapping[str, Any]
) -> List[str]:
    """Persisted list, then payload list, then PING_ENDPOINTS, then the built-in list."""
    persisted = _url_list(await store.get_json(ENDPOINTS_KEY))
    if persisted:
        return persisted

    supplied = _url_list(payload.get("endpoints"))
    if supplied:
        return supplied

    if settings.ping_endpoints:
        try:
            configured = _url_list(json.loads(settings.ping_endpoints))
        except json.JSONDecodeError:
            LOGGER.warning("PING_ENDPOINTS is not a JSON array; using the built-in list")
        else:
            if configured:
                return configured

    return list(MINIMAL_ENDPOINTS)


def _skipped(reason: str) -> BatchReport:
    return {"status": "skipped", "reason": reason}


async def _persist(
    store: KeyValueStore, report: BatchReport, dry_run: bool, latest: Optional[str]
) -> None:
    record: StoredResult = {"time": now_ms(), "result": report}
    if dry_run:
        await store.put_json(LAST_DRY_KEY, record, LAST_DRY_TTL)
        return
    if latest:
        record["latest"] = {"id": latest}
    await store.put_json(LAST_RESULT_KEY, record, LAST_RESULT_TTL)


async def run_ping(
    store: KeyValueStore,
    settings: Settings,
    payload: Optional[Mapping[str, Any]] = None,
    options: Optional[PingOptions] = None,
    client: Optional[httpx.AsyncClient] = None,
    latest: Optional[str] = None,
) -> BatchReport:
    """Ping one batch of endpoints and persist the report.

    Real runs are refused while the hourly marker exists and take the marker
    before the first request goes out. Dry runs skip the marker entirely and
    only refresh the dry snapshot.
    """
    payload = payload or {}
    options = options or {}
    dry_run = bool(options.get("dryRun", False))
    verbose = bool(options.get("verbose", False))
    only = options.get("only") or "all"
    if only not in OUTPUT_FILTERS:
        only = "all"
    limit = int(options.get("limit") or 0)
    cursor = int(options.get("cursor") or 0)

    gate = RateGate(store)
    if not dry_run and await gate.check_rate_limit():
        LOGGER.info("Real run skipped: rate limited")
        return _skipped(SKIPPED_RATE_LIMITED)

    site = resolve_site(settings, payload)
    endpoints = await resolve_endpoints(store, settings, payload)
    if limit > 0:
        endpoints = endpoints[:limit]

    budget = clamp_budget(settings.subreq_budget)
    concurrency = clamp_concurrency(settings.concurrency)
    plan = plan_batch(endpoints, budget, cursor)

    method, params = select_ping_method(site)
    body = encode_method_call(method, params)

    if not dry_run and not await gate.acquire():
        LOGGER.info("Real run skipped: lock taken by a concurrent run")
        return _skipped(SKIPPED_RATE_LIMITED)

    deadline = None
    if settings.deadline_seconds > 0:
        deadline = time.monotonic() + settings.deadline_seconds

    outcomes: List[PingOutcome] = await fetch_all(
        plan["slice"],
        body,
        concurrency,
        timeout_ms=max(1, settings.timeout_ms),
        verbose=verbose,
        client=client,
        deadline=deadline,
    )
    ok = count_ok(outcomes)

    report: BatchReport = {
        "status": "done",
        "dryRun": dry_run,
        "method": method,
        "siteName": site["name"],
        "siteUrl": site["url"],
        "feedUrl": site["feedUrl"],
        "totals": {
            "total": len(endpoints),
            "batchStart": plan["batchStart"],
            "batchEnd": plan["batchEnd"],
            "batchCount": len(plan["slice"]),
            "ok": ok,
            "fail": len(outcomes) - ok,
        },
        "summary": filter_outcomes(outcomes, only),
        "nextCursor": plan["nextCursor"],
        "subrequestBudget": budget,
        "concurrencyUsed": concurrency,
    }
    LOGGER.info(
        "%s run pinged %d endpoint(s): %d ok, %d failed, next cursor %s",
        "Dry" if dry_run else "Real",
        len(outcomes),
        ok,
        len(outcomes) - ok,
        plan["nextCursor"],
    )

    await _persist(store, report, dry_run, latest)
    return report


async def run_scheduled(
    store: KeyValueStore,
    settings: Settings,
    detector: Optional[ChangeDetector] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[BatchReport]:
    """Unattended run: ping only when upstream changed and the hour lock is free.

    Returns None whenever the run terminates early; detector failures are
    logged and end the run without writing anything.
    """
    detect = detector or detect_latest_change
    try:
        latest = await asyncio.to_thread(detect, settings)
    except (requests.RequestException, ValueError) as exc:
        LOGGER.warning("Change detection failed: %s", exc)
        return None

    if not latest:
        LOGGER.info("No change identifier available; nothing to do")
        return None

    gate = RateGate(store)
    if not await gate.check_change_is_new(latest):
        LOGGER.info("Change %s already pinged", latest)
        return None
    if await gate.check_rate_limit():
        LOGGER.info("Change %s pending: rate limited", latest)
        return None

    report = await run_ping(store, settings, client=client, latest=latest)
    if report.get("status") == "done":
        await gate.record_change(latest)
    return report


async def record_manual_request(store: KeyValueStore, body: Any) -> None:
    await store.put_json(LAST_REQUEST_KEY, {"time": now_ms(), "body": body}, LAST_REQUEST_TTL)


def _stored(raw: Any) -> Dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


async def read_health(store: KeyValueStore) -> HealthData:
    """Collect the state shown by the status page.

    The last real result is preferred over the last dry snapshot.
    """
    gate = RateGate(store)
    last_ping = await gate.last_ping_ms()
    remaining = await gate.lock_remaining_ms()
    last_seen = await store.get(LAST_SEEN_KEY)
    endpoints = await store.get_json(ENDPOINTS_KEY)
    last_result = _stored(await store.get_json(LAST_RESULT_KEY))
    last_dry = _stored(await store.get_json(LAST_DRY_KEY))
    last_request = _stored(await store.get_json(LAST_REQUEST_KEY))

    source = last_result or last_dry
    result = _stored(source.get("result"))
    summary = result.get("summary")
    rows: List[PingOutcome] = summary if isinstance(summary, list) else []
    ok = count_ok(rows)
    latest = _stored(last_result.get("latest")).get("id")

    return {
        "site": {
            "name": result.get("siteName"),
            "url": result.get("siteUrl"),
            "feed": result.get("feedUrl"),
        },
        "latestId": latest or last_seen,
        "endpointsCount": len(endpoints) if isinstance(endpoints, list) else 0,
        "lastPingAt": last_ping,
        "nextAllowedInMs": remaining,
        "lastResultAt": source.get("time"),
        "successes": ok,
        "failures": len(rows) - ok,
        "lastRequestAt": last_request.get("time"),
        "lastRequestBody": last_request.get("body"),
        "summary": rows,
    }
