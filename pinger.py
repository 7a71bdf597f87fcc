"""Concurrent XML-RPC ping fan-out and result exporters."""

from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
import time
from typing import Iterable, List, Optional, Sequence

import httpx

from constants import (
    BODY_SNIPPET_LENGTH,
    CONTENT_TYPE,
    CSV_FIELDS,
    DEADLINE_ERROR,
    DEFAULT_TIMEOUT_MS,
    TIMEOUT_ERROR,
    USER_AGENT,
)
from models import PingOutcome

__all__ = [
    "build_client",
    "ping_url",
    "fetch_all",
    "filter_outcomes",
    "count_ok",
    "to_csv_bytes",
    "to_ndjson",
]

LOGGER = logging.getLogger("xmlrpc-pinger")


def build_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` that never follows redirects."""
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        follow_redirects=False,
        transport=transport,
    )


def _make_outcome(url: str) -> PingOutcome:
    return {
        "url": url,
        "ok": False,
        "status": 0,
        "ms": 0,
        "error": None,
        "bodySnippet": None,
    }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def _post(
    client: httpx.AsyncClient,
    url: str,
    body: str,
    outcome: PingOutcome,
    started: float,
    verbose: bool,
) -> None:
    async with client.stream(
        "POST",
        url,
        content=body.encode("utf-8"),
        headers={"Content-Type": CONTENT_TYPE},
        follow_redirects=False,
    ) as resp:
        outcome["status"] = resp.status_code
        outcome["ok"] = resp.is_success
        outcome["ms"] = _elapsed_ms(started)
        if verbose and not outcome["ok"]:
            try:
                await resp.aread()
                outcome["bodySnippet"] = resp.text[:BODY_SNIPPET_LENGTH]
            except (httpx.HTTPError, UnicodeDecodeError) as exc:
                LOGGER.warning("Could not read failure body from %s: %s", url, exc)


async def ping_url(
    client: httpx.AsyncClient,
    url: str,
    body: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    verbose: bool = False,
) -> PingOutcome:
    """POST the payload to one endpoint, never raising for network faults."""
    outcome = _make_outcome(url)
    started = time.monotonic()
    try:
        await asyncio.wait_for(
            _post(client, url, body, outcome, started, verbose),
            timeout=max(timeout_ms, 1) / 1000,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        if outcome["status"]:
            # Headers already arrived; only the failure-body read ran out of time.
            LOGGER.warning("Timed out reading failure body from %s", url)
            return outcome
        outcome.update(ok=False, status=0, error=TIMEOUT_ERROR, bodySnippet=None)
        outcome["ms"] = _elapsed_ms(started)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        outcome.update(ok=False, status=0, error=f"{type(exc).__name__}: {exc}", bodySnippet=None)
        outcome["ms"] = _elapsed_ms(started)
    return outcome


async def fetch_all(
    urls: Sequence[str],
    body: str,
    concurrency: int,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    verbose: bool = False,
    client: Optional[httpx.AsyncClient] = None,
    deadline: Optional[float] = None,
) -> List[PingOutcome]:
    """Ping every URL with at most `concurrency` requests in flight.

    Workers pull the next index from a shared cursor, so results come back
    in completion order, not input order. Once `deadline` (a
    `time.monotonic()` value) has passed no new request is started and the
    remaining URLs are reported as failed.
    """
    if not urls:
        return []

    own_client = client is None
    http = client if client is not None else build_client()
    results: List[PingOutcome] = []
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while True:
            idx = cursor
            if idx >= len(urls):
                return
            cursor += 1
            url = urls[idx]
            if deadline is not None and time.monotonic() >= deadline:
                skipped = _make_outcome(url)
                skipped["error"] = DEADLINE_ERROR
                results.append(skipped)
                continue
            results.append(await ping_url(http, url, body, timeout_ms=timeout_ms, verbose=verbose))

    try:
        workers = [asyncio.create_task(worker()) for _ in range(max(1, min(concurrency, len(urls))))]
        await asyncio.gather(*workers)
    finally:
        if own_client:
            await http.aclose()
    return results


def filter_outcomes(outcomes: Iterable[PingOutcome], only: str = "all") -> List[PingOutcome]:
    """Keep all rows, only failures (`fail`) or only successes (`success`/`ok`)."""
    if only == "fail":
        return [o for o in outcomes if not o["ok"]]
    if only in ("success", "ok"):
        return [o for o in outcomes if o["ok"]]
    return list(outcomes)


def count_ok(outcomes: Iterable[PingOutcome]) -> int:
    return sum(1 for o in outcomes if o.get("ok"))


def _csv_cell(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def to_csv_bytes(rows: Iterable[PingOutcome]) -> bytes:
    """Serialize outcomes into CRLF CSV with every data field quoted."""
    output = io.StringIO()
    output.write(",".join(CSV_FIELDS) + "\r\n")
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    for r in rows:
        writer.writerow([_csv_cell(r.get(field)) for field in CSV_FIELDS])
    return output.getvalue().encode("utf-8")


def to_ndjson(rows: Iterable[PingOutcome]) -> str:
    """One JSON object per outcome per line."""
    return "".join(json.dumps(dict(r), ensure_ascii=False) + "\n" for r in rows)
