"""Unit tests for the HTTP trigger and request helpers in app.py."""

from __future__ import annotations

import asyncio
import csv
import json
from typing import Iterator, List

import httpx
import pytest
from flask.testing import FlaskClient

from app import app as flask_app, format_relative, is_authorized, parse_ping_options
from constants import LAST_DRY_KEY, LAST_REQUEST_KEY, LAST_RESULT_KEY, RATE_LIMIT_KEY
from store import MemoryStore, StoreError

from conftest import RecordingHandler, make_settings

ENDPOINTS = [f"https://ping{i}.test/RPC2" for i in range(5)]
AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler(statuses={ENDPOINTS[2]: 500}, body="server said no")


@pytest.fixture
def kv() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def client(kv: MemoryStore, handler: RecordingHandler) -> Iterator[FlaskClient]:
    flask_app.config.update(
        TESTING=True,
        SETTINGS=make_settings(ping_endpoints=json.dumps(ENDPOINTS)),
        STORE=kv,
        PING_TRANSPORT=httpx.MockTransport(handler),
    )
    try:
        yield flask_app.test_client()
    finally:
        for key in ("SETTINGS", "STORE", "PING_TRANSPORT"):
            flask_app.config.pop(key, None)


def test_missing_token_is_rejected_without_side_effects(
    client: FlaskClient, kv: MemoryStore, handler: RecordingHandler
) -> None:
    """No processing happens before authentication."""
    resp = client.post("/", json={"siteName": "x"})

    assert resp.status_code == 401
    assert kv.keys() == []
    assert handler.calls == []


def test_wrong_token_is_rejected(client: FlaskClient) -> None:
    resp = client.post("/ping", headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 401


def test_get_on_trigger_is_not_allowed(client: FlaskClient) -> None:
    resp = client.get("/")

    assert resp.status_code == 405
    assert "POST" in resp.headers["Allow"]


def test_dry_run_returns_report_and_snapshot(client: FlaskClient, kv: MemoryStore) -> None:
    resp = client.post("/?dry=1", headers=AUTH, json={"siteName": "My <Blog>"})

    assert resp.status_code == 200
    assert resp.headers["Cache-Control"] == "no-store"
    report = resp.get_json()
    assert report["status"] == "done"
    assert report["dryRun"] is True
    assert report["siteName"] == "My <Blog>"
    assert report["totals"]["ok"] == 4
    assert report["totals"]["fail"] == 1
    assert LAST_DRY_KEY in kv.keys()
    assert RATE_LIMIT_KEY not in kv.keys()
    assert LAST_RESULT_KEY not in kv.keys()


def test_real_run_then_rate_limited(client: FlaskClient, handler: RecordingHandler) -> None:
    first = client.post("/", headers=AUTH)
    second = client.post("/", headers=AUTH)

    assert first.get_json()["status"] == "done"
    assert second.status_code == 200
    assert second.get_json() == {"status": "skipped", "reason": "rate-limited (<=1/hour)"}
    assert len(handler.calls) == len(ENDPOINTS)


def test_malformed_body_falls_back_to_defaults(client: FlaskClient, kv: MemoryStore) -> None:
    resp = client.post(
        "/?dry=1", headers={**AUTH, "Content-Type": "application/json"}, data="{not json"
    )

    assert resp.status_code == 200
    assert resp.get_json()["siteName"] == "My Weblog"
    stored = asyncio.run(kv.get_json(LAST_REQUEST_KEY))
    assert stored["body"] == {}


def test_body_cursor_wins_over_query(client: FlaskClient) -> None:
    resp = client.post("/?dry=1&cursor=1", headers=AUTH, json={"cursor": 3})

    totals = resp.get_json()["totals"]
    assert totals["batchStart"] == 3
    assert totals["batchCount"] == 2


def test_csv_export_of_failures(client: FlaskClient) -> None:
    resp = client.post("/?dry=1&only=fail&verbose=1&format=csv", headers=AUTH)

    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert "xmlrpc-dryrun-fail.csv" in resp.headers["Content-Disposition"]
    text = resp.get_data(as_text=True)
    assert text.startswith("url,ok,status,ms,error,bodySnippet\r\n")
    rows = list(csv.DictReader(text.splitlines()))
    assert len(rows) == 1
    assert rows[0]["url"] == ENDPOINTS[2]
    assert rows[0]["status"] == "500"
    assert rows[0]["bodySnippet"] == "server said no"


def test_ndjson_export(client: FlaskClient) -> None:
    resp = client.post("/?dry=1&format=ndjson", headers=AUTH)

    assert resp.mimetype == "application/x-ndjson"
    lines: List[str] = resp.get_data(as_text=True).splitlines()
    assert sorted(json.loads(line)["url"] for line in lines) == sorted(ENDPOINTS)


def test_store_failure_becomes_error_report(client: FlaskClient) -> None:
    class BrokenStore(MemoryStore):
        async def get(self, key: str):  # type: ignore[override]
            raise StoreError("disk full")

    flask_app.config["STORE"] = BrokenStore()
    resp = client.post("/?dry=1", headers=AUTH)

    assert resp.status_code == 500
    assert resp.get_json() == {"status": "error", "reason": "store unavailable"}


def test_is_authorized_requires_configured_secret() -> None:
    assert is_authorized("Bearer abc", "abc") is True
    assert is_authorized("Bearer abc", "") is False
    assert is_authorized(None, "abc") is False
    assert is_authorized("abc", "abc") is False


def test_parse_ping_options_is_lenient() -> None:
    options = parse_ping_options(
        {"dry": "1", "verbose": "0", "only": "weird", "limit": "x", "cursor": "-4"}, {}
    )

    assert options == {"dryRun": True, "verbose": False, "only": "all", "limit": 0, "cursor": 0}
    assert parse_ping_options({"cursor": "7"}, {"cursor": True})["cursor"] == 7


@pytest.mark.parametrize(
    ("diff_ms", "expected"),
    [(0, "0s"), (59_999, "59s"), (60_000, "1m"), (3_600_000, "1h"), (86_400_000 * 3, "3d")],
)
def test_format_relative(diff_ms: int, expected: str) -> None:
    assert format_relative(diff_ms) == expected
