"""Shared configuration constants for the application."""

from __future__ import annotations

from pathlib import Path
from typing import List

DEFAULT_TIMEOUT_MS = 10_000
BODY_SNIPPET_LENGTH = 200
USER_AGENT = "xmlrpc-pinger"
CONTENT_TYPE = "text/xml"

DEFAULT_SITE_NAME = "My Weblog"
DEFAULT_SITE_URL = "https://example.com"

PING_METHOD = "weblogUpdates.ping"
EXTENDED_PING_METHOD = "weblogUpdates.extendedPing"

DEFAULT_SUBREQ_BUDGET = 45
MAX_SUBREQ_BUDGET = 1000
DEFAULT_CONCURRENCY = 6
MAX_REQUESTED_CONCURRENCY = 10
POLITE_CONCURRENCY = 6

HOUR = 60 * 60
DAY = 24 * HOUR
RATE_LIMIT_TTL = HOUR
LAST_RESULT_TTL = 7 * DAY
LAST_DRY_TTL = DAY
LAST_REQUEST_TTL = 7 * DAY

RATE_LIMIT_KEY = "xmlrpc:last-ping"
LAST_SEEN_KEY = "xmlrpc:last-seen"
ENDPOINTS_KEY = "xmlrpc:endpoints"
LAST_RESULT_KEY = "xmlrpc:last-result"
LAST_DRY_KEY = "xmlrpc:last-dry"
LAST_REQUEST_KEY = "xmlrpc:last-request"

SKIPPED_RATE_LIMITED = "rate-limited (<=1/hour)"
TIMEOUT_ERROR = "timeout"
DEADLINE_ERROR = "deadline exceeded"

OUTPUT_FILTERS = ("all", "fail", "success")
CSV_FIELDS = ("url", "ok", "status", "ms", "error", "bodySnippet")

DEFAULT_KV_PATH = Path("data/kv.json")
BATCH_OUTPUT = Path("data/results.csv")

MINIMAL_ENDPOINTS: List[str] = [
    "https://rpc.pingomatic.com/",
    "https://blogsearch.google.com/ping/RPC2",
    "https://rpc.twingly.com/",
    "https://ping.fc2.com/",
    "https://ping.feedburner.com",
    "http://ping.blo.gs/",
    "http://www.weblogues.com/RPC/",
    "http://www.blogdigger.com/RPC2",
    "http://pingoat.com/goat/RPC2",
]

_EXPORTED_NAMES = (
    "DEFAULT_TIMEOUT_MS",
    "BODY_SNIPPET_LENGTH",
    "USER_AGENT",
    "CONTENT_TYPE",
    "DEFAULT_SITE_NAME",
    "DEFAULT_SITE_URL",
    "PING_METHOD",
    "EXTENDED_PING_METHOD",
    "DEFAULT_SUBREQ_BUDGET",
    "MAX_SUBREQ_BUDGET",
    "DEFAULT_CONCURRENCY",
    "MAX_REQUESTED_CONCURRENCY",
    "POLITE_CONCURRENCY",
    "HOUR",
    "DAY",
    "RATE_LIMIT_TTL",
    "LAST_RESULT_TTL",
    "LAST_DRY_TTL",
    "LAST_REQUEST_TTL",
    "RATE_LIMIT_KEY",
    "LAST_SEEN_KEY",
    "ENDPOINTS_KEY",
    "LAST_RESULT_KEY",
    "LAST_DRY_KEY",
    "LAST_REQUEST_KEY",
    "SKIPPED_RATE_LIMITED",
    "TIMEOUT_ERROR",
    "DEADLINE_ERROR",
    "OUTPUT_FILTERS",
    "CSV_FIELDS",
    "DEFAULT_KV_PATH",
    "BATCH_OUTPUT",
    "MINIMAL_ENDPOINTS",
)

__all__ = [name for name in _EXPORTED_NAMES if name in globals()]
