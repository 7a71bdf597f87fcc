#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import argparse
import asyncio
import datetime
import hmac
import io
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from flask import Flask, Response, jsonify, render_template, request, send_file

from constants import BATCH_OUTPUT, OUTPUT_FILTERS
from models import BatchReport, HealthData, PingOptions
from orchestrator import read_health, record_manual_request, run_ping, run_scheduled
from pinger import build_client, filter_outcomes, to_csv_bytes, to_ndjson
from settings import Settings, load_settings
from store import KeyValueStore, StoreError, build_store

app = Flask(__name__)

LOGGER = logging.getLogger("xmlrpc-pinger")

HEALTH_VIEWS = ("all", "fail", "ok")
NO_STORE = {"Cache-Control": "no-store"}


# ----------------- Wiring -----------------
def get_settings() -> Settings:
    settings = app.config.get("SETTINGS")
    return settings if isinstance(settings, Settings) else load_settings()


def _open_store(settings: Settings) -> Tuple[KeyValueStore, bool]:
    """Return the store to use and whether this request owns (and closes) it."""
    store = app.config.get("STORE")
    if isinstance(store, KeyValueStore):
        return store, False
    return build_store(settings), True


async def _with_store(settings: Settings, action):
    store, owned = _open_store(settings)
    try:
        return await action(store)
    finally:
        if owned:
            await store.close()


async def _manual_run(settings: Settings, body: Dict[str, Any], options: PingOptions) -> BatchReport:
    async def action(store: KeyValueStore) -> BatchReport:
        await record_manual_request(store, body)
        client = build_client(app.config.get("PING_TRANSPORT"))
        try:
            return await run_ping(store, settings, body, options, client=client)
        finally:
            await client.aclose()

    return await _with_store(settings, action)


# ----------------- Request parsing -----------------
def _int_arg(raw: Optional[str], default: int) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def is_authorized(header: Optional[str], secret: str) -> bool:
    if not secret or not header:
        return False
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def parse_ping_options(args: Mapping[str, str], body: Mapping[str, Any]) -> PingOptions:
    """Query-string options; a numeric `cursor` in the body wins over the query."""
    only = args.get("only") or "all"
    body_cursor = body.get("cursor")
    if isinstance(body_cursor, int) and not isinstance(body_cursor, bool):
        cursor = body_cursor
    else:
        cursor = _int_arg(args.get("cursor"), 0)
    return {
        "dryRun": args.get("dry") == "1",
        "verbose": args.get("verbose") == "1",
        "only": only if only in OUTPUT_FILTERS else "all",
        "limit": max(0, _int_arg(args.get("limit"), 0)),
        "cursor": max(0, cursor),
    }


def _csv_response(rows: Any, filename: str) -> Response:
    mem = io.BytesIO(to_csv_bytes(rows))
    mem.seek(0)
    response = send_file(
        mem,
        mimetype="text/csv; charset=utf-8",
        as_attachment=True,
        download_name=filename,
    )
    response.headers.update(NO_STORE)
    return response


def _ndjson_response(rows: Any) -> Response:
    return Response(to_ndjson(rows), mimetype="application/x-ndjson", headers=NO_STORE)


# ----------------- Template helpers -----------------
def format_relative(diff_ms: int) -> str:
    s = max(0, int(diff_ms // 1000))
    if s < 60:
        return f"{s}s"
    m = s // 60
    if m < 60:
        return f"{m}m"
    h = m // 60
    if h < 24:
        return f"{h}h"
    return f"{h // 24}d"


@app.template_filter("fmt_time")
def format_time(ms: Optional[int]) -> str:
    if not ms:
        return "—"
    stamp = datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)
    now = datetime.datetime.now(tz=datetime.timezone.utc)
    diff_ms = int((now - stamp).total_seconds() * 1000)
    return f"{stamp.isoformat(timespec='seconds')} ({format_relative(diff_ms)} ago)"


# ----------------- Routes -----------------
@app.errorhandler(StoreError)
def store_unavailable(exc: StoreError):
    LOGGER.error("Key-value store failure: %s", exc)
    return jsonify({"status": "error", "reason": "store unavailable"}), 500


@app.route("/", methods=["POST"])
@app.route("/ping", methods=["POST"])
def trigger():
    settings = get_settings()
    if not is_authorized(request.headers.get("Authorization"), settings.secret):
        return Response("Unauthorized", status=401)

    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        body = {}
    options = parse_ping_options(request.args, body)
    report = asyncio.run(_manual_run(settings, body, options))

    fmt = request.args.get("format", "json")
    rows = report.get("summary", [])
    if fmt == "csv":
        kind = "dryrun" if options["dryRun"] else "run"
        return _csv_response(rows, f"xmlrpc-{kind}-{options['only']}.csv")
    if fmt == "ndjson":
        return _ndjson_response(rows)
    return jsonify(report), 200, NO_STORE


@app.route("/health", methods=["GET"])
def health():
    settings = get_settings()
    data: HealthData = asyncio.run(_with_store(settings, read_health))

    view = request.args.get("view", "all")
    if view not in HEALTH_VIEWS:
        view = "all"
    rows = filter_outcomes(data["summary"], view)
    fmt = request.args.get("format")
    if fmt == "json":
        return jsonify(data), 200, NO_STORE
    if fmt == "csv":
        return _csv_response(rows, f"xmlrpc-health-{view}.csv")
    if fmt == "ndjson":
        return _ndjson_response(rows)

    refresh = max(0, _int_arg(request.args.get("refresh"), 0))
    html = render_template(
        "health.html",
        data=data,
        rows=rows,
        view=view,
        refresh=refresh,
        next_allowed_s=-(-data["nextAllowedInMs"] // 1000),
    )
    return html, 200, {"Content-Type": "text/html; charset=utf-8", **NO_STORE}


# ---------- CLI ----------
def _summarize(report: Optional[BatchReport]) -> str:
    if not report:
        return "nothing to do"
    if report.get("status") != "done":
        return f"skipped ({report.get('reason', 'no reason')})"
    totals = report["totals"]
    return (
        f"{totals['batchCount']} pinged ({totals['ok']} ok, {totals['fail']} failed), "
        f"next cursor {report.get('nextCursor')}"
    )


def run_batch(settings: Settings, dry_run: bool, cursor: int) -> BatchReport:
    options: PingOptions = {"dryRun": dry_run, "cursor": cursor, "verbose": True}
    return asyncio.run(_with_store(settings, lambda store: run_ping(store, settings, {}, options)))


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Notify XML-RPC update services about new site content.")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--scheduled", action="store_true", help="Ping only if a new deploy was detected.")
    mode.add_argument("--batch", action="store_true", help="Ping one batch and write data/results.csv.")
    p.add_argument("--dry", action="store_true", help="With --batch: bypass the hourly lock.")
    p.add_argument("--cursor", type=int, default=0, help="With --batch: index to resume from.")
    p.add_argument("--port", type=int, default=8080, help="Port of the development server.")
    return p.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()

    if args.scheduled:
        try:
            report = asyncio.run(_with_store(settings, lambda store: run_scheduled(store, settings)))
        except StoreError as exc:
            LOGGER.error("Scheduled run aborted: %s", exc)
            return 1
        print(f"[OK] Scheduled run: {_summarize(report)}")
        return 0

    if args.batch:
        report = run_batch(settings, dry_run=args.dry, cursor=max(0, args.cursor))
        if report.get("status") == "done":
            BATCH_OUTPUT.parent.mkdir(parents=True, exist_ok=True)
            BATCH_OUTPUT.write_bytes(to_csv_bytes(report.get("summary", [])))
            print(f"[OK] Results written to {BATCH_OUTPUT}")
        print(f"[OK] Batch run: {_summarize(report)}")
        return 0

    app.run(host="0.0.0.0", port=args.port, debug=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
