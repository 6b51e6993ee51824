#!/usr/bin/env python3
"""Evaluate, validate or explain a filter query against a task snapshot.

Structured JSON output goes to stdout; human messages go to stderr.

Usage:
    python3 scripts/filter_tasks.py evaluate --snapshot tasks.json --query "p1 & #work"
    python3 scripts/filter_tasks.py evaluate --snapshot tasks.json --query "today" \
      --now 2026-03-02T09:00:00+00:00
    python3 scripts/filter_tasks.py validate --query "(p1 | p2"
    python3 scripts/filter_tasks.py explain --query "@urgent | (overdue & !assigned)"

Exit codes: 0 success, 1 bad input files, 2 query failed validation.
"""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson

from taskfilter.clock import Clock, FixedClock, SystemClock
from taskfilter.config import SettingsError, load_settings
from taskfilter.filter_engine import FilterEngine
from taskfilter.snapshot import load_snapshot
from taskfilter.task_types import SnapshotError, task_to_json

log = logging.getLogger("filter_tasks")


def dump_json(obj: Any) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Evaluate filter queries against a JSON task snapshot."
    )
    parser.add_argument(
        "command",
        choices=("evaluate", "validate", "explain"),
        help="evaluate: list matching tasks; validate: report errors; explain: show AST",
    )
    parser.add_argument("--query", required=True, help="Filter query text")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=None,
        help="JSON snapshot with tasks/projects/labels/sections (required for evaluate)",
    )
    parser.add_argument(
        "--now",
        default=None,
        help="Pin the clock to this ISO-8601 instant (default: system clock)",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="JSON settings file (guardrails, date formats)",
    )
    parser.add_argument(
        "--ids-only",
        action="store_true",
        help="Emit matching task ids instead of full records",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _clock_from_arg(raw: str | None) -> Clock:
    if raw is None:
        return SystemClock()
    try:
        return FixedClock(datetime.fromisoformat(raw))
    except ValueError as exc:
        raise SystemExit(f"Error: --now is not an ISO-8601 instant: {raw!r}") from exc


def run(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.settings)
    except SettingsError as exc:
        log.error("Invalid settings: %s", exc)
        return 1

    engine = FilterEngine(settings, clock=_clock_from_arg(args.now))

    if args.command == "explain":
        dump_json(engine.explain(args.query))
        return 0

    if args.command == "validate":
        report = engine.explain(args.query)
        dump_json({"ok": report["ok"], "errors": report["errors"]})
        if not report["ok"]:
            log.info("Query has %d problem(s)", len(report["errors"]))
            return 2
        return 0

    # evaluate
    if args.snapshot is None:
        log.error("evaluate requires --snapshot")
        return 1
    if not args.snapshot.exists():
        log.error("Snapshot not found: %s", args.snapshot)
        return 1
    try:
        snapshot = load_snapshot(args.snapshot)
    except SnapshotError as exc:
        log.error("Invalid snapshot: %s", exc)
        return 1

    parsed = engine.parse(args.query)
    for err in parsed.errors:
        log.warning("Query problem at %d: %s", err.position, err.message)

    matched = engine.evaluate(snapshot.tasks, args.query, snapshot.context())
    log.info("Matched %d of %d tasks", len(matched), len(snapshot.tasks))
    dump_json({
        "query": parsed.source,
        "normalized_text": parsed.normalized_text,
        "total": len(snapshot.tasks),
        "matched": len(matched),
        "tasks": [t.id for t in matched] if args.ids_only else [task_to_json(t) for t in matched],
    })
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
