#!/usr/bin/env python3
"""Run one aggregated job search from the command line.

  python run_search.py "python developer, backend" --location Toronto --limit 20
  python run_search.py sre --filter remote=true --json
"""
from __future__ import annotations

import argparse
import json
import sys

from job_aggregator.errors import AggregatorError, SearchFailed
from job_aggregator.log import get_logger

log = get_logger(__name__)


def _parse_filters(items: list[str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"filter must look like key=value, got {item!r}")
        filters[key.strip()] = value.strip()
    return filters


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Aggregate job postings from configured sources.")
    parser.add_argument("keywords", help="comma separated keywords")
    parser.add_argument("--location", default="")
    parser.add_argument("--filter", action="append", default=[], metavar="KEY=VALUE")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--user", default=None, help="attach this user's viewed/applied/saved marks")
    parser.add_argument("--config", default=None, help="path to aggregator.yaml")
    parser.add_argument("--json", action="store_true", help="print the full JSON payload")
    args = parser.parse_args(argv)

    try:
        filters = _parse_filters(args.filter)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))

    from job_aggregator.config import load_settings
    from job_aggregator.service import build_orchestrator

    orchestrator = build_orchestrator(load_settings(args.config))
    try:
        result = orchestrator.search(
            args.keywords, args.location, filters, limit=args.limit, user_id=args.user,
        )
    except SearchFailed as exc:
        log.error("Search failed: %s", exc)
        return 2
    except AggregatorError as exc:
        log.error("Search error: %s", exc)
        return 1

    if args.json:
        print(json.dumps(result.as_payload(), indent=2, default=str))
        return 0

    log.info("Search complete.")
    log.info("  Jobs: %d of %d found", len(result.jobs), result.total_found)
    log.info("  Cache hit: %s", result.cache_hit)
    log.info("  Cost: $%.4f", result.cost)
    if result.failed_sources:
        log.info("  Failed sources: %s", ", ".join(result.failed_sources))
    for i, job in enumerate(result.jobs, 1):
        print(f"{i:>3}. {job.title} | {job.company} | {job.location or '-'} | {job.url or '-'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
