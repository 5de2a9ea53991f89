#!/usr/bin/env python3
"""Run one curation pass and print its run summary.

Usage:
  python scripts/run_pipeline.py
  python scripts/run_pipeline.py --source ./data/listings.csv --skip-vin --skip-history
  python scripts/run_pipeline.py --policy ./data/policy.yaml --scoring weighted --init-db

Settings come from the environment (see backend/app/core/settings.py); flags
override the listing source, policy file, VIN stages and scoring strategy for
this run only.
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app.core.logging_config import configure_logging  # noqa: E402
from backend.app.core.settings import settings  # noqa: E402
from backend.app.services.pipeline import PipelineFatalError, run_pipeline  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the curated listings pipeline once.")
    parser.add_argument("--source", help="Listing file (.json, .csv, .xlsx) to read instead of LISTING_SOURCE")
    parser.add_argument("--policy", help="YAML curation policy overriding the defaults")
    parser.add_argument("--scoring", choices=["model_priority", "weighted"], help="Priority scoring strategy")
    parser.add_argument("--skip-vin", action="store_true", help="Skip VIN decode validation")
    parser.add_argument("--skip-history", action="store_true", help="Skip vehicle history checks")
    parser.add_argument("--deadline", type=float, help="Abort between stages after this many seconds")
    parser.add_argument("--init-db", action="store_true", help="Create tables before running (SQLite/dev only)")
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--log-format", choices=["json", "text"], default="text")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace):
    overrides = {}
    if args.source:
        overrides.update(listing_source="file", listing_source_path=args.source)
    if args.policy:
        overrides["curation_policy_path"] = args.policy
    if args.scoring:
        overrides["scoring_strategy"] = args.scoring
    if args.skip_vin:
        overrides["skip_vin_validation"] = True
    if args.skip_history:
        overrides["skip_history_check"] = True
    if args.deadline is not None:
        overrides["pipeline_deadline_seconds"] = args.deadline
    return settings.model_copy(update=overrides)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    if args.init_db:
        from backend.app.db.models import Base
        from backend.app.db.session import ENGINE

        Base.metadata.create_all(ENGINE)

    try:
        summary = asyncio.run(run_pipeline(config=build_config(args)))
    except PipelineFatalError as exc:
        payload = {"stage": exc.stage, "message": exc.message}
        if exc.summary is not None:
            payload["summary"] = exc.summary.to_dict()
        print(json.dumps(payload, indent=2))
        return 1

    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.error_count == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
