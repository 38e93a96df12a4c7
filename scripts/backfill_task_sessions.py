#!/usr/bin/env python
"""Link completed tasks to the work session they were finished in.

Dry run by default:

    python scripts/backfill_task_sessions.py
    python scripts/backfill_task_sessions.py --date 2025-11-20
    python scripts/backfill_task_sessions.py --execute
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from datetime import date
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.db import SessionLocal
from app.logging_utils import setup_json_logging
from app.services.completion_backfill import backfill_task_completion_sessions
from app.settings import get_log_level


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--execute", action="store_true", help="write the links instead of only reporting them")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="only tasks completed on this UTC day")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_json_logging(get_log_level())
    db = SessionLocal()
    try:
        stats = backfill_task_completion_sessions(db, dry_run=not args.execute, target_day=args.date)
    finally:
        db.close()
    print(json.dumps(asdict(stats), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
