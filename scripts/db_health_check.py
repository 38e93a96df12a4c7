#!/usr/bin/env python
"""Report timeline invariant violations in the sessions, segments and breaks tables.

Read-only. Prints a JSON report and exits non-zero when any check fails.
"""
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import Connection, create_engine, inspect, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.settings import get_settings

SAMPLE_LIMIT = 20

TIMELINE_CHECKS: dict[str, str] = {
    "multiple_open_segments": """
        select session_id, count(*)
        from segments
        where end_time is null
        group by session_id
        having count(*) > 1
        limit :limit
    """,
    "open_segment_on_closed_session": """
        select sg.id
        from segments sg
        join sessions s on s.id = sg.session_id
        where sg.end_time is null and s.status <> 'ACTIVE'
        limit :limit
    """,
    "open_break_on_closed_session": """
        select b.id
        from breaks b
        join sessions s on s.id = b.session_id
        where b.end_time is null and s.status <> 'ACTIVE'
        limit :limit
    """,
    "multiple_active_sessions": """
        select user_id, count(*)
        from sessions
        where status = 'ACTIVE'
        group by user_id
        having count(*) > 1
        limit :limit
    """,
    "session_totals_mismatch": """
        select s.id, s.total_duration, s.total_break_time,
               coalesce(sum(sg.duration), 0),
               coalesce(sum(case when sg.type = 'BREAK' then sg.duration else 0 end), 0)
        from sessions s
        left join segments sg on sg.session_id = s.id
        where s.status = 'COMPLETED'
        group by s.id, s.total_duration, s.total_break_time
        having s.total_duration <> coalesce(sum(sg.duration), 0)
            or s.total_break_time <> coalesce(sum(case when sg.type = 'BREAK' then sg.duration else 0 end), 0)
        limit :limit
    """,
}


def run_checks(connection: Connection) -> list[dict[str, Any]]:
    tables = set(inspect(connection).get_table_names())
    checks: list[dict[str, Any]] = []
    missing = sorted({"sessions", "segments", "breaks"} - tables)
    if missing:
        checks.append({"name": "timeline_tables", "status": "fail", "details": {"missing": missing}})
        return checks

    for name, query in TIMELINE_CHECKS.items():
        rows = connection.execute(text(query), {"limit": SAMPLE_LIMIT}).fetchall()
        checks.append(
            {
                "name": name,
                "status": "fail" if rows else "ok",
                "details": {"rows": [list(row) for row in rows]},
            }
        )
    return checks


def run(database_url: str | None = None) -> dict[str, Any]:
    engine = create_engine(database_url or get_settings().database_url)
    try:
        with engine.connect() as connection:
            checks = run_checks(connection)
    finally:
        engine.dispose()
    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": all(check["status"] == "ok" for check in checks),
        "checks": checks,
    }


if __name__ == "__main__":
    report = run()
    print(json.dumps(report, ensure_ascii=False, indent=2))
    raise SystemExit(0 if report["ok"] else 1)
