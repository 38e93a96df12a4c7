#!/usr/bin/env python
from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.schema_guard import verify_runtime_schema
from app.settings import get_settings

VERSIONS_DIR = ROOT_DIR / "app" / "migrations" / "versions"
REVISION_PATTERN = re.compile(r'^\s*revision\s*(?::\s*str)?\s*=\s*"([^"]+)"\s*$', re.MULTILINE)
ACTIVE_SESSION_INDEX = "uq_sessions_user_active"


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]


def _extract_revision_ids(versions_dir: Path = VERSIONS_DIR) -> list[str]:
    revisions: list[str] = []
    for path in sorted(versions_dir.glob("*.py")):
        if path.name.startswith("__"):
            continue
        match = REVISION_PATTERN.search(path.read_text(encoding="utf-8"))
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def _check_revision_id_lengths() -> CheckResult:
    revisions = _extract_revision_ids()
    too_long = [revision for revision in revisions if len(revision) > 32]
    return CheckResult(
        name="migration_revision_length",
        status="ok" if not too_long else "fail",
        details={"max_len": 32, "too_long": too_long, "total": len(revisions)},
    )


def _expected_alembic_heads() -> list[str]:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT_DIR / "app" / "migrations"))
    script = ScriptDirectory.from_config(config)
    return sorted(script.get_heads())


def _check_single_head() -> CheckResult:
    heads = _expected_alembic_heads()
    return CheckResult(
        name="migration_single_head",
        status="ok" if len(heads) == 1 else "fail",
        details={"heads": heads},
    )


def _check_compensation_default() -> CheckResult:
    default_base = get_settings().default_base_compensation_inr
    return CheckResult(
        name="default_base_compensation",
        status="ok" if default_base > 0 else "warn",
        details={"default_base_compensation_inr": default_base},
    )

def _check_active_session_index_migration(versions_dir: Path = VERSIONS_DIR) -> CheckResult:
    # One ACTIVE session per user is enforced by this partial index, not by application code.
    declared_in = [
        path.name
        for path in sorted(versions_dir.glob("*.py"))
        if ACTIVE_SESSION_INDEX in path.read_text(encoding="utf-8")
    ]
    return CheckResult(
        name="active_session_index_migration",
        status="ok" if declared_in else "fail",
        details={"index": ACTIVE_SESSION_INDEX, "declared_in": declared_in},
    )


def _current_db_revisions(engine: Engine) -> list[str]:
    with engine.connect() as connection:
        rows = connection.execute(text("SELECT version_num FROM alembic_version")).fetchall()
    return sorted(str(row[0]).strip() for row in rows if row and row[0] is not None)


def _check_database(database_url: str) -> list[CheckResult]:
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        current = _current_db_revisions(engine)
        schema_result = verify_runtime_schema(engine)
    finally:
        engine.dispose()

    expected = _expected_alembic_heads()
    behind = [head for head in expected if head not in current]
    return [
        CheckResult(
            name="database_at_head",
            status="ok" if not behind else "fail",
            details={"expected_heads": expected, "current_versions": current, "missing_heads": behind},
        ),
        CheckResult(
            name="database_runtime_schema",
            status="ok" if schema_result.ok else "fail",
            details=schema_result.to_dict(),
        ),
    ]


def run_checks(database_url: str | None) -> list[CheckResult]:
    checks = [
        _check_revision_id_lengths(),
        _check_single_head(),
        _check_active_session_index_migration(),
        _check_compensation_default(),
    ]
    if database_url:
        checks.extend(_check_database(database_url))
    else:
        checks.append(CheckResult(name="database", status="warn", details={"reason": "DATABASE_URL_NOT_SET"}))
    return checks


def main() -> int:
    checks = run_checks((os.getenv("DATABASE_URL") or "").strip() or None)
    failed = [check.name for check in checks if check.status == "fail"]
    report = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": not failed,
        "failed": failed,
        "checks": [asdict(check) for check in checks],
    }
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
