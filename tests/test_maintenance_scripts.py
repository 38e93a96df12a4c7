from __future__ import annotations

import unittest

from app.clock import FixedClock
from app.models import Segment, SegmentType
from app.services.sessions import end_session, start_session
from scripts.backfill_task_sessions import parse_args
from scripts.db_health_check import run_checks
from scripts.predeploy_guard import (
    _check_active_session_index_migration,
    _check_revision_id_lengths,
    _extract_revision_ids,
    run_checks as run_predeploy_checks,
)
from support import add_user, make_sqlite_session, utc


class DbHealthCheckTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_sqlite_session()
        self.user = add_user(self.db, name="Asha")
        clock = FixedClock(utc(2025, 11, 20, 9, 0))
        self.session = start_session(self.db, user_id=self.user.id, project_id=None, clock=clock)
        clock.advance(hours=1)
        end_session(self.db, user_id=self.user.id, session_id=self.session.id, clock=clock)

    def tearDown(self) -> None:
        self.db.close()

    def _statuses(self) -> dict[str, str]:
        return {check["name"]: check["status"] for check in run_checks(self.db.connection())}

    def test_clean_timeline_passes(self) -> None:
        statuses = self._statuses()

        self.assertTrue(statuses)
        self.assertEqual(set(statuses.values()), {"ok"})

    def test_detects_open_segment_and_totals_drift(self) -> None:
        self.db.add(
            Segment(
                session_id=self.session.id,
                type=SegmentType.WORK,
                start_time=utc(2025, 11, 20, 10, 0),
                duration=120,
            )
        )
        self.db.commit()

        statuses = self._statuses()

        self.assertEqual(statuses["open_segment_on_closed_session"], "fail")
        self.assertEqual(statuses["session_totals_mismatch"], "fail")
        self.assertEqual(statuses["multiple_open_segments"], "ok")


class PredeployGuardTests(unittest.TestCase):
    def test_revision_ids_are_discovered_and_short(self) -> None:
        self.assertEqual(_extract_revision_ids(), ["0001_initial", "0002_payout_snapshots"])
        self.assertEqual(_check_revision_id_lengths().status, "ok")

    def test_active_session_index_is_declared_by_a_migration(self) -> None:
        result = _check_active_session_index_migration()

        self.assertEqual(result.status, "ok")
        self.assertEqual(result.details["declared_in"], ["0001_initial.py"])

    def test_without_database_url_the_database_check_only_warns(self) -> None:
        checks = {check.name: check for check in run_predeploy_checks(None)}

        self.assertEqual(checks["database"].status, "warn")
        self.assertEqual(checks["migration_single_head"].status, "ok")
        self.assertNotIn("database_at_head", checks)


class BackfillScriptTests(unittest.TestCase):
    def test_defaults_to_dry_run(self) -> None:
        args = parse_args([])

        self.assertFalse(args.execute)
        self.assertIsNone(args.date)

    def test_parses_execute_and_date(self) -> None:
        args = parse_args(["--execute", "--date", "2025-11-20"])

        self.assertTrue(args.execute)
        self.assertEqual(args.date.isoformat(), "2025-11-20")


if __name__ == "__main__":
    unittest.main()
