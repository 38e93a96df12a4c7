from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from app.clock import FixedClock
from app.models import BreakType
from app.services.break_analytics import (
    BreakSegmentRow,
    UserBreakStats,
    build_break_analytics_report,
    detect_anomalies,
    user_break_stats,
)
from app.services.breaks import end_break, start_break
from app.services.sessions import start_session
from support import add_user, make_sqlite_session, utc

RANGE_START = utc(2025, 11, 17)
RANGE_END = utc(2025, 11, 23, 23, 59, 59)


def _row(start: datetime, duration: int, *, user_id: int = 1, break_type: str = "SHORT") -> BreakSegmentRow:
    return BreakSegmentRow(
        segment_id=0,
        user_id=user_id,
        user_name=f"user-{user_id}",
        user_email=f"user-{user_id}@example.com",
        break_type=break_type,
        start_time=start,
        end_time=start + timedelta(seconds=duration),
        duration=duration,
    )


def _stats(user_id: int, *, per_day: float, average: float, hours: dict[int, int] | None = None) -> UserBreakStats:
    return UserBreakStats(
        user_id=user_id,
        user_name=f"user-{user_id}",
        user_email=f"user-{user_id}@example.com",
        total_breaks=int(per_day * 7),
        total_break_time=int(per_day * 7 * average),
        average_break_duration=average,
        longest_break=int(average),
        shortest_break=int(average),
        average_breaks_per_day=per_day,
        breaks_by_hour=hours or {13: int(per_day * 7)},
        breaks_by_day_of_week={0: int(per_day * 7)},
    )


class UserBreakStatsTests(unittest.TestCase):
    def test_aggregates_and_flags_outliers(self) -> None:
        rows = [_row(utc(2025, 11, 17, 13) + timedelta(hours=index), 300) for index in range(9)]
        rows.append(_row(utc(2025, 11, 18, 13), 3000, break_type="LUNCH"))

        stats = user_break_stats(rows, start=RANGE_START, end=RANGE_END)

        self.assertEqual(stats.total_breaks, 10)
        self.assertEqual(stats.total_break_time, 5700)
        self.assertEqual(stats.longest_break, 3000)
        self.assertEqual(stats.shortest_break, 300)
        self.assertAlmostEqual(stats.average_break_duration, 570)
        self.assertAlmostEqual(stats.average_breaks_per_day, 10 / 7)
        self.assertEqual(stats.breaks_by_type, {"SHORT": 9, "LUNCH": 1})
        self.assertEqual([row.duration for row in stats.outlier_breaks], [3000])

    def test_weekday_index_starts_on_monday(self) -> None:
        self.assertEqual(_row(utc(2025, 11, 17, 9), 60).day_of_week, 0)
        self.assertEqual(_row(utc(2025, 11, 23, 9), 60).day_of_week, 6)

    def test_no_rows_yields_no_stats(self) -> None:
        self.assertIsNone(user_break_stats([], start=RANGE_START, end=RANGE_END))


class DetectAnomaliesTests(unittest.TestCase):
    def test_flags_users_far_from_team_average(self) -> None:
        frequent = _stats(1, per_day=4, average=300)
        rare = _stats(2, per_day=1, average=1200)

        report = detect_anomalies([frequent, rare])

        self.assertEqual([item["user_id"] for item in report["users_with_fewer_breaks"]], [2])
        self.assertEqual([item["user_id"] for item in report["users_with_longer_breaks"]], [2])
        self.assertAlmostEqual(report["users_with_fewer_breaks"][0]["percentage_below"], 60.0)
        self.assertEqual(report["overall_stats"]["total_users"], 2)
        self.assertEqual(report["overall_stats"]["least_active_users"], ["user-2"])

    def test_flags_time_patterns(self) -> None:
        night_owl = _stats(1, per_day=1, average=600, hours={1: 4, 14: 3})

        patterns = detect_anomalies([night_owl])["unusual_time_patterns"]

        self.assertIn("late_night_breaks", [item["pattern"] for item in patterns])
        self.assertIn("highly_consistent_timing", [item["pattern"] for item in patterns])

    def test_empty_input_returns_zeroed_report(self) -> None:
        report = detect_anomalies([])

        self.assertEqual(report["users_with_fewer_breaks"], [])
        self.assertEqual(report["overall_stats"]["total_users"], 0)


class BreakAnalyticsReportTests(unittest.TestCase):
    def test_report_covers_only_active_users(self) -> None:
        db = make_sqlite_session()
        self.addCleanup(db.close)
        active = add_user(db, name="Asha")
        archived = add_user(db, name="Former")
        clock = FixedClock(utc(2025, 11, 18, 13, 0))
        for user in (active, archived):
            clock.set(utc(2025, 11, 18, 9, 0))
            session = start_session(db, user_id=user.id, project_id=None, clock=clock)
            clock.set(utc(2025, 11, 18, 13, 0))
            break_record = start_break(
                db,
                user_id=user.id,
                session_id=session.id,
                break_type=BreakType.LUNCH,
                clock=clock,
            )
            clock.advance(minutes=30)
            end_break(db, user_id=user.id, break_id=break_record.id, clock=clock)
        archived.is_archived = True
        db.commit()

        report = build_break_analytics_report(db, start=RANGE_START, end=RANGE_END)

        self.assertEqual([item["user_id"] for item in report["user_stats"]], [active.id])
        self.assertEqual(report["user_stats"][0]["breaks_by_type"], {"LUNCH": 1})
        self.assertEqual(report["user_stats"][0]["total_break_time"], 1800)
        self.assertEqual(report["anomaly_analysis"]["overall_stats"]["most_common_break_hours"], [13])


if __name__ == "__main__":
    unittest.main()
