from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from app.models import (
    ExceptionType,
    IncidentSeverity,
    IncidentType,
    StabilityIncident,
    WorkException,
)
from app.services.scoring import (
    availability_score,
    incident_base_penalty,
    round_half_up,
    stability_score,
    time_deviation_penalty,
)

CYCLE_START = datetime(2025, 11, 19, tzinfo=timezone.utc)
EPOCH_9AM = int(datetime(2025, 11, 20, 9, 0, tzinfo=timezone.utc).timestamp())


def _exception(
    exception_type: ExceptionType,
    *,
    day: int = 0,
    scheduled: int | None = None,
    actual: int | None = None,
) -> WorkException:
    return WorkException(
        user_id=1,
        type=exception_type,
        exception_date=CYCLE_START + timedelta(days=day),
        scheduled_time_epoch=scheduled,
        actual_time_epoch=actual,
    )


def _incident(
    severity: IncidentSeverity,
    incident_type: IncidentType,
    *,
    at: int,
) -> StabilityIncident:
    return StabilityIncident(user_id=1, severity=severity, type=incident_type, title="incident", incident_date=at)


class RoundingTests(unittest.TestCase):
    def test_half_rounds_up(self) -> None:
        self.assertEqual(round_half_up(0.125), 0.13)
        self.assertEqual(round_half_up(52.75), 52.75)
        self.assertEqual(round_half_up(94.444), 94.44)


class TimeDeviationTests(unittest.TestCase):
    def test_each_started_half_hour_costs_point_three(self) -> None:
        self.assertAlmostEqual(time_deviation_penalty(EPOCH_9AM, EPOCH_9AM + 30 * 60), 0.3)
        self.assertAlmostEqual(time_deviation_penalty(EPOCH_9AM, EPOCH_9AM + 45 * 60), 0.6)
        self.assertAlmostEqual(time_deviation_penalty(EPOCH_9AM, EPOCH_9AM + 61), 0.3)

    def test_direction_does_not_matter(self) -> None:
        self.assertAlmostEqual(time_deviation_penalty(EPOCH_9AM + 45 * 60, EPOCH_9AM), 0.6)

    def test_on_time_costs_nothing(self) -> None:
        self.assertEqual(time_deviation_penalty(EPOCH_9AM, EPOCH_9AM), 0)


class AvailabilityScoreTests(unittest.TestCase):
    def test_single_full_day_leave_in_twenty_day_cycle(self) -> None:
        score = availability_score([_exception(ExceptionType.FULL_DAY_LEAVE)], 20)

        self.assertEqual(score, 95.0)

    def test_no_exceptions_is_perfect(self) -> None:
        self.assertEqual(availability_score([], 22), 100.0)

    def test_zero_working_days_never_penalizes(self) -> None:
        score = availability_score([_exception(ExceptionType.UNAUTHORIZED_ABSENCE)], 0)

        self.assertEqual(score, 100.0)

    def test_repeated_leave_compounds(self) -> None:
        exceptions = [
            _exception(ExceptionType.FULL_DAY_LEAVE, day=0),
            _exception(ExceptionType.FULL_DAY_LEAVE, day=1),
        ]

        # 1.0 day, then 1.0 + 1.0 days: 3 days at 5 points each.
        self.assertEqual(availability_score(exceptions, 20), 85.0)

    def test_sick_leave_is_flat_and_does_not_feed_compounding(self) -> None:
        exceptions = [
            _exception(ExceptionType.SICK_LEAVE, day=0),
            _exception(ExceptionType.FULL_DAY_LEAVE, day=1),
        ]

        # 0.8 x 5 for sickness, then a fresh 1.0 x 5 for the leave.
        self.assertEqual(availability_score(exceptions, 20), 91.0)

    def test_timed_late_arrival_is_charged_by_magnitude_without_compounding(self) -> None:
        exceptions = [
            _exception(
                ExceptionType.LATE_ARRIVAL,
                day=0,
                scheduled=EPOCH_9AM,
                actual=EPOCH_9AM + 45 * 60,
            ),
            _exception(ExceptionType.FULL_DAY_LEAVE, day=1),
        ]

        self.assertEqual(availability_score(exceptions, 20), 94.4)

    def test_untimed_late_arrival_falls_back_to_weight_and_compounds(self) -> None:
        exceptions = [
            _exception(ExceptionType.LATE_ARRIVAL, day=0),
            _exception(ExceptionType.FULL_DAY_LEAVE, day=1),
        ]

        # 0.01 day, then 1.0 + 0.01 days.
        self.assertAlmostEqual(availability_score(exceptions, 20), 94.9)

    def test_exceptions_are_applied_in_date_order(self) -> None:
        ordered = [
            _exception(ExceptionType.HALF_DAY_LEAVE, day=0),
            _exception(ExceptionType.UNAUTHORIZED_ABSENCE, day=3),
        ]

        self.assertEqual(
            availability_score(list(reversed(ordered)), 20),
            availability_score(ordered, 20),
        )

    def test_score_is_clamped_at_zero(self) -> None:
        exceptions = [_exception(ExceptionType.UNAUTHORIZED_ABSENCE, day=day) for day in range(5)]

        self.assertEqual(availability_score(exceptions, 2), 0.0)


class StabilityScoreTests(unittest.TestCase):
    def test_two_critical_production_bugs_compound(self) -> None:
        incidents = [
            _incident(IncidentSeverity.CRITICAL, IncidentType.PRODUCTION_BUG, at=EPOCH_9AM),
            _incident(IncidentSeverity.CRITICAL, IncidentType.PRODUCTION_BUG, at=EPOCH_9AM + 3600),
        ]

        self.assertEqual(stability_score(incidents), 52.75)

    def test_no_incidents_is_perfect(self) -> None:
        self.assertEqual(stability_score([]), 100.0)

    def test_base_penalty_is_severity_times_type_multiplier(self) -> None:
        self.assertAlmostEqual(
            incident_base_penalty(IncidentSeverity.CRITICAL, IncidentType.PRODUCTION_BUG),
            22.5,
        )
        self.assertAlmostEqual(
            incident_base_penalty(IncidentSeverity.LOW, IncidentType.CODE_QUALITY_ISSUE),
            2.1,
        )
        self.assertAlmostEqual(
            incident_base_penalty(IncidentSeverity.NEGLIGIBLE, IncidentType.PERFORMANCE_ISSUE),
            1.0,
        )

    def test_incidents_compound_in_chronological_order(self) -> None:
        critical = _incident(IncidentSeverity.CRITICAL, IncidentType.PRODUCTION_BUG, at=EPOCH_9AM)
        minor = _incident(IncidentSeverity.LOW, IncidentType.TEST_FAILURE, at=EPOCH_9AM + 60)

        # 22.5, then 2.4 + 22.5 x 0.1.
        self.assertAlmostEqual(stability_score([minor, critical]), 72.85)

    def test_score_is_clamped_at_zero(self) -> None:
        incidents = [
            _incident(IncidentSeverity.CRITICAL, IncidentType.SECURITY_VULNERABILITY, at=EPOCH_9AM + index)
            for index in range(6)
        ]

        self.assertEqual(stability_score(incidents), 0.0)


if __name__ == "__main__":
    unittest.main()
