from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from app.clock import as_utc
from app.models import ExceptionType, IncidentSeverity, IncidentType, StabilityIncident, WorkException

MAX_SCORE = 100.0
MIN_SCORE = 0.0

EXCEPTION_WEIGHTS: dict[ExceptionType, float] = {
    ExceptionType.FULL_DAY_LEAVE: 1.0,
    ExceptionType.HALF_DAY_LEAVE: 0.5,
    ExceptionType.LATE_ARRIVAL: 0.01,
    ExceptionType.EARLY_EXIT: 0.01,
    ExceptionType.WORK_FROM_HOME: 0.15,
    ExceptionType.SICK_LEAVE: 0.8,
    ExceptionType.EMERGENCY_LEAVE: 0.7,
    ExceptionType.UNAUTHORIZED_ABSENCE: 1.5,
}
DEFAULT_EXCEPTION_WEIGHT = 1.0

TIME_DEVIATION_TYPES = frozenset({ExceptionType.LATE_ARRIVAL, ExceptionType.EARLY_EXIT})
TIME_DEVIATION_BLOCK_MINUTES = 30
TIME_DEVIATION_BLOCK_PENALTY = 0.3

SEVERITY_WEIGHTS: dict[IncidentSeverity, float] = {
    IncidentSeverity.CRITICAL: 15,
    IncidentSeverity.HIGH: 10,
    IncidentSeverity.MEDIUM: 6,
    IncidentSeverity.LOW: 3,
    IncidentSeverity.NEGLIGIBLE: 1,
}
DEFAULT_SEVERITY_WEIGHT = 5

INCIDENT_TYPE_MULTIPLIERS: dict[IncidentType, float] = {
    IncidentType.PRODUCTION_BUG: 1.5,
    IncidentType.SECURITY_VULNERABILITY: 1.5,
    IncidentType.DATA_CORRUPTION: 1.4,
    IncidentType.DEPLOYMENT_FAILURE: 1.3,
    IncidentType.BREAKING_CHANGE: 1.3,
    IncidentType.HOTFIX_REQUIRED: 1.2,
    IncidentType.REGRESSION: 1.2,
    IncidentType.PERFORMANCE_ISSUE: 1.0,
    IncidentType.TEST_FAILURE: 0.8,
    IncidentType.CODE_QUALITY_ISSUE: 0.7,
}
DEFAULT_INCIDENT_TYPE_MULTIPLIER = 1.0
INCIDENT_COMPOUNDING_FACTOR = 0.1


def round_half_up(value: float, digits: int = 2) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def clamp_score(value: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def time_deviation_penalty(scheduled_epoch: int, actual_epoch: int) -> float:
    """0.3 points per started 30-minute block between scheduled and actual time."""
    minutes = abs(actual_epoch - scheduled_epoch) / 60
    return math.ceil(minutes / TIME_DEVIATION_BLOCK_MINUTES) * TIME_DEVIATION_BLOCK_PENALTY


def exception_weight(exception_type: ExceptionType) -> float:
    return EXCEPTION_WEIGHTS.get(exception_type, DEFAULT_EXCEPTION_WEIGHT)


def availability_score(exceptions: Iterable[WorkException], working_days_in_cycle: int) -> float:
    """Score attendance over a cycle.

    Late arrivals and early exits with both timestamps are charged by magnitude and
    sick leave at a flat day fraction; neither compounds. Every other exception costs
    its weight plus all previously compounded days, so repeats escalate.
    """
    value_per_day = MAX_SCORE / working_days_in_cycle if working_days_in_cycle > 0 else 0.0
    ordered = sorted(exceptions, key=lambda item: as_utc(item.exception_date))

    current_penalized_days = 0.0
    total_penalty = 0.0
    for exception in ordered:
        if (
            exception.type in TIME_DEVIATION_TYPES
            and exception.scheduled_time_epoch is not None
            and exception.actual_time_epoch is not None
        ):
            total_penalty += time_deviation_penalty(exception.scheduled_time_epoch, exception.actual_time_epoch)
            continue

        weight = exception_weight(exception.type)
        if exception.type == ExceptionType.SICK_LEAVE:
            total_penalty += weight * value_per_day
            continue

        penalty_days = weight + current_penalized_days
        total_penalty += penalty_days * value_per_day
        current_penalized_days += penalty_days

    return round_half_up(clamp_score(MAX_SCORE - total_penalty))


def incident_base_penalty(severity: IncidentSeverity, incident_type: IncidentType) -> float:
    weight = SEVERITY_WEIGHTS.get(severity, DEFAULT_SEVERITY_WEIGHT)
    multiplier = INCIDENT_TYPE_MULTIPLIERS.get(incident_type, DEFAULT_INCIDENT_TYPE_MULTIPLIER)
    return weight * multiplier


def stability_score(incidents: Sequence[StabilityIncident]) -> float:
    if not incidents:
        return MAX_SCORE

    accumulated_penalty = 0.0
    total_penalty = 0.0
    for incident in sorted(incidents, key=lambda item: item.incident_date):
        base_penalty = incident_base_penalty(incident.severity, incident.type)
        total_penalty += base_penalty + accumulated_penalty * INCIDENT_COMPOUNDING_FACTOR
        accumulated_penalty += base_penalty

    return round_half_up(clamp_score(MAX_SCORE - total_penalty))
