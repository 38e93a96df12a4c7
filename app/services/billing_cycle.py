from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from app.clock import as_utc

CYCLE_START_DAY = 19
CYCLE_END_DAY = 18
# First cycle for which payouts exist: the one starting 19 Nov 2025.
PAYOUT_START = (2025, 11)
MAX_LISTED_CYCLES = 24

_END_OF_DAY = time(23, 59, 59, 999000, tzinfo=timezone.utc)
_START_OF_DAY = time(0, 0, 0, tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class BillingCycle:
    start: datetime
    end: datetime

    @property
    def label(self) -> str:
        return f"{self.start:%b %Y} ({self.start.day}th - {self.end.day}th)"

    def contains(self, value: datetime | None) -> bool:
        if value is None:
            return False
        return self.start <= as_utc(value) <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "start_date": self.start.date().isoformat(),
            "end_date": self.end.date().isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def _cycle_from_start_day(first_day: date) -> BillingCycle:
    # Jumping 32 days from the 19th always lands in the following month.
    last_day = (first_day + timedelta(days=32)).replace(day=CYCLE_END_DAY)
    return BillingCycle(
        start=datetime.combine(first_day, _START_OF_DAY),
        end=datetime.combine(last_day, _END_OF_DAY),
    )


def billing_cycle_for(start_year: int, start_month: int) -> BillingCycle:
    """The cycle that opens on the 19th of ``start_month``."""
    return _cycle_from_start_day(date(start_year, start_month, CYCLE_START_DAY))


def current_billing_cycle(now: datetime) -> BillingCycle:
    today = as_utc(now).date()
    if today.day >= CYCLE_START_DAY:
        return _cycle_from_start_day(today.replace(day=CYCLE_START_DAY))
    previous_month_day = today.replace(day=1) - timedelta(days=1)
    return _cycle_from_start_day(previous_month_day.replace(day=CYCLE_START_DAY))


def previous_billing_cycle(cycle: BillingCycle) -> BillingCycle:
    previous_month_day = cycle.start.date().replace(day=1) - timedelta(days=1)
    return _cycle_from_start_day(previous_month_day.replace(day=CYCLE_START_DAY))


def list_billing_cycles(
    now: datetime,
    *,
    since: tuple[int, int] = PAYOUT_START,
    limit: int = MAX_LISTED_CYCLES,
) -> list[BillingCycle]:
    """Cycles from the current one backwards, newest first, never earlier than ``since``."""
    earliest = billing_cycle_for(*since)
    cycles: list[BillingCycle] = []
    cycle = current_billing_cycle(now)
    while len(cycles) < limit and cycle.start >= earliest.start:
        cycles.append(cycle)
        cycle = previous_billing_cycle(cycle)
    return cycles


def working_days(start: datetime | date, end: datetime | date) -> int:
    """Mon-Fri calendar days in [start, end], both ends inclusive, by UTC date."""
    first = as_utc(start).date() if isinstance(start, datetime) else start
    last = as_utc(end).date() if isinstance(end, datetime) else end
    count = 0
    day = first
    while day <= last:
        if day.weekday() < 5:
            count += 1
        day += timedelta(days=1)
    return count
