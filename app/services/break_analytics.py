from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from statistics import mean, pstdev
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.clock import as_utc
from app.models import Segment, SegmentType, User, WorkSession

FEWER_BREAKS_RATIO = 0.5
LONGER_BREAKS_RATIO = 1.5
LATE_NIGHT_SHARE = 0.2
PEAK_HOUR_SHARE = 0.5
WEEKEND_SHARE = 0.4
OUTLIER_STDDEVS = 2
LEAST_ACTIVE_SHARE = 0.2
TOP_HOURS = 3
SECONDS_PER_DAY = 86400


@dataclass(slots=True)
class BreakSegmentRow:
    segment_id: int
    user_id: int
    user_name: str
    user_email: str
    break_type: str
    start_time: datetime
    end_time: datetime | None
    duration: int

    @property
    def hour_of_day(self) -> int:
        return self.start_time.hour

    @property
    def day_of_week(self) -> int:
        # Monday is 0, Sunday is 6.
        return self.start_time.weekday()


@dataclass(slots=True)
class UserBreakStats:
    user_id: int
    user_name: str
    user_email: str
    total_breaks: int
    total_break_time: int
    average_break_duration: float
    longest_break: int
    shortest_break: int
    average_breaks_per_day: float
    breaks_by_type: dict[str, int] = field(default_factory=dict)
    breaks_by_hour: dict[int, int] = field(default_factory=dict)
    breaks_by_day_of_week: dict[int, int] = field(default_factory=dict)
    outlier_breaks: list[BreakSegmentRow] = field(default_factory=list)


def fetch_break_segments(db: Session, *, start: datetime, end: datetime) -> list[BreakSegmentRow]:
    """BREAK segments that started inside [start, end], for users that are not archived."""
    segments = db.scalars(
        select(Segment)
        .options(
            selectinload(Segment.break_record),
            selectinload(Segment.session).selectinload(WorkSession.user),
        )
        .join(WorkSession, WorkSession.id == Segment.session_id)
        .join(User, User.id == WorkSession.user_id)
        .where(
            Segment.type == SegmentType.BREAK,
            Segment.start_time >= start,
            Segment.start_time <= end,
            User.is_archived.is_(False),
        )
        .order_by(Segment.start_time.asc(), Segment.id.asc())
    ).all()

    rows: list[BreakSegmentRow] = []
    for segment in segments:
        user = segment.session.user
        rows.append(
            BreakSegmentRow(
                segment_id=segment.id,
                user_id=user.id,
                user_name=user.name,
                user_email=user.email,
                break_type=segment.break_record.type.value if segment.break_record is not None else "UNKNOWN",
                start_time=as_utc(segment.start_time),
                end_time=as_utc(segment.end_time) if segment.end_time is not None else None,
                duration=segment.duration,
            )
        )
    return rows


def _days_in_range(start: datetime, end: datetime) -> int:
    return math.ceil((as_utc(end) - as_utc(start)).total_seconds() / SECONDS_PER_DAY) or 1


def user_break_stats(rows: list[BreakSegmentRow], *, start: datetime, end: datetime) -> UserBreakStats | None:
    if not rows:
        return None

    durations = [row.duration for row in rows]
    average = mean(durations)
    spread = pstdev(durations)
    first = rows[0]
    return UserBreakStats(
        user_id=first.user_id,
        user_name=first.user_name,
        user_email=first.user_email,
        total_breaks=len(rows),
        total_break_time=sum(durations),
        average_break_duration=average,
        longest_break=max(durations),
        shortest_break=min(durations),
        average_breaks_per_day=len(rows) / _days_in_range(start, end),
        breaks_by_type=dict(Counter(row.break_type for row in rows)),
        breaks_by_hour=dict(Counter(row.hour_of_day for row in rows)),
        breaks_by_day_of_week=dict(Counter(row.day_of_week for row in rows)),
        outlier_breaks=[row for row in rows if abs(row.duration - average) > OUTLIER_STDDEVS * spread],
    )


def _time_patterns(stats: UserBreakStats) -> list[dict[str, Any]]:
    patterns: list[dict[str, Any]] = []
    total = stats.total_breaks

    late_night = sum(count for hour, count in stats.breaks_by_hour.items() if hour >= 23 or hour < 6)
    if late_night > total * LATE_NIGHT_SHARE:
        patterns.append(
            {
                "user_id": stats.user_id,
                "user_name": stats.user_name,
                "pattern": "late_night_breaks",
                "description": f"{round(late_night / total * 100)}% of breaks occur between 11pm-6am",
            }
        )

    peak_count = max(stats.breaks_by_hour.values(), default=0)
    if peak_count > total * PEAK_HOUR_SHARE:
        peak_hour = min(hour for hour, count in stats.breaks_by_hour.items() if count == peak_count)
        patterns.append(
            {
                "user_id": stats.user_id,
                "user_name": stats.user_name,
                "pattern": "highly_consistent_timing",
                "description": f"{round(peak_count / total * 100)}% of breaks occur at {peak_hour}:00",
            }
        )

    weekend = stats.breaks_by_day_of_week.get(5, 0) + stats.breaks_by_day_of_week.get(6, 0)
    if weekend > total * WEEKEND_SHARE:
        patterns.append(
            {
                "user_id": stats.user_id,
                "user_name": stats.user_name,
                "pattern": "weekend_heavy",
                "description": f"{round(weekend / total * 100)}% of breaks occur on weekends",
            }
        )
    return patterns


def detect_anomalies(user_stats: list[UserBreakStats]) -> dict[str, Any]:
    if not user_stats:
        return {
            "users_with_fewer_breaks": [],
            "users_with_longer_breaks": [],
            "unusual_time_patterns": [],
            "overall_stats": {
                "total_users": 0,
                "average_breaks_per_user_per_day": 0.0,
                "average_break_duration": 0.0,
                "most_common_break_hours": [],
                "least_active_users": [],
            },
        }

    avg_per_day = mean(item.average_breaks_per_day for item in user_stats)
    avg_duration = mean(item.average_break_duration for item in user_stats)

    fewer = sorted(
        (
            {
                "user_id": item.user_id,
                "user_name": item.user_name,
                "total_breaks": item.total_breaks,
                "average_breaks_per_day": item.average_breaks_per_day,
                "percentage_below": (avg_per_day - item.average_breaks_per_day) / avg_per_day * 100,
            }
            for item in user_stats
            if item.average_breaks_per_day < avg_per_day * FEWER_BREAKS_RATIO
        ),
        key=lambda row: row["average_breaks_per_day"],
    )
    longer = sorted(
        (
            {
                "user_id": item.user_id,
                "user_name": item.user_name,
                "average_break_duration": item.average_break_duration,
                "percentage_above": (item.average_break_duration - avg_duration) / avg_duration * 100,
            }
            for item in user_stats
            if item.average_break_duration > avg_duration * LONGER_BREAKS_RATIO
        ),
        key=lambda row: row["average_break_duration"],
        reverse=True,
    )

    patterns: list[dict[str, Any]] = []
    hours: Counter[int] = Counter()
    for item in user_stats:
        patterns.extend(_time_patterns(item))
        hours.update(item.breaks_by_hour)

    least_active_count = math.ceil(len(user_stats) * LEAST_ACTIVE_SHARE)
    least_active = [item.user_name for item in sorted(user_stats, key=lambda s: s.total_breaks)[:least_active_count]]

    return {
        "users_with_fewer_breaks": fewer,
        "users_with_longer_breaks": longer,
        "unusual_time_patterns": patterns,
        "overall_stats": {
            "total_users": len(user_stats),
            "average_breaks_per_user_per_day": avg_per_day,
            "average_break_duration": avg_duration,
            "most_common_break_hours": [hour for hour, _ in hours.most_common(TOP_HOURS)],
            "least_active_users": least_active,
        },
    }


def build_break_analytics_report(db: Session, *, start: datetime, end: datetime) -> dict[str, Any]:
    by_user: dict[int, list[BreakSegmentRow]] = defaultdict(list)
    for row in fetch_break_segments(db, start=start, end=end):
        by_user[row.user_id].append(row)

    user_stats = [
        stats
        for rows in by_user.values()
        if (stats := user_break_stats(rows, start=start, end=end)) is not None
    ]
    return {
        "date_range": {"from": as_utc(start).isoformat(), "to": as_utc(end).isoformat()},
        "user_stats": [asdict(item) for item in user_stats],
        "anomaly_analysis": detect_anomalies(user_stats),
    }
