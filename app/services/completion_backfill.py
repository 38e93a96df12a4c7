from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.models import Task, TaskStatus, WorkSession
from app.services.timeline import transaction

logger = logging.getLogger("app.completion_backfill")


@dataclass(slots=True)
class BackfillStats:
    dry_run: bool
    total_completed: int = 0
    linked: int = 0
    no_session_found: int = 0
    skipped_unassigned: int = 0
    links: list[dict[str, int]] = field(default_factory=list)


def find_session_for_completion(db: Session, *, user_id: int, completed_at: datetime) -> WorkSession | None:
    """The user's session covering ``completed_at``: started at or before it, ended at or after it
    (or still open). The latest start wins."""
    return db.scalar(
        select(WorkSession)
        .where(
            WorkSession.user_id == user_id,
            WorkSession.start_time <= completed_at,
            or_(WorkSession.end_time.is_(None), WorkSession.end_time >= completed_at),
        )
        .order_by(WorkSession.start_time.desc(), WorkSession.id.desc())
        .limit(1)
    )


def _day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time(0, 0), tzinfo=timezone.utc)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def backfill_task_completion_sessions(
    db: Session,
    *,
    dry_run: bool = True,
    target_day: date | None = None,
) -> BackfillStats:
    """Link COMPLETED tasks that lack ``completed_session_id`` to the session they were finished in."""
    stats = BackfillStats(dry_run=dry_run)

    stmt = select(Task).where(
        Task.status == TaskStatus.COMPLETED,
        Task.completed_date.is_not(None),
        Task.completed_session_id.is_(None),
    )
    if target_day is not None:
        day_start, day_end = _day_bounds_utc(target_day)
        stmt = stmt.where(Task.completed_date >= day_start, Task.completed_date <= day_end)
    tasks = list(db.scalars(stmt.order_by(Task.completed_date.asc(), Task.id.asc())).all())
    stats.total_completed = len(tasks)

    with transaction(db):
        for task in tasks:
            if task.assigned_to_id is None:
                stats.skipped_unassigned += 1
                continue

            session = find_session_for_completion(
                db,
                user_id=task.assigned_to_id,
                completed_at=task.completed_date,
            )
            if session is None:
                stats.no_session_found += 1
                logger.info(
                    "task_backfill_no_session",
                    extra={"task_id": task.id, "user_id": task.assigned_to_id},
                )
                continue

            stats.linked += 1
            stats.links.append({"task_id": task.id, "user_id": task.assigned_to_id, "session_id": session.id})
            if not dry_run:
                task.completed_session_id = session.id

    logger.info(
        "task_backfill_complete",
        extra={
            "dry_run": dry_run,
            "total_completed": stats.total_completed,
            "linked": stats.linked,
            "no_session_found": stats.no_session_found,
            "skipped_unassigned": stats.skipped_unassigned,
        },
    )
    return stats
