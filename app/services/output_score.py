from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from app.models import Task, TaskStatus
from app.services.billing_cycle import BillingCycle
from app.services.scoring import MAX_SCORE
from app.services.timeline import list_tasks_for_user

COMPLETION_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.PARTIALLY_COMPLETED})
# Canonical definition used by every call site; pass {COMPLETED} for the strict variant.
DEFAULT_COUNTED_STATUSES = COMPLETION_STATUSES
UNASSIGNED_WORK_SCORE = MAX_SCORE
UNRATED_COMPLETION_SCORE = MAX_SCORE
NO_COMPLETION_SCORE = 0.0


def effective_completion_date(task: Task) -> datetime | None:
    """Date used to attribute a task to a billing cycle.

    Finished tasks count on the day their work session started, so work wrapped
    up just after midnight stays with the session's day. Without a linked session
    the raw completion timestamp is used; unfinished tasks use their creation time.
    """
    if task.status in COMPLETION_STATUSES:
        if task.completed_session is not None:
            return task.completed_session.start_time
        return task.completed_date
    return task.created_at


def monthly_output_score(
    tasks: Iterable[Task],
    cycle: BillingCycle,
    *,
    counted_statuses: Collection[TaskStatus] = DEFAULT_COUNTED_STATUSES,
) -> float:
    tasks_in_cycle = [task for task in tasks if cycle.contains(effective_completion_date(task))]
    if not tasks_in_cycle:
        return UNASSIGNED_WORK_SCORE

    completed = [task for task in tasks_in_cycle if task.status in counted_statuses]
    if not completed:
        return NO_COMPLETION_SCORE

    rated = [task.score for task in completed if task.score is not None]
    if not rated:
        return UNRATED_COMPLETION_SCORE
    return sum(rated) / len(rated)


def compute_monthly_output_score(
    db: Session,
    *,
    user_id: int,
    cycle: BillingCycle,
    counted_statuses: Collection[TaskStatus] = DEFAULT_COUNTED_STATUSES,
) -> float:
    return monthly_output_score(
        list_tasks_for_user(db, user_id=user_id),
        cycle,
        counted_statuses=counted_statuses,
    )
