from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError, ValidationError
from app.models import ExceptionType, User, WorkException
from app.services.timeline import transaction

_UNSET: Any = object()


def _validate_epochs(scheduled_time_epoch: int | None, actual_time_epoch: int | None) -> None:
    if (scheduled_time_epoch is None) != (actual_time_epoch is None):
        raise ValidationError(
            "INVALID_EXCEPTION_TIMES",
            "scheduled_time_epoch and actual_time_epoch must be provided together.",
        )


def create_work_exception(
    db: Session,
    *,
    user_id: int,
    exception_type: ExceptionType,
    exception_date: datetime,
    scheduled_time_epoch: int | None = None,
    actual_time_epoch: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
    compensation_date: datetime | None = None,
) -> WorkException:
    _validate_epochs(scheduled_time_epoch, actual_time_epoch)
    with transaction(db):
        if db.get(User, user_id) is None:
            raise NotFoundError("USER_NOT_FOUND", "User not found.")
        exception = WorkException(
            user_id=user_id,
            type=exception_type,
            exception_date=exception_date,
            scheduled_time_epoch=scheduled_time_epoch,
            actual_time_epoch=actual_time_epoch,
            reason=reason,
            notes=notes,
            compensation_date=compensation_date,
        )
        db.add(exception)
        db.flush()
    return exception


def get_work_exception(db: Session, exception_id: int) -> WorkException:
    exception = db.get(WorkException, exception_id)
    if exception is None:
        raise NotFoundError("WORK_EXCEPTION_NOT_FOUND", "Work exception not found.")
    return exception


def update_work_exception(
    db: Session,
    exception_id: int,
    *,
    exception_type: ExceptionType | None = None,
    exception_date: datetime | None = None,
    scheduled_time_epoch: int | None = _UNSET,
    actual_time_epoch: int | None = _UNSET,
    reason: str | None = _UNSET,
    notes: str | None = _UNSET,
    compensation_date: datetime | None = _UNSET,
) -> WorkException:
    """Patch only the fields that were passed; nullable fields accept an explicit None."""
    with transaction(db):
        exception = get_work_exception(db, exception_id)
        if exception_type is not None:
            exception.type = exception_type
        if exception_date is not None:
            exception.exception_date = exception_date
        if scheduled_time_epoch is not _UNSET:
            exception.scheduled_time_epoch = scheduled_time_epoch
        if actual_time_epoch is not _UNSET:
            exception.actual_time_epoch = actual_time_epoch
        if reason is not _UNSET:
            exception.reason = reason
        if notes is not _UNSET:
            exception.notes = notes
        if compensation_date is not _UNSET:
            exception.compensation_date = compensation_date
        _validate_epochs(exception.scheduled_time_epoch, exception.actual_time_epoch)
        db.flush()
    return exception


def delete_work_exception(db: Session, exception_id: int) -> None:
    with transaction(db):
        db.delete(get_work_exception(db, exception_id))


def list_work_exceptions(
    db: Session,
    *,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    exception_type: ExceptionType | None = None,
) -> list[WorkException]:
    stmt = select(WorkException)
    if user_id is not None:
        stmt = stmt.where(WorkException.user_id == user_id)
    if start is not None:
        stmt = stmt.where(WorkException.exception_date >= start)
    if end is not None:
        stmt = stmt.where(WorkException.exception_date <= end)
    if exception_type is not None:
        stmt = stmt.where(WorkException.type == exception_type)
    return list(db.scalars(stmt.order_by(WorkException.exception_date.desc(), WorkException.id.desc())).all())


def work_exception_stats(
    db: Session,
    *,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, int]:
    counts = Counter(item.type for item in list_work_exceptions(db, user_id=user_id, start=start, end=end))
    stats = {"total": sum(counts.values())}
    for exception_type in ExceptionType:
        stats[exception_type.value] = counts.get(exception_type, 0)
    return stats
