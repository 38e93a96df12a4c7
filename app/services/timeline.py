from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from math import floor
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.attributes import set_committed_value

from app.clock import as_utc
from app.errors import ConflictError
from app.models import (
    Break,
    BreakType,
    PayoutSnapshot,
    Segment,
    SegmentType,
    SessionStatus,
    StabilityIncident,
    Task,
    WorkException,
    WorkSession,
)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def elapsed_seconds(start: datetime, end: datetime) -> int:
    return int(floor((as_utc(end) - as_utc(start)).total_seconds()))


def find_active_session(
    db: Session,
    *,
    user_id: int,
    session_id: int | None = None,
    for_update: bool = False,
) -> WorkSession | None:
    stmt = select(WorkSession).where(
        WorkSession.user_id == user_id,
        WorkSession.status == SessionStatus.ACTIVE,
        WorkSession.end_time.is_(None),
    )
    if session_id is not None:
        stmt = stmt.where(WorkSession.id == session_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.scalar(stmt)


def create_session(
    db: Session,
    *,
    user_id: int,
    project_id: int | None,
    start_time: datetime,
) -> WorkSession:
    session = WorkSession(
        user_id=user_id,
        project_id=project_id,
        start_time=start_time,
        status=SessionStatus.ACTIVE,
        total_duration=0,
        total_break_time=0,
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError(
            "SESSION_ALREADY_ACTIVE",
            "User already has an active session.",
        ) from exc
    return session


def close_session(
    db: Session,
    session: WorkSession,
    *,
    end_time: datetime,
    total_duration: int,
    total_break_time: int,
) -> WorkSession:
    result = db.execute(
        update(WorkSession)
        .where(WorkSession.id == session.id, WorkSession.status == SessionStatus.ACTIVE)
        .values(
            status=SessionStatus.COMPLETED,
            end_time=end_time,
            total_duration=total_duration,
            total_break_time=total_break_time,
        )
    )
    if result.rowcount != 1:
        raise ConflictError("SESSION_NOT_ACTIVE", "Session was closed by a concurrent request.")
    set_committed_value(session, "status", SessionStatus.COMPLETED)
    set_committed_value(session, "end_time", end_time)
    set_committed_value(session, "total_duration", total_duration)
    set_committed_value(session, "total_break_time", total_break_time)
    return session


def update_active_session(db: Session, session: WorkSession, **values: Any) -> WorkSession:
    """Write ``values`` only while the session is still ACTIVE.

    The conditional UPDATE is the first write of a transition, so a concurrent
    EndSession that committed after the session was read makes it match no row.
    """
    result = db.execute(
        update(WorkSession)
        .where(WorkSession.id == session.id, WorkSession.status == SessionStatus.ACTIVE)
        .values(**values)
    )
    if result.rowcount != 1:
        raise ConflictError("SESSION_NOT_ACTIVE", "Session was closed by a concurrent request.")
    for name, value in values.items():
        set_committed_value(session, name, value)
    return session


def create_segment(
    db: Session,
    *,
    session_id: int,
    segment_type: SegmentType,
    start_time: datetime,
    project_id: int | None = None,
    break_id: int | None = None,
) -> Segment:
    segment = Segment(
        session_id=session_id,
        type=segment_type,
        project_id=project_id if segment_type == SegmentType.WORK else None,
        break_id=break_id if segment_type == SegmentType.BREAK else None,
        start_time=start_time,
        end_time=None,
        duration=0,
    )
    db.add(segment)
    db.flush()
    return segment


def find_open_segment(db: Session, *, session_id: int) -> Segment | None:
    """Return the segment to close for a session.

    Tie-break rule: among segments with no end time, the one with the latest
    start time wins, then the highest id. Under the one-open-segment invariant
    there is at most one candidate; older data may hold more.
    """
    return db.scalar(
        select(Segment)
        .where(Segment.session_id == session_id, Segment.end_time.is_(None))
        .order_by(Segment.start_time.desc(), Segment.id.desc())
        .limit(1)
    )


def close_segment(db: Session, segment: Segment, *, end_time: datetime) -> Segment:
    duration = elapsed_seconds(segment.start_time, end_time)
    result = db.execute(
        update(Segment)
        .where(Segment.id == segment.id, Segment.end_time.is_(None))
        .values(end_time=end_time, duration=duration)
    )
    if result.rowcount != 1:
        raise ConflictError("SEGMENT_ALREADY_CLOSED", "Segment was closed by a concurrent request.")
    set_committed_value(segment, "end_time", end_time)
    set_committed_value(segment, "duration", duration)
    return segment


def list_segments(db: Session, *, session_id: int) -> list[Segment]:
    return list(
        db.scalars(
            select(Segment)
            .where(Segment.session_id == session_id)
            .order_by(Segment.start_time.asc(), Segment.id.asc())
        ).all()
    )


def create_break(
    db: Session,
    *,
    user_id: int,
    session_id: int,
    break_type: BreakType,
    start_time: datetime,
) -> Break:
    break_record = Break(
        user_id=user_id,
        session_id=session_id,
        type=break_type,
        start_time=start_time,
        end_time=None,
        duration=0,
    )
    db.add(break_record)
    db.flush()
    return break_record


def find_open_break(
    db: Session,
    *,
    user_id: int,
    break_id: int | None = None,
    session_id: int | None = None,
) -> Break | None:
    stmt = select(Break).where(Break.user_id == user_id, Break.end_time.is_(None))
    if break_id is not None:
        stmt = stmt.where(Break.id == break_id)
    if session_id is not None:
        stmt = stmt.where(Break.session_id == session_id)
    return db.scalar(stmt.order_by(Break.start_time.desc(), Break.id.desc()).limit(1))


def find_open_break_segment(db: Session, *, session_id: int, break_id: int) -> Segment | None:
    return db.scalar(
        select(Segment)
        .where(
            Segment.session_id == session_id,
            Segment.break_id == break_id,
            Segment.end_time.is_(None),
        )
        .order_by(Segment.start_time.desc(), Segment.id.desc())
        .limit(1)
    )


def close_break(db: Session, break_record: Break, *, end_time: datetime) -> Break:
    duration = elapsed_seconds(break_record.start_time, end_time)
    result = db.execute(
        update(Break)
        .where(Break.id == break_record.id, Break.end_time.is_(None))
        .values(end_time=end_time, duration=duration)
    )
    if result.rowcount != 1:
        raise ConflictError("BREAK_ALREADY_CLOSED", "Break was closed by a concurrent request.")
    set_committed_value(break_record, "end_time", end_time)
    set_committed_value(break_record, "duration", duration)
    return break_record


def list_work_exceptions(
    db: Session,
    *,
    user_id: int,
    start: datetime,
    end: datetime,
) -> list[WorkException]:
    return list(
        db.scalars(
            select(WorkException)
            .where(
                WorkException.user_id == user_id,
                WorkException.exception_date >= start,
                WorkException.exception_date <= end,
            )
            .order_by(WorkException.exception_date.asc(), WorkException.id.asc())
        ).all()
    )


def list_stability_incidents(
    db: Session,
    *,
    user_id: int,
    start: datetime,
    end: datetime,
) -> list[StabilityIncident]:
    return list(
        db.scalars(
            select(StabilityIncident)
            .where(
                StabilityIncident.user_id == user_id,
                StabilityIncident.incident_date >= int(as_utc(start).timestamp()),
                StabilityIncident.incident_date <= int(as_utc(end).timestamp()),
            )
            .order_by(StabilityIncident.incident_date.asc(), StabilityIncident.id.asc())
        ).all()
    )


def list_tasks_for_user(db: Session, *, user_id: int) -> list[Task]:
    return list(
        db.scalars(
            select(Task)
            .options(selectinload(Task.completed_session))
            .where(Task.assigned_to_id == user_id)
            .order_by(Task.created_at.asc(), Task.id.asc())
        ).all()
    )


@dataclass(frozen=True, slots=True)
class SnapshotKey:
    user_id: int
    billing_cycle_start: datetime
    billing_cycle_end: datetime


def upsert_payout_snapshot(
    db: Session,
    key: SnapshotKey,
    fields: dict[str, Any],
) -> tuple[PayoutSnapshot, bool]:
    snapshot = db.scalar(
        select(PayoutSnapshot).where(
            PayoutSnapshot.user_id == key.user_id,
            PayoutSnapshot.billing_cycle_start == key.billing_cycle_start,
            PayoutSnapshot.billing_cycle_end == key.billing_cycle_end,
        )
    )
    created = snapshot is None
    if snapshot is None:
        snapshot = PayoutSnapshot(
            user_id=key.user_id,
            billing_cycle_start=key.billing_cycle_start,
            billing_cycle_end=key.billing_cycle_end,
        )
        db.add(snapshot)
    for name, value in fields.items():
        setattr(snapshot, name, value)
    db.flush()
    return snapshot, created
