from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.clock import Clock, as_utc
from app.errors import ConflictError, NotFoundError
from app.models import Segment, SegmentType, SessionStatus, WorkSession
from app.services.timeline import (
    close_break,
    close_segment,
    close_session,
    create_segment,
    create_session,
    find_active_session,
    find_open_break,
    find_open_segment,
    list_segments,
    transaction,
    update_active_session,
)

logger = logging.getLogger("app.sessions")


def _active_session_not_found() -> NotFoundError:
    return NotFoundError("ACTIVE_SESSION_NOT_FOUND", "No active session found for this user.")


def _open_segment_lost() -> ConflictError:
    return ConflictError("SEGMENT_ALREADY_CLOSED", "Session has no open segment; it was closed by a concurrent request.")


def start_session(
    db: Session,
    *,
    user_id: int,
    project_id: int | None,
    clock: Clock,
) -> WorkSession:
    now = clock.now()
    with transaction(db):
        if find_active_session(db, user_id=user_id) is not None:
            raise ConflictError("SESSION_ALREADY_ACTIVE", "User already has an active session.")
        session = create_session(db, user_id=user_id, project_id=project_id, start_time=now)
        create_segment(
            db,
            session_id=session.id,
            segment_type=SegmentType.WORK,
            project_id=project_id,
            start_time=now,
        )

    logger.info(
        "session_started",
        extra={"user_id": user_id, "session_id": session.id, "project_id": project_id},
    )
    return session


def end_session(db: Session, *, user_id: int, session_id: int, clock: Clock) -> WorkSession:
    """Close the open segment (and any open break) and finalize session totals atomically."""
    now = clock.now()
    with transaction(db):
        session = find_active_session(db, user_id=user_id, session_id=session_id, for_update=True)
        if session is None:
            raise _active_session_not_found()

        open_break = find_open_break(db, user_id=user_id, session_id=session.id)
        if open_break is not None:
            close_break(db, open_break, end_time=now)

        segment = find_open_segment(db, session_id=session.id)
        if segment is not None:
            close_segment(db, segment, end_time=now)

        segments = list_segments(db, session_id=session.id)
        total_duration = sum(item.duration for item in segments)
        total_break_time = sum(item.duration for item in segments if item.type == SegmentType.BREAK)
        close_session(
            db,
            session,
            end_time=now,
            total_duration=total_duration,
            total_break_time=total_break_time,
        )

    logger.info(
        "session_ended",
        extra={
            "user_id": user_id,
            "session_id": session.id,
            "total_duration": total_duration,
            "total_break_time": total_break_time,
            "closed_open_break": open_break is not None,
        },
    )
    return session


def switch_project(
    db: Session,
    *,
    user_id: int,
    session_id: int,
    project_id: int | None,
    clock: Clock,
) -> WorkSession:
    now = clock.now()
    with transaction(db):
        session = find_active_session(db, user_id=user_id, session_id=session_id, for_update=True)
        if session is None:
            raise _active_session_not_found()
        if find_open_break(db, user_id=user_id, session_id=session.id) is not None:
            raise ConflictError("BREAK_ALREADY_ACTIVE", "End the current break before switching projects.")

        previous_project_id = session.project_id
        segment = find_open_segment(db, session_id=session.id)
        if segment is None:
            raise _open_segment_lost()
        update_active_session(db, session, project_id=project_id)
        close_segment(db, segment, end_time=now)
        create_segment(
            db,
            session_id=session.id,
            segment_type=SegmentType.WORK,
            project_id=project_id,
            start_time=now,
        )

    logger.info(
        "session_project_switched",
        extra={
            "user_id": user_id,
            "session_id": session.id,
            "from_project_id": previous_project_id,
            "to_project_id": project_id,
        },
    )
    return session


def get_active_session(db: Session, *, user_id: int) -> WorkSession | None:
    return find_active_session(db, user_id=user_id)


def get_session_detail(db: Session, *, user_id: int, session_id: int) -> WorkSession:
    session = db.scalar(
        select(WorkSession)
        .options(selectinload(WorkSession.segments), selectinload(WorkSession.breaks))
        .where(WorkSession.id == session_id, WorkSession.user_id == user_id)
    )
    if session is None:
        raise NotFoundError("SESSION_NOT_FOUND", "Session not found.")
    return session


def list_user_sessions(
    db: Session,
    *,
    user_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    project_ids: Iterable[int] | None = None,
    statuses: Iterable[SessionStatus] | None = None,
    sort_descending: bool = True,
) -> list[WorkSession]:
    stmt = select(WorkSession).where(WorkSession.user_id == user_id)
    if start is not None:
        stmt = stmt.where(WorkSession.start_time >= start)
    if end is not None:
        stmt = stmt.where(WorkSession.start_time <= end)
    project_id_list = list(project_ids or [])
    if project_id_list:
        stmt = stmt.where(WorkSession.project_id.in_(project_id_list))
    status_list = list(statuses or [])
    if status_list:
        stmt = stmt.where(WorkSession.status.in_(status_list))

    if sort_descending:
        stmt = stmt.order_by(WorkSession.start_time.desc(), WorkSession.id.desc())
    else:
        stmt = stmt.order_by(WorkSession.start_time.asc(), WorkSession.id.asc())
    return list(db.scalars(stmt).all())


def list_session_dates(
    db: Session,
    *,
    user_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[date]:
    """Distinct UTC calendar days on which the user started a session, oldest first."""
    sessions = list_user_sessions(db, user_id=user_id, start=start, end=end, sort_descending=False)
    days: list[date] = []
    seen: set[date] = set()
    for session in sessions:
        day = as_utc(session.start_time).date()
        if day in seen:
            continue
        seen.add(day)
        days.append(day)
    return days


def count_open_segments(db: Session, *, session_id: int) -> int:
    return len(
        db.scalars(
            select(Segment.id).where(Segment.session_id == session_id, Segment.end_time.is_(None))
        ).all()
    )

