from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.clock import Clock
from app.errors import ConflictError, NotFoundError
from app.models import Break, BreakType, SegmentType, SessionStatus, WorkSession
from app.services.timeline import (
    close_break,
    close_segment,
    create_break,
    create_segment,
    find_active_session,
    find_open_break,
    find_open_break_segment,
    find_open_segment,
    transaction,
    update_active_session,
)

logger = logging.getLogger("app.breaks")


def _open_segment_lost() -> ConflictError:
    return ConflictError("SEGMENT_ALREADY_CLOSED", "Session has no open segment; it was closed by a concurrent request.")


def start_break(
    db: Session,
    *,
    user_id: int,
    session_id: int,
    break_type: BreakType,
    clock: Clock,
) -> Break:
    now = clock.now()
    with transaction(db):
        session = find_active_session(db, user_id=user_id, session_id=session_id, for_update=True)
        if session is None:
            raise NotFoundError("ACTIVE_SESSION_NOT_FOUND", "No active session found for this user.")
        if find_open_break(db, user_id=user_id, session_id=session.id) is not None:
            raise ConflictError("BREAK_ALREADY_ACTIVE", "A break is already in progress.")

        segment = find_open_segment(db, session_id=session.id)
        if segment is None:
            raise _open_segment_lost()
        # Re-asserts ACTIVE with a write before anything new is attached to the session.
        update_active_session(db, session, project_id=session.project_id)
        close_segment(db, segment, end_time=now)
        break_record = create_break(
            db,
            user_id=user_id,
            session_id=session.id,
            break_type=break_type,
            start_time=now,
        )
        create_segment(
            db,
            session_id=session.id,
            segment_type=SegmentType.BREAK,
            break_id=break_record.id,
            start_time=now,
        )

    logger.info(
        "break_started",
        extra={
            "user_id": user_id,
            "session_id": session.id,
            "break_id": break_record.id,
            "break_type": break_type.value,
        },
    )
    return break_record


def end_break(db: Session, *, user_id: int, break_id: int, clock: Clock) -> Break:
    """Close the break and its segment, then resume work on the session's current project."""
    now = clock.now()
    with transaction(db):
        break_record = find_open_break(db, user_id=user_id, break_id=break_id)
        if break_record is None:
            raise NotFoundError("BREAK_NOT_FOUND", "No open break found for this user.")

        session = db.scalar(
            select(WorkSession)
            .where(WorkSession.id == break_record.session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if session is None or session.status != SessionStatus.ACTIVE:
            raise ConflictError("SESSION_NOT_ACTIVE", "The session ended while the break was open.")

        segment = find_open_break_segment(db, session_id=session.id, break_id=break_record.id)
        if segment is None:
            segment = find_open_segment(db, session_id=session.id)
        if segment is None:
            raise _open_segment_lost()
        update_active_session(db, session, project_id=session.project_id)
        close_segment(db, segment, end_time=now)
        close_break(db, break_record, end_time=now)
        create_segment(
            db,
            session_id=session.id,
            segment_type=SegmentType.WORK,
            project_id=session.project_id,
            start_time=now,
        )

    logger.info(
        "break_ended",
        extra={
            "user_id": user_id,
            "session_id": session.id,
            "break_id": break_record.id,
            "duration": break_record.duration,
        },
    )
    return break_record
