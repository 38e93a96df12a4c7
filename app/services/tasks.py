from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.clock import Clock
from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import Task, TaskStatus, User
from app.services.notifications import NotificationEvent, notify_user
from app.services.timeline import find_active_session, transaction

logger = logging.getLogger("app.tasks")

MIN_TASK_SCORE = 0
MAX_TASK_SCORE = 200

_HTTP_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


def _get_task(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("TASK_NOT_FOUND", "Task not found.")
    return task


def _get_active_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or user.is_archived:
        raise NotFoundError("USER_NOT_FOUND", "User not found.")
    return user


def _task_payload(task: Task) -> dict[str, object]:
    return {"task_id": task.id, "title": task.title, "status": task.status.value}


def create_task(
    db: Session,
    *,
    title: str,
    description: str | None = None,
    project_id: int | None = None,
    assigned_to_id: int | None = None,
) -> Task:
    with transaction(db):
        if assigned_to_id is not None:
            _get_active_user(db, assigned_to_id)
        task = Task(
            title=title.strip(),
            description=description,
            project_id=project_id,
            assigned_to_id=assigned_to_id,
            status=TaskStatus.SUGGESTED,
            pr_links=[],
        )
        db.add(task)
        db.flush()

    if assigned_to_id is not None:
        notify_user(assigned_to_id, NotificationEvent.TASK_ASSIGNED, _task_payload(task))
    return task


def assign_task(db: Session, *, task_id: int, assignee_id: int) -> Task:
    with transaction(db):
        task = _get_task(db, task_id)
        _get_active_user(db, assignee_id)
        task.assigned_to_id = assignee_id
        db.flush()

    logger.info("task_assigned", extra={"task_id": task.id, "assignee_id": assignee_id})
    notify_user(assignee_id, NotificationEvent.TASK_ASSIGNED, _task_payload(task))
    return task


def approve_task(db: Session, *, task_id: int, approver_id: int, clock: Clock) -> Task:
    with transaction(db):
        task = _get_task(db, task_id)
        if task.status != TaskStatus.SUGGESTED:
            raise ConflictError("TASK_NOT_PENDING_APPROVAL", "Only suggested tasks can be approved.")
        task.status = TaskStatus.APPROVED
        task.approved_by_id = approver_id
        task.approved_date = clock.now()
        db.flush()

    logger.info("task_approved", extra={"task_id": task.id, "approver_id": approver_id})
    notify_user(task.assigned_to_id, NotificationEvent.TASK_APPROVED, _task_payload(task))
    return task


def complete_task(
    db: Session,
    *,
    user_id: int,
    task_id: int,
    clock: Clock,
    partial: bool = False,
) -> Task:
    """Mark a task finished and link it to the caller's running session, if any.

    The linked session's start time later decides which billing cycle the task counts in.
    """
    now = clock.now()
    with transaction(db):
        task = _get_task(db, task_id)
        if task.assigned_to_id != user_id:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found.")
        if task.status in {TaskStatus.COMPLETED, TaskStatus.REJECTED}:
            raise ConflictError("TASK_NOT_COMPLETABLE", f"Task is already {task.status.value}.")

        session = find_active_session(db, user_id=user_id)
        task.status = TaskStatus.PARTIALLY_COMPLETED if partial else TaskStatus.COMPLETED
        task.completed_date = now
        task.completed_session_id = session.id if session is not None else None
        db.flush()

    logger.info(
        "task_completed",
        extra={
            "task_id": task.id,
            "user_id": user_id,
            "status": task.status.value,
            "completed_session_id": task.completed_session_id,
        },
    )
    notify_user(task.approved_by_id, NotificationEvent.TASK_COMPLETED, _task_payload(task))
    return task


def rate_task(db: Session, *, task_id: int, score: int) -> Task:
    if not MIN_TASK_SCORE <= score <= MAX_TASK_SCORE:
        raise ValidationError(
            "INVALID_TASK_SCORE",
            f"Score must be between {MIN_TASK_SCORE} and {MAX_TASK_SCORE}.",
        )

    with transaction(db):
        task = _get_task(db, task_id)
        task.score = score
        db.flush()

    logger.info("task_rated", extra={"task_id": task.id, "score": score})
    return task


def normalize_pr_links(pr_links: Iterable[str]) -> list[str]:
    normalized: list[str] = []
    for raw in pr_links:
        value = (raw or "").strip()
        try:
            _HTTP_URL_ADAPTER.validate_python(value)
        except PydanticValidationError as exc:
            raise ValidationError("INVALID_PR_LINK", f"Each PR link must be a valid URL: {value!r}") from exc
        if value not in normalized:
            normalized.append(value)
    return normalized


def update_pr_links(db: Session, *, user_id: int, task_id: int, pr_links: Iterable[str]) -> Task:
    links = normalize_pr_links(pr_links)
    with transaction(db):
        task = _get_task(db, task_id)
        if task.assigned_to_id != user_id:
            raise NotFoundError("TASK_NOT_FOUND", "Task not found.")
        task.pr_links = links
        db.flush()
    return task


def list_user_tasks(db: Session, *, user_id: int, statuses: Iterable[TaskStatus] | None = None) -> list[Task]:
    stmt = select(Task).where(Task.assigned_to_id == user_id)
    status_list = list(statuses or [])
    if status_list:
        stmt = stmt.where(Task.status.in_(status_list))
    return list(db.scalars(stmt.order_by(Task.created_at.desc(), Task.id.desc())).all())
