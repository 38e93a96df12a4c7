from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.clock import Clock, as_utc
from app.errors import NotFoundError
from app.models import IncidentSeverity, IncidentType, StabilityIncident, Task, User
from app.services.timeline import transaction


def _ensure_task(db: Session, task_id: int | None) -> None:
    if task_id is not None and db.get(Task, task_id) is None:
        raise NotFoundError("TASK_NOT_FOUND", "Task not found.")


def create_incident(
    db: Session,
    *,
    user_id: int,
    incident_type: IncidentType,
    severity: IncidentSeverity,
    title: str,
    incident_date: datetime | int,
    description: str | None = None,
    task_id: int | None = None,
    reported_by_id: int | None = None,
) -> StabilityIncident:
    with transaction(db):
        if db.get(User, user_id) is None:
            raise NotFoundError("USER_NOT_FOUND", "User not found.")
        _ensure_task(db, task_id)
        incident = StabilityIncident(
            user_id=user_id,
            type=incident_type,
            severity=severity,
            title=title.strip(),
            description=description,
            incident_date=_to_epoch(incident_date),
            task_id=task_id,
            reported_by_id=reported_by_id,
        )
        db.add(incident)
        db.flush()
    return incident


def _to_epoch(value: datetime | int) -> int:
    if isinstance(value, datetime):
        return int(as_utc(value).timestamp())
    return int(value)


def get_incident(db: Session, incident_id: int) -> StabilityIncident:
    incident = db.get(StabilityIncident, incident_id)
    if incident is None:
        raise NotFoundError("INCIDENT_NOT_FOUND", "Stability incident not found.")
    return incident


def delete_incident(db: Session, incident_id: int) -> None:
    with transaction(db):
        db.delete(get_incident(db, incident_id))


def list_incidents(
    db: Session,
    *,
    user_id: int | None = None,
    task_id: int | None = None,
    incident_type: IncidentType | None = None,
    severity: IncidentSeverity | None = None,
    resolved: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
) -> list[StabilityIncident]:
    stmt = select(StabilityIncident)
    if user_id is not None:
        stmt = stmt.where(StabilityIncident.user_id == user_id)
    if task_id is not None:
        stmt = stmt.where(StabilityIncident.task_id == task_id)
    if incident_type is not None:
        stmt = stmt.where(StabilityIncident.type == incident_type)
    if severity is not None:
        stmt = stmt.where(StabilityIncident.severity == severity)
    if resolved is True:
        stmt = stmt.where(StabilityIncident.resolved_at.is_not(None))
    elif resolved is False:
        stmt = stmt.where(StabilityIncident.resolved_at.is_(None))
    if start is not None:
        stmt = stmt.where(StabilityIncident.incident_date >= _to_epoch(start))
    if end is not None:
        stmt = stmt.where(StabilityIncident.incident_date <= _to_epoch(end))
    needle = (search or "").strip()
    if needle:
        pattern = f"%{needle}%"
        stmt = stmt.where(
            or_(StabilityIncident.title.ilike(pattern), StabilityIncident.description.ilike(pattern))
        )
    return list(
        db.scalars(stmt.order_by(StabilityIncident.incident_date.desc(), StabilityIncident.id.desc())).all()
    )


def resolve_incident(
    db: Session,
    incident_id: int,
    *,
    resolution_notes: str,
    clock: Clock,
    resolved_at: datetime | int | None = None,
    resolution_task_id: int | None = None,
) -> StabilityIncident:
    with transaction(db):
        incident = get_incident(db, incident_id)
        _ensure_task(db, resolution_task_id)
        incident.resolved_at = _to_epoch(resolved_at if resolved_at is not None else clock.now())
        incident.resolution_notes = resolution_notes
        incident.resolution_task_id = resolution_task_id
        db.flush()
    return incident


def unresolve_incident(db: Session, incident_id: int) -> StabilityIncident:
    with transaction(db):
        incident = get_incident(db, incident_id)
        incident.resolved_at = None
        incident.resolution_notes = None
        incident.resolution_task_id = None
        db.flush()
    return incident
