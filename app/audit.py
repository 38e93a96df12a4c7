from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from app.errors import get_request_id
from app.models import AuditLog
from app.security import CurrentUser

logger = logging.getLogger("app.audit")


def _entry_details(request: Request, details: dict[str, Any] | None) -> dict[str, Any]:
    merged = dict(details or {})
    session_id = getattr(request.state, "session_id", None)
    if session_id is not None:
        merged.setdefault("session_id", session_id)
    return merged


def audit_request(
    db: Session,
    request: Request,
    current: CurrentUser,
    *,
    action: str,
    entity_type: str | None = None,
    entity_id: int | str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Record a successful state change made by ``current``.

    The row is committed on its own after the service transaction has already
    committed, so a failed write is logged and the request still succeeds.
    """
    request_id = get_request_id(request)
    entity_key = str(entity_id) if entity_id is not None else None
    entry_details = _entry_details(request, details)
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=current.actor_type,
        actor_id=str(current.id),
        action=action,
        entity_type=entity_type,
        entity_id=entity_key,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        success=True,
        details=entry_details,
    )
    log_extra = {
        "request_id": request_id,
        "action": action,
        "actor_type": current.actor_type.value,
        "actor_id": str(current.id),
    }
    db.add(entry)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=log_extra)
        return

    logger.info(
        "audit_event",
        extra={**log_extra, "entity_type": entity_type, "entity_id": entity_key, "details": entry_details},
    )
