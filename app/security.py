from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, User, UserRole
from app.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class CurrentUser:
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def actor_type(self) -> AuditActorType:
        return AuditActorType.ADMIN if self.is_admin else AuditActorType.USER


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(*, user_id: int, role: UserRole = UserRole.USER) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": str(user_id),
        "role": role.value,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60, claims


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    if payload.get("role") not in {role.value for role in UserRole}:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token role is invalid.")
    return payload


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    user = db.get(User, int(payload["sub"]))
    if user is None:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token user no longer exists.")
    if user.is_archived:
        raise ApiError(status_code=403, code="USER_ARCHIVED", message="User account is archived.")

    # The stored role wins over the token claim so demotions apply immediately.
    current = CurrentUser(id=user.id, role=user.role)
    request.state.actor = current.actor_type.value.lower()
    request.state.actor_id = str(current.id)
    return current


def require_admin(current: CurrentUser = Depends(require_user)) -> CurrentUser:
    if not current.is_admin:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return current
