from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.db import Base
from app.models import Project, User, UserRole


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_sqlite_session() -> Session:
    """Fresh in-memory database shared across threads, so TestClient workers see the same rows."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory()


def override_get_db(db: Session):
    def _override() -> Generator[Session, None, None]:
        yield db

    return _override


def add_user(
    db: Session,
    *,
    name: str = "Asha",
    role: UserRole = UserRole.USER,
    base_compensation_inr: float | None = None,
    is_archived: bool = False,
) -> User:
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        base_compensation_inr=base_compensation_inr,
        is_archived=is_archived,
    )
    db.add(user)
    db.commit()
    return user


def add_project(db: Session, *, user: User, name: str = "Core") -> Project:
    project = Project(user_id=user.id, name=name)
    db.add(project)
    db.commit()
    return project


def make_file_sqlite_sessions(path: str, count: int = 2) -> list[Session]:
    """Independent sessions over one on-disk database, each on its own connection."""
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return [factory() for _ in range(count)]
