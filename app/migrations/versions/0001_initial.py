"""Initial time-clock schema

Revision ID: 0001_initial
Revises:
Create Date: 2025-11-10 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM("USER", "ADMIN", name="user_role", create_type=False)
session_status = postgresql.ENUM("ACTIVE", "COMPLETED", "TERMINATED", name="session_status", create_type=False)
segment_type = postgresql.ENUM("WORK", "BREAK", name="segment_type", create_type=False)
break_type = postgresql.ENUM("SHORT", "LUNCH", "OTHER", "PRAYER", name="break_type", create_type=False)
task_status = postgresql.ENUM(
    "SUGGESTED",
    "APPROVED",
    "IN_PROGRESS",
    "BLOCKED",
    "COMPLETED",
    "PARTIALLY_COMPLETED",
    "REJECTED",
    name="task_status",
    create_type=False,
)
exception_type = postgresql.ENUM(
    "FULL_DAY_LEAVE",
    "HALF_DAY_LEAVE",
    "LATE_ARRIVAL",
    "EARLY_EXIT",
    "WORK_FROM_HOME",
    "SICK_LEAVE",
    "EMERGENCY_LEAVE",
    "UNAUTHORIZED_ABSENCE",
    name="exception_type",
    create_type=False,
)
incident_type = postgresql.ENUM(
    "PRODUCTION_BUG",
    "SECURITY_VULNERABILITY",
    "DATA_CORRUPTION",
    "DEPLOYMENT_FAILURE",
    "BREAKING_CHANGE",
    "HOTFIX_REQUIRED",
    "REGRESSION",
    "PERFORMANCE_ISSUE",
    "TEST_FAILURE",
    "CODE_QUALITY_ISSUE",
    name="incident_type",
    create_type=False,
)
incident_severity = postgresql.ENUM(
    "CRITICAL",
    "HIGH",
    "MEDIUM",
    "LOW",
    "NEGLIGIBLE",
    name="incident_severity",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("USER", "ADMIN", "SYSTEM", name="audit_actor_type", create_type=False)

ALL_ENUMS = (
    user_role,
    session_status,
    segment_type,
    break_type,
    task_status,
    exception_type,
    incident_type,
    incident_severity,
    audit_actor_type,
)


def _timestamps() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("base_compensation_inr", sa.Float(), nullable=True),
        _timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_projects_user_id", "projects", ["user_id"], unique=False)

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_duration", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_break_time", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", session_status, nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_sessions_user_start_time", "sessions", ["user_id", "start_time"], unique=False)
    op.create_index(
        "uq_sessions_user_active",
        "sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "breaks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("type", break_type, nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_breaks_user_id", "breaks", ["user_id"], unique=False)
    op.create_index("ix_breaks_session_id", "breaks", ["session_id"], unique=False)

    op.create_table(
        "segments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("type", segment_type, nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("break_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["break_id"], ["breaks.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_segments_session_end_time", "segments", ["session_id", "end_time"], unique=False)
    op.create_index("ix_segments_type_start_time", "segments", ["type", "start_time"], unique=False)
    op.create_index("ix_segments_break_id", "segments", ["break_id"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", task_status, nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("assigned_to_id", sa.Integer(), nullable=True),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("approved_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_session_id", sa.Integer(), nullable=True),
        sa.Column("pr_links", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        _timestamps(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["completed_session_id"], ["sessions.id"], ondelete="SET NULL"),
        sa.CheckConstraint("score IS NULL OR (score >= 0 AND score <= 200)", name="ck_tasks_score_range"),
    )
    op.create_index("ix_tasks_assigned_to_id", "tasks", ["assigned_to_id"], unique=False)

    op.create_table(
        "work_exceptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", exception_type, nullable=False),
        sa.Column("exception_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_time_epoch", sa.Integer(), nullable=True),
        sa.Column("actual_time_epoch", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("compensation_date", sa.DateTime(timezone=True), nullable=True),
        _timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_work_exceptions_user_date", "work_exceptions", ["user_id", "exception_date"], unique=False)

    op.create_table(
        "stability_incidents",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", incident_type, nullable=False),
        sa.Column("severity", incident_severity, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("incident_date", sa.Integer(), nullable=False),
        sa.Column("resolved_at", sa.Integer(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("task_id", sa.Integer(), nullable=True),
        sa.Column("resolution_task_id", sa.Integer(), nullable=True),
        sa.Column("reported_by_id", sa.Integer(), nullable=True),
        _timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["resolution_task_id"], ["tasks.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reported_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_stability_incidents_user_date",
        "stability_incidents",
        ["user_id", "incident_date"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_stability_incidents_user_date", table_name="stability_incidents")
    op.drop_table("stability_incidents")
    op.drop_index("ix_work_exceptions_user_date", table_name="work_exceptions")
    op.drop_table("work_exceptions")
    op.drop_index("ix_tasks_assigned_to_id", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_segments_break_id", table_name="segments")
    op.drop_index("ix_segments_type_start_time", table_name="segments")
    op.drop_index("ix_segments_session_end_time", table_name="segments")
    op.drop_table("segments")
    op.drop_index("ix_breaks_session_id", table_name="breaks")
    op.drop_index("ix_breaks_user_id", table_name="breaks")
    op.drop_table("breaks")
    op.drop_index("uq_sessions_user_active", table_name="sessions")
    op.drop_index("ix_sessions_user_start_time", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("ix_projects_user_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
