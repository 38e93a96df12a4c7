"""Add payout snapshots

Revision ID: 0002_payout_snapshots
Revises: 0001_initial
Create Date: 2025-11-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_payout_snapshots"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payout_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("billing_cycle_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("billing_cycle_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("monthly_output_score", sa.Float(), nullable=False),
        sa.Column("availability_score", sa.Float(), nullable=False),
        sa.Column("stability_score", sa.Float(), nullable=False),
        sa.Column("base_compensation_inr", sa.Float(), nullable=False),
        sa.Column("expected_payout_inr", sa.Float(), nullable=False),
        sa.Column("difference_inr", sa.Float(), nullable=False),
        sa.Column("working_days_in_cycle", sa.Integer(), nullable=False),
        sa.Column("snapshot_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("synced_by_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["synced_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "billing_cycle_start",
            "billing_cycle_end",
            name="uq_payout_snapshots_user_cycle",
        ),
    )
    op.create_index(
        op.f("ix_payout_snapshots_user_id"),
        "payout_snapshots",
        ["user_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_payout_snapshots_user_id"), table_name="payout_snapshots")
    op.drop_table("payout_snapshots")
