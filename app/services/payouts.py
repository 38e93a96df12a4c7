from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.clock import Clock
from app.models import PayoutSnapshot, User
from app.services.billing_cycle import BillingCycle, working_days
from app.services.output_score import compute_monthly_output_score
from app.services.scoring import availability_score, round_half_up, stability_score
from app.services.timeline import (
    SnapshotKey,
    list_stability_incidents,
    list_work_exceptions,
    transaction,
    upsert_payout_snapshot,
)
from app.settings import get_settings

logger = logging.getLogger("app.payouts")


@dataclass(frozen=True, slots=True)
class UserScores:
    user_id: int
    user_name: str
    monthly_output_score: float
    availability_score: float
    stability_score: float
    working_days_in_cycle: int
    base_compensation_inr: float
    expected_payout_inr: float
    difference_inr: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def calculate_expected_payout(
    base_compensation: float,
    *,
    output_score: float,
    availability: float,
    stability: float,
) -> tuple[float, float]:
    """Return ``(expected, difference)`` where difference is expected minus base."""
    expected = base_compensation * (output_score / 100) * (availability / 100) * (stability / 100)
    return round_half_up(expected), round_half_up(expected - base_compensation)


def _base_compensation(user: User) -> float:
    if user.base_compensation_inr is not None:
        return float(user.base_compensation_inr)
    return float(get_settings().default_base_compensation_inr)


def compute_user_scores(db: Session, *, user: User, cycle: BillingCycle) -> UserScores:
    """Live scores for one user; never persists anything."""
    days = working_days(cycle.start, cycle.end)
    exceptions = list_work_exceptions(db, user_id=user.id, start=cycle.start, end=cycle.end)
    incidents = list_stability_incidents(db, user_id=user.id, start=cycle.start, end=cycle.end)

    output = compute_monthly_output_score(db, user_id=user.id, cycle=cycle)
    availability = availability_score(exceptions, days)
    stability = stability_score(incidents)
    base = _base_compensation(user)
    expected, difference = calculate_expected_payout(
        base,
        output_score=output,
        availability=availability,
        stability=stability,
    )
    return UserScores(
        user_id=user.id,
        user_name=user.name,
        monthly_output_score=output,
        availability_score=availability,
        stability_score=stability,
        working_days_in_cycle=days,
        base_compensation_inr=base,
        expected_payout_inr=expected,
        difference_inr=difference,
    )


def _active_users(db: Session) -> list[User]:
    return list(
        db.scalars(select(User).where(User.is_archived.is_(False)).order_by(User.id.asc())).all()
    )


def compute_team_scores(db: Session, *, cycle: BillingCycle) -> list[UserScores]:
    return [compute_user_scores(db, user=user, cycle=cycle) for user in _active_users(db)]


def sync_payout_snapshots(
    db: Session,
    *,
    cycle: BillingCycle,
    synced_by_id: int | None,
    clock: Clock,
) -> list[PayoutSnapshot]:
    """Persist the current scores of every active user for ``cycle``.

    Each user is upserted in its own transaction keyed by (user, cycle start, cycle end),
    so one failing user never leaves another half-written.
    """
    snapshots: list[PayoutSnapshot] = []
    created_count = 0
    for user in _active_users(db):
        scores = compute_user_scores(db, user=user, cycle=cycle)
        with transaction(db):
            snapshot, created = upsert_payout_snapshot(
                db,
                SnapshotKey(
                    user_id=user.id,
                    billing_cycle_start=cycle.start,
                    billing_cycle_end=cycle.end,
                ),
                {
                    "monthly_output_score": scores.monthly_output_score,
                    "availability_score": scores.availability_score,
                    "stability_score": scores.stability_score,
                    "base_compensation_inr": scores.base_compensation_inr,
                    "expected_payout_inr": scores.expected_payout_inr,
                    "difference_inr": scores.difference_inr,
                    "working_days_in_cycle": scores.working_days_in_cycle,
                    "snapshot_date": clock.now(),
                    "synced_by_id": synced_by_id,
                },
            )
        created_count += int(created)
        snapshots.append(snapshot)
        logger.info(
            "payout_snapshot_upserted",
            extra={
                "user_id": user.id,
                "cycle_start": cycle.start.isoformat(),
                "snapshot_created": created,
                "expected_payout_inr": scores.expected_payout_inr,
            },
        )

    logger.info(
        "payout_snapshots_synced",
        extra={
            "cycle_start": cycle.start.isoformat(),
            "cycle_end": cycle.end.isoformat(),
            "snapshot_count": len(snapshots),
            "created_count": created_count,
            "synced_by_id": synced_by_id,
        },
    )
    return snapshots


def list_payout_snapshots(db: Session, *, cycle: BillingCycle) -> list[PayoutSnapshot]:
    return list(
        db.scalars(
            select(PayoutSnapshot)
            .options(selectinload(PayoutSnapshot.user))
            .where(
                PayoutSnapshot.billing_cycle_start == cycle.start,
                PayoutSnapshot.billing_cycle_end == cycle.end,
            )
            .order_by(PayoutSnapshot.user_id.asc())
        ).all()
    )
