from __future__ import annotations

import unittest
from datetime import datetime, timezone

from app.models import Task, TaskStatus, WorkSession
from app.services.billing_cycle import billing_cycle_for
from app.services.output_score import effective_completion_date, monthly_output_score

CYCLE = billing_cycle_for(2025, 11)
IN_CYCLE = datetime(2025, 12, 1, 10, 0, tzinfo=timezone.utc)
AFTER_CYCLE = datetime(2025, 12, 19, 0, 10, tzinfo=timezone.utc)


def _task(
    status: TaskStatus,
    *,
    score: int | None = None,
    completed_date: datetime | None = IN_CYCLE,
    created_at: datetime = IN_CYCLE,
    session_start: datetime | None = None,
) -> Task:
    task = Task(
        title="task",
        status=status,
        score=score,
        completed_date=completed_date,
        created_at=created_at,
        pr_links=[],
    )
    if session_start is not None:
        task.completed_session = WorkSession(user_id=1, start_time=session_start)
    return task


class EffectiveCompletionDateTests(unittest.TestCase):
    def test_linked_session_start_wins(self) -> None:
        session_start = datetime(2025, 12, 18, 22, 0, tzinfo=timezone.utc)
        task = _task(TaskStatus.COMPLETED, completed_date=AFTER_CYCLE, session_start=session_start)

        self.assertEqual(effective_completion_date(task), session_start)

    def test_completion_timestamp_without_session(self) -> None:
        task = _task(TaskStatus.PARTIALLY_COMPLETED, completed_date=AFTER_CYCLE)

        self.assertEqual(effective_completion_date(task), AFTER_CYCLE)

    def test_unfinished_task_uses_creation_time(self) -> None:
        created = datetime(2025, 11, 25, tzinfo=timezone.utc)
        task = _task(TaskStatus.IN_PROGRESS, completed_date=None, created_at=created)

        self.assertEqual(effective_completion_date(task), created)


class MonthlyOutputScoreTests(unittest.TestCase):
    def test_task_finished_after_midnight_counts_in_session_cycle(self) -> None:
        task = _task(
            TaskStatus.COMPLETED,
            score=80,
            completed_date=AFTER_CYCLE,
            session_start=datetime(2025, 12, 18, 22, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(monthly_output_score([task], CYCLE), 80)
        self.assertEqual(monthly_output_score([task], billing_cycle_for(2025, 12)), 100.0)

    def test_no_tasks_in_cycle_gets_benefit_of_doubt(self) -> None:
        self.assertEqual(monthly_output_score([], CYCLE), 100.0)
        outside = _task(TaskStatus.COMPLETED, score=10, completed_date=AFTER_CYCLE)
        self.assertEqual(monthly_output_score([outside], CYCLE), 100.0)

    def test_tasks_but_nothing_completed_scores_zero(self) -> None:
        tasks = [
            _task(TaskStatus.IN_PROGRESS, completed_date=None),
            _task(TaskStatus.APPROVED, completed_date=None),
        ]

        self.assertEqual(monthly_output_score(tasks, CYCLE), 0.0)

    def test_completed_but_unrated_scores_full(self) -> None:
        tasks = [_task(TaskStatus.COMPLETED), _task(TaskStatus.PARTIALLY_COMPLETED)]

        self.assertEqual(monthly_output_score(tasks, CYCLE), 100.0)

    def test_mean_of_ratings_ignores_unrated_tasks(self) -> None:
        tasks = [
            _task(TaskStatus.COMPLETED, score=80),
            _task(TaskStatus.COMPLETED, score=None),
            _task(TaskStatus.PARTIALLY_COMPLETED, score=60),
            _task(TaskStatus.IN_PROGRESS, score=10, completed_date=None),
        ]

        self.assertEqual(monthly_output_score(tasks, CYCLE), 70.0)

    def test_mean_is_not_clamped(self) -> None:
        tasks = [_task(TaskStatus.COMPLETED, score=150), _task(TaskStatus.COMPLETED, score=170)]

        self.assertEqual(monthly_output_score(tasks, CYCLE), 160.0)

    def test_strict_variant_counts_only_completed(self) -> None:
        tasks = [
            _task(TaskStatus.COMPLETED, score=90),
            _task(TaskStatus.PARTIALLY_COMPLETED, score=50),
        ]

        self.assertEqual(monthly_output_score(tasks, CYCLE), 70.0)
        self.assertEqual(
            monthly_output_score(tasks, CYCLE, counted_statuses={TaskStatus.COMPLETED}),
            90.0,
        )
        self.assertEqual(
            monthly_output_score(tasks[1:], CYCLE, counted_statuses={TaskStatus.COMPLETED}),
            0.0,
        )


if __name__ == "__main__":
    unittest.main()
