from __future__ import annotations

import unittest
from unittest.mock import patch

from app.clock import FixedClock, as_utc
from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import TaskStatus, UserRole
from app.services.notifications import (
    NotificationEvent,
    notify_user,
    register_notification_sink,
    reset_notification_sink,
)
from app.services.sessions import start_session
from app.services.tasks import (
    approve_task,
    assign_task,
    complete_task,
    create_task,
    list_user_tasks,
    normalize_pr_links,
    rate_task,
    update_pr_links,
)
from app.settings import Settings
from support import add_user, make_sqlite_session, utc


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[int, NotificationEvent, dict]] = []

    def __call__(self, user_id, event, payload) -> None:  # type: ignore[no-untyped-def]
        self.events.append((user_id, event, payload))


def _failing_sink(user_id, event, payload) -> None:  # type: ignore[no-untyped-def]
    raise RuntimeError("transport down")


class TaskServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_sqlite_session()
        self.admin = add_user(self.db, name="Lead", role=UserRole.ADMIN)
        self.user = add_user(self.db, name="Asha")
        self.other_user = add_user(self.db, name="Ravi")
        self.clock = FixedClock(utc(2025, 11, 20, 9, 0))
        self.sink = _RecordingSink()
        register_notification_sink(self.sink)

    def tearDown(self) -> None:
        reset_notification_sink()
        self.db.close()

    def _approved_task(self, title: str = "Fix export"):  # type: ignore[no-untyped-def]
        task = create_task(self.db, title=title, assigned_to_id=self.user.id)
        return approve_task(self.db, task_id=task.id, approver_id=self.admin.id, clock=self.clock)

    def test_create_and_approve_notify_assignee(self) -> None:
        task = self._approved_task()

        self.assertEqual(task.status, TaskStatus.APPROVED)
        self.assertEqual(task.approved_by_id, self.admin.id)
        self.assertEqual(as_utc(task.approved_date), self.clock.now())
        self.assertEqual(
            [(user_id, event) for user_id, event, _ in self.sink.events],
            [
                (self.user.id, NotificationEvent.TASK_ASSIGNED),
                (self.user.id, NotificationEvent.TASK_APPROVED),
            ],
        )

    def test_only_suggested_tasks_can_be_approved(self) -> None:
        task = self._approved_task()

        with self.assertRaises(ConflictError) as ctx:
            approve_task(self.db, task_id=task.id, approver_id=self.admin.id, clock=self.clock)

        self.assertEqual(ctx.exception.code, "TASK_NOT_PENDING_APPROVAL")

    def test_assign_rejects_archived_user(self) -> None:
        task = create_task(self.db, title="Unassigned")
        archived = add_user(self.db, name="Former", is_archived=True)

        with self.assertRaises(NotFoundError) as ctx:
            assign_task(self.db, task_id=task.id, assignee_id=archived.id)

        self.assertEqual(ctx.exception.code, "USER_NOT_FOUND")
        assigned = assign_task(self.db, task_id=task.id, assignee_id=self.other_user.id)
        self.assertEqual(assigned.assigned_to_id, self.other_user.id)

    def test_complete_links_active_session_and_notifies_approver(self) -> None:
        task = self._approved_task()
        session = start_session(self.db, user_id=self.user.id, project_id=None, clock=self.clock)
        self.clock.advance(hours=2)

        completed = complete_task(self.db, user_id=self.user.id, task_id=task.id, clock=self.clock)

        self.assertEqual(completed.status, TaskStatus.COMPLETED)
        self.assertEqual(completed.completed_session_id, session.id)
        self.assertEqual(as_utc(completed.completed_date), utc(2025, 11, 20, 11, 0))
        self.assertEqual(self.sink.events[-1][:2], (self.admin.id, NotificationEvent.TASK_COMPLETED))

    def test_partial_completion_without_session(self) -> None:
        task = self._approved_task()

        completed = complete_task(
            self.db,
            user_id=self.user.id,
            task_id=task.id,
            clock=self.clock,
            partial=True,
        )

        self.assertEqual(completed.status, TaskStatus.PARTIALLY_COMPLETED)
        self.assertIsNone(completed.completed_session_id)

    def test_complete_is_scoped_to_assignee_and_not_repeatable(self) -> None:
        task = self._approved_task()

        with self.assertRaises(NotFoundError):
            complete_task(self.db, user_id=self.other_user.id, task_id=task.id, clock=self.clock)

        complete_task(self.db, user_id=self.user.id, task_id=task.id, clock=self.clock)
        with self.assertRaises(ConflictError) as ctx:
            complete_task(self.db, user_id=self.user.id, task_id=task.id, clock=self.clock)
        self.assertEqual(ctx.exception.code, "TASK_NOT_COMPLETABLE")

    def test_rate_rejects_out_of_range_without_mutation(self) -> None:
        task = self._approved_task()
        rate_task(self.db, task_id=task.id, score=120)

        for invalid in (-1, 201):
            with self.assertRaises(ValidationError) as ctx:
                rate_task(self.db, task_id=task.id, score=invalid)
            self.assertEqual(ctx.exception.code, "INVALID_TASK_SCORE")

        self.db.refresh(task)
        self.assertEqual(task.score, 120)
        self.assertEqual(rate_task(self.db, task_id=task.id, score=0).score, 0)
        self.assertEqual(rate_task(self.db, task_id=task.id, score=200).score, 200)

    def test_rate_unknown_task_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            rate_task(self.db, task_id=404, score=50)

        self.assertEqual(ctx.exception.code, "TASK_NOT_FOUND")

    def test_pr_links_are_validated_and_deduplicated(self) -> None:
        self.assertEqual(
            normalize_pr_links(
                [
                    " https://github.com/acme/app/pull/1 ",
                    "https://github.com/acme/app/pull/1",
                    "https://github.com/acme/app/pull/2",
                ]
            ),
            ["https://github.com/acme/app/pull/1", "https://github.com/acme/app/pull/2"],
        )
        with self.assertRaises(ValidationError) as ctx:
            normalize_pr_links(["not a url"])
        self.assertEqual(ctx.exception.code, "INVALID_PR_LINK")

    def test_update_pr_links_persists_for_assignee_only(self) -> None:
        task = self._approved_task()

        updated = update_pr_links(
            self.db,
            user_id=self.user.id,
            task_id=task.id,
            pr_links=["https://github.com/acme/app/pull/7"],
        )

        self.assertEqual(updated.pr_links, ["https://github.com/acme/app/pull/7"])
        with self.assertRaises(NotFoundError):
            update_pr_links(self.db, user_id=self.other_user.id, task_id=task.id, pr_links=[])

    def test_list_user_tasks_filters_by_status(self) -> None:
        approved = self._approved_task("First")
        create_task(self.db, title="Second", assigned_to_id=self.user.id)

        self.assertEqual(len(list_user_tasks(self.db, user_id=self.user.id)), 2)
        self.assertEqual(
            [item.id for item in list_user_tasks(self.db, user_id=self.user.id, statuses=[TaskStatus.APPROVED])],
            [approved.id],
        )

    def test_failing_notification_sink_does_not_fail_completion(self) -> None:
        task = self._approved_task()
        register_notification_sink(_failing_sink)

        with self.assertLogs("app.notifications", level="ERROR") as logs:
            completed = complete_task(self.db, user_id=self.user.id, task_id=task.id, clock=self.clock)

        self.assertEqual(completed.status, TaskStatus.COMPLETED)
        self.assertTrue(any("notification_send_failed" in line for line in logs.output))


class NotificationTests(unittest.TestCase):
    def tearDown(self) -> None:
        reset_notification_sink()

    def test_notify_user_without_recipient_is_skipped(self) -> None:
        sink = _RecordingSink()
        register_notification_sink(sink)

        self.assertFalse(notify_user(None, NotificationEvent.TASK_COMPLETED))
        self.assertEqual(sink.events, [])

    def test_notify_user_respects_disabled_setting(self) -> None:
        sink = _RecordingSink()
        register_notification_sink(sink)

        with patch(
            "app.services.notifications.get_settings",
            return_value=Settings(notifications_enabled=False),
        ):
            delivered = notify_user(3, NotificationEvent.TASK_ASSIGNED, {"task_id": 1})

        self.assertFalse(delivered)
        self.assertEqual(sink.events, [])

    def test_notify_user_delivers_payload_copy(self) -> None:
        sink = _RecordingSink()
        register_notification_sink(sink)
        payload = {"task_id": 9}

        self.assertTrue(notify_user(3, NotificationEvent.TASK_ASSIGNED, payload))
        self.assertEqual(sink.events, [(3, NotificationEvent.TASK_ASSIGNED, {"task_id": 9})])
        self.assertIsNot(sink.events[0][2], payload)

    def test_failing_sink_returns_false(self) -> None:
        register_notification_sink(_failing_sink)

        with self.assertLogs("app.notifications", level="ERROR"):
            self.assertFalse(notify_user(3, NotificationEvent.TASK_APPROVED))


if __name__ == "__main__":
    unittest.main()
