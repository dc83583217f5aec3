"""
Tests for reminder fire times, job handle links and payload parsing
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError as PayloadError
from sqlmodel import select

from models.models import OrganizationInvite, ReminderJob, ReminderKind, SubscriptionStatus, Task
from services.job_scheduler import EMAIL_QUEUE, EXPIRING_INVITE_QUEUE
from services.reminder_service import (
    InviteExpiryPayload,
    ReminderOrchestrator,
    SubscriptionReminderPayload,
    TaskDuePayload,
    parse_payload,
)

from factories import get_subscription


@pytest.fixture
def reminders(scheduler):
    return ReminderOrchestrator(scheduler, task_lead_minutes=5)


class TestSubscriptionReminders:
    def schedule(self, reminders, end_date):
        return reminders.schedule_subscription_reminders(1, end_date, "o@example.com", "Olive", "BASE")

    def test_ten_days_out_schedules_both(self, reminders, clock, queue):
        end = clock.now + timedelta(days=10)
        scheduled = self.schedule(reminders, end)

        assert [kind for kind, _ in scheduled] == [ReminderKind.SUBSCRIPTION_3DAY, ReminderKind.SUBSCRIPTION_1DAY]
        run_at = {kind: queue.get(job_id).run_at for kind, job_id in scheduled}
        assert run_at[ReminderKind.SUBSCRIPTION_3DAY] == end - timedelta(days=3)
        assert run_at[ReminderKind.SUBSCRIPTION_1DAY] == end - timedelta(days=1)

    def test_two_days_out_only_one_day_reminder(self, reminders, clock):
        scheduled = self.schedule(reminders, clock.now + timedelta(days=2))
        assert [kind for kind, _ in scheduled] == [ReminderKind.SUBSCRIPTION_1DAY]

    def test_two_hours_out_schedules_nothing(self, reminders, clock, queue):
        assert self.schedule(reminders, clock.now + timedelta(hours=2)) == []
        assert queue.pending(EMAIL_QUEUE) == []

    def test_payload_round_trips_through_parser(self, reminders, clock, queue):
        end = clock.now + timedelta(days=10)
        _, job_id = self.schedule(reminders, end)[0]
        payload = parse_payload(queue.get(job_id).payload)
        assert isinstance(payload, SubscriptionReminderPayload)
        assert payload.end_date == end
        assert payload.email == "o@example.com"


class TestReplaceSubscriptionReminders:
    def test_replace_cancels_previous_jobs(self, services, session, active_org, owner, queue):
        subscription = get_subscription(session, active_org.id)
        old_ids = {row.job_id for row in session.exec(select(ReminderJob)).all()}
        assert len(old_ids) == 2

        subscription.end_date = subscription.end_date + timedelta(days=30)
        services.reminders.replace_subscription_reminders(session, subscription, owner)
        session.commit()

        rows = session.exec(select(ReminderJob).where(ReminderJob.subscription_id == subscription.id)).all()
        assert len(rows) == 2
        assert not old_ids & {row.job_id for row in rows}
        assert all(queue.get(job_id) is None for job_id in old_ids)
        assert len(queue.pending(EMAIL_QUEUE)) == 2

    def test_clear_removes_rows_and_jobs(self, services, session, active_org, queue):
        subscription = get_subscription(session, active_org.id)
        assert services.reminders.clear_subscription_reminders(session, subscription.id) == 2
        session.commit()
        assert session.exec(select(ReminderJob)).all() == []
        assert queue.pending(EMAIL_QUEUE) == []


class TestTaskAndInviteReminders:
    def test_task_reminder_fires_before_due(self, reminders, clock, queue):
        task = Task(id=7, title="Ship", project_id=1, organization_id=1, assigned_to_id=3,
                    due_date=clock.now + timedelta(hours=1))
        job_id = reminders.reschedule_task_reminder(task)
        assert task.due_reminder_job_id == job_id
        assert queue.get(job_id).run_at == task.due_date - timedelta(minutes=5)

    def test_unassigned_task_gets_no_reminder(self, reminders, clock):
        task = Task(id=7, title="Ship", project_id=1, organization_id=1, due_date=clock.now + timedelta(hours=1))
        assert reminders.reschedule_task_reminder(task) is None

    def test_due_inside_lead_window_gets_no_reminder(self, reminders, clock):
        task = Task(id=7, title="Ship", project_id=1, organization_id=1, assigned_to_id=3,
                    due_date=clock.now + timedelta(minutes=3))
        assert reminders.reschedule_task_reminder(task) is None

    def test_reschedule_cancels_previous(self, reminders, clock, queue):
        task = Task(id=7, title="Ship", project_id=1, organization_id=1, assigned_to_id=3,
                    due_date=clock.now + timedelta(hours=1))
        first = reminders.reschedule_task_reminder(task)
        task.due_date = clock.now + timedelta(hours=2)
        second = reminders.reschedule_task_reminder(task)
        assert first != second
        assert queue.get(first) is None
        assert len(queue.pending(EMAIL_QUEUE)) == 1

    def test_invite_expiry_job(self, reminders, clock, queue):
        invite = OrganizationInvite(id=4, organization_id=1, inviter_id=1, email="x@example.com",
                                    token="t", expires_at=clock.now + timedelta(days=7))
        job_id = reminders.schedule_invite_expiry(invite)
        assert invite.expiry_job_id == job_id
        job = queue.get(job_id)
        assert job.queue == EXPIRING_INVITE_QUEUE
        assert job.run_at == invite.expires_at

        reminders.cancel_invite_expiry(invite)
        assert invite.expiry_job_id is None
        assert queue.get(job_id) is None


class TestParsePayload:
    def test_dispatches_on_kind(self):
        assert isinstance(parse_payload({"kind": "task_due", "task_id": 1, "due_date": "2030-01-01T00:00:00"}),
                          TaskDuePayload)
        assert isinstance(parse_payload({"kind": "invite_expiry", "invite_id": 2}), InviteExpiryPayload)

    def test_unknown_kind_rejected(self):
        with pytest.raises(PayloadError):
            parse_payload({"kind": "weekly_digest"})


class TestFiringSubscriptionReminders:
    def test_three_day_reminder_mails_owner(self, services, session, active_org, owner, clock, email, queue):
        clock.advance(timedelta(days=27, hours=1))
        assert queue.run_due() == 1

        to_email, subject, _ = email.send_email.call_args.args
        assert to_email == owner.email
        assert subject == "Your BASE plan renews in 3 days"
        session.expire_all()
        kinds = [row.kind for row in session.exec(select(ReminderJob)).all()]
        assert kinds == [ReminderKind.SUBSCRIPTION_1DAY]

    def test_no_mail_once_subscription_is_cancelled(self, services, session, active_org, clock, email, queue):
        subscription = get_subscription(session, active_org.id)
        subscription.status = SubscriptionStatus.CANCELLED
        session.add(subscription)
        session.commit()

        clock.advance(timedelta(days=27, hours=1))
        queue.run_due()
        email.send_email.assert_not_called()

    def test_failed_reminder_mail_is_retried(self, services, session, active_org, clock, email, queue):
        email.send_email.reset_mock()
        email.send_email.side_effect = [ConnectionError("sendgrid down"), True]

        clock.advance(timedelta(days=27, hours=1))
        assert queue.run_due() == 1

        assert email.send_email.call_count == 2
        session.expire_all()
        kinds = [row.kind for row in session.exec(select(ReminderJob)).all()]
        assert kinds == [ReminderKind.SUBSCRIPTION_1DAY]
