# ================================================================
# services/reminder_service.py — reminder fire times + job handle links
# ================================================================
"""
Reminder orchestration for subscriptions, tasks and invites.

Every reminder kind carries its own payload model; the worker parses the
payload back through `parse_payload` and dispatches on `kind`.

Job handles are written to the store only after the scheduler accepted the
job, and always inside the caller's transaction. A crash between the two
leaks one job (it fires once, harmlessly); the reverse, a stored handle for
a job that never existed, cannot happen.
"""
import logging
from datetime import datetime, timedelta
from typing import Annotated, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter
from sqlmodel import Session, select

from models.models import OrganizationInvite, ReminderJob, ReminderKind, Subscription, Task, User
from services.job_scheduler import EMAIL_QUEUE, EXPIRING_INVITE_QUEUE, DelayedJobScheduler

logger = logging.getLogger(__name__)

SUBSCRIPTION_REMINDER_OFFSETS: Tuple[Tuple[ReminderKind, timedelta], ...] = (
    (ReminderKind.SUBSCRIPTION_3DAY, timedelta(days=3)),
    (ReminderKind.SUBSCRIPTION_1DAY, timedelta(days=1)),
)


# ============================================================
# ✅ Payloads
# ============================================================
class SubscriptionReminderPayload(BaseModel):
    kind: Literal[ReminderKind.SUBSCRIPTION_3DAY, ReminderKind.SUBSCRIPTION_1DAY]
    subscription_id: int
    email: str
    name: str
    plan: str
    end_date: datetime


class TaskDuePayload(BaseModel):
    kind: Literal[ReminderKind.TASK_DUE] = ReminderKind.TASK_DUE
    task_id: int
    due_date: datetime


class InviteExpiryPayload(BaseModel):
    kind: Literal[ReminderKind.INVITE_EXPIRY] = ReminderKind.INVITE_EXPIRY
    invite_id: int


ReminderPayload = Annotated[
    Union[SubscriptionReminderPayload, TaskDuePayload, InviteExpiryPayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(ReminderPayload)


def parse_payload(data: dict) -> Union[SubscriptionReminderPayload, TaskDuePayload, InviteExpiryPayload]:
    return _payload_adapter.validate_python(data)


# ============================================================
# ✅ Orchestrator
# ============================================================
class ReminderOrchestrator:
    def __init__(self, scheduler: DelayedJobScheduler, task_lead_minutes: int = 5):
        self.scheduler = scheduler
        self.task_lead = timedelta(minutes=task_lead_minutes)

    def _schedule_at(self, queue: str, payload: BaseModel, fire_at: datetime) -> Optional[str]:
        delay = fire_at - self.scheduler.now()
        if delay <= timedelta(0):
            return None
        return self.scheduler.schedule(queue, payload.model_dump(mode="json"), delay)

    def cancel_jobs(self, job_ids: Iterable[Optional[str]]) -> int:
        """Best-effort cancel; jobs already fired or missing are not counted."""
        cancelled = 0
        for job_id in job_ids:
            if not job_id:
                continue
            try:
                if self.scheduler.cancel(job_id):
                    cancelled += 1
            except Exception as e:
                logger.warning("⚠️ Could not cancel job %s: %s", job_id, e)
        return cancelled

    # ------------------------
    # Subscription reminders
    # ------------------------
    def schedule_subscription_reminders(
        self,
        subscription_id: int,
        end_date: datetime,
        recipient_email: str,
        recipient_name: str,
        plan: str,
    ) -> List[Tuple[ReminderKind, str]]:
        """Schedule the 3-day and 1-day reminders; instants already past are skipped."""
        scheduled: List[Tuple[ReminderKind, str]] = []
        for kind, offset in SUBSCRIPTION_REMINDER_OFFSETS:
            payload = SubscriptionReminderPayload(
                kind=kind,
                subscription_id=subscription_id,
                email=recipient_email,
                name=recipient_name,
                plan=plan,
                end_date=end_date,
            )
            job_id = self._schedule_at(EMAIL_QUEUE, payload, end_date - offset)
            if job_id is None:
                logger.info("⏭️ %s reminder for subscription %s already past, skipped", kind.value, subscription_id)
                continue
            scheduled.append((kind, job_id))
        return scheduled

    def cancel_subscription_reminders(self, existing: Iterable[ReminderJob]) -> int:
        return self.cancel_jobs(row.job_id for row in existing)

    def clear_subscription_reminders(self, session: Session, subscription_id: int) -> int:
        """Cancel every reminder of a subscription and delete the link rows. Caller commits."""
        rows = session.exec(select(ReminderJob).where(ReminderJob.subscription_id == subscription_id)).all()
        cancelled = self.cancel_subscription_reminders(rows)
        for row in rows:
            session.delete(row)
        session.flush()
        return cancelled

    def replace_subscription_reminders(
        self, session: Session, subscription: Subscription, recipient: User
    ) -> List[Tuple[ReminderKind, str]]:
        """Drop the old reminder links and schedule fresh ones against subscription.end_date."""
        self.clear_subscription_reminders(session, subscription.id)
        scheduled = self.schedule_subscription_reminders(
            subscription.id,
            subscription.end_date,
            recipient.email,
            recipient.first_name,
            subscription.plan.value,
        )
        for kind, job_id in scheduled:
            session.add(ReminderJob(subscription_id=subscription.id, kind=kind, job_id=job_id))
        session.flush()
        return scheduled

    # ------------------------
    # Task due reminders
    # ------------------------
    def schedule_task_reminder(self, task: Task) -> Optional[str]:
        if task.due_date is None or task.assigned_to_id is None:
            return None
        payload = TaskDuePayload(task_id=task.id, due_date=task.due_date)
        return self._schedule_at(EMAIL_QUEUE, payload, task.due_date - self.task_lead)

    def cancel_task_reminder(self, task: Task) -> None:
        if task.due_reminder_job_id:
            self.cancel_jobs([task.due_reminder_job_id])
            task.due_reminder_job_id = None

    def reschedule_task_reminder(self, task: Task) -> Optional[str]:
        """Cancel the pending reminder (if any) and schedule one for the current due date/assignee."""
        self.cancel_task_reminder(task)
        task.due_reminder_job_id = self.schedule_task_reminder(task)
        return task.due_reminder_job_id

    # ------------------------
    # Invite expiry
    # ------------------------
    def schedule_invite_expiry(self, invite: OrganizationInvite) -> Optional[str]:
        invite.expiry_job_id = self._schedule_at(
            EXPIRING_INVITE_QUEUE, InviteExpiryPayload(invite_id=invite.id), invite.expires_at
        )
        return invite.expiry_job_id

    def cancel_invite_expiry(self, invite: OrganizationInvite) -> None:
        if invite.expiry_job_id:
            self.cancel_jobs([invite.expiry_job_id])
            invite.expiry_job_id = None
