# ================================================================
# services/job_runner.py — dispatches fired delayed jobs
# ================================================================
"""
Routes a fired job to its handler on the payload's reminder kind. Called
by the `run_job` Celery task; retries and acknowledgement belong to
Celery, so any handler error propagates from here.

Handlers check that the job is still the one linked to its entity before
acting, so a job that was replaced or cancelled after being sent (revoke
is best effort) does nothing.
"""
import logging
from typing import Any, Dict

from pydantic import ValidationError as PayloadError
from sqlmodel import select

from core.database import SessionFactory
from models.models import ReminderJob, Subscription, SubscriptionStatus
from services import email_templates
from services.email_service import EmailService
from services.organization_service import OrganizationService
from services.reminder_service import (
    InviteExpiryPayload,
    SubscriptionReminderPayload,
    TaskDuePayload,
    parse_payload,
)
from services.task_service import TaskService

logger = logging.getLogger(__name__)

REMINDER_DAYS = {"3days_email": 3, "1day_email": 1}


class JobRunner:
    def __init__(
        self,
        session_factory: SessionFactory,
        email: EmailService,
        organizations: OrganizationService,
        tasks: TaskService,
    ):
        self.session_factory = session_factory
        self.email = email
        self.organizations = organizations
        self.tasks = tasks

    def run(self, job_id: str, payload: Dict[str, Any]) -> bool:
        """Fire one job. An unreadable payload is logged and dropped."""
        try:
            return self.dispatch(job_id, payload)
        except PayloadError as e:
            logger.error("❌ Job %s has an unreadable payload, dropping: %s", job_id, e)
            return False

    # ------------------------
    # Dispatch
    # ------------------------
    def dispatch(self, job_id: str, raw: Dict[str, Any]) -> bool:
        payload = parse_payload(raw)
        logger.info("🔔 Firing %s job %s", payload.kind.value, job_id)
        if isinstance(payload, SubscriptionReminderPayload):
            return self.fire_subscription_reminder(job_id, payload)
        if isinstance(payload, TaskDuePayload):
            with self.session_factory() as session:
                return bool(self.tasks.send_due_reminder(session, payload.task_id, job_id))
        if isinstance(payload, InviteExpiryPayload):
            with self.session_factory() as session:
                return self.organizations.expire_invite(session, payload.invite_id, job_id)
        return False

    def fire_subscription_reminder(self, job_id: str, payload: SubscriptionReminderPayload) -> bool:
        # the link is removed only after the mail went out, so a failed send is retried
        with self.session_factory() as session:
            link = session.exec(select(ReminderJob).where(ReminderJob.job_id == job_id)).first()
            if link is None:
                logger.info("⏭️ Reminder %s no longer linked to subscription %s", job_id, payload.subscription_id)
                return False
            subscription = session.get(Subscription, link.subscription_id)

            sent = False
            if subscription is not None and subscription.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
                days = REMINDER_DAYS[payload.kind.value]
                sent = self.email.send_email(
                    payload.email,
                    f"Your {payload.plan} plan renews in {days} day{'s' if days > 1 else ''}",
                    email_templates.subscription_reminder(payload.name, payload.plan, payload.end_date, days),
                )

            session.delete(link)
            session.commit()
        return sent
