"""
Payload builders and small helpers shared by the test modules
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from core.config import settings
from models.models import Membership, MembershipRole, Subscription, User
from services.job_scheduler import Job
from services.job_tasks import run_job

BASE_MONTHLY_PRICE = settings.STRIPE_PRICE_BASE_MONTHLY
PRO_YEARLY_PRICE = settings.STRIPE_PRICE_PRO_YEARLY


class FakeClock:
    """Settable clock shared by the scheduler and the tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class InMemoryJobQueue:
    """
    Stand-in for the Celery broker. Jobs wait until the test clock reaches
    their run-at, then `run_due` runs the real `run_job` task eagerly, so
    Celery's autoretry applies (retries run back to back).
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._jobs: Dict[str, Job] = {}
        self.results = {}

    def enqueue(self, queue_name: str, payload: Dict[str, Any], delay: timedelta) -> str:
        job = Job(id=uuid.uuid4().hex, queue=queue_name, payload=payload, run_at=self.clock() + delay)
        self._jobs[job.id] = job
        return job.id

    def revoke(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def pending(self, queue_name: str) -> List[Job]:
        """Jobs still waiting on a queue, soonest first."""
        return sorted((job for job in self._jobs.values() if job.queue == queue_name), key=lambda j: j.run_at)

    def run_due(self) -> int:
        due = sorted((job for job in self._jobs.values() if job.run_at <= self.clock()), key=lambda j: j.run_at)
        for job in due:
            # acked after the task returns, like task_acks_late
            self.results[job.id] = run_job.apply(kwargs={"payload": job.payload}, task_id=job.id)
            self._jobs.pop(job.id, None)
        return len(due)

    def close(self) -> None:
        pass


def epoch(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp())


def provider_subscription(
    sub_id: str = "sub_123",
    status: str = "active",
    price_id: str = BASE_MONTHLY_PRICE,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
    cancel_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """A Stripe subscription payload, reduced to the fields the code reads."""
    start = start or datetime.utcnow().replace(microsecond=0)
    end = end or start + timedelta(days=30)
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_123",
        "default_payment_method": "pm_card",
        "cancel_at_period_end": cancel_at_period_end,
        "cancel_at": epoch(cancel_at) if cancel_at else None,
        "items": {
            "data": [{
                "id": "si_1",
                "price": {"id": price_id},
                "current_period_start": epoch(start),
                "current_period_end": epoch(end),
            }]
        },
    }


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1", created: Optional[datetime] = None):
    return {
        "id": event_id,
        "type": event_type,
        "created": epoch(created or datetime.utcnow()),
        "data": {"object": obj},
    }


def checkout_event(organization_id: int, sub_id: str = "sub_123", event_id: str = "evt_checkout"):
    return make_event(
        "checkout.session.completed",
        {
            "id": "cs_1",
            "customer": "cus_123",
            "subscription": sub_id,
            "metadata": {"organizationId": str(organization_id), "userId": "1"},
        },
        event_id=event_id,
    )


def invoice_event(event_type: str, sub_id: str = "sub_123", invoice_id: str = "in_1", event_id: str = "evt_invoice"):
    return make_event(
        event_type,
        {
            "id": invoice_id,
            "object": "invoice",
            "subscription": sub_id,
            "amount_paid": 1000,
            "created": epoch(datetime.utcnow()),
            "hosted_invoice_url": "https://invoice.stripe.test/in_1",
        },
        event_id=event_id,
    )


def get_subscription(session: Session, organization_id: int) -> Subscription:
    session.expire_all()
    return session.exec(select(Subscription).where(Subscription.organization_id == organization_id)).one()


def add_member(session: Session, organization_id: int, user: User, role: MembershipRole = MembershipRole.MEMBER):
    membership = Membership(user_id=user.id, organization_id=organization_id, role=role)
    session.add(membership)
    session.commit()
    return membership
