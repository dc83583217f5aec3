# ================================================================
# services/job_scheduler.py — delayed jobs on Celery + scheduler
# ================================================================
"""
Delayed job scheduling with at-least-once delivery.

A job is a Celery task sent with a countdown: the broker never hands it
to a worker before its run-at instant, it may be delivered late, and a
job whose worker dies before acking is delivered again. Consumers must
be idempotent.

Cancellation is a Celery revoke, which is best effort; every handler
checks that its job is still linked to its entity before acting.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from celery import states

logger = logging.getLogger(__name__)

EMAIL_QUEUE = "email"
EXPIRING_INVITE_QUEUE = "expiring_invite"
QUEUES = (EMAIL_QUEUE, EXPIRING_INVITE_QUEUE)

Clock = Callable[[], datetime]


@dataclass
class Job:
    id: str
    queue: str
    payload: Dict[str, Any]
    run_at: Optional[datetime] = None
    attempts: int = 0
    state: str = states.PENDING


# ============================================================
# ✅ Celery backend
# ============================================================
class CeleryJobBackend:
    """Sends jobs through `task.apply_async` and tracks them by Celery task id."""

    def __init__(self, task, app=None):
        self.task = task
        self.app = app or task.app

    def enqueue(self, queue_name: str, payload: Dict[str, Any], delay: timedelta) -> str:
        result = self.task.apply_async(
            kwargs={"payload": payload},
            countdown=delay.total_seconds(),
            queue=queue_name,
        )
        return result.id

    def revoke(self, job_id: str) -> bool:
        if self.app.AsyncResult(job_id).state in states.READY_STATES:
            return False
        self.app.control.revoke(job_id)
        return True

    def get(self, job_id: str) -> Optional[Job]:
        result = self.app.AsyncResult(job_id)
        if result.state == states.REVOKED:
            return None
        kwargs = result.kwargs or {}
        return Job(
            id=job_id,
            queue=result.queue or "",
            payload=kwargs.get("payload", {}),
            attempts=result.retries or 0,
            state=result.state,
        )

    def close(self) -> None:
        self.app.close()


# ============================================================
# ✅ Scheduler
# ============================================================
class DelayedJobScheduler:
    """schedule / cancel / get over a job backend."""

    def __init__(self, backend, clock: Optional[Clock] = None):
        self.backend = backend
        self._clock = clock or datetime.utcnow

    def now(self) -> datetime:
        return self._clock()

    def schedule(self, queue_name: str, payload: Dict[str, Any], delay: timedelta) -> str:
        if delay <= timedelta(0):
            raise ValueError(f"delay must be positive, got {delay}")
        job_id = self.backend.enqueue(queue_name, payload, delay)
        logger.info("🕒 Scheduled job %s on '%s' for %s", job_id, queue_name, (self.now() + delay).isoformat())
        return job_id

    def cancel(self, job_id: str) -> bool:
        cancelled = self.backend.revoke(job_id)
        if cancelled:
            logger.info("🗑️ Cancelled job %s", job_id)
        return cancelled

    def get(self, job_id: str) -> Optional[Job]:
        return self.backend.get(job_id)
