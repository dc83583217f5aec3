# ================================================================
# services/job_tasks.py — Celery task that fires delayed jobs
# ================================================================
"""
`run_job` is the one task every delayed job is sent as. In the worker it
hands the payload to the JobRunner of a service graph built lazily, once
per worker process, from the factory worker.py binds. Building after the
prefork pool has forked keeps database connections out of the parent.

Failures are retried by Celery with exponential backoff up to
JOB_MAX_RETRIES; unreadable payloads are dropped without a retry.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional

from celery.signals import worker_process_shutdown

from core.celery_app import celery_app
from core.config import settings

logger = logging.getLogger(__name__)

RUN_JOB_TASK = "teamflow.jobs.run"

_factory: Optional[Callable[[], Any]] = None
_services = None
_lock = threading.Lock()


def bind_services(factory: Optional[Callable[[], Any]]) -> None:
    """Set the service graph factory; a graph built from the previous one is forgotten."""
    global _factory, _services
    with _lock:
        _factory = factory
        _services = None


def worker_services():
    global _services
    with _lock:
        if _services is None:
            if _factory is None:
                raise RuntimeError("No service graph bound for job tasks, start the worker through worker.py")
            _services = _factory()
            logger.info("✅ Worker service graph ready")
        return _services


@worker_process_shutdown.connect
def close_worker_services(**kwargs) -> None:
    global _services
    with _lock:
        if _services is not None:
            _services.close()
            _services = None


@celery_app.task(
    bind=True,
    name=RUN_JOB_TASK,
    autoretry_for=(Exception,),
    retry_backoff=settings.JOB_BACKOFF_SECONDS,
    retry_backoff_max=settings.JOB_BACKOFF_MAX_SECONDS,
    retry_jitter=False,
    max_retries=settings.JOB_MAX_RETRIES,
)
def run_job(self, payload: Dict[str, Any]) -> bool:
    if self.request.retries:
        logger.warning("🔁 Job %s retry %s of %s", self.request.id, self.request.retries, self.max_retries)
    return worker_services().jobs.run(self.request.id, payload)
