"""
TeamFlow Celery Configuration
=============================
Delayed jobs (subscription reminders, task due reminders, invite expiry)
are Celery tasks sent with a countdown to the Redis broker.
"""
from celery import Celery

from core.config import settings

celery_app = Celery(
    "teamflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["services.job_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # a job is acked only once its handler returns; a dead worker's jobs are redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    broker_transport_options={"visibility_timeout": settings.JOB_VISIBILITY_TIMEOUT_SECONDS},
    result_extended=True,
    result_expires=86400,
)
