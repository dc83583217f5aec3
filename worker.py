"""
Celery worker for delayed jobs: subscription reminders, task due reminders
and invite expiries. Run next to the API process:

    python worker.py
or
    celery -A worker worker --queues email,expiring_invite
"""
import logging
from functools import partial

from core.celery_app import celery_app
from core.config import settings
from core.container import open_services
from services import job_tasks
from services.job_scheduler import QUEUES

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("worker")

# each worker process opens its own graph on its first job
job_tasks.bind_services(partial(open_services, settings))


def main() -> None:
    logger.info("🚀 Starting job worker on queues: %s", ", ".join(QUEUES))
    celery_app.worker_main(["worker", "--queues", ",".join(QUEUES), "--loglevel", settings.LOG_LEVEL])


if __name__ == "__main__":
    main()
