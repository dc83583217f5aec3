# core/container.py
"""
Process-wide service graph. Entry points (main.py lifespan, the Celery
worker) build it once from opened handles and close it at shutdown.
"""
import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine

from core.config import Settings
from core.database import SessionFactory, build_engine, create_db_and_tables, session_factory
from services.email_service import EmailService
from services.job_runner import JobRunner
from services.job_scheduler import CeleryJobBackend, DelayedJobScheduler
from services.job_tasks import run_job
from services.organization_service import OrganizationService
from services.plan_service import PriceCatalog
from services.project_service import ProjectService
from services.reminder_service import ReminderOrchestrator
from services.stripe_gateway import StripeGateway
from services.subscription_service import SubscriptionService
from services.task_service import TaskService
from services.usage_service import UsageTracker
from services.webhook_service import WebhookReconciler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    engine: Engine
    sessions: SessionFactory
    scheduler: DelayedJobScheduler
    gateway: StripeGateway
    email: EmailService
    catalog: PriceCatalog
    usage: UsageTracker
    reminders: ReminderOrchestrator
    subscriptions: SubscriptionService
    organizations: OrganizationService
    projects: ProjectService
    tasks: TaskService
    webhooks: WebhookReconciler
    jobs: JobRunner

    def close(self) -> None:
        self.scheduler.backend.close()
        self.engine.dispose()
        logger.info("✅ Service handles closed")


def build_services(
    config: Settings,
    engine: Engine,
    scheduler: DelayedJobScheduler,
    gateway: StripeGateway,
    email: EmailService,
) -> Services:
    sessions = session_factory(engine)
    catalog = PriceCatalog(config.STRIPE_PRICE_IDS)
    usage = UsageTracker()
    reminders = ReminderOrchestrator(scheduler, task_lead_minutes=config.TASK_REMINDER_LEAD_MINUTES)
    subscriptions = SubscriptionService(gateway, catalog, usage)
    organizations = OrganizationService(
        subscriptions, reminders, email, invite_valid_days=config.INVITATION_VALID_DAYS
    )
    projects = ProjectService(subscriptions)
    tasks = TaskService(subscriptions, projects, reminders, email)
    webhooks = WebhookReconciler(
        sessions,
        gateway,
        catalog,
        reminders,
        email,
        usage=usage,
        dunning_max_attempts=config.DUNNING_MAX_ATTEMPTS,
    )
    jobs = JobRunner(sessions, email, organizations, tasks)
    return Services(
        engine=engine,
        sessions=sessions,
        scheduler=scheduler,
        gateway=gateway,
        email=email,
        catalog=catalog,
        usage=usage,
        reminders=reminders,
        subscriptions=subscriptions,
        organizations=organizations,
        projects=projects,
        tasks=tasks,
        webhooks=webhooks,
        jobs=jobs,
    )


def open_services(config: Settings) -> Services:
    """Production graph: database, Celery-backed scheduler, live Stripe and SendGrid clients."""
    engine = build_engine(config.DATABASE_URL)
    create_db_and_tables(engine)
    return build_services(
        config,
        engine,
        DelayedJobScheduler(CeleryJobBackend(run_job)),
        StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET),
        EmailService(config.SENDGRID_API_KEY, config.MAIL_FROM),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the graph built by the lifespan."""
    return request.app.state.services
