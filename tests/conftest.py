"""
Pytest configuration and shared fixtures
"""
import os
from datetime import datetime
from unittest.mock import Mock

import pytest

# Set test environment variables before importing
os.environ["SECRET_KEY"] = "test-secret-key-for-tests-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["LOG_LEVEL"] = "WARNING"

# Import after setting env vars
from sqlmodel import Session  # noqa: E402

from core.config import settings  # noqa: E402
from core.container import build_services  # noqa: E402
from core.database import build_engine, create_db_and_tables  # noqa: E402
from models.models import Organization, User  # noqa: E402
from services import job_tasks  # noqa: E402
from services.email_service import EmailService  # noqa: E402
from services.job_scheduler import DelayedJobScheduler  # noqa: E402
from services.stripe_gateway import StripeGateway  # noqa: E402

from factories import FakeClock, InMemoryJobQueue, checkout_event, provider_subscription  # noqa: E402


@pytest.fixture
def engine():
    """Fresh in-memory database per test"""
    test_engine = build_engine("sqlite://")
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine, expire_on_commit=False) as db_session:
        yield db_session


@pytest.fixture
def clock():
    return FakeClock(datetime.utcnow().replace(microsecond=0))


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock)


@pytest.fixture
def scheduler(queue, clock):
    return DelayedJobScheduler(queue, clock=clock)


@pytest.fixture
def gateway():
    """Mock Stripe gateway returning a live, non-trial subscription"""
    mock = Mock(spec=StripeGateway)
    mock.create_customer.return_value = "cus_123"
    mock.create_checkout_session.return_value = {"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"}
    mock.retrieve_subscription.return_value = provider_subscription()
    mock.list_subscriptions.return_value = []
    mock.default_payment_method.return_value = "pm_card"
    mock.create_subscription.return_value = {"id": "sub_restart", "status": "incomplete"}
    mock.set_cancel_at_period_end.return_value = {}
    mock.update_subscription_price.return_value = {}
    return mock


@pytest.fixture
def email():
    mock = Mock(spec=EmailService)
    mock.send_email.return_value = True
    return mock


@pytest.fixture
def services(engine, scheduler, gateway, email):
    """Service graph shared by the API, the webhook reconciler and the job task"""
    graph = build_services(settings, engine, scheduler, gateway, email)
    job_tasks.bind_services(lambda: graph)
    yield graph
    job_tasks.bind_services(None)


@pytest.fixture
def make_user(session):
    def _make(email: str = "owner@example.com", first_name: str = "Olive") -> User:
        user = User(email=email, first_name=first_name)
        session.add(user)
        session.commit()
        return user

    return _make


@pytest.fixture
def owner(make_user):
    return make_user()


@pytest.fixture
def pending_org(services, session, owner) -> Organization:
    """Organization whose BASE/MONTHLY subscription waits for checkout"""
    result = services.organizations.create_organization(session, owner, "Acme", "BASE", "MONTHLY")
    return session.get(Organization, result.subscription.organization_id)


@pytest.fixture
def active_org(services, session, pending_org) -> Organization:
    """Organization activated through the checkout webhook"""
    outcome = services.webhooks.process_event(checkout_event(pending_org.id))
    assert outcome.status == "activated"
    session.expire_all()
    return pending_org
