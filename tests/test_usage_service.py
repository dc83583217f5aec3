"""
Tests for usage records and the atomic reservation against plan ceilings
"""
import threading
from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from core.database import build_engine, create_db_and_tables
from core.errors import ConflictError, UsageLimitExceeded
from models.models import (
    Organization,
    PackageRecord,
    Plan,
    ResourceKind,
    Subscription,
    SubscriptionDuration,
    SubscriptionFeatures,
    SubscriptionStatus,
    User,
)
from services.plan_service import get_plan_details
from services.usage_service import UsageTracker, replace_features

from factories import get_subscription


def seed_subscription(session: Session, max_projects: int = 5) -> Subscription:
    """User, organization, ACTIVE subscription, features and the current usage record."""
    user = User(email="seed@example.com", first_name="Seed")
    session.add(user)
    session.flush()
    organization = Organization(name="Seeded", owner_id=user.id)
    session.add(organization)
    session.flush()
    now = datetime.utcnow()
    subscription = Subscription(
        organization_id=organization.id,
        plan=Plan.BASE,
        duration=SubscriptionDuration.MONTHLY,
        status=SubscriptionStatus.ACTIVE,
        stripe_customer_id="cus_seed",
        stripe_subscription_id="sub_seed",
        cycle_id="sub_seed:1",
        start_date=now,
        end_date=now + timedelta(days=30),
    )
    session.add(subscription)
    session.flush()
    session.add(SubscriptionFeatures(
        subscription_id=subscription.id, max_workers=25, max_projects=max_projects, max_tasks=100
    ))
    session.add(PackageRecord(
        organization_id=organization.id,
        subscription_id=subscription.id,
        cycle_id=subscription.cycle_id,
        period_start=subscription.start_date,
        period_end=subscription.end_date,
    ))
    session.commit()
    return subscription


class TestReserve:
    def test_denies_past_the_ceiling_and_keeps_counter(self, session):
        tracker = UsageTracker()
        subscription = seed_subscription(session, max_projects=5)

        for _ in range(5):
            tracker.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
            session.commit()

        with pytest.raises(UsageLimitExceeded) as exc:
            tracker.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
        session.rollback()

        assert exc.value.details == {"resource": "projects", "limit": 5}
        record = tracker.get_record(session, subscription.id, subscription.cycle_id)
        session.refresh(record)
        assert record.projects == 5

    def test_counters_are_independent(self, session):
        tracker = UsageTracker()
        subscription = seed_subscription(session)
        tracker.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.TASKS)
        session.commit()

        record = tracker.get_record(session, subscription.id, subscription.cycle_id)
        session.refresh(record)
        assert (record.workers, record.projects, record.tasks) == (0, 0, 1)

    def test_missing_record_is_conflict_not_limit(self, session):
        tracker = UsageTracker()
        subscription = seed_subscription(session)
        with pytest.raises(ConflictError) as exc:
            tracker.reserve(session, subscription.id, "sub_seed:999", ResourceKind.PROJECTS)
        assert not isinstance(exc.value, UsageLimitExceeded)

    def test_check_is_read_only(self, session):
        tracker = UsageTracker()
        subscription = seed_subscription(session, max_projects=1)
        assert tracker.check_and_reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
        assert tracker.check_and_reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
        record = tracker.get_record(session, subscription.id, subscription.cycle_id)
        assert record.projects == 0


class TestConcurrentReserve:
    """Two sessions racing for the last unit: exactly one wins."""

    def test_only_one_of_two_concurrent_reservations_passes(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
        create_db_and_tables(engine)
        with Session(engine) as setup:
            subscription = seed_subscription(setup, max_projects=1)
            sub_id, cycle_id = subscription.id, subscription.cycle_id

        tracker = UsageTracker()
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker():
            with Session(engine) as db:
                barrier.wait()
                try:
                    tracker.reserve(db, sub_id, cycle_id, ResourceKind.PROJECTS)
                    db.commit()
                    result = "ok"
                except UsageLimitExceeded:
                    db.rollback()
                    result = "denied"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes) == ["denied", "ok"]
        with Session(engine) as check:
            record = check.exec(select(PackageRecord).where(PackageRecord.subscription_id == sub_id)).one()
            assert record.projects == 1
        engine.dispose()


class TestEnsureRecord:
    def test_once_per_cycle(self, services, session, active_org):
        subscription = get_subscription(session, active_org.id)
        record, created = services.usage.ensure_record(
            session, subscription, subscription.start_date, subscription.end_date, is_trial=False
        )
        assert created is False
        assert record.cycle_id == subscription.cycle_id

    def test_new_cycle_starts_at_zero(self, services, session, active_org):
        subscription = get_subscription(session, active_org.id)
        services.usage.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
        session.commit()

        subscription.cycle_id = "sub_123:next"
        record, created = services.usage.ensure_record(
            session, subscription, subscription.end_date, subscription.end_date + timedelta(days=30), is_trial=False
        )
        assert created is True
        assert record.projects == 0


class TestReplaceFeatures:
    def test_overwrites_previous_ceilings(self, session):
        subscription = seed_subscription(session)
        replace_features(session, subscription.id, get_plan_details(Plan.PRO, SubscriptionDuration.YEARLY))
        session.commit()
        rows = session.exec(
            select(SubscriptionFeatures).where(SubscriptionFeatures.subscription_id == subscription.id)
        ).all()
        assert len(rows) == 1
        assert rows[0].max_workers == 1000 * 12
