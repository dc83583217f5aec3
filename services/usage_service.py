# ================================================================
# services/usage_service.py — per-cycle usage counters vs plan ceilings
# ================================================================
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy import select as sa_select, update
from sqlmodel import Session, select

from core.errors import ConflictError, UsageLimitExceeded
from models.models import PackageRecord, ResourceKind, Subscription, SubscriptionFeatures
from services.plan_service import PlanDetails

logger = logging.getLogger(__name__)

# resource -> (counter column on PackageRecord, ceiling column on SubscriptionFeatures)
USAGE_COLUMNS: Dict[ResourceKind, Tuple[str, str]] = {
    ResourceKind.WORKERS: ("workers", "max_workers"),
    ResourceKind.PROJECTS: ("projects", "max_projects"),
    ResourceKind.TASKS: ("tasks", "max_tasks"),
}


def replace_features(session: Session, subscription_id: int, details: PlanDetails) -> SubscriptionFeatures:
    """Overwrite the ceilings of a subscription with those of its (new) plan."""
    features = session.exec(
        select(SubscriptionFeatures).where(SubscriptionFeatures.subscription_id == subscription_id)
    ).first()
    if features is None:
        features = SubscriptionFeatures(subscription_id=subscription_id, max_workers=0, max_projects=0, max_tasks=0)
    features.max_workers = details.max_workers
    features.max_projects = details.max_projects
    features.max_tasks = details.max_tasks
    session.add(features)
    session.flush()
    return features


class UsageTracker:
    """Counters live on the PackageRecord of (subscription, cycle)."""

    def get_record(self, session: Session, subscription_id: int, cycle_id: Optional[str]) -> Optional[PackageRecord]:
        if not cycle_id:
            return None
        return session.exec(
            select(PackageRecord).where(
                PackageRecord.subscription_id == subscription_id,
                PackageRecord.cycle_id == cycle_id,
            )
        ).first()

    def ensure_record(
        self,
        session: Session,
        subscription: Subscription,
        period_start: datetime,
        period_end: datetime,
        is_trial: bool,
    ) -> Tuple[PackageRecord, bool]:
        """Return the record of the subscription's current cycle, creating it on first sight."""
        record = self.get_record(session, subscription.id, subscription.cycle_id)
        if record is not None:
            return record, False

        record = PackageRecord(
            organization_id=subscription.organization_id,
            subscription_id=subscription.id,
            cycle_id=subscription.cycle_id,
            period_start=period_start,
            period_end=period_end,
            is_trial=is_trial,
        )
        session.add(record)
        session.flush()
        logger.info("📦 Usage record created for subscription %s cycle %s", subscription.id, subscription.cycle_id)
        return record, True

    def features(self, session: Session, subscription_id: int) -> Optional[SubscriptionFeatures]:
        return session.exec(
            select(SubscriptionFeatures).where(SubscriptionFeatures.subscription_id == subscription_id)
        ).first()

    def _ceiling(self, session: Session, subscription_id: int, kind: ResourceKind) -> int:
        features = self.features(session, subscription_id)
        if features is None:
            return 0
        return getattr(features, USAGE_COLUMNS[kind][1])

    def check_and_reserve(self, session: Session, subscription_id: int, cycle_id: Optional[str], kind: ResourceKind) -> bool:
        """
        Read-only allow/deny for one more `kind` in the cycle.

        Callers that go on to create the resource must still call `reserve`
        in the same transaction; this answer alone is not race-free.
        """
        record = self.get_record(session, subscription_id, cycle_id)
        if record is None:
            return False
        counter_name, _ = USAGE_COLUMNS[kind]
        return getattr(record, counter_name) < self._ceiling(session, subscription_id, kind)

    def reserve(self, session: Session, subscription_id: int, cycle_id: Optional[str], kind: ResourceKind) -> None:
        """
        Atomically take one unit of `kind`: a single UPDATE guarded by
        `counter < ceiling`, so two concurrent callers cannot both pass.
        Caller commits together with the resource it creates.
        """
        counter_name, ceiling_name = USAGE_COLUMNS[kind]
        counter = getattr(PackageRecord, counter_name)
        ceiling = (
            sa_select(getattr(SubscriptionFeatures, ceiling_name))
            .where(SubscriptionFeatures.subscription_id == subscription_id)
            .scalar_subquery()
        )
        stmt = (
            update(PackageRecord)
            .where(
                PackageRecord.subscription_id == subscription_id,
                PackageRecord.cycle_id == cycle_id,
                counter < ceiling,
            )
            .values({counter_name: counter + 1})
            .execution_options(synchronize_session="fetch")
        )
        result = session.execute(stmt)
        if result.rowcount == 0:
            if self.get_record(session, subscription_id, cycle_id) is None:
                raise ConflictError("No usage record for the current billing cycle", details={"resource": kind.value})
            limit = self._ceiling(session, subscription_id, kind)
            logger.info("🚫 %s limit reached for subscription %s (limit=%s)", kind.value, subscription_id, limit)
            raise UsageLimitExceeded(
                f"Your plan allows at most {limit} {kind.value} in this billing cycle",
                details={"resource": kind.value, "limit": limit},
            )
