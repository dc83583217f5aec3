# ================================================================
# services/subscription_service.py — subscription state machine + billing intents
# ================================================================
"""
User-initiated billing intents (create, cancel, resume, restart, change plan)
and the table of legal status transitions shared with the webhook reconciler.

Every intent performs its provider call first and writes locally only after
the provider accepted it, so a provider failure leaves the store untouched
and the intent can simply be retried.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from sqlmodel import Session, select

from core.config import settings
from core.errors import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    PaymentRequiredError,
    SubscriptionInactiveError,
    UsageLimitExceeded,
    ValidationError,
)
from core.idempotency import derive_idempotency_key
from models.models import (
    Activity,
    Organization,
    ResourceKind,
    Subscription,
    SubscriptionDuration,
    SubscriptionStatus,
    Plan,
    User,
)
from services.plan_service import PriceCatalog, compute_price, get_plan_details
from services.stripe_gateway import LIVE_PROVIDER_STATUSES, StripeGateway, subscription_item
from services.usage_service import UsageTracker

logger = logging.getLogger(__name__)

S = SubscriptionStatus

# ============================================================
# ✅ State machine
# ============================================================
ALLOWED_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.TRIALING, S.ACTIVE, S.PAST_DUE, S.CANCELLED}),
    S.TRIALING: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.PAST_DUE, S.CANCELLED}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.TRIALING, S.ACTIVE, S.PAST_DUE, S.CANCELLED}),
    # terminal except through restart
    S.CANCELLED: frozenset({S.PROCESSING}),
}

BILLABLE_STATUSES = (S.ACTIVE, S.TRIALING)
CANCELLABLE_STATUSES = (S.ACTIVE, S.TRIALING, S.PAST_DUE)
RESTARTABLE_STATUSES = (S.CANCELLED, S.PAST_DUE)


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition(subscription: Subscription, target: SubscriptionStatus) -> bool:
    """Move the subscription to `target`. Returns False when it already was there."""
    current = subscription.status
    if current == target:
        return False
    if not can_transition(current, target):
        raise IllegalTransitionError(
            f"Subscription {subscription.id} cannot move from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    subscription.status = target
    subscription.updated_at = datetime.utcnow()
    logger.info("🔁 Subscription %s: %s -> %s", subscription.id, current.value, target.value)
    return True


# ============================================================
# ✅ Shared helpers
# ============================================================
def record_activity(session: Session, action: str, organization_id: int, user_id: Optional[int] = None) -> None:
    session.add(Activity(action=action, organization_id=organization_id, user_id=user_id))


def get_organization_owner(session: Session, organization_id: int) -> Optional[User]:
    organization = session.get(Organization, organization_id)
    if organization is None:
        return None
    return session.get(User, organization.owner_id)


def require_owner(organization: Organization, user: User) -> None:
    if organization.owner_id != user.id:
        raise AuthorizationError("Only the organization owner can manage billing")


@dataclass
class CheckoutResult:
    subscription: Subscription
    checkout_url: str
    session_id: str


# ============================================================
# ✅ Service
# ============================================================
class SubscriptionService:
    def __init__(self, gateway: StripeGateway, catalog: PriceCatalog, usage: Optional[UsageTracker] = None):
        self.gateway = gateway
        self.catalog = catalog
        self.usage = usage or UsageTracker()

    # ------------------------
    # Lookups / preconditions
    # ------------------------
    def find_by_organization(self, session: Session, organization_id: int) -> Optional[Subscription]:
        return session.exec(select(Subscription).where(Subscription.organization_id == organization_id)).first()

    def get_by_organization(self, session: Session, organization_id: int) -> Subscription:
        subscription = self.find_by_organization(session, organization_id)
        if subscription is None:
            raise NotFoundError("No subscription found for this organization")
        return subscription

    def _open_checkout(self, subscription: Subscription, user: User, price_id: str, trial_days: int):
        metadata = {"organizationId": str(subscription.organization_id), "userId": str(user.id)}
        return self.gateway.create_checkout_session(
            customer_id=subscription.stripe_customer_id,
            price_id=price_id,
            trial_days=trial_days,
            metadata=metadata,
            success_url=settings.billing_url(subscription.organization_id, "success"),
            cancel_url=settings.billing_url(subscription.organization_id, "cancel"),
        )

    def assert_active_subscription(self, session: Session, organization_id: int) -> Subscription:
        """
        Gate for mutating organization actions.
        PENDING -> 402 with a fresh checkout url; anything not ACTIVE/TRIALING -> 403.
        """
        subscription = self.find_by_organization(session, organization_id)
        if subscription is None:
            raise SubscriptionInactiveError("Organization has no subscription")

        if subscription.status == S.PENDING:
            owner = get_organization_owner(session, organization_id)
            details = get_plan_details(subscription.plan, subscription.duration)
            checkout = self._open_checkout(
                subscription,
                owner,
                self.catalog.price_id(subscription.plan, subscription.duration),
                details.trial_days,
            )
            raise PaymentRequiredError(
                "Please add a payment method to activate your subscription",
                details={"checkout_url": checkout["url"]},
            )

        if subscription.status not in BILLABLE_STATUSES:
            raise SubscriptionInactiveError(
                f"Subscription is {subscription.status.value}",
                details={"status": subscription.status.value},
            )
        return subscription

    def assert_usage_within_limit(self, session: Session, subscription: Subscription, kind: ResourceKind) -> None:
        if not self.usage.check_and_reserve(session, subscription.id, subscription.cycle_id, kind):
            raise UsageLimitExceeded(
                f"Your plan limit for {kind.value} has been reached",
                details={"resource": kind.value},
            )

    # ------------------------
    # create
    # ------------------------
    def start_checkout(
        self,
        session: Session,
        organization: Organization,
        user: User,
        plan: Plan,
        duration: SubscriptionDuration,
    ) -> CheckoutResult:
        """
        Create (or reuse) the PENDING subscription and a provider checkout session.
        Does not commit; organization creation commits both together.
        """
        price_id = self.catalog.price_id(plan, duration)
        details = get_plan_details(plan, duration)

        subscription = self.find_by_organization(session, organization.id)
        if subscription is not None:
            if subscription.status in CANCELLABLE_STATUSES or subscription.status == S.PROCESSING:
                raise ConflictError("Organization already has a subscription")
            if subscription.status == S.CANCELLED:
                raise ConflictError("Subscription was cancelled; restart it instead")
            customer_id = subscription.stripe_customer_id
        else:
            customer_id = self.gateway.create_customer(
                email=user.email,
                name=organization.name,
                metadata={"organizationId": str(organization.id), "userId": str(user.id)},
            )
            subscription = Subscription(
                organization_id=organization.id,
                plan=plan,
                duration=duration,
                stripe_customer_id=customer_id,
            )

        subscription.plan = plan
        subscription.duration = duration
        subscription.price = details.price
        subscription.status = S.PENDING
        subscription.updated_at = datetime.utcnow()

        checkout = self._open_checkout(subscription, user, price_id, details.trial_days)

        session.add(subscription)
        record_activity(session, "SUBSCRIPTION_CREATED", organization.id, user.id)
        session.flush()
        logger.info("🧾 Checkout opened for org %s (%s/%s)", organization.id, plan.value, duration.value)
        return CheckoutResult(subscription=subscription, checkout_url=checkout["url"], session_id=checkout["id"])

    def create_subscription(
        self,
        session: Session,
        organization: Organization,
        user: User,
        plan: Plan,
        duration: SubscriptionDuration,
    ) -> CheckoutResult:
        require_owner(organization, user)
        result = self.start_checkout(session, organization, user, plan, duration)
        session.commit()
        return result

    # ------------------------
    # cancel / resume
    # ------------------------
    def request_cancel(self, session: Session, organization: Organization, user: User, reason: Optional[str] = None) -> Subscription:
        require_owner(organization, user)
        subscription = self.get_by_organization(session, organization.id)

        if subscription.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"Cannot cancel a {subscription.status.value} subscription")
        if subscription.cancel_requested:
            raise ConflictError("Cancellation already requested")
        if not subscription.stripe_subscription_id:
            raise ConflictError("Subscription is not confirmed by the payment provider yet")

        self.gateway.set_cancel_at_period_end(subscription.stripe_subscription_id, True)

        subscription.cancel_requested = True
        subscription.cancelled_at = datetime.utcnow()
        subscription.cancellation_reason = reason
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)
        record_activity(session, "SUBSCRIPTION_CANCEL_REQUESTED", organization.id, user.id)
        session.commit()
        logger.info("🛑 Cancel requested for subscription %s", subscription.id)
        return subscription

    def resume(self, session: Session, organization: Organization, user: User) -> Subscription:
        require_owner(organization, user)
        subscription = self.get_by_organization(session, organization.id)

        if not subscription.cancel_requested:
            raise ConflictError("Subscription has no pending cancellation")

        self.gateway.set_cancel_at_period_end(subscription.stripe_subscription_id, False)

        subscription.cancel_requested = False
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)
        record_activity(session, "SUBSCRIPTION_RESUMED", organization.id, user.id)
        session.commit()
        logger.info("▶️ Subscription %s resumed", subscription.id)
        return subscription

    # ------------------------
    # restart
    # ------------------------
    def restart(
        self,
        session: Session,
        organization: Organization,
        user: User,
        plan: Plan,
        duration: SubscriptionDuration,
    ) -> Subscription:
        require_owner(organization, user)
        price_id = self.catalog.price_id(plan, duration)
        subscription = self.get_by_organization(session, organization.id)

        if subscription.status not in RESTARTABLE_STATUSES:
            raise ConflictError(f"Cannot restart a {subscription.status.value} subscription")

        # the provider is the source of truth; local status may lag behind it
        live = [
            sub for sub in self.gateway.list_subscriptions(subscription.stripe_customer_id)
            if sub.get("status") in LIVE_PROVIDER_STATUSES
        ]
        if live:
            raise ConflictError(
                "Customer already has an active subscription at the payment provider",
                details={"provider_subscription_id": live[0].get("id")},
            )

        payment_method_id = subscription.payment_method_id or self.gateway.default_payment_method(
            subscription.stripe_customer_id
        )
        if not payment_method_id:
            raise ValidationError("No payment method on file; add a card before restarting")

        key = derive_idempotency_key(
            "sub_restart",
            {"subscriptionId": subscription.id, "priceId": price_id, "paymentMethodId": payment_method_id},
        )
        created = self.gateway.create_subscription(
            customer_id=subscription.stripe_customer_id,
            price_id=price_id,
            payment_method_id=payment_method_id,
            metadata={"organizationId": str(organization.id), "userId": str(user.id)},
            idempotency_key=key,
        )

        transition(subscription, S.PROCESSING)
        subscription.stripe_subscription_id = created["id"]
        subscription.payment_method_id = payment_method_id
        subscription.plan = plan
        subscription.duration = duration
        subscription.price = compute_price(plan, duration)
        subscription.cancel_requested = False
        subscription.cancelled_at = None
        subscription.cancellation_reason = None
        session.add(subscription)
        record_activity(session, "SUBSCRIPTION_RESTARTED", organization.id, user.id)
        session.commit()
        logger.info("🔄 Subscription %s restarted as %s", subscription.id, created["id"])
        return subscription

    # ------------------------
    # change plan
    # ------------------------
    def change_plan(
        self,
        session: Session,
        organization: Organization,
        user: User,
        plan: Plan,
        duration: SubscriptionDuration,
        when: str = "PERIOD_END",
    ) -> str:
        """
        Ask the provider to switch price. Local plan/features follow when the
        provider confirms with subscription.updated. Returns the idempotency key used.
        """
        require_owner(organization, user)
        when = when.upper()
        if when not in ("NOW", "PERIOD_END"):
            raise ValidationError("when must be NOW or PERIOD_END")

        new_price_id = self.catalog.price_id(plan, duration)
        subscription = self.get_by_organization(session, organization.id)
        if subscription.status not in BILLABLE_STATUSES:
            raise ConflictError(f"Cannot change plan of a {subscription.status.value} subscription")

        provider_sub = self.gateway.retrieve_subscription(subscription.stripe_subscription_id)
        item_id, current_price_id = subscription_item(provider_sub)
        if current_price_id == new_price_id:
            raise ConflictError("Subscription is already on this plan")

        key = derive_idempotency_key(
            "plan_change",
            {
                "subscriptionId": subscription.stripe_subscription_id,
                "currentPriceId": current_price_id,
                "newPriceId": new_price_id,
                "when": when,
            },
        )
        self.gateway.update_subscription_price(
            subscription.stripe_subscription_id,
            item_id,
            new_price_id,
            prorate=(when == "NOW"),
            idempotency_key=key,
        )

        record_activity(session, "PLAN_CHANGE_REQUESTED", organization.id, user.id)
        session.commit()
        logger.info("🔀 Plan change to %s/%s requested for subscription %s", plan.value, duration.value, subscription.id)
        return key
