# ================================================================
# services/webhook_service.py — Stripe webhook reconciliation
# ================================================================
"""
Applies provider lifecycle events to the local subscription.

Each event runs in its own session and transaction, holding a row lock on
the Subscription for the whole handler, so two events for the same
subscription are applied one after the other. Every handler is a no-op on
redelivery: checkout compares the stored provider id, invoices are keyed by
invoice id, usage records by cycle id, and subscription.updated skips
events older than the last one applied.

Mails are sent only after the transaction committed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlmodel import Session, select

from core.database import SessionFactory
from core.errors import ConsistencyError
from models.models import (
    BillingHistory,
    BillingStatus,
    Dunning,
    Subscription,
    SubscriptionStatus,
    User,
)
from services import email_templates
from services.email_service import EmailService
from services.plan_service import PriceCatalog, get_plan_details, map_provider_status
from services.reminder_service import ReminderOrchestrator
from services.stripe_gateway import (
    StripeGateway,
    cycle_identity,
    from_timestamp,
    invoice_subscription_id,
    subscription_item,
    subscription_period,
)
from services.subscription_service import get_organization_owner, record_activity, transition
from services.usage_service import UsageTracker, replace_features

logger = logging.getLogger(__name__)

S = SubscriptionStatus

# events the local store cannot apply are acknowledged so the provider stops redelivering them
DROPPED_STATUS_CODE = 200

# (recipient, subject, html) queued during a handler, sent after commit
Mail = Tuple[str, str, str]


@dataclass
class WebhookOutcome:
    status_code: int
    status: str
    event_type: str = ""
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body = {"status": self.status, "event": self.event_type}
        if self.detail:
            body["detail"] = self.detail
        return body


@dataclass
class _Context:
    event_id: str
    event_type: str
    created: Optional[datetime]
    mails: List[Mail] = field(default_factory=list)


class WebhookReconciler:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: StripeGateway,
        catalog: PriceCatalog,
        reminders: ReminderOrchestrator,
        email: EmailService,
        usage: Optional[UsageTracker] = None,
        dunning_max_attempts: int = 4,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.catalog = catalog
        self.reminders = reminders
        self.email = email
        self.usage = usage or UsageTracker()
        self.dunning_max_attempts = dunning_max_attempts

        self._handlers: Dict[str, Callable[[Session, Dict[str, Any], _Context], str]] = {
            "checkout.session.completed": self.handle_checkout_completed,
            "invoice.paid": self.handle_invoice_paid,
            "invoice.payment_failed": self.handle_payment_failed,
            "invoice.finalization_failed": self.handle_finalization_failed,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "customer.subscription.updated": self.handle_subscription_updated,
        }

    # ============================================================
    # ✅ Entry points
    # ============================================================
    def handle_request(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        """Verify then process. Signature errors propagate (answered 400 by the caller)."""
        event = self.gateway.construct_event(payload, signature)
        return self.process_event(event)

    def process_event(self, event: Dict[str, Any]) -> WebhookOutcome:
        event_id = event.get("id", "")
        event_type = event.get("type", "")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("ℹ️ Unhandled event type: %s (%s)", event_type, event_id)
            return WebhookOutcome(200, "ignored", event_type)

        ctx = _Context(event_id=event_id, event_type=event_type, created=from_timestamp(event.get("created")))
        obj = (event.get("data") or {}).get("object") or {}

        try:
            with self.session_factory() as session:
                try:
                    status = handler(session, obj, ctx)
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
        except ConsistencyError as e:
            logger.warning("⚠️ Dropped %s (%s): %s", event_type, event_id, e.message)
            return WebhookOutcome(DROPPED_STATUS_CODE, "dropped", event_type, e.message)
        except Exception as e:
            logger.exception("❌ Error processing webhook event %s (%s): %s", event_type, event_id, e)
            return WebhookOutcome(500, "error", event_type, "Error processing event")

        logger.info("✅ Webhook %s (%s): %s", event_type, event_id, status)
        self._send_mails(ctx.mails)
        return WebhookOutcome(200, status, event_type)

    def _send_mails(self, mails: List[Mail]) -> None:
        for to_email, subject, html in mails:
            try:
                self.email.send_email(to_email, subject, html)
            except Exception as e:
                logger.error("❌ Failed to send '%s' to %s: %s", subject, to_email, e)

    # ============================================================
    # ✅ Lookups
    # ============================================================
    def _lock_by_provider_id(self, session: Session, stripe_subscription_id: Optional[str]) -> Subscription:
        if not stripe_subscription_id:
            raise ConsistencyError("Event carries no subscription id")
        subscription = session.exec(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .with_for_update()
        ).first()
        if subscription is None:
            raise ConsistencyError(f"No local subscription for {stripe_subscription_id}")
        return subscription

    def _owner(self, session: Session, subscription: Subscription) -> User:
        owner = get_organization_owner(session, subscription.organization_id)
        if owner is None:
            raise ConsistencyError(f"No owner for organization {subscription.organization_id}")
        return owner

    def _apply_plan(self, session: Session, subscription: Subscription, price_id: Optional[str]) -> None:
        """Set plan/duration from the provider price and replace the feature ceilings."""
        mapped = self.catalog.plan_for(price_id) if price_id else None
        if mapped is None:
            logger.warning("⚠️ Unknown price %s on subscription %s; keeping %s/%s",
                           price_id, subscription.id, subscription.plan.value, subscription.duration.value)
        else:
            subscription.plan, subscription.duration = mapped
        details = get_plan_details(subscription.plan, subscription.duration)
        subscription.price = details.price
        replace_features(session, subscription.id, details)

    def _sync_period(self, subscription: Subscription, provider_sub: Dict[str, Any]) -> Tuple[datetime, datetime]:
        start, end = subscription_period(provider_sub)
        subscription.start_date = start
        subscription.end_date = end
        subscription.cycle_id = cycle_identity(provider_sub["id"], start)
        return start, end

    # ============================================================
    # ✅ checkout.session.completed
    # ============================================================
    def handle_checkout_completed(self, session: Session, checkout: Dict[str, Any], ctx: _Context) -> str:
        customer_id = checkout.get("customer")
        stripe_sub_id = checkout.get("subscription")
        org_id = (checkout.get("metadata") or {}).get("organizationId")
        if not (customer_id and stripe_sub_id and org_id):
            raise ConsistencyError("Checkout session missing customer, subscription or organizationId")

        subscription = session.exec(
            select(Subscription)
            .where(
                Subscription.stripe_customer_id == customer_id,
                Subscription.organization_id == int(org_id),
            )
            .with_for_update()
        ).first()
        if subscription is None:
            raise ConsistencyError(f"No subscription for customer {customer_id} / organization {org_id}")

        if subscription.stripe_subscription_id:
            logger.info("🔁 Checkout for subscription %s already applied (%s)",
                        subscription.id, subscription.stripe_subscription_id)
            return "duplicate"

        provider_sub = self.gateway.retrieve_subscription(stripe_sub_id)
        transition(subscription, map_provider_status(provider_sub.get("status")))
        subscription.stripe_subscription_id = stripe_sub_id
        subscription.payment_method_id = provider_sub.get("default_payment_method")
        start, end = self._sync_period(subscription, provider_sub)
        _, price_id = subscription_item(provider_sub)
        self._apply_plan(session, subscription, price_id)
        subscription.provider_synced_at = ctx.created
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)

        # the checkout cycle's record is always the trial record, whatever the provider status
        self.usage.ensure_record(session, subscription, start, end, is_trial=True)
        record_activity(session, "SUBSCRIPTION_ACTIVATED", subscription.organization_id)

        owner = self._owner(session, subscription)
        self.reminders.replace_subscription_reminders(session, subscription, owner)

        if subscription.status == S.TRIALING:
            details = get_plan_details(subscription.plan, subscription.duration)
            ctx.mails.append((
                owner.email,
                "Your free trial has started",
                email_templates.trial_started(owner.first_name, subscription.plan.value, details.trial_days, end),
            ))
        return "activated"

    # ============================================================
    # ✅ invoice.paid
    # ============================================================
    def handle_invoice_paid(self, session: Session, invoice: Dict[str, Any], ctx: _Context) -> str:
        subscription = self._lock_by_provider_id(session, invoice_subscription_id(invoice))
        provider_sub = self.gateway.retrieve_subscription(subscription.stripe_subscription_id)

        if provider_sub.get("status") == "trialing":
            logger.info("⏭️ Invoice %s paid during trial of subscription %s; skipping activation",
                        invoice.get("id"), subscription.id)
            return "trial_skipped"

        invoice_id = invoice.get("id")
        if not invoice_id:
            raise ConsistencyError("Invoice has no id")

        owner = self._owner(session, subscription)
        transition(subscription, S.ACTIVE)
        start, end = self._sync_period(subscription, provider_sub)
        _, price_id = subscription_item(provider_sub)
        self._apply_plan(session, subscription, price_id)
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)

        amount = (invoice.get("amount_paid") or 0) / 100
        billing_date = from_timestamp(invoice.get("created")) or datetime.utcnow()
        already_billed = session.exec(
            select(BillingHistory).where(BillingHistory.transaction_id == invoice_id)
        ).first()
        if already_billed is None:
            session.add(BillingHistory(
                subscription_id=subscription.id,
                billing_date=billing_date,
                amount=amount,
                payment_method="card",
                transaction_id=invoice_id,
                status=BillingStatus.PAID,
            ))

        self.reminders.replace_subscription_reminders(session, subscription, owner)
        self.usage.ensure_record(session, subscription, start, end, is_trial=False)

        if already_billed is not None:
            return "duplicate"

        ctx.mails.append((
            owner.email,
            "Billing update",
            email_templates.payment_receipt(
                owner.first_name,
                subscription.plan.value,
                amount,
                invoice_id,
                billing_date,
                invoice.get("hosted_invoice_url") or "",
            ),
        ))
        return "paid"

    # ============================================================
    # ✅ invoice.payment_failed
    # ============================================================
    def handle_payment_failed(self, session: Session, invoice: Dict[str, Any], ctx: _Context) -> str:
        subscription = self._lock_by_provider_id(session, invoice_subscription_id(invoice))
        owner = self._owner(session, subscription)

        transition(subscription, S.PAST_DUE)
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)

        dunning = session.exec(select(Dunning).where(Dunning.subscription_id == subscription.id)).first()
        if dunning is None:
            dunning = Dunning(subscription_id=subscription.id, attempts=0)
        dunning.attempts += 1
        dunning.last_attempt_at = datetime.utcnow()
        session.add(dunning)

        if dunning.attempts == 1:
            subject = "Payment failed - we'll retry"
        else:
            subject = f"Payment failed again {dunning.attempts} - update your card"
        billing_date = from_timestamp(invoice.get("created")) or datetime.utcnow()
        ctx.mails.append((
            owner.email,
            subject,
            email_templates.payment_failed(
                owner.first_name, subscription.plan.value, billing_date, dunning.attempts, self.dunning_max_attempts
            ),
        ))
        logger.info("💳 Payment failed for subscription %s (attempt %s)", subscription.id, dunning.attempts)
        return "past_due"

    # ============================================================
    # ✅ invoice.finalization_failed
    # ============================================================
    def handle_finalization_failed(self, session: Session, invoice: Dict[str, Any], ctx: _Context) -> str:
        subscription = self._lock_by_provider_id(session, invoice_subscription_id(invoice))
        if subscription.status == S.CANCELLED:
            return "duplicate"

        now = datetime.utcnow()
        transition(subscription, S.CANCELLED)
        subscription.cancelled_at = now
        subscription.cancellation_reason = "Payment could not be completed"
        subscription.cancel_requested = False
        subscription.updated_at = now
        session.add(subscription)

        dunning = session.exec(select(Dunning).where(Dunning.subscription_id == subscription.id)).first()
        if dunning is None:
            dunning = Dunning(subscription_id=subscription.id, attempts=0)
        dunning.final_failed_at = now
        session.add(dunning)

        self.reminders.clear_subscription_reminders(session, subscription.id)

        owner = self._owner(session, subscription)
        ctx.mails.append((
            owner.email,
            "Subscription cancelled",
            email_templates.subscription_cancelled(
                owner.first_name, subscription.plan.value, subscription.cancellation_reason, now
            ),
        ))
        return "cancelled"

    # ============================================================
    # ✅ customer.subscription.deleted
    # ============================================================
    def handle_subscription_deleted(self, session: Session, provider_sub: Dict[str, Any], ctx: _Context) -> str:
        subscription = self._lock_by_provider_id(session, provider_sub.get("id"))

        self.reminders.clear_subscription_reminders(session, subscription.id)
        if subscription.status == S.CANCELLED:
            return "duplicate"

        cancelled_at = from_timestamp(provider_sub.get("cancel_at")) or datetime.utcnow()
        transition(subscription, S.CANCELLED)
        subscription.cancelled_at = cancelled_at
        subscription.cancel_requested = False
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)

        owner = self._owner(session, subscription)
        ctx.mails.append((
            owner.email,
            "Subscription cancelled",
            email_templates.subscription_cancelled(
                owner.first_name, subscription.plan.value, subscription.cancellation_reason or "", cancelled_at
            ),
        ))
        return "cancelled"

    # ============================================================
    # ✅ customer.subscription.updated
    # ============================================================
    def handle_subscription_updated(self, session: Session, provider_sub: Dict[str, Any], ctx: _Context) -> str:
        subscription = self._lock_by_provider_id(session, provider_sub.get("id"))

        if subscription.provider_synced_at and ctx.created and ctx.created < subscription.provider_synced_at:
            logger.info("⏭️ Stale subscription.updated %s for subscription %s", ctx.event_id, subscription.id)
            return "stale"

        _, price_id = subscription_item(provider_sub)
        self._apply_plan(session, subscription, price_id)
        transition(subscription, map_provider_status(provider_sub.get("status")))
        start, end = self._sync_period(subscription, provider_sub)
        subscription.cancel_requested = bool(provider_sub.get("cancel_at_period_end"))
        if not subscription.cancel_requested:
            subscription.cancellation_reason = None
        if subscription.status == S.CANCELLED:
            subscription.cancel_requested = False
            if subscription.cancelled_at is None:
                subscription.cancelled_at = (
                    from_timestamp(provider_sub.get("canceled_at"))
                    or from_timestamp(provider_sub.get("cancel_at"))
                    or datetime.utcnow()
                )
        if ctx.created:
            subscription.provider_synced_at = ctx.created
        subscription.updated_at = datetime.utcnow()
        session.add(subscription)

        if subscription.status in (S.ACTIVE, S.TRIALING):
            # an immediate plan change re-anchors the period, which opens a new cycle
            self.usage.ensure_record(session, subscription, start, end, is_trial=subscription.status == S.TRIALING)
            owner = self._owner(session, subscription)
            self.reminders.replace_subscription_reminders(session, subscription, owner)
        else:
            self.reminders.clear_subscription_reminders(session, subscription.id)
        return "updated"
