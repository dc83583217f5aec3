# ================================================================
# services/stripe_gateway.py — Stripe SDK boundary
# ================================================================
"""
Every call the billing code makes to Stripe goes through StripeGateway.

Responses come back as plain dicts (SDK objects are converted) so the
reconciler and the state machine never depend on SDK types, and tests can
replace the whole gateway with a Mock.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import stripe

from core.errors import ExternalServiceError, InvalidSignatureError

logger = logging.getLogger(__name__)

# Provider statuses that mean the customer still has a live subscription
LIVE_PROVIDER_STATUSES = ("active", "trialing", "past_due", "unpaid")


def _plain(obj: Any) -> Any:
    """StripeObject -> plain json-compatible structure."""
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return obj


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Provider epoch seconds -> naive UTC datetime (the store's convention)."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


# ============================================================
# ✅ Payload readers (work on plain dicts)
# ============================================================
def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period(subscription: Dict[str, Any]) -> Tuple[datetime, datetime]:
    """Current period of a provider subscription; newer API versions keep it on the item."""
    item = _first_item(subscription)
    start = item.get("current_period_start") or subscription.get("current_period_start")
    end = item.get("current_period_end") or subscription.get("current_period_end")
    if start is None or end is None:
        raise ValueError(f"subscription {subscription.get('id')} has no current period")
    return from_timestamp(start), from_timestamp(end)


def subscription_item(subscription: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """(item id, price id) of the single-item subscription."""
    item = _first_item(subscription)
    price = item.get("price") or {}
    price_id = price.get("id") if isinstance(price, dict) else price
    return item.get("id"), price_id


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    sub_id = invoice.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    if sub_id:
        return sub_id

    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    if details.get("subscription"):
        return details["subscription"]

    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        line = lines[0]
        if line.get("subscription"):
            return line["subscription"]
        parent = (line.get("parent") or {}).get("subscription_item_details") or {}
        return parent.get("subscription")
    return None


def cycle_identity(stripe_subscription_id: str, period_start: datetime) -> str:
    """Usage-record key for one billing period of one provider subscription."""
    epoch = int(period_start.replace(tzinfo=timezone.utc).timestamp())
    return f"{stripe_subscription_id}:{epoch}"


# ============================================================
# ✅ Gateway
# ============================================================
class StripeGateway:
    def __init__(self, api_key: Optional[str], webhook_secret: Optional[str]):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        if not api_key:
            logger.warning("⚠️ STRIPE_SECRET_KEY not configured, provider calls will fail")

    def _call(self, description: str, fn, *args, **kwargs) -> Any:
        try:
            return _plain(fn(*args, api_key=self.api_key, **kwargs))
        except stripe.StripeError as e:
            logger.error("❌ Stripe %s failed: %s", description, e.user_message or str(e))
            raise ExternalServiceError(
                f"Payment provider error while trying to {description}",
                details={"provider_message": e.user_message or str(e)},
            ) from e

    # ------------------------
    # Customers
    # ------------------------
    def create_customer(self, email: str, name: str, metadata: Dict[str, str]) -> str:
        customer = self._call("create customer", stripe.Customer.create, email=email, name=name, metadata=metadata)
        return customer["id"]

    def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._call("retrieve customer", stripe.Customer.retrieve, customer_id)

    def default_payment_method(self, customer_id: str) -> Optional[str]:
        customer = self.retrieve_customer(customer_id)
        method = (customer.get("invoice_settings") or {}).get("default_payment_method")
        if isinstance(method, dict):
            method = method.get("id")
        return method

    # ------------------------
    # Checkout
    # ------------------------
    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        trial_days: int,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, Any]:
        subscription_data: Dict[str, Any] = {"metadata": metadata}
        if trial_days > 0:
            subscription_data["trial_period_days"] = trial_days
        return self._call(
            "create checkout session",
            stripe.checkout.Session.create,
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            subscription_data=subscription_data,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
        )

    # ------------------------
    # Subscriptions
    # ------------------------
    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call("retrieve subscription", stripe.Subscription.retrieve, subscription_id)

    def list_subscriptions(self, customer_id: str) -> List[Dict[str, Any]]:
        result = self._call("list subscriptions", stripe.Subscription.list, customer=customer_id, status="all", limit=100)
        return result.get("data", [])

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        payment_method_id: str,
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> Dict[str, Any]:
        return self._call(
            "create subscription",
            stripe.Subscription.create,
            customer=customer_id,
            items=[{"price": price_id}],
            default_payment_method=payment_method_id,
            payment_behavior="default_incomplete",
            expand=["latest_invoice.payment_intent"],
            metadata=metadata,
            idempotency_key=idempotency_key,
        )

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Dict[str, Any]:
        return self._call(
            "update cancellation",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel,
        )

    def update_subscription_price(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
        prorate: bool,
        idempotency_key: str,
    ) -> Dict[str, Any]:
        return self._call(
            "change plan",
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations" if prorate else "none",
            billing_cycle_anchor="now" if prorate else "unchanged",
            idempotency_key=idempotency_key,
        )

    # ------------------------
    # Webhooks
    # ------------------------
    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the signature header and return the event as a plain dict."""
        if not self.webhook_secret:
            raise ExternalServiceError("Webhook secret not configured")
        if not signature:
            raise InvalidSignatureError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret)
            return json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.warning("❌ Invalid webhook signature: %s", e)
            raise InvalidSignatureError("Invalid signature")
        except ValueError as e:
            logger.warning("❌ Invalid webhook payload: %s", e)
            raise InvalidSignatureError("Invalid payload")
