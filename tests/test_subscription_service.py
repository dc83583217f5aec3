"""
Tests for the subscription state machine and the user-initiated billing intents
"""
import pytest
from sqlmodel import select

from core.errors import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    IllegalTransitionError,
    PaymentRequiredError,
    SubscriptionInactiveError,
    ValidationError,
)
from models.models import Activity, Plan, SubscriptionDuration, SubscriptionStatus
from services.subscription_service import ALLOWED_TRANSITIONS, can_transition, transition

from factories import PRO_YEARLY_PRICE, get_subscription, provider_subscription

S = SubscriptionStatus


class TestTransitionTable:
    def test_cancelled_only_leaves_through_restart(self):
        for target in S:
            if target in (S.CANCELLED, S.PROCESSING):
                assert can_transition(S.CANCELLED, target)
            else:
                assert not can_transition(S.CANCELLED, target)

    def test_nothing_returns_to_pending(self):
        for current in S:
            if current != S.PENDING:
                assert S.PENDING not in ALLOWED_TRANSITIONS[current]

    def test_transition_is_noop_for_same_status(self, session, active_org):
        subscription = get_subscription(session, active_org.id)
        assert transition(subscription, S.ACTIVE) is False

    def test_illegal_transition_raises(self, session, active_org):
        subscription = get_subscription(session, active_org.id)
        subscription.status = S.CANCELLED
        with pytest.raises(IllegalTransitionError):
            transition(subscription, S.ACTIVE)
        assert subscription.status == S.CANCELLED


class TestCreateOrganizationCheckout:
    def test_starts_pending_with_checkout(self, services, session, pending_org, gateway):
        subscription = get_subscription(session, pending_org.id)
        assert subscription.status == S.PENDING
        assert subscription.stripe_customer_id == "cus_123"
        assert subscription.stripe_subscription_id is None
        assert subscription.price == 10.0

        kwargs = gateway.create_checkout_session.call_args.kwargs
        assert kwargs["trial_days"] == 7
        assert kwargs["metadata"]["organizationId"] == str(pending_org.id)

    def test_pending_gate_answers_402_with_checkout_url(self, services, session, pending_org):
        with pytest.raises(PaymentRequiredError) as exc:
            services.subscriptions.assert_active_subscription(session, pending_org.id)
        assert exc.value.status_code == 402
        assert exc.value.details["checkout_url"].startswith("https://checkout.stripe.test/")

    def test_second_checkout_on_live_subscription_conflicts(self, services, session, active_org, owner):
        with pytest.raises(ConflictError):
            services.subscriptions.create_subscription(session, active_org, owner, Plan.PRO, SubscriptionDuration.MONTHLY)


class TestCancelResume:
    def test_cancel_then_resume(self, services, session, active_org, owner, gateway):
        subscription = services.subscriptions.request_cancel(session, active_org, owner, "Too expensive")
        assert subscription.cancel_requested is True
        assert subscription.status == S.ACTIVE
        gateway.set_cancel_at_period_end.assert_called_with("sub_123", True)

        with pytest.raises(ConflictError):
            services.subscriptions.request_cancel(session, active_org, owner)

        subscription = services.subscriptions.resume(session, active_org, owner)
        assert subscription.cancel_requested is False
        assert subscription.cancellation_reason is None
        gateway.set_cancel_at_period_end.assert_called_with("sub_123", False)

    def test_resume_without_pending_cancel_conflicts(self, services, session, active_org, owner):
        with pytest.raises(ConflictError):
            services.subscriptions.resume(session, active_org, owner)

    def test_non_owner_is_rejected(self, services, session, active_org, make_user):
        stranger = make_user("stranger@example.com", "Sam")
        with pytest.raises(AuthorizationError):
            services.subscriptions.request_cancel(session, active_org, stranger)

    def test_provider_failure_leaves_store_untouched(self, services, session, active_org, owner, gateway):
        gateway.set_cancel_at_period_end.side_effect = ExternalServiceError("boom")
        with pytest.raises(ExternalServiceError):
            services.subscriptions.request_cancel(session, active_org, owner, "reason")
        subscription = get_subscription(session, active_org.id)
        assert subscription.cancel_requested is False
        assert subscription.cancellation_reason is None


class TestRestart:
    @pytest.fixture
    def cancelled_org(self, session, active_org):
        subscription = get_subscription(session, active_org.id)
        subscription.status = S.CANCELLED
        session.add(subscription)
        session.commit()
        return active_org

    def test_restart_moves_to_processing(self, services, session, cancelled_org, owner, gateway):
        subscription = services.subscriptions.restart(
            session, cancelled_org, owner, Plan.PRO, SubscriptionDuration.YEARLY
        )
        assert subscription.status == S.PROCESSING
        assert subscription.stripe_subscription_id == "sub_restart"
        assert subscription.plan == Plan.PRO
        assert subscription.price == 510.0

        kwargs = gateway.create_subscription.call_args.kwargs
        assert kwargs["price_id"] == PRO_YEARLY_PRICE
        assert kwargs["payment_method_id"] == "pm_card"
        assert kwargs["idempotency_key"].startswith("sub_restart_")

    def test_live_provider_subscription_conflicts(self, services, session, cancelled_org, owner, gateway):
        gateway.list_subscriptions.return_value = [provider_subscription(status="active")]
        with pytest.raises(ConflictError):
            services.subscriptions.restart(session, cancelled_org, owner, Plan.BASE, SubscriptionDuration.MONTHLY)
        gateway.create_subscription.assert_not_called()
        assert get_subscription(session, cancelled_org.id).status == S.CANCELLED

    def test_requires_payment_method(self, services, session, cancelled_org, owner, gateway):
        subscription = get_subscription(session, cancelled_org.id)
        subscription.payment_method_id = None
        session.add(subscription)
        session.commit()
        gateway.default_payment_method.return_value = None

        with pytest.raises(ValidationError):
            services.subscriptions.restart(session, cancelled_org, owner, Plan.BASE, SubscriptionDuration.MONTHLY)

    def test_active_subscription_cannot_restart(self, services, session, active_org, owner):
        with pytest.raises(ConflictError):
            services.subscriptions.restart(session, active_org, owner, Plan.BASE, SubscriptionDuration.MONTHLY)

    def test_cancelled_gate_is_403(self, services, session, cancelled_org):
        with pytest.raises(SubscriptionInactiveError) as exc:
            services.subscriptions.assert_active_subscription(session, cancelled_org.id)
        assert exc.value.status_code == 403


class TestChangePlan:
    def test_same_price_conflicts(self, services, session, active_org, owner, gateway):
        with pytest.raises(ConflictError):
            services.subscriptions.change_plan(session, active_org, owner, Plan.BASE, SubscriptionDuration.MONTHLY)
        gateway.update_subscription_price.assert_not_called()

    def test_identical_requests_share_a_key(self, services, session, active_org, owner, gateway):
        first = services.subscriptions.change_plan(
            session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY, when="NOW"
        )
        second = services.subscriptions.change_plan(
            session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY, when="NOW"
        )
        assert first == second

        args, kwargs = gateway.update_subscription_price.call_args
        assert args == ("sub_123", "si_1", PRO_YEARLY_PRICE)
        assert kwargs["prorate"] is True

    def test_when_changes_the_key(self, services, session, active_org, owner):
        now_key = services.subscriptions.change_plan(
            session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY, when="NOW"
        )
        later_key = services.subscriptions.change_plan(
            session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY, when="PERIOD_END"
        )
        assert now_key != later_key

    def test_local_plan_waits_for_provider_confirmation(self, services, session, active_org, owner):
        services.subscriptions.change_plan(session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY)
        subscription = get_subscription(session, active_org.id)
        assert subscription.plan == Plan.BASE
        actions = [a.action for a in session.exec(select(Activity)).all()]
        assert "PLAN_CHANGE_REQUESTED" in actions

    def test_invalid_when_rejected(self, services, session, active_org, owner):
        with pytest.raises(ValidationError):
            services.subscriptions.change_plan(
                session, active_org, owner, Plan.PRO, SubscriptionDuration.YEARLY, when="TOMORROW"
            )
