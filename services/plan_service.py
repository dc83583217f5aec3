# ================================================================
# services/plan_service.py — plan catalog, price ids, provider status table
# ================================================================
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from core.errors import ValidationError
from models.models import Plan, SubscriptionDuration, SubscriptionStatus


BASE_PRICES: Dict[Plan, float] = {
    Plan.BASE: 10.0,
    Plan.ENTERPRISE: 20.0,
    Plan.PRO: 50.0,
}

DURATION_MULTIPLIERS: Dict[SubscriptionDuration, int] = {
    SubscriptionDuration.MONTHLY: 1,
    SubscriptionDuration.QUARTERLY: 3,
    SubscriptionDuration.HALFYEAR: 6,
    SubscriptionDuration.YEARLY: 12,
}

DURATION_DISCOUNTS: Dict[SubscriptionDuration, float] = {
    SubscriptionDuration.QUARTERLY: 0.05,
    SubscriptionDuration.HALFYEAR: 0.10,
    SubscriptionDuration.YEARLY: 0.15,
}

TRIAL_DAYS: Dict[Plan, int] = {
    Plan.BASE: 7,
    Plan.ENTERPRISE: 7,
    Plan.PRO: 14,
}

# Per-month ceilings; workers, projects and tasks are configured independently.
BASE_FEATURES: Dict[Plan, Dict[str, int]] = {
    Plan.BASE: {"max_workers": 25, "max_projects": 5, "max_tasks": 100},
    Plan.ENTERPRISE: {"max_workers": 50, "max_projects": 10, "max_tasks": 500},
    Plan.PRO: {"max_workers": 1000, "max_projects": 100, "max_tasks": 10000},
}


@dataclass(frozen=True)
class PlanDetails:
    plan: Plan
    duration: SubscriptionDuration
    price: float
    trial_days: int
    max_workers: int
    max_projects: int
    max_tasks: int


def parse_plan(plan: str, duration: str) -> Tuple[Plan, SubscriptionDuration]:
    """Validate a (plan, duration) pair coming from a request."""
    try:
        return Plan(str(plan).upper()), SubscriptionDuration(str(duration).upper())
    except ValueError:
        raise ValidationError(f"Unsupported plan/duration combination: {plan}/{duration}")


def compute_price(plan: Plan, duration: SubscriptionDuration) -> float:
    gross = BASE_PRICES[plan] * DURATION_MULTIPLIERS[duration]
    discount = DURATION_DISCOUNTS.get(duration, 0.0)
    return round(gross * (1 - discount), 2)


def get_plan_details(plan: Plan, duration: SubscriptionDuration) -> PlanDetails:
    multiplier = DURATION_MULTIPLIERS[duration]
    base = BASE_FEATURES[plan]
    return PlanDetails(
        plan=plan,
        duration=duration,
        price=compute_price(plan, duration),
        trial_days=TRIAL_DAYS[plan],
        max_workers=base["max_workers"] * multiplier,
        max_projects=base["max_projects"] * multiplier,
        max_tasks=base["max_tasks"] * multiplier,
    )


class PriceCatalog:
    """Two-way mapping between (plan, duration) and provider price ids."""

    def __init__(self, price_ids: Mapping[str, Mapping[str, str]]):
        self._forward: Dict[Tuple[Plan, SubscriptionDuration], str] = {}
        self._reverse: Dict[str, Tuple[Plan, SubscriptionDuration]] = {}
        for plan_name, durations in price_ids.items():
            for duration_name, price_id in durations.items():
                key = (Plan(plan_name), SubscriptionDuration(duration_name))
                self._forward[key] = price_id
                self._reverse[price_id] = key

    def price_id(self, plan: Plan, duration: SubscriptionDuration) -> str:
        try:
            return self._forward[(plan, duration)]
        except KeyError:
            raise ValidationError(f"No price configured for {plan.value}/{duration.value}")

    def plan_for(self, price_id: str) -> Optional[Tuple[Plan, SubscriptionDuration]]:
        return self._reverse.get(price_id)


# ------------------------------------------------------------
# Provider status -> local status
# ------------------------------------------------------------
class ProviderStatus(str, Enum):
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    PAUSED = "paused"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


PROVIDER_STATUS_MAP: Dict[ProviderStatus, SubscriptionStatus] = {
    ProviderStatus.INCOMPLETE: SubscriptionStatus.PROCESSING,
    ProviderStatus.INCOMPLETE_EXPIRED: SubscriptionStatus.CANCELLED,
    ProviderStatus.TRIALING: SubscriptionStatus.TRIALING,
    ProviderStatus.ACTIVE: SubscriptionStatus.ACTIVE,
    ProviderStatus.PAST_DUE: SubscriptionStatus.PAST_DUE,
    ProviderStatus.UNPAID: SubscriptionStatus.PAST_DUE,
    ProviderStatus.CANCELED: SubscriptionStatus.CANCELLED,
    ProviderStatus.PAUSED: SubscriptionStatus.PAST_DUE,
    # never grant billing access on a status we do not recognise
    ProviderStatus.UNKNOWN: SubscriptionStatus.PAST_DUE,
}


def map_provider_status(value: Optional[str]) -> SubscriptionStatus:
    return PROVIDER_STATUS_MAP[ProviderStatus.parse(value)]
