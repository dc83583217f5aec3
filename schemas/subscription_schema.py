# subscription_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional
from datetime import datetime

from models.models import BillingStatus, Plan, SubscriptionDuration, SubscriptionStatus


class SubscriptionRead(BaseModel):
    id: int
    organization_id: int
    plan: Plan
    duration: SubscriptionDuration
    status: SubscriptionStatus
    price: float
    start_date: datetime
    end_date: datetime
    cancel_requested: bool
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionCreate(BaseModel):
    plan: Plan
    duration: SubscriptionDuration


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RestartRequest(BaseModel):
    plan: Plan
    duration: SubscriptionDuration


class PlanChangeRequest(BaseModel):
    plan: Plan
    duration: SubscriptionDuration
    when: Literal["NOW", "PERIOD_END"] = "PERIOD_END"


class PlanChangeResponse(BaseModel):
    status: str = "requested"
    idempotency_key: str


class UsageRead(BaseModel):
    cycle_id: Optional[str] = None
    workers: int = 0
    projects: int = 0
    tasks: int = 0
    max_workers: int = 0
    max_projects: int = 0
    max_tasks: int = 0


class BillingHistoryRead(BaseModel):
    id: int
    billing_date: datetime
    amount: float
    payment_method: str
    transaction_id: str
    status: BillingStatus

    model_config = ConfigDict(from_attributes=True)
