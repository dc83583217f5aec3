# organization_schema.py
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime

from models.models import Plan, SubscriptionDuration


# ============================================================
# ✅ Create Organization (input), starts a checkout
# ============================================================
class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    plan: Plan = Plan.BASE
    duration: SubscriptionDuration = SubscriptionDuration.MONTHLY


class OrganizationRead(BaseModel):
    id: int
    name: str
    owner_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CheckoutResponse(BaseModel):
    organization_id: int
    subscription_id: int
    checkout_url: str
    session_id: str
