# routes/subscription.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from core.container import Services, get_services
from core.database import get_session
from core.security import get_current_user
from models.models import User
from schemas.organization_schema import CheckoutResponse
from schemas.subscription_schema import (
    CancelRequest,
    PlanChangeRequest,
    PlanChangeResponse,
    RestartRequest,
    SubscriptionCreate,
    SubscriptionRead,
)
from services.organization_service import get_organization, require_role

router = APIRouter(prefix="/organizations/{organization_id}/subscription", tags=["Subscription"])


# ==================================================================
#  ✅ CURRENT SUBSCRIPTION
# ==================================================================
@router.get("/", response_model=SubscriptionRead)
def read_subscription(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    require_role(session, organization_id, current_user)
    return services.subscriptions.get_by_organization(session, organization_id)


# ==================================================================
#  ✅ (RE)OPEN CHECKOUT FOR A PENDING SUBSCRIPTION
# ==================================================================
@router.post("/", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(
    organization_id: int,
    data: SubscriptionCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    organization = get_organization(session, organization_id)
    result = services.subscriptions.create_subscription(session, organization, current_user, data.plan, data.duration)
    return CheckoutResponse(
        organization_id=organization.id,
        subscription_id=result.subscription.id,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


# ==================================================================
#  ✅ CANCEL AT PERIOD END / RESUME
# ==================================================================
@router.post("/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    organization_id: int,
    data: CancelRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    organization = get_organization(session, organization_id)
    return services.subscriptions.request_cancel(session, organization, current_user, data.reason)


@router.post("/resume", response_model=SubscriptionRead)
def resume_subscription(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    organization = get_organization(session, organization_id)
    return services.subscriptions.resume(session, organization, current_user)


# ==================================================================
#  ✅ RESTART A CANCELLED / PAST-DUE SUBSCRIPTION
# ==================================================================
@router.post("/restart", response_model=SubscriptionRead)
def restart_subscription(
    organization_id: int,
    data: RestartRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    organization = get_organization(session, organization_id)
    return services.subscriptions.restart(session, organization, current_user, data.plan, data.duration)


# ==================================================================
#  ✅ CHANGE PLAN (applied when the provider confirms)
# ==================================================================
@router.post("/change-plan", response_model=PlanChangeResponse, status_code=status.HTTP_202_ACCEPTED)
def change_plan(
    organization_id: int,
    data: PlanChangeRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    organization = get_organization(session, organization_id)
    require_role(session, organization_id, current_user)
    key = services.subscriptions.change_plan(
        session, organization, current_user, data.plan, data.duration, data.when
    )
    return PlanChangeResponse(idempotency_key=key)
