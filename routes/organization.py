# routes/organization.py
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from sqlalchemy import desc
from sqlmodel import Session, select

from core.config import settings
from core.container import Services, get_services
from core.database import get_session
from core.errors import ValidationError
from core.security import get_current_user
from models.models import BillingHistory, User
from schemas.organization_schema import CheckoutResponse, OrganizationCreate, OrganizationRead
from schemas.subscription_schema import BillingHistoryRead, UsageRead
from services.organization_service import get_organization, require_role

router = APIRouter(prefix="/organizations", tags=["Organizations"])


# ==================================================================
#  ✅ CREATE ORGANIZATION (opens a checkout for the chosen plan)
# ==================================================================
@router.post("/", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def create_organization(
    data: OrganizationCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    result = services.organizations.create_organization(
        session, current_user, data.name, data.plan.value, data.duration.value
    )
    return CheckoutResponse(
        organization_id=result.subscription.organization_id,
        subscription_id=result.subscription.id,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


# ==================================================================
#  ✅ GET ORGANIZATION
# ==================================================================
@router.get("/{organization_id}", response_model=OrganizationRead)
def read_organization(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    organization = get_organization(session, organization_id)
    require_role(session, organization_id, current_user)
    return organization


# ==================================================================
#  ✅ USAGE OF THE CURRENT CYCLE
# ==================================================================
@router.get("/{organization_id}/usage", response_model=UsageRead)
def read_usage(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    require_role(session, organization_id, current_user)
    subscription = services.subscriptions.get_by_organization(session, organization_id)
    record = services.usage.get_record(session, subscription.id, subscription.cycle_id)
    features = services.usage.features(session, subscription.id)
    return UsageRead(
        cycle_id=subscription.cycle_id,
        workers=record.workers if record else 0,
        projects=record.projects if record else 0,
        tasks=record.tasks if record else 0,
        max_workers=features.max_workers if features else 0,
        max_projects=features.max_projects if features else 0,
        max_tasks=features.max_tasks if features else 0,
    )


# ==================================================================
#  ✅ BILLING HISTORY
# ==================================================================
@router.get("/{organization_id}/billing/history", response_model=List[BillingHistoryRead])
def billing_history(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    require_role(session, organization_id, current_user)
    subscription = services.subscriptions.get_by_organization(session, organization_id)
    return session.exec(
        select(BillingHistory)
        .where(BillingHistory.subscription_id == subscription.id)
        .order_by(desc(BillingHistory.billing_date))
    ).all()


# ==================================================================
#  ✅ CHECKOUT RETURN (provider redirects here, we bounce to the frontend)
# ==================================================================
@router.get("/{organization_id}/billing/{outcome}")
def checkout_return(organization_id: int, outcome: str):
    if outcome not in ("success", "cancel"):
        raise ValidationError("Unknown checkout outcome")
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}/organizations/{organization_id}/billing?checkout={outcome}"
    )
