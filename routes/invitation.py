# routes/invitation.py
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select

from core.container import Services, get_services
from core.database import get_session
from core.security import get_current_user
from models.models import InviteStatus, OrganizationInvite, User
from schemas.invitation_schema import InvitationAccept, InvitationCreate, InvitationRead, MembershipRead
from services.organization_service import MANAGER_ROLES, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invitations"])


# ==================================================================
#  ✅ SEND INVITATION
# ==================================================================
@router.post(
    "/organizations/{organization_id}/invitations",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
def invite(
    organization_id: int,
    data: InvitationCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.organizations.send_invite(session, organization_id, current_user, data.email, data.role)


# ==================================================================
#  ✅ PENDING INVITATIONS OF AN ORGANIZATION
# ==================================================================
@router.get("/organizations/{organization_id}/invitations", response_model=List[InvitationRead])
def list_invitations(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    require_role(session, organization_id, current_user, MANAGER_ROLES)
    return session.exec(
        select(OrganizationInvite).where(
            OrganizationInvite.organization_id == organization_id,
            OrganizationInvite.status == InviteStatus.PENDING,
        )
    ).all()


# ==================================================================
#  ✅ ACCEPT INVITATION
# ==================================================================
@router.post("/invitations/accept", response_model=MembershipRead)
def accept_invite(
    data: InvitationAccept,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.organizations.accept_invite(session, data.token, current_user)
