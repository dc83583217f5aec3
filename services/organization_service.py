# ================================================================
# services/organization_service.py — tenants, memberships, invitations
# ================================================================
import logging
import secrets
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlmodel import Session, select

from core.config import settings
from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models.models import (
    InviteStatus,
    Membership,
    MembershipRole,
    Organization,
    OrganizationInvite,
    ResourceKind,
    User,
)
from services import email_templates
from services.email_service import EmailService
from services.reminder_service import ReminderOrchestrator
from services.subscription_service import CheckoutResult, SubscriptionService, record_activity
from services.plan_service import parse_plan

logger = logging.getLogger(__name__)

MANAGER_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN)
ALL_ROLES = (MembershipRole.OWNER, MembershipRole.ADMIN, MembershipRole.MEMBER)


# ============================================================
# ✅ Membership checks
# ============================================================
def get_membership(session: Session, organization_id: int, user_id: int) -> Optional[Membership]:
    return session.exec(
        select(Membership).where(
            Membership.organization_id == organization_id,
            Membership.user_id == user_id,
        )
    ).first()


def require_role(
    session: Session,
    organization_id: int,
    user: User,
    roles: Iterable[MembershipRole] = ALL_ROLES,
) -> Membership:
    """The user must belong to the organization with one of `roles`."""
    membership = get_membership(session, organization_id, user.id)
    if membership is None:
        raise AuthorizationError("You are not a member of this organization")
    if membership.role not in tuple(roles):
        raise AuthorizationError(f"{membership.role.value.title()} role cannot perform this action")
    return membership


def get_organization(session: Session, organization_id: int) -> Organization:
    organization = session.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError("Organization not found")
    return organization


def _invitation_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/accept-invitation?token={token}"


class OrganizationService:
    def __init__(
        self,
        subscriptions: SubscriptionService,
        reminders: ReminderOrchestrator,
        email: EmailService,
        invite_valid_days: int = 7,
    ):
        self.subscriptions = subscriptions
        self.reminders = reminders
        self.email = email
        self.invite_valid_days = invite_valid_days

    # ============================================================
    # ✅ Create organization (with PENDING subscription + checkout)
    # ============================================================
    def create_organization(self, session: Session, owner: User, name: str, plan: str, duration: str) -> CheckoutResult:
        plan_value, duration_value = parse_plan(plan, duration)

        organization = Organization(name=name, owner_id=owner.id)
        session.add(organization)
        session.flush()
        session.add(Membership(user_id=owner.id, organization_id=organization.id, role=MembershipRole.OWNER))
        record_activity(session, "ORGANIZATION_CREATED", organization.id, owner.id)

        try:
            result = self.subscriptions.start_checkout(session, organization, owner, plan_value, duration_value)
        except Exception:
            session.rollback()
            raise

        session.commit()
        logger.info("🏢 Organization %s created by user %s", organization.id, owner.id)
        return result

    # ============================================================
    # ✅ Invitations
    # ============================================================
    def send_invite(
        self,
        session: Session,
        organization_id: int,
        inviter: User,
        email: str,
        role: MembershipRole = MembershipRole.MEMBER,
    ) -> OrganizationInvite:
        organization = get_organization(session, organization_id)
        require_role(session, organization.id, inviter, MANAGER_ROLES)
        subscription = self.subscriptions.assert_active_subscription(session, organization.id)

        if role == MembershipRole.OWNER:
            raise ValidationError("Cannot invite a user as owner")

        email = email.strip().lower()
        existing_user = session.exec(select(User).where(User.email == email)).first()
        if existing_user and get_membership(session, organization.id, existing_user.id):
            raise ConflictError("User is already a member of this organization")

        pending = session.exec(
            select(OrganizationInvite).where(
                OrganizationInvite.organization_id == organization.id,
                OrganizationInvite.email == email,
                OrganizationInvite.status == InviteStatus.PENDING,
            )
        ).first()
        if pending and not pending.is_expired():
            raise ConflictError("An invitation is already pending for this email")

        self.subscriptions.assert_usage_within_limit(session, subscription, ResourceKind.WORKERS)

        invite = OrganizationInvite(
            organization_id=organization.id,
            inviter_id=inviter.id,
            email=email,
            role=role,
            token=secrets.token_urlsafe(32),
            expires_at=datetime.utcnow() + timedelta(days=self.invite_valid_days),
        )
        session.add(invite)
        session.flush()
        self.reminders.schedule_invite_expiry(invite)
        session.add(invite)
        session.commit()
        logger.info("✉️ Invitation %s sent to %s for org %s", invite.id, email, organization.id)

        inviter_name = " ".join(filter(None, [inviter.first_name, inviter.last_name])) or inviter.email
        self.email.send_email(
            email,
            f"You're invited to join {organization.name} on TeamFlow",
            email_templates.organization_invite(
                inviter_name, organization.name, role.value, _invitation_link(invite.token), self.invite_valid_days
            ),
        )
        return invite

    def accept_invite(self, session: Session, token: str, user: User) -> Membership:
        invite = session.exec(select(OrganizationInvite).where(OrganizationInvite.token == token)).first()
        if invite is None:
            raise NotFoundError("Invitation not found")
        if invite.status == InviteStatus.ACCEPTED:
            raise ConflictError("Invitation already accepted")
        if invite.status == InviteStatus.EXPIRED or invite.is_expired():
            if invite.status != InviteStatus.EXPIRED:
                invite.status = InviteStatus.EXPIRED
                self.reminders.cancel_invite_expiry(invite)
                session.add(invite)
                session.commit()
            raise ConflictError("Invitation has expired")
        if invite.email.lower() != user.email.lower():
            raise AuthorizationError("This invitation was sent to a different email address")
        if get_membership(session, invite.organization_id, user.id):
            raise ConflictError("You are already a member of this organization")

        subscription = self.subscriptions.assert_active_subscription(session, invite.organization_id)

        membership = Membership(user_id=user.id, organization_id=invite.organization_id, role=invite.role)
        session.add(membership)
        session.flush()
        self.subscriptions.usage.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.WORKERS)

        self.reminders.cancel_invite_expiry(invite)
        invite.status = InviteStatus.ACCEPTED
        invite.accepted_at = datetime.utcnow()
        session.add(invite)
        record_activity(session, "INVITE_ACCEPTED", invite.organization_id, user.id)
        session.commit()
        logger.info("🤝 User %s joined org %s as %s", user.id, invite.organization_id, invite.role.value)
        return membership

    def expire_invite(self, session: Session, invite_id: int, job_id: Optional[str] = None) -> bool:
        """Fired by the expiry job. Only a still-PENDING invite moves to EXPIRED."""
        invite = session.get(OrganizationInvite, invite_id)
        if invite is None:
            logger.warning("⚠️ Expiry fired for missing invite %s", invite_id)
            return False
        if job_id and invite.expiry_job_id and invite.expiry_job_id != job_id:
            logger.info("⏭️ Stale expiry job %s for invite %s", job_id, invite_id)
            return False
        invite.expiry_job_id = None
        changed = invite.status == InviteStatus.PENDING
        if changed:
            invite.status = InviteStatus.EXPIRED
            logger.info("⌛ Invitation %s expired", invite_id)
        session.add(invite)
        session.commit()
        return changed
