"""
Tests for organization creation, memberships and the invitation lifecycle
"""
from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from core.errors import AuthorizationError, ConflictError, PaymentRequiredError, ValidationError
from models.models import (
    Activity,
    InviteStatus,
    Membership,
    MembershipRole,
    Organization,
    OrganizationInvite,
    PackageRecord,
)
from services.job_scheduler import EXPIRING_INVITE_QUEUE

from factories import add_member


class TestCreateOrganization:
    def test_owner_membership_and_activity(self, session, pending_org, owner):
        membership = session.exec(select(Membership).where(Membership.organization_id == pending_org.id)).one()
        assert membership.user_id == owner.id
        assert membership.role == MembershipRole.OWNER

        actions = {a.action for a in session.exec(select(Activity)).all()}
        assert {"ORGANIZATION_CREATED", "SUBSCRIPTION_CREATED"} <= actions

    def test_invalid_plan_creates_nothing(self, services, session, owner):
        with pytest.raises(ValidationError):
            services.organizations.create_organization(session, owner, "Nope", "GOLD", "MONTHLY")
        assert session.exec(select(Organization)).all() == []

    def test_provider_failure_rolls_back(self, services, session, owner, gateway):
        gateway.create_customer.side_effect = RuntimeError("provider down")
        with pytest.raises(RuntimeError):
            services.organizations.create_organization(session, owner, "Acme", "BASE", "MONTHLY")
        assert session.exec(select(Organization)).all() == []


class TestSendInvite:
    def test_invite_schedules_expiry_and_mails(self, services, session, active_org, owner, queue, email):
        invite = services.organizations.send_invite(session, active_org.id, owner, "New@Example.com")

        assert invite.email == "new@example.com"
        assert invite.status == InviteStatus.PENDING
        job = queue.get(invite.expiry_job_id)
        assert job.queue == EXPIRING_INVITE_QUEUE
        assert job.run_at == invite.expires_at
        email.send_email.assert_called_once()
        assert email.send_email.call_args.args[0] == "new@example.com"

    def test_pending_invite_conflicts(self, services, session, active_org, owner):
        services.organizations.send_invite(session, active_org.id, owner, "new@example.com")
        with pytest.raises(ConflictError):
            services.organizations.send_invite(session, active_org.id, owner, "new@example.com")

    def test_cannot_invite_owner_role(self, services, session, active_org, owner):
        with pytest.raises(ValidationError):
            services.organizations.send_invite(session, active_org.id, owner, "x@example.com", MembershipRole.OWNER)

    def test_member_cannot_invite(self, services, session, active_org, make_user):
        member = make_user("member@example.com", "Mia")
        add_member(session, active_org.id, member)
        with pytest.raises(AuthorizationError):
            services.organizations.send_invite(session, active_org.id, member, "x@example.com")

    def test_pending_subscription_requires_payment(self, services, session, pending_org, owner):
        with pytest.raises(PaymentRequiredError):
            services.organizations.send_invite(session, pending_org.id, owner, "x@example.com")


class TestAcceptInvite:
    @pytest.fixture
    def invite(self, services, session, active_org, owner):
        return services.organizations.send_invite(session, active_org.id, owner, "new@example.com", MembershipRole.ADMIN)

    def test_accept_joins_and_counts_worker(self, services, session, active_org, invite, make_user, queue):
        user = make_user("new@example.com", "Nia")
        job_id = invite.expiry_job_id

        membership = services.organizations.accept_invite(session, invite.token, user)

        assert membership.role == MembershipRole.ADMIN
        assert invite.status == InviteStatus.ACCEPTED
        assert queue.get(job_id) is None
        record = session.exec(select(PackageRecord)).one()
        session.refresh(record)
        assert record.workers == 1

    def test_accept_twice_conflicts(self, services, session, invite, make_user):
        user = make_user("new@example.com", "Nia")
        services.organizations.accept_invite(session, invite.token, user)
        with pytest.raises(ConflictError):
            services.organizations.accept_invite(session, invite.token, user)

    def test_other_email_rejected(self, services, session, invite, make_user):
        intruder = make_user("other@example.com", "Otto")
        with pytest.raises(AuthorizationError):
            services.organizations.accept_invite(session, invite.token, intruder)

    def test_expired_invite_conflicts(self, services, session, invite, make_user):
        invite.expires_at = datetime.utcnow() - timedelta(minutes=1)
        session.add(invite)
        session.commit()
        user = make_user("new@example.com", "Nia")

        with pytest.raises(ConflictError):
            services.organizations.accept_invite(session, invite.token, user)
        assert invite.status == InviteStatus.EXPIRED
        assert session.exec(select(Membership).where(Membership.user_id == user.id)).first() is None


class TestInviteExpiryJob:
    def test_worker_expires_pending_invite(self, services, session, active_org, owner, clock, queue):
        invite = services.organizations.send_invite(session, active_org.id, owner, "new@example.com")

        clock.advance(timedelta(days=8))
        assert queue.run_due() == 1

        session.expire_all()
        invite = session.get(OrganizationInvite, invite.id)
        assert invite.status == InviteStatus.EXPIRED
        assert invite.expiry_job_id is None

    def test_expiry_leaves_accepted_invite_alone(self, services, session, active_org, owner, make_user):
        invite = services.organizations.send_invite(session, active_org.id, owner, "new@example.com")
        services.organizations.accept_invite(session, invite.token, make_user("new@example.com", "Nia"))

        assert services.organizations.expire_invite(session, invite.id) is False
        assert invite.status == InviteStatus.ACCEPTED

    def test_stale_job_is_ignored(self, services, session, active_org, owner):
        invite = services.organizations.send_invite(session, active_org.id, owner, "new@example.com")
        assert services.organizations.expire_invite(session, invite.id, job_id="replaced") is False
        assert session.get(OrganizationInvite, invite.id).status == InviteStatus.PENDING
