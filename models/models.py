# teamflow_backend/models.py
from typing import Optional
from datetime import datetime
from enum import Enum

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


# ============================================================
# ENUMS
# ============================================================
class MembershipRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class Plan(str, Enum):
    BASE = "BASE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionDuration(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALFYEAR = "HALFYEAR"
    YEARLY = "YEARLY"


class SubscriptionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"


class InviteStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class BillingStatus(str, Enum):
    PAID = "PAID"
    FAILED = "FAILED"


class ReminderKind(str, Enum):
    SUBSCRIPTION_3DAY = "3days_email"
    SUBSCRIPTION_1DAY = "1day_email"
    TASK_DUE = "task_due"
    INVITE_EXPIRY = "invite_expiry"


class ResourceKind(str, Enum):
    WORKERS = "workers"
    PROJECTS = "projects"
    TASKS = "tasks"


# ============================================================
# USER / ORGANIZATION (tenant)
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=100, nullable=False)
    first_name: str = Field(max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Organization(SQLModel, table=True):
    __tablename__ = "organization"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    owner_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Membership(SQLModel, table=True):
    __tablename__ = "membership"
    __table_args__ = (UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    role: MembershipRole = Field(default=MembershipRole.MEMBER)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Activity(SQLModel, table=True):
    """Audit trail of billing-relevant actions."""

    __tablename__ = "activity"

    id: Optional[int] = Field(default=None, primary_key=True)
    action: str = Field(max_length=60, index=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================
# PROJECT / TASK
# ============================================================
class Project(SQLModel, table=True):
    __tablename__ = "project"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_project_org_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Task(SQLModel, table=True):
    __tablename__ = "task"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    due_date: Optional[datetime] = None
    project_id: int = Field(foreign_key="project.id", index=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    assigned_to_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    # handle of the pending due-date reminder, cleared when it fires or is cancelled
    due_reminder_job_id: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================
# INVITATION
# ============================================================
class OrganizationInvite(SQLModel, table=True):
    __tablename__ = "organization_invite"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    inviter_id: int = Field(foreign_key="user.id")
    email: str = Field(max_length=100, index=True)
    role: MembershipRole = Field(default=MembershipRole.MEMBER)
    token: str = Field(max_length=255, unique=True, index=True)
    status: InviteStatus = Field(default=InviteStatus.PENDING)
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    expiry_job_id: Optional[str] = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at


# ============================================================
# SUBSCRIPTION
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", unique=True, index=True)

    plan: Plan
    duration: SubscriptionDuration
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING, index=True)
    price: float = Field(default=0.0)

    stripe_customer_id: str = Field(max_length=255, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    payment_method_id: Optional[str] = Field(default=None, max_length=255)

    # "<stripe subscription id>:<period start epoch>", identifies the current PackageRecord
    cycle_id: Optional[str] = Field(default=None, max_length=300)
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: datetime = Field(default_factory=datetime.utcnow)

    cancel_requested: bool = Field(default=False)
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = Field(default=None, max_length=500)

    # creation time of the newest provider event applied to this row
    provider_synced_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SubscriptionFeatures(SQLModel, table=True):
    __tablename__ = "subscription_features"

    id: Optional[int] = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="subscription.id", unique=True, index=True)
    max_workers: int
    max_projects: int
    max_tasks: int


class PackageRecord(SQLModel, table=True):
    """Usage counters for one billing cycle of a subscription."""

    __tablename__ = "package_record"
    __table_args__ = (UniqueConstraint("subscription_id", "cycle_id", name="uq_package_record_cycle"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    subscription_id: int = Field(foreign_key="subscription.id", index=True)
    cycle_id: str = Field(max_length=300)
    period_start: datetime
    period_end: datetime
    is_trial: bool = Field(default=False)

    workers: int = Field(default=0)
    projects: int = Field(default=0)
    tasks: int = Field(default=0)


class ReminderJob(SQLModel, table=True):
    __tablename__ = "reminder_job"
    __table_args__ = (UniqueConstraint("subscription_id", "kind", name="uq_reminder_job_kind"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="subscription.id", index=True)
    kind: ReminderKind
    job_id: str = Field(max_length=64, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Dunning(SQLModel, table=True):
    __tablename__ = "dunning"

    id: Optional[int] = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="subscription.id", unique=True, index=True)
    attempts: int = Field(default=0)
    last_attempt_at: Optional[datetime] = None
    final_failed_at: Optional[datetime] = None


class BillingHistory(SQLModel, table=True):
    __tablename__ = "billing_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="subscription.id", index=True)
    billing_date: datetime
    amount: float = Field(default=0.0)
    payment_method: str = Field(default="card", max_length=30)
    transaction_id: str = Field(max_length=255, unique=True, index=True)
    status: BillingStatus = Field(default=BillingStatus.PAID)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "User",
    "Organization",
    "Membership",
    "Activity",
    "Project",
    "Task",
    "OrganizationInvite",
    "Subscription",
    "SubscriptionFeatures",
    "PackageRecord",
    "ReminderJob",
    "Dunning",
    "BillingHistory",
    "MembershipRole",
    "Plan",
    "SubscriptionDuration",
    "SubscriptionStatus",
    "InviteStatus",
    "TaskStatus",
    "BillingStatus",
    "ReminderKind",
    "ResourceKind",
]
