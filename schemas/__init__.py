from .invitation_schema import InvitationCreate, InvitationRead, InvitationAccept, MembershipRead
from .organization_schema import OrganizationCreate, OrganizationRead, CheckoutResponse
from .project_schema import ProjectCreate, ProjectRead
from .subscription_schema import (
    SubscriptionRead, SubscriptionCreate,
    CancelRequest, RestartRequest,
    PlanChangeRequest, PlanChangeResponse,
    UsageRead, BillingHistoryRead,
)
from .task_schema import TaskCreate, TaskRead, TaskUpdate

__all__ = [
    # Invitation
    "InvitationCreate", "InvitationRead", "InvitationAccept", "MembershipRead",

    # Organization
    "OrganizationCreate", "OrganizationRead", "CheckoutResponse",

    # Project
    "ProjectCreate", "ProjectRead",

    # Subscription
    "SubscriptionRead", "SubscriptionCreate",
    "CancelRequest", "RestartRequest",
    "PlanChangeRequest", "PlanChangeResponse",
    "UsageRead", "BillingHistoryRead",

    # Task
    "TaskCreate", "TaskRead", "TaskUpdate",
]
