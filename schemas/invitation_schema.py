from pydantic import BaseModel, EmailStr, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import InviteStatus, MembershipRole


# ============================================================
# ✅ Create Invitation (input)
# ============================================================
class InvitationCreate(BaseModel):
    email: EmailStr
    role: MembershipRole = MembershipRole.MEMBER
    # organization_id comes from the path, inviter from the token


# ============================================================
# ✅ Read Invitation (output)
# ============================================================
class InvitationRead(BaseModel):
    id: int
    organization_id: int
    email: EmailStr
    role: MembershipRole
    status: InviteStatus
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================
# ✅ Accept Invitation
# ============================================================
class InvitationAccept(BaseModel):
    token: str


class MembershipRead(BaseModel):
    id: int
    user_id: int
    organization_id: int
    role: MembershipRole

    model_config = ConfigDict(from_attributes=True)
