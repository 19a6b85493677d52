"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr

from app.features.organizations.models import JoinRequestStatus


ROLE_PATTERN = "^(admin|member|viewer)$"


class OrganizationSettings(BaseModel):
    auto_accept_invites: bool = False
    public_profile: bool = True
    member_can_invite: bool = False


class OrganizationCreate(OrganizationSettings):
    """Schema for creating a new organization; the creator becomes admin."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)


class OrganizationUpdate(BaseModel):
    """Profile fields need edit_org_profile, settings flags need manage_org_settings."""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=5000)
    auto_accept_invites: bool | None = None
    public_profile: bool | None = None
    member_can_invite: bool | None = None


PROFILE_FIELDS = frozenset({"name", "description"})


class OrganizationResponse(OrganizationSettings):
    id: str
    name: str
    description: str | None = None
    is_active: bool
    created_by_id: str | None = None
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of users in this organization")

    model_config = {"from_attributes": True}


class OrganizationPublic(BaseModel):
    """Public organization information (limited fields)."""
    id: str
    name: str
    description: str | None = None

    model_config = {"from_attributes": True}


class MyOrganization(BaseModel):
    organization_id: str
    organization_name: str
    role: str
    joined_at: datetime


# Members
class MemberResponse(BaseModel):
    user_id: str
    name: str
    email: EmailStr
    role: str
    joined_at: datetime


class AddMemberRequest(BaseModel):
    user_id: str = Field(..., description="ID of the user to add")
    role: str = Field(default="member", pattern=ROLE_PATTERN)


class UpdateMemberRoleRequest(BaseModel):
    role: str = Field(..., pattern=ROLE_PATTERN)


class LeaveOrganizationRequest(BaseModel):
    new_admin_id: str | None = Field(
        None, description="Member to promote when the caller is the last admin"
    )


# Join requests
class JoinRequestCreate(BaseModel):
    message: str | None = Field(None, max_length=1000, description="Optional message to organization admins")


class JoinRequestReview(BaseModel):
    approved: bool = Field(..., description="True to approve, False to reject")
    role: str = Field(default="member", pattern="^(member|viewer)$")
    review_message: str | None = Field(None, max_length=1000)


class JoinRequestResponse(BaseModel):
    id: str
    user_id: str
    organization_id: str
    status: JoinRequestStatus
    message: str | None = None
    reviewed_by_id: str | None = None
    reviewed_at: datetime | None = None
    review_message: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
