"""
Pydantic schemas for user profiles.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=500)
    bio: str | None = Field(None, max_length=1000)


class MembershipSummary(BaseModel):
    """One organization the user belongs to, with the role held there."""
    organization_id: str
    organization_name: str
    role: str
    is_admin: bool
    joined_at: datetime | None = None


class UserResponse(BaseModel):
    id: str
    email: EmailStr
    name: str
    avatar_url: str | None = None
    bio: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserProfile(UserResponse):
    memberships: list[MembershipSummary] = []


class UserPublic(BaseModel):
    id: str
    name: str
    avatar_url: str | None = None

    model_config = ConfigDict(from_attributes=True)
