"""
Pydantic schemas for permission management.
"""
from datetime import datetime
from typing import List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


class PermissionResponse(BaseModel):
    id: str
    name: str
    display_name: str
    description: str | None = None
    category: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionCategory(BaseModel):
    key: str
    label: str
    permissions: List[PermissionResponse]


class MemberPermissions(BaseModel):
    user_id: str
    name: str
    email: str
    role: str
    permissions: Union[Literal["all"], List[str]]


class UserPermissionsResponse(BaseModel):
    user_id: str
    organization_id: str
    role: str
    is_admin: bool
    granted: List[str]
    effective: List[str]


class PermissionGrantRequest(BaseModel):
    permission: str = Field(..., min_length=1, max_length=100)


class PermissionSyncRequest(BaseModel):
    permissions: List[str] = Field(default_factory=list)


class PermissionCheckResponse(BaseModel):
    permission: str
    allowed: bool
