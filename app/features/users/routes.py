"""
User profile routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.features.organizations.models import Organization, user_organizations
from app.features.permissions.catalog import is_admin_role
from app.features.users.models import User
from app.features.users.schemas import MembershipSummary, UserProfile, UserPublic, UserResponse, UserUpdate
from app.features.users.dependencies import get_current_user


router = APIRouter(tags=["users"])


async def _memberships(db: AsyncSession, user_id: str) -> list[MembershipSummary]:
    result = await db.execute(
        select(Organization.id, Organization.name, user_organizations.c.role, user_organizations.c.joined_at)
        .join(user_organizations, user_organizations.c.organization_id == Organization.id)
        .where(user_organizations.c.user_id == user_id, Organization.is_active.is_(True))
        .order_by(Organization.name)
    )
    return [
        MembershipSummary(
            organization_id=org_id,
            organization_name=name,
            role=role,
            is_admin=is_admin_role(role),
            joined_at=joined_at,
        )
        for org_id, name, role, joined_at in result.all()
    ]


@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """The caller's profile and every organization role they hold."""
    profile = UserProfile.model_validate(user)
    profile.memberships = await _memberships(db, user.id)
    return profile


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    for field, value in update_data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)

    await db.commit()
    return user


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _user: Annotated[User, Depends(get_current_user)]
):
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found")
    return user
