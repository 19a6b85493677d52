"""
Permission management API routes.

Catalog browsing plus grant, revoke and bulk sync of member permissions.
"""
from typing import Annotated, List
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.features.activity.logger import log_activity
from app.features.activity.models import Subject, SubjectKind
from app.features.permissions import service
from app.features.permissions.catalog import CATEGORIES
from app.features.permissions.dependencies import OrgActor, get_org_member, require_permission
from app.features.permissions.models import Permission
from app.features.permissions.resolver import effective_permissions, load_membership
from app.features.permissions.schemas import (
    MemberPermissions,
    PermissionCategory,
    PermissionCheckResponse,
    PermissionGrantRequest,
    PermissionSyncRequest,
    UserPermissionsResponse,
)
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

# Mounted at /permissions
router = APIRouter()

# Mounted under /organizations
org_router = APIRouter()


@router.get("/", response_model=List[PermissionCategory])
async def get_permission_catalog(
    db: Annotated[AsyncSession, Depends(get_db)],
    _user: Annotated[User, Depends(get_current_user)],
):
    """The permission catalog grouped by category."""
    result = await db.execute(select(Permission).order_by(Permission.category, Permission.name))
    by_category: dict[str, list[Permission]] = {}
    for permission in result.scalars().all():
        by_category.setdefault(permission.category, []).append(permission)

    return [
        PermissionCategory(key=key, label=label, permissions=by_category.get(key, []))
        for key, label in CATEGORIES.items()
    ]


async def _user_permissions(db: AsyncSession, organization_id: str, user_id: str) -> UserPermissionsResponse:
    membership = await load_membership(db, user_id, organization_id)
    if membership is None:
        raise NotFoundError("User is not a member of this organization")
    return UserPermissionsResponse(
        user_id=user_id,
        organization_id=organization_id,
        role=membership.role,
        is_admin=membership.is_admin,
        granted=sorted(membership.granted),
        effective=sorted(effective_permissions(membership)),
    )


@org_router.get("/{organization_id}/permissions/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    actor: Annotated[OrgActor, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await _user_permissions(db, actor.organization_id, actor.id)


@org_router.get("/{organization_id}/permissions/check/{permission}", response_model=PermissionCheckResponse)
async def check_my_permission(
    permission: str,
    actor: Annotated[OrgActor, Depends(get_org_member)],
):
    return PermissionCheckResponse(permission=permission, allowed=actor.can(permission))


@org_router.get("/{organization_id}/permissions/members", response_model=List[MemberPermissions])
async def get_member_permissions(
    actor: Annotated[OrgActor, Depends(require_permission("manage_permissions"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Every member with role and granted permissions."""
    return await service.list_member_permissions(db, actor.organization_id)


@org_router.get("/{organization_id}/permissions/users/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    actor: Annotated[OrgActor, Depends(require_permission("manage_permissions"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await _user_permissions(db, actor.organization_id, user_id)


@org_router.post(
    "/{organization_id}/permissions/users/{user_id}/grant",
    response_model=UserPermissionsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_permission(
    user_id: str,
    grant: PermissionGrantRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_permissions"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await service.grant_permission(db, actor.organization_id, user_id, grant.permission, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "permission_granted",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, user_id),
        metadata={"permission": grant.permission},
    )
    return await _user_permissions(db, actor.organization_id, user_id)


@org_router.post(
    "/{organization_id}/permissions/users/{user_id}/revoke",
    response_model=UserPermissionsResponse,
)
async def revoke_permission(
    user_id: str,
    grant: PermissionGrantRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_permissions"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await service.revoke_permission(db, actor.organization_id, user_id, grant.permission, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "permission_revoked",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, user_id),
        metadata={"permission": grant.permission},
    )
    return await _user_permissions(db, actor.organization_id, user_id)


@org_router.put(
    "/{organization_id}/permissions/users/{user_id}",
    response_model=UserPermissionsResponse,
)
async def sync_permissions(
    user_id: str,
    sync: PermissionSyncRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_permissions"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Replace the member's explicit grants with exactly the given set."""
    names = await service.sync_member_permissions(db, actor.organization_id, user_id, sync.permissions, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "permissions_updated",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, user_id),
        metadata={"permissions": names},
    )
    return await _user_permissions(db, actor.organization_id, user_id)
