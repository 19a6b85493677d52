"""
Grant management and the default-grant policy.

Role defaults are applied when a membership is created and adjusted when a
role changes:
- member/viewer start with exactly ``view_announcements``
- promotion to admin deletes every explicit grant (admins bypass them)
- demotion from admin re-grants the new role's defaults only
- member <-> viewer leaves grants untouched
"""
from typing import Iterable, Optional

from sqlalchemy import select, delete, insert, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.features.organizations.models import user_organizations
from app.features.permissions.catalog import (
    CATALOG_NAMES,
    PERMISSION_CATALOG,
    default_permissions_for,
    is_admin_role,
)
from app.features.permissions.models import Permission, organization_user_permissions
from app.features.permissions.resolver import get_granted_names, get_member_role
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def sync_permission_catalog(db: AsyncSession) -> int:
    """
    Make the ``permissions`` table match the static catalog.

    Returns:
        Number of permissions created
    """
    result = await db.execute(select(Permission))
    existing = {p.name: p for p in result.scalars().all()}

    created = 0
    for definition in PERMISSION_CATALOG:
        permission = existing.get(definition.name)
        if permission is None:
            db.add(Permission(
                name=definition.name,
                display_name=definition.display_name,
                description=definition.description,
                category=definition.category,
            ))
            created += 1
            continue
        permission.display_name = definition.display_name
        permission.description = definition.description
        permission.category = definition.category

    await db.flush()
    if created:
        log.info("Created %d catalog permissions", created)
    return created


async def resolve_permission_ids(db: AsyncSession, names: Iterable[str]) -> dict[str, str]:
    """Map catalog names to permission row ids; unknown names are rejected."""
    wanted = set(names)
    unknown = sorted(wanted - CATALOG_NAMES)
    if unknown:
        raise ValidationError(f"Unknown permission: {', '.join(unknown)}", permissions=unknown)
    if not wanted:
        return {}

    result = await db.execute(select(Permission.name, Permission.id).where(Permission.name.in_(wanted)))
    ids = {name: permission_id for name, permission_id in result.all()}
    missing = sorted(wanted - ids.keys())
    if missing:
        raise ValidationError(f"Permission not provisioned: {', '.join(missing)}", permissions=missing)
    return ids


async def _insert_grants(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    permission_ids: Iterable[str],
    granted_by_id: Optional[str],
) -> None:
    rows = [
        {
            "organization_id": organization_id,
            "user_id": user_id,
            "permission_id": permission_id,
            "granted_by_id": granted_by_id,
        }
        for permission_id in permission_ids
    ]
    if rows:
        await db.execute(insert(organization_user_permissions), rows)


async def delete_all_grants(db: AsyncSession, organization_id: str, user_id: str) -> None:
    await db.execute(
        delete(organization_user_permissions).where(
            and_(
                organization_user_permissions.c.organization_id == organization_id,
                organization_user_permissions.c.user_id == user_id,
            )
        )
    )


async def grant_default_permissions(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    role: str,
    granted_by_id: Optional[str] = None,
) -> list[str]:
    """Grant the role's defaults that the user does not already hold."""
    defaults = default_permissions_for(role)
    if not defaults:
        return []

    held = set(await get_granted_names(db, user_id, organization_id))
    to_grant = [name for name in defaults if name not in held]
    ids = await resolve_permission_ids(db, to_grant)
    await _insert_grants(db, organization_id, user_id, ids.values(), granted_by_id)
    return to_grant


async def apply_role_change(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    old_role: str,
    new_role: str,
    actor_id: Optional[str] = None,
) -> None:
    if is_admin_role(new_role) and not is_admin_role(old_role):
        await delete_all_grants(db, organization_id, user_id)
        log.info("Cleared grants of user %s promoted to admin in org %s", user_id, organization_id)
    elif is_admin_role(old_role) and not is_admin_role(new_role):
        await grant_default_permissions(db, organization_id, user_id, new_role, actor_id)
        log.info("Granted %s defaults to user %s demoted in org %s", new_role, user_id, organization_id)


async def _require_grantable_member(db: AsyncSession, organization_id: str, user_id: str) -> str:
    role = await get_member_role(db, user_id, organization_id)
    if role is None:
        raise NotFoundError("User is not a member of this organization")
    if is_admin_role(role):
        raise ValidationError("Cannot modify permissions for admin users")
    return role


async def grant_permission(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    permission_name: str,
    actor_id: str,
) -> None:
    await _require_grantable_member(db, organization_id, user_id)
    ids = await resolve_permission_ids(db, [permission_name])

    if permission_name in await get_granted_names(db, user_id, organization_id):
        raise ConflictError("User already has this permission", permission=permission_name)

    await _insert_grants(db, organization_id, user_id, ids.values(), actor_id)
    log.info("Granted %s to user %s in org %s", permission_name, user_id, organization_id)


async def revoke_permission(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    permission_name: str,
    actor_id: str,
) -> None:
    await _require_grantable_member(db, organization_id, user_id)
    ids = await resolve_permission_ids(db, [permission_name])

    result = await db.execute(
        delete(organization_user_permissions).where(
            and_(
                organization_user_permissions.c.organization_id == organization_id,
                organization_user_permissions.c.user_id == user_id,
                organization_user_permissions.c.permission_id == ids[permission_name],
            )
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("User does not have this permission", permission=permission_name)
    log.info("Revoked %s from user %s in org %s by %s", permission_name, user_id, organization_id, actor_id)


async def sync_member_permissions(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    permission_names: Iterable[str],
    actor_id: str,
) -> list[str]:
    """Replace the member's grants with exactly ``permission_names``."""
    await _require_grantable_member(db, organization_id, user_id)
    names = sorted(set(permission_names))
    ids = await resolve_permission_ids(db, names)

    await delete_all_grants(db, organization_id, user_id)
    await _insert_grants(db, organization_id, user_id, ids.values(), actor_id)
    log.info("Synced %d permissions for user %s in org %s", len(names), user_id, organization_id)
    return names


async def list_member_permissions(db: AsyncSession, organization_id: str) -> list[dict]:
    """Every member of the organization with their role and granted names."""
    members = await db.execute(
        select(User.id, User.name, User.email, user_organizations.c.role)
        .join(user_organizations, user_organizations.c.user_id == User.id)
        .where(user_organizations.c.organization_id == organization_id)
        .order_by(User.name)
    )
    grants = await db.execute(
        select(organization_user_permissions.c.user_id, Permission.name)
        .join(Permission, Permission.id == organization_user_permissions.c.permission_id)
        .where(organization_user_permissions.c.organization_id == organization_id)
    )
    by_user: dict[str, list[str]] = {}
    for member_id, name in grants.all():
        by_user.setdefault(member_id, []).append(name)

    return [
        {
            "user_id": member_id,
            "name": name,
            "email": email,
            "role": role,
            "permissions": "all" if is_admin_role(role) else sorted(by_user.get(member_id, [])),
        }
        for member_id, name, email, role in members.all()
    ]
