"""
Permission resolver.

``authorize`` is a pure function over a loaded ``MembershipContext``; the
async loader below is the only part that touches the database. Every admin
bypass in the codebase goes through this module.

Resolution order:
1. not a member of the organization -> deny
2. role admin (or legacy owner) -> allow
3. implicit member permission -> allow
4. explicit grant present -> allow, otherwise deny

Unknown permission names are denied for everyone, admins included.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import user_organizations
from app.features.permissions.catalog import (
    ADMIN_ROLES,
    IMPLICIT_MEMBER_PERMISSIONS,
    KNOWN_PERMISSIONS,
)
from app.features.permissions.models import Permission, organization_user_permissions


@dataclass(frozen=True)
class MembershipContext:
    """Everything the resolver needs to know about one actor in one organization."""
    user_id: str
    organization_id: str
    role: str
    granted: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def is_admin(membership: Optional[MembershipContext]) -> bool:
    return membership is not None and membership.is_admin


def authorize(membership: Optional[MembershipContext], permission_name: str) -> bool:
    if membership is None:
        return False
    if permission_name not in KNOWN_PERMISSIONS:
        return False
    if membership.is_admin:
        return True
    if permission_name in IMPLICIT_MEMBER_PERMISSIONS:
        return True
    return permission_name in membership.granted


def has_any(membership: Optional[MembershipContext], permission_names: Iterable[str]) -> bool:
    return any(authorize(membership, name) for name in permission_names)


def has_all(membership: Optional[MembershipContext], permission_names: Iterable[str]) -> bool:
    if membership is None:
        return False
    return all(authorize(membership, name) for name in permission_names)


def effective_permissions(membership: Optional[MembershipContext]) -> set[str]:
    """Every known permission name ``membership`` currently resolves to."""
    if membership is None:
        return set()
    if membership.is_admin:
        return set(KNOWN_PERMISSIONS)
    return set(IMPLICIT_MEMBER_PERMISSIONS) | (set(membership.granted) & KNOWN_PERMISSIONS)


# ============================================================================
# Loading
# ============================================================================

async def get_member_role(db: AsyncSession, user_id: str, organization_id: str) -> Optional[str]:
    result = await db.execute(
        select(user_organizations.c.role).where(
            and_(
                user_organizations.c.user_id == user_id,
                user_organizations.c.organization_id == organization_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def get_granted_names(db: AsyncSession, user_id: str, organization_id: str) -> list[str]:
    result = await db.execute(
        select(Permission.name)
        .join(organization_user_permissions, organization_user_permissions.c.permission_id == Permission.id)
        .where(
            and_(
                organization_user_permissions.c.user_id == user_id,
                organization_user_permissions.c.organization_id == organization_id,
            )
        )
    )
    return list(result.scalars().all())


async def load_membership(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
) -> Optional[MembershipContext]:
    """Load the actor's role and grants, or None when they are not a member."""
    role = await get_member_role(db, user_id, organization_id)
    if role is None:
        return None
    if role in ADMIN_ROLES:
        granted: frozenset[str] = frozenset()
    else:
        granted = frozenset(await get_granted_names(db, user_id, organization_id))
    return MembershipContext(
        user_id=user_id,
        organization_id=organization_id,
        role=role,
        granted=granted,
    )


async def check_permission(
    db: AsyncSession,
    user_id: str,
    organization_id: Optional[str],
    permission_name: str,
) -> bool:
    """Load-and-authorize convenience for engine code."""
    if not organization_id:
        return False
    membership = await load_membership(db, user_id, organization_id)
    return authorize(membership, permission_name)
