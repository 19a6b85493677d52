"""
Membership operations.

Every operation that can remove an admin (demotion, removal, leave) locks the
organization's admin rows and refuses to leave the organization without one.
"""
from typing import Optional

from sqlalchemy import select, update, delete, insert, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import ConflictError, InvalidStateTransition, NotFoundError, ValidationError
from app.features.organizations.models import (
    JoinRequestStatus,
    MemberRole,
    Organization,
    OrganizationJoinRequest,
    user_organizations,
)
from app.features.permissions.catalog import ADMIN_ROLES, is_admin_role
from app.features.permissions.resolver import get_member_role
from app.features.permissions.service import (
    apply_role_change,
    delete_all_grants,
    grant_default_permissions,
)
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def _membership_clause(organization_id: str, user_id: str):
    return and_(
        user_organizations.c.organization_id == organization_id,
        user_organizations.c.user_id == user_id,
    )


async def count_admins(db: AsyncSession, organization_id: str) -> int:
    """Count admins, locking their membership rows for the rest of the transaction."""
    result = await db.execute(
        select(user_organizations.c.user_id)
        .where(
            and_(
                user_organizations.c.organization_id == organization_id,
                user_organizations.c.role.in_(ADMIN_ROLES),
            )
        )
        .with_for_update()
    )
    return len(result.all())


async def count_members(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(user_organizations).where(
            user_organizations.c.organization_id == organization_id
        )
    )
    return result.scalar_one()


async def create_organization(db: AsyncSession, creator_id: str, **fields) -> Organization:
    organization = Organization(created_by_id=creator_id, **fields)
    db.add(organization)
    await db.flush()

    await db.execute(
        insert(user_organizations).values(
            user_id=creator_id,
            organization_id=organization.id,
            role=MemberRole.ADMIN.value,
        )
    )
    log.info("Organization %s created by %s", organization.id, creator_id)
    return organization


async def add_member(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    role: str,
    actor_id: Optional[str],
) -> None:
    """Create a membership and grant the role's default permissions."""
    result = await db.execute(select(User.id).where(User.id == user_id))
    if result.scalar_one_or_none() is None:
        raise NotFoundError("User not found")

    if await get_member_role(db, user_id, organization_id) is not None:
        raise ConflictError("User is already a member of this organization")

    await db.execute(
        insert(user_organizations).values(
            user_id=user_id,
            organization_id=organization_id,
            role=role,
        )
    )
    await grant_default_permissions(db, organization_id, user_id, role, actor_id)
    log.info("User %s joined org %s as %s", user_id, organization_id, role)


async def update_member_role(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    new_role: str,
    actor_id: str,
) -> str:
    """
    Change a member's role.

    Returns:
        The previous role
    """
    if user_id == actor_id:
        raise ValidationError("You cannot change your own role")

    old_role = await get_member_role(db, user_id, organization_id)
    if old_role is None:
        raise NotFoundError("User is not a member of this organization")
    if old_role == new_role:
        return old_role

    if is_admin_role(old_role) and not is_admin_role(new_role):
        if await count_admins(db, organization_id) <= 1:
            raise InvalidStateTransition("Cannot demote the last admin of the organization")

    await db.execute(
        update(user_organizations)
        .where(_membership_clause(organization_id, user_id))
        .values(role=new_role)
    )
    await apply_role_change(db, organization_id, user_id, old_role, new_role, actor_id)
    log.info("Role of user %s in org %s changed %s -> %s by %s", user_id, organization_id, old_role, new_role, actor_id)
    return old_role


async def _detach_member(db: AsyncSession, organization_id: str, user_id: str) -> None:
    await delete_all_grants(db, organization_id, user_id)
    await db.execute(delete(user_organizations).where(_membership_clause(organization_id, user_id)))


async def remove_member(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    actor_id: str,
) -> str:
    if user_id == actor_id:
        raise ValidationError("You cannot remove yourself; leave the organization instead")

    role = await get_member_role(db, user_id, organization_id)
    if role is None:
        raise NotFoundError("User is not a member of this organization")

    if is_admin_role(role) and await count_admins(db, organization_id) <= 1:
        raise InvalidStateTransition("Cannot remove the last admin of the organization")

    await _detach_member(db, organization_id, user_id)
    log.info("User %s removed from org %s by %s", user_id, organization_id, actor_id)
    return role


async def leave_organization(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    new_admin_id: Optional[str] = None,
) -> Optional[str]:
    """
    Leave the organization.

    The last admin must name another member, who is promoted first.

    Returns:
        The promoted member's id when an admin hand-over happened
    """
    role = await get_member_role(db, user_id, organization_id)
    if role is None:
        raise NotFoundError("You are not a member of this organization")

    promoted = None
    if is_admin_role(role) and await count_admins(db, organization_id) <= 1:
        if not new_admin_id:
            raise ValidationError(
                "You are the last admin. Choose a member to become admin before leaving.",
                field="new_admin_id",
            )
        if new_admin_id == user_id:
            raise ValidationError("The new admin must be another member", field="new_admin_id")

        successor_role = await get_member_role(db, new_admin_id, organization_id)
        if successor_role is None:
            raise NotFoundError("The new admin must be a member of this organization")

        await db.execute(
            update(user_organizations)
            .where(_membership_clause(organization_id, new_admin_id))
            .values(role=MemberRole.ADMIN.value)
        )
        await apply_role_change(db, organization_id, new_admin_id, successor_role, MemberRole.ADMIN.value, user_id)
        promoted = new_admin_id
        log.info("Admin of org %s handed over from %s to %s", organization_id, user_id, new_admin_id)

    await _detach_member(db, organization_id, user_id)
    log.info("User %s left org %s", user_id, organization_id)
    return promoted


async def list_members(db: AsyncSession, organization_id: str) -> list[dict]:
    result = await db.execute(
        select(User.id, User.name, User.email, user_organizations.c.role, user_organizations.c.joined_at)
        .join(user_organizations, user_organizations.c.user_id == User.id)
        .where(user_organizations.c.organization_id == organization_id)
        .order_by(user_organizations.c.joined_at, User.name)
    )
    return [
        {"user_id": uid, "name": name, "email": email, "role": role, "joined_at": joined_at}
        for uid, name, email, role, joined_at in result.all()
    ]


# ============================================================================
# Join requests
# ============================================================================

async def request_to_join(
    db: AsyncSession,
    organization: Organization,
    user_id: str,
    message: Optional[str] = None,
) -> OrganizationJoinRequest:
    if await get_member_role(db, user_id, organization.id) is not None:
        raise ConflictError("You are already a member of this organization")

    result = await db.execute(
        select(OrganizationJoinRequest.id).where(
            and_(
                OrganizationJoinRequest.user_id == user_id,
                OrganizationJoinRequest.organization_id == organization.id,
                OrganizationJoinRequest.status == JoinRequestStatus.PENDING,
            )
        )
    )
    if result.first() is not None:
        raise ConflictError("You already have a pending request for this organization")

    join_request = OrganizationJoinRequest(
        user_id=user_id,
        organization_id=organization.id,
        message=message,
    )
    db.add(join_request)

    if organization.auto_accept_invites:
        join_request.status = JoinRequestStatus.APPROVED
        join_request.reviewed_at = utcnow()
        await add_member(db, organization.id, user_id, MemberRole.MEMBER.value, None)

    await db.flush()
    return join_request


async def review_join_request(
    db: AsyncSession,
    organization_id: str,
    request_id: str,
    approved: bool,
    reviewer_id: str,
    role: str = MemberRole.MEMBER.value,
    review_message: Optional[str] = None,
) -> OrganizationJoinRequest:
    result = await db.execute(
        select(OrganizationJoinRequest)
        .where(
            and_(
                OrganizationJoinRequest.id == request_id,
                OrganizationJoinRequest.organization_id == organization_id,
            )
        )
        .with_for_update()
    )
    join_request = result.scalar_one_or_none()
    if join_request is None:
        raise NotFoundError("Join request not found")
    if join_request.status != JoinRequestStatus.PENDING:
        raise InvalidStateTransition("This request has already been reviewed")

    join_request.status = JoinRequestStatus.APPROVED if approved else JoinRequestStatus.REJECTED
    join_request.reviewed_by_id = reviewer_id
    join_request.reviewed_at = utcnow()
    join_request.review_message = review_message

    if approved:
        await add_member(db, organization_id, join_request.user_id, role, reviewer_id)

    await db.flush()
    return join_request
