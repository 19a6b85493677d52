"""
FastAPI dependencies for organization-scoped authorization.

Every route guarded here resolves the organization from the path, loads the
caller's membership and asks the resolver. Failures raise AuthorizationError
carrying the permission that was required.
"""
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AuthorizationError
from app.features.organizations.dependencies import get_organization_by_id
from app.features.organizations.models import Organization
from app.features.permissions.resolver import MembershipContext, authorize, load_membership
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class OrgActor:
    """The authenticated caller acting inside one organization."""
    user: User
    organization: Organization
    membership: MembershipContext

    @property
    def id(self) -> str:
        return self.user.id

    @property
    def organization_id(self) -> str:
        return self.organization.id

    def can(self, permission_name: str) -> bool:
        return authorize(self.membership, permission_name)


async def get_org_member(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> OrgActor:
    """Require that the caller belongs to the organization in the path."""
    organization = await get_organization_by_id(organization_id, db)
    membership = await load_membership(db, current_user.id, organization.id)
    if membership is None:
        log.debug("User %s is not a member of org %s", current_user.id, organization.id)
        raise AuthorizationError("You are not a member of this organization")
    return OrgActor(user=current_user, organization=organization, membership=membership)


def require_permission(permission_name: str):
    """
    FastAPI dependency to require a specific organization permission.

    Usage:
        @router.post("/{organization_id}/duty-schedules")
        async def create_schedule(
            actor: Annotated[OrgActor, Depends(require_permission("create_duty_schedules"))]
        ):
            ...
    """
    async def permission_dependency(
        actor: Annotated[OrgActor, Depends(get_org_member)],
    ) -> OrgActor:
        if not actor.can(permission_name):
            log.debug(
                "User %s denied %s in org %s", actor.id, permission_name, actor.organization_id
            )
            raise AuthorizationError(
                f"Permission denied: {permission_name}",
                required_permission=permission_name,
            )
        return actor

    return permission_dependency
