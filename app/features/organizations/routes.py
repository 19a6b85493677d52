"""
Organization feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, BackgroundTasks, Depends, status, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AuthorizationError
from app.features.activity.logger import log_activity
from app.features.activity.models import Subject, SubjectKind
from app.features.organizations import service
from app.features.organizations.dependencies import get_organization_by_id
from app.features.organizations.models import (
    Organization,
    OrganizationJoinRequest,
    JoinRequestStatus,
    user_organizations,
)
from app.features.organizations.schemas import (
    PROFILE_FIELDS,
    AddMemberRequest,
    JoinRequestCreate,
    JoinRequestResponse,
    JoinRequestReview,
    LeaveOrganizationRequest,
    MemberResponse,
    MyOrganization,
    OrganizationCreate,
    OrganizationPublic,
    OrganizationResponse,
    OrganizationUpdate,
    UpdateMemberRoleRequest,
)
from app.features.permissions.dependencies import OrgActor, get_org_member, require_permission
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


router = APIRouter(tags=["organizations"])


async def _organization_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await service.count_members(db, organization.id)
    return response


# Organization endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization; the caller becomes its admin."""
    organization = await service.create_organization(db, user.id, **org_data.model_dump())
    await db.commit()
    return await _organization_response(db, organization)


@router.get("/", response_model=list[OrganizationPublic])
async def list_organizations(
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = Query(50, le=200),
):
    """List organizations with a public profile."""
    result = await db.execute(
        select(Organization)
        .where(Organization.is_active == True, Organization.public_profile == True)  # noqa: E712
        .order_by(Organization.name)
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/my", response_model=list[MyOrganization])
async def get_my_organizations(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get all organizations the current user is a member of, with their role."""
    result = await db.execute(
        select(Organization.id, Organization.name, user_organizations.c.role, user_organizations.c.joined_at)
        .join(user_organizations, user_organizations.c.organization_id == Organization.id)
        .where(user_organizations.c.user_id == user.id, Organization.is_active == True)  # noqa: E712
        .order_by(Organization.name)
    )
    return [
        MyOrganization(organization_id=org_id, organization_name=name, role=role, joined_at=joined_at)
        for org_id, name, role, joined_at in result.all()
    ]


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    actor: Annotated[OrgActor, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization details (members only)."""
    return await _organization_response(db, actor.organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    update_data: OrganizationUpdate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update profile fields (edit_org_profile) and settings flags (manage_org_settings)."""
    update_dict = update_data.model_dump(exclude_unset=True)
    touched = set(update_dict)
    if touched & PROFILE_FIELDS and not actor.can("edit_org_profile"):
        raise AuthorizationError("Permission denied: edit_org_profile", required_permission="edit_org_profile")
    if touched - PROFILE_FIELDS and not actor.can("manage_org_settings"):
        raise AuthorizationError("Permission denied: manage_org_settings", required_permission="manage_org_settings")

    organization = actor.organization
    for field, value in update_dict.items():
        setattr(organization, field, value)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        organization.id,
        "organization_updated",
        user_id=actor.id,
        subject=Subject(SubjectKind.ORGANIZATION, organization.id),
        metadata={"fields": sorted(touched)},
    )
    return await _organization_response(db, organization)


# Member management
@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_organization_members(
    actor: Annotated[OrgActor, Depends(require_permission("view_members"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    return await service.list_members(db, actor.organization_id)


@router.post("/{organization_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_organization_member(
    add_data: AddMemberRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to the organization (invite_members, or any member when member_can_invite is on)."""
    if not (actor.can("invite_members") or actor.organization.member_can_invite):
        raise AuthorizationError("Permission denied: invite_members", required_permission="invite_members")
    if add_data.role == "admin" and not actor.can("manage_member_roles"):
        raise AuthorizationError("Permission denied: manage_member_roles", required_permission="manage_member_roles")

    await service.add_member(db, actor.organization_id, add_data.user_id, add_data.role, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "member_added",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, add_data.user_id),
        metadata={"role": add_data.role},
    )
    members = await service.list_members(db, actor.organization_id)
    return next(m for m in members if m["user_id"] == add_data.user_id)


@router.patch("/{organization_id}/members/{user_id}", response_model=MemberResponse)
async def update_member_role(
    user_id: str,
    role_data: UpdateMemberRoleRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_member_roles"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    old_role = await service.update_member_role(db, actor.organization_id, user_id, role_data.role, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "member_role_updated",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, user_id),
        metadata={"old_role": old_role, "new_role": role_data.role},
    )
    members = await service.list_members(db, actor.organization_id)
    return next(m for m in members if m["user_id"] == user_id)


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("remove_members"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    role = await service.remove_member(db, actor.organization_id, user_id, actor.id)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "member_removed",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, user_id),
        metadata={"role": role},
    )


@router.post("/{organization_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_organization(
    leave_data: LeaveOrganizationRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("leave_organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Leave the organization; the last admin must hand over to another member."""
    promoted = await service.leave_organization(db, actor.organization_id, actor.id, leave_data.new_admin_id)
    await db.commit()

    if promoted:
        background_tasks.add_task(
            log_activity,
            actor.organization_id,
            "ownership_transferred",
            user_id=actor.id,
            subject=Subject(SubjectKind.USER, promoted),
            metadata={"new_admin_id": promoted},
        )
    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "member_left",
        user_id=actor.id,
        subject=Subject(SubjectKind.USER, actor.id),
    )


# Join requests
@router.post("/{organization_id}/join-requests", response_model=JoinRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_join_request(
    request_data: JoinRequestCreate,
    background_tasks: BackgroundTasks,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Ask to join an organization; approved at once when it auto-accepts."""
    join_request = await service.request_to_join(db, organization, user.id, request_data.message)
    await db.commit()

    background_tasks.add_task(
        log_activity,
        organization.id,
        "join_requested" if join_request.status == JoinRequestStatus.PENDING else "member_joined",
        user_id=user.id,
        subject=Subject(SubjectKind.JOIN_REQUEST, join_request.id),
    )
    return join_request


@router.get("/{organization_id}/join-requests", response_model=list[JoinRequestResponse])
async def list_join_requests(
    actor: Annotated[OrgActor, Depends(require_permission("approve_join_requests"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: JoinRequestStatus | None = None
):
    query = select(OrganizationJoinRequest).where(
        OrganizationJoinRequest.organization_id == actor.organization_id
    )
    if status_filter:
        query = query.where(OrganizationJoinRequest.status == status_filter)

    result = await db.execute(query.order_by(OrganizationJoinRequest.created_at.desc()))
    return result.scalars().all()


@router.post("/{organization_id}/join-requests/{request_id}/review", response_model=JoinRequestResponse)
async def review_join_request(
    request_id: str,
    review_data: JoinRequestReview,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("approve_join_requests"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    join_request = await service.review_join_request(
        db,
        actor.organization_id,
        request_id,
        approved=review_data.approved,
        reviewer_id=actor.id,
        role=review_data.role,
        review_message=review_data.review_message,
    )
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "join_request_approved" if review_data.approved else "join_request_rejected",
        user_id=actor.id,
        subject=Subject(SubjectKind.JOIN_REQUEST, join_request.id),
        metadata={"requester_id": join_request.user_id},
    )
    return join_request
