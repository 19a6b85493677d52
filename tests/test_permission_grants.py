"""
Grant management, role defaults and membership invariants.
"""
import pytest

from app.core.errors import ConflictError, InvalidStateTransition, NotFoundError, ValidationError
from app.features.organizations import service as organizations
from app.features.permissions import service as permissions
from app.features.permissions.catalog import PERMISSION_CATALOG
from app.features.permissions.resolver import (
    check_permission,
    get_granted_names,
    get_member_role,
    load_membership,
)


async def test_catalog_sync_is_idempotent(db):
    assert await permissions.sync_permission_catalog(db) == 0


async def test_catalog_is_fully_provisioned(db):
    names = [definition.name for definition in PERMISSION_CATALOG]
    ids = await permissions.resolve_permission_ids(db, names)
    assert set(ids) == set(names)


async def test_new_member_gets_role_defaults(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user())

    assert await get_granted_names(db, member.id, org.id) == ["view_announcements"]
    assert await get_granted_names(db, admin.id, org.id) == []


async def test_grant_then_check(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user())

    assert await check_permission(db, member.id, org.id, "view_reviews") is False
    await permissions.grant_permission(db, org.id, member.id, "view_reviews", admin.id)
    assert await check_permission(db, member.id, org.id, "view_reviews") is True


async def test_duplicate_grant_conflicts(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    with pytest.raises(ConflictError):
        await permissions.grant_permission(db, org.id, member.id, "view_reviews", admin.id)


async def test_unknown_permission_rejected(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user())

    with pytest.raises(ValidationError):
        await permissions.grant_permission(db, org.id, member.id, "launch_rockets", admin.id)


async def test_admin_grants_cannot_be_edited(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    other_admin = await make.member(org, await make.user(), "admin")

    with pytest.raises(ValidationError):
        await permissions.grant_permission(db, org.id, other_admin.id, "view_reviews", admin.id)


async def test_revoke_missing_grant_not_found(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user())

    with pytest.raises(NotFoundError):
        await permissions.revoke_permission(db, org.id, member.id, "view_reviews", admin.id)


async def test_sync_replaces_grants(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    await permissions.sync_member_permissions(db, org.id, member.id, ["assign_duties", "view_members"], admin.id)
    assert sorted(await get_granted_names(db, member.id, org.id)) == ["assign_duties", "view_members"]


async def test_promotion_clears_grants_and_demotion_restores_defaults(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    await organizations.update_member_role(db, org.id, member.id, "admin", admin.id)
    assert await get_granted_names(db, member.id, org.id) == []
    membership = await load_membership(db, member.id, org.id)
    assert membership.is_admin

    await organizations.update_member_role(db, org.id, member.id, "member", admin.id)
    assert await get_granted_names(db, member.id, org.id) == ["view_announcements"]


async def test_member_viewer_switch_keeps_grants(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    await organizations.update_member_role(db, org.id, member.id, "viewer", admin.id)
    assert sorted(await get_granted_names(db, member.id, org.id)) == ["view_announcements", "view_reviews"]


async def test_duplicate_membership_conflicts(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user())

    with pytest.raises(ConflictError):
        await organizations.add_member(db, org.id, member.id, "member", admin.id)


async def test_last_admin_cannot_be_demoted_or_removed(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    second = await make.member(org, await make.user(), "admin")

    await organizations.update_member_role(db, org.id, admin.id, "member", second.id)
    with pytest.raises(InvalidStateTransition):
        await organizations.update_member_role(db, org.id, second.id, "member", admin.id)
    with pytest.raises(InvalidStateTransition):
        await organizations.remove_member(db, org.id, second.id, admin.id)
    assert await organizations.count_admins(db, org.id) == 1


async def test_last_admin_leaving_must_hand_over(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    with pytest.raises(ValidationError):
        await organizations.leave_organization(db, org.id, admin.id)

    promoted = await organizations.leave_organization(db, org.id, admin.id, new_admin_id=member.id)
    assert promoted == member.id
    assert await get_member_role(db, admin.id, org.id) is None
    assert await get_member_role(db, member.id, org.id) == "admin"
    assert await get_granted_names(db, member.id, org.id) == []


async def test_removed_member_loses_grants(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    member = await make.member(org, await make.user(), "member", "view_reviews")

    await organizations.remove_member(db, org.id, member.id, admin.id)
    assert await load_membership(db, member.id, org.id) is None
    assert await get_granted_names(db, member.id, org.id) == []
