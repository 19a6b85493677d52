"""
Resolver rules, exercised without a database.
"""
from app.features.permissions.catalog import CATALOG_NAMES, IMPLICIT_MEMBER_PERMISSIONS, KNOWN_PERMISSIONS
from app.features.permissions.resolver import (
    MembershipContext,
    authorize,
    effective_permissions,
    has_all,
    has_any,
)


def _member(*granted: str, role: str = "member") -> MembershipContext:
    return MembershipContext(user_id="u1", organization_id="o1", role=role, granted=frozenset(granted))


def test_non_member_is_denied_everything():
    assert authorize(None, "view_members") is False
    assert authorize(None, "view_own_assignments") is False
    assert effective_permissions(None) == set()


def test_admin_bypasses_grants():
    admin = _member(role="admin")
    assert all(authorize(admin, name) for name in CATALOG_NAMES)


def test_legacy_owner_role_is_admin():
    assert authorize(_member(role="owner"), "manage_permissions") is True


def test_unknown_permission_denied_even_for_admins():
    assert authorize(_member(role="admin"), "launch_rockets") is False
    assert authorize(_member("launch_rockets"), "launch_rockets") is False


def test_implicit_member_permissions_need_no_grant():
    member = _member()
    for name in IMPLICIT_MEMBER_PERMISSIONS:
        assert authorize(member, name) is True


def test_explicit_grant_required_for_catalog_permissions():
    assert authorize(_member(), "create_duty_schedules") is False
    assert authorize(_member("create_duty_schedules"), "create_duty_schedules") is True


def test_viewer_role_gets_nothing_beyond_grants():
    viewer = _member("view_announcements", role="viewer")
    assert authorize(viewer, "view_announcements") is True
    assert authorize(viewer, "view_members") is False


def test_has_any_and_has_all():
    member = _member("view_reviews")
    assert has_any(member, ["create_reviews", "view_reviews"]) is True
    assert has_any(member, ["create_reviews", "manage_reviews"]) is False
    assert has_all(member, ["view_reviews", "check_in_duty"]) is True
    assert has_all(member, ["view_reviews", "create_reviews"]) is False
    assert has_all(None, []) is False


def test_effective_permissions():
    assert effective_permissions(_member(role="admin")) == set(KNOWN_PERMISSIONS)
    member = _member("view_members", "not_a_permission")
    assert effective_permissions(member) == set(IMPLICIT_MEMBER_PERMISSIONS) | {"view_members"}
