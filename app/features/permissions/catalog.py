"""
Static permission catalog.

Permissions are grouped by category. The catalog is synchronized into the
``permissions`` table at startup (and by ``scripts/seed_permissions.py``);
grants reference those rows.
"""
from typing import NamedTuple


class PermissionDefinition(NamedTuple):
    name: str
    display_name: str
    description: str
    category: str


CATEGORIES: dict[str, str] = {
    "members": "Member Management",
    "organization": "Organization Settings",
    "announcements": "Announcements",
    "storage": "Documents & Storage",
    "reviews": "Document Reviews",
    "duty": "Duty Scheduling",
    "analytics": "Analytics & Reports",
    "advanced": "Advanced",
}


PERMISSION_CATALOG: tuple[PermissionDefinition, ...] = (
    # Members
    PermissionDefinition("view_members", "View Members", "View organization members list", "members"),
    PermissionDefinition("invite_members", "Invite Members", "Add new members to the organization", "members"),
    PermissionDefinition("remove_members", "Remove Members", "Remove members from the organization", "members"),
    PermissionDefinition("manage_member_roles", "Manage Member Roles", "Change member roles", "members"),
    PermissionDefinition("approve_join_requests", "Approve Join Requests", "Approve or reject requests to join", "members"),

    # Organization
    PermissionDefinition("view_org_settings", "View Settings", "View organization settings", "organization"),
    PermissionDefinition("edit_org_profile", "Edit Profile", "Edit organization name and description", "organization"),
    PermissionDefinition("manage_org_settings", "Manage Settings", "Change organization settings", "organization"),
    PermissionDefinition("manage_invite_codes", "Manage Invite Codes", "Create and revoke invite codes", "organization"),
    PermissionDefinition("upload_org_logo", "Upload Logo", "Upload the organization logo", "organization"),

    # Announcements
    PermissionDefinition("view_announcements", "View Announcements", "Read organization announcements", "announcements"),
    PermissionDefinition("create_announcements", "Create Announcements", "Publish new announcements", "announcements"),
    PermissionDefinition("edit_announcements", "Edit Announcements", "Edit existing announcements", "announcements"),
    PermissionDefinition("delete_announcements", "Delete Announcements", "Delete announcements", "announcements"),

    # Storage
    PermissionDefinition("view_storage", "View Documents", "Browse organization documents", "storage"),
    PermissionDefinition("upload_documents", "Upload Documents", "Upload documents and new versions", "storage"),
    PermissionDefinition("create_folders", "Create Folders", "Create document folders", "storage"),
    PermissionDefinition("delete_documents", "Delete Documents", "Delete documents", "storage"),
    PermissionDefinition("manage_document_sharing", "Manage Sharing", "Share documents with other organizations", "storage"),

    # Reviews
    PermissionDefinition("view_reviews", "View Reviews", "View review requests of the organization", "reviews"),
    PermissionDefinition("create_reviews", "Create Reviews", "Submit documents for review", "reviews"),
    PermissionDefinition("manage_reviews", "Manage Reviews", "Send, close, reopen and version review requests", "reviews"),
    PermissionDefinition("assign_reviewers", "Assign Reviewers", "Add and remove reviewers", "reviews"),
    PermissionDefinition("comment_on_reviews", "Comment on Reviews", "Comment on review requests", "reviews"),

    # Duty
    PermissionDefinition("view_duty_schedules", "View Duty Schedules", "View the duty roster", "duty"),
    PermissionDefinition("create_duty_schedules", "Create Duty Schedules", "Create and duplicate duty schedules", "duty"),
    PermissionDefinition("edit_duty_schedules", "Edit Duty Schedules", "Edit existing duty schedules", "duty"),
    PermissionDefinition("delete_duty_schedules", "Delete Duty Schedules", "Delete duty schedules", "duty"),
    PermissionDefinition("assign_duties", "Assign Duties", "Assign officers to duties", "duty"),
    PermissionDefinition("approve_duty_swaps", "Approve Duty Swaps", "Review duty swap requests", "duty"),
    PermissionDefinition("manage_duty_templates", "Manage Duty Templates", "Create and edit duty templates", "duty"),

    # Analytics
    PermissionDefinition("view_statistics", "View Statistics", "View organization statistics", "analytics"),
    PermissionDefinition("export_data", "Export Data", "Export organization data", "analytics"),
    PermissionDefinition("view_activity_logs", "View Activity Logs", "View the organization activity log", "analytics"),

    # Advanced
    PermissionDefinition("archive_organization", "Archive Organization", "Archive the organization", "advanced"),
    PermissionDefinition("transfer_ownership", "Transfer Ownership", "Transfer organization ownership", "advanced"),
    PermissionDefinition("manage_permissions", "Manage Permissions", "Grant and revoke member permissions", "advanced"),
)

CATALOG_NAMES: frozenset[str] = frozenset(p.name for p in PERMISSION_CATALOG)

# Self-service capabilities every member holds without a grant record
IMPLICIT_MEMBER_PERMISSIONS: frozenset[str] = frozenset({
    "view_own_assignments",
    "manage_own_availability",
    "request_duty_swap",
    "check_in_duty",
    "check_out_duty",
    "respond_to_assignment",
    "leave_organization",
    "view_own_statistics",
})

KNOWN_PERMISSIONS: frozenset[str] = CATALOG_NAMES | IMPLICIT_MEMBER_PERMISSIONS

ADMIN_ROLES: frozenset[str] = frozenset({"admin", "owner"})
MEMBER_ROLES: tuple[str, ...] = ("admin", "member", "viewer")

DEFAULT_ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "admin": (),
    "member": ("view_announcements",),
    "viewer": ("view_announcements",),
}


def is_admin_role(role: str | None) -> bool:
    return role in ADMIN_ROLES


def default_permissions_for(role: str) -> tuple[str, ...]:
    if is_admin_role(role):
        return ()
    return DEFAULT_ROLE_PERMISSIONS.get(role, ())


def grouped_catalog() -> dict[str, list[PermissionDefinition]]:
    grouped: dict[str, list[PermissionDefinition]] = {key: [] for key in CATEGORIES}
    for definition in PERMISSION_CATALOG:
        grouped[definition.category].append(definition)
    return grouped
