"""
Permission catalog rows and per-member grants.

Grants are organization-scoped: (organization, user, permission) with the
granter and timestamp. Admins never need grant rows.
"""
from sqlalchemy import String, ForeignKey, Table, Column, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


organization_user_permissions = Table(
    "organization_user_permissions",
    Base.metadata,
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("granted_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("granted_by_id", String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
)


class Permission(Base, TimestampMixin):
    """A named capability from the static catalog."""
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r}, category={self.category})>"
