"""
Role templates: named bundles of default grants.

Well-known roles are applied by lifecycle events:
- created_group: to the creator, scoped to the new group
- add_member: to the new member, scoped to the group
- created_user: to the new user, globally
"""
from sqlalchemy import String, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.capabilities.models import AccessType, access_type_enum


CREATED_GROUP_ROLE_KEY = "created_group"
ADD_MEMBER_ROLE_KEY = "add_member"
CREATED_USER_ROLE_KEY = "created_user"


class Role(Base, TimestampMixin):
    """Named template maintained by administrators."""
    __tablename__ = "roles"

    value_key: Mapped[str] = mapped_column(String(45), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    permissions: Mapped[list["RolePermission"]] = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RolePermission.resource_key",
    )

    def __repr__(self) -> str:
        return f"<Role(value_key={self.value_key!r}, name={self.name!r})>"


class RolePermission(Base, TimestampMixin):
    """Anchor for a role's template on one resource."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_key", "resource_key", name="uq_role_permission_resource"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    role_key: Mapped[str] = mapped_column(
        String(45),
        ForeignKey("roles.value_key", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    resource_key: Mapped[str] = mapped_column(
        String(45),
        ForeignKey("resources.key", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped["Role"] = relationship("Role", back_populates="permissions")
    access_types: Mapped[list["RoleAccessType"]] = relationship(
        "RoleAccessType",
        back_populates="role_permission",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RoleAccessType.access_type",
    )

    def __repr__(self) -> str:
        return f"<RolePermission(role={self.role_key!r}, resource={self.resource_key!r})>"


class RoleAccessType(Base):
    """Bit pattern copied into a UserAccessType when the role is applied."""
    __tablename__ = "role_access_types"

    role_permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("role_permissions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    access_type: Mapped[AccessType] = mapped_column(access_type_enum, primary_key=True)
    permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    set_permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    set_set_permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    role_permission: Mapped["RolePermission"] = relationship("RolePermission", back_populates="access_types")
