"""
Per-user capability grants.

A UserPermission is the anchor for one (user, resource, scope). Each
UserAccessType row under it holds the three delegation bits for one access
type:

- permission: the user holds the access type
- set_permission: the user may grant `permission` to others
- set_set_permission: the user may grant `set_permission` / `set_set_permission`
"""
from typing import Optional
from sqlalchemy import String, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.capabilities.models import AccessType, access_type_enum


GLOBAL_SCOPE = "global"


def scope_key_for(group_id: Optional[str]) -> str:
    """Storage encoding of a scope: the group id, or GLOBAL_SCOPE when absent."""
    return group_id if group_id is not None else GLOBAL_SCOPE


class UserPermission(Base, TimestampMixin):
    """
    Anchor row for a user's grants on one resource in one scope.

    `group_id` is None for global grants. `scope_key` carries the same
    information in a non-null column so the unique constraint also covers
    global anchors.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "resource_key", "scope_key", name="uq_user_permission_scope"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    resource_key: Mapped[str] = mapped_column(
        String(45),
        ForeignKey("resources.key", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    scope_key: Mapped[str] = mapped_column(String(26), nullable=False)

    access_types: Mapped[list["UserAccessType"]] = relationship(
        "UserAccessType",
        back_populates="user_permission",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<UserPermission(id={self.id}, user_id={self.user_id}, "
            f"resource={self.resource_key!r}, group_id={self.group_id})>"
        )


class UserAccessType(Base):
    """Delegation bits of one access type under a UserPermission anchor."""
    __tablename__ = "user_access_types"

    user_permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("user_permissions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    access_type: Mapped[AccessType] = mapped_column(access_type_enum, primary_key=True)
    permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    set_permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    set_set_permission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    user_permission: Mapped["UserPermission"] = relationship("UserPermission", back_populates="access_types")

    def __repr__(self) -> str:
        return (
            f"<UserAccessType({self.access_type.value}: permission={self.permission}, "
            f"set_permission={self.set_permission}, set_set_permission={self.set_set_permission})>"
        )
