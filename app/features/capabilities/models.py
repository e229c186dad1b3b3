"""
Capability catalog models.

A Resource is a named thing capabilities are granted against ("group",
"user_answer", ...). Each resource declares the access types it supports;
grants and role templates are validated against that declaration.
"""
import enum
from sqlalchemy import String, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin


class AccessType(str, enum.Enum):
    """Capability kinds. Fixed at build time; `Other` is the catch-all."""
    READ = "Read"
    WRITE = "Write"
    CREATE = "Create"
    DELETE = "Delete"
    OTHER = "Other"


# Stored by value so the database holds "Read", "Write", ...
access_type_enum = SQLEnum(
    AccessType,
    name="access_type",
    values_callable=lambda members: [member.value for member in members],
)


class Resource(Base, TimestampMixin):
    """
    Resource registered in the capability catalog.

    Created once and immutable afterwards.
    """
    __tablename__ = "resources"

    key: Mapped[str] = mapped_column(String(45), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(45), nullable=False)

    access_types: Mapped[list["ResourceAccessType"]] = relationship(
        "ResourceAccessType",
        back_populates="resource",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ResourceAccessType.access_type",
    )

    def __repr__(self) -> str:
        return f"<Resource(key={self.key!r}, display_name={self.display_name!r})>"


class ResourceAccessType(Base):
    """Declares that a resource supports an access type."""
    __tablename__ = "resource_access_types"

    resource_key: Mapped[str] = mapped_column(
        String(45),
        ForeignKey("resources.key", ondelete="CASCADE"),
        primary_key=True,
    )
    access_type: Mapped[AccessType] = mapped_column(access_type_enum, primary_key=True)

    resource: Mapped["Resource"] = relationship("Resource", back_populates="access_types")

    def __repr__(self) -> str:
        return f"<ResourceAccessType(resource={self.resource_key!r}, access_type={self.access_type.value})>"
