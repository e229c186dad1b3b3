"""
Pydantic schemas for permission grants and queries.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.capabilities.models import AccessType


BIT_FIELDS = ("permission", "set_permission", "set_set_permission")


# ============================================================================
# Store Value Types
# ============================================================================

class PermissionKey(BaseModel):
    """Identifies a grant anchor: user, resource and scope (None is global)."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    resource_key: str
    group_id: Optional[str] = None


class AccessTypeUpdate(BaseModel):
    """
    Requested change to the bits of one access type.

    A field left as None is not touched. An update with every field None
    is vacuous.
    """
    access_type: AccessType
    permission: Optional[bool] = None
    set_permission: Optional[bool] = None
    set_set_permission: Optional[bool] = None

    def supplied(self) -> Dict[str, bool]:
        """Bits that were actually specified."""
        return {name: getattr(self, name) for name in BIT_FIELDS if getattr(self, name) is not None}

    @property
    def is_vacuous(self) -> bool:
        return not self.supplied()


class AccessTypeBits(BaseModel):
    """Stored bits of one access type."""
    access_type: AccessType
    permission: bool = False
    set_permission: bool = False
    set_set_permission: bool = False

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Request/Response Schemas
# ============================================================================

class PermissionGrantEntry(BaseModel):
    """Bits to set on one resource."""
    resource_key: str = Field(..., min_length=1, max_length=45)
    access_types: List[AccessTypeUpdate] = Field(..., min_length=1)


class AddPermissionsRequest(BaseModel):
    """Schema for granting permissions to a user."""
    new_permissions: List[PermissionGrantEntry] = Field(..., min_length=1)


class AddPermissionsResponse(BaseModel):
    """Resource keys on which at least one row was written."""
    updated_permissions: List[str]


class PermissionInfo(BaseModel):
    """A user's grants on one resource in one scope."""
    resource_key: str
    display_name: str
    group_id: Optional[str] = None
    access_types: List[AccessTypeBits] = []


class PermissionListResponse(BaseModel):
    """Schema for paginated permission list."""
    permissions: List[PermissionInfo]
    total_count: int
