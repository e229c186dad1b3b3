"""
Pydantic schemas for role templates.
"""
from typing import List
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.permissions.schemas import AccessTypeBits, AccessTypeUpdate


class RoleCreate(BaseModel):
    """Schema for creating a role."""
    value_key: str = Field(..., min_length=1, max_length=45, description="Unique role key (e.g., 'add_member')")
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator('value_key')
    @classmethod
    def value_key_format(cls, v: str) -> str:
        """Validate role key format."""
        if not v.replace('_', '').isalnum():
            raise ValueError('Role key must contain only alphanumeric characters and underscores')
        return v.lower()


class RoleResponse(BaseModel):
    """Schema for role response."""
    value_key: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class RolePermissionResponse(BaseModel):
    """A role's template on one resource."""
    resource_key: str
    access_types: List[AccessTypeBits] = []

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Role with its full template."""
    permissions: List[RolePermissionResponse] = []


class RolePermissionUpdate(BaseModel):
    """Bits to set on a role's template for one resource."""
    resource_key: str = Field(..., min_length=1, max_length=45)
    access_types: List[AccessTypeUpdate] = Field(..., min_length=1)


class RolePermissionUpdateResponse(BaseModel):
    role_key: str
    resource_key: str
    updated_count: int
