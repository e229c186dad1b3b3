"""
Pydantic schemas for the capability catalog.
"""
from typing import List
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.features.capabilities.models import AccessType


class ResourceBase(BaseModel):
    """Base resource schema."""
    key: str = Field(..., min_length=1, max_length=45, description="Unique resource key (e.g., 'group')")
    display_name: str = Field(..., min_length=1, max_length=45, description="Human readable name")


class ResourceCreate(ResourceBase):
    """Schema for registering a resource."""
    access_types: List[AccessType] = Field(default_factory=list, description="Supported access types")

    @field_validator('key')
    @classmethod
    def key_lowercase_underscore(cls, v: str) -> str:
        """Validate resource key format."""
        if not v.replace('_', '').isalnum():
            raise ValueError('Resource key must contain only alphanumeric characters and underscores')
        return v.lower()


class ResourceResponse(ResourceBase):
    """Schema for resource response."""
    model_config = ConfigDict(from_attributes=True)


class ResourceWithAccessTypes(ResourceResponse):
    """Resource together with its supported access types."""
    access_types: List[AccessType] = []

    @field_validator('access_types', mode='before')
    @classmethod
    def unwrap_rows(cls, v):
        return [getattr(item, "access_type", item) for item in v]


class DeclareAccessType(BaseModel):
    """Schema for declaring an access type on an existing resource."""
    access_type: AccessType


class ResourceListResponse(BaseModel):
    """Schema for paginated resource list."""
    resources: List[ResourceResponse]
    total_count: int


class ResourceWithAccessTypesListResponse(BaseModel):
    """Schema for paginated resource list with access types."""
    resources: List[ResourceWithAccessTypes]
    total_count: int
