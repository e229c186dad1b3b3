"""
Pydantic schemas for groups and memberships.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class GroupCreate(BaseModel):
    """Schema for creating a group."""
    name: str = Field(..., min_length=1, max_length=255)
    parent: Optional[str] = Field(None, description="Parent group ID")


class GroupResponse(BaseModel):
    """Schema for group response."""
    id: str
    name: str
    parent: Optional[str] = None
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MemberCreate(BaseModel):
    """Schema for adding a member to a group."""
    user_id: str


class MemberResponse(BaseModel):
    """Schema for membership response."""
    group_id: str
    user_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
