"""
Role template administration routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.policies.dependencies import require_route_policy
from app.features.roles import engine
from app.features.roles.schemas import (
    RoleCreate,
    RolePermissionUpdate,
    RolePermissionUpdateResponse,
    RoleWithPermissions,
)


router = APIRouter(dependencies=[Depends(require_route_policy)])


@router.post("/", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a role. Creating an existing role returns it unchanged."""
    return await engine.create_role(db, role.value_key, role.name)


@router.get("/{role_key}", response_model=RoleWithPermissions)
async def get_role(
    role_key: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get a role with its template."""
    return await engine.get_role(db, role_key)


@router.post("/{role_key}/permissions", response_model=RolePermissionUpdateResponse)
async def update_role_permission(
    role_key: str,
    update: RolePermissionUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Set bits on the role's template for one resource."""
    count = await engine.update_role_permission(db, role_key, update.resource_key, update.access_types)
    return RolePermissionUpdateResponse(role_key=role_key, resource_key=update.resource_key, updated_count=count)
