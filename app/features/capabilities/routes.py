"""
Capability registry API routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.capabilities import registry
from app.features.capabilities.schemas import (
    DeclareAccessType,
    ResourceCreate,
    ResourceWithAccessTypes,
    ResourceWithAccessTypesListResponse,
)
from app.features.policies.dependencies import require_route_policy


router = APIRouter(dependencies=[Depends(require_route_policy)])


@router.get("/", response_model=ResourceWithAccessTypesListResponse)
async def list_resources(
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(0, ge=0),
    limit: int = Query(registry.DEFAULT_PAGE_LIMIT, ge=1, le=1000),
    keys: Optional[List[str]] = Query(None),
):
    """List registered resources with their access types."""
    resources, total = await registry.list_resources_with_access_types(db, page=page, limit=limit, keys=keys)
    return ResourceWithAccessTypesListResponse(
        resources=[ResourceWithAccessTypes.model_validate(r) for r in resources],
        total_count=total,
    )


@router.post("/", response_model=ResourceWithAccessTypes, status_code=status.HTTP_201_CREATED)
async def register_resource(
    resource: ResourceCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Register a resource and the access types it supports."""
    created = await registry.register_resource(db, resource.key, resource.display_name, resource.access_types)
    return ResourceWithAccessTypes.model_validate(created)


@router.post("/{key}/access-types", response_model=ResourceWithAccessTypes, status_code=status.HTTP_201_CREATED)
async def declare_access_type(
    key: str,
    declaration: DeclareAccessType,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Declare an additional access type on a resource."""
    await registry.declare_access_type(db, key, declaration.access_type)
    resources, _ = await registry.list_resources_with_access_types(db, keys=[key], limit=1)
    return ResourceWithAccessTypes.model_validate(resources[0])
