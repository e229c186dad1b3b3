"""
Permission grant and query API routes.

Mounted without a prefix: the paths live under /users, /user and /groups.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.exceptions import Forbidden
from app.features.capabilities.models import AccessType
from app.features.capabilities.registry import validate_access_types
from app.features.permissions.schemas import (
    AddPermissionsRequest,
    AddPermissionsResponse,
    PermissionKey,
    PermissionListResponse,
)
from app.features.permissions.store import (
    DEFAULT_PAGE_LIMIT,
    can_delegate_all,
    grant,
    list_user_permissions,
)
from app.features.policies.dependencies import EnforcementResult, require_route_policy
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_route_policy)])


@router.post(
    "/users/{user_id}/permissions",
    response_model=AddPermissionsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_permissions(
    user_id: str,
    payload: AddPermissionsRequest,
    access: Annotated[EnforcementResult, Depends(require_route_policy)],
    db: Annotated[AsyncSession, Depends(get_db)],
    group_id: Optional[str] = None,
):
    """
    Grant bits to a user, globally or in `group_id`.

    Entries the caller may not fully delegate are skipped; the response
    lists the resources on which something was written.
    """
    for entry in payload.new_permissions:
        await validate_access_types(db, entry.resource_key, [u.access_type for u in entry.access_types])

    updated: List[str] = []
    for entry in payload.new_permissions:
        target = PermissionKey(user_id=user_id, resource_key=entry.resource_key, group_id=group_id)
        if not await can_delegate_all(db, target, access.user_id, entry.access_types):
            log.info(f"User {access.user_id} may not delegate {entry.resource_key!r} to user {user_id}")
            continue

        if await grant(db, target, entry.access_types):
            updated.append(entry.resource_key)

    return AddPermissionsResponse(updated_permissions=updated)


@router.get("/user/permissions", response_model=PermissionListResponse)
async def list_my_permissions(
    access: Annotated[EnforcementResult, Depends(require_route_policy)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=1000),
    keys: Optional[List[str]] = Query(None),
):
    """List the current user's global grants."""
    items, total = await list_user_permissions(db, access.user_id, keys=keys, page=page, limit=limit)
    return PermissionListResponse(permissions=items, total_count=total)


@router.get("/groups/{group_id}/user/permissions", response_model=PermissionListResponse)
async def list_my_group_permissions(
    group_id: str,
    access: Annotated[EnforcementResult, Depends(require_route_policy)],
    db: Annotated[AsyncSession, Depends(get_db)],
    page: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=1000),
    keys: Optional[List[str]] = Query(None),
):
    """List the current user's grants scoped to the group."""
    items, total = await list_user_permissions(
        db, access.user_id, group_id, group_only=True, keys=keys, page=page, limit=limit,
    )
    return PermissionListResponse(permissions=items, total_count=total)


@router.get("/groups/{group_id}/users/{user_id}/permissions", response_model=PermissionListResponse)
async def list_member_permissions(
    group_id: str,
    user_id: str,
    access: Annotated[EnforcementResult, Depends(require_route_policy)],
    db: Annotated[AsyncSession, Depends(get_db)],
    group_only: bool = False,
    page: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=1000),
    keys: Optional[List[str]] = Query(None),
):
    """
    List a user's grants in a group.

    Callers other than the user themselves need `Other` on the route's resource.
    """
    if access.user_id != user_id and not access.has(AccessType.OTHER):
        raise Forbidden(f"Forbidden access to permissions of user {user_id}")

    items, total = await list_user_permissions(
        db, user_id, group_id, group_only=group_only, keys=keys, page=page, limit=limit,
    )
    return PermissionListResponse(permissions=items, total_count=total)
