"""
Group lifecycle API routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.groups import lifecycle
from app.features.groups.schemas import GroupCreate, GroupResponse, MemberCreate, MemberResponse
from app.features.policies.dependencies import EnforcementResult, require_route_policy


router = APIRouter(dependencies=[Depends(require_route_policy)])


@router.post("/", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    group: GroupCreate,
    access: Annotated[EnforcementResult, Depends(require_route_policy)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a group; the caller receives the `created_group` role in it."""
    return await lifecycle.create_group(db, group.name, access.user_id, parent=group.parent)


@router.post("/{group_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    group_id: str,
    member: MemberCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Add a user to the group; the user receives the `add_member` role in it."""
    return await lifecycle.add_member(db, group_id, member.user_id)


@router.delete("/{group_id}/members/{user_id}", response_model=MemberResponse)
async def remove_member(
    group_id: str,
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Remove a user from the group along with their grants in it."""
    return await lifecycle.remove_member(db, group_id, user_id)
