"""
Group lifecycle operations.

Each operation writes the group or membership and the permission changes it
triggers in one transaction:

- create_group applies the `created_group` role to the creator in the new group
- add_member applies the `add_member` role to the member in the group
- remove_member revokes every grant of the member scoped to the group
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.exceptions import Conflict, NotFound
from app.features.groups.models import Group, GroupMember
from app.features.permissions.store import revoke_group_scope
from app.features.roles.engine import apply_role
from app.features.roles.models import ADD_MEMBER_ROLE_KEY, CREATED_GROUP_ROLE_KEY
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def get_group(db: AsyncSession, group_id: str) -> Group:
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFound(f"Group '{group_id}' not found")
    return group


async def create_group(
    db: AsyncSession,
    name: str,
    creator_id: str,
    parent: Optional[str] = None,
) -> Group:
    """Create a group and give its creator the `created_group` role in it."""
    async with atomic(db):
        if parent is not None:
            await get_group(db, parent)

        group = Group(name=name, parent=parent, created_by=creator_id)
        db.add(group)
        await db.flush()

        await apply_role(db, CREATED_GROUP_ROLE_KEY, creator_id, group.id)

    log.info(f"User {creator_id} created group {group.id} ({name!r})")
    await db.refresh(group)
    return group


async def add_member(db: AsyncSession, group_id: str, user_id: str) -> GroupMember:
    """
    Add a user to a group and apply the `add_member` role to them.

    Raises:
        NotFound: unknown group or user
        Conflict: the user is already a member
    """
    async with atomic(db):
        await get_group(db, group_id)
        if await db.get(User, user_id) is None:
            raise NotFound(f"User '{user_id}' not found")

        existing = await db.execute(
            select(GroupMember.id).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise Conflict(f"User '{user_id}' is already a member of group '{group_id}'")

        member = GroupMember(group_id=group_id, user_id=user_id)
        db.add(member)
        try:
            await db.flush()
        except IntegrityError:
            raise Conflict(f"User '{user_id}' is already a member of group '{group_id}'")

        await apply_role(db, ADD_MEMBER_ROLE_KEY, user_id, group_id)

    log.info(f"Added user {user_id} to group {group_id}")
    await db.refresh(member)
    return member


async def remove_member(db: AsyncSession, group_id: str, user_id: str) -> GroupMember:
    """
    Remove a user from a group together with their group-scoped grants.

    Raises:
        NotFound: the user is not a member of the group
    """
    async with atomic(db):
        result = await db.execute(
            select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFound(f"User '{user_id}' is not a member of group '{group_id}'")

        await db.delete(member)
        await revoke_group_scope(db, user_id, group_id)

    log.info(f"Removed user {user_id} from group {group_id}")
    return member
