"""
Role template engine.

Applying a role is split into a plan (what to write, read from the role's
template) and its execution (the writes). apply_role runs both inside one
transaction; lifecycle operations wrap it together with the entity they
create so the whole event is all-or-nothing.
"""
from typing import List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import generate_ulid
from app.core.database.engine import atomic, upsert_insert
from app.core.exceptions import NotFound
from app.features.capabilities.registry import validate_access_types
from app.features.permissions.models import UserAccessType
from app.features.permissions.schemas import AccessTypeBits, AccessTypeUpdate, PermissionKey
from app.features.permissions.store import ensure_anchor, write_access_type_bits
from app.features.roles.models import Role, RoleAccessType, RolePermission
from app.utils import get_logger


log = get_logger(__name__)


class PlannedGrant(BaseModel):
    """Bit patterns to write for one resource."""
    resource_key: str
    access_types: List[AccessTypeBits]


class RoleApplicationPlan(BaseModel):
    """Unit of work produced from a role template for one user and scope."""
    role_key: str
    user_id: str
    group_id: Optional[str] = None
    grants: List[PlannedGrant] = []

    @property
    def is_empty(self) -> bool:
        return not self.grants


# ============================================================================
# Applying Roles
# ============================================================================

async def plan_role_application(
    db: AsyncSession,
    role_key: str,
    user_id: str,
    group_id: Optional[str] = None,
) -> RoleApplicationPlan:
    """
    Read the role's template and build the writes applying it.

    An unknown role or a role without permissions gives an empty plan.
    All-false template rows are left out.
    """
    result = await db.execute(
        select(RolePermission)
        .where(RolePermission.role_key == role_key)
        .order_by(RolePermission.resource_key)
        .execution_options(populate_existing=True)
    )

    grants = []
    for role_permission in result.scalars().all():
        bits = [
            AccessTypeBits.model_validate(row)
            for row in role_permission.access_types
            if row.permission or row.set_permission or row.set_set_permission
        ]
        if bits:
            grants.append(PlannedGrant(resource_key=role_permission.resource_key, access_types=bits))

    if not grants:
        log.debug(f"Role {role_key!r} has no grants to apply")
    return RoleApplicationPlan(role_key=role_key, user_id=user_id, group_id=group_id, grants=grants)


async def execute_plan(
    db: AsyncSession,
    plan: RoleApplicationPlan,
    *,
    overwrite: Optional[bool] = None,
) -> int:
    """
    Write a role application plan.

    Anchors are reused when present. Existing access type rows keep their
    bits unless `overwrite` is set (default from ROLE_REAPPLY_OVERWRITES),
    in which case they take the template's bits.

    Returns:
        Number of access type rows written
    """
    if overwrite is None:
        overwrite = config.ROLE_REAPPLY_OVERWRITES

    written = 0
    async with atomic(db):
        for planned in plan.grants:
            anchor_id = await ensure_anchor(
                db,
                PermissionKey(user_id=plan.user_id, resource_key=planned.resource_key, group_id=plan.group_id),
            )
            for bits in planned.access_types:
                stmt = upsert_insert(db, UserAccessType.__table__).values(
                    user_permission_id=anchor_id,
                    access_type=bits.access_type,
                    permission=bits.permission,
                    set_permission=bits.set_permission,
                    set_set_permission=bits.set_set_permission,
                )
                if overwrite:
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["user_permission_id", "access_type"],
                        set_={
                            "permission": stmt.excluded.permission,
                            "set_permission": stmt.excluded.set_permission,
                            "set_set_permission": stmt.excluded.set_set_permission,
                        },
                    )
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=["user_permission_id", "access_type"])
                result = await db.execute(stmt)
                written += result.rowcount or 0
    return written


async def apply_role(
    db: AsyncSession,
    role_key: str,
    user_id: str,
    group_id: Optional[str] = None,
) -> int:
    """Apply a role template to a user in one transaction."""
    async with atomic(db):
        plan = await plan_role_application(db, role_key, user_id, group_id)
        written = await execute_plan(db, plan)

    log.info(f"Applied role {role_key!r} to user {user_id} (group={group_id}): {written} row(s) written")
    return written


# ============================================================================
# Administration
# ============================================================================

async def get_role(db: AsyncSession, role_key: str) -> Role:
    """Return the role with its template or raise NotFound."""
    result = await db.execute(
        select(Role).where(Role.value_key == role_key).execution_options(populate_existing=True)
    )
    role = result.scalars().first()
    if role is None:
        raise NotFound(f"Role '{role_key}' not found")
    return role


async def create_role(db: AsyncSession, value_key: str, name: str) -> Role:
    """Create a role. An existing role with the same key is kept as is."""
    async with atomic(db):
        await db.execute(
            upsert_insert(db, Role.__table__)
            .values(value_key=value_key, name=name)
            .on_conflict_do_nothing(index_elements=["value_key"])
        )
    log.info(f"Created role {value_key!r}")
    return await get_role(db, value_key)


async def update_role_permission(
    db: AsyncSession,
    role_key: str,
    resource_key: str,
    updates: Sequence[AccessTypeUpdate],
) -> int:
    """
    Set bits on a role's template for one resource.

    Same bit-level semantics as a user grant: only supplied fields change and
    a missing row is created only when a supplied bit is true.

    Raises:
        NotFound: unknown role or resource
        InvalidAccessType: the resource does not support an access type
    """
    written = 0
    async with atomic(db):
        if await db.get(Role, role_key) is None:
            raise NotFound(f"Role '{role_key}' not found")
        await validate_access_types(db, resource_key, [u.access_type for u in updates])

        role_permission_id = None
        for access_update in updates:
            supplied = access_update.supplied()
            if not supplied:
                continue
            if role_permission_id is None:
                role_permission_id = await _ensure_role_permission(db, role_key, resource_key)
            written += await write_access_type_bits(
                db,
                RoleAccessType.__table__,
                "role_permission_id",
                role_permission_id,
                access_update.access_type,
                supplied,
            )

    log.info(f"Updated role {role_key!r} on {resource_key!r}: {written} row(s) written")
    return written


async def _ensure_role_permission(db: AsyncSession, role_key: str, resource_key: str) -> str:
    await db.execute(
        upsert_insert(db, RolePermission.__table__)
        .values(id=generate_ulid(), role_key=role_key, resource_key=resource_key)
        .on_conflict_do_nothing(index_elements=["role_key", "resource_key"])
    )
    result = await db.execute(
        select(RolePermission.id).where(
            RolePermission.role_key == role_key,
            RolePermission.resource_key == resource_key,
        )
    )
    return result.scalar_one()
