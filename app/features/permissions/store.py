"""
Permission store: evaluation, grants and delegation checks.

Scope rule: a stored grant with scope S matches a queried group G when S is
global or S matches G. What "matches G" means is set by ScopeMatching:

- EXACT: S == G
- ANY_GROUP: any group-scoped grant matches (the historical behaviour)

With no queried group only global grants match.
"""
import enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import Table, and_, delete, exists, func, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import generate_ulid
from app.core.database.engine import atomic, upsert_insert
from app.features.capabilities.models import AccessType, Resource
from app.features.permissions.models import UserAccessType, UserPermission, scope_key_for
from app.features.permissions.schemas import (
    AccessTypeBits,
    AccessTypeUpdate,
    BIT_FIELDS,
    PermissionInfo,
    PermissionKey,
)
from app.utils import get_logger


log = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 200


class ScopeMatching(str, enum.Enum):
    EXACT = "exact"
    ANY_GROUP = "any_group"


def default_scope_matching() -> ScopeMatching:
    """Process-wide scope matching mode from PERMISSION_SCOPE_MATCHING."""
    return ScopeMatching(config.PERMISSION_SCOPE_MATCHING)


# ============================================================================
# Query Helpers
# ============================================================================

def _group_clause(group_id: str, scope_matching: ScopeMatching):
    if scope_matching == ScopeMatching.ANY_GROUP:
        return UserPermission.group_id.is_not(None)
    return UserPermission.group_id == group_id


def scope_clause(
    group_id: Optional[str],
    scope_matching: Optional[ScopeMatching] = None,
    *,
    group_only: bool = False,
):
    """SQL condition selecting the anchors visible from the queried scope."""
    scope_matching = scope_matching or default_scope_matching()
    is_global = UserPermission.group_id.is_(None)
    if group_id is None:
        return is_global
    if group_only:
        return _group_clause(group_id, scope_matching)
    if scope_matching == ScopeMatching.ANY_GROUP:
        return true()
    return or_(is_global, _group_clause(group_id, scope_matching))


async def write_access_type_bits(
    db: AsyncSession,
    table: Table,
    owner_column: str,
    owner_id: str,
    access_type: AccessType,
    supplied: Dict[str, bool],
) -> int:
    """
    Bit-level upsert of one access type row under an anchor.

    Only supplied fields are touched on an existing row. A missing row is
    created only when a supplied field is true; the rest of its bits default
    to false. A row left with all three bits false is deleted, so no stored
    row is ever all-false. Returns the number of rows written (a cleared and
    deleted row counts as written).
    """
    if not supplied:
        return 0

    if any(supplied.values()):
        values = {field: supplied.get(field, False) for field in BIT_FIELDS}
        stmt = upsert_insert(db, table).values(
            **{owner_column: owner_id, "access_type": access_type},
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[owner_column, "access_type"],
            set_={field: stmt.excluded[field] for field in supplied},
        )
        await db.execute(stmt)
        return 1

    # All supplied bits are false: never create the row, only clear bits
    row = and_(table.c[owner_column] == owner_id, table.c.access_type == access_type)
    result = await db.execute(update(table).where(row).values(**supplied))
    written = result.rowcount or 0
    if written:
        await db.execute(
            delete(table).where(
                row,
                *(table.c[field].is_(False) for field in BIT_FIELDS),
            )
        )
    return written


async def ensure_anchor(db: AsyncSession, key: PermissionKey) -> str:
    """Create the UserPermission anchor if it does not exist and return its id."""
    scope_key = scope_key_for(key.group_id)
    stmt = upsert_insert(db, UserPermission.__table__).values(
        id=generate_ulid(),
        user_id=key.user_id,
        resource_key=key.resource_key,
        group_id=key.group_id,
        scope_key=scope_key,
    ).on_conflict_do_nothing(index_elements=["user_id", "resource_key", "scope_key"])
    await db.execute(stmt)

    result = await db.execute(
        select(UserPermission.id).where(
            UserPermission.user_id == key.user_id,
            UserPermission.resource_key == key.resource_key,
            UserPermission.scope_key == scope_key,
        )
    )
    return result.scalar_one()


# ============================================================================
# Evaluation
# ============================================================================

async def has_permission(
    db: AsyncSession,
    user_id: str,
    resource_key: str,
    group_id: Optional[str] = None,
    *,
    scope_matching: Optional[ScopeMatching] = None,
) -> Set[AccessType]:
    """
    Return every access type the user holds (permission bit set) on the
    resource in a scope visible from `group_id`.
    """
    stmt = (
        select(UserAccessType.access_type)
        .join(UserPermission, UserAccessType.user_permission_id == UserPermission.id)
        .where(
            UserPermission.user_id == user_id,
            UserPermission.resource_key == resource_key,
            scope_clause(group_id, scope_matching),
            UserAccessType.permission.is_(True),
        )
        .distinct()
    )
    result = await db.execute(stmt)
    access_types = set(result.scalars().all())
    log.debug(
        f"User {user_id} holds {sorted(a.value for a in access_types)} "
        f"on {resource_key!r} (group={group_id})"
    )
    return access_types


async def grant(db: AsyncSession, key: PermissionKey, updates: Sequence[AccessTypeUpdate]) -> int:
    """
    Apply bit updates to a user's grant on one resource and scope.

    Vacuous updates are skipped. The anchor is created on the first
    non-vacuous update. Everything runs in one transaction.

    Returns:
        Number of access type rows written
    """
    written = 0
    async with atomic(db):
        anchor_id = None
        for access_update in updates:
            supplied = access_update.supplied()
            if not supplied:
                continue
            if anchor_id is None:
                anchor_id = await ensure_anchor(db, key)
            written += await write_access_type_bits(
                db,
                UserAccessType.__table__,
                "user_permission_id",
                anchor_id,
                access_update.access_type,
                supplied,
            )

    if written:
        log.info(
            f"Granted {written} access type row(s) on {key.resource_key!r} "
            f"to user {key.user_id} (group={key.group_id})"
        )
    return written


async def can_delegate(
    db: AsyncSession,
    target: PermissionKey,
    requester_id: str,
    access_update: AccessTypeUpdate,
    *,
    scope_matching: Optional[ScopeMatching] = None,
) -> bool:
    """
    Check whether the requester may apply `access_update` to the target.

    Granting `permission` requires set_permission; granting set_permission or
    set_set_permission requires set_set_permission. Required bits must be held
    on one row for the same access type in a scope visible from the target's
    group. A vacuous update is always allowed.
    """
    supplied = access_update.supplied()
    if not supplied:
        return True

    required = []
    if "permission" in supplied:
        required.append(UserAccessType.set_permission.is_(True))
    if "set_permission" in supplied or "set_set_permission" in supplied:
        required.append(UserAccessType.set_set_permission.is_(True))

    stmt = select(
        exists().where(
            UserAccessType.user_permission_id == UserPermission.id,
            UserPermission.user_id == requester_id,
            UserPermission.resource_key == target.resource_key,
            scope_clause(target.group_id, scope_matching),
            UserAccessType.access_type == access_update.access_type,
            *required,
        )
    )
    allowed = bool((await db.execute(stmt)).scalar())
    log.debug(
        f"User {requester_id} {'may' if allowed else 'may not'} delegate "
        f"{access_update.access_type.value} on {target.resource_key!r} (group={target.group_id})"
    )
    return allowed


async def can_delegate_all(
    db: AsyncSession,
    target: PermissionKey,
    requester_id: str,
    updates: Sequence[AccessTypeUpdate],
    *,
    scope_matching: Optional[ScopeMatching] = None,
) -> bool:
    """True when at least one update is non-vacuous and every non-vacuous one may be delegated."""
    effective = [u for u in updates if not u.is_vacuous]
    if not effective:
        return False
    for access_update in effective:
        if not await can_delegate(db, target, requester_id, access_update, scope_matching=scope_matching):
            return False
    return True


async def revoke_group_scope(db: AsyncSession, user_id: str, group_id: str) -> int:
    """
    Delete every grant of the user scoped exactly to the group.

    Global grants are untouched. Returns the number of anchors removed.
    """
    anchors = select(UserPermission.id).where(
        UserPermission.user_id == user_id,
        UserPermission.scope_key == scope_key_for(group_id),
    )
    async with atomic(db):
        await db.execute(
            delete(UserAccessType)
            .where(UserAccessType.user_permission_id.in_(anchors))
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(
            delete(UserPermission)
            .where(UserPermission.user_id == user_id, UserPermission.scope_key == scope_key_for(group_id))
            .execution_options(synchronize_session=False)
        )
        removed = result.rowcount or 0

    log.info(f"Revoked {removed} grant(s) of user {user_id} in group {group_id}")
    return removed


# ============================================================================
# Listing
# ============================================================================

async def list_user_permissions(
    db: AsyncSession,
    user_id: str,
    group_id: Optional[str] = None,
    *,
    group_only: bool = False,
    keys: Optional[List[str]] = None,
    page: int = 0,
    limit: int = DEFAULT_PAGE_LIMIT,
    scope_matching: Optional[ScopeMatching] = None,
) -> Tuple[List[PermissionInfo], int]:
    """
    Return one page of a user's grants with the total number of matching anchors.

    The total ignores the `keys` filter.
    """
    condition = and_(
        UserPermission.user_id == user_id,
        scope_clause(group_id, scope_matching, group_only=group_only),
    )

    total = (
        await db.execute(
            select(func.count())
            .select_from(UserPermission)
            .join(Resource, Resource.key == UserPermission.resource_key)
            .where(condition)
        )
    ).scalar() or 0

    stmt = (
        select(UserPermission, Resource.display_name)
        .join(Resource, Resource.key == UserPermission.resource_key)
        .where(condition)
    )
    if keys:
        stmt = stmt.where(UserPermission.resource_key.in_(keys))
    stmt = (
        stmt.order_by(UserPermission.created_at, UserPermission.resource_key, UserPermission.scope_key)
        .offset(page * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )

    result = await db.execute(stmt)
    items = [
        PermissionInfo(
            resource_key=anchor.resource_key,
            display_name=display_name,
            group_id=anchor.group_id,
            access_types=[AccessTypeBits.model_validate(row) for row in anchor.access_types],
        )
        for anchor, display_name in result.all()
    ]
    return items, total
