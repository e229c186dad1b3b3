"""Tests for permission evaluation, grants and delegation checks."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.core import config
from app.features.capabilities.models import AccessType
from app.features.permissions.models import UserAccessType, UserPermission
from app.features.permissions.schemas import AccessTypeUpdate, PermissionKey
from app.features.permissions.store import (
    ScopeMatching,
    can_delegate,
    can_delegate_all,
    grant,
    has_permission,
    list_user_permissions,
    revoke_group_scope,
)

pytestmark = [pytest.mark.unit, pytest.mark.usefixtures("resources")]

USER = "01HZZZZZZZZZZZZZZZZZZZUSER"
OTHER_USER = "01HZZZZZZZZZZZZZZZZZZOTHER"
G1 = "01HZZZZZZZZZZZZZZZZZZGROUP1"
G2 = "01HZZZZZZZZZZZZZZZZZZGROUP2"

READ = AccessType.READ
WRITE = AccessType.WRITE


def _key(group_id: str | None = None, user_id: str = USER, resource_key: str = "group_member") -> PermissionKey:
    return PermissionKey(user_id=user_id, resource_key=resource_key, group_id=group_id)


async def _bits(db, key: PermissionKey, access_type: AccessType) -> tuple[bool, bool, bool] | None:
    result = await db.execute(
        select(UserAccessType.permission, UserAccessType.set_permission, UserAccessType.set_set_permission)
        .join(UserPermission, UserAccessType.user_permission_id == UserPermission.id)
        .where(
            UserPermission.user_id == key.user_id,
            UserPermission.resource_key == key.resource_key,
            UserPermission.group_id.is_(None) if key.group_id is None else UserPermission.group_id == key.group_id,
            UserAccessType.access_type == access_type,
        )
    )
    row = result.first()
    return tuple(row) if row else None


# ============================================================================
# Evaluation
# ============================================================================

async def test_no_grants_means_no_access(db) -> None:
    assert await has_permission(db, USER, "group_member") == set()
    assert await has_permission(db, USER, "group_member", G1) == set()


async def test_global_grant_is_visible_everywhere(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])

    assert await has_permission(db, USER, "group_member") == {READ}
    assert await has_permission(db, USER, "group_member", G1) == {READ}
    assert await has_permission(db, USER, "group_member", G2) == {READ}


async def test_group_grant_is_not_global(db) -> None:
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=READ, permission=True)])

    assert await has_permission(db, USER, "group_member", G1) == {READ}
    assert await has_permission(db, USER, "group_member") == set()


async def test_delegation_bits_alone_do_not_grant_access(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_permission=True)])

    assert await has_permission(db, USER, "group_member") == set()


async def test_exact_scope_matching_ignores_other_groups(db) -> None:
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=READ, permission=True)])

    assert await has_permission(db, USER, "group_member", G2, scope_matching=ScopeMatching.EXACT) == set()


async def test_any_group_scope_matching_accepts_other_groups(db, monkeypatch) -> None:
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=READ, permission=True)])

    assert await has_permission(db, USER, "group_member", G2, scope_matching=ScopeMatching.ANY_GROUP) == {READ}
    # Without a group only global grants count, in either mode
    assert await has_permission(db, USER, "group_member", scope_matching=ScopeMatching.ANY_GROUP) == set()

    monkeypatch.setattr(config, "PERMISSION_SCOPE_MATCHING", "any_group")
    assert await has_permission(db, USER, "group_member", G2) == {READ}


# ============================================================================
# Grants
# ============================================================================

async def test_update_reports_only_supplied_bits() -> None:
    update = AccessTypeUpdate(access_type=READ, permission=False, set_set_permission=True)

    assert update.supplied() == {"permission": False, "set_set_permission": True}
    assert not update.is_vacuous
    assert AccessTypeUpdate(access_type=READ).is_vacuous


async def test_vacuous_grant_writes_nothing(db) -> None:
    written = await grant(db, _key(), [AccessTypeUpdate(access_type=READ)])

    assert written == 0
    count = (await db.execute(select(func.count()).select_from(UserPermission))).scalar()
    assert count == 0


async def test_all_false_update_never_creates_a_row(db) -> None:
    written = await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=False)])

    assert written == 0
    assert await _bits(db, _key(), READ) is None


async def test_grant_updates_only_supplied_fields(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True, set_permission=True)])
    written = await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_permission=False)])

    assert written == 1
    assert await _bits(db, _key(), READ) == (True, False, False)


async def test_clearing_every_bit_deletes_the_row(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(), [AccessTypeUpdate(access_type=WRITE, permission=True)])
    written = await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=False)])

    assert written == 1
    assert await has_permission(db, USER, "group_member") == {WRITE}
    assert await _bits(db, _key(), READ) is None
    assert await _bits(db, _key(), WRITE) == (True, False, False)
    all_false = (
        await db.execute(
            select(func.count())
            .select_from(UserAccessType)
            .where(
                UserAccessType.permission.is_(False),
                UserAccessType.set_permission.is_(False),
                UserAccessType.set_set_permission.is_(False),
            )
        )
    ).scalar()
    assert all_false == 0


async def test_partial_clear_keeps_the_row(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True, set_permission=True)])
    written = await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=False)])

    assert written == 1
    assert await has_permission(db, USER, "group_member") == set()
    assert await _bits(db, _key(), READ) == (False, True, False)


async def test_grant_is_idempotent(db) -> None:
    updates = [
        AccessTypeUpdate(access_type=READ, permission=True),
        AccessTypeUpdate(access_type=WRITE, permission=True, set_set_permission=True),
    ]

    first = await grant(db, _key(G1), updates)
    state_after_first = (await _bits(db, _key(G1), READ), await _bits(db, _key(G1), WRITE))
    await grant(db, _key(G1), updates)
    state_after_second = (await _bits(db, _key(G1), READ), await _bits(db, _key(G1), WRITE))

    assert first == 2
    assert state_after_first == state_after_second == ((True, False, False), (True, False, True))
    anchors = (await db.execute(select(func.count()).select_from(UserPermission))).scalar()
    assert anchors == 1


async def test_global_and_group_anchors_are_distinct(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(), [AccessTypeUpdate(access_type=WRITE, permission=True)])
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=READ, permission=True)])

    scopes = (await db.execute(select(UserPermission.scope_key).order_by(UserPermission.scope_key))).scalars().all()
    assert scopes == [G1, "global"]


# ============================================================================
# Delegation
# ============================================================================

async def test_requester_without_bits_cannot_delegate(db) -> None:
    update = AccessTypeUpdate(access_type=READ, permission=True)

    assert await can_delegate(db, _key(user_id=OTHER_USER), USER, update) is False


async def test_set_permission_allows_delegating_permission_only(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_permission=True)])
    target = _key(user_id=OTHER_USER)

    assert await can_delegate(db, target, USER, AccessTypeUpdate(access_type=READ, permission=True)) is True
    assert await can_delegate(db, target, USER, AccessTypeUpdate(access_type=READ, set_permission=True)) is False
    assert await can_delegate(db, target, USER, AccessTypeUpdate(access_type=READ, set_set_permission=True)) is False


async def test_set_set_permission_allows_delegating_delegation_bits(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_set_permission=True)])
    target = _key(user_id=OTHER_USER)

    assert await can_delegate(db, target, USER, AccessTypeUpdate(access_type=READ, set_permission=True)) is True
    assert await can_delegate(db, target, USER, AccessTypeUpdate(access_type=READ, permission=True)) is False


async def test_delegation_is_checked_per_access_type(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_permission=True)])

    update = AccessTypeUpdate(access_type=WRITE, permission=True)
    assert await can_delegate(db, _key(user_id=OTHER_USER), USER, update) is False


async def test_delegation_follows_scope(db) -> None:
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=READ, set_permission=True)])
    update = AccessTypeUpdate(access_type=READ, permission=True)

    assert await can_delegate(db, _key(G1, user_id=OTHER_USER), USER, update) is True
    assert await can_delegate(db, _key(G2, user_id=OTHER_USER), USER, update) is False
    assert await can_delegate(db, _key(user_id=OTHER_USER), USER, update) is False
    assert await can_delegate(
        db, _key(G2, user_id=OTHER_USER), USER, update, scope_matching=ScopeMatching.ANY_GROUP,
    ) is True


async def test_vacuous_update_is_always_delegable(db) -> None:
    assert await can_delegate(db, _key(user_id=OTHER_USER), USER, AccessTypeUpdate(access_type=READ)) is True


async def test_can_delegate_all(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, set_permission=True)])
    target = _key(user_id=OTHER_USER)

    allowed = [AccessTypeUpdate(access_type=READ, permission=True), AccessTypeUpdate(access_type=WRITE)]
    mixed = [AccessTypeUpdate(access_type=READ, permission=True), AccessTypeUpdate(access_type=WRITE, permission=True)]
    only_vacuous = [AccessTypeUpdate(access_type=READ), AccessTypeUpdate(access_type=WRITE)]

    assert await can_delegate_all(db, target, USER, allowed) is True
    assert await can_delegate_all(db, target, USER, mixed) is False
    assert await can_delegate_all(db, target, USER, only_vacuous) is False
    assert await can_delegate_all(db, target, USER, []) is False


# ============================================================================
# Revocation and listing
# ============================================================================

async def test_revoke_group_scope_keeps_global_and_other_groups(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(G1), [AccessTypeUpdate(access_type=WRITE, permission=True)])
    await grant(db, _key(G1, resource_key="group"), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(G2), [AccessTypeUpdate(access_type=WRITE, permission=True)])
    await grant(db, _key(G1, user_id=OTHER_USER), [AccessTypeUpdate(access_type=WRITE, permission=True)])

    removed = await revoke_group_scope(db, USER, G1)

    assert removed == 2
    assert await has_permission(db, USER, "group_member") == {READ}
    assert await has_permission(db, USER, "group_member", G1) == {READ}
    assert await has_permission(db, USER, "group", G1) == set()
    assert await has_permission(db, USER, "group_member", G2) == {READ, WRITE}
    assert await has_permission(db, OTHER_USER, "group_member", G1) == {WRITE}
    orphans = (
        await db.execute(
            select(func.count())
            .select_from(UserAccessType)
            .outerjoin(UserPermission, UserAccessType.user_permission_id == UserPermission.id)
            .where(UserPermission.id.is_(None))
        )
    ).scalar()
    assert orphans == 0


async def test_list_user_permissions_by_scope(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(G1, resource_key="group"), [AccessTypeUpdate(access_type=READ, permission=True)])

    global_items, global_total = await list_user_permissions(db, USER)
    group_items, group_total = await list_user_permissions(db, USER, G1)
    group_only_items, group_only_total = await list_user_permissions(db, USER, G1, group_only=True)

    assert [(i.resource_key, i.group_id) for i in global_items] == [("group_member", None)]
    assert global_total == 1
    assert {(i.resource_key, i.group_id) for i in group_items} == {("group_member", None), ("group", G1)}
    assert group_total == 2
    assert [(i.resource_key, i.group_id) for i in group_only_items] == [("group", G1)]
    assert group_only_total == 1
    assert group_only_items[0].display_name == "Group"
    assert group_only_items[0].access_types[0].access_type == READ
    assert group_only_items[0].access_types[0].permission is True


async def test_list_user_permissions_key_filter_keeps_total(db) -> None:
    await grant(db, _key(), [AccessTypeUpdate(access_type=READ, permission=True)])
    await grant(db, _key(resource_key="group"), [AccessTypeUpdate(access_type=READ, permission=True)])

    items, total = await list_user_permissions(db, USER, keys=["group"])

    assert [i.resource_key for i in items] == ["group"]
    assert total == 2
