"""
Default catalog and role templates.

Seeding is idempotent: existing resources, access types, roles and template
rows are left as they are.
"""
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.features.capabilities.models import AccessType, Resource
from app.features.capabilities.registry import declare_access_type, register_resource
from app.features.permissions.schemas import AccessTypeUpdate, PermissionKey
from app.features.permissions.store import grant
from app.features.roles.engine import create_role, update_role_permission
from app.features.roles.models import ADD_MEMBER_ROLE_KEY, CREATED_GROUP_ROLE_KEY, CREATED_USER_ROLE_KEY
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

R, W, C, D, O = AccessType.READ, AccessType.WRITE, AccessType.CREATE, AccessType.DELETE, AccessType.OTHER

# key -> (display name, supported access types)
DEFAULT_RESOURCES: Dict[str, Tuple[str, List[AccessType]]] = {
    "group": ("Group", [C, R, D]),
    "group_meta_data": ("Group Meta Data", [R]),
    "group_member": ("Group Member", [R, W]),
    "user_answer": ("Answer", [R, W]),
    "solution_attempt": ("Solution attempt", [R, C, O]),
    "solution_attempt_finish": ("Finish of solution attempt", [W, O]),
    "task_package": ("Task package", [R, C, O]),
    "task_package_task": ("Task package tasks", [W, R, D, O]),
    "task_package_statistic": ("Statistic task package", [R, O]),
    "permission": ("Permission", [R, W, O]),
    "task": ("Tasks", [C, D, R]),
    "solution": ("Solution", [R]),
    "schema": ("Schemas", [R, C]),
}

# Bit patterns: (permission, set_permission, set_set_permission)
FULL = (True, True, True)
HOLD = (True, False, False)

# role key -> (name, {resource: {access type: bits}})
DEFAULT_ROLES: Dict[str, Tuple[str, Dict[str, Dict[AccessType, Tuple[bool, bool, bool]]]]] = {
    CREATED_GROUP_ROLE_KEY: ("Group creator", {
        "group": {R: FULL, D: FULL},
        "group_meta_data": {R: FULL},
        "group_member": {R: FULL, W: FULL},
        "user_answer": {R: FULL, W: FULL},
        "solution_attempt": {R: FULL, C: FULL, O: FULL},
        "task_package": {R: FULL, C: FULL, O: FULL},
        "task_package_task": {R: FULL, W: FULL, D: FULL, O: FULL},
        "task_package_statistic": {R: FULL, O: FULL},
        "permission": {R: FULL, W: FULL, O: FULL},
    }),
    ADD_MEMBER_ROLE_KEY: ("Group member", {
        "group": {R: HOLD},
        "group_meta_data": {R: HOLD},
        "group_member": {R: HOLD},
        "user_answer": {R: HOLD, W: HOLD},
        "solution_attempt": {R: HOLD, C: HOLD},
        "solution_attempt_finish": {W: HOLD},
        "task_package": {R: HOLD},
        "task_package_task": {R: HOLD},
        "permission": {R: HOLD},
    }),
    CREATED_USER_ROLE_KEY: ("Registered user", {
        "group": {C: HOLD},
        "task": {C: HOLD, R: HOLD},
        "solution": {R: HOLD},
        "schema": {R: HOLD},
        "permission": {R: HOLD},
    }),
}


def _updates(bits_by_type: Dict[AccessType, Tuple[bool, bool, bool]]) -> List[AccessTypeUpdate]:
    return [
        AccessTypeUpdate(
            access_type=access_type,
            permission=bits[0],
            set_permission=bits[1],
            set_set_permission=bits[2],
        )
        for access_type, bits in bits_by_type.items()
    ]


async def seed_resources(db: AsyncSession) -> int:
    """Register the default resources. Returns how many were created."""
    created = 0
    for key, (display_name, access_types) in DEFAULT_RESOURCES.items():
        if await db.get(Resource, key) is None:
            await register_resource(db, key, display_name, access_types)
            created += 1
            continue
        for access_type in access_types:
            await declare_access_type(db, key, access_type)
    log.info(f"Seeded {created} resource(s)")
    return created


async def seed_roles(db: AsyncSession) -> None:
    """Create the well-known roles with their default templates."""
    for role_key, (name, template) in DEFAULT_ROLES.items():
        role = await create_role(db, role_key, name)
        existing = {rp.resource_key for rp in role.permissions}
        for resource_key, bits_by_type in template.items():
            if resource_key in existing:
                log.debug(f"Role {role_key!r} already has a template for {resource_key!r}, skipping")
                continue
            await update_role_permission(db, role_key, resource_key, _updates(bits_by_type))
    log.info(f"Seeded roles {list(DEFAULT_ROLES)}")


async def seed_admin(db: AsyncSession, email: str, name: str = "Admin") -> User:
    """Create (or reuse) an admin user holding every bit on every resource globally."""
    async with atomic(db):
        result = await db.execute(select(User).where(User.email == email))
        admin = result.scalar_one_or_none()
        if admin is None:
            admin = User(email=email, name=name)
            db.add(admin)
            await db.flush()

    for key, (_, access_types) in DEFAULT_RESOURCES.items():
        await grant(
            db,
            PermissionKey(user_id=admin.id, resource_key=key),
            _updates({access_type: FULL for access_type in access_types}),
        )
    log.info(f"Seeded admin user {admin.id} ({email})")
    return admin


async def seed(db: AsyncSession, admin_email: Optional[str] = None) -> Optional[User]:
    """Seed resources, roles and, when `admin_email` is given, an admin user."""
    await seed_resources(db)
    await seed_roles(db)
    if admin_email:
        return await seed_admin(db, admin_email)
    return None
