"""
Capability registry: the static catalog of resources and the access types
each of them supports.
"""
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic
from app.core.exceptions import DuplicateResource, InvalidAccessType, NotFound
from app.features.capabilities.models import AccessType, Resource, ResourceAccessType
from app.utils import get_logger


log = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 200


async def get_resource(db: AsyncSession, key: str) -> Resource:
    """Return the resource or raise NotFound."""
    resource = await db.get(Resource, key)
    if resource is None:
        raise NotFound(f"Resource '{key}' not found")
    return resource


async def register_resource(
    db: AsyncSession,
    key: str,
    display_name: str,
    access_types: Iterable[AccessType] = (),
) -> Resource:
    """
    Register a new resource, optionally declaring its access types in the
    same transaction.

    Raises:
        DuplicateResource: if the key already exists
    """
    access_types = list(dict.fromkeys(access_types))

    async with atomic(db):
        if await db.get(Resource, key) is not None:
            raise DuplicateResource(key)

        db.add(Resource(key=key, display_name=display_name))
        try:
            await db.flush()
        except IntegrityError:
            raise DuplicateResource(key)

        for access_type in access_types:
            db.add(ResourceAccessType(resource_key=key, access_type=access_type))

    log.info(f"Registered resource {key!r} with access types {[a.value for a in access_types]}")

    result = await db.execute(
        select(Resource).where(Resource.key == key).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def declare_access_type(db: AsyncSession, resource_key: str, access_type: AccessType) -> bool:
    """
    Declare that a resource supports an access type.

    Returns False if the pair was already declared.
    """
    async with atomic(db):
        await get_resource(db, resource_key)
        existing = await db.get(ResourceAccessType, (resource_key, access_type))
        if existing is not None:
            return False
        db.add(ResourceAccessType(resource_key=resource_key, access_type=access_type))

    log.info(f"Declared access type {access_type.value} on resource {resource_key!r}")
    return True


async def supported_access_types(db: AsyncSession, resource_key: str) -> Set[AccessType]:
    """Return the access types declared for a resource (empty if unknown)."""
    result = await db.execute(
        select(ResourceAccessType.access_type).where(ResourceAccessType.resource_key == resource_key)
    )
    return set(result.scalars().all())


async def validate_access_types(
    db: AsyncSession,
    resource_key: str,
    access_types: Iterable[AccessType],
) -> None:
    """
    Raise NotFound for an unknown resource and InvalidAccessType for any
    access type the resource does not declare.
    """
    await get_resource(db, resource_key)
    supported = await supported_access_types(db, resource_key)
    unsupported = sorted({a.value for a in access_types if a not in supported})
    if unsupported:
        raise InvalidAccessType(
            f"Resource '{resource_key}' does not support access types: {', '.join(unsupported)}"
        )


async def list_resources(
    db: AsyncSession,
    page: int = 0,
    limit: int = DEFAULT_PAGE_LIMIT,
    keys: Optional[List[str]] = None,
) -> Tuple[List[Resource], int]:
    """
    Return one page of resources and the total number of registered resources.

    `page` is zero-based. The total is not affected by the `keys` filter.
    """
    total = (await db.execute(select(func.count()).select_from(Resource))).scalar() or 0

    stmt = select(Resource)
    if keys:
        stmt = stmt.where(Resource.key.in_(keys))
    stmt = (
        stmt.order_by(Resource.created_at, Resource.key)
        .offset(page * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    )

    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def list_resources_with_access_types(
    db: AsyncSession,
    page: int = 0,
    limit: int = DEFAULT_PAGE_LIMIT,
    keys: Optional[List[str]] = None,
) -> Tuple[List[Resource], int]:
    """
    Same as list_resources; the returned resources have their access types
    loaded (the relationship is selectin-loaded).
    """
    return await list_resources(db, page=page, limit=limit, keys=keys)
