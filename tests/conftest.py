"""Shared pytest fixtures for engine and API tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core import config
from app.core.database.engine import get_db, init_db
from app.features.capabilities.models import AccessType
from app.features.capabilities.registry import register_resource
from app.features.policies import dependencies as policy_dependencies
from app.features.policies.binder import RoutePolicyBinder
from app.features.roles.seed import seed
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.main import app as fastapi_app


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite database, fresh for every test."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _engine_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin the configurable behaviours to their defaults unless a test overrides them."""

    monkeypatch.setattr(config, "PERMISSION_SCOPE_MATCHING", "exact")
    monkeypatch.setattr(config, "ROLE_REAPPLY_OVERWRITES", False)
    monkeypatch.setattr(config, "ROUTE_POLICY_DEFAULT", "allow")
    monkeypatch.setattr(policy_dependencies, "_unmatched_routes", set())


@pytest_asyncio.fixture()
async def resources(db: AsyncSession) -> None:
    """A small catalog used by the store and role tests."""

    await register_resource(db, "group", "Group", [AccessType.CREATE, AccessType.READ, AccessType.DELETE])
    await register_resource(db, "group_member", "Group Member", [AccessType.READ, AccessType.WRITE])
    await register_resource(db, "permission", "Permission", [AccessType.READ, AccessType.WRITE, AccessType.OTHER])


@pytest_asyncio.fixture()
async def seeded(db: AsyncSession) -> None:
    """Default resources and role templates."""

    await seed(db)


@pytest.fixture()
def make_user(db: AsyncSession) -> Callable:
    """Create a user directly, without applying any role."""

    async def _make(email: str, name: str = "Test User") -> User:
        user = User(email=email, name=name)
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers() -> Callable[[str], dict[str, str]]:
    """Bearer headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture()
def app(session_factory) -> Iterator[FastAPI]:
    """The application bound to the test database and the default route policies."""

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.state.route_policies = RoutePolicyBinder.from_file(config.ROUTE_POLICY_FILE)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
