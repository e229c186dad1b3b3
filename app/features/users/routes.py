"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import atomic, get_db
from app.core.exceptions import Conflict
from app.features.roles.engine import apply_role
from app.features.roles.models import CREATED_USER_ROLE_KEY
from app.features.users.models import User
from app.features.users.schemas import UserCreate, UserResponse
from app.features.users.dependencies import get_current_user
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


async def register_user(db: AsyncSession, email: str, name: str) -> User:
    """Create a user and apply the `created_user` role globally, in one transaction."""
    async with atomic(db):
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise Conflict(f"User with email '{email}' already exists")

        user = User(email=email, name=name)
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            raise Conflict(f"User with email '{email}' already exists")

        await apply_role(db, CREATED_USER_ROLE_KEY, user.id)

    log.info(f"Registered user {user.id}")
    await db.refresh(user)
    return user


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Register a new user."""
    return await register_user(db, user_data.email, user_data.name)


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user
