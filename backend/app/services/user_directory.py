"""
User directory and category/rate table lookups.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.models.user import User
from backend.app.models.parcel_category import ParcelCategory


async def find_user(db: AsyncSession, user_id: int) -> User:
    """
    Raises:
        ResourceNotFoundError: no such user
    """
    user = await db.get(User, user_id)
    if not user:
        raise ResourceNotFoundError("User", user_id)
    return user


async def find_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def find_category(db: AsyncSession, category_id: int, active_only: bool = True) -> ParcelCategory:
    """
    Fetch a parcel category from the rate table.

    Raises:
        ResourceNotFoundError: unknown category, or inactive when active_only
    """
    category = await db.get(ParcelCategory, category_id)
    if not category or (active_only and not category.is_active):
        raise ResourceNotFoundError("Category", category_id)
    return category
