"""
Data helpers shared by the test modules.
"""

from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.jwt import create_access_token
from backend.app.models.enums import UserRole
from backend.app.models.user import User
from backend.app.models.hub_address import HubAddress
from backend.app.models.parcel_category import ParcelCategory


async def create_user(db: AsyncSession, email: str, role: UserRole = UserRole.CLIENT, **kwargs) -> User:
    user = User(
        email=email,
        role=role,
        first_name=kwargs.pop("first_name", "Test"),
        last_name=kwargs.pop("last_name", "User"),
        is_active=kwargs.pop("is_active", True),
        **kwargs
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_hub(db: AsyncSession, hub: str, is_active: bool = True) -> HubAddress:
    hub_address = HubAddress(
        hub=hub,
        hub_name=f"{hub} Hub",
        street="1234 Ocean Drive",
        city="Miami",
        state="FL",
        zipcode="33139",
        is_active=is_active,
    )
    db.add(hub_address)
    await db.commit()
    await db.refresh(hub_address)
    return hub_address


async def create_category(db: AsyncSession, name: str, base_rate: str, per_pound_rate: str, is_active: bool = True) -> ParcelCategory:
    category = ParcelCategory(
        name=name,
        base_rate=Decimal(base_rate),
        per_pound_rate=Decimal(per_pound_rate),
        is_active=is_active,
    )
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.email, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}
