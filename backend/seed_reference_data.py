"""
Database seeding script for reference data.

Creates hubs, parcel categories and the staff accounts needed to operate
the warehouse. Run this script after the database is set up but before
first use. Existing rows are left untouched.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.user import User
from backend.app.models.enums import UserRole
from backend.app.models.hub_address import HubAddress
from backend.app.models.parcel_category import ParcelCategory
from backend.app.services.user_directory import find_user_by_email
import backend.app.main  # noqa: F401  registers every model on Base

HUBS = [
    {"hub": "NMB", "hub_name": "North Miami Beach", "street": "1850 NE 163rd St", "city": "North Miami Beach", "state": "FL", "zipcode": "33162"},
    {"hub": "MIA", "hub_name": "Miami", "street": "1234 Ocean Drive", "city": "Miami", "state": "FL", "zipcode": "33139"},
    {"hub": "NYC", "hub_name": "New York", "street": "5678 Broadway", "city": "New York", "state": "NY", "zipcode": "10019"},
]

CATEGORIES = [
    {"name": "Electronics", "description": "Electronic devices and accessories", "base_rate": Decimal("15.00"), "per_pound_rate": Decimal("3.00")},
    {"name": "Clothing", "description": "Clothes and textiles", "base_rate": Decimal("10.00"), "per_pound_rate": Decimal("1.50")},
    {"name": "Documents", "description": "Papers and documents", "base_rate": Decimal("8.00"), "per_pound_rate": Decimal("1.00")},
    {"name": "Food", "description": "Non-perishable food items", "base_rate": Decimal("12.00"), "per_pound_rate": Decimal("2.00")},
    {"name": "General", "description": "General merchandise", "base_rate": Decimal("10.00"), "per_pound_rate": Decimal("2.00")},
]

STAFF = [
    {"email": "admin@forwarding.local", "first_name": "Admin", "last_name": "System", "role": UserRole.SUPER_ADMIN},
    {"email": "agent.miami@forwarding.local", "first_name": "Miami", "last_name": "Counter", "role": UserRole.AGENT},
]


async def seed_reference_data():
    """
    Seed hubs, categories and staff users.

    Passwords are managed by the identity service; staff rows carry no hash.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Seeding hubs...")
        for hub in HUBS:
            result = await db.execute(select(HubAddress).where(HubAddress.hub == hub["hub"]))
            if result.scalar_one_or_none():
                print(f"  - {hub['hub']} already exists, skipping")
                continue
            db.add(HubAddress(**hub))
            print(f"  + {hub['hub']} ({hub['hub_name']})")

        print("Seeding parcel categories...")
        for category in CATEGORIES:
            result = await db.execute(select(ParcelCategory).where(ParcelCategory.name == category["name"]))
            if result.scalar_one_or_none():
                continue
            db.add(ParcelCategory(**category))
            print(f"  + {category['name']}")

        print("Seeding staff users...")
        for staff in STAFF:
            if await find_user_by_email(db, staff["email"]):
                continue
            db.add(User(**staff, is_active=True))
            print(f"  + {staff['email']} ({staff['role'].value})")

        await db.commit()
        print("Reference data seeding completed")


if __name__ == "__main__":
    asyncio.run(seed_reference_data())
