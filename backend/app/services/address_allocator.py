"""
Address allocation service.

Issues proxy mailing addresses ``HT-{HUB}-{CLIENT_ID}/A``. Client ids are
sequential per hub and handed out under the hub's sequence lock.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ConflictError, ResourceNotFoundError
from backend.app.models.address_enums import AddressStatus
from backend.app.models.custom_address import CustomAddress
from backend.app.models.hub_address import HubAddress
from backend.app.models.sequence_counter import SequenceKind
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.sequence_store import sequence_store
from backend.app.services.user_directory import find_user

logger = logging.getLogger(__name__)

ADDRESS_UNIT = "A"


def format_client_id(sequence_value: int) -> str:
    return f"{sequence_value:05d}"


def format_address_code(hub: str, client_id: str, unit: str = ADDRESS_UNIT) -> str:
    return f"HT-{hub}-{client_id}/{unit}"


async def get_active_hub(db: AsyncSession, hub: str) -> HubAddress:
    """
    Fetch an active hub by code.

    Raises:
        ResourceNotFoundError: unknown or inactive hub
    """
    result = await db.execute(
        select(HubAddress).where(HubAddress.hub == hub, HubAddress.is_active == True)
    )
    hub_address = result.scalar_one_or_none()
    if not hub_address:
        raise ResourceNotFoundError("Hub", hub, message=f"Hub {hub} not found or inactive")
    return hub_address


async def _find_active_address(db: AsyncSession, user_id: int, hub: str) -> Optional[CustomAddress]:
    result = await db.execute(
        select(CustomAddress).where(
            CustomAddress.user_id == user_id,
            CustomAddress.hub == hub,
            CustomAddress.status == AddressStatus.ACTIVE,
        )
    )
    return result.scalars().first()


async def allocate_address(
    db: AsyncSession,
    user_id: int,
    hub: str,
    actor_id: Optional[int] = None
) -> CustomAddress:
    """
    Allocate a new custom address for a user at a hub.

    The hub counter row is locked first, so the duplicate check, the
    counter increment and the insert are serialized per hub across
    processes until commit.

    Args:
        db: Database session
        user_id: Owner of the new address
        hub: 3-letter hub code
        actor_id: Who requested the allocation (defaults to the owner)

    Returns:
        The new ACTIVE, primary CustomAddress

    Raises:
        ResourceNotFoundError: user missing, hub unknown or inactive
        ConflictError: user already holds an ACTIVE address at the hub
    """
    hub = hub.upper()
    await find_user(db, user_id)
    hub_address = await get_active_hub(db, hub)

    async with sequence_store.lock(SequenceKind.HUB_ADDRESS, hub):
        try:
            await sequence_store.acquire(db, SequenceKind.HUB_ADDRESS, hub)
            existing = await _find_active_address(db, user_id, hub)
            if existing:
                raise ConflictError(
                    f"User already has an active address at hub {hub}: {existing.address_code}",
                    details={"address_code": existing.address_code, "hub": hub},
                )

            sequence_value = await sequence_store.increment(db, SequenceKind.HUB_ADDRESS, hub)
            client_id = format_client_id(sequence_value)

            address = CustomAddress(
                user_id=user_id,
                address_code=format_address_code(hub, client_id),
                hub=hub,
                client_id=client_id,
                sequence_value=sequence_value,
                unit=ADDRESS_UNIT,
                us_street=hub_address.street,
                us_city=hub_address.city,
                us_state=hub_address.state,
                us_zipcode=hub_address.zipcode,
                status=AddressStatus.ACTIVE,
                is_primary=True,
                generated_at=datetime.now(timezone.utc),
            )
            db.add(address)
            await db.flush()
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                f"Concurrent allocation at hub {hub}, retry the operation",
                details={"hub": hub},
            ) from e
        except Exception:
            await db.rollback()
            raise

    logger.info("Allocated address %s for user %s", address.address_code, user_id)

    await log_event(
        db,
        action=AuditAction.ADDRESS_GENERATED,
        resource="custom_addresses",
        resource_id=address.id,
        actor_id=actor_id or user_id,
        description=f"Generated address {address.address_code}",
        changes={"user_id": user_id, "hub": hub, "sequence_value": sequence_value},
    )
    await db.refresh(address)
    return address


async def get_user_addresses(db: AsyncSession, user_id: int) -> List[CustomAddress]:
    """All addresses of a user, primary first, newest first."""
    result = await db.execute(
        select(CustomAddress)
        .where(CustomAddress.user_id == user_id)
        .order_by(CustomAddress.is_primary.desc(), CustomAddress.generated_at.desc(), CustomAddress.id.desc())
    )
    return result.scalars().all()


async def get_primary_address(db: AsyncSession, user_id: int) -> Optional[CustomAddress]:
    result = await db.execute(
        select(CustomAddress)
        .where(
            CustomAddress.user_id == user_id,
            CustomAddress.is_primary == True,
            CustomAddress.status == AddressStatus.ACTIVE,
        )
        .order_by(CustomAddress.id.desc())
    )
    return result.scalars().first()


async def get_address_by_code(db: AsyncSession, address_code: str) -> Optional[CustomAddress]:
    result = await db.execute(
        select(CustomAddress).where(CustomAddress.address_code == address_code)
    )
    return result.scalar_one_or_none()


async def deactivate_address(
    db: AsyncSession,
    address_id: int,
    actor_id: Optional[int] = None
) -> CustomAddress:
    """
    Soft-deactivate an address. Deactivating twice is a no-op.

    Raises:
        ResourceNotFoundError: unknown address id
    """
    address = await db.get(CustomAddress, address_id)
    if not address:
        raise ResourceNotFoundError("Address", address_id)

    if address.status == AddressStatus.INACTIVE:
        return address

    address.status = AddressStatus.INACTIVE
    address.is_primary = False
    address.deactivated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(address)

    await log_event(
        db,
        action=AuditAction.ADDRESS_DEACTIVATED,
        resource="custom_addresses",
        resource_id=address.id,
        actor_id=actor_id,
        description=f"Deactivated address {address.address_code}",
    )
    await db.refresh(address)
    return address


# Hub reference data

async def list_active_hubs(db: AsyncSession) -> List[HubAddress]:
    result = await db.execute(
        select(HubAddress).where(HubAddress.is_active == True).order_by(HubAddress.hub)
    )
    return result.scalars().all()


async def upsert_hub(
    db: AsyncSession,
    hub: str,
    data: Dict[str, Any],
    actor_id: Optional[int] = None
) -> HubAddress:
    """Create or update a hub's physical address. Never touches the hub counter."""
    hub = hub.upper()
    result = await db.execute(select(HubAddress).where(HubAddress.hub == hub))
    hub_address = result.scalar_one_or_none()

    if hub_address is None:
        hub_address = HubAddress(hub=hub, **data)
        db.add(hub_address)
    else:
        for field, value in data.items():
            setattr(hub_address, field, value)

    await db.commit()
    await db.refresh(hub_address)

    await log_event(
        db,
        action=AuditAction.HUB_UPSERTED,
        resource="hub_addresses",
        resource_id=hub,
        actor_id=actor_id,
        changes={k: v for k, v in data.items() if v is not None},
    )
    await db.refresh(hub_address)
    return hub_address


async def deactivate_hub(db: AsyncSession, hub: str, actor_id: Optional[int] = None) -> HubAddress:
    """Hide a hub from allocation. Existing addresses at the hub are untouched."""
    hub = hub.upper()
    result = await db.execute(select(HubAddress).where(HubAddress.hub == hub))
    hub_address = result.scalar_one_or_none()
    if not hub_address:
        raise ResourceNotFoundError("Hub", hub)

    if hub_address.is_active:
        hub_address.is_active = False
        await db.commit()
        await log_event(
            db,
            action=AuditAction.HUB_DEACTIVATED,
            resource="hub_addresses",
            resource_id=hub,
            actor_id=actor_id,
        )
        await db.refresh(hub_address)
    return hub_address


async def get_hub_statistics(db: AsyncSession, hub: str) -> Dict[str, Any]:
    """Address counts for a hub plus its sequence high-water mark."""
    hub = hub.upper()
    result = await db.execute(
        select(CustomAddress.status, func.count(CustomAddress.id))
        .where(CustomAddress.hub == hub)
        .group_by(CustomAddress.status)
    )
    counts = {status: count for status, count in result.all()}
    total = sum(counts.values())
    active = counts.get(AddressStatus.ACTIVE, 0)

    return {
        "hub": hub,
        "total_addresses": total,
        "active_addresses": active,
        "inactive_addresses": total - active,
        "current_sequence": await sequence_store.current(db, SequenceKind.HUB_ADDRESS, hub),
    }
