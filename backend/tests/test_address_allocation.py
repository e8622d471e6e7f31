"""
Tests for custom address allocation.
"""

import asyncio
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import ConflictError, ResourceNotFoundError
from backend.app.models.address_enums import AddressStatus
from backend.app.models.custom_address import CustomAddress
from backend.app.models.sequence_counter import SequenceKind
from backend.app.services import address_allocator
from backend.app.services.audit import get_audit_trail
from backend.app.services.address_allocator import (
    allocate_address,
    deactivate_address,
    deactivate_hub,
    format_address_code,
    get_hub_statistics,
    get_primary_address,
    upsert_hub,
)
from backend.app.services.sequence_store import sequence_store
from backend.tests.helpers import create_user, create_hub


def test_address_code_format():
    assert format_address_code("MIA", "00042") == "HT-MIA-00042/A"


@pytest.mark.asyncio
async def test_allocate_copies_hub_address(db_session, client_user, hubs):
    address = await allocate_address(db_session, client_user.id, "mia")

    assert address.address_code == "HT-MIA-00001/A"
    assert address.hub == "MIA"
    assert address.client_id == "00001"
    assert address.sequence_value == 1
    assert address.status == AddressStatus.ACTIVE
    assert address.is_primary is True
    assert address.us_street == hubs["MIA"].street
    assert address.us_zipcode == hubs["MIA"].zipcode


@pytest.mark.asyncio
async def test_sequential_client_ids_per_hub(db_session, client_user, other_client, hubs):
    first = await allocate_address(db_session, client_user.id, "MIA")
    second = await allocate_address(db_session, other_client.id, "MIA")
    other_hub = await allocate_address(db_session, client_user.id, "NMB")

    assert first.address_code == "HT-MIA-00001/A"
    assert second.address_code == "HT-MIA-00002/A"
    # Hubs number independently
    assert other_hub.address_code == "HT-NMB-00001/A"


@pytest.mark.asyncio
async def test_second_active_address_at_same_hub_conflicts(db_session, client_user, hubs):
    await allocate_address(db_session, client_user.id, "MIA")

    with pytest.raises(ConflictError) as exc_info:
        await allocate_address(db_session, client_user.id, "MIA")

    assert exc_info.value.details["address_code"] == "HT-MIA-00001/A"
    # The counter did not move
    stats = await get_hub_statistics(db_session, "MIA")
    assert stats["current_sequence"] == 1


@pytest.mark.asyncio
async def test_unknown_or_inactive_hub(db_session, client_user, hubs):
    with pytest.raises(ResourceNotFoundError):
        await allocate_address(db_session, client_user.id, "XXX")

    await deactivate_hub(db_session, "NMB")
    with pytest.raises(ResourceNotFoundError):
        await allocate_address(db_session, client_user.id, "NMB")


@pytest.mark.asyncio
async def test_unknown_user(db_session, hubs):
    with pytest.raises(ResourceNotFoundError):
        await allocate_address(db_session, 999, "MIA")


@pytest.mark.asyncio
async def test_deactivated_codes_are_never_reused(db_session, client_user, hubs):
    first = await allocate_address(db_session, client_user.id, "MIA")

    deactivated = await deactivate_address(db_session, first.id)
    assert deactivated.status == AddressStatus.INACTIVE
    assert deactivated.is_primary is False
    assert deactivated.deactivated_at is not None

    again = await deactivate_address(db_session, first.id)
    assert again.status == AddressStatus.INACTIVE

    replacement = await allocate_address(db_session, client_user.id, "MIA")
    assert replacement.address_code == "HT-MIA-00002/A"

    primary = await get_primary_address(db_session, client_user.id)
    assert primary.id == replacement.id

    stats = await get_hub_statistics(db_session, "MIA")
    assert stats == {
        "hub": "MIA",
        "total_addresses": 2,
        "active_addresses": 1,
        "inactive_addresses": 1,
        "current_sequence": 2,
    }


@pytest.mark.asyncio
async def test_allocation_is_audited(db_session, client_user, agent_user, hubs):
    address = await allocate_address(db_session, client_user.id, "MIA", actor_id=agent_user.id)

    trail = await get_audit_trail(db_session, resource="custom_addresses", resource_id=address.id)
    assert len(trail) == 1
    entry = trail[0]
    assert entry.action == "ADDRESS_GENERATED"
    assert entry.actor_id == agent_user.id
    assert entry.resource_id == str(address.id)


@pytest.mark.asyncio
async def test_upsert_hub_keeps_counter(db_session, client_user, hubs):
    await allocate_address(db_session, client_user.id, "MIA")

    updated = await upsert_hub(db_session, "MIA", {"street": "99 Biscayne Blvd", "is_active": True})
    assert updated.street == "99 Biscayne Blvd"

    stats = await get_hub_statistics(db_session, "MIA")
    assert stats["current_sequence"] == 1


@pytest.mark.asyncio
async def test_concurrent_allocations_get_distinct_sequences(file_session_factory):
    """Ten clients signing up at once receive ids 1..10, no gaps, no repeats."""
    async with file_session_factory() as db:
        await create_hub(db, "MIA")
        users = [await create_user(db, f"client{i}@example.com") for i in range(10)]
    user_ids = [u.id for u in users]

    async def allocate(user_id):
        async with file_session_factory() as db:
            address = await allocate_address(db, user_id, "MIA")
            return address.sequence_value

    values = await asyncio.gather(*(allocate(uid) for uid in user_ids))

    assert sorted(values) == list(range(1, 11))

    async with file_session_factory() as db:
        result = await db.execute(select(CustomAddress.address_code))
        codes = result.scalars().all()
        assert len(set(codes)) == 10
        stats = await get_hub_statistics(db, "MIA")
        assert stats["current_sequence"] == 10


@pytest.mark.asyncio
async def test_hub_counter_is_locked_before_duplicate_check(db_session, client_user, hubs, mocker):
    calls = []
    real_acquire = sequence_store.acquire
    real_find = address_allocator._find_active_address

    async def acquire(db, kind, scope):
        calls.append(("acquire", scope))
        return await real_acquire(db, kind, scope)

    async def find_active(db, user_id, hub):
        calls.append(("find", hub))
        return await real_find(db, user_id, hub)

    mocker.patch.object(sequence_store, "acquire", side_effect=acquire)
    mocker.patch.object(address_allocator, "_find_active_address", side_effect=find_active)

    await allocate_address(db_session, client_user.id, "MIA")

    assert calls[:2] == [("acquire", "MIA"), ("find", "MIA")]


@pytest.mark.asyncio
async def test_database_rejects_second_active_address(db_session, client_user, hubs):
    first = await allocate_address(db_session, client_user.id, "MIA")
    first_id, user_id = first.id, first.user_id

    db_session.add(CustomAddress(
        user_id=user_id,
        address_code="HT-MIA-00099/A",
        hub="MIA",
        client_id="00099",
        sequence_value=99,
        unit="A",
        us_street=first.us_street,
        us_city=first.us_city,
        us_state=first.us_state,
        us_zipcode=first.us_zipcode,
        status=AddressStatus.ACTIVE,
        generated_at=first.generated_at,
    ))
    with pytest.raises(IntegrityError):
        await db_session.flush()
    await db_session.rollback()

    await deactivate_address(db_session, first_id)
    replacement = await allocate_address(db_session, user_id, "MIA")
    assert replacement.status == AddressStatus.ACTIVE


@pytest.mark.asyncio
async def test_counter_provisioned_by_another_writer_is_reused(db_session, mocker):
    """The counter row appears between this session's lookup and its insert."""
    await sequence_store.increment(db_session, SequenceKind.HUB_ADDRESS, "CAP")
    await db_session.commit()

    real_select = sequence_store._select_for_update
    lookups = []

    async def missed_first_lookup(db, kind, scope):
        lookups.append(scope)
        if len(lookups) == 1:
            return None
        return await real_select(db, kind, scope)

    mocker.patch.object(sequence_store, "_select_for_update", side_effect=missed_first_lookup)

    value = await sequence_store.increment(db_session, SequenceKind.HUB_ADDRESS, "CAP")
    await db_session.commit()

    assert value == 2
    assert lookups == ["CAP", "CAP"]
    assert await sequence_store.current(db_session, SequenceKind.HUB_ADDRESS, "CAP") == 2
