"""
Tests for the billing engine: invoices, payments and pickup checks.
"""

import re
import pytest
from decimal import Decimal
from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AlreadySettledError,
    InsufficientAmountError,
    ResourceNotFoundError,
)
from backend.app.domain.billing.billing_service import BillingService
from backend.app.domain.events import InvoicePaid, ParcelEnteredReceived
from backend.app.domain.parcel.ledger_service import ParcelService
from backend.app.models.billing_enums import InvoiceStatus, PaymentMethod, PaymentStatus
from backend.app.models.invoice_item import InvoiceItem
from backend.app.models.parcel_enums import ParcelStatus, HistorySource
from backend.app.models.payment import Payment

S = ParcelStatus

TO_READY = [S.PROCESSING, S.READY]
TO_CUSTOMS = [S.PROCESSING, S.READY, S.SHIPPED, S.IN_TRANSIT, S.CUSTOMS]


async def _parcel_at(db, address, steps, weight="20", description=None):
    """Intake a parcel and walk it through the given statuses."""
    parcel = await ParcelService.create_parcel(
        db, address.address_code, {"weight": Decimal(weight), "description": description}
    )
    for status in steps:
        parcel = await ParcelService.update_status(db, parcel.id, status)
    return parcel


async def _invoice_of(db, parcel_id):
    result = await db.execute(
        select(InvoiceItem.invoice_id).where(InvoiceItem.parcel_id == parcel_id).order_by(InvoiceItem.id.desc())
    )
    return await BillingService.get_invoice(db, result.scalars().first())


async def _reload(db, loader, object_id):
    """Fetch a fresh copy after a failed call rolled the session back."""
    obj = await loader(db, object_id)
    await db.refresh(obj)
    return obj


@pytest.mark.asyncio
async def test_invoice_total_is_subtotal_plus_tax_plus_fees(db_session, client_address, electronics):
    first = await ParcelService.create_parcel(
        db_session, client_address.address_code, {"weight": Decimal("1.5")}
    )
    second = await ParcelService.create_parcel(
        db_session, client_address.address_code,
        {"weight": Decimal("4"), "category_id": electronics.id},
    )

    invoice = await BillingService.generate_invoice_for_parcels(
        db_session, client_address.user_id, [first.id, second.id], notes="Consolidated"
    )

    assert re.match(r"^INV-\d{4}-\d{6}$", invoice.invoice_number)
    assert invoice.status == InvoiceStatus.PENDING
    # 10 + 1.5 * 2 = 13.00 ; 15 + 4 * 3 = 27.00
    assert invoice.subtotal == Decimal("40.00")
    assert invoice.tax == Decimal("0.00")
    assert invoice.fees == Decimal("5.00")
    assert invoice.total == invoice.subtotal + invoice.tax + invoice.fees
    assert invoice.due_date is not None

    items = await BillingService.get_invoice_items(db_session, invoice.id)
    assert [i.parcel_id for i in items] == [first.id, second.id]
    assert [i.total for i in items] == [Decimal("13.00"), Decimal("27.00")]


@pytest.mark.asyncio
async def test_invoice_ignores_parcels_of_other_users(db_session, client_address, other_client):
    parcel = await ParcelService.create_parcel(db_session, client_address.address_code, {})

    with pytest.raises(ResourceNotFoundError):
        await BillingService.generate_invoice_for_parcels(db_session, other_client.id, [parcel.id])


@pytest.mark.asyncio
async def test_invoice_numbers_are_sequential(db_session, client_address):
    first = await ParcelService.create_parcel(db_session, client_address.address_code, {})
    second = await ParcelService.create_parcel(db_session, client_address.address_code, {})

    n1 = (await _invoice_of(db_session, first.id)).invoice_number
    n2 = (await _invoice_of(db_session, second.id)).invoice_number
    assert int(n2.rsplit("-", 1)[1]) == int(n1.rsplit("-", 1)[1]) + 1


@pytest.mark.asyncio
async def test_cash_payment_hands_parcel_over(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, TO_READY, weight="20")
    invoice = await _invoice_of(db_session, parcel.id)
    assert invoice.total == Decimal("55.00")

    payment = await BillingService.record_cash_payment(
        db_session, invoice.id, Decimal("60"), received_by=agent_user.id, notes="Counter 2"
    )

    assert payment.method == PaymentMethod.CASH
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount == Decimal("55.00")
    assert payment.gateway == "cash"
    assert payment.transaction_id.startswith("CASH-")
    assert payment.meta_data["amount_tendered"] == "60.00"
    assert payment.meta_data["change_given"] == "5.00"
    assert payment.meta_data["received_by"] == agent_user.id

    invoice = await BillingService.get_invoice(db_session, invoice.id)
    await db_session.refresh(invoice)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at is not None

    parcel = await ParcelService.find_by_id(db_session, parcel.id)
    await db_session.refresh(parcel)
    assert parcel.status == S.DELIVERED
    assert parcel.delivered_at is not None

    last = (await ParcelService.get_status_history(db_session, parcel.id))[-1]
    assert last.old_status == S.READY
    assert last.new_status == S.DELIVERED
    assert last.source == HistorySource.CASH_PICKUP
    assert last.changed_by == agent_user.id
    assert last.meta_data["invoice_number"] == invoice.invoice_number


@pytest.mark.asyncio
async def test_insufficient_cash_changes_nothing(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, TO_READY, weight="20")
    invoice = await _invoice_of(db_session, parcel.id)
    invoice_id, parcel_id = invoice.id, parcel.id

    with pytest.raises(InsufficientAmountError) as exc_info:
        await BillingService.record_cash_payment(db_session, invoice_id, Decimal("50"), received_by=agent_user.id)
    assert exc_info.value.details == {"amount": "50.00", "total": "55.00"}

    invoice = await _reload(db_session, BillingService.get_invoice, invoice_id)
    assert invoice.status == InvoiceStatus.PENDING
    assert await BillingService.get_invoice_payments(db_session, invoice_id) == []
    parcel = await _reload(db_session, ParcelService.find_by_id, parcel_id)
    assert parcel.status == S.READY


@pytest.mark.asyncio
async def test_paid_invoice_cannot_be_paid_again(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, TO_READY)
    invoice = await _invoice_of(db_session, parcel.id)
    invoice_id = invoice.id
    await BillingService.record_cash_payment(db_session, invoice_id, invoice.total, received_by=agent_user.id)

    with pytest.raises(AlreadySettledError):
        await BillingService.record_cash_payment(db_session, invoice_id, Decimal("100"), received_by=agent_user.id)
    with pytest.raises(AlreadySettledError):
        await BillingService.record_payment(db_session, invoice_id, Decimal("100"), PaymentMethod.CARD)

    result = await db_session.execute(select(Payment).where(Payment.invoice_id == invoice_id))
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_electronic_payment_moves_waiting_parcels(db_session, client_address, client_user):
    ready = await _parcel_at(db_session, client_address, TO_READY, description="Ready box")
    held = await _parcel_at(db_session, client_address, TO_CUSTOMS, description="Held box")
    working = await _parcel_at(db_session, client_address, [S.PROCESSING], description="Working box")

    invoice = await BillingService.generate_invoice_for_parcels(
        db_session, client_user.id, [ready.id, held.id, working.id]
    )
    payment = await BillingService.record_payment(
        db_session, invoice.id, invoice.total, PaymentMethod.CARD,
        transaction_id="pi_123", actor_id=client_user.id, gateway="stripe",
    )
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "pi_123"

    statuses = {}
    for parcel in (ready, held, working):
        stored = await ParcelService.find_by_id(db_session, parcel.id)
        await db_session.refresh(stored)
        statuses[parcel.id] = stored.status

    assert statuses[ready.id] == S.SHIPPED
    assert statuses[held.id] == S.OUT_FOR_DELIVERY
    assert statuses[working.id] == S.PROCESSING

    last = (await ParcelService.get_status_history(db_session, ready.id))[-1]
    assert last.source == HistorySource.PAYMENT
    assert last.meta_data["payment_method"] == "CARD"


@pytest.mark.asyncio
async def test_electronic_underpayment_is_rejected(db_session, client_address):
    parcel = await _parcel_at(db_session, client_address, TO_READY)
    invoice = await _invoice_of(db_session, parcel.id)
    parcel_id = parcel.id

    with pytest.raises(InsufficientAmountError):
        await BillingService.record_payment(db_session, invoice.id, Decimal("1.00"), PaymentMethod.CARD)

    parcel = await _reload(db_session, ParcelService.find_by_id, parcel_id)
    assert parcel.status == S.READY


@pytest.mark.asyncio
async def test_failing_settlement_handler_rolls_back_payment(db_session, client_address, bus):
    parcel = await _parcel_at(db_session, client_address, TO_READY)
    invoice = await _invoice_of(db_session, parcel.id)

    async def broken_ledger(db, event):
        raise RuntimeError("ledger offline")

    bus.subscribe(InvoicePaid, broken_ledger)
    invoice_id, parcel_id, total = invoice.id, parcel.id, invoice.total

    with pytest.raises(RuntimeError):
        await BillingService.record_payment(db_session, invoice_id, total, PaymentMethod.CARD)

    invoice = await _reload(db_session, BillingService.get_invoice, invoice_id)
    assert invoice.status == InvoiceStatus.PENDING
    assert await BillingService.get_invoice_payments(db_session, invoice_id) == []
    parcel = await _reload(db_session, ParcelService.find_by_id, parcel_id)
    assert parcel.status == S.READY


@pytest.mark.asyncio
async def test_cash_before_ready_keeps_parcel(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, [S.PROCESSING])
    invoice = await _invoice_of(db_session, parcel.id)

    await BillingService.record_cash_payment(db_session, invoice.id, invoice.total, received_by=agent_user.id)

    invoice = await BillingService.get_invoice(db_session, invoice.id)
    assert invoice.status == InvoiceStatus.PAID
    parcel = await ParcelService.find_by_id(db_session, parcel.id)
    await db_session.refresh(parcel)
    assert parcel.status == S.PROCESSING


@pytest.mark.asyncio
async def test_cash_before_ready_when_enabled(db_session, client_address, agent_user, monkeypatch):
    monkeypatch.setattr(settings, "allow_cash_pickup_before_ready", True)
    parcel = await _parcel_at(db_session, client_address, [])
    invoice = await _invoice_of(db_session, parcel.id)

    await BillingService.record_cash_payment(db_session, invoice.id, invoice.total, received_by=agent_user.id)

    parcel = await ParcelService.find_by_id(db_session, parcel.id)
    await db_session.refresh(parcel)
    assert parcel.status == S.DELIVERED


@pytest.mark.asyncio
async def test_pickup_check_blockers(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, [])

    check = await BillingService.check_parcel_ready_for_pickup(db_session, parcel.tracking_number)
    assert check["ready"] is False
    assert check["blockers"] == ["status not ready", "invoice not paid"]
    assert check["total_paid"] == Decimal("0.00")

    await ParcelService.update_status(db_session, parcel.id, S.PROCESSING)
    await ParcelService.update_status(db_session, parcel.id, S.READY)
    check = await BillingService.check_parcel_ready_for_pickup(db_session, parcel.tracking_number)
    assert check["blockers"] == ["invoice not paid"]
    assert "Amount due: $55.00" in check["message"]

    invoice = await _invoice_of(db_session, parcel.id)
    await BillingService.record_cash_payment(db_session, invoice.id, invoice.total, received_by=agent_user.id)
    check = await BillingService.check_parcel_ready_for_pickup(db_session, parcel.tracking_number)
    assert check["ready"] is True
    assert check["blockers"] == []
    assert check["parcel"]["status"] == S.DELIVERED
    assert check["invoice"]["status"] == InvoiceStatus.PAID
    assert check["total_paid"] == Decimal("55.00")


@pytest.mark.asyncio
async def test_pickup_check_without_invoice(db_session, client_address, bus):
    bus.unsubscribe(ParcelEnteredReceived, BillingService.invoice_received_parcel)
    parcel = await _parcel_at(db_session, client_address, TO_READY)

    check = await BillingService.check_parcel_ready_for_pickup(db_session, parcel.tracking_number)
    assert check["blockers"] == ["no invoice found"]
    assert check["invoice"] is None

    with pytest.raises(ResourceNotFoundError):
        await BillingService.check_parcel_ready_for_pickup(db_session, "PKG-1999-000001")


@pytest.mark.asyncio
async def test_thermal_receipt(db_session, client_address, agent_user):
    parcel = await _parcel_at(db_session, client_address, TO_READY, description="Radio")
    invoice = await _invoice_of(db_session, parcel.id)
    await BillingService.record_cash_payment(db_session, invoice.id, Decimal("60"), received_by=agent_user.id)

    receipt = await BillingService.generate_thermal_receipt(db_session, invoice.id)

    assert invoice.invoice_number in receipt
    assert parcel.tracking_number in receipt
    assert "TOTAL: $55.00" in receipt
    assert "Change given: $5.00" in receipt
    assert "Client: Jean Dupont" in receipt
    assert all(len(line) <= 32 for line in receipt.splitlines())


@pytest.mark.asyncio
async def test_billing_reports(db_session, client_address, agent_user):
    paid = await _parcel_at(db_session, client_address, TO_READY)
    await _parcel_at(db_session, client_address, [], weight="5")

    invoice = await _invoice_of(db_session, paid.id)
    await BillingService.record_cash_payment(db_session, invoice.id, invoice.total, received_by=agent_user.id)

    stats = await BillingService.get_billing_statistics(db_session)
    assert stats["monthly_revenue"] == Decimal("55.00")
    assert stats["monthly_cash_revenue"] == Decimal("55.00")
    assert stats["unpaid_invoices"] == 1
    # 10 + 5 * 2 + 5
    assert stats["unpaid_amount"] == Decimal("25.00")

    cash = await BillingService.get_cash_payments(db_session)
    assert [p.invoice_id for p in cash] == [invoice.id]

    unpaid = await BillingService.get_unpaid_invoices(db_session)
    assert len(unpaid) == 1
    assert unpaid[0].status == InvoiceStatus.PENDING
