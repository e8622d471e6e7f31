"""
Failure Injection Tests.

Validates resilience against payment gateway and side-effect failures.
"""

import httpx
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AlreadySettledError,
    PaymentGatewayError,
    PaymentNotCompletedError,
    ResourceNotFoundError,
)
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError
from backend.app.domain.billing.billing_service import BillingService
from backend.app.domain.parcel.ledger_service import ParcelService
from backend.app.models.billing_enums import InvoiceStatus, PaymentMethod
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.services import payment_gateway
from backend.app.services.audit import log_event
from backend.app.services.notification_service import NotificationService
from backend.tests.helpers import auth_headers, create_user


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123")


async def _invoice_for_new_parcel(db, address):
    parcel = await ParcelService.create_parcel(db, address.address_code, {"weight": Decimal("20")})
    invoices = await BillingService.get_user_invoices(db, address.user_id)
    return parcel, invoices[0]


def _intent(invoice_id, status="succeeded", amount=5500):
    return {
        "id": "pi_paid",
        "status": status,
        "amount": amount,
        "currency": "usd",
        "metadata": {"invoice_id": str(invoice_id), "invoice_number": "INV"},
    }


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker("test", failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    assert cb.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_recovers_after_timeout():
    cb = CircuitBreaker("test", failure_threshold=1, reset_timeout=5)

    async def failing_func():
        raise ValueError("Boom")

    async def healthy_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.state == "OPEN"

    # Once the timeout has passed the next call is a half-open trial
    cb.last_failure_time -= 10
    assert await cb.call(healthy_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


def test_minor_units():
    assert payment_gateway.to_minor_units(Decimal("55.00")) == 5500
    assert payment_gateway.to_minor_units(Decimal("0.05")) == 5


@pytest.mark.asyncio
async def test_payment_intent_requires_configuration(db_session, client_address, monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", None)
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)

    with pytest.raises(PaymentGatewayError):
        await BillingService.create_payment_intent(db_session, invoice.id)


@pytest.mark.asyncio
async def test_payment_intent_created(db_session, client_address, stripe_configured, mocker):
    post = mocker.patch.object(
        payment_gateway,
        "_post_payment_intent",
        new=AsyncMock(return_value={"id": "pi_42", "client_secret": "pi_42_secret", "amount": 5500, "currency": "usd"}),
    )
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)

    intent = await BillingService.create_payment_intent(db_session, invoice.id)

    assert intent == {"payment_intent_id": "pi_42", "client_secret": "pi_42_secret", "amount": 5500, "currency": "usd"}
    form = post.await_args.args[0]
    assert form["amount"] == 5500
    assert form["currency"] == "usd"
    assert form["metadata[invoice_number]"] == invoice.invoice_number


@pytest.mark.asyncio
async def test_gateway_outage_opens_circuit(db_session, client_address, stripe_configured, mocker):
    post = mocker.patch.object(
        payment_gateway,
        "_post_payment_intent",
        new=AsyncMock(side_effect=httpx.ConnectError("gateway down")),
    )
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)

    for _ in range(3):
        with pytest.raises(PaymentGatewayError):
            await BillingService.create_payment_intent(db_session, invoice.id)

    with pytest.raises(PaymentGatewayError) as exc_info:
        await BillingService.create_payment_intent(db_session, invoice.id)
    assert "temporarily unavailable" in exc_info.value.message
    assert post.await_count == 3


@pytest.mark.asyncio
async def test_gateway_error_over_http(client, client_user, client_address, db_session, stripe_configured, mocker):
    mocker.patch.object(
        payment_gateway,
        "_post_payment_intent",
        new=AsyncMock(side_effect=httpx.ReadTimeout("slow")),
    )
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)

    response = await client.post(
        f"/v1/billing/invoices/{invoice.id}/payment-intent", headers=auth_headers(client_user)
    )
    assert response.status_code == 502
    assert response.json()["error_code"] == "ERR_GATEWAY_001"


@pytest.mark.asyncio
async def test_payment_intent_for_paid_invoice(db_session, client_address, stripe_configured):
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)
    await BillingService.record_payment(db_session, invoice.id, invoice.total, PaymentMethod.BANK_TRANSFER)

    with pytest.raises(AlreadySettledError):
        await BillingService.create_payment_intent(db_session, invoice.id)


@pytest.mark.asyncio
async def test_audit_failure_is_swallowed(db_session, mocker):
    mocker.patch.object(db_session, "commit", new=AsyncMock(side_effect=RuntimeError("disk full")))

    entry = await log_event(db_session, action="TEST", resource="parcels", resource_id=1)

    assert entry is None


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_status_change(db_session, client_address):
    parcel = await ParcelService.create_parcel(db_session, client_address.address_code, {})
    before = await NotificationService.list_for_user(db_session, parcel.user_id)

    real_commit = db_session.commit
    commits = []

    async def flaky_commit():
        commits.append(1)
        # The status write commits, the notification that follows does not
        if len(commits) == 2:
            raise RuntimeError("notification store offline")
        await real_commit()

    db_session.commit = flaky_commit
    try:
        updated = await ParcelService.update_status(db_session, parcel.id, ParcelStatus.PROCESSING)
    finally:
        db_session.commit = real_commit

    assert updated.status == ParcelStatus.PROCESSING
    stored = await ParcelService.find_by_id(db_session, parcel.id)
    assert stored.status == ParcelStatus.PROCESSING
    after = await NotificationService.list_for_user(db_session, parcel.user_id)
    assert len(after) == len(before)


@pytest.mark.asyncio
async def test_confirm_records_succeeded_intent(db_session, client_address, stripe_configured, mocker):
    get = mocker.patch.object(payment_gateway, "_get_payment_intent", new=AsyncMock())
    parcel, invoice = await _invoice_for_new_parcel(db_session, client_address)
    get.return_value = _intent(invoice.id)

    payment = await BillingService.confirm_card_payment(db_session, "pi_paid", owner_id=invoice.user_id)

    get.assert_awaited_once_with("pi_paid")
    assert payment.method == PaymentMethod.CARD
    assert payment.amount == Decimal("55.00")
    assert payment.transaction_id == "pi_paid"
    assert payment.gateway == "stripe"
    stored = await BillingService.get_invoice(db_session, invoice.id)
    await db_session.refresh(stored)
    assert stored.status == InvoiceStatus.PAID


@pytest.mark.asyncio
async def test_confirm_rejects_unfinished_intent(db_session, client_address, stripe_configured, mocker):
    parcel, invoice = await _invoice_for_new_parcel(db_session, client_address)
    invoice_id = invoice.id
    mocker.patch.object(
        payment_gateway,
        "_get_payment_intent",
        new=AsyncMock(return_value=_intent(invoice_id, status="requires_payment_method")),
    )

    with pytest.raises(PaymentNotCompletedError) as exc_info:
        await BillingService.confirm_card_payment(db_session, "pi_paid")
    assert exc_info.value.details == {"payment_intent_id": "pi_paid", "status": "requires_payment_method"}

    assert await BillingService.get_invoice_payments(db_session, invoice_id) == []


@pytest.mark.asyncio
async def test_confirm_requires_linked_invoice(db_session, client_address, stripe_configured, mocker):
    intent = _intent(0)
    intent["metadata"] = {}
    mocker.patch.object(payment_gateway, "_get_payment_intent", new=AsyncMock(return_value=intent))

    with pytest.raises(ResourceNotFoundError):
        await BillingService.confirm_card_payment(db_session, "pi_paid")


@pytest.mark.asyncio
async def test_confirm_over_http(client, client_user, db_session, client_address, stripe_configured, mocker):
    get = mocker.patch.object(payment_gateway, "_get_payment_intent", new=AsyncMock())
    _, invoice = await _invoice_for_new_parcel(db_session, client_address)
    invoice_id = invoice.id
    stranger = await create_user(db_session, "stranger@example.com")

    get.return_value = _intent(invoice_id, status="processing")
    response = await client.post(
        "/v1/billing/payments/confirm", json={"payment_intent_id": "pi_paid"}, headers=auth_headers(client_user)
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_PAYMENT_003"

    get.return_value = _intent(invoice_id)
    response = await client.post(
        "/v1/billing/payments/confirm", json={"payment_intent_id": "pi_paid"}, headers=auth_headers(stranger)
    )
    assert response.status_code == 404

    response = await client.post(
        "/v1/billing/payments/confirm", json={"payment_intent_id": "pi_paid"}, headers=auth_headers(client_user)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["method"] == "CARD"
    assert body["transaction_id"] == "pi_paid"
    assert Decimal(body["amount"]) == Decimal("55.00")

    response = await client.get(f"/v1/billing/invoices/{invoice_id}", headers=auth_headers(client_user))
    assert response.json()["status"] == "PAID"

    response = await client.post(
        "/v1/billing/payments/confirm", json={"payment_intent_id": "pi_paid"}, headers=auth_headers(client_user)
    )
    assert response.status_code == 409
