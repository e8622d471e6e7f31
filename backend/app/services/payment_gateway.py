"""
Payment gateway client.

Creates and retrieves card payment intents through the Stripe REST API.
A succeeded intent is recorded with its id as the transaction id.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.exceptions import PaymentGatewayError
from backend.app.core.reliability import gateway_circuit_breaker, CircuitOpenError

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Dollars to cents."""
    return int((Decimal(amount) * 100).to_integral_value())


def from_minor_units(amount: int) -> Decimal:
    """Cents to dollars."""
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.stripe_api_base,
        timeout=settings.gateway_timeout_seconds,
        headers={"Authorization": f"Bearer {settings.stripe_secret_key}"},
    )


async def _post_payment_intent(form: Dict[str, Any]) -> Dict[str, Any]:
    async with _client() as client:
        response = await client.post("/payment_intents", data=form)
        response.raise_for_status()
        return response.json()


async def _get_payment_intent(intent_id: str) -> Dict[str, Any]:
    async with _client() as client:
        response = await client.get(f"/payment_intents/{intent_id}")
        response.raise_for_status()
        return response.json()


async def _call_gateway(action: str, func, *args) -> Dict[str, Any]:
    if not settings.stripe_secret_key:
        raise PaymentGatewayError("Payment gateway is not configured")
    try:
        return await gateway_circuit_breaker.call(func, *args)
    except CircuitOpenError as e:
        raise PaymentGatewayError("Payment gateway temporarily unavailable") from e
    except httpx.HTTPError as e:
        logger.warning("Payment intent %s failed: %s", action, e)
        raise PaymentGatewayError(f"Payment gateway error: {e}") from e


async def create_charge_intent(
    amount: Decimal,
    currency: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Create a payment intent for a card payment.

    Args:
        amount: Amount in major units (e.g. 55.00)
        currency: ISO currency code
        metadata: Invoice references stored on the intent

    Returns:
        {"id": ..., "client_secret": ..., "amount": cents, "currency": ...}

    Raises:
        PaymentGatewayError: gateway not configured, unreachable or rejecting
    """
    form = {
        "amount": to_minor_units(amount),
        "currency": currency.lower(),
        "automatic_payment_methods[enabled]": "true",
    }
    for key, value in (metadata or {}).items():
        form[f"metadata[{key}]"] = str(value)

    intent = await _call_gateway("creation", _post_payment_intent, form)

    return {
        "id": intent["id"],
        "client_secret": intent.get("client_secret"),
        "amount": intent.get("amount", form["amount"]),
        "currency": intent.get("currency", form["currency"]),
    }


async def retrieve_charge_intent(intent_id: str) -> Dict[str, Any]:
    """
    Fetch a payment intent to check whether the charge went through.

    Returns:
        {"id": ..., "status": ..., "amount": cents, "currency": ..., "metadata": {...}}

    Raises:
        PaymentGatewayError: gateway not configured, unreachable or rejecting
    """
    intent = await _call_gateway("retrieval", _get_payment_intent, intent_id)
    return {
        "id": intent["id"],
        "status": intent.get("status"),
        "amount": intent.get("amount", 0),
        "currency": intent.get("currency"),
        "metadata": intent.get("metadata") or {},
    }
