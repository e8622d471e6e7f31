"""
Event subscriptions wiring the ledger and the billing engine together.

Called once at application startup; calling it again is harmless.
"""

from backend.app.domain.events import event_bus, ParcelEnteredReceived, InvoicePaid
from backend.app.domain.billing.billing_service import BillingService
from backend.app.domain.parcel.ledger_service import ParcelService


def register_handlers(bus=event_bus):
    bus.subscribe(ParcelEnteredReceived, BillingService.invoice_received_parcel)
    bus.subscribe(InvoicePaid, ParcelService.apply_invoice_paid)
