"""
Billing Service (Domain Logic).

Issues invoices for parcels, applies payments and publishes InvoicePaid
so the parcel ledger can advance the settled parcels.

Every write operation is one transaction: invoice + items, or payment +
invoice status + parcel transitions. Audit and notifications run after
commit and never fail the operation.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AlreadySettledError,
    ConflictError,
    InsufficientAmountError,
    PaymentNotCompletedError,
    ResourceNotFoundError,
)
from backend.app.domain.billing.pricing_resolver import PricingResolver, quantize_money
from backend.app.domain.events import event_bus, InvoicePaid, ParcelEnteredReceived
from backend.app.domain.parcel.state_machine import PICKUP_READY_STATUSES
from backend.app.models.billing_enums import (
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    UNPAID_INVOICE_STATUSES,
)
from backend.app.models.invoice import Invoice
from backend.app.models.invoice_item import InvoiceItem
from backend.app.models.parcel import Parcel
from backend.app.models.payment import Payment
from backend.app.models.sequence_counter import SequenceKind
from backend.app.models.user import User
from backend.app.services import payment_gateway
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.notification_service import NotificationService
from backend.app.services.sequence_store import sequence_store

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"
RECEIPT_WIDTH = 32  # 80mm thermal printer

BLOCKER_STATUS_NOT_READY = "status not ready"
BLOCKER_INVOICE_NOT_PAID = "invoice not paid"
BLOCKER_NO_INVOICE = "no invoice found"


def _item_description(parcel: Parcel) -> str:
    weight = parcel.weight if parcel.weight is not None else 0
    return f"Shipping - {parcel.description or 'Parcel'} ({weight} lbs)"


class BillingService:

    @staticmethod
    async def generate_invoice_for_parcels(
        db: AsyncSession,
        user_id: int,
        parcel_ids: List[int],
        actor_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Invoice:
        """
        Issue one invoice covering the given parcels of a user.

        Flow:
        1. Fetch parcels scoped to the user
        2. Price each parcel (category rates or defaults)
        3. Allocate INV-<year>-<seq> under the year lock
        4. Persist invoice and items in one transaction

        Args:
            db: Database session
            user_id: Invoice owner; parcels of other users are ignored
            parcel_ids: Parcels to bill
            actor_id: Who triggered the invoice (None for system)
            notes: Free text stored on the invoice

        Returns:
            The PENDING invoice

        Raises:
            ResourceNotFoundError: none of the parcels belong to the user
        """
        result = await db.execute(
            select(Parcel)
            .where(Parcel.id.in_(parcel_ids), Parcel.user_id == user_id)
            .order_by(Parcel.id)
        )
        parcels = result.scalars().all()
        if not parcels:
            raise ResourceNotFoundError("Parcels", message=f"No parcels found for user {user_id}")

        lines = []
        for parcel in parcels:
            rates = await PricingResolver.resolve_rates(db, parcel.category_id)
            cost = PricingResolver.compute_cost(rates, parcel.weight)
            lines.append((parcel, cost))

        subtotal = quantize_money(sum((cost for _, cost in lines), Decimal("0")))
        tax = Decimal("0.00")
        fees = quantize_money(settings.invoice_processing_fee)
        total = subtotal + tax + fees

        now = datetime.now(timezone.utc)
        year = now.year

        async with sequence_store.lock(SequenceKind.INVOICE_NUMBER, year):
            try:
                invoice_number = await sequence_store.next_document_number(
                    db, SequenceKind.INVOICE_NUMBER, INVOICE_PREFIX, year, Invoice.invoice_number
                )
                invoice = Invoice(
                    invoice_number=invoice_number,
                    user_id=user_id,
                    subtotal=subtotal,
                    tax=tax,
                    fees=fees,
                    total=total,
                    status=InvoiceStatus.PENDING,
                    due_date=now + timedelta(days=settings.invoice_due_days),
                    notes=notes,
                )
                db.add(invoice)
                await db.flush()

                for parcel, cost in lines:
                    db.add(InvoiceItem(
                        invoice_id=invoice.id,
                        parcel_id=parcel.id,
                        description=_item_description(parcel),
                        quantity=1,
                        unit_price=cost,
                        total=cost,
                    ))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info("Generated invoice %s for user %s, total %s", invoice_number, user_id, total)

        await log_event(
            db,
            action=AuditAction.INVOICE_GENERATED,
            resource="invoices",
            resource_id=invoice.id,
            actor_id=actor_id,
            description=f"Generated invoice {invoice_number}",
            changes={"parcel_ids": [p.id for p, _ in lines], "total": str(total)},
        )
        await db.refresh(invoice)
        return invoice

    @staticmethod
    async def invoice_received_parcel(db: AsyncSession, event: ParcelEnteredReceived) -> Invoice:
        """Event handler: bill a parcel as soon as it reaches RECEIVED."""
        return await BillingService.generate_invoice_for_parcels(
            db, event.user_id, [event.parcel_id], actor_id=event.changed_by
        )

    @staticmethod
    async def _lock_unpaid_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        result = await db.execute(
            select(Invoice).where(Invoice.id == invoice_id).with_for_update()
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise ResourceNotFoundError("Invoice", invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadySettledError(invoice.invoice_number)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is cancelled",
                details={"invoice_number": invoice.invoice_number},
            )
        return invoice

    @staticmethod
    async def _invoice_parcel_ids(db: AsyncSession, invoice_id: int) -> tuple:
        result = await db.execute(
            select(InvoiceItem.parcel_id).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
        )
        return tuple(dict.fromkeys(result.scalars().all()))

    @staticmethod
    async def _settle(
        db: AsyncSession,
        invoice: Invoice,
        payment: Payment,
        handover: bool,
        actor_id: Optional[int],
        event_metadata: Dict[str, Any]
    ) -> list:
        """Mark the invoice paid and publish InvoicePaid inside the open transaction."""
        now = datetime.now(timezone.utc)
        payment.status = PaymentStatus.COMPLETED
        payment.processed_at = now
        db.add(payment)

        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = now
        await db.flush()

        results = await event_bus.dispatch(db, InvoicePaid(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            parcel_ids=await BillingService._invoice_parcel_ids(db, invoice.id),
            method=payment.method,
            handover=handover,
            actor_id=actor_id,
            metadata=event_metadata,
        ))
        return [change for changes in results for change in (changes or [])]

    @staticmethod
    async def _after_settlement(db: AsyncSession, payment: Payment, changes: list, action: str, actor_id: Optional[int]):
        payment_id = payment.id
        invoice_id = payment.invoice_id
        details = {"method": payment.method.value, "amount": str(payment.amount)}

        for change in changes:
            await db.refresh(change.parcel)
            await NotificationService.notify_status_change(
                db, change.parcel.user_id, change.parcel, change.old_status, change.new_status
            )

        await log_event(
            db,
            action=action,
            resource="payments",
            resource_id=payment_id,
            actor_id=actor_id,
            description=f"Payment recorded for invoice {invoice_id}",
            changes=details,
        )
        await db.refresh(payment)

    @staticmethod
    async def record_payment(
        db: AsyncSession,
        invoice_id: int,
        amount: Decimal,
        method: PaymentMethod,
        transaction_id: Optional[str] = None,
        actor_id: Optional[int] = None,
        gateway: Optional[str] = None
    ) -> Payment:
        """
        Record an electronic payment covering the full invoice.

        Parcels at CUSTOMS move to OUT_FOR_DELIVERY and parcels at READY
        move to SHIPPED; any other parcel is left where it is.

        Raises:
            ResourceNotFoundError: invoice missing
            AlreadySettledError: invoice already PAID
            InsufficientAmountError: amount below the invoice total
        """
        amount = quantize_money(amount)
        try:
            invoice = await BillingService._lock_unpaid_invoice(db, invoice_id)
            if amount < invoice.total:
                raise InsufficientAmountError(amount, invoice.total)

            payment = Payment(
                invoice_id=invoice.id,
                user_id=invoice.user_id,
                amount=amount,
                currency=settings.currency,
                method=method,
                transaction_id=transaction_id,
                gateway=gateway,
            )
            changes = await BillingService._settle(
                db, invoice, payment, handover=False, actor_id=actor_id, event_metadata={}
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Invoice %s paid by %s", invoice.invoice_number, method.value)
        await BillingService._after_settlement(db, payment, changes, AuditAction.PAYMENT_RECORDED, actor_id)
        return payment

    @staticmethod
    async def record_cash_payment(
        db: AsyncSession,
        invoice_id: int,
        amount: Decimal,
        received_by: int,
        notes: Optional[str] = None
    ) -> Payment:
        """
        Record a cash payment at the counter and hand the parcels over.

        The payment amount is the invoice total; the tendered amount and the
        change given are kept in the payment metadata.

        Raises:
            ResourceNotFoundError: invoice missing
            AlreadySettledError: invoice already PAID
            InsufficientAmountError: amount below the invoice total (nothing is written)
        """
        tendered = quantize_money(amount)
        try:
            invoice = await BillingService._lock_unpaid_invoice(db, invoice_id)
            if tendered < invoice.total:
                raise InsufficientAmountError(tendered, invoice.total)

            change_given = max(Decimal("0.00"), tendered - invoice.total)
            metadata = {
                "received_by": received_by,
                "notes": notes,
                "amount_tendered": str(tendered),
                "change_given": str(change_given),
            }
            payment = Payment(
                invoice_id=invoice.id,
                user_id=invoice.user_id,
                amount=invoice.total,
                currency=settings.currency,
                method=PaymentMethod.CASH,
                transaction_id=f"CASH-{int(time.time() * 1000)}",
                gateway="cash",
                meta_data=metadata,
            )
            changes = await BillingService._settle(
                db, invoice, payment, handover=True, actor_id=received_by,
                event_metadata={"received_by": received_by},
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Cash payment for invoice %s: tendered %s, change %s",
            invoice.invoice_number, tendered, change_given,
        )
        await BillingService._after_settlement(
            db, payment, changes, AuditAction.CASH_PAYMENT_RECORDED, received_by
        )
        return payment

    @staticmethod
    async def create_payment_intent(
        db: AsyncSession,
        invoice_id: int,
        actor_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Open a card payment intent for an unpaid invoice.

        Raises:
            ResourceNotFoundError: invoice missing
            AlreadySettledError: invoice already PAID
            PaymentGatewayError: gateway failure
        """
        invoice = await BillingService.get_invoice(db, invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise AlreadySettledError(invoice.invoice_number)

        intent = await payment_gateway.create_charge_intent(
            invoice.total,
            settings.currency,
            metadata={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "user_id": invoice.user_id},
        )

        await log_event(
            db,
            action=AuditAction.PAYMENT_INTENT_CREATED,
            resource="invoices",
            resource_id=invoice_id,
            actor_id=actor_id,
            changes={"payment_intent_id": intent["id"]},
        )
        return {
            "payment_intent_id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": intent["amount"],
            "currency": intent["currency"],
        }

    @staticmethod
    async def confirm_card_payment(
        db: AsyncSession,
        payment_intent_id: str,
        actor_id: Optional[int] = None,
        owner_id: Optional[int] = None
    ) -> Payment:
        """
        Record the card payment behind a succeeded payment intent.

        The invoice comes from the intent metadata and the amount is what
        the gateway actually charged.

        Args:
            owner_id: When set, the invoice must belong to this user

        Raises:
            PaymentGatewayError: gateway failure
            PaymentNotCompletedError: the intent has not succeeded
            ResourceNotFoundError: intent not linked to a (visible) invoice
            AlreadySettledError / InsufficientAmountError: as record_payment
        """
        intent = await payment_gateway.retrieve_charge_intent(payment_intent_id)
        if intent["status"] != "succeeded":
            raise PaymentNotCompletedError(intent["id"], intent["status"])

        invoice_ref = intent["metadata"].get("invoice_id")
        if not invoice_ref:
            raise ResourceNotFoundError(
                "Invoice", message=f"Payment {intent['id']} is not linked to an invoice"
            )
        invoice = await BillingService.get_invoice(db, int(invoice_ref))
        if owner_id is not None and invoice.user_id != owner_id:
            raise ResourceNotFoundError("Invoice", invoice.id)

        return await BillingService.record_payment(
            db,
            invoice.id,
            payment_gateway.from_minor_units(intent["amount"]),
            PaymentMethod.CARD,
            transaction_id=intent["id"],
            actor_id=actor_id,
            gateway="stripe",
        )

    @staticmethod
    async def check_parcel_ready_for_pickup(db: AsyncSession, tracking_number: str) -> Dict[str, Any]:
        """
        Can the parcel be collected? Read-only.

        Returns:
            {"ready", "blockers", "message", "parcel", "invoice", "total_paid"}

        Raises:
            ResourceNotFoundError: unknown tracking number
        """
        result = await db.execute(select(Parcel).where(Parcel.tracking_number == tracking_number))
        parcel = result.scalar_one_or_none()
        if not parcel:
            raise ResourceNotFoundError("Parcel", tracking_number)

        result = await db.execute(
            select(Invoice)
            .join(InvoiceItem, InvoiceItem.invoice_id == Invoice.id)
            .where(InvoiceItem.parcel_id == parcel.id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .limit(1)
        )
        invoice = result.scalar_one_or_none()

        blockers = []
        if parcel.status not in PICKUP_READY_STATUSES:
            blockers.append(BLOCKER_STATUS_NOT_READY)
        if invoice is None:
            blockers.append(BLOCKER_NO_INVOICE)
        elif invoice.status != InvoiceStatus.PAID:
            blockers.append(BLOCKER_INVOICE_NOT_PAID)

        total_paid = Decimal("0.00")
        if invoice is not None:
            paid_result = await db.execute(
                select(func.coalesce(func.sum(Payment.amount), 0)).where(
                    Payment.invoice_id == invoice.id,
                    Payment.status == PaymentStatus.COMPLETED,
                )
            )
            total_paid = quantize_money(paid_result.scalar())

        if not blockers:
            message = "Parcel ready for pickup"
        elif BLOCKER_STATUS_NOT_READY in blockers:
            message = f"Parcel not ready yet. Current status: {parcel.status.value}"
        elif invoice is None:
            message = "No invoice found for this parcel"
        else:
            message = f"Invoice {invoice.invoice_number} not paid. Amount due: ${invoice.total:.2f}"

        return {
            "ready": not blockers,
            "blockers": blockers,
            "message": message,
            "parcel": {
                "id": parcel.id,
                "tracking_number": parcel.tracking_number,
                "status": parcel.status,
                "user_id": parcel.user_id,
                "description": parcel.description,
            },
            "invoice": None if invoice is None else {
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "status": invoice.status,
                "total": invoice.total,
            },
            "total_paid": total_paid,
        }

    # Read accessors

    @staticmethod
    async def get_invoice(db: AsyncSession, invoice_id: int) -> Invoice:
        invoice = await db.get(Invoice, invoice_id)
        if not invoice:
            raise ResourceNotFoundError("Invoice", invoice_id)
        return invoice

    @staticmethod
    async def get_invoice_items(db: AsyncSession, invoice_id: int) -> List[InvoiceItem]:
        result = await db.execute(
            select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
        )
        return result.scalars().all()

    @staticmethod
    async def get_invoice_payments(db: AsyncSession, invoice_id: int) -> List[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.id)
        )
        return result.scalars().all()

    @staticmethod
    async def get_user_invoices(
        db: AsyncSession,
        user_id: int,
        status: Optional[InvoiceStatus] = None
    ) -> List[Invoice]:
        query = select(Invoice).where(Invoice.user_id == user_id)
        if status:
            query = query.where(Invoice.status == status)
        result = await db.execute(query.order_by(Invoice.created_at.desc(), Invoice.id.desc()))
        return result.scalars().all()

    @staticmethod
    async def get_unpaid_invoices(db: AsyncSession) -> List[Invoice]:
        """Unpaid invoices, earliest due first."""
        result = await db.execute(
            select(Invoice)
            .where(Invoice.status.in_(UNPAID_INVOICE_STATUSES))
            .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        )
        return result.scalars().all()

    @staticmethod
    async def get_cash_payments(
        db: AsyncSession,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> List[Payment]:
        """Cash payments processed in [date_from, date_to); defaults to today (UTC)."""
        if date_from is None:
            date_from = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        if date_to is None:
            date_to = date_from + timedelta(days=1)

        result = await db.execute(
            select(Payment)
            .where(
                Payment.method == PaymentMethod.CASH,
                Payment.status == PaymentStatus.COMPLETED,
                Payment.processed_at >= date_from,
                Payment.processed_at < date_to,
            )
            .order_by(Payment.processed_at.desc(), Payment.id.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def get_billing_statistics(db: AsyncSession) -> Dict[str, Any]:
        """Revenue this month, cash share, and what is still owed."""
        month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        completed_this_month = (
            Payment.status == PaymentStatus.COMPLETED,
            Payment.processed_at >= month_start,
        )

        revenue = await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(*completed_this_month)
        )
        cash = await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                *completed_this_month, Payment.method == PaymentMethod.CASH
            )
        )
        unpaid = await db.execute(
            select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total), 0)).where(
                Invoice.status.in_(UNPAID_INVOICE_STATUSES)
            )
        )
        unpaid_count, unpaid_amount = unpaid.one()

        return {
            "monthly_revenue": quantize_money(revenue.scalar()),
            "monthly_cash_revenue": quantize_money(cash.scalar()),
            "unpaid_invoices": unpaid_count,
            "unpaid_amount": quantize_money(unpaid_amount),
        }

    @staticmethod
    async def generate_thermal_receipt(db: AsyncSession, invoice_id: int) -> str:
        """Plain-text receipt, 32 columns wide."""
        invoice = await BillingService.get_invoice(db, invoice_id)
        user = await db.get(User, invoice.user_id)
        result = await db.execute(
            select(InvoiceItem, Parcel.tracking_number)
            .join(Parcel, Parcel.id == InvoiceItem.parcel_id)
            .where(InvoiceItem.invoice_id == invoice_id)
            .order_by(InvoiceItem.id)
        )
        items = result.all()
        payments = await BillingService.get_invoice_payments(db, invoice_id)
        payment = payments[0] if payments else None

        width = RECEIPT_WIDTH
        line = "=" * width
        dotted = "-" * width

        def center(text: str) -> str:
            return text.center(width).rstrip()

        def right(text: str) -> str:
            return text.rjust(width)

        out = [
            "",
            center("PARCEL FORWARDING"),
            center("PAYMENT RECEIPT"),
            line,
            "",
            f"Invoice: {invoice.invoice_number}",
            f"Date: {invoice.created_at:%Y-%m-%d %H:%M}",
            dotted,
            f"Client: {user.full_name if user else ''}".rstrip(),
            f"Email: {user.email if user else ''}".rstrip(),
            dotted,
            "PARCELS:",
        ]
        for item, tracking_number in items:
            out.append(f"  {tracking_number}")
            out.append(f"  {item.description}")
            out.append(right(f"${item.total:.2f}"))
        out.append(dotted)

        out.append(right(f"Subtotal: ${invoice.subtotal:.2f}"))
        if invoice.tax > 0:
            out.append(right(f"Tax: ${invoice.tax:.2f}"))
        if invoice.fees > 0:
            out.append(right(f"Fees: ${invoice.fees:.2f}"))
        out.append(line)
        out.append(right(f"TOTAL: ${invoice.total:.2f}"))
        out.append(line)

        if payment:
            out.append("")
            out.append(f"Method: {payment.method.value}")
            out.append(f"Amount paid: ${payment.amount:.2f}")
            change_given = Decimal((payment.meta_data or {}).get("change_given", "0"))
            if change_given > 0:
                out.append(f"Change given: ${change_given:.2f}")
            if payment.processed_at:
                out.append(f"Paid on: {payment.processed_at:%Y-%m-%d %H:%M}")
            out.append(f"Transaction: {payment.transaction_id}")

        out += ["", dotted, center("THANK YOU FOR YOUR TRUST"), "", "", ""]
        return "\n".join(out)
