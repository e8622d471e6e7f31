"""
Billing API Endpoints.

Invoices, electronic and cash payments, pickup checks and receipts.
"""

from datetime import datetime
from fastapi import APIRouter, Depends, status, Query, Path
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_role, is_staff, OwnershipGuard
from backend.app.db.session import get_db
from backend.app.domain.billing.billing_service import BillingService
from backend.app.models.billing_enums import InvoiceStatus
from backend.app.models.enums import STAFF_ROLES, ADMIN_ROLES
from backend.app.schemas.billing import (
    InvoiceGenerateRequest,
    PaymentCreate,
    CashPaymentCreate,
    InvoiceResponse,
    InvoiceDetailResponse,
    InvoiceItemResponse,
    PaymentResponse,
    PaymentIntentResponse,
    PaymentConfirmRequest,
    PickupCheckResponse,
    BillingStatisticsResponse,
)

router = APIRouter(prefix="/billing", tags=["Billing"])
ownership_guard = OwnershipGuard()


async def _invoice_detail(db: AsyncSession, invoice) -> InvoiceDetailResponse:
    items = await BillingService.get_invoice_items(db, invoice.id)
    payments = await BillingService.get_invoice_payments(db, invoice.id)
    detail = InvoiceDetailResponse.model_validate(invoice)
    detail.items = [InvoiceItemResponse.model_validate(i) for i in items]
    detail.payments = [PaymentResponse.model_validate(p) for p in payments]
    return detail


@router.post("/invoices/generate", response_model=InvoiceDetailResponse, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    request: InvoiceGenerateRequest,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Issue one invoice covering several parcels of a client (staff only)."""
    invoice = await BillingService.generate_invoice_for_parcels(
        db, request.user_id, request.parcel_ids, actor_id=current_user["user_id"], notes=request.notes
    )
    return await _invoice_detail(db, invoice)


@router.get("/invoices/mine", response_model=List[InvoiceResponse])
async def list_my_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    invoices = await BillingService.get_user_invoices(db, current_user["user_id"], status=status_filter)
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    invoice = await BillingService.get_invoice(db, invoice_id)
    ownership_guard.enforce(invoice.user_id, current_user, "invoice")
    return await _invoice_detail(db, invoice)


@router.post("/invoices/{invoice_id}/pay", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def pay_invoice(
    payment_data: PaymentCreate,
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Record an electronic payment for the full invoice amount.

    Parcels waiting at READY ship and parcels held in CUSTOMS go out for delivery.
    """
    invoice = await BillingService.get_invoice(db, invoice_id)
    ownership_guard.enforce(invoice.user_id, current_user, "invoice")

    payment = await BillingService.record_payment(
        db,
        invoice_id,
        payment_data.amount,
        payment_data.method,
        transaction_id=payment_data.transaction_id,
        actor_id=current_user["user_id"],
        gateway="stripe" if payment_data.transaction_id else None,
    )
    return PaymentResponse.model_validate(payment)


@router.post("/invoices/{invoice_id}/payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Open a card payment intent; confirm it at /payments/confirm once it succeeds."""
    invoice = await BillingService.get_invoice(db, invoice_id)
    ownership_guard.enforce(invoice.user_id, current_user, "invoice")
    return await BillingService.create_payment_intent(db, invoice_id, actor_id=current_user["user_id"])


@router.post("/payments/confirm", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def confirm_card_payment(
    confirm_data: PaymentConfirmRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a card payment once its payment intent has succeeded.

    The invoice and amount are taken from the intent, not from the request.
    """
    payment = await BillingService.confirm_card_payment(
        db,
        confirm_data.payment_intent_id,
        actor_id=current_user["user_id"],
        owner_id=None if is_staff(current_user) else current_user["user_id"],
    )
    return PaymentResponse.model_validate(payment)


@router.post("/cash-payment", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def record_cash_payment(
    payment_data: CashPaymentCreate,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Record cash paid at the counter (staff only).

    The client takes the parcels: they are marked DELIVERED.
    """
    payment = await BillingService.record_cash_payment(
        db,
        payment_data.invoice_id,
        payment_data.amount_received,
        received_by=current_user["user_id"],
        notes=payment_data.notes,
    )
    return PaymentResponse.model_validate(payment)


@router.get("/check-pickup/{tracking_number}", response_model=PickupCheckResponse)
async def check_pickup(
    tracking_number: str,
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """Whether a parcel can be handed over, with the reasons if not."""
    return await BillingService.check_parcel_ready_for_pickup(db, tracking_number)


@router.get("/invoices/{invoice_id}/thermal-receipt", response_class=PlainTextResponse)
async def get_thermal_receipt(
    invoice_id: int = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await BillingService.generate_thermal_receipt(db, invoice_id)


@router.get("/admin/unpaid-invoices", response_model=List[InvoiceResponse])
async def list_unpaid_invoices(
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    invoices = await BillingService.get_unpaid_invoices(db)
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.get("/admin/cash-payments", response_model=List[PaymentResponse])
async def list_cash_payments(
    date_from: Optional[datetime] = Query(None, description="Start of range, defaults to today"),
    date_to: Optional[datetime] = Query(None),
    current_user: dict = Depends(require_role(STAFF_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    payments = await BillingService.get_cash_payments(db, date_from=date_from, date_to=date_to)
    return [PaymentResponse.model_validate(p) for p in payments]


@router.get("/statistics", response_model=BillingStatisticsResponse)
async def get_billing_statistics(
    current_user: dict = Depends(require_role(ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    return await BillingService.get_billing_statistics(db)
