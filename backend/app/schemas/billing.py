"""
Billing Pydantic schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from backend.app.models.billing_enums import InvoiceStatus, PaymentMethod, PaymentStatus
from backend.app.models.parcel_enums import ParcelStatus


class InvoiceGenerateRequest(BaseModel):
    user_id: int
    parcel_ids: List[int] = Field(..., min_length=1)
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    """Electronic payment of a full invoice."""
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CARD
    transaction_id: Optional[str] = Field(None, max_length=255)

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: PaymentMethod) -> PaymentMethod:
        if v == PaymentMethod.CASH:
            raise ValueError("Cash payments are recorded at the counter")
        return v


class CashPaymentCreate(BaseModel):
    """Cash tendered at the counter."""
    invoice_id: int
    amount_received: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class InvoiceItemResponse(BaseModel):
    id: int
    parcel_id: int
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: int
    invoice_id: int
    user_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str]
    gateway: Optional[str]
    meta_data: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    processed_at: Optional[datetime]

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    user_id: int
    subtotal: Decimal
    tax: Decimal
    fees: Decimal
    total: Decimal
    status: InvoiceStatus
    due_date: datetime
    paid_at: Optional[datetime]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceDetailResponse(InvoiceResponse):
    items: List[InvoiceItemResponse] = []
    payments: List[PaymentResponse] = []


class PaymentConfirmRequest(BaseModel):
    payment_intent_id: str = Field(..., min_length=1, max_length=255)


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str]
    amount: int = Field(..., description="Amount in cents")
    currency: str


class PickupParcelSummary(BaseModel):
    id: int
    tracking_number: str
    status: ParcelStatus
    user_id: int
    description: Optional[str]


class PickupInvoiceSummary(BaseModel):
    id: int
    invoice_number: str
    status: InvoiceStatus
    total: Decimal


class PickupCheckResponse(BaseModel):
    ready: bool
    blockers: List[str]
    message: str
    parcel: PickupParcelSummary
    invoice: Optional[PickupInvoiceSummary]
    total_paid: Decimal


class BillingStatisticsResponse(BaseModel):
    monthly_revenue: Decimal
    monthly_cash_revenue: Decimal
    unpaid_invoices: int
    unpaid_amount: Decimal
