"""
Parcel Pydantic schemas.

Defines request and response models for intake, status changes and lookups.
Weights are in pounds, dimensions in inches.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from backend.app.models.parcel_enums import ParcelStatus, HistorySource


class ParcelCreate(BaseModel):
    """Schema for parcel intake."""
    address_code: str = Field(..., min_length=1, max_length=32, description="Custom address the parcel was shipped to")
    initial_status: ParcelStatus = ParcelStatus.RECEIVED
    category_id: Optional[int] = None
    carrier: Optional[str] = Field(None, max_length=100)
    carrier_tracking_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    weight: Optional[Decimal] = Field(None, ge=0, description="Weight in pounds")
    length: Optional[Decimal] = Field(None, ge=0)
    width: Optional[Decimal] = Field(None, ge=0)
    height: Optional[Decimal] = Field(None, ge=0)
    declared_value: Optional[Decimal] = Field(None, ge=0)
    warehouse: Optional[str] = Field(None, max_length=10)
    current_location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    internal_notes: Optional[str] = None

    @field_validator("initial_status")
    @classmethod
    def validate_initial_status(cls, v: ParcelStatus) -> ParcelStatus:
        if v not in (ParcelStatus.RECEIVED, ParcelStatus.PENDING):
            raise ValueError("Parcels are created as RECEIVED or PENDING")
        return v


class ParcelUpdate(BaseModel):
    """Descriptive fields only; status has its own endpoint."""
    category_id: Optional[int] = None
    carrier: Optional[str] = Field(None, max_length=100)
    carrier_tracking_number: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    weight: Optional[Decimal] = Field(None, ge=0)
    length: Optional[Decimal] = Field(None, ge=0)
    width: Optional[Decimal] = Field(None, ge=0)
    height: Optional[Decimal] = Field(None, ge=0)
    declared_value: Optional[Decimal] = Field(None, ge=0)
    warehouse: Optional[str] = Field(None, max_length=10)
    current_location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    internal_notes: Optional[str] = None


class ParcelStatusUpdate(BaseModel):
    """Schema for an operator status transition."""
    status: ParcelStatus
    location: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    id: int
    tracking_number: str
    user_id: int
    custom_address_id: int
    category_id: Optional[int]
    carrier: Optional[str]
    carrier_tracking_number: Optional[str]
    description: Optional[str]
    weight: Optional[Decimal]
    length: Optional[Decimal]
    width: Optional[Decimal]
    height: Optional[Decimal]
    declared_value: Optional[Decimal]
    status: ParcelStatus
    warehouse: Optional[str]
    current_location: Optional[str]
    notes: Optional[str]
    received_at: Optional[datetime]
    shipped_at: Optional[datetime]
    delivered_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StaffParcelResponse(ParcelResponse):
    internal_notes: Optional[str]


class ParcelListResponse(BaseModel):
    """Schema for paginated parcel list."""
    parcels: List[ParcelResponse]
    total: int
    page: int
    page_size: int


class StatusHistoryResponse(BaseModel):
    id: int
    parcel_id: int
    old_status: Optional[ParcelStatus]
    new_status: ParcelStatus
    location: Optional[str]
    description: Optional[str]
    changed_by: Optional[int]
    source: HistorySource
    meta_data: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    created_at: datetime

    class Config:
        from_attributes = True


class ParcelStatisticsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
