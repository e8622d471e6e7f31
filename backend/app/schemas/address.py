"""
Custom address Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from backend.app.models.address_enums import AddressStatus


class AddressGenerateRequest(BaseModel):
    """Request a new address. Staff may allocate on behalf of a client."""
    hub: Optional[str] = Field(None, min_length=3, max_length=3, description="3-letter hub code, defaults to the main hub")
    user_id: Optional[int] = Field(None, description="Target client (staff only)")


class AddressResponse(BaseModel):
    """Schema for custom address response."""
    id: int
    user_id: int
    address_code: str
    hub: str
    client_id: str
    sequence_value: int
    unit: str
    us_street: str
    us_city: str
    us_state: str
    us_zipcode: str
    status: AddressStatus
    is_primary: bool
    generated_at: datetime
    deactivated_at: Optional[datetime]

    class Config:
        from_attributes = True


class HubStatisticsResponse(BaseModel):
    hub: str
    total_addresses: int
    active_addresses: int
    inactive_addresses: int
    current_sequence: int
