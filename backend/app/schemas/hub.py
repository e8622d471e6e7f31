"""
Hub address Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime


class HubUpsert(BaseModel):
    """Schema for creating or replacing a hub's physical address."""
    hub_name: str = Field(..., min_length=1, max_length=200, description="Hub display name")
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=2, description="US state code")
    zipcode: str = Field(..., min_length=1, max_length=20)
    is_active: bool = True


class HubResponse(BaseModel):
    """Schema for hub response."""
    id: int
    hub: str
    hub_name: str
    street: str
    city: str
    state: str
    zipcode: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
