"""
Parcel database model.

A parcel is received at a US warehouse on behalf of the client owning
the custom address it was shipped to.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel model for the forwarding pipeline.

    Status is the single source of truth for lifecycle position and is
    only changed through the parcel ledger operations.
    """
    __tablename__ = "parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identification
    tracking_number = Column(String(32), unique=True, nullable=False, index=True)

    # Ownership - resolved from the custom address at intake
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    custom_address_id = Column(Integer, ForeignKey("custom_addresses.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("parcel_categories.id"), nullable=True, index=True)

    # Carrier information
    carrier = Column(String(100), nullable=True)
    carrier_tracking_number = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    # Physical properties (pounds / inches)
    weight = Column(Numeric(10, 2), nullable=True)
    length = Column(Numeric(10, 2), nullable=True)
    width = Column(Numeric(10, 2), nullable=True)
    height = Column(Numeric(10, 2), nullable=True)
    declared_value = Column(Numeric(10, 2), nullable=True)

    # Status
    status = Column(Enum(ParcelStatus), default=ParcelStatus.PENDING, nullable=False, index=True)
    warehouse = Column(String(10), nullable=True, index=True)
    current_location = Column(String(255), nullable=True)

    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)

    # Milestones (shipped_at / delivered_at are set once)
    received_at = Column(DateTime(timezone=True), nullable=True, index=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True, index=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Parcel(id={self.id}, tracking='{self.tracking_number}', status='{self.status.value}')>"
