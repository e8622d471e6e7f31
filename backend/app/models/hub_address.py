"""
Hub address database model.

Physical US receiving address for each 3-letter hub code. Reference data
copied onto every custom address allocated at the hub.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from backend.app.db.session import Base


class HubAddress(Base):
    """Static return address of a hub (e.g. MIA, NMB)."""
    __tablename__ = "hub_addresses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    hub = Column(String(3), unique=True, nullable=False, index=True)
    hub_name = Column(String(200), nullable=False)

    street = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(2), nullable=False)
    zipcode = Column(String(20), nullable=False)

    # Status (soft delete)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<HubAddress(hub='{self.hub}', name='{self.hub_name}', active={self.is_active})>"
