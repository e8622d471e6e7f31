"""
Custom address database model.

The proxy mailing address handed to a client: HT-{HUB}-{CLIENT_ID}/A.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey, Index, text
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.address_enums import AddressStatus


class CustomAddress(Base):
    """
    Custom address model.

    address_code is globally unique and immutable. A user holds at most
    one ACTIVE address per hub; deactivation is a soft status change.
    """
    __tablename__ = "custom_addresses"

    # Unique constraint: one ACTIVE address per (user, hub)
    __table_args__ = (
        Index('ix_custom_addresses_active_user_hub', 'user_id', 'hub', unique=True,
              postgresql_where=text("status = 'ACTIVE'"),
              sqlite_where=text("status = 'ACTIVE'")),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    address_code = Column(String(32), unique=True, nullable=False, index=True)
    hub = Column(String(3), nullable=False, index=True)
    client_id = Column(String(5), nullable=False)
    sequence_value = Column(Integer, nullable=False)
    unit = Column(String(1), nullable=False, default="A")

    # Copied from the hub at allocation time
    us_street = Column(String(255), nullable=False)
    us_city = Column(String(100), nullable=False)
    us_state = Column(String(2), nullable=False)
    us_zipcode = Column(String(20), nullable=False)

    status = Column(Enum(AddressStatus), default=AddressStatus.ACTIVE, nullable=False, index=True)
    is_primary = Column(Boolean, default=False, nullable=False, index=True)

    generated_at = Column(DateTime(timezone=True), nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<CustomAddress(id={self.id}, code='{self.address_code}', status='{self.status.value}')>"
