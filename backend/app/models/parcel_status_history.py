"""
Parcel status history database model.

Append-only trail of every status change. Rows are never updated or deleted.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.parcel_enums import ParcelStatus, HistorySource


class ParcelStatusHistory(Base):
    """
    One row per transition, ordered by id (commit order).

    old_status is NULL only for the row written at parcel creation.
    """
    __tablename__ = "parcel_status_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    parcel_id = Column(Integer, ForeignKey("parcels.id"), nullable=False, index=True)

    old_status = Column(Enum(ParcelStatus), nullable=True)
    new_status = Column(Enum(ParcelStatus), nullable=False, index=True)

    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    source = Column(Enum(HistorySource), default=HistorySource.INTERNAL, nullable=False)
    meta_data = Column(JSON, nullable=True)

    # Immutable - no updated_at
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        old = self.old_status.value if self.old_status else None
        return f"<ParcelStatusHistory(parcel={self.parcel_id}, {old} -> {self.new_status.value})>"
