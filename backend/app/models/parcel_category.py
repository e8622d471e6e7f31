"""
Parcel category database model.

Category rate table used by billing: base rate plus a per-pound rate.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base


class ParcelCategory(Base):
    __tablename__ = "parcel_categories"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    base_rate = Column(Numeric(10, 2), nullable=True)
    per_pound_rate = Column(Numeric(10, 2), nullable=True)
    max_weight_lbs = Column(Numeric(10, 2), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ParcelCategory(id={self.id}, name='{self.name}')>"
