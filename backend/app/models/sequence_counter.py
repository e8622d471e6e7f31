"""
Sequence counter database model.

Durable high-water marks for every sequence the system hands out:
one row per hub for address client ids, one row per year for tracking
and invoice numbers. Rows are only mutated under an exclusive lock and
are never decremented.
"""

import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base


class SequenceKind(str, enum.Enum):
    """What a counter row numbers."""
    HUB_ADDRESS = "HUB_ADDRESS"  # scope = hub code
    TRACKING_NUMBER = "TRACKING_NUMBER"  # scope = year
    INVOICE_NUMBER = "INVOICE_NUMBER"  # scope = year


class SequenceCounter(Base):
    """Per (kind, scope) monotonic counter."""
    __tablename__ = "sequence_counters"
    __table_args__ = (
        UniqueConstraint("kind", "scope", name="uq_sequence_counters_kind_scope"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    kind = Column(Enum(SequenceKind), nullable=False)
    scope = Column(String(20), nullable=False)
    current_value = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<SequenceCounter(kind='{self.kind.value}', scope='{self.scope}', value={self.current_value})>"
