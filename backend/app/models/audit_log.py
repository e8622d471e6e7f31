"""
Audit Log Database Model.

Tracks business actions (address allocation, parcel intake, status changes,
invoicing, payments) for compliance and dispute resolution.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - ADDRESS_GENERATED / ADDRESS_DEACTIVATED
    - PARCEL_CREATED / PARCEL_STATUS_CHANGED / PARCEL_UPDATED
    - INVOICE_GENERATED / PAYMENT_RECORDED / CASH_PAYMENT_RECORDED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed, on which resource
    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(50), nullable=False, index=True)
    resource_id = Column(String(50), nullable=True, index=True)
    description = Column(Text, nullable=True)

    # Before / after values or other context
    changes = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', resource='{self.resource}:{self.resource_id}')>"
