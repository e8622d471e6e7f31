"""
Audit logging service for tracking business actions.

Provides centralized, best-effort recording: an audit failure is logged
and never fails the operation being audited.
"""

import logging
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Addresses
    ADDRESS_GENERATED = "ADDRESS_GENERATED"
    ADDRESS_DEACTIVATED = "ADDRESS_DEACTIVATED"
    HUB_UPSERTED = "HUB_UPSERTED"
    HUB_DEACTIVATED = "HUB_DEACTIVATED"

    # Parcels
    PARCEL_CREATED = "PARCEL_CREATED"
    PARCEL_UPDATED = "PARCEL_UPDATED"
    PARCEL_STATUS_CHANGED = "PARCEL_STATUS_CHANGED"

    # Billing
    INVOICE_GENERATED = "INVOICE_GENERATED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    CASH_PAYMENT_RECORDED = "CASH_PAYMENT_RECORDED"
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"


async def log_event(
    db: AsyncSession,
    action: str,
    resource: str,
    resource_id: Any = None,
    actor_id: Optional[int] = None,
    description: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None
) -> Optional[AuditLog]:
    """
    Record an action in the audit log.

    Runs in its own transaction after the business operation committed.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        resource: Resource type, e.g. "parcels"
        resource_id: ID of the resource acted upon
        actor_id: ID of user performing the action (None for system)
        description: Human readable summary
        changes: Before / after values or other context

    Returns:
        Created AuditLog instance, or None if recording failed
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        description=description,
        changes=changes
    )

    try:
        db.add(audit_log)
        await db.commit()
    except Exception:
        logger.warning("Audit log write failed for %s %s:%s", action, resource, resource_id, exc_info=True)
        await db.rollback()
        return None

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    resource: Optional[str] = None,
    resource_id: Any = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if resource:
        query = query.where(AuditLog.resource == resource)

    if resource_id is not None:
        query = query.where(AuditLog.resource_id == str(resource_id))

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
