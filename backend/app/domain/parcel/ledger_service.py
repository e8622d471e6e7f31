"""
Parcel Ledger (Domain Logic).

Owns parcel records and their status history. Every status change goes
through this module and appends exactly one history row in the same
transaction as the status write.

Cross-component effects are published as events:
- ParcelEnteredReceived after commit (billing issues the invoice),
- InvoicePaid is consumed here to apply payment-driven transitions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import ConflictError, ResourceNotFoundError
from backend.app.domain.events import event_bus, ParcelEnteredReceived, InvoicePaid
from backend.app.domain.parcel.state_machine import (
    validate_transition,
    settlement_target,
    cash_pickup_target,
    SETTLEMENT_NOTES,
)
from backend.app.models.address_enums import AddressStatus
from backend.app.models.custom_address import CustomAddress
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus, HistorySource
from backend.app.models.parcel_status_history import ParcelStatusHistory
from backend.app.models.sequence_counter import SequenceKind
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.notification_service import NotificationService
from backend.app.services.sequence_store import sequence_store
from backend.app.services.user_directory import find_category

logger = logging.getLogger(__name__)

TRACKING_PREFIX = "PKG"

# A parcel enters the ledger either announced by the client or on arrival
INTAKE_STATUSES = (ParcelStatus.PENDING, ParcelStatus.RECEIVED)

EDITABLE_FIELDS = {
    "carrier", "carrier_tracking_number", "description", "category_id",
    "weight", "length", "width", "height", "declared_value",
    "warehouse", "current_location", "notes", "internal_notes",
}

CASH_PICKUP_NOTE = "Parcel picked up - paid in cash"


@dataclass
class StatusChange:
    """A transition applied to a parcel inside someone else's transaction."""
    parcel: Parcel
    old_status: ParcelStatus
    new_status: ParcelStatus


class ParcelService:

    @staticmethod
    def _apply_transition(
        db: AsyncSession,
        parcel: Parcel,
        new_status: ParcelStatus,
        location: Optional[str] = None,
        description: Optional[str] = None,
        changed_by: Optional[int] = None,
        source: HistorySource = HistorySource.INTERNAL,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ParcelStatus:
        """Write the new status, milestone stamps and history row. Returns the old status."""
        now = datetime.now(timezone.utc)
        old_status = parcel.status

        parcel.status = new_status
        if location:
            parcel.current_location = location

        # Milestones are set once
        if new_status == ParcelStatus.RECEIVED and parcel.received_at is None:
            parcel.received_at = now
        elif new_status == ParcelStatus.SHIPPED and parcel.shipped_at is None:
            parcel.shipped_at = now
        elif new_status == ParcelStatus.DELIVERED and parcel.delivered_at is None:
            parcel.delivered_at = now

        db.add(ParcelStatusHistory(
            parcel_id=parcel.id,
            old_status=old_status,
            new_status=new_status,
            location=location or parcel.current_location,
            description=description,
            changed_by=changed_by,
            source=source,
            meta_data=metadata,
        ))
        return old_status

    @staticmethod
    async def _lock_parcel(db: AsyncSession, parcel_id: int) -> Parcel:
        result = await db.execute(
            select(Parcel).where(Parcel.id == parcel_id).with_for_update()
        )
        parcel = result.scalar_one_or_none()
        if not parcel:
            raise ResourceNotFoundError("Parcel", parcel_id)
        return parcel

    @staticmethod
    async def create_parcel(
        db: AsyncSession,
        address_code: str,
        attrs: Dict[str, Any],
        created_by: Optional[int] = None,
        initial_status: ParcelStatus = ParcelStatus.RECEIVED
    ) -> Parcel:
        """
        Register a parcel against a client's custom address.

        Args:
            db: Database session
            address_code: Code the parcel was shipped to, e.g. HT-MIA-00001/A
            attrs: Carrier, description, weight, dimensions, category, location fields
            created_by: Staff user performing intake
            initial_status: RECEIVED on arrival (default) or PENDING for a pre-alert

        Returns:
            The created Parcel

        Raises:
            ResourceNotFoundError: address missing or not ACTIVE, category missing or inactive
        """
        if initial_status not in INTAKE_STATUSES:
            raise ValueError(f"Parcels can only be created as {', '.join(s.value for s in INTAKE_STATUSES)}")

        result = await db.execute(
            select(CustomAddress).where(
                CustomAddress.address_code == address_code,
                CustomAddress.status == AddressStatus.ACTIVE,
            )
        )
        address = result.scalar_one_or_none()
        if not address:
            raise ResourceNotFoundError(
                "Address", address_code, message=f"Active address {address_code} not found"
            )

        fields = {k: v for k, v in attrs.items() if k in EDITABLE_FIELDS}
        if fields.get("category_id") is not None:
            await find_category(db, fields["category_id"])

        fields.setdefault("warehouse", None)
        fields.setdefault("current_location", None)
        fields["warehouse"] = fields["warehouse"] or settings.default_warehouse
        fields["current_location"] = fields["current_location"] or settings.default_location

        now = datetime.now(timezone.utc)
        year = now.year

        async with sequence_store.lock(SequenceKind.TRACKING_NUMBER, year):
            try:
                tracking_number = await sequence_store.next_document_number(
                    db, SequenceKind.TRACKING_NUMBER, TRACKING_PREFIX, year, Parcel.tracking_number
                )
                parcel = Parcel(
                    tracking_number=tracking_number,
                    user_id=address.user_id,
                    custom_address_id=address.id,
                    status=initial_status,
                    received_at=now if initial_status == ParcelStatus.RECEIVED else None,
                    **fields,
                )
                db.add(parcel)
                await db.flush()

                db.add(ParcelStatusHistory(
                    parcel_id=parcel.id,
                    old_status=None,
                    new_status=initial_status,
                    location=parcel.current_location,
                    description=(
                        f"Parcel received at {parcel.warehouse} warehouse"
                        if initial_status == ParcelStatus.RECEIVED
                        else "Parcel announced by client"
                    ),
                    changed_by=created_by,
                    source=HistorySource.INTERNAL,
                ))
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info("Created parcel %s for address %s", parcel.tracking_number, address_code)

        # Best-effort writes below may roll the session back, so read the parcel first
        received = ParcelEnteredReceived(
            parcel_id=parcel.id,
            user_id=parcel.user_id,
            tracking_number=parcel.tracking_number,
            changed_by=created_by,
        )
        if initial_status == ParcelStatus.RECEIVED:
            await NotificationService.notify_parcel_received(db, parcel.user_id, parcel)

        await log_event(
            db,
            action=AuditAction.PARCEL_CREATED,
            resource="parcels",
            resource_id=received.parcel_id,
            actor_id=created_by,
            description=f"Created parcel {received.tracking_number}",
            changes={"address_code": address_code, "status": initial_status.value},
        )

        if initial_status == ParcelStatus.RECEIVED:
            await event_bus.dispatch_after_commit(db, received)

        await db.refresh(parcel)
        return parcel

    @staticmethod
    async def update_status(
        db: AsyncSession,
        parcel_id: int,
        new_status: ParcelStatus,
        location: Optional[str] = None,
        description: Optional[str] = None,
        changed_by: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Parcel:
        """
        Operator-driven status transition.

        Raises:
            ResourceNotFoundError: parcel missing
            InvalidTransitionError: new_status not allowed from the current status
        """
        try:
            parcel = await ParcelService._lock_parcel(db, parcel_id)
            validate_transition(parcel.status, new_status)
            old_status = ParcelService._apply_transition(
                db, parcel, new_status,
                location=location,
                description=description,
                changed_by=changed_by,
                metadata=metadata,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Parcel %s: %s -> %s", parcel.tracking_number, old_status.value, new_status.value)

        received = ParcelEnteredReceived(
            parcel_id=parcel.id,
            user_id=parcel.user_id,
            tracking_number=parcel.tracking_number,
            changed_by=changed_by,
        )
        await NotificationService.notify_status_change(db, parcel.user_id, parcel, old_status, new_status)

        await log_event(
            db,
            action=AuditAction.PARCEL_STATUS_CHANGED,
            resource="parcels",
            resource_id=received.parcel_id,
            actor_id=changed_by,
            description=f"Status changed from {old_status.value} to {new_status.value}",
            changes={"old_status": old_status.value, "new_status": new_status.value, "location": location},
        )

        if new_status == ParcelStatus.RECEIVED and old_status != ParcelStatus.RECEIVED:
            await event_bus.dispatch_after_commit(db, received)

        await db.refresh(parcel)
        return parcel

    @staticmethod
    async def apply_invoice_paid(db: AsyncSession, event: InvoicePaid) -> List[StatusChange]:
        """
        Payment-driven transitions, run inside the settlement transaction.

        Electronic payments move CUSTOMS and READY parcels along; a cash
        payment at the counter hands parcels over as DELIVERED. These moves
        bypass the operator table. Nothing is committed here.
        """
        changes = []
        for parcel_id in event.parcel_ids:
            parcel = await ParcelService._lock_parcel(db, parcel_id)

            if event.handover:
                target = cash_pickup_target(parcel.status, settings.allow_cash_pickup_before_ready)
                source = HistorySource.CASH_PICKUP
                note = CASH_PICKUP_NOTE
            else:
                target = settlement_target(parcel.status)
                source = HistorySource.PAYMENT
                note = SETTLEMENT_NOTES.get(target)

            if target is None:
                logger.info(
                    "Parcel %s left at %s after payment of %s",
                    parcel.tracking_number, parcel.status.value, event.invoice_number,
                )
                continue

            metadata = {
                "invoice_id": event.invoice_id,
                "invoice_number": event.invoice_number,
                "payment_method": event.method.value,
            }
            metadata.update(event.metadata)

            old_status = ParcelService._apply_transition(
                db, parcel, target,
                description=f"{note} ({event.invoice_number})",
                changed_by=event.actor_id,
                source=source,
                metadata=metadata,
            )
            changes.append(StatusChange(parcel=parcel, old_status=old_status, new_status=target))

        await db.flush()
        return changes

    # Read accessors (lock-free)

    @staticmethod
    async def find_by_id(db: AsyncSession, parcel_id: int) -> Parcel:
        parcel = await db.get(Parcel, parcel_id)
        if not parcel:
            raise ResourceNotFoundError("Parcel", parcel_id)
        return parcel

    @staticmethod
    async def find_by_tracking_number(db: AsyncSession, tracking_number: str) -> Parcel:
        result = await db.execute(select(Parcel).where(Parcel.tracking_number == tracking_number))
        parcel = result.scalar_one_or_none()
        if not parcel:
            raise ResourceNotFoundError("Parcel", tracking_number)
        return parcel

    @staticmethod
    async def find_by_user(
        db: AsyncSession,
        user_id: int,
        status: Optional[ParcelStatus] = None
    ) -> List[Parcel]:
        query = select(Parcel).where(Parcel.user_id == user_id)
        if status:
            query = query.where(Parcel.status == status)
        result = await db.execute(query.order_by(Parcel.created_at.desc(), Parcel.id.desc()))
        return result.scalars().all()

    @staticmethod
    async def get_status_history(db: AsyncSession, parcel_id: int) -> List[ParcelStatusHistory]:
        """History in commit order."""
        await ParcelService.find_by_id(db, parcel_id)
        result = await db.execute(
            select(ParcelStatusHistory)
            .where(ParcelStatusHistory.parcel_id == parcel_id)
            .order_by(ParcelStatusHistory.id)
        )
        return result.scalars().all()

    @staticmethod
    async def search(
        db: AsyncSession,
        status: Optional[ParcelStatus] = None,
        warehouse: Optional[str] = None,
        user_id: Optional[int] = None,
        address_code: Optional[str] = None,
        tracking_number: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[Parcel], int]:
        """Filtered, paginated parcel search. Returns (parcels, total)."""
        query = select(Parcel)
        if address_code:
            query = query.join(CustomAddress, CustomAddress.id == Parcel.custom_address_id).where(
                CustomAddress.address_code == address_code
            )
        if status:
            query = query.where(Parcel.status == status)
        if warehouse:
            query = query.where(Parcel.warehouse == warehouse)
        if user_id:
            query = query.where(Parcel.user_id == user_id)
        if tracking_number:
            query = query.where(Parcel.tracking_number.like(f"%{tracking_number}%"))
        if date_from:
            query = query.where(Parcel.created_at >= date_from)
        if date_to:
            query = query.where(Parcel.created_at <= date_to)

        total_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar()

        offset = (page - 1) * page_size
        result = await db.execute(
            query.order_by(Parcel.created_at.desc(), Parcel.id.desc()).offset(offset).limit(page_size)
        )
        return result.scalars().all(), total

    @staticmethod
    async def update(
        db: AsyncSession,
        parcel_id: int,
        data: Dict[str, Any],
        changed_by: Optional[int] = None
    ) -> Parcel:
        """
        Update descriptive fields. Status, tracking number and ownership are
        not editable here.

        Raises:
            ResourceNotFoundError: parcel or category missing
            ConflictError: a protected field was submitted
        """
        protected = sorted(set(data) - EDITABLE_FIELDS)
        if protected:
            raise ConflictError(
                f"Fields cannot be updated: {', '.join(protected)}",
                details={"fields": protected},
            )

        parcel = await ParcelService.find_by_id(db, parcel_id)
        if data.get("category_id") is not None:
            await find_category(db, data["category_id"])

        for field, value in data.items():
            setattr(parcel, field, value)

        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await log_event(
            db,
            action=AuditAction.PARCEL_UPDATED,
            resource="parcels",
            resource_id=parcel_id,
            actor_id=changed_by,
            changes={"updated_fields": sorted(data)},
        )
        await db.refresh(parcel)
        return parcel

    @staticmethod
    async def get_statistics(db: AsyncSession, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Total parcels and count per status (every status listed)."""
        query = select(Parcel.status, func.count(Parcel.id)).group_by(Parcel.status)
        if user_id:
            query = query.where(Parcel.user_id == user_id)
        result = await db.execute(query)
        counts = {status: count for status, count in result.all()}

        by_status = {status.value: counts.get(status, 0) for status in ParcelStatus}
        return {"total": sum(by_status.values()), "by_status": by_status}
