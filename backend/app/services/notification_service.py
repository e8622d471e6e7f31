"""
Notification Service.

Fire-and-forget client notifications about parcels and invoices.
Failures are logged only; they never reach the business operation.
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from backend.app.models.notification import Notification, NotificationType
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    ParcelStatus.PENDING: "is awaiting arrival at the warehouse",
    ParcelStatus.RECEIVED: "has been received at the warehouse",
    ParcelStatus.PROCESSING: "is being processed",
    ParcelStatus.READY: "is ready to ship",
    ParcelStatus.SHIPPED: "has been shipped",
    ParcelStatus.IN_TRANSIT: "is in transit",
    ParcelStatus.CUSTOMS: "is in customs",
    ParcelStatus.OUT_FOR_DELIVERY: "is out for delivery",
    ParcelStatus.DELIVERED: "has been delivered",
    ParcelStatus.EXCEPTION: "has run into a problem",
    ParcelStatus.RETURNED: "has been returned",
    ParcelStatus.CANCELLED: "has been cancelled",
}


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Notification]:
        """Create and commit a single notification; returns None on failure."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        try:
            db.add(notif)
            await db.commit()
        except Exception:
            logger.warning("Failed to create notification for user %s: %s", user_id, title, exc_info=True)
            await db.rollback()
            return None
        return notif

    @staticmethod
    async def notify_parcel_received(db: AsyncSession, user_id: int, parcel: Parcel) -> Optional[Notification]:
        """Tell the client a parcel arrived at the warehouse."""
        return await NotificationService.create_notification(
            db,
            user_id=user_id,
            title="Parcel received at the warehouse",
            message=f"Your parcel {parcel.tracking_number} has been received at our {parcel.warehouse} warehouse.",
            type=NotificationType.PARCEL_RECEIVED,
            metadata={
                "tracking_number": parcel.tracking_number,
                "status": parcel.status.value,
                "parcel_id": parcel.id,
            },
        )

    @staticmethod
    async def notify_status_change(
        db: AsyncSession,
        user_id: int,
        parcel: Parcel,
        old_status: Optional[ParcelStatus],
        new_status: ParcelStatus
    ) -> Optional[Notification]:
        """Tell the client their parcel moved to a new status."""
        return await NotificationService.create_notification(
            db,
            user_id=user_id,
            title=f"Update on your parcel {parcel.tracking_number}",
            message=f"Your parcel {parcel.tracking_number} {STATUS_MESSAGES[new_status]}.",
            type=NotificationType.PARCEL_UPDATE,
            metadata={
                "tracking_number": parcel.tracking_number,
                "old_status": old_status.value if old_status else None,
                "new_status": new_status.value,
                "parcel_id": parcel.id,
            },
        )

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: int, unread_only: bool = False) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)
        result = await db.execute(query.order_by(Notification.id.desc()))
        return result.scalars().all()

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=datetime.now(timezone.utc)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount > 0
