"""
Parcel Status Enumeration.
"""

import enum


class ParcelStatus(str, enum.Enum):
    """
    Parcel status enumeration.

    Status flow:
        PENDING → RECEIVED → PROCESSING → READY → SHIPPED → IN_TRANSIT
        → (CUSTOMS) → OUT_FOR_DELIVERY → DELIVERED
        Most working states can fall into EXCEPTION.
        DELIVERED, RETURNED and CANCELLED are terminal.
    """
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    READY = "READY"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    CUSTOMS = "CUSTOMS"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    EXCEPTION = "EXCEPTION"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class HistorySource(str, enum.Enum):
    """Origin of a status history row."""
    INTERNAL = "INTERNAL"  # Operator driven transition
    PAYMENT = "PAYMENT"  # Electronic settlement of the invoice
    CASH_PICKUP = "CASH_PICKUP"  # Cash paid at the counter, parcel handed over
