"""
Parcel lifecycle state machine.

Operator transitions are validated by membership in ``TRANSITIONS``.
Payment-driven moves use their own tables and never go through the
operator table.
"""

from typing import Dict, FrozenSet, List, Optional

from backend.app.core.exceptions import InvalidTransitionError
from backend.app.models.parcel_enums import ParcelStatus

S = ParcelStatus

TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    S.PENDING: frozenset({S.RECEIVED, S.CANCELLED}),
    S.RECEIVED: frozenset({S.PROCESSING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.READY, S.EXCEPTION}),
    S.READY: frozenset({S.SHIPPED, S.EXCEPTION}),
    S.SHIPPED: frozenset({S.IN_TRANSIT, S.EXCEPTION}),
    S.IN_TRANSIT: frozenset({S.CUSTOMS, S.OUT_FOR_DELIVERY, S.EXCEPTION}),
    S.CUSTOMS: frozenset({S.OUT_FOR_DELIVERY, S.EXCEPTION}),
    S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED, S.EXCEPTION}),
    S.DELIVERED: frozenset(),
    S.EXCEPTION: frozenset({S.PROCESSING, S.RETURNED, S.CANCELLED}),
    S.RETURNED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[ParcelStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

# Electronic settlement: parcels waiting on payment move on, others stay put
SETTLEMENT_TRANSITIONS: Dict[ParcelStatus, ParcelStatus] = {
    S.CUSTOMS: S.OUT_FOR_DELIVERY,
    S.READY: S.SHIPPED,
}

SETTLEMENT_NOTES: Dict[ParcelStatus, str] = {
    S.OUT_FOR_DELIVERY: "Parcel cleared and out for delivery after payment",
    S.SHIPPED: "Parcel shipped after payment",
}

# Statuses from which a cash payment at the counter hands the parcel over
PICKUP_ELIGIBLE_STATUSES: FrozenSet[ParcelStatus] = frozenset({
    S.READY, S.SHIPPED, S.IN_TRANSIT, S.CUSTOMS, S.OUT_FOR_DELIVERY,
})

# Statuses in which a paid parcel can be collected
PICKUP_READY_STATUSES: FrozenSet[ParcelStatus] = frozenset({S.READY, S.DELIVERED})

# Canonical display order for allowed-transition lists
_ORDER = {status: index for index, status in enumerate(ParcelStatus)}


def allowed_transitions(current: ParcelStatus) -> List[ParcelStatus]:
    """Allowed destinations from ``current`` in pipeline order."""
    return sorted(TRANSITIONS[current], key=_ORDER.__getitem__)


def is_terminal(status: ParcelStatus) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current: ParcelStatus, new: ParcelStatus) -> None:
    """
    Validate an operator transition.

    Raises:
        InvalidTransitionError: with the current status and the full allowed list
    """
    if new not in TRANSITIONS[current]:
        raise InvalidTransitionError(current, new, allowed_transitions(current))


def settlement_target(current: ParcelStatus) -> Optional[ParcelStatus]:
    """Destination reached when the parcel's invoice is paid electronically."""
    return SETTLEMENT_TRANSITIONS.get(current)


def cash_pickup_target(current: ParcelStatus, allow_before_ready: bool = False) -> Optional[ParcelStatus]:
    """
    Destination reached when cash is paid at the counter.

    DELIVERED parcels are left untouched. With ``allow_before_ready`` every
    other parcel is handed over; otherwise only parcels at least READY.
    """
    if current == S.DELIVERED:
        return None
    if allow_before_ready or current in PICKUP_ELIGIBLE_STATUSES:
        return S.DELIVERED
    return None
