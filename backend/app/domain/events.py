"""
Domain events and the in-process event bus.

Side effects that cross component boundaries (auto-invoicing a received
parcel, advancing parcels when their invoice is paid) travel as events so
the parcel ledger never imports the billing engine.

Two dispatch modes:
- ``dispatch``: runs handlers inside the publisher's transaction, errors
  propagate and abort it.
- ``dispatch_after_commit``: runs handlers once the publisher committed,
  errors are logged and swallowed.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.billing_enums import PaymentMethod

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, Any], Awaitable[Any]]


@dataclass(frozen=True)
class ParcelEnteredReceived:
    """A parcel reached RECEIVED (at intake or from a pre-alert)."""
    parcel_id: int
    user_id: int
    tracking_number: str
    changed_by: Optional[int] = None


@dataclass(frozen=True)
class InvoicePaid:
    """
    An invoice was settled.

    handover=True means the client is at the counter and takes the parcels.
    """
    invoice_id: int
    invoice_number: str
    parcel_ids: Tuple[int, ...]
    method: PaymentMethod
    handover: bool = False
    actor_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Maps event types to async handlers ``handler(db, event)``."""

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def handlers_for(self, event_type: Type) -> List[Handler]:
        return list(self._handlers[event_type])

    async def dispatch(self, db: AsyncSession, event: Any) -> List[Any]:
        """Run handlers in the caller's transaction and collect their results."""
        results = []
        for handler in self.handlers_for(type(event)):
            results.append(await handler(db, event))
        return results

    async def dispatch_after_commit(self, db: AsyncSession, event: Any) -> None:
        """Run best-effort handlers; a failing handler never reaches the caller."""
        for handler in self.handlers_for(type(event)):
            try:
                await handler(db, event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s", getattr(handler, "__qualname__", handler), event
                )
                await db.rollback()


event_bus = EventBus()
