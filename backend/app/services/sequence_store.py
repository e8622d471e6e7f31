"""
Sequence store.

Hands out monotonic numbers per (kind, scope): client ids per hub and
tracking / invoice numbers per year.

Two layers of exclusion guard every read-increment-write cycle:
- an in-process asyncio lock keyed by (kind, scope), held by the caller
  until its transaction commits;
- a row-level ``SELECT ... FOR UPDATE`` on the counter row, which
  serializes writers across processes on PostgreSQL.

Locks are per key, never global: two hubs (or two years) never wait on
each other.
"""

import asyncio
import logging
import weakref
from typing import Dict, Tuple

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.sequence_counter import SequenceCounter, SequenceKind

logger = logging.getLogger(__name__)


class SequenceStore:
    """Keyed locks plus durable counter rows."""

    def __init__(self):
        # asyncio locks bind to the loop that first waits on them
        self._locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[Tuple[str, str], asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def lock(self, kind: SequenceKind, scope) -> asyncio.Lock:
        """
        Get the exclusive lock for a (kind, scope) partition.

        Usage:
            async with sequence_store.lock(SequenceKind.HUB_ADDRESS, "MIA"):
                value = await sequence_store.increment(db, SequenceKind.HUB_ADDRESS, "MIA")
                ...
                await db.commit()
        """
        loop = asyncio.get_running_loop()
        locks = self._locks.setdefault(loop, {})
        key = (kind.value, str(scope))
        if key not in locks:
            locks[key] = asyncio.Lock()
        return locks[key]

    async def _select_for_update(self, db: AsyncSession, kind: SequenceKind, scope: str):
        result = await db.execute(
            select(SequenceCounter)
            .where(SequenceCounter.kind == kind, SequenceCounter.scope == scope)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _provision(self, db: AsyncSession, kind: SequenceKind, scope: str) -> None:
        """Insert the counter row at 0 unless another writer already did."""
        insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
        result = await db.execute(
            insert(SequenceCounter)
            .values(kind=kind, scope=scope, current_value=0)
            .on_conflict_do_nothing(index_elements=["kind", "scope"])
        )
        if result.rowcount:
            logger.info("Provisioned sequence counter %s/%s", kind.value, scope)

    async def acquire(self, db: AsyncSession, kind: SequenceKind, scope) -> SequenceCounter:
        """
        Row-lock the counter for (kind, scope) until the caller's transaction ends.

        Checks that must not race with the next increment (such as the one
        active address per user and hub rule) run after this call. The row
        is provisioned on first use.
        """
        scope = str(scope)
        counter = await self._select_for_update(db, kind, scope)
        if counter is None:
            await self._provision(db, kind, scope)
            counter = await self._select_for_update(db, kind, scope)
        return counter

    async def increment(self, db: AsyncSession, kind: SequenceKind, scope, floor: int = 0) -> int:
        """
        Increment the counter by exactly one and flush it.

        Must be called while holding ``lock(kind, scope)``; the new value
        becomes durable when the caller's transaction commits.

        Args:
            db: Database session (transaction owned by caller)
            kind: Counter kind
            scope: Hub code or year
            floor: Highest value already in use elsewhere; the counter
                jumps past it instead of replaying it

        Returns:
            The new counter value
        """
        counter = await self.acquire(db, kind, scope)
        counter.current_value = max(counter.current_value or 0, floor) + 1
        await db.flush()
        return counter.current_value

    async def current(self, db: AsyncSession, kind: SequenceKind, scope) -> int:
        """Read the high-water mark without locking (0 when unprovisioned)."""
        result = await db.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.kind == kind,
                SequenceCounter.scope == str(scope),
            )
        )
        return result.scalar_one_or_none() or 0

    async def next_document_number(
        self,
        db: AsyncSession,
        kind: SequenceKind,
        prefix: str,
        year: int,
        column,
    ) -> str:
        """
        Allocate ``<prefix>-<year>-<6 digits>`` for tracking / invoice numbers.

        Scans the highest number already stored for the year, then
        increments the year counter past it. Caller holds
        ``lock(kind, year)`` until commit.
        """
        year_prefix = f"{prefix}-{year}-"
        result = await db.execute(
            select(func.max(column)).where(column.like(f"{year_prefix}%"))
        )
        last_number = result.scalar_one_or_none()
        scanned = 0
        if last_number:
            scanned = int(last_number.rsplit("-", 1)[1])

        sequence = await self.increment(db, kind, year, floor=scanned)
        return f"{year_prefix}{sequence:06d}"


# Process-wide store
sequence_store = SequenceStore()
