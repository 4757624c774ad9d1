"""Per-payrun mutual exclusion for lifecycle operations."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.config import get_settings
from compensation_engine.errors import InternalError, NotFoundError
from compensation_engine.models import Payrun

logger = logging.getLogger(__name__)

# One asyncio.Lock per payrun, dropped once nobody holds a reference
_payrun_locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(payrun_id: UUID) -> asyncio.Lock:
    lock = _payrun_locks.get(payrun_id)
    if lock is None:
        lock = asyncio.Lock()
        _payrun_locks[payrun_id] = lock
    return lock


class LockingService:
    """Serializes compute, transitions and recomputes of one payrun.

    Two layers:
    1. An in-process asyncio.Lock keyed by payrun id, acquired with a bounded
       wait so a stuck holder surfaces as an error instead of a hang.
    2. A row lock (SELECT ... FOR UPDATE) on the payrun, held until the
       surrounding transaction ends, for callers in other processes.
    """

    def __init__(self, session: AsyncSession, timeout_seconds: float | None = None):
        self.session = session
        if timeout_seconds is None:
            timeout_seconds = get_settings().lock_timeout_seconds
        self.timeout_seconds = timeout_seconds

    @asynccontextmanager
    async def payrun_lock(self, tenant_id: UUID, payrun_id: UUID) -> AsyncIterator[Payrun]:
        """Hold the payrun lock and yield the freshly read, row-locked payrun.

        Raises:
            NotFoundError: If the payrun does not exist for the tenant
            InternalError: If the lock is not acquired within the timeout
        """
        lock = _lock_for(payrun_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "Timed out after %ss waiting for lock on payrun %s",
                self.timeout_seconds,
                payrun_id,
            )
            raise InternalError("Timed out waiting for payrun lock") from None

        try:
            payrun = await self.lock_payrun_row(tenant_id, payrun_id)
            yield payrun
        finally:
            lock.release()

    async def lock_payrun_row(self, tenant_id: UUID, payrun_id: UUID) -> Payrun:
        """Read the payrun with a row lock, replacing any stale identity-map copy."""
        result = await self.session.execute(
            select(Payrun)
            .where(Payrun.payrun_id == payrun_id, Payrun.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payrun = result.scalar_one_or_none()
        if payrun is None:
            raise NotFoundError("Payrun", payrun_id)
        return payrun

    @staticmethod
    def is_locked(payrun_id: UUID) -> bool:
        """Whether some task in this process currently holds the payrun lock."""
        lock = _payrun_locks.get(payrun_id)
        return lock is not None and lock.locked()
