#subsync/services/scheduler.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from subsync.services.renewal_lock_service import RenewalLockService

logger = logging.getLogger(__name__)


class LockSweepScheduler:
    """
    Periodically expires renewal locks whose holders never released them.
    acquire_lock() already self-heals per key; this keeps is_locked() and the
    table itself honest for keys nobody retries.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        interval_s: float = 300,
        lock_service: Optional[RenewalLockService] = None,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive.")
        self._session_factory = session_factory
        self._interval_s = interval_s
        self._locks = lock_service or RenewalLockService()
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None
        self._last_swept: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="lock-sweep")
        logger.info("Lock sweep scheduler started", extra={"interval_s": self._interval_s})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        task, self._task = self._task, None
        await task
        logger.info("Lock sweep scheduler stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_s": self._interval_s,
            "last_swept": self._last_swept.isoformat() if self._last_swept else None,
        }

    async def sweep_once(self) -> int:
        count = await asyncio.to_thread(self._sweep)
        self._last_swept = datetime.now(timezone.utc)
        return count

    def _sweep(self) -> int:
        with self._session_factory() as db:
            return self._locks.release_expired_locks(db)

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval_s)
                break
            except asyncio.TimeoutError:
                pass

            logger.info("Running scheduled renewal lock cleanup")
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Error in scheduled renewal lock cleanup")
