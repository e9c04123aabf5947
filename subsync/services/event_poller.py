"""
Event poller
============

Keeps the off-chain store in step with the contract's on-chain event log.

One iteration:
  1. read the chain head over RPC
  2. head below our cursor -> reorg rollback, reload cursor, done
  3. fetch events after the cursor and apply them in order
  4. persist the audit rows, then (and only then) advance the cursor

A crash between 3 and 4 means the batch is fetched again, which is safe
because every handler is idempotent. Failures never escape the loop; the
next attempt is delayed with capped exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from subsync.core.config import Settings
from subsync.core.errors import ConfigurationError
from subsync.core.events import ContractEvent, ProcessedEvent
from subsync.models.contract_event import ContractEventRecord
from subsync.services.cursor_service import CursorService
from subsync.services.event_handlers import EventHandlers
from subsync.services.reorg_handler import DEFAULT_REORG_DEPTH, ReorgHandler
from subsync.services.rpc_client import LedgerRpcClient

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class Stopped:
    pass


@dataclass(frozen=True)
class Running:
    cursor: int


PollerState = Union[Stopped, Running]


class EventPoller:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        contract_id: str,
        rpc_url: str = "",
        poll_interval_ms: int = 5000,
        max_backoff_ms: int = 60000,
        reorg_depth: int = DEFAULT_REORG_DEPTH,
        rpc_timeout_s: float = 10.0,
        rpc_client: Optional[LedgerRpcClient] = None,
        handlers: Optional[EventHandlers] = None,
        reorg_handler: Optional[ReorgHandler] = None,
        cursor_service: Optional[CursorService] = None,
    ):
        if not contract_id:
            raise ConfigurationError("CONTRACT_ADDRESS not configured")
        if rpc_client is None and not rpc_url:
            raise ConfigurationError("RPC_URL not configured")
        if poll_interval_ms <= 0:
            raise ConfigurationError("poll interval must be positive")

        self._session_factory = session_factory
        self._rpc = rpc_client or LedgerRpcClient(rpc_url, contract_id, timeout=rpc_timeout_s)
        self._handlers = handlers or EventHandlers()
        self._cursor_service = cursor_service or CursorService()
        self._reorg = reorg_handler or ReorgHandler(reorg_depth, cursor_service=self._cursor_service)

        self._poll_interval_s = poll_interval_ms / 1000.0
        self._max_backoff_s = max(max_backoff_ms, poll_interval_ms) / 1000.0

        self._state: PollerState = Stopped()
        self._failures = 0
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._start_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: SessionFactory) -> "EventPoller":
        return cls(
            session_factory,
            contract_id=settings.contract_address,
            rpc_url=settings.rpc_url,
            poll_interval_ms=settings.poll_interval_ms,
            max_backoff_ms=settings.poll_max_backoff_ms,
            reorg_depth=settings.reorg_depth,
            rpc_timeout_s=settings.rpc_timeout_s,
        )

    # ---------------------------
    # LIFECYCLE
    # ---------------------------

    @property
    def is_running(self) -> bool:
        return isinstance(self._state, Running)

    async def start(self) -> None:
        """Load the cursor and start polling. No-op if already running."""
        async with self._start_lock:
            if self.is_running:
                return

            cursor = await asyncio.to_thread(self._load_cursor)
            self._state = Running(cursor=cursor)
            self._failures = 0
            self._wake = asyncio.Event()
            self._task = asyncio.create_task(self._loop(), name="event-poller")
            logger.info("Event poller started", extra={"last_ledger": cursor})

    async def stop(self) -> None:
        """
        Ask the loop to stop and wait for it. An iteration already in flight
        completes; a pending sleep is cut short.
        """
        if not self.is_running:
            return

        self._state = Stopped()
        if self._wake is not None:
            self._wake.set()
        task, self._task = self._task, None
        if task is not None:
            await task
        logger.info("Event poller stopped")

    def status(self) -> Dict[str, Any]:
        state = self._state
        return {
            "running": isinstance(state, Running),
            "last_processed_ledger": state.cursor if isinstance(state, Running) else None,
            "consecutive_failures": self._failures,
            "next_delay_s": self._next_delay(),
        }

    # ---------------------------
    # LOOP
    # ---------------------------

    def _next_delay(self) -> float:
        if self._failures == 0:
            return self._poll_interval_s
        delay = self._poll_interval_s * (2 ** self._failures)
        return min(delay, self._max_backoff_s)

    async def _loop(self) -> None:
        while self.is_running:
            self._wake.clear()
            try:
                await self.run_once()
                self._failures = 0
            except Exception:
                self._failures += 1
                logger.exception(
                    "Event polling error",
                    extra={"consecutive_failures": self._failures, "retry_in_s": self._next_delay()},
                )

            if not self.is_running:
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._next_delay())
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> None:
        """
        One reconciliation cycle. Raises on RPC or store failure; the loop
        absorbs it. Usable on its own (e.g. from a one-shot job) while stopped.
        """
        if isinstance(self._state, Running):
            cursor = self._state.cursor
        else:
            cursor = await asyncio.to_thread(self._load_cursor)

        current_ledger = await self._rpc.get_latest_ledger()

        if current_ledger < cursor:
            cursor = await asyncio.to_thread(self._rollback, current_ledger, cursor)
            self._set_cursor(cursor)
            return

        events = await self._rpc.get_events(cursor + 1)
        if not events:
            return

        cursor = await asyncio.to_thread(self._apply_batch, events)
        self._set_cursor(cursor)

    def _set_cursor(self, cursor: int) -> None:
        if isinstance(self._state, Running):
            self._state = Running(cursor=cursor)

    # ---------------------------
    # STORE WORK (worker thread)
    # ---------------------------

    def _load_cursor(self) -> int:
        with self._session_factory() as db:
            return self._cursor_service.get_last_ledger(db)

    def _rollback(self, current_ledger: int, cursor: int) -> int:
        with self._session_factory() as db:
            self._reorg.handle_reorg(db, new_ledger=current_ledger, old_ledger=cursor)
            return self._cursor_service.get_last_ledger(db)

    def _apply_batch(self, events: List[ContractEvent]) -> int:
        with self._session_factory() as db:
            processed: List[ProcessedEvent] = []
            for event in events:
                record = self._handlers.dispatch(db, event)
                if record is not None:
                    processed.append(record)

            saved = self._save_events(db, processed)
            db.commit()
            logger.info("Saved events", extra={"count": saved, "fetched": len(events)})

            self._cursor_service.advance(db, max(e.ledger for e in events))
            return self._cursor_service.get_last_ledger(db)

    def _save_events(self, db: Session, processed: List[ProcessedEvent]) -> int:
        saved = 0
        seen = set()
        for p in processed:
            key = (p.tx_hash, p.event_type, p.sub_id)
            if key in seen or self._already_recorded(db, p):
                continue
            seen.add(key)
            db.add(
                ContractEventRecord(
                    sub_id=p.sub_id,
                    event_type=p.event_type,
                    ledger=p.ledger,
                    tx_hash=p.tx_hash,
                    event_data=p.event_data,
                )
            )
            saved += 1
        db.flush()
        return saved

    def _already_recorded(self, db: Session, p: ProcessedEvent) -> bool:
        return (
            db.execute(
                select(ContractEventRecord.id).where(
                    ContractEventRecord.tx_hash == p.tx_hash,
                    ContractEventRecord.event_type == p.event_type,
                    ContractEventRecord.sub_id == p.sub_id,
                )
            ).first()
            is not None
        )
