# subsync/api/v1/sync.py

from __future__ import annotations

from fastapi import APIRouter, Request

from subsync.schemas.sync import LockSweepStatus, PollerStatus, SyncStatus

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatus)
async def sync_status(request: Request) -> SyncStatus:
    """Read-only view of the event poller and lock sweep loops."""
    poller = getattr(request.app.state, "event_poller", None)
    sweeper = getattr(request.app.state, "lock_sweeper", None)

    return SyncStatus(
        enabled=poller is not None,
        poller=PollerStatus(**poller.status()) if poller is not None else None,
        lock_sweep=LockSweepStatus(**sweeper.status()) if sweeper is not None else None,
    )
