from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PollerStatus(BaseModel):
    running: bool
    last_processed_ledger: Optional[int] = None
    consecutive_failures: int = 0
    next_delay_s: float


class LockSweepStatus(BaseModel):
    running: bool
    interval_s: float
    last_swept: Optional[str] = Field(default=None, description="ISO timestamp of the last completed sweep")


class SyncStatus(BaseModel):
    enabled: bool
    poller: Optional[PollerStatus] = None
    lock_sweep: Optional[LockSweepStatus] = None


class RenewalLockState(BaseModel):
    subscription_id: str
    locked: bool
