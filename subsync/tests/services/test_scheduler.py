import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from subsync.models.renewal_lock import RenewalLock
from subsync.services.scheduler import LockSweepScheduler
from subsync.tests.helpers import seed


def lock(subscription_id, expires_in_s):
    now = datetime.now(timezone.utc)
    return RenewalLock(
        subscription_id=subscription_id,
        cycle_id=20260315,
        lock_holder="worker",
        locked_at=now,
        expires_at=now + timedelta(seconds=expires_in_s),
        status="active",
    )


def lock_statuses(session_factory):
    with session_factory() as s:
        rows = s.execute(select(RenewalLock).order_by(RenewalLock.subscription_id)).scalars().all()
        return [(r.subscription_id, r.status) for r in rows]


def test_interval_must_be_positive(session_factory):
    with pytest.raises(ValueError):
        LockSweepScheduler(session_factory, interval_s=0)


@pytest.mark.asyncio
async def test_sweep_once_expires_stale_locks(session_factory):
    seed(session_factory, lock("A", -30), lock("B", 600))
    scheduler = LockSweepScheduler(session_factory, interval_s=300)

    assert await scheduler.sweep_once() == 1
    assert lock_statuses(session_factory) == [("A", "expired"), ("B", "active")]
    assert scheduler.status()["last_swept"] is not None


@pytest.mark.asyncio
async def test_background_loop_sweeps_and_stops(session_factory):
    seed(session_factory, lock("A", -30))
    scheduler = LockSweepScheduler(session_factory, interval_s=0.01)

    scheduler.start()
    scheduler.start()
    assert scheduler.status()["running"] is True

    for _ in range(200):
        if scheduler.status()["last_swept"] is not None:
            break
        await asyncio.sleep(0.01)

    await scheduler.stop()
    assert scheduler.status()["running"] is False
    assert lock_statuses(session_factory) == [("A", "expired")]
