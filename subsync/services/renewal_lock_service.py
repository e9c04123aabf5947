#subsync/services/renewal_lock_service.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from subsync.core.config import Settings
from subsync.models.enums import LockStatus
from subsync.models.renewal_lock import RenewalLock

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _is_unique_violation(exc: IntegrityError) -> bool:
    # postgres reports SQLSTATE 23505, sqlite only a message
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "UNIQUE constraint failed" in str(orig)


class RenewalLockService:
    """
    Cross-process renewal lock on (subscription_id, cycle_id).

    Exclusion comes from the partial unique index on renewal_locks
    (one status='active' row per key): the INSERT either succeeds or fails
    atomically in the database, whichever process issues it.

    Every call is blocking store I/O and commits its own transaction;
    async callers should run it in a worker thread.
    Holders get no heartbeat: once expires_at passes, the next acquire_lock
    or sweep can expire the row even if the holder is still working.
    """

    def __init__(self, default_ttl_ms: int = 30000):
        self.default_ttl_ms = default_ttl_ms

    @classmethod
    def from_settings(cls, settings: Settings) -> "RenewalLockService":
        return cls(default_ttl_ms=settings.renewal_lock_ttl_ms)

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def acquire_lock(
        self,
        db: Session,
        *,
        subscription_id: str,
        cycle_id: int,
        lock_holder: str,
        ttl_ms: Optional[int] = None,
    ) -> bool:
        """
        Returns True when the caller now holds the lock, False when another
        holder has an active one. Any other store error propagates.
        """
        ttl_ms = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive.")

        # self-heal: a stale active row for this key must not block us
        self._expire_stale_for_key(db, subscription_id=subscription_id, cycle_id=cycle_id)

        now = _now()
        expires_at = now + timedelta(milliseconds=ttl_ms)
        db.add(
            RenewalLock(
                subscription_id=subscription_id,
                cycle_id=cycle_id,
                lock_holder=lock_holder,
                locked_at=now,
                expires_at=expires_at,
                status=LockStatus.active.value,
            )
        )
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if not _is_unique_violation(exc):
                raise
            logger.warning(
                "Renewal lock already held",
                extra={"subscription_id": subscription_id, "cycle_id": cycle_id, "lock_holder": lock_holder},
            )
            return False

        logger.info(
            "Renewal lock acquired",
            extra={
                "subscription_id": subscription_id,
                "cycle_id": cycle_id,
                "lock_holder": lock_holder,
                "expires_at": expires_at.isoformat(),
            },
        )
        return True

    def release_lock(self, db: Session, *, subscription_id: str, cycle_id: int) -> None:
        """active -> released. No-op when the key holds no active lock."""
        result = db.execute(
            update(RenewalLock)
            .where(
                RenewalLock.subscription_id == subscription_id,
                RenewalLock.cycle_id == cycle_id,
                RenewalLock.status == LockStatus.active.value,
            )
            .values(status=LockStatus.released.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount:
            logger.info("Renewal lock released", extra={"subscription_id": subscription_id, "cycle_id": cycle_id})

    def release_expired_locks(self, db: Session) -> int:
        """
        Global sweep: every active lock past expires_at becomes expired.
        Backstop for holders that died without releasing. Returns the count.
        """
        result = db.execute(
            update(RenewalLock)
            .where(
                RenewalLock.status == LockStatus.active.value,
                RenewalLock.expires_at < _now(),
            )
            .values(status=LockStatus.expired.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        count = result.rowcount or 0
        if count:
            logger.info("Released expired renewal locks", extra={"count": count})
        return count

    def _expire_stale_for_key(self, db: Session, *, subscription_id: str, cycle_id: int) -> None:
        result = db.execute(
            update(RenewalLock)
            .where(
                RenewalLock.subscription_id == subscription_id,
                RenewalLock.cycle_id == cycle_id,
                RenewalLock.status == LockStatus.active.value,
                RenewalLock.expires_at < _now(),
            )
            .values(status=LockStatus.expired.value)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount:
            logger.info(
                "Expired stale renewal lock before acquire",
                extra={"subscription_id": subscription_id, "cycle_id": cycle_id},
            )

    # ---------------------------
    # READS
    # ---------------------------

    def is_locked(self, db: Session, *, subscription_id: str) -> bool:
        """True if any cycle of the subscription holds an unexpired active lock."""
        row = db.execute(
            select(RenewalLock.id)
            .where(
                RenewalLock.subscription_id == subscription_id,
                RenewalLock.status == LockStatus.active.value,
                RenewalLock.expires_at >= _now(),
            )
            .limit(1)
        ).first()
        return row is not None
