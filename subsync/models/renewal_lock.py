#subsync/models/renewal_lock.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from subsync.db.base import Base


class RenewalLock(Base):
    """
    One renewal attempt's claim on (subscription_id, cycle_id).

    The partial unique index allows a single status='active' row per key;
    inserting a second one fails atomically, which is the lock.
    Rows are never reused once released/expired.
    """

    __tablename__ = "renewal_locks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    subscription_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    lock_holder: Mapped[str] = mapped_column(String(128), nullable=False)

    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default=text("'active'"))

    __table_args__ = (
        CheckConstraint("status IN ('active', 'released', 'expired')", name="ck_renewal_locks_status"),
        Index(
            "uq_renewal_locks_active",
            "subscription_id",
            "cycle_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index(
            "ix_renewal_locks_expires_active",
            "expires_at",
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
