#subsync/models/event_cursor.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from subsync.db.base import Base


class EventCursor(Base):
    """
    Singleton (id=1) holding the last ledger whose events were fully persisted.
    Only moves forward, except for an explicit reorg rollback.
    """

    __tablename__ = "event_cursor"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    last_ledger: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_event_cursor_singleton"),
    )
