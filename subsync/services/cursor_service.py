#subsync/services/cursor_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from subsync.models.event_cursor import EventCursor

logger = logging.getLogger(__name__)

CURSOR_ID = 1


def _now():
    return datetime.now(timezone.utc)


class CursorService:
    """
    Durable position of the event sync (event_cursor, id=1).

    Forward moves are conditional so that concurrent pollers never move the
    cursor backwards; only reset() (reorg rollback) may lower it.
    """

    def get_last_ledger(self, db: Session) -> int:
        value = db.execute(
            select(EventCursor.last_ledger).where(EventCursor.id == CURSOR_ID)
        ).scalar_one_or_none()
        return value or 0

    def _conditional_update(self, db: Session, ledger: int) -> int:
        result = db.execute(
            update(EventCursor)
            .where(EventCursor.id == CURSOR_ID, EventCursor.last_ledger <= ledger)
            .values(last_ledger=ledger, updated_at=_now())
        )
        return result.rowcount

    def advance(self, db: Session, ledger: int) -> bool:
        """
        Move the cursor to `ledger` if the stored value is <= ledger. Commits.
        Returns False when another instance is already further ahead.
        """
        if self._conditional_update(db, ledger):
            db.commit()
            return True

        if db.get(EventCursor, CURSOR_ID) is not None:
            db.rollback()
            logger.info("Cursor already ahead, not advancing", extra={"ledger": ledger})
            return False

        db.add(EventCursor(id=CURSOR_ID, last_ledger=ledger, updated_at=_now()))
        try:
            db.commit()
            return True
        except IntegrityError:
            # another instance created the row first; fall back to the conditional path
            db.rollback()

        advanced = bool(self._conditional_update(db, ledger))
        db.commit()
        return advanced

    def reset(self, db: Session, ledger: int) -> None:
        """Unconditionally set the cursor (rollback path). Caller commits."""
        ledger = max(ledger, 0)
        cursor = db.get(EventCursor, CURSOR_ID)
        if cursor is None:
            db.add(EventCursor(id=CURSOR_ID, last_ledger=ledger, updated_at=_now()))
        else:
            cursor.last_ledger = ledger
            cursor.updated_at = _now()
        db.flush()
