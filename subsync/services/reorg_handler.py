#subsync/services/reorg_handler.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from subsync.core.events import EventKind
from subsync.models.contract_event import ContractEventRecord
from subsync.models.enums import CHAIN_STATE_TO_STATUS, SubscriptionStatus
from subsync.models.renewal_approval import RenewalApproval
from subsync.models.subscription import Subscription
from subsync.services.cursor_service import CursorService

logger = logging.getLogger(__name__)

DEFAULT_REORG_DEPTH = 10


@dataclass(frozen=True)
class RollbackResult:
    safe_point: int
    reverted: int
    cursor: Optional[int]  # None when the cursor was already at or below the rewind point


class ReorgHandler:
    """
    Undoes the effects of audit rows that a ledger reorganization may have
    invalidated, then rewinds the cursor so they get re-fetched.

    Everything from `new_ledger - reorg_depth` up is treated as suspect.
    """

    def __init__(self, reorg_depth: int = DEFAULT_REORG_DEPTH, cursor_service: Optional[CursorService] = None):
        if reorg_depth < 0:
            raise ValueError("reorg_depth must be >= 0.")
        self.reorg_depth = reorg_depth
        self.cursor_service = cursor_service or CursorService()

    def handle_reorg(self, db: Session, *, new_ledger: int, old_ledger: int) -> RollbackResult:
        logger.warning("Ledger regression detected", extra={"new_ledger": new_ledger, "old_ledger": old_ledger})
        return self.rollback_events(db, from_ledger=new_ledger)

    def rollback_events(self, db: Session, *, from_ledger: int) -> RollbackResult:
        """
        Compensate, delete and rewind in one transaction.

        The cursor is rewound to safe_point - 1 whenever it sits past that
        point, with or without audit rows to revert. A cursor already at or
        below it is left alone, so repeating a rollback changes nothing.
        """
        safe_point = max(from_ledger - self.reorg_depth, 0)
        cursor = max(safe_point - 1, 0)

        rows = (
            db.execute(
                select(ContractEventRecord)
                .where(ContractEventRecord.ledger >= safe_point)
                .order_by(ContractEventRecord.ledger.desc(), ContractEventRecord.id.desc())
            )
            .scalars()
            .all()
        )
        if not rows:
            if self.cursor_service.get_last_ledger(db) <= cursor:
                return RollbackResult(safe_point=safe_point, reverted=0, cursor=None)

            self.cursor_service.reset(db, cursor)
            db.commit()
            logger.info("Reorg handled, no events to revert", extra={"rolled_back_to": safe_point, "cursor": cursor})
            return RollbackResult(safe_point=safe_point, reverted=0, cursor=cursor)

        logger.info("Rolling back events", extra={"count": len(rows), "safe_point": safe_point})

        for row in rows:
            self._revert(db, row, safe_point=safe_point)

        db.execute(
            delete(ContractEventRecord)
            .where(ContractEventRecord.ledger >= safe_point)
            .execution_options(synchronize_session=False)
        )

        self.cursor_service.reset(db, cursor)
        db.commit()

        logger.info("Reorg handled", extra={"rolled_back_to": safe_point, "cursor": cursor, "reverted": len(rows)})
        return RollbackResult(safe_point=safe_point, reverted=len(rows), cursor=cursor)

    # ---------------------------
    # COMPENSATION
    # ---------------------------

    def _revert(self, db: Session, row: ContractEventRecord, *, safe_point: int) -> None:
        kind = EventKind.from_audit_type(row.event_type)

        if kind is EventKind.RENEWAL_SUCCESS:
            self._set_subscription(
                db,
                row.sub_id,
                status=SubscriptionStatus.pending.value,
                last_renewal_cycle_id=None,
            )

        elif kind is EventKind.STATE_TRANSITION:
            self._set_subscription(db, row.sub_id, status=self._previous_status(db, row.sub_id, safe_point))

        elif kind is EventKind.APPROVAL_CREATED:
            approval_id = (row.event_data or {}).get("approval_id")
            if approval_id is not None:
                db.execute(
                    delete(RenewalApproval)
                    .where(
                        RenewalApproval.blockchain_sub_id == row.sub_id,
                        RenewalApproval.approval_id == int(approval_id),
                    )
                    .execution_options(synchronize_session=False)
                )

        elif kind is EventKind.DUPLICATE_RENEWAL_REJECTED:
            pass  # the rejection never changed state

        else:
            # renewal_failed, approval_rejected and lock events have no compensation
            logger.warning(
                "No compensation for rolled back event",
                extra={"event_type": row.event_type, "sub_id": row.sub_id, "ledger": row.ledger},
            )

    def _previous_status(self, db: Session, sub_id: int, safe_point: int) -> str:
        prev = (
            db.execute(
                select(ContractEventRecord)
                .where(
                    ContractEventRecord.sub_id == sub_id,
                    ContractEventRecord.event_type == EventKind.STATE_TRANSITION.audit_type,
                    ContractEventRecord.ledger < safe_point,
                )
                .order_by(ContractEventRecord.ledger.desc(), ContractEventRecord.id.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        if prev is None:
            return SubscriptionStatus.active.value
        new_state = (prev.event_data or {}).get("new_state")
        return CHAIN_STATE_TO_STATUS.get(new_state, SubscriptionStatus.active).value

    def _set_subscription(self, db: Session, sub_id: int, **values) -> None:
        db.execute(
            update(Subscription)
            .where(Subscription.blockchain_sub_id == sub_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
