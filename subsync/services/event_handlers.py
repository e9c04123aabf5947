#subsync/services/event_handlers.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from subsync.core.cycle_id import generate_cycle_id
from subsync.core.events import ContractEvent, EventKind, ProcessedEvent
from subsync.models.enums import CHAIN_STATE_TO_STATUS, SubscriptionStatus
from subsync.models.renewal_approval import RenewalApproval
from subsync.models.subscription import Subscription

logger = logging.getLogger(__name__)

Handler = Callable[[Session, ContractEvent], ProcessedEvent]


def _now():
    return datetime.now(timezone.utc)


def _audit(event: ContractEvent, kind: EventKind) -> ProcessedEvent:
    return ProcessedEvent(
        sub_id=int(event.value["sub_id"]),
        event_type=kind.audit_type,
        ledger=event.ledger,
        tx_hash=event.tx_hash,
        event_data=dict(event.value),
    )


class EventHandlers:
    """
    Applies contract events to the off-chain store.

    Every handler *sets* state rather than incrementing it, so applying the
    same event twice leaves the same result. Handlers only stage changes on
    the session; the poller commits them together with the audit rows.
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventKind, Handler] = {
            EventKind.RENEWAL_SUCCESS: self.handle_renewal_success,
            EventKind.RENEWAL_FAILED: self.handle_renewal_failed,
            EventKind.STATE_TRANSITION: self.handle_state_transition,
            EventKind.APPROVAL_CREATED: self.handle_approval_created,
            EventKind.APPROVAL_REJECTED: self.handle_approval_rejected,
            EventKind.DUPLICATE_RENEWAL_REJECTED: self.handle_duplicate_renewal_rejected,
            EventKind.RENEWAL_LOCK_ACQUIRED: self.handle_lock_lifecycle,
            EventKind.RENEWAL_LOCK_RELEASED: self.handle_lock_lifecycle,
            EventKind.RENEWAL_LOCK_EXPIRED: self.handle_lock_lifecycle,
        }
        missing = [k for k in EventKind if k is not EventKind.UNKNOWN and k not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for event kinds: {missing}")

    def dispatch(self, db: Session, event: ContractEvent) -> Optional[ProcessedEvent]:
        """
        Route one event to its handler. Returns the audit record, or None when
        the event is dropped (unknown type, or a known type without sub_id).
        """
        kind = event.kind
        if kind is EventKind.UNKNOWN:
            logger.warning(
                "Dropping unknown contract event",
                extra={"event_type": event.type, "ledger": event.ledger, "tx_hash": event.tx_hash},
            )
            return None

        if event.value.get("sub_id") is None:
            logger.error(
                "Dropping contract event without sub_id",
                extra={"event_type": event.type, "ledger": event.ledger, "tx_hash": event.tx_hash},
            )
            return None

        try:
            return self._handlers[kind](db, event)
        except (KeyError, TypeError, ValueError):
            # payload shape errors only; store errors propagate to the poll loop
            logger.error(
                "Dropping malformed contract event",
                extra={"event_type": event.type, "ledger": event.ledger, "tx_hash": event.tx_hash},
                exc_info=True,
            )
            return None

    # ---------------------------
    # LOOKUPS
    # ---------------------------

    def _get_subscriptions(self, db: Session, sub_id: int) -> List[Subscription]:
        # blockchain_sub_id is not unique; every row bound to it follows the chain
        return list(
            db.execute(select(Subscription).where(Subscription.blockchain_sub_id == sub_id))
            .scalars()
            .all()
        )

    def _get_approval(self, db: Session, sub_id: int, approval_id: int) -> Optional[RenewalApproval]:
        return db.execute(
            select(RenewalApproval).where(
                RenewalApproval.blockchain_sub_id == sub_id,
                RenewalApproval.approval_id == approval_id,
            )
        ).scalar_one_or_none()

    # ---------------------------
    # HANDLERS
    # ---------------------------

    def handle_renewal_success(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        sub_id = int(event.value["sub_id"])
        subs = self._get_subscriptions(db, sub_id)
        if not subs:
            logger.warning("RenewalSuccess for unknown subscription", extra={"sub_id": sub_id})
            return _audit(event, EventKind.RENEWAL_SUCCESS)

        for sub in subs:
            cycle_id = generate_cycle_id(sub.next_billing_date) if sub.next_billing_date else None
            already_recorded = (
                cycle_id is not None
                and sub.last_renewal_cycle_id == cycle_id
                and sub.status == SubscriptionStatus.active.value
            )

            sub.status = SubscriptionStatus.active.value
            sub.failure_count = 0
            if cycle_id is not None:
                sub.last_renewal_cycle_id = cycle_id
            if not already_recorded:
                sub.last_payment_date = _now()

        db.flush()
        return _audit(event, EventKind.RENEWAL_SUCCESS)

    def handle_renewal_failed(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        sub_id = int(event.value["sub_id"])
        failure_count = int(event.value.get("failure_count") or 0)
        subs = self._get_subscriptions(db, sub_id)
        if subs:
            for sub in subs:
                sub.status = SubscriptionStatus.retrying.value
                sub.failure_count = failure_count
            db.flush()
        else:
            logger.warning("RenewalFailed for unknown subscription", extra={"sub_id": sub_id})
        return _audit(event, EventKind.RENEWAL_FAILED)

    def handle_state_transition(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        sub_id = int(event.value["sub_id"])
        new_state = event.value.get("new_state")
        status = CHAIN_STATE_TO_STATUS.get(new_state, SubscriptionStatus.active)

        subs = self._get_subscriptions(db, sub_id)
        if subs:
            for sub in subs:
                sub.status = status.value
            db.flush()
        else:
            logger.warning("StateTransition for unknown subscription", extra={"sub_id": sub_id})
        return _audit(event, EventKind.STATE_TRANSITION)

    def handle_approval_created(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        sub_id = int(event.value["sub_id"])
        approval_id = int(event.value["approval_id"])

        if self._get_approval(db, sub_id, approval_id) is None:
            db.add(
                RenewalApproval(
                    blockchain_sub_id=sub_id,
                    approval_id=approval_id,
                    max_spend=int(event.value.get("max_spend") or 0),
                    expires_at=int(event.value.get("expires_at") or 0),
                    used=False,
                )
            )
            db.flush()
        return _audit(event, EventKind.APPROVAL_CREATED)

    def handle_approval_rejected(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        sub_id = int(event.value["sub_id"])
        approval_id = int(event.value["approval_id"])

        approval = self._get_approval(db, sub_id, approval_id)
        if approval is not None:
            approval.rejected = True
            approval.rejection_reason = event.value.get("reason")
            db.flush()
        else:
            logger.warning(
                "ApprovalRejected for unknown approval",
                extra={"sub_id": sub_id, "approval_id": approval_id},
            )
        return _audit(event, EventKind.APPROVAL_REJECTED)

    def handle_duplicate_renewal_rejected(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        logger.warning(
            "Duplicate renewal rejected by contract",
            extra={"sub_id": event.value.get("sub_id"), "cycle_id": event.value.get("cycle_id")},
        )
        return _audit(event, EventKind.DUPLICATE_RENEWAL_REJECTED)

    def handle_lock_lifecycle(self, db: Session, event: ContractEvent) -> ProcessedEvent:
        kind = event.kind
        # informational only: the off-chain lock table is owned by RenewalLockService
        level = logging.WARNING if kind is EventKind.RENEWAL_LOCK_EXPIRED else logging.INFO
        logger.log(
            level,
            "Renewal lock event on-chain",
            extra={"event_type": kind.value, "sub_id": event.value.get("sub_id"), "ledger": event.ledger},
        )
        return _audit(event, kind)
