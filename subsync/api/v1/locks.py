# subsync/api/v1/locks.py

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from subsync.db.session import get_db
from subsync.schemas.sync import RenewalLockState
from subsync.services.renewal_lock_service import RenewalLockService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/locks", tags=["locks"])


def get_lock_service(request: Request) -> RenewalLockService:
    return getattr(request.app.state, "renewal_locks", None) or RenewalLockService()


@router.get("/{subscription_id}", response_model=RenewalLockState)
def get_lock_state(
    subscription_id: str,
    db: Session = Depends(get_db),
    locks: RenewalLockService = Depends(get_lock_service),
) -> RenewalLockState:
    """
    Whether a renewal for this subscription is currently in flight.
    Acquire/release stay with the renewal workflow; this route never mutates.
    """
    locked = locks.is_locked(db, subscription_id=subscription_id)
    logger.debug("[locks] subscription_id=%s locked=%s", subscription_id, locked)
    return RenewalLockState(subscription_id=subscription_id, locked=locked)
