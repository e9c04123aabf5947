#subsync/models/enums.py
from __future__ import annotations
from enum import Enum


class SubscriptionStatus(str, Enum):
    active = "active"
    retrying = "retrying"
    pending = "pending"
    cancelled = "cancelled"


class LockStatus(str, Enum):
    active = "active"
    released = "released"
    expired = "expired"


# on-chain state name -> subscriptions.status
CHAIN_STATE_TO_STATUS = {
    "Active": SubscriptionStatus.active,
    "Retrying": SubscriptionStatus.retrying,
    "Failed": SubscriptionStatus.cancelled,
}
