from subsync.models.contract_event import ContractEventRecord
from subsync.models.event_cursor import EventCursor
from subsync.models.renewal_approval import RenewalApproval
from subsync.models.renewal_lock import RenewalLock
from subsync.models.subscription import Subscription

__all__ = [
    "ContractEventRecord",
    "EventCursor",
    "RenewalApproval",
    "RenewalLock",
    "Subscription",
]
