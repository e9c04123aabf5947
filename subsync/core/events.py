from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class EventKind(str, Enum):
    """
    Contract event types known to this service.
    Anything else decodes to UNKNOWN and is dropped by the poller.
    """

    RENEWAL_SUCCESS = "RenewalSuccess"
    RENEWAL_FAILED = "RenewalFailed"
    STATE_TRANSITION = "StateTransition"
    APPROVAL_CREATED = "ApprovalCreated"
    APPROVAL_REJECTED = "ApprovalRejected"
    DUPLICATE_RENEWAL_REJECTED = "DuplicateRenewalRejected"
    RENEWAL_LOCK_ACQUIRED = "RenewalLockAcquired"
    RENEWAL_LOCK_RELEASED = "RenewalLockReleased"
    RENEWAL_LOCK_EXPIRED = "RenewalLockExpired"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "EventKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == raw:
                return kind
        return cls.UNKNOWN

    @property
    def audit_type(self) -> str:
        # RenewalSuccess -> renewal_success (value stored in contract_events.event_type)
        return re.sub(r"(?<!^)(?=[A-Z])", "_", self.value).lower()

    @classmethod
    def from_audit_type(cls, audit_type: str) -> "EventKind":
        for kind in cls:
            if kind.audit_type == audit_type:
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class ContractEvent:
    """One event as returned by the ledger RPC `getEvents` call."""

    type: str
    ledger: int
    tx_hash: str
    contract_id: str = ""
    topics: List[Any] = field(default_factory=list)
    value: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        return EventKind.parse(self.type)

    @classmethod
    def from_rpc(cls, raw: Dict[str, Any]) -> "ContractEvent":
        value = raw.get("value")
        return cls(
            type=str(raw.get("type", "")),
            ledger=int(raw["ledger"]),
            tx_hash=str(raw.get("txHash", "")),
            contract_id=str(raw.get("contractId", "")),
            topics=list(raw.get("topics") or []),
            value=value if isinstance(value, dict) else {},
        )


@dataclass(frozen=True)
class ProcessedEvent:
    """Audit record produced by a handler, persisted as a contract_events row."""

    sub_id: int
    event_type: str
    ledger: int
    tx_hash: str
    event_data: Dict[str, Any]
