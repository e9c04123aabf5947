#subsync/models/contract_event.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import BigInteger, DateTime, Integer, String, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from subsync.db.base import Base
from subsync.db.types import JSONType


class ContractEventRecord(Base):
    """
    Append-only audit of processed contract events.
    Rows are never edited; only a reorg rollback deletes them.
    """

    __tablename__ = "contract_events"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    sub_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    ledger: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_type", "sub_id", name="uq_contract_events_tx_type_sub"),
        Index("ix_contract_events_sub_id", "sub_id"),
        Index("ix_contract_events_ledger", "ledger"),
        Index("ix_contract_events_type", "event_type"),
    )
