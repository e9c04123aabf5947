#subsync/models/renewal_approval.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column

from subsync.db.base import Base


class RenewalApproval(Base):
    __tablename__ = "renewal_approvals"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    blockchain_sub_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    approval_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_spend: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)  # ledger timestamp as reported on-chain

    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    rejected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    rejection_reason: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("blockchain_sub_id", "approval_id", name="uq_renewal_approvals_sub_approval"),
        Index("ix_renewal_approvals_sub_id", "blockchain_sub_id"),
    )
