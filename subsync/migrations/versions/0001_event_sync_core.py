"""event sync core: cursor, contract events, approvals, renewal locks

Revision ID: 0001_event_sync_core
Revises:
Create Date: 2026-02-20
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_event_sync_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("blockchain_sub_id", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'active'")),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_renewal_cycle_id", sa.BigInteger(), nullable=True),
        sa.Column("next_billing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_subscriptions_blockchain_sub_id", "subscriptions", ["blockchain_sub_id"])

    op.create_table(
        "event_cursor",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("last_ledger", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("id = 1", name="ck_event_cursor_singleton"),
    )

    op.create_table(
        "contract_events",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("sub_id", sa.BigInteger(), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column("ledger", sa.BigInteger(), nullable=False),
        sa.Column("tx_hash", sa.String(length=128), nullable=False),
        sa.Column("event_data", json_type, nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tx_hash", "event_type", "sub_id", name="uq_contract_events_tx_type_sub"),
    )
    op.create_index("ix_contract_events_sub_id", "contract_events", ["sub_id"])
    op.create_index("ix_contract_events_ledger", "contract_events", ["ledger"])
    op.create_index("ix_contract_events_type", "contract_events", ["event_type"])

    op.create_table(
        "renewal_approvals",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("blockchain_sub_id", sa.BigInteger(), nullable=False),
        sa.Column("approval_id", sa.BigInteger(), nullable=False),
        sa.Column("max_spend", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("rejected", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("rejection_reason", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("blockchain_sub_id", "approval_id", name="uq_renewal_approvals_sub_approval"),
    )
    op.create_index("ix_renewal_approvals_sub_id", "renewal_approvals", ["blockchain_sub_id"])

    op.create_table(
        "renewal_locks",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=False),
        sa.Column("cycle_id", sa.BigInteger(), nullable=False),
        sa.Column("lock_holder", sa.String(length=128), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.CheckConstraint("status IN ('active', 'released', 'expired')", name="ck_renewal_locks_status"),
    )

    # one active lock per (subscription_id, cycle_id): the insert itself is the lock
    op.create_index(
        "uq_renewal_locks_active",
        "renewal_locks",
        ["subscription_id", "cycle_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "ix_renewal_locks_expires_active",
        "renewal_locks",
        ["expires_at"],
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )


def downgrade():
    op.drop_index("ix_renewal_locks_expires_active", table_name="renewal_locks")
    op.drop_index("uq_renewal_locks_active", table_name="renewal_locks")
    op.drop_table("renewal_locks")

    op.drop_index("ix_renewal_approvals_sub_id", table_name="renewal_approvals")
    op.drop_table("renewal_approvals")

    op.drop_index("ix_contract_events_type", table_name="contract_events")
    op.drop_index("ix_contract_events_ledger", table_name="contract_events")
    op.drop_index("ix_contract_events_sub_id", table_name="contract_events")
    op.drop_table("contract_events")

    op.drop_table("event_cursor")

    op.drop_index("ix_subscriptions_blockchain_sub_id", table_name="subscriptions")
    op.drop_table("subscriptions")
