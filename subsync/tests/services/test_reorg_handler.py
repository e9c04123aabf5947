from sqlalchemy import select

from subsync.models.contract_event import ContractEventRecord
from subsync.models.renewal_approval import RenewalApproval
from subsync.models.subscription import Subscription
from subsync.services.cursor_service import CursorService
from subsync.services.reorg_handler import ReorgHandler


def audit_row(db, ledger, event_type, sub_id=7, **data):
    row = ContractEventRecord(
        sub_id=sub_id,
        event_type=event_type,
        ledger=ledger,
        tx_hash=f"tx-{ledger}-{event_type}",
        event_data={"sub_id": sub_id, **data},
    )
    db.add(row)
    db.commit()
    return row


def ledgers(db):
    db.expire_all()
    return sorted(db.execute(select(ContractEventRecord.ledger)).scalars().all())


def subscription(db, sub_id=7):
    db.expire_all()
    return db.execute(select(Subscription).where(Subscription.blockchain_sub_id == sub_id)).scalar_one()


def test_rollback_removes_rows_from_safe_point_and_rewinds_cursor(db):
    for ledger in (85, 89, 90, 95, 100):
        audit_row(db, ledger, "duplicate_renewal_rejected")
    CursorService().advance(db, 100)

    result = ReorgHandler(reorg_depth=10).handle_reorg(db, new_ledger=100, old_ledger=110)

    assert result.safe_point == 90
    assert result.reverted == 3
    assert result.cursor == 89
    assert ledgers(db) == [85, 89]
    assert CursorService().get_last_ledger(db) == 89


def test_repeat_rollback_is_noop(db):
    audit_row(db, 95, "renewal_failed")
    CursorService().advance(db, 95)

    handler = ReorgHandler(reorg_depth=10)
    handler.handle_reorg(db, new_ledger=100, old_ledger=110)
    assert CursorService().get_last_ledger(db) == 89

    again = handler.handle_reorg(db, new_ledger=100, old_ledger=110)

    assert again.reverted == 0
    assert again.cursor is None
    assert CursorService().get_last_ledger(db) == 89


def test_rollback_without_audit_rows_still_rewinds_cursor(db):
    CursorService().advance(db, 120)

    result = ReorgHandler(reorg_depth=10).handle_reorg(db, new_ledger=115, old_ledger=120)

    assert (result.safe_point, result.reverted, result.cursor) == (105, 0, 104)
    assert CursorService().get_last_ledger(db) == 104


def test_rollback_never_moves_a_lower_cursor_forward(db):
    CursorService().advance(db, 50)

    result = ReorgHandler(reorg_depth=10).rollback_events(db, from_ledger=100)

    assert result.cursor is None
    assert CursorService().get_last_ledger(db) == 50


def test_safe_point_clamped_at_zero(db):
    audit_row(db, 0, "renewal_failed")
    audit_row(db, 3, "renewal_failed")

    result = ReorgHandler(reorg_depth=10).handle_reorg(db, new_ledger=4, old_ledger=12)

    assert result.safe_point == 0
    assert result.cursor == 0
    assert ledgers(db) == []


def test_renewal_success_reverted_to_pending(db):
    db.add(Subscription(blockchain_sub_id=7, status="active", failure_count=0, last_renewal_cycle_id=20260315))
    db.commit()
    audit_row(db, 103, "renewal_success")

    ReorgHandler(reorg_depth=5).handle_reorg(db, new_ledger=100, old_ledger=103)

    sub = subscription(db)
    assert sub.status == "pending"
    assert sub.last_renewal_cycle_id is None


def test_state_transition_restores_earlier_state(db):
    db.add(Subscription(blockchain_sub_id=7, status="cancelled"))
    db.commit()
    audit_row(db, 80, "state_transition", new_state="Retrying")
    audit_row(db, 98, "state_transition", new_state="Failed")

    ReorgHandler(reorg_depth=5).handle_reorg(db, new_ledger=100, old_ledger=110)

    assert subscription(db).status == "retrying"
    assert ledgers(db) == [80]


def test_state_transition_falls_back_to_active(db):
    db.add(Subscription(blockchain_sub_id=7, status="cancelled"))
    db.commit()
    audit_row(db, 98, "state_transition", new_state="Failed")

    ReorgHandler(reorg_depth=5).handle_reorg(db, new_ledger=100, old_ledger=110)

    assert subscription(db).status == "active"


def test_approval_created_is_deleted(db):
    db.add(RenewalApproval(blockchain_sub_id=7, approval_id=11, max_spend=10, expires_at=0))
    db.add(RenewalApproval(blockchain_sub_id=7, approval_id=12, max_spend=10, expires_at=0))
    db.commit()
    audit_row(db, 97, "approval_created", approval_id=11)

    ReorgHandler(reorg_depth=5).handle_reorg(db, new_ledger=100, old_ledger=110)

    remaining = db.execute(select(RenewalApproval.approval_id)).scalars().all()
    assert remaining == [12]


def test_kinds_without_compensation_are_still_pruned(db):
    db.add(Subscription(blockchain_sub_id=7, status="retrying", failure_count=3))
    db.commit()
    audit_row(db, 99, "renewal_failed", failure_count=3)
    audit_row(db, 99, "renewal_lock_acquired")

    result = ReorgHandler(reorg_depth=5).handle_reorg(db, new_ledger=100, old_ledger=110)

    assert result.reverted == 2
    assert ledgers(db) == []
    sub = subscription(db)
    assert (sub.status, sub.failure_count) == ("retrying", 3)
