# Overview: Pytest coverage for the borrow/return transaction state machine.

"""
Transaction State Machine Tests

Verifies:
- the borrow lifecycle scenarios end to end (request, approve, return)
- first approval wins when pending requests oversubscribe an item
- request-time checks: availability, stock, duplicates
- no transition leaves Rejected or Completed
- each approve/reject/return writes exactly one audit row for the transaction
- transfers, auto-rejection on retirement, and read-side reports
"""

from datetime import timedelta

import pytest
from sqlalchemy import event

from conftest import due_in
from assetlend.errors import (
    DuplicateRequest,
    InsufficientStock,
    InvalidState,
    ItemUnavailable,
    NotFound,
    ValidationError,
)
from assetlend.extensions import db
from assetlend.models import AuditLog, Transaction
from assetlend.services import ledger_service, transaction_service
from assetlend.time_utils import utcnow


def _txn_audit_count(db_session, txn_id):
    return db_session.query(AuditLog).filter_by(target_table="transactions", target_id=txn_id).count()


def _request(db_session, user, item, quantity=1, days=7):
    txn = transaction_service.create_borrow_request(user.id, item.id, quantity, due_in(days), reason="Project work")
    db_session.commit()
    return txn


# =============================================================================
# LIFECYCLE SCENARIOS
# =============================================================================


class TestBorrowLifecycle:

    def test_borrow_approve_return(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)

        txn = _request(db_session, employee, item, quantity=3)
        assert txn.status == "Pending"
        assert item.quantity == 5

        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()
        assert txn.status == "Approved"
        assert txn.approved_by_user_id == keeper.id
        assert txn.approved_at is not None
        assert item.quantity == 2
        assert item.status == "available"

        transaction_service.return_item(txn.id, "good", actor_id=employee.id)
        db_session.commit()
        assert txn.status == "Completed"
        assert txn.returned_at is not None
        assert txn.return_condition == "good"
        assert item.quantity == 5
        assert item.status == "available"

    def test_first_approval_wins(self, db_session, make_item, employee, other_employee, keeper):
        item = make_item(quantity=1)

        txn_a = _request(db_session, employee, item)
        txn_b = _request(db_session, other_employee, item)

        transaction_service.approve(txn_a.id, keeper.id)
        db_session.commit()
        assert item.quantity == 0
        assert item.status == "reserved"

        with pytest.raises(InsufficientStock):
            transaction_service.approve(txn_b.id, keeper.id)
        db_session.rollback()

        transaction_service.reject(txn_b.id, keeper.id, "No stock left")
        db_session.commit()

        assert txn_b.status == "Rejected"
        assert txn_b.rejection_reason == "No stock left"
        assert item.quantity == 0
        assert item.status == "reserved"

    def test_failed_approval_changes_nothing(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=3)
        txn = _request(db_session, employee, item, quantity=3)
        ledger_service.adjust_stock(item.id, "set", 2)
        db_session.commit()
        audit_before = _txn_audit_count(db_session, txn.id)

        with pytest.raises(InsufficientStock):
            transaction_service.approve(txn.id, keeper.id)
        db_session.rollback()

        assert item.quantity == 2
        assert item.status == "available"
        assert txn.status == "Pending"
        assert txn.approved_by_user_id is None
        assert _txn_audit_count(db_session, txn.id) == audit_before


# =============================================================================
# REQUEST-TIME CHECKS
# =============================================================================


class TestCreateBorrowRequest:

    def test_request_more_than_stock(self, db_session, make_item, employee):
        item = make_item(quantity=2)

        with pytest.raises(InsufficientStock):
            transaction_service.create_borrow_request(employee.id, item.id, 3, due_in())
        db_session.rollback()

        assert db_session.query(Transaction).count() == 0

    def test_duplicate_while_pending(self, db_session, make_item, employee):
        item = make_item(quantity=5)
        _request(db_session, employee, item)

        with pytest.raises(DuplicateRequest):
            transaction_service.create_borrow_request(employee.id, item.id, 1, due_in())

    def test_duplicate_while_approved(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()

        with pytest.raises(DuplicateRequest):
            transaction_service.create_borrow_request(employee.id, item.id, 1, due_in())

    def test_new_request_allowed_after_completion(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.reject(txn.id, keeper.id)
        db_session.commit()

        again = _request(db_session, employee, item)
        assert again.status == "Pending"

    def test_other_user_may_request_same_item(self, db_session, make_item, employee, other_employee):
        item = make_item(quantity=5)
        _request(db_session, employee, item)
        second = _request(db_session, other_employee, item)
        assert second.status == "Pending"

    @pytest.mark.parametrize("status,quantity", [("maintenance", 3), ("damaged", 3), ("retired", 3), ("reserved", 0)])
    def test_unavailable_item(self, db_session, make_item, employee, status, quantity):
        item = make_item(quantity=quantity, status=status)
        with pytest.raises(ItemUnavailable):
            transaction_service.create_borrow_request(employee.id, item.id, 1, due_in())

    def test_missing_item(self, db_session, employee):
        with pytest.raises(NotFound):
            transaction_service.create_borrow_request(employee.id, 99999, 1, due_in())

    def test_missing_user(self, db_session, make_item):
        item = make_item(quantity=5)
        with pytest.raises(NotFound):
            transaction_service.create_borrow_request(99999, item.id, 1, due_in())

    def test_request_does_not_touch_stock(self, db_session, make_item, employee):
        item = make_item(quantity=5)
        _request(db_session, employee, item, quantity=4)
        assert item.quantity == 5
        assert item.version_id == 1

    def test_request_is_audited(self, db_session, make_item, employee):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)

        row = db_session.query(AuditLog).filter_by(target_table="transactions", target_id=txn.id).one()
        assert row.action_type == "CREATE"
        assert row.user_id == employee.id
        assert row.old_value is None
        assert row.new_value["status"] == "Pending"

    def test_zero_quantity_rejected(self, db_session, make_item, employee):
        item = make_item(quantity=5)
        with pytest.raises(ValidationError):
            transaction_service.create_borrow_request(employee.id, item.id, 0, due_in())


# =============================================================================
# TERMINAL STATES AND AUDIT
# =============================================================================


class TestTransitions:

    def test_rejected_is_terminal(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.reject(txn.id, keeper.id)
        db_session.commit()

        with pytest.raises(InvalidState):
            transaction_service.approve(txn.id, keeper.id)
        with pytest.raises(InvalidState):
            transaction_service.reject(txn.id, keeper.id)
        with pytest.raises(InvalidState):
            transaction_service.return_item(txn.id)
        db_session.rollback()
        assert txn.status == "Rejected"

    def test_completed_is_terminal(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.approve(txn.id, keeper.id)
        transaction_service.return_item(txn.id)
        db_session.commit()

        with pytest.raises(InvalidState):
            transaction_service.approve(txn.id, keeper.id)
        with pytest.raises(InvalidState):
            transaction_service.reject(txn.id, keeper.id)
        with pytest.raises(InvalidState):
            transaction_service.return_item(txn.id)
        db_session.rollback()
        assert txn.status == "Completed"
        assert item.quantity == 5

    def test_cannot_return_pending(self, db_session, make_item, employee):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        with pytest.raises(InvalidState):
            transaction_service.return_item(txn.id)

    def test_cannot_reject_approved(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()
        with pytest.raises(InvalidState):
            transaction_service.reject(txn.id, keeper.id)

    def test_missing_transaction(self, db_session, keeper):
        with pytest.raises(NotFound):
            transaction_service.approve(99999, keeper.id)

    def test_unknown_return_condition(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()
        with pytest.raises(ValidationError):
            transaction_service.return_item(txn.id, "shiny")

    def test_each_transition_writes_one_audit_row(self, db_session, make_item, employee, other_employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        rejected = _request(db_session, other_employee, item)

        before = _txn_audit_count(db_session, txn.id)
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()
        assert _txn_audit_count(db_session, txn.id) == before + 1

        before = _txn_audit_count(db_session, txn.id)
        transaction_service.return_item(txn.id, "fair", "Scratched lid", actor_id=employee.id)
        db_session.commit()
        assert _txn_audit_count(db_session, txn.id) == before + 1

        before = _txn_audit_count(db_session, rejected.id)
        transaction_service.reject(rejected.id, keeper.id, "Not needed")
        db_session.commit()
        assert _txn_audit_count(db_session, rejected.id) == before + 1

        actions = [
            row.action_type
            for row in db_session.query(AuditLog)
            .filter_by(target_table="transactions", target_id=txn.id)
            .order_by(AuditLog.id.asc())
        ]
        assert actions == ["CREATE", "APPROVE", "RETURN"]

    def test_approve_out_of_service_item(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item)
        ledger_service.set_item_status(item.id, "maintenance")
        db_session.commit()

        with pytest.raises(ItemUnavailable):
            transaction_service.approve(txn.id, keeper.id)

    def test_return_to_damaged_item_keeps_status(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=2)
        txn = _request(db_session, employee, item, quantity=2)
        transaction_service.approve(txn.id, keeper.id)
        ledger_service.set_item_status(item.id, "damaged")
        db_session.commit()

        transaction_service.return_item(txn.id, "damaged")
        db_session.commit()

        assert txn.status == "Completed"
        assert item.quantity == 2
        assert item.status == "damaged"


# =============================================================================
# TRANSFER AND RETIREMENT
# =============================================================================


class TestTransferAndRetirement:

    def test_transfer_records_completed_transaction(self, db_session, make_item, store, other_store, driver):
        item = make_item(quantity=5)

        txn = transaction_service.transfer(driver.id, item.id, other_store.id, 2, reason="Site needs")
        db_session.commit()

        assert txn.type == "Transfer"
        assert txn.status == "Completed"
        assert txn.from_store_id == store.id
        assert txn.to_store_id == other_store.id
        assert txn.quantity == 2
        assert item.quantity == 3

    def test_auto_reject_pending_on_retirement(self, db_session, make_item, employee, other_employee, keeper):
        item = make_item(quantity=5)
        approved = _request(db_session, employee, item)
        transaction_service.approve(approved.id, keeper.id)
        pending = _request(db_session, other_employee, item)

        rejected = transaction_service.auto_reject_pending(item.id, actor_id=keeper.id)
        db_session.commit()

        assert [t.id for t in rejected] == [pending.id]
        assert pending.status == "Rejected"
        assert pending.rejection_reason == "Item retired"
        assert approved.status == "Approved"

    def test_retire_item_locks_pending_requests_before_item(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        pending = _request(db_session, employee, item)
        statements = []

        def _capture(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(db.engine, "before_cursor_execute", _capture)
        try:
            retired = transaction_service.retire_item(item.id, actor_id=keeper.id, notes="End of life")
            db_session.commit()
        finally:
            event.remove(db.engine, "before_cursor_execute", _capture)

        first_txn_read = next(i for i, s in enumerate(statements) if s.startswith("SELECT") and "FROM transactions" in s)
        first_item_read = next(i for i, s in enumerate(statements) if s.startswith("SELECT") and "FROM items" in s)
        assert first_txn_read < first_item_read

        assert retired.status == "retired"
        assert pending.status == "Rejected"
        assert pending.rejection_reason == "Item retired"
        actions = [
            row.action_type
            for row in db_session.query(AuditLog).order_by(AuditLog.id.asc())
            if row.action_type != "CREATE"
        ]
        assert actions == ["STATUS_CHANGE", "REJECT"]

    def test_retire_item_twice_leaves_nothing_changed(self, db_session, make_item, keeper):
        item = make_item(quantity=5)
        transaction_service.retire_item(item.id, actor_id=keeper.id)
        db_session.commit()

        with pytest.raises(InvalidState):
            transaction_service.retire_item(item.id, actor_id=keeper.id)
        db_session.rollback()

        assert db_session.query(AuditLog).filter_by(action_type="STATUS_CHANGE").count() == 1


# =============================================================================
# READS
# =============================================================================


class TestQueries:

    def test_pending_queue_is_oldest_first(self, db_session, make_item, employee, other_employee):
        first = _request(db_session, employee, make_item(quantity=5))
        second = _request(db_session, other_employee, make_item(quantity=5))

        queue = transaction_service.list_pending_requests()
        assert [t.id for t in queue] == [first.id, second.id]

    def test_pending_queue_store_filter(self, db_session, make_item, employee, other_store):
        here = _request(db_session, employee, make_item(quantity=5))
        _request(db_session, employee, make_item(quantity=5, store_id=other_store.id))

        queue = transaction_service.list_pending_requests(store_id=here.item.store_id)
        assert [t.id for t in queue] == [here.id]

    def test_list_transactions_filters_and_paginates(self, db_session, make_item, employee, keeper):
        for _ in range(3):
            txn = _request(db_session, employee, make_item(quantity=5))
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()

        result = transaction_service.list_transactions(status="Pending", per_page=1)
        assert result["pagination"]["total"] == 2
        assert result["pagination"]["total_pages"] == 2
        assert result["count"] == 1

        with pytest.raises(ValidationError):
            transaction_service.list_transactions(status="Lost")

    def test_overdue_is_read_only_report(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        txn = _request(db_session, employee, item, days=1)
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()

        assert transaction_service.list_overdue() == []

        later = utcnow() + timedelta(days=3)
        overdue = transaction_service.list_overdue(now=later)
        assert [t.id for t in overdue] == [txn.id]
        assert txn.is_overdue(later) is True
        assert txn.days_until_due(later) < 0
        assert txn.status == "Approved"

    def test_dashboard_stats(self, db_session, make_item, employee, keeper):
        a = _request(db_session, employee, make_item(quantity=5))
        b = _request(db_session, employee, make_item(quantity=5))
        _request(db_session, employee, make_item(quantity=5))
        transaction_service.approve(a.id, keeper.id)
        transaction_service.approve(b.id, keeper.id)
        transaction_service.return_item(b.id)
        db_session.commit()

        stats = transaction_service.dashboard_stats(employee.id)
        assert stats["active_borrows"] == 1
        assert stats["pending_requests"] == 1
        assert stats["completed"] == 1
        assert stats["overdue"] == 0
