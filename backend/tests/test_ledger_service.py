# Overview: Pytest coverage for the stock ledger.

"""
Stock Ledger Tests

Verifies:
- quantity never goes negative; failed reserves change nothing
- reserve then release of the same quantity restores quantity and status
- status follows quantity (available <-> reserved) but out-of-service
  statuses survive releases
- transfers between stores, whole and partial
- stock corrections and manual status changes
- every ledger write leaves an audit row with before/after snapshots
"""

import pytest

from assetlend.errors import (
    InsufficientStock,
    InvalidState,
    ItemUnavailable,
    NotFound,
    ValidationError,
)
from assetlend.models import AuditLog, Item
from assetlend.services import ledger_service


def _audit_rows(db_session, item_id, action_type=None):
    q = db_session.query(AuditLog).filter_by(target_table="items", target_id=item_id)
    if action_type:
        q = q.filter_by(action_type=action_type)
    return q.order_by(AuditLog.id.asc()).all()


# =============================================================================
# RESERVE / RELEASE
# =============================================================================


class TestReserveRelease:

    def test_reserve_decrements_quantity(self, db_session, make_item, keeper):
        item = make_item(quantity=5)

        ledger_service.reserve(item.id, 3, actor_id=keeper.id)
        db_session.commit()

        assert item.quantity == 2
        assert item.status == "available"

    def test_reserve_to_zero_marks_reserved(self, db_session, make_item):
        item = make_item(quantity=2)

        ledger_service.reserve(item.id, 2)
        db_session.commit()

        assert item.quantity == 0
        assert item.status == "reserved"

    def test_reserve_more_than_stock_changes_nothing(self, db_session, make_item):
        item = make_item(quantity=2)
        version_before = item.version_id

        with pytest.raises(InsufficientStock):
            ledger_service.reserve(item.id, 3)
        db_session.rollback()

        assert item.quantity == 2
        assert item.status == "available"
        assert item.version_id == version_before
        assert _audit_rows(db_session, item.id) == []

    @pytest.mark.parametrize("quantity", [0, -1, True])
    def test_reserve_rejects_non_positive_quantity(self, db_session, make_item, quantity):
        item = make_item(quantity=5)
        with pytest.raises(ValidationError):
            ledger_service.reserve(item.id, quantity)

    def test_reserve_missing_item(self, db_session):
        with pytest.raises(NotFound):
            ledger_service.reserve(99999, 1)

    @pytest.mark.parametrize("start,amount", [(5, 5), (5, 2), (1, 1)])
    def test_reserve_then_release_restores_state(self, db_session, make_item, start, amount):
        item = make_item(quantity=start)

        ledger_service.reserve(item.id, amount)
        ledger_service.release(item.id, amount)
        db_session.commit()

        assert item.quantity == start
        assert item.status == "available"

    def test_release_keeps_out_of_service_status(self, db_session, make_item):
        item = make_item(quantity=0, status="damaged")

        ledger_service.release(item.id, 2)
        db_session.commit()

        assert item.quantity == 2
        assert item.status == "damaged"

    def test_quantity_never_negative_over_sequence(self, db_session, make_item):
        item = make_item(quantity=3)

        for op, qty in [("r", 2), ("r", 1), ("r", 1), ("l", 4), ("r", 5), ("r", 4)]:
            try:
                if op == "r":
                    ledger_service.reserve(item.id, qty)
                else:
                    ledger_service.release(item.id, qty)
                db_session.commit()
            except InsufficientStock:
                db_session.rollback()
            assert item.quantity >= 0
            assert item.status != "available" or item.quantity > 0

        assert item.quantity == 0
        assert item.status == "reserved"

    def test_ledger_writes_are_audited(self, db_session, make_item, keeper):
        item = make_item(quantity=5)

        ledger_service.reserve(item.id, 2, actor_id=keeper.id, transaction_id=42)
        ledger_service.release(item.id, 1, actor_id=keeper.id)
        db_session.commit()

        reserve_row, release_row = _audit_rows(db_session, item.id)
        assert reserve_row.action_type == "STOCK_RESERVE"
        assert reserve_row.user_id == keeper.id
        assert reserve_row.old_value["quantity"] == 5
        assert reserve_row.new_value["quantity"] == 3
        assert reserve_row.new_value["transaction_id"] == 42

        assert release_row.action_type == "STOCK_RELEASE"
        assert release_row.old_value["quantity"] == 3
        assert release_row.new_value["quantity"] == 4

    def test_version_increments_on_each_write(self, db_session, make_item):
        item = make_item(quantity=5)
        assert item.version_id == 1

        ledger_service.reserve(item.id, 1)
        db_session.commit()
        assert item.version_id == 2

        ledger_service.release(item.id, 1)
        db_session.commit()
        assert item.version_id == 3


# =============================================================================
# TRANSFER
# =============================================================================


class TestTransferLocation:

    def test_whole_stock_rehomes_item(self, db_session, make_item, other_store, driver):
        item = make_item(quantity=4, sku="LAP-1")

        source, destination = ledger_service.transfer_location(item.id, other_store.id, 4, actor_id=driver.id)
        db_session.commit()

        assert source is destination
        assert item.store_id == other_store.id
        assert item.quantity == 4
        assert item.status == "available"

    def test_partial_stock_creates_destination_row(self, db_session, make_item, store, other_store):
        item = make_item(quantity=5, sku="LAP-1")

        source, destination = ledger_service.transfer_location(item.id, other_store.id, 2)
        db_session.commit()

        assert source.id == item.id
        assert source.store_id == store.id
        assert source.quantity == 3
        assert destination.id != item.id
        assert destination.store_id == other_store.id
        assert destination.sku == "LAP-1"
        assert destination.quantity == 2
        assert destination.status == "available"

    def test_transfer_into_existing_row(self, db_session, make_item, other_store):
        item = make_item(quantity=5, sku="LAP-1")
        existing = make_item(quantity=1, sku="LAP-1", store_id=other_store.id)

        source, destination = ledger_service.transfer_location(item.id, other_store.id, 5)
        db_session.commit()

        assert destination.id == existing.id
        assert existing.quantity == 6
        assert item.quantity == 0
        assert item.status == "reserved"

    def test_transfer_total_is_conserved(self, db_session, make_item, other_store):
        item = make_item(quantity=7, sku="CAM-1")

        ledger_service.transfer_location(item.id, other_store.id, 3)
        db_session.commit()

        total = sum(i.quantity for i in db_session.query(Item).filter_by(sku="CAM-1").all())
        assert total == 7

    def test_transfer_to_same_store_rejected(self, db_session, make_item, store):
        item = make_item(quantity=5)
        with pytest.raises(ValidationError):
            ledger_service.transfer_location(item.id, store.id, 1)

    def test_transfer_to_missing_store(self, db_session, make_item):
        item = make_item(quantity=5)
        with pytest.raises(NotFound):
            ledger_service.transfer_location(item.id, 99999, 1)

    def test_transfer_more_than_stock(self, db_session, make_item, other_store):
        item = make_item(quantity=2)
        with pytest.raises(InsufficientStock):
            ledger_service.transfer_location(item.id, other_store.id, 3)
        db_session.rollback()
        assert item.quantity == 2

    def test_retired_item_cannot_move(self, db_session, make_item, other_store):
        item = make_item(quantity=2, status="retired")
        with pytest.raises(ItemUnavailable):
            ledger_service.transfer_location(item.id, other_store.id, 1)

    def test_transfer_is_audited(self, db_session, make_item, other_store, driver):
        item = make_item(quantity=5)

        ledger_service.transfer_location(item.id, other_store.id, 2, actor_id=driver.id)
        db_session.commit()

        (row,) = _audit_rows(db_session, item.id, "TRANSFER")
        assert row.old_value["quantity"] == 5
        assert row.new_value["quantity"] == 3
        assert row.new_value["to_store_id"] == other_store.id
        assert row.new_value["transfer_quantity"] == 2


# =============================================================================
# CORRECTIONS AND STATUS
# =============================================================================


class TestAdjustStock:

    def test_add_to_empty_item_makes_it_available(self, db_session, make_item):
        item = make_item(quantity=0)
        assert item.status == "reserved"

        ledger_service.adjust_stock(item.id, "add", 4)
        db_session.commit()

        assert item.quantity == 4
        assert item.status == "available"

    def test_subtract_beyond_stock_fails(self, db_session, make_item):
        item = make_item(quantity=2)
        with pytest.raises(InsufficientStock):
            ledger_service.adjust_stock(item.id, "subtract", 3)
        db_session.rollback()
        assert item.quantity == 2

    def test_set_to_zero_marks_reserved(self, db_session, make_item):
        item = make_item(quantity=6)

        ledger_service.adjust_stock(item.id, "set", 0, reason="Recount")
        db_session.commit()

        assert item.quantity == 0
        assert item.status == "reserved"

    def test_adjust_keeps_maintenance_status(self, db_session, make_item):
        item = make_item(quantity=2, status="maintenance")

        ledger_service.adjust_stock(item.id, "add", 1)
        db_session.commit()

        assert item.status == "maintenance"

    def test_unknown_operation_rejected(self, db_session, make_item):
        item = make_item(quantity=2)
        with pytest.raises(ValidationError):
            ledger_service.adjust_stock(item.id, "multiply", 2)

    def test_adjustment_audit_carries_reason(self, db_session, make_item, keeper):
        item = make_item(quantity=2)

        ledger_service.adjust_stock(item.id, "add", 3, actor_id=keeper.id, reason="Delivery received")
        db_session.commit()

        (row,) = _audit_rows(db_session, item.id, "STOCK_UPDATE")
        assert row.old_value["quantity"] == 2
        assert row.new_value["quantity"] == 5
        assert row.new_value["operation"] == "add"
        assert row.new_value["reason"] == "Delivery received"


class TestSetItemStatus:

    def test_maintenance_round_trip(self, db_session, make_item):
        item = make_item(quantity=3)

        ledger_service.set_item_status(item.id, "maintenance")
        db_session.commit()
        assert item.status == "maintenance"

        ledger_service.set_item_status(item.id, "available")
        db_session.commit()
        assert item.status == "available"

    def test_restoring_empty_item_lands_on_reserved(self, db_session, make_item):
        item = make_item(quantity=0, status="damaged")

        ledger_service.set_item_status(item.id, "available")
        db_session.commit()

        assert item.status == "reserved"

    def test_reserved_cannot_be_set_by_hand(self, db_session, make_item):
        item = make_item(quantity=3)
        with pytest.raises(ValidationError):
            ledger_service.set_item_status(item.id, "reserved")

    def test_retired_is_terminal(self, db_session, make_item):
        item = make_item(quantity=3)
        ledger_service.set_item_status(item.id, "retired")
        db_session.commit()

        with pytest.raises(InvalidState):
            ledger_service.set_item_status(item.id, "available")

    def test_same_status_rejected(self, db_session, make_item):
        item = make_item(quantity=3, status="maintenance")
        with pytest.raises(InvalidState):
            ledger_service.set_item_status(item.id, "maintenance")

    def test_ledger_managed_item_cannot_be_restored(self, db_session, make_item):
        item = make_item(quantity=0)
        with pytest.raises(InvalidState):
            ledger_service.set_item_status(item.id, "available")

    def test_status_change_is_audited(self, db_session, make_item, keeper):
        item = make_item(quantity=3)

        ledger_service.set_item_status(item.id, "damaged", actor_id=keeper.id, notes="Cracked screen")
        db_session.commit()

        (row,) = _audit_rows(db_session, item.id, "STATUS_CHANGE")
        assert row.old_value["status"] == "available"
        assert row.new_value["status"] == "damaged"
        assert row.new_value["notes"] == "Cracked screen"
