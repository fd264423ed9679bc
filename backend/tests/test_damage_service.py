# Overview: Pytest coverage for damage reports and their effect on item status.

"""
Damage Report Tests

Verifies:
- filing validates severity, quantity and the item's state
- a Critical report takes the item out of service, lower severities do not
- resolving puts a damaged item back only when no open Critical report remains
- resolved reports are closed
- every change writes one audit row against the report
"""

import pytest

from conftest import due_in
from assetlend.errors import InsufficientStock, InvalidState, ItemUnavailable, NotFound, ValidationError
from assetlend.models import AuditLog, Damage
from assetlend.services import damage_service, transaction_service


def _report(db_session, user, item, **kwargs):
    kwargs.setdefault("severity", "Medium")
    damage = damage_service.report_damage(user.id, item.id, "Cracked casing", **kwargs)
    db_session.commit()
    return damage


def _damage_audit(db_session, damage_id):
    return [
        row.action_type
        for row in db_session.query(AuditLog)
        .filter_by(target_table="damages", target_id=damage_id)
        .order_by(AuditLog.id.asc())
    ]


class TestReportDamage:

    def test_medium_report_leaves_item_in_service(self, db_session, make_item, employee):
        item = make_item(quantity=5)

        damage = _report(db_session, employee, item)

        assert damage.status == "Pending"
        assert damage.quantity_damaged == 1
        assert item.status == "available"
        assert _damage_audit(db_session, damage.id) == ["CREATE"]

    def test_critical_report_marks_item_damaged(self, db_session, make_item, employee):
        item = make_item(quantity=5)

        damage = _report(db_session, employee, item, severity="Critical")

        assert damage.is_critical
        assert item.status == "damaged"
        change = db_session.query(AuditLog).filter_by(target_table="items", action_type="STATUS_CHANGE").one()
        assert change.user_id == employee.id
        assert change.new_value["status"] == "damaged"

    def test_critical_report_on_damaged_item_keeps_status(self, db_session, make_item, employee):
        item = make_item(quantity=5, status="damaged")

        _report(db_session, employee, item, severity="Critical")

        assert item.status == "damaged"
        assert db_session.query(AuditLog).filter_by(action_type="STATUS_CHANGE").count() == 0

    def test_units_on_loan_count_towards_holdings(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=2)
        txn = transaction_service.create_borrow_request(employee.id, item.id, 2, due_in())
        transaction_service.approve(txn.id, keeper.id)
        db_session.commit()
        assert item.quantity == 0

        damage = _report(db_session, employee, item, quantity_damaged=2)
        assert damage.quantity_damaged == 2

        with pytest.raises(InsufficientStock):
            damage_service.report_damage(employee.id, item.id, "More damage", quantity_damaged=3)
        db_session.rollback()

    @pytest.mark.parametrize("kwargs", [
        {"severity": "Catastrophic"},
        {"quantity_damaged": 0},
        {"quantity_damaged": True},
    ])
    def test_invalid_input(self, db_session, make_item, employee, kwargs):
        item = make_item(quantity=5)
        with pytest.raises(ValidationError):
            damage_service.report_damage(employee.id, item.id, "Broken", **kwargs)

    def test_missing_and_retired_items(self, db_session, make_item, employee):
        with pytest.raises(NotFound):
            damage_service.report_damage(employee.id, 99999, "Broken")

        retired = make_item(quantity=0, status="retired")
        with pytest.raises(ItemUnavailable):
            damage_service.report_damage(employee.id, retired.id, "Broken")
        db_session.rollback()
        assert db_session.query(Damage).count() == 0


class TestUpdateDamageStatus:

    def test_review_then_resolve_restores_item(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        damage = _report(db_session, employee, item, severity="Critical")

        damage_service.update_damage_status(damage.id, "Under Review", actor_id=keeper.id)
        db_session.commit()
        assert item.status == "damaged"

        damage_service.update_damage_status(damage.id, "Resolved", actor_id=keeper.id, notes="Casing replaced")
        db_session.commit()

        assert damage.status == "Resolved"
        assert damage.resolved_by_user_id == keeper.id
        assert damage.resolved_at is not None
        assert damage.notes == "Casing replaced"
        assert item.status == "available"
        assert _damage_audit(db_session, damage.id) == ["CREATE", "UPDATE", "UPDATE"]

    def test_restore_with_no_stock_lands_on_reserved(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=0)
        damage = _report(db_session, employee, item, severity="Critical")

        damage_service.update_damage_status(damage.id, "Resolved", actor_id=keeper.id)
        db_session.commit()

        assert item.status == "reserved"

    def test_other_open_critical_report_keeps_item_damaged(self, db_session, make_item, employee, other_employee, keeper):
        item = make_item(quantity=5)
        first = _report(db_session, employee, item, severity="Critical")
        _report(db_session, other_employee, item, severity="Critical")

        damage_service.update_damage_status(first.id, "Resolved", actor_id=keeper.id)
        db_session.commit()

        assert item.status == "damaged"

    def test_resolved_is_terminal(self, db_session, make_item, employee, keeper):
        damage = _report(db_session, employee, make_item(quantity=5))
        damage_service.update_damage_status(damage.id, "Resolved", actor_id=keeper.id)
        db_session.commit()

        with pytest.raises(InvalidState):
            damage_service.update_damage_status(damage.id, "Pending", actor_id=keeper.id)

    def test_same_status_and_unknown_report(self, db_session, make_item, employee, keeper):
        damage = _report(db_session, employee, make_item(quantity=5))

        with pytest.raises(InvalidState):
            damage_service.update_damage_status(damage.id, "Pending", actor_id=keeper.id)
        with pytest.raises(ValidationError):
            damage_service.update_damage_status(damage.id, "Fixed", actor_id=keeper.id)
        with pytest.raises(NotFound):
            damage_service.update_damage_status(99999, "Resolved", actor_id=keeper.id)


class TestDamageQueries:

    def test_list_filters(self, db_session, store, other_store, make_item, employee):
        here = make_item(quantity=5)
        there = make_item(quantity=5, store_id=other_store.id)
        low = _report(db_session, employee, here, severity="Low")
        _report(db_session, employee, there, severity="High")

        result = damage_service.list_damage_reports(store_id=store.id)
        assert [d["id"] for d in result["damages"]] == [low.id]

        result = damage_service.list_damage_reports(severity="High")
        assert result["pagination"]["total"] == 1

        with pytest.raises(ValidationError):
            damage_service.list_damage_reports(status="Closed")

    def test_statistics(self, db_session, make_item, employee, keeper):
        item = make_item(quantity=5)
        critical = _report(db_session, employee, item, severity="Critical")
        _report(db_session, employee, item, severity="Low")
        damage_service.update_damage_status(critical.id, "Resolved", actor_id=keeper.id)
        db_session.commit()

        stats = damage_service.damage_statistics()

        assert stats["total"] == 2
        assert stats["pending"] == 1
        assert stats["resolved"] == 1
        assert stats["critical"] == 1
        assert stats["open_critical"] == 0
        assert stats["by_severity"] == {"Low": 1, "Medium": 0, "High": 0, "Critical": 1}
