# Overview: Damage reports and their effect on item status.

"""
Damage Reports

LIFECYCLE:
    Pending <-> Under Review
    Pending | Under Review -> Resolved (terminal)

A Critical report takes the item out of service through the stock ledger
(status damaged). Resolving a report puts a damaged item back into service
once no other open Critical report is left against it. Lower severities
never touch the item.

Lock order is report then item, matching the transaction state machine.
Every change writes one audit row against the report. None of these
functions commit.
"""
from __future__ import annotations

from sqlalchemy import func

from ..errors import InsufficientStock, InvalidState, ItemUnavailable, NotFound, ValidationError
from ..extensions import db
from ..models import Damage, Item, Transaction
from ..models.damage import (
    DAMAGE_SEVERITIES,
    DAMAGE_SEVERITY_CRITICAL,
    DAMAGE_SEVERITY_MEDIUM,
    DAMAGE_STATUS_PENDING,
    DAMAGE_STATUS_RESOLVED,
    DAMAGE_STATUS_UNDER_REVIEW,
    DAMAGE_STATUSES,
    OPEN_DAMAGE_STATUSES,
)
from ..models.inventory import ITEM_STATUS_AVAILABLE, ITEM_STATUS_DAMAGED, ITEM_STATUS_RETIRED
from ..models.transactions import TRANSACTION_STATUS_APPROVED, TRANSACTION_TYPE_BORROW
from ..time_utils import utcnow
from ..validation import pagination_meta
from . import audit_service, ledger_service
from .concurrency import lock_for_update


def _units_held(item: Item) -> int:
    """Units on the shelf plus units out on approved loans."""
    on_loan = (
        db.session.query(func.coalesce(func.sum(Transaction.quantity), 0))
        .filter(
            Transaction.item_id == item.id,
            Transaction.type == TRANSACTION_TYPE_BORROW,
            Transaction.status == TRANSACTION_STATUS_APPROVED,
        )
        .scalar()
    )
    return item.quantity + int(on_loan or 0)


def _lock_report(damage_id: int) -> Damage:
    damage = lock_for_update(db.session.query(Damage).filter_by(id=damage_id)).first()
    if not damage:
        raise NotFound(f"Damage report {damage_id} not found")
    return damage


def report_damage(
    reporter_id: int,
    item_id: int,
    description: str,
    *,
    severity: str = DAMAGE_SEVERITY_MEDIUM,
    quantity_damaged: int = 1,
    serial_number: str | None = None,
    notes: str | None = None,
) -> Damage:
    """
    File a Pending damage report.

    Raises:
        NotFound: item missing
        ItemUnavailable: item is retired
        InsufficientStock: more units reported than the store holds
    """
    if severity not in DAMAGE_SEVERITIES:
        raise ValidationError(f"severity must be one of: {', '.join(DAMAGE_SEVERITIES)}")
    if not isinstance(quantity_damaged, int) or isinstance(quantity_damaged, bool) or quantity_damaged <= 0:
        raise ValidationError("quantity_damaged must be a positive integer")
    if not description:
        raise ValidationError("description is required")

    item = ledger_service.lock_item(item_id)
    if item.status == ITEM_STATUS_RETIRED:
        raise ItemUnavailable(f"Item {item_id} is retired")

    held = _units_held(item)
    if quantity_damaged > held:
        raise InsufficientStock(
            f"Item {item_id} holds {held} unit(s); cannot report {quantity_damaged} damaged"
        )

    damage = Damage(
        item_id=item_id,
        reported_by_user_id=reporter_id,
        description=description,
        severity=severity,
        quantity_damaged=quantity_damaged,
        serial_number=serial_number,
        notes=notes,
        status=DAMAGE_STATUS_PENDING,
    )
    db.session.add(damage)
    db.session.flush()

    audit_service.record(reporter_id, "damages", damage.id, audit_service.ACTION_CREATE, None, damage.snapshot())

    if damage.is_critical and item.status != ITEM_STATUS_DAMAGED:
        ledger_service.set_item_status(
            item_id,
            ITEM_STATUS_DAMAGED,
            actor_id=reporter_id,
            notes=f"Critical damage report {damage.id}",
        )
    return damage


def update_damage_status(
    damage_id: int,
    status: str,
    *,
    actor_id: int | None = None,
    notes: str | None = None,
) -> Damage:
    """
    Move a report to Under Review, back to Pending, or to Resolved.

    Raises InvalidState for a resolved report or a no-op change.
    """
    if status not in DAMAGE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(DAMAGE_STATUSES)}")

    damage = _lock_report(damage_id)
    if damage.status == DAMAGE_STATUS_RESOLVED:
        raise InvalidState(f"Damage report {damage_id} is already resolved")
    if damage.status == status:
        raise InvalidState(f"Damage report {damage_id} is already {status}")

    before = damage.snapshot()
    now = utcnow()
    damage.status = status
    if notes:
        damage.notes = notes
    if status == DAMAGE_STATUS_RESOLVED:
        damage.resolved_by_user_id = actor_id
        damage.resolved_at = now
    damage.updated_at = now
    db.session.flush()

    audit_service.record(actor_id, "damages", damage.id, audit_service.ACTION_UPDATE, before, damage.snapshot())

    if status == DAMAGE_STATUS_RESOLVED and damage.item_id is not None:
        _restore_if_repaired(damage, actor_id)
    return damage


def _restore_if_repaired(damage: Damage, actor_id: int | None) -> None:
    item = ledger_service.lock_item(damage.item_id)
    if item.status != ITEM_STATUS_DAMAGED:
        return

    still_critical = (
        db.session.query(Damage.id)
        .filter(
            Damage.item_id == damage.item_id,
            Damage.id != damage.id,
            Damage.severity == DAMAGE_SEVERITY_CRITICAL,
            Damage.status.in_(OPEN_DAMAGE_STATUSES),
        )
        .first()
    )
    if still_critical:
        return

    ledger_service.set_item_status(
        item.id,
        ITEM_STATUS_AVAILABLE,
        actor_id=actor_id,
        notes=f"Damage report {damage.id} resolved",
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_damage_report(damage_id: int) -> Damage:
    damage = db.session.get(Damage, damage_id)
    if damage is None:
        raise NotFound(f"Damage report {damage_id} not found")
    return damage


def list_damage_reports(
    *,
    status: str | None = None,
    severity: str | None = None,
    item_id: int | None = None,
    store_id: int | None = None,
    reported_by: int | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """Newest first."""
    q = db.session.query(Damage)

    if status:
        if status not in DAMAGE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(DAMAGE_STATUSES)}")
        q = q.filter(Damage.status == status)
    if severity:
        if severity not in DAMAGE_SEVERITIES:
            raise ValidationError(f"severity must be one of: {', '.join(DAMAGE_SEVERITIES)}")
        q = q.filter(Damage.severity == severity)
    if item_id is not None:
        q = q.filter(Damage.item_id == item_id)
    if store_id is not None:
        q = q.join(Item, Item.id == Damage.item_id).filter(Item.store_id == store_id)
    if reported_by is not None:
        q = q.filter(Damage.reported_by_user_id == reported_by)

    total = q.count()
    rows = (
        q.order_by(Damage.created_at.desc(), Damage.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "damages": [d.to_dict() for d in rows],
        "count": len(rows),
        "pagination": pagination_meta(page, per_page, total),
    }


def damage_statistics(*, store_id: int | None = None) -> dict:
    q = db.session.query(Damage.status, Damage.severity, func.count(Damage.id))
    if store_id is not None:
        q = q.join(Item, Item.id == Damage.item_id).filter(Item.store_id == store_id)
    rows = q.group_by(Damage.status, Damage.severity).all()

    by_status = {s: 0 for s in DAMAGE_STATUSES}
    by_severity = {s: 0 for s in DAMAGE_SEVERITIES}
    open_critical = 0
    for status, severity, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        by_severity[severity] = by_severity.get(severity, 0) + count
        if severity == DAMAGE_SEVERITY_CRITICAL and status in OPEN_DAMAGE_STATUSES:
            open_critical += count

    return {
        "store_id": store_id,
        "total": sum(by_status.values()),
        "pending": by_status[DAMAGE_STATUS_PENDING],
        "under_review": by_status[DAMAGE_STATUS_UNDER_REVIEW],
        "resolved": by_status[DAMAGE_STATUS_RESOLVED],
        "critical": by_severity[DAMAGE_SEVERITY_CRITICAL],
        "open_critical": open_critical,
        "by_severity": by_severity,
    }
