# Overview: Maintenance scheduling and its effect on item status.

"""
Maintenance Log

LIFECYCLE:
    scheduled   -> in_progress | cancelled   (a scheduled log may be rescheduled)
    in_progress -> completed | cancelled
    completed, cancelled: terminal

Starting work takes the item out of service (status maintenance) through
the stock ledger. Completing or cancelling in-progress work puts it back,
as available or damaged, once no other in-progress log holds the item.

Lock order is log then item. Every transition writes one audit row
against the log. None of these functions commit.
"""
from __future__ import annotations

from datetime import datetime

from ..errors import InvalidState, ItemUnavailable, NotFound, ValidationError
from ..extensions import db
from ..models import Item, MaintenanceLog
from ..models.inventory import (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_DAMAGED,
    ITEM_STATUS_MAINTENANCE,
    ITEM_STATUS_RETIRED,
)
from ..models.maintenance import (
    MAINTENANCE_PRIORITIES,
    MAINTENANCE_STATUS_CANCELLED,
    MAINTENANCE_STATUS_COMPLETED,
    MAINTENANCE_STATUS_IN_PROGRESS,
    MAINTENANCE_STATUS_SCHEDULED,
    MAINTENANCE_STATUSES,
    MAINTENANCE_TYPES,
    OPEN_MAINTENANCE_STATUSES,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import pagination_meta
from . import audit_service, ledger_service
from .concurrency import lock_for_update


# Item statuses a finished job may hand the item back in
COMPLETION_ITEM_STATUSES = (ITEM_STATUS_AVAILABLE, ITEM_STATUS_DAMAGED)


def _lock_log(log_id: int) -> MaintenanceLog:
    log = lock_for_update(db.session.query(MaintenanceLog).filter_by(id=log_id)).first()
    if not log:
        raise NotFound(f"Maintenance log {log_id} not found")
    return log


def _require_status(log: MaintenanceLog, allowed: tuple[str, ...], action: str) -> None:
    if log.status not in allowed:
        raise InvalidState(f"Maintenance log {log.id} is {log.status}; cannot {action}")


def schedule_maintenance(
    actor_id: int,
    item_id: int,
    title: str,
    maintenance_type: str,
    scheduled_date: datetime,
    *,
    description: str | None = None,
    priority: str = "medium",
    notes: str | None = None,
) -> MaintenanceLog:
    """Book a service. The item keeps its status until work starts."""
    if maintenance_type not in MAINTENANCE_TYPES:
        raise ValidationError(f"maintenance_type must be one of: {', '.join(MAINTENANCE_TYPES)}")
    if priority not in MAINTENANCE_PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(MAINTENANCE_PRIORITIES)}")
    if not title:
        raise ValidationError("title is required")
    if scheduled_date is None:
        raise ValidationError("scheduled_date is required")

    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item {item_id} not found")
    if item.status == ITEM_STATUS_RETIRED:
        raise ItemUnavailable(f"Item {item_id} is retired")

    log = MaintenanceLog(
        item_id=item_id,
        created_by_user_id=actor_id,
        title=title,
        description=description,
        maintenance_type=maintenance_type,
        priority=priority,
        scheduled_date=scheduled_date,
        notes=notes,
        status=MAINTENANCE_STATUS_SCHEDULED,
    )
    db.session.add(log)
    db.session.flush()

    audit_service.record(actor_id, "maintenance_logs", log.id, audit_service.ACTION_CREATE, None, log.snapshot())
    return log


def reschedule_maintenance(
    log_id: int,
    scheduled_date: datetime,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
) -> MaintenanceLog:
    log = _lock_log(log_id)
    _require_status(log, (MAINTENANCE_STATUS_SCHEDULED,), "reschedule")

    old_date = log.scheduled_date
    now = utcnow()
    log.scheduled_date = scheduled_date
    log.append_note(now, "Rescheduled", reason or "No reason provided")
    log.updated_at = now
    db.session.flush()

    audit_service.record(
        actor_id,
        "maintenance_logs",
        log.id,
        audit_service.ACTION_RESCHEDULE,
        {"scheduled_date": to_utc_z(old_date)},
        {"scheduled_date": to_utc_z(scheduled_date), "reason": reason},
    )
    return log


def start_maintenance(log_id: int, *, actor_id: int | None = None, notes: str | None = None) -> MaintenanceLog:
    """
    Begin scheduled work and take the item out of service.

    Raises:
        InvalidState: log is not scheduled
        ItemUnavailable: item was deleted or retired meanwhile
    """
    log = _lock_log(log_id)
    _require_status(log, (MAINTENANCE_STATUS_SCHEDULED,), "start")
    if log.item_id is None:
        raise ItemUnavailable(f"Item for maintenance log {log_id} no longer exists")
    item = ledger_service.lock_item(log.item_id)
    if item.status == ITEM_STATUS_RETIRED:
        raise ItemUnavailable(f"Item {item.id} is retired")

    before = log.snapshot()
    now = utcnow()
    log.status = MAINTENANCE_STATUS_IN_PROGRESS
    log.started_at = now
    log.append_note(now, "Started", notes or "Maintenance started")
    log.updated_at = now
    db.session.flush()

    audit_service.record(
        actor_id, "maintenance_logs", log.id, audit_service.ACTION_START_MAINTENANCE, before, log.snapshot()
    )

    if item.status != ITEM_STATUS_MAINTENANCE:
        ledger_service.set_item_status(
            item.id, ITEM_STATUS_MAINTENANCE, actor_id=actor_id, notes=f"Maintenance {log.id} started"
        )
    return log


def complete_maintenance(
    log_id: int,
    *,
    actor_id: int | None = None,
    work_performed: str | None = None,
    notes: str | None = None,
    item_status: str = ITEM_STATUS_AVAILABLE,
) -> MaintenanceLog:
    """
    Finish in-progress work; the item goes back as item_status.

    duration_minutes is measured from started_at.
    """
    if item_status not in COMPLETION_ITEM_STATUSES:
        raise ValidationError(f"item_status must be one of: {', '.join(COMPLETION_ITEM_STATUSES)}")

    log = _lock_log(log_id)
    _require_status(log, (MAINTENANCE_STATUS_IN_PROGRESS,), "complete")

    before = log.snapshot()
    now = utcnow()
    log.status = MAINTENANCE_STATUS_COMPLETED
    log.completed_at = now
    if log.started_at is not None:
        log.duration_minutes = max(0, round((now - log.started_at).total_seconds() / 60))
    log.work_performed = work_performed
    log.append_note(now, "Completed", notes or "Maintenance completed")
    log.updated_at = now
    db.session.flush()

    audit_service.record(
        actor_id,
        "maintenance_logs",
        log.id,
        audit_service.ACTION_COMPLETE_MAINTENANCE,
        before,
        {**log.snapshot(), "item_status": item_status},
    )

    _return_to_service(log, item_status, actor_id)
    return log


def cancel_maintenance(log_id: int, *, actor_id: int | None = None, reason: str | None = None) -> MaintenanceLog:
    """Cancel scheduled or in-progress work; in-progress work hands the item back."""
    log = _lock_log(log_id)
    _require_status(log, OPEN_MAINTENANCE_STATUSES, "cancel")

    was_started = log.status == MAINTENANCE_STATUS_IN_PROGRESS
    before = log.snapshot()
    now = utcnow()
    log.status = MAINTENANCE_STATUS_CANCELLED
    log.append_note(now, "Cancelled", reason or "No reason provided")
    log.updated_at = now
    db.session.flush()

    audit_service.record(
        actor_id,
        "maintenance_logs",
        log.id,
        audit_service.ACTION_CANCEL_MAINTENANCE,
        before,
        {**log.snapshot(), "reason": reason},
    )

    if was_started:
        _return_to_service(log, ITEM_STATUS_AVAILABLE, actor_id)
    return log


def _return_to_service(log: MaintenanceLog, item_status: str, actor_id: int | None) -> None:
    """Only an item still in maintenance, with no other job running on it, changes."""
    if log.item_id is None:
        return
    item = ledger_service.lock_item(log.item_id)
    if item.status != ITEM_STATUS_MAINTENANCE:
        return

    other_running = (
        db.session.query(MaintenanceLog.id)
        .filter(
            MaintenanceLog.item_id == log.item_id,
            MaintenanceLog.id != log.id,
            MaintenanceLog.status == MAINTENANCE_STATUS_IN_PROGRESS,
        )
        .first()
    )
    if other_running:
        return

    ledger_service.set_item_status(
        item.id, item_status, actor_id=actor_id, notes=f"Maintenance {log.id} {log.status}"
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_maintenance_log(log_id: int) -> MaintenanceLog:
    log = db.session.get(MaintenanceLog, log_id)
    if log is None:
        raise NotFound(f"Maintenance log {log_id} not found")
    return log


def _filtered(q, status: str | None, maintenance_type: str | None):
    if status:
        if status not in MAINTENANCE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(MAINTENANCE_STATUSES)}")
        q = q.filter(MaintenanceLog.status == status)
    if maintenance_type:
        if maintenance_type not in MAINTENANCE_TYPES:
            raise ValidationError(f"maintenance_type must be one of: {', '.join(MAINTENANCE_TYPES)}")
        q = q.filter(MaintenanceLog.maintenance_type == maintenance_type)
    return q


def list_maintenance(
    *,
    status: str | None = None,
    maintenance_type: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """Soonest scheduled first."""
    q = _filtered(db.session.query(MaintenanceLog), status, maintenance_type)

    total = q.count()
    rows = (
        q.order_by(MaintenanceLog.scheduled_date.asc(), MaintenanceLog.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "maintenance_logs": [m.to_dict() for m in rows],
        "count": len(rows),
        "pagination": pagination_meta(page, per_page, total),
    }


def item_maintenance_history(
    item_id: int,
    *,
    status: str | None = None,
    maintenance_type: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """Most recent scheduled date first."""
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item {item_id} not found")

    q = _filtered(db.session.query(MaintenanceLog).filter(MaintenanceLog.item_id == item_id), status, maintenance_type)

    total = q.count()
    rows = (
        q.order_by(MaintenanceLog.scheduled_date.desc(), MaintenanceLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "item": {"id": item.id, "sku": item.sku, "name": item.name, "status": item.status},
        "maintenance_logs": [m.to_dict() for m in rows],
        "count": len(rows),
        "pagination": pagination_meta(page, per_page, total),
    }
