# Overview: Request/approval gateway; the only entry point for lending mutations.

"""
Request/Approval Gateway

Every mutation an API caller can trigger goes through a function here:
1. Actor authorization (role permission, or borrower ownership for returns)
2. Input shape validation, before anything is read or locked
3. The service call, run as one unit of work (run_in_transaction) so the
   state transition, its ledger write and its audit row commit together

Failures come back as Result.failure(kind, message) instead of raising, so
callers can tell bad input from state conflicts without catching
exceptions. Unexpected exceptions still propagate.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app

from ..errors import AuditFailure, LendingError, NotFound, Unauthorized, ValidationError
from ..extensions import db
from ..models import Transaction, User
from ..models.damage import DAMAGE_SEVERITIES, DAMAGE_SEVERITY_MEDIUM, DAMAGE_STATUSES
from ..models.inventory import ITEM_STATUS_AVAILABLE, ITEM_STATUS_RETIRED
from ..models.maintenance import MAINTENANCE_PRIORITIES, MAINTENANCE_TYPES
from ..models.transactions import RETURN_CONDITIONS
from ..permissions import role_has_permission
from ..time_utils import utcnow
from ..validation import (
    coerce_datetime,
    coerce_int,
    optional_text,
    require_choice,
    require_id,
    require_json_object,
    require_quantity,
    require_text,
)
from . import (
    audit_service,
    damage_service,
    inventory_service,
    ledger_service,
    maintenance_service,
    transaction_service,
)
from .concurrency import run_in_transaction


@dataclass(frozen=True)
class Result:
    """Ok(value) or Err(error_kind, message)."""
    value: Any = None
    error_kind: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, value: Any) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: str, message: str) -> "Result":
        return cls(error_kind=kind, message=message)


def _authorize(actor: User | None, permission_code: str) -> None:
    if actor is None or not actor.is_active:
        raise Unauthorized("Authentication required")
    if not role_has_permission(actor.role, permission_code):
        raise Unauthorized(f"Role '{actor.role}' lacks permission {permission_code}")


def _failure(operation: str, actor: User | None, exc: LendingError) -> Result:
    actor_id = actor.id if actor is not None else None
    if isinstance(exc, AuditFailure):
        current_app.logger.error("%s by user %s aborted: %s", operation, actor_id, exc.message)
    else:
        current_app.logger.info("%s by user %s rejected (%s): %s", operation, actor_id, exc.kind, exc.message)
    return Result.failure(exc.kind, exc.message)


def _require_future(key: str, value: datetime) -> datetime:
    if value <= utcnow():
        raise ValidationError(f"{key} must be in the future")
    return value


# =============================================================================
# BORROW / RETURN LIFECYCLE
# =============================================================================

def submit_borrow_request(actor: User | None, payload: Any) -> Result:
    """
    Payload: item_id, quantity, due_date (ISO-8601, future), reason?, notes?
    """
    try:
        _authorize(actor, "REQUEST_BORROW")
        data = require_json_object(payload)
        item_id = require_id(data, "item_id")
        quantity = require_quantity(data)
        if data.get("due_date") is None:
            raise ValidationError("due_date is required")
        due_date = _require_future("due_date", coerce_datetime("due_date", data["due_date"]))
        reason = optional_text(data, "reason")
        notes = optional_text(data, "notes")

        txn = run_in_transaction(
            lambda: transaction_service.create_borrow_request(
                actor.id, item_id, quantity, due_date, reason=reason, notes=notes
            )
        )
    except LendingError as exc:
        return _failure("borrow request", actor, exc)

    current_app.logger.info("Borrow request %s created by user %s", txn.id, actor.id)
    return Result.success(txn)


def approve_request(actor: User | None, transaction_id: int) -> Result:
    try:
        _authorize(actor, "APPROVE_REQUESTS")
        txn = run_in_transaction(lambda: transaction_service.approve(transaction_id, actor.id))
    except LendingError as exc:
        return _failure("approve", actor, exc)

    current_app.logger.info("Transaction %s approved by user %s", transaction_id, actor.id)
    return Result.success(txn)


def reject_request(actor: User | None, transaction_id: int, payload: Any = None) -> Result:
    """Payload: reason?"""
    try:
        _authorize(actor, "APPROVE_REQUESTS")
        reason = optional_text(require_json_object(payload), "reason")
        txn = run_in_transaction(lambda: transaction_service.reject(transaction_id, actor.id, reason))
    except LendingError as exc:
        return _failure("reject", actor, exc)

    current_app.logger.info("Transaction %s rejected by user %s", transaction_id, actor.id)
    return Result.success(txn)


def _authorize_return(actor: User | None, transaction_id: int) -> None:
    """The borrower may return their own loan; otherwise RECEIVE_RETURNS is needed."""
    if actor is None or not actor.is_active:
        raise Unauthorized("Authentication required")
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFound(f"Transaction {transaction_id} not found")
    if txn.user_id == actor.id:
        return
    if not role_has_permission(actor.role, "RECEIVE_RETURNS"):
        raise Unauthorized("Only the borrower or a store keeper can return this item")


def return_request(actor: User | None, transaction_id: int, payload: Any = None) -> Result:
    """Payload: condition? (default "good"), notes?"""
    try:
        _authorize_return(actor, transaction_id)
        data = require_json_object(payload)
        condition = require_choice(
            data.get("condition") or transaction_service.DEFAULT_RETURN_CONDITION,
            "condition",
            RETURN_CONDITIONS,
        )
        notes = optional_text(data, "notes")
        txn = run_in_transaction(
            lambda: transaction_service.return_item(
                transaction_id, condition, notes, actor_id=actor.id
            )
        )
    except LendingError as exc:
        return _failure("return", actor, exc)

    current_app.logger.info("Transaction %s returned by user %s", transaction_id, actor.id)
    return Result.success(txn)


def transfer_stock(actor: User | None, payload: Any) -> Result:
    """Payload: item_id, to_store_id, quantity, reason?, notes?"""
    try:
        _authorize(actor, "TRANSFER_STOCK")
        data = require_json_object(payload)
        item_id = require_id(data, "item_id")
        to_store_id = require_id(data, "to_store_id")
        quantity = require_quantity(data)
        reason = optional_text(data, "reason")
        notes = optional_text(data, "notes")

        txn = run_in_transaction(
            lambda: transaction_service.transfer(
                actor.id, item_id, to_store_id, quantity, reason=reason, notes=notes
            )
        )
    except LendingError as exc:
        return _failure("transfer", actor, exc)

    current_app.logger.info(
        "Transferred %s unit(s) of item %s to store %s (transaction %s)",
        quantity, item_id, to_store_id, txn.id,
    )
    return Result.success(txn)


# =============================================================================
# ITEM MANAGEMENT
# =============================================================================

def register_item(actor: User | None, payload: Any) -> Result:
    try:
        _authorize(actor, "MANAGE_ITEMS")
        data = require_json_object(payload)
        item = run_in_transaction(lambda: inventory_service.create_item(data, actor_id=actor.id))
    except LendingError as exc:
        return _failure("create item", actor, exc)
    return Result.success(item)


def remove_item(actor: User | None, item_id: int) -> Result:
    try:
        _authorize(actor, "MANAGE_ITEMS")
        snapshot = run_in_transaction(lambda: inventory_service.delete_item(item_id, actor_id=actor.id))
    except LendingError as exc:
        return _failure("delete item", actor, exc)

    current_app.logger.info("Item %s deleted by user %s", item_id, actor.id)
    return Result.success(snapshot)


def adjust_item_stock(actor: User | None, item_id: int, payload: Any) -> Result:
    """Payload: operation (add|subtract|set), quantity, reason?, notes?"""
    try:
        _authorize(actor, "MANAGE_ITEMS")
        data = require_json_object(payload)
        operation = require_choice(data.get("operation"), "operation", ledger_service.STOCK_OPERATIONS)
        quantity = require_quantity(
            data, allow_zero=operation == ledger_service.STOCK_OPERATION_SET
        )
        reason = optional_text(data, "reason")
        notes = optional_text(data, "notes")

        item = run_in_transaction(
            lambda: ledger_service.adjust_stock(
                item_id, operation, quantity, actor_id=actor.id, reason=reason, notes=notes
            )
        )
    except LendingError as exc:
        return _failure("stock adjustment", actor, exc)
    return Result.success(item)


def change_item_status(actor: User | None, item_id: int, payload: Any) -> Result:
    """
    Payload: status, notes?

    Retiring an item also rejects its Pending requests in the same unit of
    work; Approved loans stay open and are returned normally.
    """
    try:
        _authorize(actor, "MANAGE_ITEMS")
        data = require_json_object(payload)
        status = require_choice(data.get("status"), "status", ledger_service.MANUAL_STATUSES)
        notes = optional_text(data, "notes")

        def _op():
            if status == ITEM_STATUS_RETIRED:
                return transaction_service.retire_item(item_id, actor_id=actor.id, notes=notes)
            return ledger_service.set_item_status(item_id, status, actor_id=actor.id, notes=notes)

        item = run_in_transaction(_op)
    except LendingError as exc:
        return _failure("status change", actor, exc)

    current_app.logger.info("Item %s set to %s by user %s", item_id, status, actor.id)
    return Result.success(item)


# =============================================================================
# DAMAGE REPORTS
# =============================================================================

def report_damage(actor: User | None, payload: Any) -> Result:
    """
    Payload: item_id, description, severity? (default Medium),
    quantity_damaged? (default 1), serial_number?, notes?

    A Critical report takes the item out of service in the same unit of work.
    """
    try:
        _authorize(actor, "REPORT_DAMAGE")
        data = require_json_object(payload)
        item_id = require_id(data, "item_id")
        description = require_text(data, "description")
        severity = require_choice(data.get("severity", DAMAGE_SEVERITY_MEDIUM), "severity", DAMAGE_SEVERITIES)
        quantity_damaged = 1
        if data.get("quantity_damaged") is not None:
            quantity_damaged = require_quantity(data, "quantity_damaged")
        serial_number = optional_text(data, "serial_number", max_length=64)
        notes = optional_text(data, "notes")

        damage = run_in_transaction(
            lambda: damage_service.report_damage(
                actor.id,
                item_id,
                description,
                severity=severity,
                quantity_damaged=quantity_damaged,
                serial_number=serial_number,
                notes=notes,
            )
        )
    except LendingError as exc:
        return _failure("damage report", actor, exc)

    current_app.logger.info("Damage report %s (%s) filed by user %s", damage.id, severity, actor.id)
    return Result.success(damage)


def update_damage_status(actor: User | None, damage_id: int, payload: Any) -> Result:
    """Payload: status, notes?"""
    try:
        _authorize(actor, "MANAGE_DAMAGE_REPORTS")
        data = require_json_object(payload)
        status = require_choice(data.get("status"), "status", DAMAGE_STATUSES)
        notes = optional_text(data, "notes")

        damage = run_in_transaction(
            lambda: damage_service.update_damage_status(damage_id, status, actor_id=actor.id, notes=notes)
        )
    except LendingError as exc:
        return _failure("damage status update", actor, exc)

    current_app.logger.info("Damage report %s set to %s by user %s", damage_id, status, actor.id)
    return Result.success(damage)


# =============================================================================
# MAINTENANCE
# =============================================================================

def schedule_maintenance(actor: User | None, payload: Any) -> Result:
    """
    Payload: item_id, title, maintenance_type, scheduled_date (ISO-8601),
    priority? (default medium), description?, notes?
    """
    try:
        _authorize(actor, "MANAGE_MAINTENANCE")
        data = require_json_object(payload)
        item_id = require_id(data, "item_id")
        title = require_text(data, "title", max_length=255)
        maintenance_type = require_choice(data.get("maintenance_type"), "maintenance_type", MAINTENANCE_TYPES)
        priority = require_choice(data.get("priority", "medium"), "priority", MAINTENANCE_PRIORITIES)
        if data.get("scheduled_date") is None:
            raise ValidationError("scheduled_date is required")
        scheduled_date = coerce_datetime("scheduled_date", data["scheduled_date"])
        description = optional_text(data, "description")
        notes = optional_text(data, "notes")

        log = run_in_transaction(
            lambda: maintenance_service.schedule_maintenance(
                actor.id,
                item_id,
                title,
                maintenance_type,
                scheduled_date,
                description=description,
                priority=priority,
                notes=notes,
            )
        )
    except LendingError as exc:
        return _failure("maintenance scheduling", actor, exc)

    current_app.logger.info("Maintenance %s scheduled for item %s by user %s", log.id, item_id, actor.id)
    return Result.success(log)


def reschedule_maintenance(actor: User | None, log_id: int, payload: Any) -> Result:
    """Payload: scheduled_date (ISO-8601, future), reason?"""
    try:
        _authorize(actor, "MANAGE_MAINTENANCE")
        data = require_json_object(payload)
        if data.get("scheduled_date") is None:
            raise ValidationError("scheduled_date is required")
        scheduled_date = _require_future("scheduled_date", coerce_datetime("scheduled_date", data["scheduled_date"]))
        reason = optional_text(data, "reason")

        log = run_in_transaction(
            lambda: maintenance_service.reschedule_maintenance(
                log_id, scheduled_date, actor_id=actor.id, reason=reason
            )
        )
    except LendingError as exc:
        return _failure("maintenance reschedule", actor, exc)
    return Result.success(log)


def start_maintenance(actor: User | None, log_id: int, payload: Any = None) -> Result:
    """Payload: notes?"""
    try:
        _authorize(actor, "PERFORM_MAINTENANCE")
        notes = optional_text(require_json_object(payload), "notes")
        log = run_in_transaction(lambda: maintenance_service.start_maintenance(log_id, actor_id=actor.id, notes=notes))
    except LendingError as exc:
        return _failure("maintenance start", actor, exc)

    current_app.logger.info("Maintenance %s started by user %s", log_id, actor.id)
    return Result.success(log)


def complete_maintenance(actor: User | None, log_id: int, payload: Any = None) -> Result:
    """Payload: item_status? (available | damaged, default available), work_performed?, notes?"""
    try:
        _authorize(actor, "PERFORM_MAINTENANCE")
        data = require_json_object(payload)
        item_status = require_choice(
            data.get("item_status", ITEM_STATUS_AVAILABLE),
            "item_status",
            maintenance_service.COMPLETION_ITEM_STATUSES,
        )
        work_performed = optional_text(data, "work_performed")
        notes = optional_text(data, "notes")

        log = run_in_transaction(
            lambda: maintenance_service.complete_maintenance(
                log_id,
                actor_id=actor.id,
                work_performed=work_performed,
                notes=notes,
                item_status=item_status,
            )
        )
    except LendingError as exc:
        return _failure("maintenance completion", actor, exc)

    current_app.logger.info("Maintenance %s completed by user %s", log_id, actor.id)
    return Result.success(log)


def cancel_maintenance(actor: User | None, log_id: int, payload: Any = None) -> Result:
    """Payload: reason?"""
    try:
        _authorize(actor, "MANAGE_MAINTENANCE")
        reason = optional_text(require_json_object(payload), "reason")
        log = run_in_transaction(
            lambda: maintenance_service.cancel_maintenance(log_id, actor_id=actor.id, reason=reason)
        )
    except LendingError as exc:
        return _failure("maintenance cancellation", actor, exc)

    current_app.logger.info("Maintenance %s cancelled by user %s", log_id, actor.id)
    return Result.success(log)


# =============================================================================
# AUDIT MAINTENANCE
# =============================================================================

def purge_audit_logs(actor: User | None, retention_days: Any) -> Result:
    try:
        _authorize(actor, "MANAGE_AUDIT_LOG")
        days = coerce_int("retention_days", retention_days)
        if days < 1:
            raise ValidationError("retention_days must be >= 1")
        deleted = run_in_transaction(lambda: audit_service.cleanup_old_logs(retention_days=days))
    except LendingError as exc:
        return _failure("audit cleanup", actor, exc)

    current_app.logger.info("Audit cleanup by user %s removed %s row(s) older than %s days", actor.id, deleted, days)
    return Result.success({"deleted": deleted, "retention_days": days})
