# Overview: Audit recorder and audit-history queries.

"""
Audit Recorder

INVARIANTS:
- Append-only: rows are inserted, never updated.
- record() writes inside the caller's DB transaction and flushes
  immediately. If the row cannot be written it raises AuditFailure and the
  caller's unit of work rolls back with it: no mutation is ever committed
  without its audit row.
- The only deletion path is cleanup_old_logs() (retention).
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..errors import AuditFailure
from ..extensions import db
from ..models import AuditLog, User
from ..time_utils import to_utc_z, utcnow
from ..validation import pagination_meta


ACTION_INSERT = "INSERT"
ACTION_DELETE = "DELETE"
ACTION_CREATE = "CREATE"
ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"
ACTION_RETURN = "RETURN"
ACTION_TRANSFER = "TRANSFER"
ACTION_STOCK_RESERVE = "STOCK_RESERVE"
ACTION_STOCK_RELEASE = "STOCK_RELEASE"
ACTION_STOCK_UPDATE = "STOCK_UPDATE"
ACTION_STATUS_CHANGE = "STATUS_CHANGE"
ACTION_UPDATE = "UPDATE"
ACTION_RESCHEDULE = "RESCHEDULE"
ACTION_START_MAINTENANCE = "START_MAINTENANCE"
ACTION_COMPLETE_MAINTENANCE = "COMPLETE_MAINTENANCE"
ACTION_CANCEL_MAINTENANCE = "CANCEL_MAINTENANCE"

KNOWN_ACTIONS = {
    ACTION_INSERT,
    ACTION_DELETE,
    ACTION_CREATE,
    ACTION_APPROVE,
    ACTION_REJECT,
    ACTION_RETURN,
    ACTION_TRANSFER,
    ACTION_STOCK_RESERVE,
    ACTION_STOCK_RELEASE,
    ACTION_STOCK_UPDATE,
    ACTION_STATUS_CHANGE,
    ACTION_UPDATE,
    ACTION_RESCHEDULE,
    ACTION_START_MAINTENANCE,
    ACTION_COMPLETE_MAINTENANCE,
    ACTION_CANCEL_MAINTENANCE,
}


def _json_default(value: Any):
    if isinstance(value, datetime):
        return to_utc_z(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _snapshot(value: dict | None) -> dict | None:
    """Detached JSON-safe copy, so later mutation of the source dict cannot leak in."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=_json_default))


def record(
    actor_id: int | None,
    table: str,
    row_id: int,
    action_type: str,
    old_value: dict | None = None,
    new_value: dict | None = None,
) -> AuditLog:
    """
    Append one immutable audit row to the current unit of work.

    Raises AuditFailure if the snapshot cannot be serialized or the insert
    fails; callers must not swallow it.
    """
    try:
        entry = AuditLog(
            user_id=actor_id,
            target_table=table,
            target_id=row_id,
            action_type=action_type,
            old_value=_snapshot(old_value),
            new_value=_snapshot(new_value),
            timestamp=utcnow(),
        )
        db.session.add(entry)
        db.session.flush()
    except (TypeError, ValueError, SQLAlchemyError) as exc:
        raise AuditFailure(f"Could not record {action_type} on {table}:{row_id}: {exc}") from exc
    return entry


# =============================================================================
# QUERIES
# =============================================================================

def list_audit_logs(
    *,
    action_type: str | None = None,
    target_table: str | None = None,
    target_id: int | None = None,
    user_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int = 1,
    per_page: int = 100,
) -> dict:
    """Newest first. action_type and target_table match case-insensitively."""
    q = db.session.query(AuditLog)

    if action_type:
        q = q.filter(func.lower(AuditLog.action_type).contains(action_type.lower()))
    if target_table:
        q = q.filter(func.lower(AuditLog.target_table).contains(target_table.lower()))
    if target_id is not None:
        q = q.filter(AuditLog.target_id == target_id)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)
    if start is not None:
        q = q.filter(AuditLog.timestamp >= start)
    if end is not None:
        q = q.filter(AuditLog.timestamp <= end)

    total = q.count()
    rows = (
        q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "logs": [r.to_dict() for r in rows],
        "pagination": pagination_meta(page, per_page, total),
    }


def entity_history(table: str, row_id: int, *, page: int = 1, per_page: int = 100) -> dict:
    """Audit trail of one row, newest first. Works for deleted rows too."""
    q = db.session.query(AuditLog).filter(
        AuditLog.target_table == table,
        AuditLog.target_id == row_id,
    )
    total = q.count()
    rows = (
        q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "logs": [r.to_dict() for r in rows],
        "pagination": pagination_meta(page, per_page, total),
    }


def audit_statistics(*, period_days: int = 30) -> dict:
    """Counts by (action_type, target_table) over the last period_days."""
    cutoff = utcnow() - timedelta(days=period_days)

    rows = (
        db.session.query(
            AuditLog.action_type,
            AuditLog.target_table,
            func.count(AuditLog.id),
        )
        .filter(AuditLog.timestamp >= cutoff)
        .group_by(AuditLog.action_type, AuditLog.target_table)
        .order_by(func.count(AuditLog.id).desc())
        .all()
    )

    return {
        "period_days": period_days,
        "total": sum(count for _, _, count in rows),
        "breakdown": [
            {"action_type": action, "target_table": table, "count": count}
            for action, table, count in rows
        ],
    }


def cleanup_old_logs(*, retention_days: int) -> int:
    """
    Delete audit rows older than retention_days. Returns rows deleted.

    Flushes only; the caller's unit of work commits.
    """
    if retention_days < 1:
        raise ValueError("retention_days must be >= 1")
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditLog).filter(
        AuditLog.timestamp < cutoff
    ).delete(synchronize_session=False)
    db.session.flush()
    return deleted


def integrity_check() -> dict:
    """
    Consistency report over the audit table.

    Checks:
    - actor ids that no longer resolve to a user
    - rows missing a timestamp
    - action types outside the known vocabulary
    """
    checks = []

    orphaned = (
        db.session.query(func.count(AuditLog.id))
        .outerjoin(User, User.id == AuditLog.user_id)
        .filter(AuditLog.user_id.isnot(None), User.id.is_(None))
        .scalar()
    )
    checks.append(_check("orphaned_actors", orphaned, "audit rows reference non-existent users"))

    missing_timestamps = (
        db.session.query(func.count(AuditLog.id))
        .filter(AuditLog.timestamp.is_(None))
        .scalar()
    )
    checks.append(_check("missing_timestamps", missing_timestamps, "audit rows missing timestamps"))

    unknown_actions = (
        db.session.query(func.count(AuditLog.id))
        .filter(AuditLog.action_type.notin_(sorted(KNOWN_ACTIONS)))
        .scalar()
    )
    checks.append(_check("unknown_actions", unknown_actions, "audit rows with unknown action types"))

    failed = [c["name"] for c in checks if c["status"] != "PASS"]
    return {
        "checked_at": to_utc_z(utcnow()),
        "status": "FAIL" if failed else "PASS",
        "checks": checks,
        "issues": failed,
    }


def _check(name: str, count: int, description: str) -> dict:
    return {
        "name": name,
        "status": "PASS" if count == 0 else "FAIL",
        "count": count,
        "details": f"{count} {description}",
    }
