# Overview: Flask API routes for the audit trail; parses input and returns JSON responses.

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start/end filtering is inclusive.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..responses import error_response, result_response
from ..services import audit_service, gateway
from ..time_utils import parse_iso_datetime
from ..validation import parse_pagination

audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")

AUDIT_PAGE_SIZE = 100
AUDIT_MAX_PAGE_SIZE = 500


@audit_bp.get("")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_logs_route():
    """
    Query params: action_type, target_table, target_id, user_id,
    start, end, page, per_page (max 500)
    """
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return error_response("InvalidInput", "start and end must be ISO-8601 datetimes")

    page, per_page = parse_pagination(request.args, default_size=AUDIT_PAGE_SIZE, max_size=AUDIT_MAX_PAGE_SIZE)

    return audit_service.list_audit_logs(
        action_type=request.args.get("action_type"),
        target_table=request.args.get("target_table"),
        target_id=request.args.get("target_id", type=int),
        user_id=request.args.get("user_id", type=int),
        start=start,
        end=end,
        page=page,
        per_page=per_page,
    )


@audit_bp.get("/stats")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def audit_stats_route():
    """Query params: period_days (default 30)"""
    period_days = request.args.get("period_days", default=30, type=int) or 30
    if period_days < 1:
        return error_response("InvalidInput", "period_days must be >= 1")
    return audit_service.audit_statistics(period_days=period_days)


@audit_bp.get("/integrity")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def audit_integrity_route():
    return audit_service.integrity_check()


@audit_bp.post("/cleanup")
@require_auth
def audit_cleanup_route():
    """
    Delete audit rows older than retention_days.

    Request body: {"retention_days": 365} (optional, defaults to AUDIT_RETENTION_DAYS)
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return error_response("InvalidInput", "Invalid JSON payload")
    retention_days = payload.get("retention_days", current_app.config["AUDIT_RETENTION_DAYS"])

    try:
        result = gateway.purge_audit_logs(g.current_user, retention_days)
        return result_response(result, "cleanup")
    except Exception:
        current_app.logger.exception("Failed to clean up audit logs")
        return jsonify({"error": "Internal server error"}), 500
