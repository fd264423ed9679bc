# Overview: Flask API routes for item maintenance; parses input and returns JSON responses.

"""
Maintenance routes.

SECURITY: All routes require an acting user (X-Actor-Id).
- Reads require VIEW_INVENTORY
- Scheduling, rescheduling and cancelling need MANAGE_MAINTENANCE
- Starting and completing work needs PERFORM_MAINTENANCE
Permission checks for writes happen in services.gateway.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import LendingError
from ..responses import lending_error_response, result_response
from ..services import gateway, maintenance_service
from ..validation import parse_pagination

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/maintenance")


def _transition(action, log_id: int, label: str):
    try:
        result = action(g.current_user, log_id, request.get_json(silent=True))
        return result_response(result, "maintenance_log")
    except Exception:
        current_app.logger.exception("Failed to %s maintenance", label)
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.post("")
@require_auth
def schedule_maintenance_route():
    """
    Request body:
    {
        "item_id": 1,
        "title": "Annual calibration",
        "maintenance_type": "calibration",   // preventive | corrective | inspection | calibration
        "scheduled_date": "2026-11-02T09:00:00Z",
        "priority": "high",                  // optional, default medium
        "description": "...",                // optional
        "notes": "..."                       // optional
    }
    """
    try:
        result = gateway.schedule_maintenance(g.current_user, request.get_json(silent=True))
        return result_response(result, "maintenance_log", status=201)
    except Exception:
        current_app.logger.exception("Failed to schedule maintenance")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.patch("/<int:log_id>/reschedule")
@require_auth
def reschedule_maintenance_route(log_id: int):
    """Request body: {"scheduled_date": "...", "reason": "..."}"""
    return _transition(gateway.reschedule_maintenance, log_id, "reschedule")


@maintenance_bp.patch("/<int:log_id>/start")
@require_auth
def start_maintenance_route(log_id: int):
    """Request body: {"notes": "..."} (optional)"""
    return _transition(gateway.start_maintenance, log_id, "start")


@maintenance_bp.patch("/<int:log_id>/complete")
@require_auth
def complete_maintenance_route(log_id: int):
    """Request body: {"item_status": "available", "work_performed": "...", "notes": "..."} (all optional)"""
    return _transition(gateway.complete_maintenance, log_id, "complete")


@maintenance_bp.patch("/<int:log_id>/cancel")
@require_auth
def cancel_maintenance_route(log_id: int):
    """Request body: {"reason": "..."} (optional)"""
    return _transition(gateway.cancel_maintenance, log_id, "cancel")


@maintenance_bp.get("")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_maintenance_route():
    """Query params: status, maintenance_type, page, per_page"""
    page, per_page = parse_pagination(request.args)
    try:
        return maintenance_service.list_maintenance(
            status=request.args.get("status"),
            maintenance_type=request.args.get("maintenance_type"),
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)


@maintenance_bp.get("/<int:log_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_maintenance_log_route(log_id: int):
    try:
        log = maintenance_service.get_maintenance_log(log_id)
    except LendingError as e:
        return lending_error_response(e)
    return jsonify({"maintenance_log": log.to_dict()}), 200


@maintenance_bp.get("/items/<int:item_id>/history")
@require_auth
@require_permission("VIEW_INVENTORY")
def item_maintenance_history_route(item_id: int):
    """Query params: status, maintenance_type, page, per_page"""
    page, per_page = parse_pagination(request.args)
    try:
        return maintenance_service.item_maintenance_history(
            item_id,
            status=request.args.get("status"),
            maintenance_type=request.args.get("maintenance_type"),
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)
