# Overview: Flask API routes for damage reports; parses input and returns JSON responses.

"""
Damage report routes.

SECURITY: All routes require an acting user (X-Actor-Id).
- Filing goes through services.gateway, which checks REPORT_DAMAGE
- Reporters see their own reports (/mine, /<id> if theirs)
- MANAGE_DAMAGE_REPORTS is needed for the full list, stats and status changes
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import LendingError
from ..permissions import role_has_permission
from ..responses import error_response, lending_error_response, result_response
from ..services import damage_service, gateway
from ..validation import parse_pagination

damages_bp = Blueprint("damages", __name__, url_prefix="/api/damages")


@damages_bp.post("")
@require_auth
def report_damage_route():
    """
    Request body:
    {
        "item_id": 1,
        "description": "Cracked lens",
        "severity": "Critical",       // Low | Medium | High | Critical, default Medium
        "quantity_damaged": 1,        // optional
        "serial_number": "SN-42",     // optional
        "notes": "..."                // optional
    }
    """
    try:
        result = gateway.report_damage(g.current_user, request.get_json(silent=True))
        return result_response(result, "damage", status=201)
    except Exception:
        current_app.logger.exception("Failed to file damage report")
        return jsonify({"error": "Internal server error"}), 500


@damages_bp.patch("/<int:damage_id>/status")
@require_auth
def update_damage_status_route(damage_id: int):
    """Request body: {"status": "Resolved", "notes": "..."}"""
    try:
        result = gateway.update_damage_status(g.current_user, damage_id, request.get_json(silent=True))
        return result_response(result, "damage")
    except Exception:
        current_app.logger.exception("Failed to update damage report")
        return jsonify({"error": "Internal server error"}), 500


@damages_bp.get("")
@require_auth
@require_permission("MANAGE_DAMAGE_REPORTS")
def list_damage_reports_route():
    """Query params: status, severity, item_id, store_id, page, per_page"""
    page, per_page = parse_pagination(request.args)
    try:
        return damage_service.list_damage_reports(
            status=request.args.get("status"),
            severity=request.args.get("severity"),
            item_id=request.args.get("item_id", type=int),
            store_id=request.args.get("store_id", type=int),
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)


@damages_bp.get("/mine")
@require_auth
def list_my_damage_reports_route():
    page, per_page = parse_pagination(request.args)
    try:
        return damage_service.list_damage_reports(
            status=request.args.get("status"),
            reported_by=g.current_user.id,
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)


@damages_bp.get("/stats")
@require_auth
@require_permission("MANAGE_DAMAGE_REPORTS")
def damage_stats_route():
    """Query params: store_id"""
    return jsonify(damage_service.damage_statistics(store_id=request.args.get("store_id", type=int))), 200


@damages_bp.get("/<int:damage_id>")
@require_auth
def get_damage_report_route(damage_id: int):
    try:
        damage = damage_service.get_damage_report(damage_id)
    except LendingError as e:
        return lending_error_response(e)

    user = g.current_user
    if damage.reported_by_user_id != user.id and not role_has_permission(user.role, "MANAGE_DAMAGE_REPORTS"):
        return error_response("Unauthorized", "You can only view your own damage reports")

    return jsonify({"damage": damage.to_dict()}), 200
