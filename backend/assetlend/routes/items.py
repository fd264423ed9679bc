# Overview: Flask API routes for items and stock; parses input and returns JSON responses.

"""
Item management and stock routes.

SECURITY: All routes require an acting user (X-Actor-Id).
- Read operations require VIEW_INVENTORY permission
- Writes go through services.gateway, which checks MANAGE_ITEMS
- Item history requires VIEW_AUDIT_LOG
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import LendingError
from ..responses import lending_error_response, result_response
from ..services import audit_service, gateway, inventory_service
from ..validation import parse_pagination

items_bp = Blueprint("items", __name__, url_prefix="/api/items")
stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@items_bp.get("")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_items_route():
    """
    Query params:
    - store_id: int (optional)
    - status: available | reserved | maintenance | damaged | retired (optional)
    - search: substring of name, sku or description (optional)
    - page, per_page
    """
    page, per_page = parse_pagination(request.args)
    try:
        return inventory_service.list_items(
            store_id=request.args.get("store_id", type=int),
            status=request.args.get("status"),
            search=request.args.get("search"),
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)


@items_bp.post("")
@require_auth
def create_item_route():
    """
    Request body:
    {
        "store_id": 1,
        "sku": "LAP-001",
        "name": "Laptop",
        "quantity": 5,               // optional, default 0
        "min_stock_level": 2,        // optional
        "max_stock_level": 20        // optional
    }
    """
    try:
        result = gateway.register_item(g.current_user, request.get_json(silent=True))
        return result_response(result, "item", status=201)
    except Exception:
        current_app.logger.exception("Failed to create item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    """Items at or below their min_stock_level. Query params: store_id"""
    rows = inventory_service.low_stock_items(store_id=request.args.get("store_id", type=int))
    return jsonify({"items": [i.to_dict() for i in rows], "count": len(rows)}), 200


@items_bp.get("/<int:item_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_item_route(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
    except LendingError as e:
        return lending_error_response(e)
    return jsonify({"item": item.to_dict()}), 200


@items_bp.delete("/<int:item_id>")
@require_auth
def delete_item_route(item_id: int):
    """Fails with 409 while open transactions reference the item."""
    try:
        result = gateway.remove_item(g.current_user, item_id)
        return result_response(result, "item")
    except Exception:
        current_app.logger.exception("Failed to delete item")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/<int:item_id>/stock")
@require_auth
def adjust_stock_route(item_id: int):
    """
    Stock correction.

    Request body:
    {
        "operation": "add" | "subtract" | "set",
        "quantity": 3,
        "reason": "Recount",         // optional
        "notes": "..."               // optional
    }
    """
    try:
        result = gateway.adjust_item_stock(g.current_user, item_id, request.get_json(silent=True))
        return result_response(result, "item")
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.post("/<int:item_id>/status")
@require_auth
def change_status_route(item_id: int):
    """
    Request body: {"status": "maintenance" | "damaged" | "retired" | "available", "notes": "..."}

    Retiring rejects the item's Pending requests.
    """
    try:
        result = gateway.change_item_status(g.current_user, item_id, request.get_json(silent=True))
        return result_response(result, "item")
    except Exception:
        current_app.logger.exception("Failed to change item status")
        return jsonify({"error": "Internal server error"}), 500


@items_bp.get("/<int:item_id>/history")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def item_history_route(item_id: int):
    """Audit trail for the item row, newest first. Works after deletion."""
    page, per_page = parse_pagination(request.args)
    return audit_service.entity_history("items", item_id, page=page, per_page=per_page)


# =============================================================================
# STORES
# =============================================================================

@stores_bp.get("/<int:store_id>/stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def store_stock_route(store_id: int):
    try:
        return inventory_service.stock_by_store(store_id)
    except LendingError as e:
        return lending_error_response(e)
