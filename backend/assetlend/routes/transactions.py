# Overview: Flask API routes for borrow/return transactions; parses input and returns JSON responses.

"""
Borrow/return transaction routes.

Mutations delegate to services.gateway, which authorizes, validates and
runs the transition as one unit of work. Reads go straight to
transaction_service.

SECURITY: All routes require an acting user (X-Actor-Id).
- Borrowers see their own transactions (/mine, /dashboard, /<id> if theirs)
- VIEW_TRANSACTIONS is needed for everyone else's
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..errors import LendingError
from ..permissions import role_has_permission
from ..responses import error_response, lending_error_response, result_response
from ..services import gateway, transaction_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_pagination

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


# =============================================================================
# TRANSITIONS
# =============================================================================

@transactions_bp.post("/borrow")
@require_auth
def create_borrow_request_route():
    """
    Create a Pending borrow request.

    Request body:
    {
        "item_id": 1,
        "quantity": 2,
        "due_date": "2026-01-31T17:00:00Z",
        "reason": "Site visit",      // optional
        "notes": "..."               // optional
    }
    """
    try:
        result = gateway.submit_borrow_request(g.current_user, request.get_json(silent=True))
        return result_response(result, "transaction", status=201)
    except Exception:
        current_app.logger.exception("Failed to create borrow request")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/approve")
@require_auth
def approve_route(transaction_id: int):
    try:
        result = gateway.approve_request(g.current_user, transaction_id)
        return result_response(result, "transaction")
    except Exception:
        current_app.logger.exception("Failed to approve transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/reject")
@require_auth
def reject_route(transaction_id: int):
    """Request body: {"reason": "..."} (optional)"""
    try:
        result = gateway.reject_request(g.current_user, transaction_id, request.get_json(silent=True))
        return result_response(result, "transaction")
    except Exception:
        current_app.logger.exception("Failed to reject transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/return")
@require_auth
def return_route(transaction_id: int):
    """Request body: {"condition": "good", "notes": "..."} (both optional)"""
    try:
        result = gateway.return_request(g.current_user, transaction_id, request.get_json(silent=True))
        return result_response(result, "transaction")
    except Exception:
        current_app.logger.exception("Failed to return transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/transfer")
@require_auth
def transfer_route():
    """
    Move stock to another store.

    Request body:
    {
        "item_id": 1,
        "to_store_id": 2,
        "quantity": 3,
        "reason": "Rebalancing"      // optional
    }
    """
    try:
        result = gateway.transfer_stock(g.current_user, request.get_json(silent=True))
        return result_response(result, "transaction", status=201)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# READS
# =============================================================================

@transactions_bp.get("")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_transactions_route():
    """
    Query params: status, type, user_id, item_id, page, per_page
    """
    page, per_page = parse_pagination(request.args)
    try:
        return transaction_service.list_transactions(
            status=request.args.get("status"),
            type=request.args.get("type"),
            user_id=request.args.get("user_id", type=int),
            item_id=request.args.get("item_id", type=int),
            page=page,
            per_page=per_page,
        )
    except LendingError as e:
        return lending_error_response(e)


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id)
    except LendingError as e:
        return lending_error_response(e)

    user = g.current_user
    if txn.user_id != user.id and not role_has_permission(user.role, "VIEW_TRANSACTIONS"):
        return error_response("Unauthorized", "You can only view your own transactions")

    return jsonify({"transaction": txn.to_dict()}), 200


@transactions_bp.get("/pending")
@require_auth
@require_permission("APPROVE_REQUESTS")
def list_pending_route():
    """Approval queue, oldest first. Query params: store_id"""
    rows = transaction_service.list_pending_requests(store_id=request.args.get("store_id", type=int))
    return jsonify({"transactions": [t.to_dict() for t in rows], "count": len(rows)}), 200


@transactions_bp.get("/mine")
@require_auth
def list_my_requests_route():
    """Query params: status"""
    try:
        rows = transaction_service.list_user_requests(g.current_user.id, status=request.args.get("status"))
    except LendingError as e:
        return lending_error_response(e)
    return jsonify({"transactions": [t.to_dict() for t in rows], "count": len(rows)}), 200


@transactions_bp.get("/overdue")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_overdue_route():
    """
    Approved borrows past due. Read-only report.

    Query params: user_id, as_of (ISO-8601, defaults to now)
    """
    try:
        as_of = parse_iso_datetime(request.args.get("as_of"))
    except ValueError:
        return error_response("InvalidInput", "as_of must be an ISO-8601 datetime")

    rows = transaction_service.list_overdue(user_id=request.args.get("user_id", type=int), now=as_of)
    return jsonify({"transactions": [t.to_dict() for t in rows], "count": len(rows)}), 200


@transactions_bp.get("/dashboard")
@require_auth
def dashboard_route():
    """
    Borrow counters for the caller. ?scope=all gives system-wide counters
    to users with VIEW_TRANSACTIONS.
    """
    user = g.current_user
    if request.args.get("scope") == "all":
        if not role_has_permission(user.role, "VIEW_TRANSACTIONS"):
            return error_response("Unauthorized", "System-wide stats require VIEW_TRANSACTIONS")
        return jsonify(transaction_service.dashboard_stats(None)), 200
    return jsonify(transaction_service.dashboard_stats(user.id)), 200
