# Overview: Borrow/return transaction state machine coupled to the stock ledger.

"""
Transaction State Machine

LIFECYCLE (Borrow):
    Pending  -> Approved | Rejected
    Approved -> Completed
    Rejected, Completed: terminal

WHY: stock is reserved on approval, not on request. A request can be
rejected without ever perturbing stock, at the cost of pending requests
together asking for more than exists. Approval re-checks stock on the
locked item row; first approval processed wins and later ones fail with
InsufficientStock until they are rejected.

Every transition writes exactly one audit row against the transaction and
runs in the caller's unit of work together with its ledger write. None of
these functions commit.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    DuplicateRequest,
    InsufficientStock,
    InvalidState,
    ItemUnavailable,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Item, Transaction, User
from ..models.inventory import ITEM_STATUS_AVAILABLE, ITEM_STATUS_RETIRED, OUT_OF_SERVICE_STATUSES
from ..models.transactions import (
    OPEN_TRANSACTION_STATUSES,
    RETURN_CONDITIONS,
    TRANSACTION_STATUS_APPROVED,
    TRANSACTION_STATUS_COMPLETED,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUSES,
    TRANSACTION_TYPE_BORROW,
    TRANSACTION_TYPE_TRANSFER,
    TRANSACTION_TYPES,
)
from ..time_utils import utcnow
from ..validation import pagination_meta
from . import audit_service, ledger_service
from .concurrency import lock_for_update


ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    TRANSACTION_STATUS_PENDING: {TRANSACTION_STATUS_APPROVED, TRANSACTION_STATUS_REJECTED},
    TRANSACTION_STATUS_APPROVED: {TRANSACTION_STATUS_COMPLETED},
    TRANSACTION_STATUS_REJECTED: set(),
    TRANSACTION_STATUS_COMPLETED: set(),
}

DEFAULT_RETURN_CONDITION = "good"
RETIREMENT_REJECTION_REASON = "Item retired"


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def _require_transition(txn: Transaction, new_status: str) -> None:
    if not can_transition(txn.status, new_status):
        raise InvalidState(
            f"Transaction {txn.id} is {txn.status}; cannot move to {new_status}"
        )


def _lock_transaction(transaction_id: int) -> Transaction:
    txn = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
    if not txn:
        raise NotFound(f"Transaction {transaction_id} not found")
    return txn


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound(f"User {user_id} not found")
    return user


# =============================================================================
# TRANSITIONS
# =============================================================================

def create_borrow_request(
    user_id: int,
    item_id: int,
    quantity: int,
    due_date: datetime,
    reason: str | None = None,
    notes: str | None = None,
) -> Transaction:
    """
    Open a Pending borrow request. Stock is not touched.

    Raises:
        NotFound: user or item missing
        ItemUnavailable: item status is not available
        InsufficientStock: quantity exceeds units on the shelf right now
        DuplicateRequest: user already holds an open borrow for this item
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")
    if due_date is None:
        raise ValidationError("due_date is required")

    _require_user(user_id)
    item = ledger_service.lock_item(item_id)

    if item.status != ITEM_STATUS_AVAILABLE:
        raise ItemUnavailable(f"Item {item_id} is {item.status} and cannot be borrowed")
    if quantity > item.quantity:
        raise InsufficientStock(
            f"Insufficient stock for item {item_id}. "
            f"On shelf: {item.quantity}, requested: {quantity}"
        )

    existing = (
        db.session.query(Transaction.id)
        .filter(
            Transaction.user_id == user_id,
            Transaction.item_id == item_id,
            Transaction.type == TRANSACTION_TYPE_BORROW,
            Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
        )
        .first()
    )
    if existing:
        raise DuplicateRequest(
            f"User {user_id} already has an open request ({existing.id}) for item {item_id}"
        )

    txn = Transaction(
        type=TRANSACTION_TYPE_BORROW,
        status=TRANSACTION_STATUS_PENDING,
        item_id=item_id,
        user_id=user_id,
        quantity=quantity,
        due_date=due_date,
        reason=reason,
        notes=notes,
    )
    db.session.add(txn)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise DuplicateRequest(
            f"User {user_id} already has an open request for item {item_id}"
        ) from exc

    audit_service.record(user_id, "transactions", txn.id, audit_service.ACTION_CREATE, None, txn.snapshot())
    return txn


def approve(transaction_id: int, approver_id: int) -> Transaction:
    """
    Approve a Pending request and reserve its units.

    Lock order is transaction then item, the same for every transition.

    Raises:
        InvalidState: not Pending
        ItemUnavailable: item was deleted or taken out of service meanwhile
        InsufficientStock: item.quantity < transaction.quantity right now
    """
    txn = _lock_transaction(transaction_id)
    _require_transition(txn, TRANSACTION_STATUS_APPROVED)

    if txn.item_id is None:
        raise ItemUnavailable(f"Item for transaction {transaction_id} no longer exists")
    item = ledger_service.lock_item(txn.item_id)

    if item.status in OUT_OF_SERVICE_STATUSES:
        raise ItemUnavailable(f"Item {item.id} is {item.status} and cannot be lent")
    if item.quantity < txn.quantity:
        raise InsufficientStock(
            f"Insufficient stock to approve transaction {transaction_id}. "
            f"On shelf: {item.quantity}, requested: {txn.quantity}"
        )

    before = txn.snapshot()
    ledger_service.reserve(item.id, txn.quantity, actor_id=approver_id, transaction_id=txn.id)

    now = utcnow()
    txn.status = TRANSACTION_STATUS_APPROVED
    txn.approved_by_user_id = approver_id
    txn.approved_at = now
    txn.updated_at = now
    db.session.flush()

    audit_service.record(approver_id, "transactions", txn.id, audit_service.ACTION_APPROVE, before, txn.snapshot())
    return txn


def reject(transaction_id: int, approver_id: int, reason: str | None = None) -> Transaction:
    """Reject a Pending request. Nothing was reserved, so the ledger is untouched."""
    txn = _lock_transaction(transaction_id)
    _require_transition(txn, TRANSACTION_STATUS_REJECTED)

    before = txn.snapshot()
    now = utcnow()
    txn.status = TRANSACTION_STATUS_REJECTED
    txn.approved_by_user_id = approver_id
    txn.approved_at = now
    txn.rejection_reason = reason
    txn.updated_at = now
    db.session.flush()

    audit_service.record(approver_id, "transactions", txn.id, audit_service.ACTION_REJECT, before, txn.snapshot())
    return txn


def return_item(
    transaction_id: int,
    condition: str = DEFAULT_RETURN_CONDITION,
    notes: str | None = None,
    *,
    actor_id: int | None = None,
) -> Transaction:
    """
    Check an Approved loan back in and release its units.

    The item's status after release follows ledger_service.release(); a
    "damaged" return condition is recorded on the transaction only.
    """
    if condition not in RETURN_CONDITIONS:
        raise ValidationError(f"condition must be one of: {', '.join(RETURN_CONDITIONS)}")

    txn = _lock_transaction(transaction_id)
    if txn.type != TRANSACTION_TYPE_BORROW:
        raise InvalidState(f"Transaction {transaction_id} is a {txn.type}, not a borrow")
    _require_transition(txn, TRANSACTION_STATUS_COMPLETED)

    # Approved loans block item deletion, so the item is still there
    before = txn.snapshot()
    ledger_service.release(txn.item_id, txn.quantity, actor_id=actor_id, transaction_id=txn.id)

    now = utcnow()
    txn.status = TRANSACTION_STATUS_COMPLETED
    txn.returned_at = now
    txn.return_condition = condition
    txn.return_notes = notes
    txn.updated_at = now
    db.session.flush()

    audit_service.record(actor_id, "transactions", txn.id, audit_service.ACTION_RETURN, before, txn.snapshot())
    return txn


def transfer(
    actor_id: int,
    item_id: int,
    to_store_id: int,
    quantity: int,
    reason: str | None = None,
    notes: str | None = None,
) -> Transaction:
    """Move stock between stores, recorded as a Completed Transfer transaction."""
    source = ledger_service.lock_item(item_id)
    from_store_id = source.store_id

    source, destination = ledger_service.transfer_location(
        item_id, to_store_id, quantity, actor_id=actor_id
    )

    now = utcnow()
    txn = Transaction(
        type=TRANSACTION_TYPE_TRANSFER,
        status=TRANSACTION_STATUS_COMPLETED,
        item_id=destination.id,
        user_id=actor_id,
        quantity=quantity,
        reason=reason,
        notes=notes,
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        approved_by_user_id=actor_id,
        approved_at=now,
    )
    db.session.add(txn)
    db.session.flush()

    audit_service.record(
        actor_id,
        "transactions",
        txn.id,
        audit_service.ACTION_TRANSFER,
        None,
        {**txn.snapshot(), "source_item_id": source.id, "from_store_id": from_store_id, "to_store_id": to_store_id},
    )
    return txn


def auto_reject_pending(
    item_id: int,
    *,
    actor_id: int | None = None,
    reason: str = RETIREMENT_REJECTION_REASON,
) -> list[Transaction]:
    """Reject every Pending borrow on an item. Used when the item is retired."""
    pending_ids = [
        row.id
        for row in db.session.query(Transaction.id)
        .filter(
            Transaction.item_id == item_id,
            Transaction.status == TRANSACTION_STATUS_PENDING,
        )
        .order_by(Transaction.id.asc())
        .all()
    ]
    return [reject(txn_id, actor_id, reason) for txn_id in pending_ids]


def retire_item(item_id: int, *, actor_id: int | None = None, notes: str | None = None) -> Item:
    """
    Retire an item and reject its Pending requests.

    The Pending rows are locked before the item row, keeping the
    transaction-then-item order used by approve and return. Approved loans
    stay open and are returned normally.
    """
    lock_for_update(
        db.session.query(Transaction)
        .filter(
            Transaction.item_id == item_id,
            Transaction.status == TRANSACTION_STATUS_PENDING,
        )
        .order_by(Transaction.id.asc())
    ).all()

    item = ledger_service.set_item_status(item_id, ITEM_STATUS_RETIRED, actor_id=actor_id, notes=notes)
    auto_reject_pending(item_id, actor_id=actor_id)
    return item


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFound(f"Transaction {transaction_id} not found")
    return txn


def list_transactions(
    *,
    status: str | None = None,
    type: str | None = None,
    user_id: int | None = None,
    item_id: int | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """Newest first."""
    q = db.session.query(Transaction)

    if status:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TRANSACTION_STATUSES)}")
        q = q.filter(Transaction.status == status)
    if type:
        if type not in TRANSACTION_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_TYPES)}")
        q = q.filter(Transaction.type == type)
    if user_id is not None:
        q = q.filter(Transaction.user_id == user_id)
    if item_id is not None:
        q = q.filter(Transaction.item_id == item_id)

    total = q.count()
    rows = (
        q.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "transactions": [t.to_dict() for t in rows],
        "count": len(rows),
        "pagination": pagination_meta(page, per_page, total),
    }


def list_pending_requests(*, store_id: int | None = None) -> list[Transaction]:
    """The approval queue, oldest first so approvers work it in arrival order."""
    q = db.session.query(Transaction).filter(
        Transaction.type == TRANSACTION_TYPE_BORROW,
        Transaction.status == TRANSACTION_STATUS_PENDING,
    )
    if store_id is not None:
        q = q.join(Item, Item.id == Transaction.item_id).filter(Item.store_id == store_id)
    return q.order_by(Transaction.created_at.asc(), Transaction.id.asc()).all()


def list_user_requests(user_id: int, *, status: str | None = None) -> list[Transaction]:
    q = db.session.query(Transaction).filter(Transaction.user_id == user_id)
    if status:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TRANSACTION_STATUSES)}")
        q = q.filter(Transaction.status == status)
    return q.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


def list_overdue(*, user_id: int | None = None, now: datetime | None = None) -> list[Transaction]:
    """Approved borrows past their due date. Read-only; nothing transitions."""
    now = now or utcnow()
    q = db.session.query(Transaction).filter(
        Transaction.type == TRANSACTION_TYPE_BORROW,
        Transaction.status == TRANSACTION_STATUS_APPROVED,
        Transaction.due_date.isnot(None),
        Transaction.due_date < now,
    )
    if user_id is not None:
        q = q.filter(Transaction.user_id == user_id)
    return q.order_by(Transaction.due_date.asc(), Transaction.id.asc()).all()


def dashboard_stats(user_id: int | None = None) -> dict:
    """
    Borrow counters, for one user or (user_id=None) everyone.

    active_borrows counts Approved loans including overdue ones.
    """
    q = db.session.query(Transaction.status, func.count(Transaction.id)).filter(
        Transaction.type == TRANSACTION_TYPE_BORROW
    )
    if user_id is not None:
        q = q.filter(Transaction.user_id == user_id)
    counts = dict(q.group_by(Transaction.status).all())

    return {
        "user_id": user_id,
        "active_borrows": int(counts.get(TRANSACTION_STATUS_APPROVED, 0)),
        "overdue": len(list_overdue(user_id=user_id)),
        "pending_requests": int(counts.get(TRANSACTION_STATUS_PENDING, 0)),
        "completed": int(counts.get(TRANSACTION_STATUS_COMPLETED, 0)),
        "rejected": int(counts.get(TRANSACTION_STATUS_REJECTED, 0)),
    }
