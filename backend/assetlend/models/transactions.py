from __future__ import annotations

import math
from datetime import datetime

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


TRANSACTION_TYPE_BORROW = "Borrow"
TRANSACTION_TYPE_RETURN = "Return"
TRANSACTION_TYPE_TRANSFER = "Transfer"

TRANSACTION_TYPES = (
    TRANSACTION_TYPE_BORROW,
    TRANSACTION_TYPE_RETURN,
    TRANSACTION_TYPE_TRANSFER,
)

TRANSACTION_STATUS_PENDING = "Pending"
TRANSACTION_STATUS_APPROVED = "Approved"
TRANSACTION_STATUS_REJECTED = "Rejected"
TRANSACTION_STATUS_COMPLETED = "Completed"

TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_APPROVED,
    TRANSACTION_STATUS_REJECTED,
    TRANSACTION_STATUS_COMPLETED,
)

# A user may hold at most one of these per item
OPEN_TRANSACTION_STATUSES = (TRANSACTION_STATUS_PENDING, TRANSACTION_STATUS_APPROVED)

RETURN_CONDITIONS = ("excellent", "good", "fair", "poor", "damaged")

# Partial index predicate backing the one-open-borrow rule
OPEN_BORROW_PREDICATE = "type = 'Borrow' AND status IN ('Pending', 'Approved')"


class Transaction(db.Model):
    """
    One borrow/return (or transfer) lifecycle instance.

    LIFECYCLE (Borrow):
    1. Pending: created by the borrower, stock untouched
    2. Approved: approver reserved the units on the item's ledger row
       or Rejected: approver declined, stock untouched (terminal)
    3. Completed: units released back to the shelf (terminal)

    Transfers are recorded directly as Completed.

    Rows are never deleted. item_id is nulled by the ORM if the item row is
    later removed (only possible once no open transaction references it).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_transactions_quantity_positive"),
        db.Index("ix_transactions_item_user_status", "item_id", "user_id", "status"),
        db.Index("ix_transactions_status_created", "status", "created_at"),
        db.Index(
            "uq_transactions_open_borrow",
            "item_id",
            "user_id",
            unique=True,
            sqlite_where=db.text(OPEN_BORROW_PREDICATE),
            postgresql_where=db.text(OPEN_BORROW_PREDICATE),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(16), nullable=False, default=TRANSACTION_TYPE_BORROW, index=True)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_PENDING, index=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Transfers only
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    # Approval workflow (set on approve and on reject)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Return
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_condition = db.Column(db.String(16), nullable=True)
    return_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    item = db.relationship("Item", backref=db.backref("transactions", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("transactions", lazy=True))
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} status={self.status} item_id={self.item_id}>"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TRANSACTION_STATUSES

    def is_overdue(self, now: datetime | None = None) -> bool:
        """An approved loan whose due date has passed."""
        if self.status != TRANSACTION_STATUS_APPROVED or self.due_date is None:
            return False
        return (now or utcnow()) > self.due_date

    def days_until_due(self, now: datetime | None = None) -> int | None:
        if self.due_date is None or not self.is_open:
            return None
        delta = self.due_date - (now or utcnow())
        return math.ceil(delta.total_seconds() / 86400)

    def snapshot(self) -> dict:
        """Audit snapshot of the lifecycle fields."""
        return {
            "type": self.type,
            "status": self.status,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "quantity": self.quantity,
            "due_date": to_utc_z(self.due_date),
            "approved_by_user_id": self.approved_by_user_id,
            "rejection_reason": self.rejection_reason,
            "return_condition": self.return_condition,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "quantity": self.quantity,
            "due_date": to_utc_z(self.due_date),
            "reason": self.reason,
            "notes": self.notes,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "returned_at": to_utc_z(self.returned_at),
            "return_condition": self.return_condition,
            "return_notes": self.return_notes,
            "is_overdue": self.is_overdue(),
            "days_until_due": self.days_until_due(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
