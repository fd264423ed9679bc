from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ITEM_STATUS_AVAILABLE = "available"
ITEM_STATUS_RESERVED = "reserved"
ITEM_STATUS_MAINTENANCE = "maintenance"
ITEM_STATUS_DAMAGED = "damaged"
ITEM_STATUS_RETIRED = "retired"

ITEM_STATUSES = (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_RESERVED,
    ITEM_STATUS_MAINTENANCE,
    ITEM_STATUS_DAMAGED,
    ITEM_STATUS_RETIRED,
)

# Set by hand (damage reports, maintenance, retirement); the ledger never
# overwrites these on its own.
OUT_OF_SERVICE_STATUSES = (
    ITEM_STATUS_MAINTENANCE,
    ITEM_STATUS_DAMAGED,
    ITEM_STATUS_RETIRED,
)


class Item(db.Model):
    """
    Lendable equipment held in a store, and its stock ledger row.

    LEDGER INVARIANTS:
    - quantity is the number of units on the shelf right now, never negative
    - status == available implies quantity > 0
    - quantity == 0 implies status in (reserved, maintenance, damaged, retired)

    Both are enforced as CHECK constraints so a bad write fails at flush
    time. version_id makes every ledger write an optimistic compare-and-swap.

    SKU is unique within a store; a transfer of partial stock lands on the
    destination store's row for the same SKU.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_items_store_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.CheckConstraint(
            "status <> 'available' OR quantity > 0",
            name="ck_items_available_has_stock",
        ),
        db.Index("ix_items_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Advisory only: drive low-stock reporting, never block a ledger write
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)
    max_stock_level = db.Column(db.Integer, nullable=False, default=100)

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_AVAILABLE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("items", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} quantity={self.quantity} status={self.status!r}>"

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock_level

    def ledger_snapshot(self) -> dict:
        """The fields audit rows capture before and after a ledger write."""
        return {
            "quantity": self.quantity,
            "status": self.status,
            "store_id": self.store_id,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "status": self.status,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
