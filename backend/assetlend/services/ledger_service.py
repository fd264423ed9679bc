# Overview: Stock ledger; the only code that writes Item.quantity and Item.status.

"""
Stock Ledger

WHY: item.quantity is shared by every request touching the item. Each
operation here locks the item row (FOR UPDATE where supported), re-reads
it, checks, writes and audits, all inside the caller's unit of work. The
versioned row turns a lost update into StaleDataError, which the unit of
work retries from a fresh read.

STATUS RULES (tagged-variant semantics):
- available requires quantity > 0
- stock reaching 0 on an available item flips it to reserved
- stock arriving on a reserved item flips it back to available
- maintenance / damaged / retired are only changed by set_item_status()

None of these functions commit.
"""

from __future__ import annotations

from ..errors import InsufficientStock, InvalidState, ItemUnavailable, NotFound, ValidationError
from ..extensions import db
from ..models import Item, Store
from ..models.inventory import (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_RESERVED,
    ITEM_STATUS_RETIRED,
    ITEM_STATUSES,
    OUT_OF_SERVICE_STATUSES,
)
from . import audit_service
from .concurrency import lock_for_update


STOCK_OPERATION_ADD = "add"
STOCK_OPERATION_SUBTRACT = "subtract"
STOCK_OPERATION_SET = "set"

STOCK_OPERATIONS = (STOCK_OPERATION_ADD, STOCK_OPERATION_SUBTRACT, STOCK_OPERATION_SET)

# Statuses an operator may set by hand; reserved is ledger-managed
MANUAL_STATUSES = tuple(s for s in ITEM_STATUSES if s != ITEM_STATUS_RESERVED)


def lock_item(item_id: int) -> Item:
    item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
    if not item:
        raise NotFound(f"Item {item_id} not found")
    return item


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("Quantity must be a positive integer")


def _settle_status(item: Item) -> None:
    """Keep status consistent with quantity for the ledger-managed statuses."""
    if item.status in OUT_OF_SERVICE_STATUSES:
        return
    item.status = ITEM_STATUS_AVAILABLE if item.quantity > 0 else ITEM_STATUS_RESERVED


# =============================================================================
# RESERVE / RELEASE
# =============================================================================

def reserve(
    item_id: int,
    quantity: int,
    *,
    actor_id: int | None = None,
    transaction_id: int | None = None,
) -> Item:
    """
    Take quantity units off the shelf.

    Raises InsufficientStock if quantity > item.quantity; nothing changes.
    """
    _require_positive(quantity)
    item = lock_item(item_id)

    if quantity > item.quantity:
        raise InsufficientStock(
            f"Insufficient stock for item {item_id}. "
            f"On shelf: {item.quantity}, requested: {quantity}"
        )

    before = item.ledger_snapshot()
    item.quantity -= quantity
    _settle_status(item)
    db.session.flush()

    audit_service.record(
        actor_id,
        "items",
        item.id,
        audit_service.ACTION_STOCK_RESERVE,
        before,
        {**item.ledger_snapshot(), "delta": -quantity, "transaction_id": transaction_id},
    )
    return item


def release(
    item_id: int,
    quantity: int,
    *,
    actor_id: int | None = None,
    transaction_id: int | None = None,
) -> Item:
    """
    Put quantity units back on the shelf.

    A reserved item becomes available again. An item marked maintenance,
    damaged or retired while the units were out keeps that status.
    """
    _require_positive(quantity)
    item = lock_item(item_id)

    before = item.ledger_snapshot()
    item.quantity += quantity
    _settle_status(item)
    db.session.flush()

    audit_service.record(
        actor_id,
        "items",
        item.id,
        audit_service.ACTION_STOCK_RELEASE,
        before,
        {**item.ledger_snapshot(), "delta": quantity, "transaction_id": transaction_id},
    )
    return item


# =============================================================================
# TRANSFER
# =============================================================================

def transfer_location(
    item_id: int,
    new_store_id: int,
    quantity: int,
    *,
    actor_id: int | None = None,
) -> tuple[Item, Item]:
    """
    Move quantity units of an item to another store.

    Composes reserve() at the source row and release() at the destination
    store's row for the same SKU. When the destination has no such row:
    - whole stock moving: the source row itself is re-homed, its store_id
      changing only after both legs went through
    - partial stock: a destination row is created at zero and released into

    Returns (source, destination); they are the same object when re-homed.
    """
    _require_positive(quantity)
    source = lock_item(item_id)

    if db.session.get(Store, new_store_id) is None:
        raise NotFound(f"Store {new_store_id} not found")
    if new_store_id == source.store_id:
        raise ValidationError("Cannot transfer to the same store")
    if source.status == ITEM_STATUS_RETIRED:
        raise ItemUnavailable(f"Item {item_id} is retired and cannot be transferred")
    if quantity > source.quantity:
        raise InsufficientStock(
            f"Insufficient stock for transfer of item {item_id}. "
            f"On shelf: {source.quantity}, requested: {quantity}"
        )

    before = source.ledger_snapshot()
    from_store_id = source.store_id

    destination = lock_for_update(
        db.session.query(Item).filter_by(store_id=new_store_id, sku=source.sku)
    ).first()

    if destination is None and quantity == source.quantity:
        reserve(source.id, quantity, actor_id=actor_id)
        release(source.id, quantity, actor_id=actor_id)
        source.store_id = new_store_id
        destination = source
    else:
        if destination is None:
            destination = Item(
                store_id=new_store_id,
                sku=source.sku,
                name=source.name,
                description=source.description,
                quantity=0,
                min_stock_level=source.min_stock_level,
                max_stock_level=source.max_stock_level,
                status=source.status if source.status in OUT_OF_SERVICE_STATUSES else ITEM_STATUS_RESERVED,
            )
            db.session.add(destination)
            db.session.flush()
            audit_service.record(
                actor_id,
                "items",
                destination.id,
                audit_service.ACTION_INSERT,
                None,
                destination.to_dict(),
            )
        elif destination.status == ITEM_STATUS_RETIRED:
            raise ItemUnavailable(
                f"Destination item {destination.id} is retired and cannot receive stock"
            )
        reserve(source.id, quantity, actor_id=actor_id)
        release(destination.id, quantity, actor_id=actor_id)

    db.session.flush()
    audit_service.record(
        actor_id,
        "items",
        source.id,
        audit_service.ACTION_TRANSFER,
        before,
        {
            **source.ledger_snapshot(),
            "from_store_id": from_store_id,
            "to_store_id": new_store_id,
            "destination_item_id": destination.id,
            "transfer_quantity": quantity,
        },
    )
    return source, destination


# =============================================================================
# CORRECTIONS AND STATUS
# =============================================================================

def adjust_stock(
    item_id: int,
    operation: str,
    quantity: int,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> Item:
    """
    Store-keeper stock correction (receipts, shrinkage, recounts).

    operation: add | subtract | set. subtract never goes below zero; asking
    for more than is on the shelf raises InsufficientStock.
    """
    if operation not in STOCK_OPERATIONS:
        raise ValidationError(f"operation must be one of: {', '.join(STOCK_OPERATIONS)}")
    if operation == STOCK_OPERATION_SET:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer")
    else:
        _require_positive(quantity)

    item = lock_item(item_id)
    before = item.ledger_snapshot()

    if operation == STOCK_OPERATION_ADD:
        item.quantity += quantity
    elif operation == STOCK_OPERATION_SUBTRACT:
        if quantity > item.quantity:
            raise InsufficientStock(
                f"Cannot subtract {quantity} from item {item_id}; only {item.quantity} on shelf"
            )
        item.quantity -= quantity
    else:
        item.quantity = quantity

    _settle_status(item)
    db.session.flush()

    audit_service.record(
        actor_id,
        "items",
        item.id,
        audit_service.ACTION_STOCK_UPDATE,
        before,
        {**item.ledger_snapshot(), "operation": operation, "reason": reason, "notes": notes},
    )
    return item


def set_item_status(
    item_id: int,
    status: str,
    *,
    actor_id: int | None = None,
    notes: str | None = None,
) -> Item:
    """
    Take an item out of service (maintenance, damaged, retired) or put it back.

    - reserved is ledger-managed and cannot be set by hand
    - retired is terminal
    - putting an item back with zero stock lands it on reserved, since
      available requires stock
    """
    if status not in MANUAL_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(MANUAL_STATUSES)}")

    item = lock_item(item_id)

    if item.status == ITEM_STATUS_RETIRED:
        raise InvalidState(f"Item {item_id} is retired; its status can no longer change")
    if item.status == status:
        raise InvalidState(f"Item {item_id} is already {status}")
    if status == ITEM_STATUS_AVAILABLE and item.status not in OUT_OF_SERVICE_STATUSES:
        raise InvalidState(f"Item {item_id} is {item.status}; only out-of-service items can be restored")

    before = item.ledger_snapshot()
    if status == ITEM_STATUS_AVAILABLE:
        item.status = ITEM_STATUS_AVAILABLE if item.quantity > 0 else ITEM_STATUS_RESERVED
    else:
        item.status = status
    db.session.flush()

    audit_service.record(
        actor_id,
        "items",
        item.id,
        audit_service.ACTION_STATUS_CHANGE,
        before,
        {**item.ledger_snapshot(), "notes": notes},
    )
    return item
