# backend/assetlend/services/inventory_service.py
"""
Inventory Service

Item and store management around the stock ledger: creation, deletion and
read-only stock reporting. Quantity and status changes after creation go
through ledger_service.

DELETION POLICY: an item referenced by an open (Pending/Approved)
transaction cannot be deleted. Closed transactions keep their history with
item_id nulled; the audit trail keeps the deleted row's last snapshot.
"""
from __future__ import annotations

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateRequest, InvalidState, NotFound, ValidationError
from ..extensions import db
from ..models import Item, Store, Transaction
from ..models.inventory import (
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_RESERVED,
    ITEM_STATUS_RETIRED,
    ITEM_STATUSES,
)
from ..models.transactions import OPEN_TRANSACTION_STATUSES
from ..validation import MAX_QUANTITY, ModelValidationPolicy, pagination_meta, validate_payload
from . import audit_service
from .ledger_service import lock_item


ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "store_id",
        "sku",
        "name",
        "description",
        "quantity",
        "min_stock_level",
        "max_stock_level",
    },
    required_on_create={"store_id", "sku", "name"},
)

STORE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "location"},
    required_on_create={"name"},
)


def enforce_rules_item(patch: dict) -> None:
    """Business rules beyond column metadata."""
    for key in ("quantity", "min_stock_level", "max_stock_level"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_QUANTITY:
            raise ValidationError(f"{key} cannot exceed {MAX_QUANTITY}")

    lo = patch.get("min_stock_level")
    hi = patch.get("max_stock_level")
    if lo is not None and hi is not None and lo > hi:
        raise ValidationError("min_stock_level cannot exceed max_stock_level")


# =============================================================================
# STORES
# =============================================================================

def create_store(payload: dict, *, actor_id: int | None = None) -> Store:
    patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=False)

    if db.session.query(Store).filter_by(name=patch["name"]).first():
        raise DuplicateRequest(f"Store '{patch['name']}' already exists")

    store = Store(**patch)
    db.session.add(store)
    db.session.flush()

    audit_service.record(actor_id, "stores", store.id, audit_service.ACTION_INSERT, None, store.to_dict())
    return store


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound(f"Store {store_id} not found")
    return store


# =============================================================================
# ITEMS
# =============================================================================

def create_item(payload: dict, *, actor_id: int | None = None) -> Item:
    """
    Create an item from a client payload.

    Status is derived from the opening quantity: available with stock,
    reserved without.
    """
    patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=False)
    enforce_rules_item(patch)

    get_store(patch["store_id"])

    existing = db.session.query(Item).filter_by(store_id=patch["store_id"], sku=patch["sku"]).first()
    if existing:
        raise DuplicateRequest(f"SKU '{patch['sku']}' already exists in store {patch['store_id']}")

    quantity = patch.get("quantity") or 0
    item = Item(**patch)
    item.quantity = quantity
    item.status = ITEM_STATUS_AVAILABLE if quantity > 0 else ITEM_STATUS_RESERVED

    db.session.add(item)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise DuplicateRequest(f"SKU '{patch['sku']}' already exists in store {patch['store_id']}") from exc

    audit_service.record(actor_id, "items", item.id, audit_service.ACTION_INSERT, None, item.to_dict())
    return item


def delete_item(item_id: int, *, actor_id: int | None = None) -> dict:
    """
    Delete an item with no open transactions. Returns the deleted snapshot.

    Raises InvalidState while any Pending or Approved transaction still
    references the item.
    """
    item = lock_item(item_id)

    open_count = (
        db.session.query(func.count(Transaction.id))
        .filter(
            Transaction.item_id == item.id,
            Transaction.status.in_(OPEN_TRANSACTION_STATUSES),
        )
        .scalar()
    )
    if open_count:
        raise InvalidState(
            f"Item {item_id} has {open_count} open transaction(s); "
            "reject or complete them before deleting"
        )

    snapshot = item.to_dict()
    db.session.delete(item)
    db.session.flush()

    audit_service.record(actor_id, "items", item_id, audit_service.ACTION_DELETE, snapshot, None)
    return snapshot


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound(f"Item {item_id} not found")
    return item


def list_items(
    *,
    store_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 10,
) -> dict:
    """
    Paginated item listing.

    search matches name, sku and description case-insensitively.
    """
    q = db.session.query(Item)

    if store_id is not None:
        q = q.filter(Item.store_id == store_id)
    if status:
        if status not in ITEM_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(ITEM_STATUSES)}")
        q = q.filter(Item.status == status)
    if search:
        term = f"%{search.strip().lower()}%"
        q = q.filter(
            or_(
                func.lower(Item.name).like(term),
                func.lower(Item.sku).like(term),
                func.lower(Item.description).like(term),
            )
        )

    total = q.count()
    items = (
        q.order_by(Item.name.asc(), Item.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [i.to_dict() for i in items],
        "count": len(items),
        "pagination": pagination_meta(page, per_page, total),
    }


def low_stock_items(*, store_id: int | None = None) -> list[Item]:
    """Items at or below min_stock_level, emptiest first. Retired items excluded."""
    q = db.session.query(Item).filter(
        Item.quantity <= Item.min_stock_level,
        Item.status != ITEM_STATUS_RETIRED,
    )
    if store_id is not None:
        q = q.filter(Item.store_id == store_id)
    return q.order_by(Item.quantity.asc(), Item.id.asc()).all()


def stock_by_store(store_id: int) -> dict:
    """Stock summary for one store."""
    store = get_store(store_id)

    total_items, total_quantity, low_stock, out_of_stock = (
        db.session.query(
            func.count(Item.id),
            func.coalesce(func.sum(Item.quantity), 0),
            func.coalesce(func.sum(case((Item.quantity <= Item.min_stock_level, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Item.quantity == 0, 1), else_=0)), 0),
        )
        .filter(Item.store_id == store.id)
        .one()
    )

    by_status = dict(
        db.session.query(Item.status, func.count(Item.id))
        .filter(Item.store_id == store.id)
        .group_by(Item.status)
        .all()
    )

    return {
        "store": store.to_dict(),
        "total_items": int(total_items),
        "total_quantity": int(total_quantity),
        "low_stock_count": int(low_stock),
        "out_of_stock_count": int(out_of_stock),
        "by_status": {s: int(by_status.get(s, 0)) for s in ITEM_STATUSES},
    }
