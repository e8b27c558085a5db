# Overview: Service-layer operations for inventory; stock checks for inventory-backed sale lines.

# backend/bizops/services/inventory_service.py

"""
Inventory guard invariants (authoritative)

- Only inventory-typed sale lines consult or move stock.
- Stock is checked per inventory item, aggregated over every line of the
  sale that references it, before anything is decremented.
- Check, decrement and the sale insert happen in one storage transaction.
  Rows are read with SELECT ... FOR UPDATE where the database honors it,
  and InventoryItem carries a version column, so a concurrent sale that
  consumed the same stock fails with StaleDataError instead of overselling.
- A voided/cancelled sale restores the quantities its lines consumed.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from ..errors import InsufficientStockError, RecordLookupError
from ..models import InventoryItem, Product
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


def get_inventory_item(
    session: Session,
    business_id: int,
    inventory_item_id: int,
    *,
    lock: bool = False,
) -> InventoryItem:
    query = session.query(InventoryItem).filter_by(id=inventory_item_id, business_id=business_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise RecordLookupError("inventory item", inventory_item_id)
    return item


def get_stock(session: Session, business_id: int, inventory_item_id: int) -> Decimal:
    """Current quantity on hand for an inventory item of the business."""
    item = get_inventory_item(session, business_id, inventory_item_id)
    return Decimal(item.quantity_on_hand)


def ensure_available(
    session: Session,
    business_id: int,
    requirements: dict[int, Decimal],
) -> dict[int, InventoryItem]:
    """
    Verify every inventory item can cover the requested quantity.

    Args:
        requirements: inventory_item_id -> total quantity requested by the sale

    Returns:
        The locked InventoryItem rows keyed by id, for the decrement step.

    Raises:
        RecordLookupError: an item does not exist for the business
        InsufficientStockError: one or more items are short (all are reported)
    """
    items: dict[int, InventoryItem] = {}
    insufficient = []
    for item_id in sorted(requirements):
        item = get_inventory_item(session, business_id, item_id, lock=True)
        items[item_id] = item
        on_hand = Decimal(item.quantity_on_hand)
        requested = requirements[item_id]
        if on_hand < requested:
            insufficient.append({
                "inventory_item_id": item_id,
                "name": item.name,
                "requested_quantity": str(requested),
                "on_hand": str(on_hand),
            })

    if insufficient:
        raise InsufficientStockError(insufficient)
    return items


def consume_stock(items: dict[int, InventoryItem], requirements: dict[int, Decimal]) -> None:
    """Decrement stock for rows previously returned by ensure_available."""
    for item_id, quantity in requirements.items():
        item = items[item_id]
        item.quantity_on_hand = Decimal(item.quantity_on_hand) - quantity


def restore_stock(session: Session, business_id: int, requirements: dict[int, Decimal]) -> None:
    """Return quantities to stock (void/cancel of an inventory-backed sale)."""
    for item_id in sorted(requirements):
        try:
            item = get_inventory_item(session, business_id, item_id, lock=True)
        except RecordLookupError:
            logger.warning(
                "Inventory item %s missing while restoring stock for business %s",
                item_id, business_id,
            )
            continue
        item.quantity_on_hand = Decimal(item.quantity_on_hand) + requirements[item_id]


def sync_product_to_inventory(session: Session, business_id: int, product_id: int) -> InventoryItem:
    """
    Materialize a catalog product into an inventory record on demand.

    Idempotent: a product already linked returns its existing item.
    Does not commit; caller owns the transaction.
    """
    product = session.query(Product).filter_by(id=product_id, business_id=business_id).first()
    if product is None:
        raise RecordLookupError("product", product_id)

    if product.inventory_item_id:
        return get_inventory_item(session, business_id, product.inventory_item_id)

    item = session.query(InventoryItem).filter_by(business_id=business_id, sku=product.sku).first()
    if item is None:
        item = InventoryItem(
            business_id=business_id,
            sku=product.sku,
            name=product.name,
            quantity_on_hand=Decimal("0"),
            cost_price=product.cost_price,
            selling_price=product.unit_price,
        )
        session.add(item)
        session.flush()

    product.inventory_item_id = item.id
    session.flush()
    logger.info("Synced product %s to inventory item %s", product.id, item.id)
    return item
