# Overview: Stock ledger; the single entry point for every change to on-hand quantities.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Product, StockLevel, StockMovement, StockTransfer, Warehouse
from ..models.catalog import PRODUCT_TYPE_PHYSICAL
from ..time_utils import utcnow
from .concurrency import run_with_retry

"""
Stock ledger invariants (authoritative)

- On-hand quantity lives in StockLevel(product_id, warehouse_id).
- Every change goes through adjust(): sale fulfilment, purchase receipt,
  manual adjustment, transfer, credit-note return. Nothing else writes
  StockLevel.quantity.
- adjust() rejects a delta that would take the quantity below zero and
  leaves the level untouched.
- StockLevel rows are created lazily at 0 on first adjustment.
- Service products own no stock; adjust() is a no-op for them.
- Each applied delta appends a StockMovement in the same transaction.
"""

MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_REVERSAL = "SALE_REVERSAL"
MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_PURCHASE_REVERSAL = "PURCHASE_REVERSAL"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_RETURN_REVERSAL = "RETURN_REVERSAL"

ADJUST_ADDITION = "addition"
ADJUST_SUBTRACTION = "subtraction"


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product", product_id)
    return product


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFound("Warehouse", warehouse_id)
    return warehouse


def _get_or_create_level(product: Product, warehouse_id: int) -> StockLevel:
    level = (
        db.session.query(StockLevel)
        .filter_by(product_id=product.id, warehouse_id=warehouse_id)
        .first()
    )
    if level is None:
        level = StockLevel(product_id=product.id, warehouse_id=warehouse_id, quantity=0)
        db.session.add(level)
    return level


def adjust(
    product: Product,
    warehouse_id: int,
    delta: int,
    *,
    movement_type: str,
    actor_id: str | None = None,
    note: str | None = None,
    document_id: int | None = None,
    credit_note_id: int | None = None,
    transfer_id: int | None = None,
) -> int | None:
    """
    Apply a signed delta to one product/warehouse quantity.

    Returns the new quantity, or None for service products. Raises
    InsufficientStock (product name, available, requested) when the result
    would be negative. Stages writes only; the coordinator commits.
    """
    if product.is_service:
        return None
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise ValidationError("stock delta must be an integer")

    level = _get_or_create_level(product, warehouse_id)
    current = level.quantity or 0
    if current + delta < 0:
        raise InsufficientStock(product.name, current, -delta, warehouse_id=warehouse_id)

    if delta == 0:
        return current

    level.quantity = current + delta
    db.session.add(StockMovement(
        product_id=product.id,
        warehouse_id=warehouse_id,
        movement_type=movement_type,
        quantity_delta=delta,
        quantity_after=level.quantity,
        document_id=document_id,
        credit_note_id=credit_note_id,
        transfer_id=transfer_id,
        note=note,
        actor_id=actor_id,
        occurred_at=utcnow(),
    ))
    return level.quantity


# =============================================================================
# COORDINATED OPERATIONS
# =============================================================================

def adjust_stock(
    *,
    product_id: int,
    warehouse_id: int,
    direction: str,
    quantity: int,
    reason: str,
    actor_id: str | None = None,
) -> StockMovement:
    """
    Manual stock adjustment (addition or subtraction) with a mandatory reason.

    Raises:
        ValidationError: bad direction/quantity/reason, or a service product
        NotFound: product or warehouse missing
        InsufficientStock: a subtraction larger than the on-hand quantity
    """
    if direction not in (ADJUST_ADDITION, ADJUST_SUBTRACTION):
        raise ValidationError(f"direction must be '{ADJUST_ADDITION}' or '{ADJUST_SUBTRACTION}'")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        product = get_product(product_id)
        get_warehouse(warehouse_id)
        if product.is_service:
            raise ValidationError("service products carry no stock")

        delta = quantity if direction == ADJUST_ADDITION else -quantity
        adjust(
            product,
            warehouse_id,
            delta,
            movement_type=MOVEMENT_ADJUSTMENT,
            actor_id=actor_id,
            note=reason.strip(),
        )
        db.session.flush()
        return (
            db.session.query(StockMovement)
            .filter_by(product_id=product_id, warehouse_id=warehouse_id, movement_type=MOVEMENT_ADJUSTMENT)
            .order_by(StockMovement.id.desc())
            .first()
        )

    return run_with_retry(_op, operation="adjustStock")


def transfer_stock(
    *,
    product_id: int,
    from_warehouse_id: int,
    to_warehouse_id: int,
    quantity: int,
    note: str | None = None,
    actor_id: str | None = None,
) -> StockTransfer:
    """Move stock between two warehouses; both legs commit together or not at all."""
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("source and destination warehouses must differ")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    def _op():
        product = get_product(product_id)
        get_warehouse(from_warehouse_id)
        get_warehouse(to_warehouse_id)
        if product.is_service:
            raise ValidationError("service products carry no stock")

        transfer = StockTransfer(
            product_id=product_id,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            quantity=quantity,
            note=note,
            created_by=actor_id,
            occurred_at=utcnow(),
        )
        db.session.add(transfer)
        db.session.flush()

        adjust(product, from_warehouse_id, -quantity, movement_type=MOVEMENT_TRANSFER_OUT,
               actor_id=actor_id, note=note, transfer_id=transfer.id)
        adjust(product, to_warehouse_id, quantity, movement_type=MOVEMENT_TRANSFER_IN,
               actor_id=actor_id, note=note, transfer_id=transfer.id)
        return transfer

    return run_with_retry(_op, operation="transferStock")


# =============================================================================
# READS
# =============================================================================

def quantity_on_hand(product_id: int, warehouse_id: int) -> int:
    level = (
        db.session.query(StockLevel)
        .filter_by(product_id=product_id, warehouse_id=warehouse_id)
        .first()
    )
    return level.quantity if level else 0


def get_stock_levels(product_id: int) -> list[StockLevel]:
    get_product(product_id)
    return (
        db.session.query(StockLevel)
        .filter_by(product_id=product_id)
        .order_by(StockLevel.warehouse_id)
        .all()
    )


def list_low_stock() -> list[dict]:
    """Physical products whose total on-hand quantity is at or below min_stock_alert."""
    totals = (
        db.session.query(
            Product,
            func.coalesce(func.sum(StockLevel.quantity), 0).label("total"),
        )
        .outerjoin(StockLevel, StockLevel.product_id == Product.id)
        .filter(Product.product_type == PRODUCT_TYPE_PHYSICAL, Product.is_active.is_(True))
        .group_by(Product.id)
        .order_by(Product.name)
        .all()
    )
    return [
        {
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "total_quantity": int(total),
            "min_stock_alert": product.min_stock_alert,
        }
        for product, total in totals
        if int(total) <= product.min_stock_alert
    ]


def list_movements(product_id: int | None = None, limit: int = 100) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.order_by(StockMovement.id.desc()).limit(limit).all()
