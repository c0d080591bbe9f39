# Overview: Product and warehouse master data; edits never touch stock quantities.

"""
Catalog Service

Master-data edits (name, cost, price, alert threshold) are plain writes and
never change StockLevel rows; quantities move only through stock_service.
Duplicate SKUs and warehouse codes surface as Conflict.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, ValidationError
from ..models import Product, Warehouse
from ..models.catalog import PRODUCT_TYPES
from ..time_utils import utcnow
from .concurrency import run_with_retry
from .stock_service import get_product, get_warehouse

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "cost_cents", "price_cents", "min_stock_alert", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _sku_taken(sku: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def list_products(*, include_inactive: bool = True, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(*, patch: dict) -> Product:
    """
    Create a product from a validated patch dict.

    product_type is fixed at creation; a service product never holds stock.
    """
    product_type = patch.get("product_type") or "physical"
    if product_type not in PRODUCT_TYPES:
        raise ValidationError(f"product_type must be one of {list(PRODUCT_TYPES)}")

    def _op():
        if _sku_taken(patch["sku"]):
            raise Conflict(f"SKU {patch['sku']} already exists", details={"sku": patch["sku"]})
        p = Product(product_type=product_type)
        apply_product_patch(p, patch)
        db.session.add(p)
        try:
            db.session.flush()
        except IntegrityError:
            raise Conflict(f"SKU {patch['sku']} already exists", details={"sku": patch["sku"]})
        return p

    return run_with_retry(_op, operation="createProduct")


def update_product(product_id: int, patch: dict) -> Product:
    if "product_type" in patch:
        raise ValidationError("product_type cannot be changed")

    def _op():
        p = get_product(product_id)
        if "sku" in patch and _sku_taken(patch["sku"], exclude_id=p.id):
            raise Conflict(f"SKU {patch['sku']} already exists", details={"sku": patch["sku"]})
        apply_product_patch(p, patch)
        p.updated_at = utcnow()
        return p

    return run_with_retry(_op, operation="updateProduct")


def list_warehouses() -> list[Warehouse]:
    return db.session.query(Warehouse).order_by(Warehouse.is_main.desc(), Warehouse.name.asc()).all()


def create_warehouse(*, code: str, name: str, location: str | None = None, is_main: bool = False) -> Warehouse:
    """Create a warehouse. Marking it main clears the flag on every other warehouse."""
    if not code or not str(code).strip():
        raise ValidationError("code is required")
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    code = str(code).strip().upper()

    def _op():
        if db.session.query(Warehouse.id).filter_by(code=code).first() is not None:
            raise Conflict(f"Warehouse code {code} already exists", details={"code": code})
        if is_main:
            db.session.query(Warehouse).filter(Warehouse.is_main.is_(True)).update({"is_main": False})
        w = Warehouse(code=code, name=str(name).strip(), location=location, is_main=bool(is_main))
        db.session.add(w)
        db.session.flush()
        return w

    return run_with_retry(_op, operation="createWarehouse")


def main_warehouse() -> Warehouse | None:
    return (
        db.session.query(Warehouse)
        .order_by(Warehouse.is_main.desc(), Warehouse.id.asc())
        .first()
    )


__all__ = [
    "PRODUCT_MUTABLE_FIELDS",
    "list_products",
    "create_product",
    "update_product",
    "get_product",
    "list_warehouses",
    "create_warehouse",
    "get_warehouse",
    "main_warehouse",
]
