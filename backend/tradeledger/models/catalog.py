from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

PRODUCT_TYPE_PHYSICAL = "physical"
PRODUCT_TYPE_SERVICE = "service"
PRODUCT_TYPES = (PRODUCT_TYPE_PHYSICAL, PRODUCT_TYPE_SERVICE)


class Warehouse(db.Model):
    """Physical stock location. Products hold one StockLevel per warehouse."""
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    is_main = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "location": self.location,
            "is_main": self.is_main,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    On-hand quantities live in StockLevel rows, one per warehouse, and are
    only ever changed through stock_service.adjust(). Editing cost, price or
    name through the product routes never touches StockLevel.

    Service products carry no stock at all: adjust() is a no-op for them.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    product_type = db.Column(db.String(16), nullable=False, default=PRODUCT_TYPE_PHYSICAL)

    # Authoritative storage in cents
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    min_stock_alert = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stock_levels = db.relationship(
        "StockLevel",
        back_populates="product",
        lazy=True,
        order_by="StockLevel.warehouse_id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_service(self) -> bool:
        return self.product_type == PRODUCT_TYPE_SERVICE

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self, include_stock: bool = True) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "product_type": self.product_type,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "min_stock_alert": self.min_stock_alert,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_stock and not self.is_service:
            data["stock_levels"] = [level.to_dict() for level in self.stock_levels]
            data["total_quantity"] = sum(level.quantity for level in self.stock_levels)
        return data


class StockLevel(db.Model):
    """
    On-hand quantity of one product in one warehouse.

    INVARIANT: quantity >= 0 at rest. Enforced in stock_service.adjust() and
    backed by a CHECK constraint. version_id makes every write a
    compare-and-swap so two concurrent adjustments cannot both win.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", name="uq_stock_levels_product_warehouse"),
        db.CheckConstraint("quantity >= 0", name="quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="stock_levels")
    warehouse = db.relationship("Warehouse")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only audit of every delta applied by the stock ledger.

    MOVEMENT TYPES:
    - SALE / SALE_REVERSAL: sale fulfilment and its undo
    - PURCHASE / PURCHASE_REVERSAL: purchase receipt and its undo
    - ADJUSTMENT: manual addition/subtraction with a reason
    - TRANSFER_OUT / TRANSFER_IN: inter-warehouse transfer legs
    - RETURN / RETURN_REVERSAL: goods returned on a credit note
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    document_id = db.Column(db.Integer, nullable=True, index=True)
    credit_note_id = db.Column(db.Integer, nullable=True, index=True)
    transfer_id = db.Column(db.Integer, nullable=True, index=True)

    note = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.String(128), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "document_id": self.document_id,
            "credit_note_id": self.credit_note_id,
            "transfer_id": self.transfer_id,
            "note": self.note,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockTransfer(db.Model):
    """Inter-warehouse transfer of a single product (both legs post immediately)."""
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.CheckConstraint("from_warehouse_id <> to_warehouse_id", name="distinct_warehouses"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(128), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "quantity": self.quantity,
            "note": self.note,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }
