# Overview: Flask API routes for products and warehouses; parses input and returns JSON responses.

# backend/tradeledger/routes/products.py
"""
Catalog routes.

Product edits change master data only. Stock quantities are read-only here
and move through /api/stock and the trade document routes.
"""
from flask import Blueprint, current_app, request

from ..decorators import require_actor
from ..errors import LedgerError, error_response
from ..models import Product
from ..services import products_service, stock_service
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "product_type", "cost_cents", "price_cents",
        "min_stock_alert", "is_active",
    },
    required_on_create={"sku", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")
warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")


@products_bp.get("")
def list_products():
    """
    Query params:
    - search: str (optional) - matches name or SKU
    - active: "1" to hide inactive products
    """
    products = products_service.list_products(
        include_inactive=request.args.get("active") != "1",
        search=request.args.get("search"),
    )
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    try:
        return stock_service.get_product(product_id).to_dict()
    except LedgerError as e:
        return error_response(e)


@products_bp.post("")
@require_actor
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
        return created.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500


@products_bp.put("/<int:product_id>")
@require_actor
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id, patch)
        return updated.to_dict(), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500


@products_bp.get("/<int:product_id>/movements")
def product_movements(product_id: int):
    limit = request.args.get("limit", default=100, type=int)
    try:
        stock_service.get_product(product_id)
    except LedgerError as e:
        return error_response(e)
    movements = stock_service.list_movements(product_id, limit=min(max(limit, 1), 500))
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


# =============================================================================
# WAREHOUSES
# =============================================================================

@warehouses_bp.get("")
def list_warehouses():
    warehouses = products_service.list_warehouses()
    return {"items": [w.to_dict() for w in warehouses], "count": len(warehouses)}


@warehouses_bp.post("")
@require_actor
def create_warehouse_route():
    """
    Request body:
    {
        "code": "MAIN",
        "name": "Main depot",
        "location": "Dakar",   (optional)
        "is_main": true        (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        warehouse = products_service.create_warehouse(
            code=data.get("code"),
            name=data.get("name"),
            location=data.get("location"),
            is_main=bool(data.get("is_main", False)),
        )
        return warehouse.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create warehouse")
        return {"error": "Internal server error"}, 500
