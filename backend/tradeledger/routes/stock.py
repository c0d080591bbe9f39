# Overview: Flask API routes for manual stock adjustments, transfers and low-stock alerts.

from flask import Blueprint, current_app, g, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError, error_response
from ..services import stock_service
from ..validation import coerce_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _required_int(data: dict, key: str) -> int:
    if data.get(key) is None:
        raise ValidationError(f"{key} is required")
    return coerce_int(data[key], key)


@stock_bp.post("/adjustments")
@require_actor
def adjust_stock_route():
    """
    Request body:
    {
        "product_id": 7,
        "warehouse_id": 1,
        "direction": "addition" | "subtraction",
        "quantity": 5,
        "reason": "Inventory count"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        movement = stock_service.adjust_stock(
            product_id=_required_int(data, "product_id"),
            warehouse_id=_required_int(data, "warehouse_id"),
            direction=data.get("direction"),
            quantity=_required_int(data, "quantity"),
            reason=data.get("reason") or "",
            actor_id=g.actor_id,
        )
        return movement.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500


@stock_bp.post("/transfers")
@require_actor
def transfer_stock_route():
    data = request.get_json(silent=True) or {}
    try:
        transfer = stock_service.transfer_stock(
            product_id=_required_int(data, "product_id"),
            from_warehouse_id=_required_int(data, "from_warehouse_id"),
            to_warehouse_id=_required_int(data, "to_warehouse_id"),
            quantity=_required_int(data, "quantity"),
            note=data.get("note"),
            actor_id=g.actor_id,
        )
        return transfer.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return {"error": "Internal server error"}, 500


@stock_bp.get("/low")
def low_stock_route():
    items = stock_service.list_low_stock()
    return {"items": items, "count": len(items)}


@stock_bp.get("/levels/<int:product_id>")
def stock_levels_route(product_id: int):
    try:
        levels = stock_service.get_stock_levels(product_id)
    except LedgerError as e:
        return error_response(e)
    return {"items": [level.to_dict() for level in levels], "count": len(levels)}
