# Overview: Flask API routes for sales and purchases; parses input and returns JSON responses.

# backend/tradeledger/routes/documents.py
"""
Trade document routes.

Sales and purchases share one payload shape:
{
    "party_id": 3,
    "warehouse_id": 1,
    "date": "2024-03-01T10:00:00Z",        (optional, defaults to now)
    "lines": [{"product_id": 7, "quantity": 2, "unit_price_cents": 150000}],
    "shipping_cents": 0,                   (optional)
    "payment_deadline_days": 30,           (optional)
    "notes": "...",                        (optional)
    "initial_payment": {"amount_cents": 100000, "method": "CASH"}   (optional)
}

Sales additionally accept "fulfilment_status" (PENDING | COMPLETED) and
"confirm_over_limit" to override the credit-limit warning.
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError, error_response
from ..models.documents import DOC_PURCHASE, DOC_SALE, FULFILMENT_COMPLETED
from ..services import document_service
from ..validation import coerce_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def _optional_int(data: dict, key: str):
    value = data.get(key)
    return None if value is None else coerce_int(value, key)


def _document_args(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    for key in ("party_id", "warehouse_id"):
        if data.get(key) is None:
            raise ValidationError(f"{key} is required")

    lines = data.get("lines")
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")
    parsed_lines = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"line {index + 1} must be an object")
        parsed_lines.append({
            "product_id": coerce_int(line.get("product_id"), f"lines[{index}].product_id"),
            "quantity": coerce_int(line.get("quantity"), f"lines[{index}].quantity"),
            "unit_price_cents": coerce_int(line.get("unit_price_cents"), f"lines[{index}].unit_price_cents"),
        })

    initial_payment = data.get("initial_payment")
    if initial_payment is not None:
        if not isinstance(initial_payment, dict):
            raise ValidationError("initial_payment must be an object")
        initial_payment = {
            "amount_cents": coerce_int(initial_payment.get("amount_cents"), "initial_payment.amount_cents"),
            "method": initial_payment.get("method"),
            "note": initial_payment.get("note"),
        }

    return {
        "party_id": coerce_int(data["party_id"], "party_id"),
        "warehouse_id": coerce_int(data["warehouse_id"], "warehouse_id"),
        "lines": parsed_lines,
        "date": data.get("date"),
        "shipping_cents": _optional_int(data, "shipping_cents") or 0,
        "notes": data.get("notes"),
        "payment_deadline_days": _optional_int(data, "payment_deadline_days"),
        "initial_payment": initial_payment,
    }


def _list(doc_type: str):
    party_id = request.args.get("party_id", type=int)
    payment_status = request.args.get("payment_status")
    documents = document_service.list_documents(doc_type, party_id=party_id, payment_status=payment_status)
    return {"items": [d.to_dict(include_lines=False) for d in documents], "count": len(documents)}


def _delete(document_id: int, doc_type: str):
    data = request.get_json(silent=True) or {}
    try:
        document_service.get_document(document_id, doc_type=doc_type)
        document_service.delete_document(document_id, reason=data.get("reason") or "", actor_id=g.actor_id)
        return {"ok": True}, 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete document %s", document_id)
        return {"error": "Internal server error"}, 500


# =============================================================================
# SALES
# =============================================================================

@sales_bp.get("")
def list_sales():
    return _list(DOC_SALE)


@sales_bp.get("/<int:document_id>")
def get_sale(document_id: int):
    try:
        return document_service.get_document(document_id, doc_type=DOC_SALE).to_dict()
    except LedgerError as e:
        return error_response(e)


def _save_sale(document_id=None):
    data = request.get_json(silent=True) or {}
    try:
        args = _document_args(data)
        document = document_service.record_sale(
            document_id=document_id,
            fulfilment_status=data.get("fulfilment_status") or FULFILMENT_COMPLETED,
            confirm_over_limit=bool(data.get("confirm_over_limit", False)),
            actor_id=g.actor_id,
            **args,
        )
        return document.to_dict(), 201 if document_id is None else 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save sale")
        return {"error": "Internal server error"}, 500


@sales_bp.post("")
@require_actor
def create_sale_route():
    return _save_sale()


@sales_bp.put("/<int:document_id>")
@require_actor
def update_sale_route(document_id: int):
    return _save_sale(document_id)


@sales_bp.post("/<int:document_id>/fulfilment")
@require_actor
def set_fulfilment_route(document_id: int):
    """
    Request body: {"fulfilment_status": "COMPLETED"}

    Deducts stock on PENDING -> COMPLETED, restores it on the way back.
    """
    data = request.get_json(silent=True) or {}
    try:
        document = document_service.set_fulfilment_status(
            document_id, data.get("fulfilment_status"), actor_id=g.actor_id
        )
        return document.to_dict(), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change fulfilment status")
        return {"error": "Internal server error"}, 500


@sales_bp.delete("/<int:document_id>")
@require_actor
def delete_sale_route(document_id: int):
    """Request body: {"reason": "..."}; linked payments are reversed and audited."""
    return _delete(document_id, DOC_SALE)


# =============================================================================
# PURCHASES
# =============================================================================

@purchases_bp.get("")
def list_purchases():
    return _list(DOC_PURCHASE)


@purchases_bp.get("/<int:document_id>")
def get_purchase(document_id: int):
    try:
        return document_service.get_document(document_id, doc_type=DOC_PURCHASE).to_dict()
    except LedgerError as e:
        return error_response(e)


def _save_purchase(document_id=None):
    data = request.get_json(silent=True) or {}
    try:
        document = document_service.record_purchase(
            document_id=document_id, actor_id=g.actor_id, **_document_args(data)
        )
        return document.to_dict(), 201 if document_id is None else 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save purchase")
        return {"error": "Internal server error"}, 500


@purchases_bp.post("")
@require_actor
def create_purchase_route():
    return _save_purchase()


@purchases_bp.put("/<int:document_id>")
@require_actor
def update_purchase_route(document_id: int):
    return _save_purchase(document_id)


@purchases_bp.delete("/<int:document_id>")
@require_actor
def delete_purchase_route(document_id: int):
    return _delete(document_id, DOC_PURCHASE)
