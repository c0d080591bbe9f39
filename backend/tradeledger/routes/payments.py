# Overview: Flask API routes for payments; allocation, reversal and the deletion audit trail.

# backend/tradeledger/routes/payments.py
"""
Payment API Routes

DESIGN:
- POST allocates one incoming amount across the party's open obligations
- DELETE /<id> reverses a single payment record; a reason is mandatory
- DELETE /receipts/<ref> reverses everything one payment wrote, with one audit row
- Reversals are listed under /audits and are never removed
"""

from flask import Blueprint, current_app, g, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError, error_response
from ..services import allocation_service, payment_service
from ..validation import coerce_int

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_actor
def allocate_payment_route():
    """
    Record a payment and auto-allocate it.

    Request body:
    {
        "party_id": 3,
        "amount_cents": 250000,
        "method": "CASH",
        "target": 12,                 (optional: document id or "OPENING_BALANCE")
        "note": "Versement",          (optional)
        "date": "2024-03-05",         (optional)
        "confirm_surplus": false      (optional)
    }

    Returns:
        201: payments written, surplus and resulting credit balance
        400: invalid input
        404: unknown party or target
        409: insufficient credit or confirmation required
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("party_id") is None or data.get("amount_cents") is None:
            raise ValidationError("party_id and amount_cents are required")
        target = data.get("target")
        if target is not None and target != "OPENING_BALANCE":
            target = coerce_int(target, "target")

        result = allocation_service.allocate_payment(
            party_id=coerce_int(data["party_id"], "party_id"),
            amount_cents=coerce_int(data["amount_cents"], "amount_cents"),
            method=data.get("method"),
            target=target,
            note=data.get("note"),
            date=data.get("date"),
            actor_id=g.actor_id,
            confirm_surplus=bool(data.get("confirm_surplus", False)),
        )
        return result.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to allocate payment")
        return {"error": "Internal server error"}, 500


@payments_bp.get("")
def list_payments_route():
    """
    Query params:
    - party_id: int (optional)
    - document_id: int (optional)
    """
    payments = payment_service.list_payments(
        party_id=request.args.get("party_id", type=int),
        document_id=request.args.get("document_id", type=int),
    )
    return {"items": [p.to_dict() for p in payments], "count": len(payments)}


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        return payment_service.get_payment(payment_id).to_dict()
    except LedgerError as e:
        return error_response(e)


@payments_bp.delete("/<int:payment_id>")
@require_actor
def reverse_payment_route(payment_id: int):
    """
    Reverse a payment.

    Request body: {"reason": "Cheque returned"}
    """
    data = request.get_json(silent=True) or {}
    try:
        audit = payment_service.reverse_payment(
            payment_id, reason=data.get("reason") or "", actor_id=g.actor_id
        )
        return audit.to_dict(), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse payment %s", payment_id)
        return {"error": "Internal server error"}, 500


@payments_bp.get("/audits")
def list_audits_route():
    audits = payment_service.list_audits(party_id=request.args.get("party_id", type=int))
    return {"items": [a.to_dict() for a in audits], "count": len(audits)}


@payments_bp.get("/receipts/<string:receipt_ref>")
def get_receipt_route(receipt_ref: str):
    try:
        payments = payment_service.payments_for_receipt(receipt_ref)
        return {
            "receipt_ref": receipt_ref,
            "amount_cents": sum(p.amount_cents for p in payments),
            "payments": [p.to_dict() for p in payments],
        }
    except LedgerError as e:
        return error_response(e)


@payments_bp.delete("/receipts/<string:receipt_ref>")
@require_actor
def reverse_receipt_route(receipt_ref: str):
    """
    Reverse a whole receipt: every document share and any surplus deposit.

    Request body: {"reason": "Typo in amount"}

    Returns:
        200: the audit row
        400: missing reason
        404: unknown receipt
        409: surplus credit already spent
    """
    data = request.get_json(silent=True) or {}
    try:
        audit = payment_service.reverse_receipt(
            receipt_ref, reason=data.get("reason") or "", actor_id=g.actor_id
        )
        return audit.to_dict(), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse receipt %s", receipt_ref)
        return {"error": "Internal server error"}, 500
