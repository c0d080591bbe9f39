# Overview: Flask API routes for credit notes.

from flask import Blueprint, current_app, g, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError, error_response
from ..services import credit_note_service
from ..validation import coerce_int

credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@credit_notes_bp.get("")
def list_credit_notes():
    notes = credit_note_service.list_credit_notes(party_id=request.args.get("party_id", type=int))
    return {"items": [n.to_dict() for n in notes], "count": len(notes)}


@credit_notes_bp.get("/<int:note_id>")
def get_credit_note(note_id: int):
    try:
        return credit_note_service.get_credit_note(note_id).to_dict()
    except LedgerError as e:
        return error_response(e)


@credit_notes_bp.post("")
@require_actor
def create_credit_note_route():
    """
    Request body (financial):
    {"party_id": 3, "note_type": "financial", "amount_cents": 50000, "reason": "Price dispute"}

    Request body (return):
    {"party_id": 3, "note_type": "return", "warehouse_id": 1, "reason": "Damaged",
     "lines": [{"product_id": 7, "quantity": 1, "unit_price_cents": 150000}]}
    """
    data = request.get_json(silent=True) or {}
    try:
        if data.get("party_id") is None:
            raise ValidationError("party_id is required")
        lines = data.get("lines")
        if lines is not None:
            if not isinstance(lines, list):
                raise ValidationError("lines must be a list")
            lines = [
                {
                    "product_id": coerce_int(line.get("product_id"), f"lines[{i}].product_id"),
                    "quantity": coerce_int(line.get("quantity"), f"lines[{i}].quantity"),
                    "unit_price_cents": coerce_int(line.get("unit_price_cents"), f"lines[{i}].unit_price_cents"),
                }
                for i, line in enumerate(lines)
                if isinstance(line, dict)
            ]
        amount = data.get("amount_cents")
        warehouse_id = data.get("warehouse_id")

        note = credit_note_service.create_credit_note(
            party_id=coerce_int(data["party_id"], "party_id"),
            note_type=data.get("note_type"),
            reason=data.get("reason") or "",
            amount_cents=coerce_int(amount, "amount_cents") if amount is not None else None,
            lines=lines,
            warehouse_id=coerce_int(warehouse_id, "warehouse_id") if warehouse_id is not None else None,
            date=data.get("date"),
            actor_id=g.actor_id,
        )
        return note.to_dict(), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return {"error": "Internal server error"}, 500


@credit_notes_bp.delete("/<int:note_id>")
@require_actor
def delete_credit_note_route(note_id: int):
    data = request.get_json(silent=True) or {}
    try:
        credit_note_service.delete_credit_note(note_id, reason=data.get("reason") or "", actor_id=g.actor_id)
        return {"ok": True}, 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete credit note %s", note_id)
        return {"error": "Internal server error"}, 500
