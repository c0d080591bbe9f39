# Overview: Flask API routes for customers and suppliers; account balances and statements.

from flask import Blueprint, current_app, request

from ..decorators import require_actor
from ..errors import LedgerError, ValidationError, error_response
from ..models import Party
from ..models.parties import PARTY_TYPES
from ..services import party_service
from ..validation import ModelValidationPolicy, enforce_rules_party, validate_payload

PARTY_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=party_service.PARTY_EDITABLE_FIELDS | {
        "party_type", "opening_balance_cents", "opening_balance_date",
    },
    required_on_create={"party_type", "name"},
)
PARTY_UPDATE_POLICY = ModelValidationPolicy(writable_fields=set(party_service.PARTY_EDITABLE_FIELDS))

parties_bp = Blueprint("parties", __name__, url_prefix="/api/parties")


def _party_payload(party: Party) -> dict:
    data = party.to_dict()
    data["balance"] = party_service.balance_summary(party)
    return data


@parties_bp.get("")
def list_parties():
    """
    Query params:
    - type: CUSTOMER | SUPPLIER (optional)
    """
    party_type = request.args.get("type")
    if party_type and party_type.upper() not in PARTY_TYPES:
        return {"error": f"type must be one of {list(PARTY_TYPES)}"}, 400
    parties = party_service.list_parties(party_type.upper() if party_type else None)
    return {"items": [_party_payload(p) for p in parties], "count": len(parties)}


@parties_bp.get("/<int:party_id>")
def get_party(party_id: int):
    try:
        return _party_payload(party_service.get_party(party_id))
    except LedgerError as e:
        return error_response(e)


@parties_bp.post("")
@require_actor
def create_party_route():
    """
    Request body:
    {
        "party_type": "CUSTOMER",
        "name": "Boutique Awa",
        "opening_balance_cents": 150000,             (optional)
        "opening_balance_date": "2024-01-01",        (optional)
        "is_credit_limited": true,                   (optional, customers)
        "credit_limit_cents": 5000000                (required when limited)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        if isinstance(payload.get("party_type"), str):
            payload["party_type"] = payload["party_type"].upper()
        patch = validate_payload(model=Party, payload=payload, policy=PARTY_CREATE_POLICY, partial=False)
        enforce_rules_party(patch)
        if patch.get("opening_balance_cents") is None:
            patch.pop("opening_balance_cents", None)
        party = party_service.create_party(**patch)
        return _party_payload(party), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create party")
        return {"error": "Internal server error"}, 500


@parties_bp.put("/<int:party_id>")
@require_actor
def update_party_route(party_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Party, payload=payload, policy=PARTY_UPDATE_POLICY, partial=True)
        enforce_rules_party(patch)
        if not patch:
            raise ValidationError("nothing to update")
        party = party_service.update_party(party_id, patch)
        return _party_payload(party), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update party")
        return {"error": "Internal server error"}, 500


@parties_bp.get("/<int:party_id>/statement")
def party_statement(party_id: int):
    """Chronological account statement with a running balance (read only)."""
    try:
        return party_service.account_statement(party_id)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build account statement")
        return {"error": "Internal server error"}, 500
