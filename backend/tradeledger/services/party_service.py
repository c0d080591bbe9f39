# Overview: Party balance store; opening balance, running debt and credit balance for customers and suppliers.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import InsufficientCredit, NotFound, ValidationError
from ..models import Party, PaymentRecord, TradeDocument
from ..models.documents import DOC_PURCHASE, DOC_SALE
from ..models.parties import PARTY_CUSTOMER, PARTY_SUPPLIER, PARTY_TYPES
from ..models.payments import (
    METHOD_CREDIT_BALANCE,
    OBLIGATION_CREDIT_BALANCE,
    OBLIGATION_OPENING_BALANCE,
)
from ..time_utils import coerce_datetime, to_utc_z
from .concurrency import lock_for_update, run_with_retry

# Amounts at or below this many cents count as settled.
SETTLED_EPSILON_CENTS = 10

PARTY_EDITABLE_FIELDS = {
    "name", "business_name", "contact_person", "email", "phone", "address", "notes",
    "is_credit_limited", "credit_limit_cents",
}


def document_type_for(party: Party) -> str:
    return DOC_SALE if party.party_type == PARTY_CUSTOMER else DOC_PURCHASE


def get_party(party_id: int, *, lock: bool = False) -> Party:
    query = db.session.query(Party).filter_by(id=party_id)
    if lock:
        query = lock_for_update(query)
    party = query.first()
    if party is None:
        raise NotFound("Party", party_id)
    return party


def _validate_credit_limit(party_type: str, is_credit_limited: bool, credit_limit_cents) -> None:
    if not is_credit_limited:
        return
    if party_type != PARTY_CUSTOMER:
        raise ValidationError("credit limits apply to customers only")
    if credit_limit_cents is None or credit_limit_cents < 0:
        raise ValidationError("credit_limit_cents must be >= 0 when the customer is credit-limited")


def create_party(
    *,
    party_type: str,
    name: str,
    opening_balance_cents: int = 0,
    opening_balance_date=None,
    is_credit_limited: bool = False,
    credit_limit_cents: int | None = None,
    **contact,
) -> Party:
    """
    Create a customer or supplier.

    opening_balance_cents is fixed here and never edited afterwards.
    credit_balance_cents always starts at 0.
    """
    if party_type not in PARTY_TYPES:
        raise ValidationError(f"party_type must be one of {list(PARTY_TYPES)}")
    if not name or not str(name).strip():
        raise ValidationError("name is required")
    if not isinstance(opening_balance_cents, int) or opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents must be a non-negative integer")
    _validate_credit_limit(party_type, is_credit_limited, credit_limit_cents)

    unknown = set(contact) - PARTY_EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    try:
        opening_date = coerce_datetime(opening_balance_date) if opening_balance_cents else None
    except ValueError:
        raise ValidationError("opening_balance_date must be an ISO-8601 datetime")

    def _op():
        party = Party(
            party_type=party_type,
            name=str(name).strip(),
            opening_balance_cents=opening_balance_cents,
            opening_balance_date=opening_date,
            credit_balance_cents=0,
            is_credit_limited=bool(is_credit_limited),
            credit_limit_cents=credit_limit_cents if is_credit_limited else None,
            **contact,
        )
        db.session.add(party)
        db.session.flush()
        return party

    return run_with_retry(_op, operation="createParty")


def update_party(party_id: int, patch: dict) -> Party:
    """Edit contact and credit-limit fields. Balance fields are not editable here."""
    unknown = set(patch) - PARTY_EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        party = get_party(party_id, lock=True)
        limited = patch.get("is_credit_limited", party.is_credit_limited)
        limit = patch.get("credit_limit_cents", party.credit_limit_cents)
        _validate_credit_limit(party.party_type, limited, limit)
        for key, value in patch.items():
            setattr(party, key, value)
        if not limited:
            party.credit_limit_cents = None
        return party

    return run_with_retry(_op, operation="updateParty")


def list_parties(party_type: str | None = None) -> list[Party]:
    q = db.session.query(Party)
    if party_type:
        q = q.filter_by(party_type=party_type)
    return q.order_by(Party.name).all()


# =============================================================================
# CREDIT BALANCE (staged writes; callers run inside a coordinated operation)
# =============================================================================

def deposit_credit(party: Party, amount_cents: int) -> int:
    if amount_cents <= 0:
        raise ValidationError("credit deposit must be positive")
    party.credit_balance_cents = (party.credit_balance_cents or 0) + amount_cents
    return party.credit_balance_cents


def withdraw_credit(party: Party, amount_cents: int) -> int:
    if amount_cents <= 0:
        raise ValidationError("credit withdrawal must be positive")
    available = party.credit_balance_cents or 0
    if amount_cents > available:
        raise InsufficientCredit(available, amount_cents)
    party.credit_balance_cents = available - amount_cents
    return party.credit_balance_cents


# =============================================================================
# DERIVED BALANCES
# =============================================================================

def opening_balance_remaining(party: Party) -> int:
    """Opening debt minus every OPENING_BALANCE payment still on the books."""
    paid = (
        db.session.query(func.coalesce(func.sum(PaymentRecord.amount_cents), 0))
        .filter(
            PaymentRecord.party_id == party.id,
            PaymentRecord.obligation_type == OBLIGATION_OPENING_BALANCE,
        )
        .scalar()
    )
    return max((party.opening_balance_cents or 0) - int(paid or 0), 0)


def open_documents(party: Party, *, exclude_document_id: int | None = None) -> list[TradeDocument]:
    q = db.session.query(TradeDocument).filter(
        TradeDocument.party_id == party.id,
        TradeDocument.doc_type == document_type_for(party),
        TradeDocument.grand_total_cents - TradeDocument.paid_amount_cents > SETTLED_EPSILON_CENTS,
    )
    if exclude_document_id is not None:
        q = q.filter(TradeDocument.id != exclude_document_id)
    return q.order_by(TradeDocument.date, TradeDocument.id).all()


def outstanding_balance(party: Party, *, exclude_document_id: int | None = None) -> int:
    """Total the party still owes: opening remainder plus every open document."""
    documents = open_documents(party, exclude_document_id=exclude_document_id)
    return opening_balance_remaining(party) + sum(doc.remaining_cents for doc in documents)


def balance_summary(party: Party) -> dict:
    """
    Display-only balance figures for list views.

    Best-effort: a failing secondary read logs a warning and yields None
    figures instead of failing the request that asked for the party.
    """
    try:
        outstanding = outstanding_balance(party)
    except SQLAlchemyError:
        current_app.logger.warning("Could not compute outstanding balance for party %s", party.id, exc_info=True)
        return {"outstanding_cents": None, "credit_balance_cents": party.credit_balance_cents, "net_cents": None}
    return {
        "outstanding_cents": outstanding,
        "credit_balance_cents": party.credit_balance_cents,
        "net_cents": outstanding - (party.credit_balance_cents or 0),
    }


def account_statement(party_id: int) -> dict:
    """
    Chronological account movements with a running balance.

    Debits increase what the party owes (opening balance, documents); credits
    are money received or credit granted. Payments funded from the credit
    balance move debt into credit and leave the net balance unchanged.
    The closing balance equals outstanding debt minus credit balance.
    """
    party = get_party(party_id)

    movements = []
    if party.opening_balance_cents:
        movements.append({
            "date": party.opening_balance_date or party.created_at,
            "ref": party.opening_balance_key,
            "description": "Opening balance",
            "debit_cents": party.opening_balance_cents,
            "credit_cents": 0,
        })

    documents = (
        db.session.query(TradeDocument)
        .filter_by(party_id=party.id, doc_type=document_type_for(party))
        .all()
    )
    references = {doc.id: doc.reference_number for doc in documents}
    for doc in documents:
        movements.append({
            "date": doc.date,
            "ref": doc.reference_number,
            "description": "Sale invoice" if doc.doc_type == DOC_SALE else "Purchase invoice",
            "debit_cents": doc.grand_total_cents,
            "credit_cents": 0,
        })

    payments = db.session.query(PaymentRecord).filter_by(party_id=party.id).all()
    for payment in payments:
        target = references.get(payment.document_id, payment.obligation_ref)
        if payment.obligation_type == OBLIGATION_CREDIT_BALANCE:
            description = "Credit deposit"
        elif payment.method == METHOD_CREDIT_BALANCE:
            description = f"Credit applied to {target}"
        else:
            description = f"Payment for {target}"

        if payment.method == METHOD_CREDIT_BALANCE:
            # Debt and credit move together; net effect is zero.
            debit, credit = payment.amount_cents, payment.amount_cents
        else:
            debit, credit = 0, payment.amount_cents

        movements.append({
            "date": payment.date,
            "ref": f"PAY-{payment.id}",
            "description": description,
            "debit_cents": debit,
            "credit_cents": credit,
        })

    movements.sort(key=lambda m: m["date"])

    running = 0
    total_debit = 0
    total_credit = 0
    for movement in movements:
        running += movement["debit_cents"] - movement["credit_cents"]
        total_debit += movement["debit_cents"]
        total_credit += movement["credit_cents"]
        movement["balance_cents"] = running
        movement["date"] = to_utc_z(movement["date"])

    return {
        "party": party.to_dict(),
        "movements": movements,
        "summary": {
            "total_debit_cents": total_debit,
            "total_credit_cents": total_credit,
            "balance_cents": running,
        },
    }


__all__ = [
    "PARTY_CUSTOMER",
    "PARTY_SUPPLIER",
    "SETTLED_EPSILON_CENTS",
    "create_party",
    "update_party",
    "get_party",
    "list_parties",
    "deposit_credit",
    "withdraw_credit",
    "opening_balance_remaining",
    "open_documents",
    "outstanding_balance",
    "balance_summary",
    "account_statement",
]
