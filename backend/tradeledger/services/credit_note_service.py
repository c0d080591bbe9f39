# Overview: Credit notes; financial credits and goods returns materialised as credit-balance deposits.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import CreditInUse, NotFound, ValidationError
from ..models import CreditNote, CreditNoteLine
from ..models.parties import PARTY_CUSTOMER
from ..models.payments import (
    CREDIT_NOTE_FINANCIAL,
    CREDIT_NOTE_RETURN,
    CREDIT_NOTE_TYPES,
    METHOD_CREDIT_NOTE,
    OBLIGATION_CREDIT_BALANCE,
)
from ..time_utils import coerce_datetime
from . import party_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import normalize_lines
from .payment_service import create_payment_record, reverse_payment_locked
from .sequence_service import next_reference

CREDIT_NOTE_SEQUENCE = "CREDIT_NOTE"


def _return_sign(party) -> int:
    # Customers send goods back to us; we send goods back to suppliers.
    return 1 if party.party_type == PARTY_CUSTOMER else -1


def create_credit_note(
    *,
    party_id: int,
    note_type: str,
    reason: str,
    amount_cents: int | None = None,
    lines=None,
    warehouse_id: int | None = None,
    date=None,
    actor_id: str | None = None,
) -> CreditNote:
    """
    Grant credit to a party.

    financial: amount_cents > 0 is credited as is.
    return: goods come back through warehouse_id; the credited amount is the
    sum of the line subtotals and any amount_cents passed in is ignored.

    Raises:
        ValidationError: bad type, amount, lines, or missing reason/warehouse
        NotFound: unknown party, warehouse or product
        InsufficientStock: a supplier return larger than the stock on hand
    """
    if note_type not in CREDIT_NOTE_TYPES:
        raise ValidationError(f"note_type must be one of {list(CREDIT_NOTE_TYPES)}")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    normalized = []
    if note_type == CREDIT_NOTE_RETURN:
        if warehouse_id is None:
            raise ValidationError("a return credit note requires a warehouse")
        normalized = normalize_lines(lines)
        amount = sum(line["subtotal_cents"] for line in normalized)
        if amount <= 0:
            raise ValidationError("returned lines must carry a positive total")
    else:
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer")
        amount = amount_cents

    try:
        note_date = coerce_datetime(date)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 datetime")

    prefix = current_app.config.get("CREDIT_NOTE_PREFIX") or "AVOIR"

    def _op():
        # --- READS ---
        party = party_service.get_party(party_id, lock=True)
        products = {}
        if note_type == CREDIT_NOTE_RETURN:
            stock_service.get_warehouse(warehouse_id)
            products = {
                pid: stock_service.get_product(pid)
                for pid in sorted({line["product_id"] for line in normalized})
            }

        # --- WRITES ---
        note = CreditNote(
            reference_number=next_reference(document_type=CREDIT_NOTE_SEQUENCE, prefix=prefix),
            party_id=party.id,
            note_type=note_type,
            warehouse_id=warehouse_id if note_type == CREDIT_NOTE_RETURN else None,
            amount_cents=amount,
            reason=reason.strip(),
            date=note_date,
            created_by=actor_id,
            lines=[CreditNoteLine(**line) for line in normalized],
        )
        db.session.add(note)

        deposit = create_payment_record(
            party=party,
            obligation_type=OBLIGATION_CREDIT_BALANCE,
            amount_cents=amount,
            method=METHOD_CREDIT_NOTE,
            note=f"Credit note {note.reference_number}",
            date=note_date,
            actor_id=actor_id,
        )
        party_service.deposit_credit(party, amount)
        note.payment = deposit
        db.session.flush()

        sign = _return_sign(party)
        for line in normalized:
            stock_service.adjust(
                products[line["product_id"]],
                warehouse_id,
                sign * line["quantity"],
                movement_type=stock_service.MOVEMENT_RETURN,
                actor_id=actor_id,
                note=note.reference_number,
                credit_note_id=note.id,
            )
        return note

    return run_with_retry(_op, operation="createCreditNote")


def delete_credit_note(note_id: int, *, reason: str, actor_id: str | None = None) -> None:
    """
    Cancel a credit note: take the credit back, undo any returned stock, and
    audit the reversed deposit. Raises CreditInUse once the credit is spent.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        note = lock_for_update(db.session.query(CreditNote).filter_by(id=note_id)).first()
        if note is None:
            raise NotFound("CreditNote", note_id)
        party = party_service.get_party(note.party_id, lock=True)

        available = party.credit_balance_cents or 0
        if available < note.amount_cents:
            raise CreditInUse(available, note.amount_cents)

        lines = list(note.lines)
        products = {line.product_id: stock_service.get_product(line.product_id) for line in lines}
        deposit = note.payment

        sign = -_return_sign(party)
        for line in lines:
            stock_service.adjust(
                products[line.product_id],
                note.warehouse_id,
                sign * line.quantity,
                movement_type=stock_service.MOVEMENT_RETURN_REVERSAL,
                actor_id=actor_id,
                note=note.reference_number,
                credit_note_id=note.id,
            )

        if deposit is not None:
            note.payment = None
            db.session.flush()
            reverse_payment_locked(deposit, party=party, reason=reason.strip(), actor_id=actor_id)
        else:
            party_service.withdraw_credit(party, note.amount_cents)

        db.session.delete(note)

    run_with_retry(_op, operation="deleteCreditNote")


def get_credit_note(note_id: int) -> CreditNote:
    note = db.session.get(CreditNote, note_id)
    if note is None:
        raise NotFound("CreditNote", note_id)
    return note


def list_credit_notes(party_id: int | None = None) -> list[CreditNote]:
    q = db.session.query(CreditNote)
    if party_id is not None:
        q = q.filter_by(party_id=party_id)
    return q.order_by(CreditNote.date.desc(), CreditNote.id.desc()).all()


__all__ = [
    "CREDIT_NOTE_FINANCIAL",
    "CREDIT_NOTE_RETURN",
    "create_credit_note",
    "delete_credit_note",
    "get_credit_note",
    "list_credit_notes",
]
