# Overview: Payment ledger; append-only payment records and their audited reversal.

"""
Payment Ledger Service

DESIGN PRINCIPLES:
- A PaymentRecord settles exactly one obligation: a trade document, the
  party's opening balance, or a deposit into the party's credit balance.
- Records written for one incoming payment share a receipt reference
  (e.g. "RC-00004"). reverse_receipt() undoes all of them at once.
- Records are append-only. The only way to remove one is a reversal, which
  undoes its effect and writes a DeletedPaymentAudit in the same
  transaction as the delete.
- Reversal effects by obligation:
    DOCUMENT         paid_amount -= amount (floored at 0), status re-derived
    CREDIT_BALANCE   credit_balance -= amount; CreditInUse if already spent
    OPENING_BALANCE  nothing stored; the remainder is derived on read
  A record paid with method CREDIT_BALANCE also gives the consumed credit
  back (+amount).
- Every reversal stages a write on the party row, so a concurrent
  operation that read the same party fails its version check and retries.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import CreditInUse, NotFound, ValidationError
from ..models import CreditNote, DeletedPaymentAudit, Party, PaymentRecord, TradeDocument
from ..models.payments import (
    OBLIGATION_CREDIT_BALANCE,
    OBLIGATION_DOCUMENT,
    OBLIGATION_OPENING_BALANCE,
    OBLIGATION_TYPES,
    PAYMENT_METHODS,
)
from ..time_utils import coerce_datetime, utcnow
from . import party_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import refresh_payment_status
from .sequence_service import next_reference

RECEIPT_SEQUENCE = "RECEIPT"


def _obligation_ref(party: Party, obligation_type: str, document: TradeDocument | None) -> str:
    if obligation_type == OBLIGATION_DOCUMENT:
        return document.reference_number
    if obligation_type == OBLIGATION_OPENING_BALANCE:
        return party.opening_balance_key
    return party.credit_balance_key


def next_receipt_ref() -> str:
    """Mint a receipt reference inside the caller's coordinated operation."""
    prefix = current_app.config.get("RECEIPT_PREFIX") or "RC"
    return next_reference(document_type=RECEIPT_SEQUENCE, prefix=prefix)


def create_payment_record(
    *,
    party: Party,
    obligation_type: str,
    amount_cents: int,
    method: str,
    document: TradeDocument | None = None,
    note: str | None = None,
    date=None,
    actor_id: str | None = None,
    receipt_ref: str | None = None,
) -> PaymentRecord:
    """
    Append one payment record. Pure append: it does not touch the document
    or the party; callers apply the matching balance change.
    """
    if obligation_type not in OBLIGATION_TYPES:
        raise ValidationError(f"obligation_type must be one of {list(OBLIGATION_TYPES)}")
    if obligation_type == OBLIGATION_DOCUMENT and document is None:
        raise ValidationError("a document obligation requires a document")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"method must be one of {list(PAYMENT_METHODS)}")

    payment = PaymentRecord(
        party_id=party.id,
        obligation_type=obligation_type,
        document_id=document.id if obligation_type == OBLIGATION_DOCUMENT else None,
        obligation_ref=_obligation_ref(party, obligation_type, document),
        date=coerce_datetime(date),
        amount_cents=amount_cents,
        method=method,
        note=note,
        receipt_ref=receipt_ref,
        created_by=actor_id,
    )
    db.session.add(payment)
    return payment


def _snapshot(payment: PaymentRecord) -> dict:
    data = payment.to_dict()
    data["version_id"] = payment.version_id
    return data


def _credit_delta(payment: PaymentRecord) -> int:
    delta = 0
    if payment.obligation_type == OBLIGATION_CREDIT_BALANCE:
        delta -= payment.amount_cents
    if payment.consumed_credit:
        delta += payment.amount_cents
    return delta


def _undo_effects(payments: list[PaymentRecord], *, party: Party, documents: dict) -> None:
    """Take back what ``payments`` did to the party and their documents."""
    credit_delta = sum(_credit_delta(p) for p in payments)
    current_credit = party.credit_balance_cents or 0
    if current_credit + credit_delta < 0:
        raise CreditInUse(current_credit, -credit_delta)

    for payment in payments:
        if payment.obligation_type != OBLIGATION_DOCUMENT:
            continue
        document = documents.get(payment.document_id)
        if document is None:
            document = db.session.get(TradeDocument, payment.document_id)
        if document is None:
            continue
        document.paid_amount_cents = max((document.paid_amount_cents or 0) - payment.amount_cents, 0)
        refresh_payment_status(document)
        document.updated_at = utcnow()

    party.credit_balance_cents = current_credit + credit_delta
    party.updated_at = utcnow()


def reverse_payment_locked(
    payment: PaymentRecord,
    *,
    party: Party,
    reason: str,
    actor_id: str | None = None,
    document: TradeDocument | None = None,
) -> DeletedPaymentAudit:
    """
    Core reversal without retry or commit. Callers hold the party (and the
    document, for DOCUMENT obligations) read inside the same operation.
    """
    documents = {document.id: document} if document is not None else {}
    _undo_effects([payment], party=party, documents=documents)

    audit = DeletedPaymentAudit(
        payment_id=payment.id,
        party_id=payment.party_id,
        receipt_ref=payment.receipt_ref,
        payment_snapshot=_snapshot(payment),
        reason=reason,
        deleted_by=actor_id,
        deleted_at=utcnow(),
    )
    db.session.add(audit)
    db.session.delete(payment)
    return audit


def _reject_credit_note_deposits(payments: list[PaymentRecord]) -> None:
    ids = [p.id for p in payments]
    note = db.session.query(CreditNote).filter(CreditNote.payment_id.in_(ids)).first()
    if note is not None:
        raise ValidationError(
            f"payment {note.payment_id} is the deposit of credit note {note.reference_number}; "
            "delete the credit note instead"
        )


def _lock_documents(payments: list[PaymentRecord]) -> dict:
    ids = sorted({p.document_id for p in payments if p.obligation_type == OBLIGATION_DOCUMENT})
    if not ids:
        return {}
    rows = lock_for_update(db.session.query(TradeDocument).filter(TradeDocument.id.in_(ids))).all()
    return {doc.id: doc for doc in rows}


def reverse_payment(payment_id: int, *, reason: str, actor_id: str | None = None) -> DeletedPaymentAudit:
    """
    Reverse (delete) a single payment record with a mandatory reason.

    Raises:
        ValidationError: empty reason, or the payment is a credit note deposit
        NotFound: the payment no longer exists
        CreditInUse: the deposited credit has already been spent
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required to delete a payment")

    def _op():
        payment = lock_for_update(db.session.query(PaymentRecord).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFound("Payment", payment_id)
        _reject_credit_note_deposits([payment])

        party = party_service.get_party(payment.party_id, lock=True)
        documents = _lock_documents([payment])

        return reverse_payment_locked(
            payment,
            party=party,
            document=documents.get(payment.document_id),
            reason=reason.strip(),
            actor_id=actor_id,
        )

    return run_with_retry(_op, operation="reversePayment")


def reverse_receipt(receipt_ref: str, *, reason: str, actor_id: str | None = None) -> DeletedPaymentAudit:
    """
    Reverse every record of one incoming payment in a single operation.

    Document shares, the opening-balance share and any surplus deposit are
    undone together, and ONE DeletedPaymentAudit keeps the whole receipt.

    Raises:
        ValidationError: empty reason
        NotFound: no record carries this receipt reference
        CreditInUse: the surplus deposit has already been spent
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required to delete a payment")

    def _op():
        # --- READS ---
        payments = lock_for_update(
            db.session.query(PaymentRecord)
            .filter_by(receipt_ref=receipt_ref)
            .order_by(PaymentRecord.id)
        ).all()
        if not payments:
            raise NotFound("Receipt", receipt_ref)
        _reject_credit_note_deposits(payments)

        party = party_service.get_party(payments[0].party_id, lock=True)
        documents = _lock_documents(payments)

        # --- WRITES ---
        _undo_effects(payments, party=party, documents=documents)
        audit = DeletedPaymentAudit(
            payment_id=payments[0].id,
            party_id=party.id,
            receipt_ref=receipt_ref,
            payment_snapshot={
                "receipt_ref": receipt_ref,
                "amount_cents": sum(p.amount_cents for p in payments),
                "method": payments[0].method,
                "payments": [_snapshot(p) for p in payments],
            },
            reason=reason.strip(),
            deleted_by=actor_id,
            deleted_at=utcnow(),
        )
        db.session.add(audit)
        for payment in payments:
            db.session.delete(payment)
        return audit

    return run_with_retry(_op, operation="reverseReceipt")


# =============================================================================
# READS
# =============================================================================

def get_payment(payment_id: int) -> PaymentRecord:
    payment = db.session.get(PaymentRecord, payment_id)
    if payment is None:
        raise NotFound("Payment", payment_id)
    return payment


def payments_for_document(document_id: int) -> list[PaymentRecord]:
    return (
        db.session.query(PaymentRecord)
        .filter_by(obligation_type=OBLIGATION_DOCUMENT, document_id=document_id)
        .order_by(PaymentRecord.date, PaymentRecord.id)
        .all()
    )


def payments_for_receipt(receipt_ref: str) -> list[PaymentRecord]:
    payments = (
        db.session.query(PaymentRecord)
        .filter_by(receipt_ref=receipt_ref)
        .order_by(PaymentRecord.id)
        .all()
    )
    if not payments:
        raise NotFound("Receipt", receipt_ref)
    return payments


def list_payments(*, party_id: int | None = None, document_id: int | None = None) -> list[PaymentRecord]:
    q = db.session.query(PaymentRecord)
    if party_id is not None:
        q = q.filter_by(party_id=party_id)
    if document_id is not None:
        q = q.filter_by(document_id=document_id)
    return q.order_by(PaymentRecord.date.desc(), PaymentRecord.id.desc()).all()


def list_audits(*, party_id: int | None = None) -> list[DeletedPaymentAudit]:
    q = db.session.query(DeletedPaymentAudit)
    if party_id is not None:
        q = q.filter_by(party_id=party_id)
    return q.order_by(DeletedPaymentAudit.deleted_at.desc(), DeletedPaymentAudit.id.desc()).all()
