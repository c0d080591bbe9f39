from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

OBLIGATION_DOCUMENT = "DOCUMENT"
OBLIGATION_OPENING_BALANCE = "OPENING_BALANCE"
OBLIGATION_CREDIT_BALANCE = "CREDIT_BALANCE"
OBLIGATION_TYPES = (OBLIGATION_DOCUMENT, OBLIGATION_OPENING_BALANCE, OBLIGATION_CREDIT_BALANCE)

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_MOBILE_MONEY = "MOBILE_MONEY"
METHOD_CREDIT_BALANCE = "CREDIT_BALANCE"
METHOD_CREDIT_NOTE = "CREDIT_NOTE"
METHOD_OTHER = "OTHER"

PAYMENT_METHODS = (
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_MOBILE_MONEY,
    METHOD_CREDIT_BALANCE,
    METHOD_CREDIT_NOTE,
    METHOD_OTHER,
)

CREDIT_NOTE_FINANCIAL = "financial"
CREDIT_NOTE_RETURN = "return"
CREDIT_NOTE_TYPES = (CREDIT_NOTE_FINANCIAL, CREDIT_NOTE_RETURN)


class PaymentRecord(db.Model):
    """
    One money movement against exactly one obligation.

    OBLIGATION TYPES:
    - DOCUMENT: settles (part of) a sale or purchase; document_id is set
    - OPENING_BALANCE: settles the party's opening debt (synthetic obligation)
    - CREDIT_BALANCE: deposit into the party's credit balance (surplus,
      credit note)

    IMMUTABLE: never edited. Reversal deletes the row and writes a
    DeletedPaymentAudit in the same transaction.

    method == CREDIT_BALANCE means the amount was paid out of the party's
    credit balance rather than with new money.

    receipt_ref groups the records written by one incoming payment (for
    example a document share plus a surplus deposit) so the whole receipt
    can be reversed at once.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.Index("ix_payment_records_party_date", "party_id", "date"),
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)

    obligation_type = db.Column(db.String(32), nullable=False, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey("trade_documents.id"), nullable=True, index=True)
    obligation_ref = db.Column(db.String(64), nullable=False)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    receipt_ref = db.Column(db.String(64), nullable=True, index=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party")
    document = db.relationship("TradeDocument")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def consumed_credit(self) -> bool:
        return self.method == METHOD_CREDIT_BALANCE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_id": self.party_id,
            "obligation_type": self.obligation_type,
            "document_id": self.document_id,
            "obligation_ref": self.obligation_ref,
            "date": to_utc_z(self.date),
            "amount_cents": self.amount_cents,
            "method": self.method,
            "note": self.note,
            "receipt_ref": self.receipt_ref,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class DeletedPaymentAudit(db.Model):
    """
    Permanent record of a reversed payment.

    IMMUTABLE: rows are never updated or deleted. payment_snapshot holds the
    full PaymentRecord as it was at reversal time, or for a whole receipt
    the receipt total plus every record it contained.
    """
    __tablename__ = "deleted_payment_audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, nullable=False, index=True)
    party_id = db.Column(db.Integer, nullable=False, index=True)
    receipt_ref = db.Column(db.String(64), nullable=True, index=True)
    payment_snapshot = db.Column(db.JSON, nullable=False)

    reason = db.Column(db.Text, nullable=False)
    deleted_by = db.Column(db.String(128), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "party_id": self.party_id,
            "receipt_ref": self.receipt_ref,
            "payment": self.payment_snapshot,
            "reason": self.reason,
            "deleted_by": self.deleted_by,
            "deleted_at": to_utc_z(self.deleted_at),
        }


class CreditNote(db.Model):
    """
    Credit granted to a customer or supplier.

    - financial: plain credit of amount_cents
    - return: goods come back into warehouse_id; amount is the sum of lines

    The credit is materialised as a CREDIT_BALANCE deposit PaymentRecord
    (payment_id) so the account statement shows it.
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("reference_number", name="uq_credit_notes_reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference_number = db.Column(db.String(64), nullable=False)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    note_type = db.Column(db.String(16), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey("payment_records.id"), nullable=True, index=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party")
    payment = db.relationship("PaymentRecord")
    lines = db.relationship(
        "CreditNoteLine",
        back_populates="credit_note",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference_number": self.reference_number,
            "party_id": self.party_id,
            "note_type": self.note_type,
            "warehouse_id": self.warehouse_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "payment_id": self.payment_id,
            "date": to_utc_z(self.date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class CreditNoteLine(db.Model):
    __tablename__ = "credit_note_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    credit_note = db.relationship("CreditNote", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }
