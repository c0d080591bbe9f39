from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DOC_SALE = "SALE"
DOC_PURCHASE = "PURCHASE"
DOC_TYPES = (DOC_SALE, DOC_PURCHASE)

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

FULFILMENT_PENDING = "PENDING"
FULFILMENT_COMPLETED = "COMPLETED"
FULFILMENT_STATUSES = (FULFILMENT_PENDING, FULFILMENT_COMPLETED)


class TradeDocument(db.Model):
    """
    Sale or purchase document.

    DERIVED FIELDS (recomputed by document_service on every write):
    - grand_total_cents = sum(line subtotals) + shipping_cents
    - payment_status from (paid_amount_cents, grand_total_cents)

    paid_amount_cents only moves through PaymentRecords (allocation and
    reversal). Overpayment is allowed.

    FULFILMENT:
    - Sales: PENDING or COMPLETED; stock is deducted exactly once on the
      transition to COMPLETED.
    - Purchases: always COMPLETED (goods are received on creation).
    """
    __tablename__ = "trade_documents"
    __table_args__ = (
        db.UniqueConstraint("reference_number", name="uq_trade_documents_reference"),
        db.Index("ix_trade_documents_party_date", "party_id", "date"),
        db.Index("ix_trade_documents_type_status", "doc_type", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    doc_type = db.Column(db.String(16), nullable=False, index=True)
    reference_number = db.Column(db.String(64), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)

    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    fulfilment_status = db.Column(db.String(16), nullable=False, default=FULFILMENT_PENDING)

    payment_deadline_days = db.Column(db.Integer, nullable=True)
    payment_due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Settings snapshot taken when the document is created
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    currency_symbol = db.Column(db.String(16), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    party = db.relationship("Party")
    warehouse = db.relationship("Warehouse")
    lines = db.relationship(
        "TradeDocumentLine",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="TradeDocumentLine.position",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_cents(self) -> int:
        return self.grand_total_cents - self.paid_amount_cents

    def __repr__(self) -> str:
        return f"<TradeDocument id={self.id} {self.doc_type} ref={self.reference_number!r}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "doc_type": self.doc_type,
            "reference_number": self.reference_number,
            "date": to_utc_z(self.date),
            "party_id": self.party_id,
            "warehouse_id": self.warehouse_id,
            "shipping_cents": self.shipping_cents,
            "grand_total_cents": self.grand_total_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_cents": self.remaining_cents,
            "payment_status": self.payment_status,
            "fulfilment_status": self.fulfilment_status,
            "payment_deadline_days": self.payment_deadline_days,
            "payment_due_date": to_utc_z(self.payment_due_date),
            "tax_rate_bps": self.tax_rate_bps,
            "currency_symbol": self.currency_symbol,
            "notes": self.notes,
            "created_by": self.created_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class TradeDocumentLine(db.Model):
    """Line item on a trade document. Replaced wholesale when the document is edited."""
    __tablename__ = "trade_document_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="line_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("trade_documents.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    document = db.relationship("TradeDocument", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class DocumentSequence(db.Model):
    """Per document-type counter used to mint human-readable reference numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
