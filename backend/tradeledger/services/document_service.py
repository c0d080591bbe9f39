# Overview: Trade document state machine; sale/purchase totals, payment status and fulfilment stock effects.

"""
Trade Document Service

Sales and purchases share one model and one save path. Every write
re-derives grand_total_cents and payment_status from the lines and the paid
amount; a stored status is never trusted.

FULFILMENT AND STOCK:
- A sale deducts stock exactly once, when fulfilment becomes COMPLETED.
- Editing a COMPLETED document first reverts the previous stock effect (old
  lines, old warehouse) and then applies the new one (new lines, new
  warehouse), all in the same coordinated operation. If the new effect
  cannot be satisfied the whole edit is rolled back.
- COMPLETED -> PENDING restores stock; PENDING -> COMPLETED deducts it.
- Purchases are received on creation (always COMPLETED) and mirror the sale
  rules with the opposite sign.
- Deleting a COMPLETED document undoes its stock effect first.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import CreditLimitConfirmationRequired, NotFound, ValidationError
from ..models import Product, TradeDocument, TradeDocumentLine
from ..models.documents import (
    DOC_PURCHASE,
    DOC_SALE,
    FULFILMENT_COMPLETED,
    FULFILMENT_STATUSES,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
)
from ..models.parties import PARTY_CUSTOMER, PARTY_SUPPLIER
from ..models.payments import METHOD_CREDIT_BALANCE, OBLIGATION_DOCUMENT, PAYMENT_METHODS
from ..time_utils import add_days, coerce_datetime, utcnow
from . import party_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import next_reference


# =============================================================================
# PURE DERIVATIONS
# =============================================================================

def derive_payment_status(paid_cents: int, total_cents: int) -> str:
    """
    PAID iff paid >= total; PARTIAL iff 0 < paid < total; else PENDING.

    Pure: depends only on its two arguments, never on a stored status.
    """
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def compute_grand_total(lines, shipping_cents: int = 0) -> int:
    """Sum of line subtotals plus shipping. Lines are mappings with subtotal_cents."""
    return sum(line["subtotal_cents"] for line in lines) + (shipping_cents or 0)


def refresh_payment_status(document: TradeDocument) -> str:
    document.payment_status = derive_payment_status(
        document.paid_amount_cents or 0,
        document.grand_total_cents or 0,
    )
    return document.payment_status


def _positive_int(value, field: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def normalize_lines(lines) -> list[dict]:
    """Validate incoming line items and compute their subtotals."""
    if not lines:
        raise ValidationError("at least one line item is required")

    normalized = []
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"line {index + 1} must be an object")
        product_id = _positive_int(raw.get("product_id"), f"lines[{index}].product_id")
        quantity = _positive_int(raw.get("quantity"), f"lines[{index}].quantity")
        unit_price = raw.get("unit_price_cents")
        if not isinstance(unit_price, int) or isinstance(unit_price, bool) or unit_price < 0:
            raise ValidationError(f"lines[{index}].unit_price_cents must be a non-negative integer")
        normalized.append({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "subtotal_cents": quantity * unit_price,
        })
    return normalized


# =============================================================================
# STOCK EFFECTS
# =============================================================================

_MOVEMENTS = {
    (DOC_SALE, "apply"): (-1, stock_service.MOVEMENT_SALE),
    (DOC_SALE, "revert"): (1, stock_service.MOVEMENT_SALE_REVERSAL),
    (DOC_PURCHASE, "apply"): (1, stock_service.MOVEMENT_PURCHASE),
    (DOC_PURCHASE, "revert"): (-1, stock_service.MOVEMENT_PURCHASE_REVERSAL),
}


def _stock_effect(
    doc_type: str,
    mode: str,
    lines: list[tuple[int, int]],
    warehouse_id: int,
    products: dict[int, Product],
    *,
    document: TradeDocument,
    actor_id: str | None,
) -> None:
    sign, movement_type = _MOVEMENTS[(doc_type, mode)]
    for product_id, quantity in lines:
        stock_service.adjust(
            products[product_id],
            warehouse_id,
            sign * quantity,
            movement_type=movement_type,
            actor_id=actor_id,
            note=document.reference_number,
            document_id=document.id,
        )


def _line_pairs(document: TradeDocument) -> list[tuple[int, int]]:
    return [(line.product_id, line.quantity) for line in document.lines]


# =============================================================================
# SAVE (CREATE / EDIT)
# =============================================================================

_ENTITY_NAMES = {DOC_SALE: "Sale", DOC_PURCHASE: "Purchase"}


def get_document(document_id: int, *, doc_type: str | None = None, lock: bool = False) -> TradeDocument:
    query = db.session.query(TradeDocument).filter_by(id=document_id)
    if lock:
        query = lock_for_update(query)
    document = query.first()
    if document is None or (doc_type is not None and document.doc_type != doc_type):
        raise NotFound(_ENTITY_NAMES.get(doc_type, "Document"), document_id)
    return document


def _settings_snapshot(doc_type: str) -> dict:
    config = current_app.config
    prefix_key = "SALE_REFERENCE_PREFIX" if doc_type == DOC_SALE else "PURCHASE_REFERENCE_PREFIX"
    return {
        "prefix": config.get(prefix_key) or ("FV" if doc_type == DOC_SALE else "FA"),
        "tax_rate_bps": int(config.get("DEFAULT_TAX_RATE_BPS") or 0),
        "currency_symbol": config.get("CURRENCY_SYMBOL"),
    }


def _check_credit_limit(party, document, grand_total: int, paid_after: int) -> None:
    """
    Soft credit-limit warning for credit-limited customers.

    Projected balance = current outstanding (without this document) plus
    what would remain unpaid on this document.
    """
    if not party.is_credit_limited:
        return
    limit = party.credit_limit_cents or 0
    current = party_service.outstanding_balance(
        party,
        exclude_document_id=document.id if document is not None else None,
    )
    projected = current + max(grand_total - paid_after, 0)
    if projected > limit:
        raise CreditLimitConfirmationRequired(projected, limit)


def _save_document(
    *,
    doc_type: str,
    document_id: int | None,
    party_id: int,
    warehouse_id: int,
    lines,
    fulfilment_status: str,
    date,
    shipping_cents: int,
    notes: str | None,
    payment_deadline_days: int | None,
    initial_payment: dict | None,
    confirm_over_limit: bool,
    actor_id: str | None,
) -> TradeDocument:
    expected_party_type = PARTY_CUSTOMER if doc_type == DOC_SALE else PARTY_SUPPLIER
    new_lines = normalize_lines(lines)
    if fulfilment_status not in FULFILMENT_STATUSES:
        raise ValidationError(f"fulfilment_status must be one of {list(FULFILMENT_STATUSES)}")
    if not isinstance(shipping_cents, int) or isinstance(shipping_cents, bool) or shipping_cents < 0:
        raise ValidationError("shipping_cents must be a non-negative integer")
    if payment_deadline_days is not None and (
        not isinstance(payment_deadline_days, int) or payment_deadline_days < 0
    ):
        raise ValidationError("payment_deadline_days must be a non-negative integer")
    try:
        doc_date = coerce_datetime(date)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 datetime")

    initial_amount = 0
    initial_method = None
    if initial_payment:
        initial_amount = initial_payment.get("amount_cents")
        initial_method = initial_payment.get("method")
        if not isinstance(initial_amount, int) or isinstance(initial_amount, bool) or initial_amount <= 0:
            raise ValidationError("initial_payment.amount_cents must be a positive integer")
        if initial_method not in PAYMENT_METHODS:
            raise ValidationError(f"initial_payment.method must be one of {list(PAYMENT_METHODS)}")

    settings = _settings_snapshot(doc_type) if document_id is None else None
    operation = "recordSale" if doc_type == DOC_SALE else "recordPurchase"

    def _op():
        from .payment_service import create_payment_record, next_receipt_ref

        # --- READS ---
        document = None
        if document_id is not None:
            document = get_document(document_id, doc_type=doc_type, lock=True)
        party = party_service.get_party(party_id, lock=True)
        if party.party_type != expected_party_type:
            raise ValidationError(f"party {party_id} is not a {expected_party_type.lower()}")
        stock_service.get_warehouse(warehouse_id)

        old_lines = _line_pairs(document) if document is not None else []
        old_warehouse_id = document.warehouse_id if document is not None else None
        was_completed = document is not None and document.fulfilment_status == FULFILMENT_COMPLETED

        if document is not None and document.party_id != party_id and document.paid_amount_cents:
            raise ValidationError("cannot move a document with payments to another party")

        product_ids = {line["product_id"] for line in new_lines} | {pid for pid, _ in old_lines}
        products = {pid: stock_service.get_product(pid) for pid in sorted(product_ids)}

        # --- COMPUTE ---
        grand_total = compute_grand_total(new_lines, shipping_cents)
        paid_before = document.paid_amount_cents if document is not None else 0
        if doc_type == DOC_SALE and not confirm_over_limit:
            _check_credit_limit(party, document, grand_total, paid_before + initial_amount)

        # --- WRITES ---
        # Outstanding and the credit-limit projection are sums; the party version guards them.
        party.updated_at = utcnow()
        if document is None:
            document = TradeDocument(
                doc_type=doc_type,
                reference_number=next_reference(document_type=doc_type, prefix=settings["prefix"]),
                tax_rate_bps=settings["tax_rate_bps"],
                currency_symbol=settings["currency_symbol"],
                paid_amount_cents=0,
                created_by=actor_id,
            )
            db.session.add(document)

        if was_completed:
            _stock_effect(doc_type, "revert", old_lines, old_warehouse_id, products,
                          document=document, actor_id=actor_id)

        document.party_id = party_id
        document.warehouse_id = warehouse_id
        document.date = doc_date
        document.shipping_cents = shipping_cents
        document.notes = notes
        document.fulfilment_status = fulfilment_status
        document.payment_deadline_days = payment_deadline_days
        document.payment_due_date = add_days(doc_date, payment_deadline_days) if payment_deadline_days else None
        document.lines = [
            TradeDocumentLine(position=i, **line) for i, line in enumerate(new_lines)
        ]
        document.grand_total_cents = grand_total
        document.updated_at = utcnow()
        db.session.flush()

        if fulfilment_status == FULFILMENT_COMPLETED:
            _stock_effect(
                doc_type, "apply",
                [(line["product_id"], line["quantity"]) for line in new_lines],
                warehouse_id, products,
                document=document, actor_id=actor_id,
            )

        if initial_amount:
            if initial_method == METHOD_CREDIT_BALANCE:
                party_service.withdraw_credit(party, initial_amount)
            create_payment_record(
                party=party,
                obligation_type=OBLIGATION_DOCUMENT,
                document=document,
                amount_cents=initial_amount,
                method=initial_method,
                note=initial_payment.get("note") or f"Payment on {document.reference_number}",
                date=doc_date,
                actor_id=actor_id,
                receipt_ref=next_receipt_ref(),
            )
            document.paid_amount_cents = (document.paid_amount_cents or 0) + initial_amount

        refresh_payment_status(document)
        return document

    return run_with_retry(_op, operation=operation)


def record_sale(
    *,
    party_id: int,
    warehouse_id: int,
    lines,
    fulfilment_status: str = FULFILMENT_COMPLETED,
    document_id: int | None = None,
    date=None,
    shipping_cents: int = 0,
    notes: str | None = None,
    payment_deadline_days: int | None = None,
    initial_payment: dict | None = None,
    confirm_over_limit: bool = False,
    actor_id: str | None = None,
) -> TradeDocument:
    """
    Create (document_id=None) or edit a sale.

    Raises:
        InsufficientStock: fulfilment cannot be satisfied at the warehouse
        CreditLimitConfirmationRequired: projected balance above the
            customer's limit and confirm_over_limit is False
        NotFound / ValidationError: bad references or input
    """
    return _save_document(
        doc_type=DOC_SALE,
        document_id=document_id,
        party_id=party_id,
        warehouse_id=warehouse_id,
        lines=lines,
        fulfilment_status=fulfilment_status,
        date=date,
        shipping_cents=shipping_cents,
        notes=notes,
        payment_deadline_days=payment_deadline_days,
        initial_payment=initial_payment,
        confirm_over_limit=confirm_over_limit,
        actor_id=actor_id,
    )


def record_purchase(
    *,
    party_id: int,
    warehouse_id: int,
    lines,
    document_id: int | None = None,
    date=None,
    shipping_cents: int = 0,
    notes: str | None = None,
    payment_deadline_days: int | None = None,
    initial_payment: dict | None = None,
    actor_id: str | None = None,
) -> TradeDocument:
    """Create or edit a purchase. Goods are received into stock immediately."""
    return _save_document(
        doc_type=DOC_PURCHASE,
        document_id=document_id,
        party_id=party_id,
        warehouse_id=warehouse_id,
        lines=lines,
        fulfilment_status=FULFILMENT_COMPLETED,
        date=date,
        shipping_cents=shipping_cents,
        notes=notes,
        payment_deadline_days=payment_deadline_days,
        initial_payment=initial_payment,
        confirm_over_limit=True,
        actor_id=actor_id,
    )


def set_fulfilment_status(document_id: int, fulfilment_status: str, *, actor_id: str | None = None) -> TradeDocument:
    """Toggle a sale between PENDING and COMPLETED without touching its lines."""
    if fulfilment_status not in FULFILMENT_STATUSES:
        raise ValidationError(f"fulfilment_status must be one of {list(FULFILMENT_STATUSES)}")

    def _op():
        document = get_document(document_id, doc_type=DOC_SALE, lock=True)
        if document.fulfilment_status == fulfilment_status:
            return document
        lines = _line_pairs(document)
        products = {pid: stock_service.get_product(pid) for pid, _ in lines}

        mode = "apply" if fulfilment_status == FULFILMENT_COMPLETED else "revert"
        _stock_effect(DOC_SALE, mode, lines, document.warehouse_id, products,
                      document=document, actor_id=actor_id)
        document.fulfilment_status = fulfilment_status
        document.updated_at = utcnow()
        refresh_payment_status(document)
        return document

    return run_with_retry(_op, operation="recordSale")


# =============================================================================
# DELETE
# =============================================================================

def delete_document(document_id: int, *, reason: str, actor_id: str | None = None) -> None:
    """
    Delete a sale or purchase.

    Linked payments are reversed (each leaving a DeletedPaymentAudit with
    ``reason``), the stock effect of a COMPLETED document is undone, then the
    document is removed. Deleting a purchase whose goods have already left
    the warehouse raises InsufficientStock.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        from .payment_service import payments_for_document, reverse_payment_locked

        document = get_document(document_id, lock=True)
        party = party_service.get_party(document.party_id, lock=True)
        payments = payments_for_document(document.id)
        lines = _line_pairs(document)
        products = {pid: stock_service.get_product(pid) for pid, _ in lines}

        for payment in payments:
            reverse_payment_locked(payment, party=party, document=document,
                                   reason=reason.strip(), actor_id=actor_id)
        party.updated_at = utcnow()

        if document.fulfilment_status == FULFILMENT_COMPLETED:
            _stock_effect(document.doc_type, "revert", lines, document.warehouse_id, products,
                          document=document, actor_id=actor_id)

        db.session.flush()
        db.session.delete(document)

    run_with_retry(_op, operation="deleteDocument")


def list_documents(doc_type: str, *, party_id: int | None = None, payment_status: str | None = None) -> list[TradeDocument]:
    q = db.session.query(TradeDocument).filter_by(doc_type=doc_type)
    if party_id is not None:
        q = q.filter_by(party_id=party_id)
    if payment_status:
        q = q.filter_by(payment_status=payment_status)
    return q.order_by(TradeDocument.date.desc(), TradeDocument.id.desc()).all()
