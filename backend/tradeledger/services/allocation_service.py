# Overview: Debt allocation; spreads one incoming payment across a party's open obligations.

"""
Debt Allocation Engine

ORDER OF SETTLEMENT:
Without a target:
1. The opening balance (if anything remains of it).
2. Open documents by date ascending, id as tie-breaker.
With a target (a document or the opening balance the user picked):
1. The target.
2. Everything else purely by date, the opening balance dated by its
   opening_balance_date.

The walk applies min(remaining, due) per obligation and stops once the
remaining amount is within ALLOCATION_EPSILON_CENTS. Whatever is left over
becomes credit on the party's account. Conservation always holds:

    sum(allocations) + surplus == amount

All records written for one payment share a receipt reference, and the
party row is always written so concurrent allocations against the same
party collide on its version check.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..errors import NotFound, SurplusConfirmationRequired, ValidationError
from ..models import Party, PaymentRecord, TradeDocument
from ..models.parties import PARTY_CUSTOMER
from ..models.payments import (
    METHOD_CREDIT_BALANCE,
    METHOD_CREDIT_NOTE,
    OBLIGATION_CREDIT_BALANCE,
    OBLIGATION_DOCUMENT,
    OBLIGATION_OPENING_BALANCE,
    PAYMENT_METHODS,
)
from ..time_utils import coerce_datetime, utcnow
from . import party_service
from .concurrency import run_with_retry
from .document_service import refresh_payment_status
from .payment_service import create_payment_record, next_receipt_ref

ALLOCATION_EPSILON_CENTS = party_service.SETTLED_EPSILON_CENTS


@dataclass
class Obligation:
    kind: str
    key: object
    due_cents: int
    date: datetime | None
    reference: str
    document: TradeDocument | None = None


@dataclass
class AllocationPlan:
    allocations: list[tuple[Obligation, int]] = field(default_factory=list)
    surplus_cents: int = 0

    @property
    def allocated_cents(self) -> int:
        return sum(amount for _, amount in self.allocations)


@dataclass
class AllocationResult:
    payments: list[PaymentRecord]
    surplus_cents: int
    credit_balance_cents: int
    receipt_ref: str | None = None

    def to_dict(self) -> dict:
        return {
            "receipt_ref": self.receipt_ref,
            "payments": [p.to_dict() for p in self.payments],
            "allocated_cents": sum(
                p.amount_cents for p in self.payments if p.obligation_type != OBLIGATION_CREDIT_BALANCE
            ),
            "surplus_cents": self.surplus_cents,
            "credit_balance_cents": self.credit_balance_cents,
        }


# =============================================================================
# PURE PLANNING
# =============================================================================

def list_obligations(party: Party) -> list[Obligation]:
    """Opening balance remainder (if any) plus every open document of the party."""
    obligations = []
    opening_due = party_service.opening_balance_remaining(party)
    if opening_due > 0:
        obligations.append(Obligation(
            kind=OBLIGATION_OPENING_BALANCE,
            key=party.opening_balance_key,
            due_cents=opening_due,
            date=party.opening_balance_date or party.created_at,
            reference=party.opening_balance_key,
        ))
    for document in party_service.open_documents(party):
        obligations.append(Obligation(
            kind=OBLIGATION_DOCUMENT,
            key=document.id,
            due_cents=document.remaining_cents,
            date=document.date,
            reference=document.reference_number,
            document=document,
        ))
    return obligations


def _date_key(obligation: Obligation):
    is_document = obligation.kind == OBLIGATION_DOCUMENT
    date = obligation.date.replace(tzinfo=None) if obligation.date is not None else datetime.min
    return (date, is_document, obligation.key if is_document else 0)


def _opening_first_key(obligation: Obligation):
    return (obligation.kind == OBLIGATION_DOCUMENT,) + _date_key(obligation)


def order_obligations(obligations: list[Obligation], target=None) -> list[Obligation]:
    """
    Opening balance first, then documents oldest first.

    A target jumps the queue and the rest, opening balance included, follow
    in plain date order.
    """
    if target is None:
        return sorted(obligations, key=_opening_first_key)
    ordered = sorted(obligations, key=_date_key)
    chosen = [ob for ob in ordered if ob.key == target]
    rest = [ob for ob in ordered if ob.key != target]
    return chosen + rest


def plan_allocation(amount_cents: int, ordered: list[Obligation], epsilon: int = ALLOCATION_EPSILON_CENTS) -> AllocationPlan:
    plan = AllocationPlan()
    remaining = amount_cents
    for obligation in ordered:
        if remaining <= epsilon:
            break
        applied = min(remaining, obligation.due_cents)
        if applied <= 0:
            continue
        plan.allocations.append((obligation, applied))
        remaining -= applied

    if plan.allocations and 0 < remaining <= epsilon:
        first, applied = plan.allocations[0]
        plan.allocations[0] = (first, applied + remaining)
        remaining = 0

    plan.surplus_cents = remaining
    return plan


# =============================================================================
# COORDINATED OPERATION
# =============================================================================

def _resolve_target(party: Party, target):
    """Normalise a target to an obligation key, or raise for a foreign/missing one."""
    if target is None:
        return None
    if target in (OBLIGATION_OPENING_BALANCE, party.opening_balance_key):
        return party.opening_balance_key
    if isinstance(target, bool) or not isinstance(target, int):
        raise ValidationError("target must be a document id or 'OPENING_BALANCE'")
    document = db.session.get(TradeDocument, target)
    if document is None or document.party_id != party.id:
        raise NotFound("Document", target)
    return document.id


def allocate_payment(
    *,
    party_id: int,
    amount_cents: int,
    method: str,
    target=None,
    note: str | None = None,
    date=None,
    actor_id: str | None = None,
    confirm_surplus: bool = False,
) -> AllocationResult:
    """
    Record an incoming (customer) or outgoing (supplier) payment and spread it
    over the party's open obligations.

    ``target`` is a document id or "OPENING_BALANCE". Paying with method
    CREDIT_BALANCE draws the full amount from the party's credit first.

    Raises:
        ValidationError: bad amount/method, or a target that is already settled
        NotFound: unknown party or target document
        InsufficientCredit: CREDIT_BALANCE payment larger than the credit
        SurplusConfirmationRequired: credit-limited customer overpaying
            without confirm_surplus
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if method not in PAYMENT_METHODS or method == METHOD_CREDIT_NOTE:
        raise ValidationError(f"method must be one of {[m for m in PAYMENT_METHODS if m != METHOD_CREDIT_NOTE]}")
    try:
        paid_at = coerce_datetime(date)
    except ValueError:
        raise ValidationError("date must be an ISO-8601 datetime")

    def _op():
        # --- READS ---
        party = party_service.get_party(party_id, lock=True)
        target_key = _resolve_target(party, target)
        obligations = list_obligations(party)
        if target_key is not None and not any(ob.key == target_key for ob in obligations):
            raise ValidationError(f"{target} has nothing left to pay")

        # --- COMPUTE ---
        ordered = order_obligations(obligations, target_key)
        plan = plan_allocation(amount_cents, ordered)

        if (
            plan.surplus_cents > 0
            and party.party_type == PARTY_CUSTOMER
            and party.is_credit_limited
            and not confirm_surplus
        ):
            total_debt = sum(ob.due_cents for ob in obligations)
            raise SurplusConfirmationRequired(plan.surplus_cents, total_debt)

        # --- WRITES ---
        if method == METHOD_CREDIT_BALANCE:
            party_service.withdraw_credit(party, amount_cents)
        # Remainders are derived from payment sums; the version bump guards them.
        party.updated_at = utcnow()
        receipt_ref = next_receipt_ref()

        payments = []
        base_note = note.strip() if note and note.strip() else None
        for obligation, applied in plan.allocations:
            line_note = base_note
            if target_key is None or obligation.key != target_key:
                line_note = f"{base_note or 'Payment'} (auto-allocated to {obligation.reference})"

            payments.append(create_payment_record(
                party=party,
                obligation_type=obligation.kind,
                document=obligation.document,
                amount_cents=applied,
                method=method,
                note=line_note,
                date=paid_at,
                actor_id=actor_id,
                receipt_ref=receipt_ref,
            ))
            if obligation.document is not None:
                document = obligation.document
                document.paid_amount_cents = (document.paid_amount_cents or 0) + applied
                refresh_payment_status(document)
                document.updated_at = utcnow()

        if plan.surplus_cents > 0:
            payments.append(create_payment_record(
                party=party,
                obligation_type=OBLIGATION_CREDIT_BALANCE,
                amount_cents=plan.surplus_cents,
                method=method,
                note=f"{base_note or 'Payment'} (surplus credited)",
                date=paid_at,
                actor_id=actor_id,
                receipt_ref=receipt_ref,
            ))
            party_service.deposit_credit(party, plan.surplus_cents)

        db.session.flush()
        return AllocationResult(
            payments=payments,
            receipt_ref=receipt_ref,
            surplus_cents=plan.surplus_cents,
            credit_balance_cents=party.credit_balance_cents,
        )

    return run_with_retry(_op, operation="allocatePayment")
