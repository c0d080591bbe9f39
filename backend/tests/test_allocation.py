"""
Debt allocation tests.

Covers ordering (opening balance, then oldest document, target first),
conservation of the paid amount, the settled-epsilon residue rule, surplus
credit and paying out of the credit balance.
"""

from datetime import datetime

import pytest

from tradeledger.errors import InsufficientCredit, NotFound, SurplusConfirmationRequired, ValidationError
from tradeledger.models import Party, PaymentRecord, TradeDocument
from tradeledger.models.parties import PARTY_CUSTOMER
from tradeledger.services import allocation_service, document_service, party_service
from tradeledger.services.allocation_service import Obligation, order_obligations, plan_allocation


def _obligation(key, due, date, kind="DOCUMENT"):
    return Obligation(kind=kind, key=key, due_cents=due, date=date, reference=f"REF-{key}")


def _pending_sale(customer, product, warehouse, amount, date):
    return document_service.record_sale(
        party_id=customer.id, warehouse_id=warehouse.id,
        lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": amount}],
        fulfilment_status="PENDING", date=date,
    )


class TestPlanning:

    def test_conservation_across_amounts(self):
        ordered = [
            _obligation(1, 300, datetime(2024, 1, 1)),
            _obligation(2, 450, datetime(2024, 1, 2)),
        ]
        for amount in (1, 5, 10, 11, 300, 305, 310, 311, 750, 755, 900):
            plan = plan_allocation(amount, ordered)
            assert plan.allocated_cents + plan.surplus_cents == amount

    def test_small_residue_folds_into_first_allocation(self):
        ordered = [_obligation(1, 300, datetime(2024, 1, 1))]
        plan = plan_allocation(305, ordered)
        assert plan.allocations[0][1] == 305
        assert plan.surplus_cents == 0

    def test_large_residue_becomes_surplus(self):
        ordered = [_obligation(1, 300, datetime(2024, 1, 1))]
        plan = plan_allocation(700, ordered)
        assert plan.allocations[0][1] == 300
        assert plan.surplus_cents == 400

    def test_nothing_owed_everything_is_surplus(self):
        plan = plan_allocation(8, [])
        assert plan.allocations == []
        assert plan.surplus_cents == 8

    def test_target_goes_first(self):
        older = _obligation(1, 100, datetime(2024, 1, 1))
        newer = _obligation(2, 100, datetime(2024, 2, 1))
        opening = _obligation("OPENING_BALANCE_1", 100, datetime(2024, 3, 1), kind="OPENING_BALANCE")

        assert [o.key for o in order_obligations([newer, older, opening])] == ["OPENING_BALANCE_1", 1, 2]
        assert [o.key for o in order_obligations([newer, older, opening], target=2)] == [2, 1, "OPENING_BALANCE_1"]

    def test_after_a_target_opening_balance_takes_its_date_turn(self):
        opening = _obligation("OPENING_BALANCE_1", 100, datetime(2023, 12, 31), kind="OPENING_BALANCE")
        older = _obligation(1, 100, datetime(2024, 1, 1))
        newer = _obligation(2, 100, datetime(2024, 2, 1))

        ordered = order_obligations([newer, older, opening], target=2)
        assert [o.key for o in ordered] == [2, "OPENING_BALANCE_1", 1]


class TestAllocatePayment:

    def test_oldest_document_settled_first(self, db_session, customer, product, warehouse):
        old = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        new = _pending_sale(customer, product, warehouse, 1_000, "2024-02-01")

        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_500, method="CASH")

        db_session.expire_all()
        assert db_session.get(TradeDocument, old.id).payment_status == "PAID"
        newer = db_session.get(TradeDocument, new.id)
        assert newer.paid_amount_cents == 500
        assert newer.payment_status == "PARTIAL"
        assert result.surplus_cents == 0
        assert sum(p.amount_cents for p in result.payments) == 1_500

    def test_opening_balance_paid_before_documents(self, db_session, product, warehouse):
        customer = party_service.create_party(
            party_type=PARTY_CUSTOMER, name="Ancien client",
            opening_balance_cents=800, opening_balance_date="2023-12-31",
        )
        sale = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")

        allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")

        assert party_service.opening_balance_remaining(customer) == 0
        db_session.expire_all()
        assert db_session.get(TradeDocument, sale.id).paid_amount_cents == 200

    def test_target_document_is_paid_first(self, db_session, customer, product, warehouse):
        old = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        new = _pending_sale(customer, product, warehouse, 1_000, "2024-02-01")

        result = allocation_service.allocate_payment(
            party_id=customer.id, amount_cents=1_000, method="CASH", target=new.id, note="Versement",
        )

        db_session.expire_all()
        assert db_session.get(TradeDocument, new.id).payment_status == "PAID"
        assert db_session.get(TradeDocument, old.id).paid_amount_cents == 0
        assert [p.note for p in result.payments] == ["Versement"]

    def test_auto_allocated_entries_are_labelled(self, db_session, customer, product, warehouse):
        old = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        new = _pending_sale(customer, product, warehouse, 1_000, "2024-02-01")

        result = allocation_service.allocate_payment(
            party_id=customer.id, amount_cents=1_500, method="CASH", target=new.id,
        )

        notes = [p.note for p in result.payments]
        assert notes[1] == f"Payment (auto-allocated to {old.reference_number})"

    def test_target_then_rest_by_date(self, db_session, product, warehouse):
        customer = party_service.create_party(
            party_type=PARTY_CUSTOMER, name="Client tardif",
            opening_balance_cents=500, opening_balance_date="2024-03-01",
        )
        old = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        new = _pending_sale(customer, product, warehouse, 1_000, "2024-02-01")

        result = allocation_service.allocate_payment(
            party_id=customer.id, amount_cents=2_200, method="CASH", target=new.id,
        )

        assert [p.obligation_ref for p in result.payments] == [
            new.reference_number, old.reference_number, customer.opening_balance_key,
        ]
        assert [p.amount_cents for p in result.payments] == [1_000, 1_000, 200]
        assert party_service.opening_balance_remaining(customer) == 300

    def test_surplus_becomes_credit(self, db_session, customer, product, warehouse):
        _pending_sale(customer, product, warehouse, 700, "2024-01-01")

        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")

        assert result.surplus_cents == 300
        assert result.credit_balance_cents == 300
        deposit = db_session.query(PaymentRecord).filter_by(obligation_type="CREDIT_BALANCE").one()
        assert deposit.amount_cents == 300
        assert deposit.obligation_ref == f"CREDIT_BALANCE_{customer.id}"

    def test_settled_target_rejected(self, db_session, customer, product, warehouse):
        sale = _pending_sale(customer, product, warehouse, 700, "2024-01-01")
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=700, method="CASH")

        with pytest.raises(ValidationError):
            allocation_service.allocate_payment(
                party_id=customer.id, amount_cents=100, method="CASH", target=sale.id,
            )

    def test_foreign_target_not_found(self, db_session, customer, product, warehouse):
        other = party_service.create_party(party_type=PARTY_CUSTOMER, name="Autre")
        sale = _pending_sale(other, product, warehouse, 700, "2024-01-01")

        with pytest.raises(NotFound):
            allocation_service.allocate_payment(
                party_id=customer.id, amount_cents=100, method="CASH", target=sale.id,
            )

    def test_invalid_amount(self, db_session, customer):
        with pytest.raises(ValidationError):
            allocation_service.allocate_payment(party_id=customer.id, amount_cents=0, method="CASH")


class TestCreditBalance:

    def _give_credit(self, db_session, party, cents):
        party = db_session.get(Party, party.id)
        party.credit_balance_cents = cents
        db_session.commit()

    def test_paying_from_credit_consumes_it(self, db_session, customer, product, warehouse):
        sale = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        self._give_credit(db_session, customer, 600)

        allocation_service.allocate_payment(party_id=customer.id, amount_cents=600, method="CREDIT_BALANCE")

        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 0
        assert db_session.get(TradeDocument, sale.id).paid_amount_cents == 600

    def test_insufficient_credit_changes_nothing(self, db_session, customer, product, warehouse):
        sale = _pending_sale(customer, product, warehouse, 1_000, "2024-01-01")
        self._give_credit(db_session, customer, 100)

        with pytest.raises(InsufficientCredit):
            allocation_service.allocate_payment(party_id=customer.id, amount_cents=600, method="CREDIT_BALANCE")

        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 100
        assert db_session.get(TradeDocument, sale.id).paid_amount_cents == 0
        assert db_session.query(PaymentRecord).count() == 0


class TestSurplusConfirmation:

    def test_credit_limited_customer_must_confirm_surplus(self, db_session, product, warehouse):
        customer = party_service.create_party(
            party_type=PARTY_CUSTOMER, name="Client plafonné",
            is_credit_limited=True, credit_limit_cents=50_000,
        )
        _pending_sale(customer, product, warehouse, 700, "2024-01-01")

        with pytest.raises(SurplusConfirmationRequired) as exc:
            allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")
        assert exc.value.total_debt_cents == 700

        result = allocation_service.allocate_payment(
            party_id=customer.id, amount_cents=1_000, method="CASH", confirm_surplus=True,
        )
        assert result.surplus_cents == 300

    def test_supplier_never_needs_confirmation(self, db_session, supplier, product, warehouse):
        document_service.record_purchase(
            party_id=supplier.id, warehouse_id=warehouse.id,
            lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 700}],
        )
        result = allocation_service.allocate_payment(party_id=supplier.id, amount_cents=1_000, method="BANK_TRANSFER")
        assert result.surplus_cents == 300
