"""
Payment reversal tests.

Reversal must undo exactly what the payment did, write an audit row in the
same transaction, and refuse to take back credit that was already spent.
"""

import pytest

from tradeledger.errors import CreditInUse, NotFound, ValidationError
from tradeledger.models import DeletedPaymentAudit, Party, PaymentRecord, TradeDocument
from tradeledger.models.parties import PARTY_CUSTOMER
from tradeledger.services import allocation_service, document_service, party_service, payment_service


def _sale(customer, product, warehouse, amount, **kwargs):
    return document_service.record_sale(
        party_id=customer.id, warehouse_id=warehouse.id,
        lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": amount}],
        fulfilment_status="PENDING", **kwargs,
    )


class TestReversePayment:

    def test_reversal_restores_document_status(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 1_000)
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=400, method="CASH")
        second = allocation_service.allocate_payment(party_id=customer.id, amount_cents=600, method="CASH")

        db_session.expire_all()
        assert db_session.get(TradeDocument, sale.id).payment_status == "PAID"

        payment_service.reverse_payment(second.payments[0].id, reason="cheque bounced", actor_id="u1")

        db_session.expire_all()
        doc = db_session.get(TradeDocument, sale.id)
        assert doc.paid_amount_cents == 400
        assert doc.payment_status == "PARTIAL"

    def test_audit_row_written(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 1_000)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="MOBILE_MONEY")
        payment_id = result.payments[0].id

        audit = payment_service.reverse_payment(payment_id, reason="duplicate entry", actor_id="u7")

        assert db_session.get(PaymentRecord, payment_id) is None
        stored = db_session.query(DeletedPaymentAudit).one()
        assert stored.id == audit.id
        assert stored.reason == "duplicate entry"
        assert stored.deleted_by == "u7"
        assert stored.payment_snapshot["method"] == "MOBILE_MONEY"
        assert stored.payment_snapshot["amount_cents"] == 1_000

    def test_reason_required(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 1_000)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=500, method="CASH")

        with pytest.raises(ValidationError):
            payment_service.reverse_payment(result.payments[0].id, reason="   ")

    def test_missing_payment(self, db_session):
        with pytest.raises(NotFound):
            payment_service.reverse_payment(4242, reason="gone")

    def test_reversing_spent_credit_deposit_fails(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 700, date="2024-01-01")
        first = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")
        deposit = next(p for p in first.payments if p.obligation_type == "CREDIT_BALANCE")

        _sale(customer, product, warehouse, 300, date="2024-02-01")
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=300, method="CREDIT_BALANCE")

        with pytest.raises(CreditInUse):
            payment_service.reverse_payment(deposit.id, reason="mistake")

        assert db_session.get(PaymentRecord, deposit.id) is not None
        assert db_session.query(DeletedPaymentAudit).count() == 0

    def test_reversing_unspent_deposit_removes_credit(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 700)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")
        deposit = next(p for p in result.payments if p.obligation_type == "CREDIT_BALANCE")

        payment_service.reverse_payment(deposit.id, reason="refunded in cash")

        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 0

    def test_reversing_credit_funded_payment_gives_credit_back(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 1_000)
        party = db_session.get(Party, customer.id)
        party.credit_balance_cents = 500
        db_session.commit()

        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=500, method="CREDIT_BALANCE")
        payment_service.reverse_payment(result.payments[0].id, reason="applied to the wrong invoice")

        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 500
        assert db_session.get(TradeDocument, sale.id).paid_amount_cents == 0

    def test_opening_balance_reversal_reopens_the_debt(self, db_session):
        customer = party_service.create_party(
            party_type=PARTY_CUSTOMER, name="Ancien", opening_balance_cents=900,
        )
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=900, method="CASH")
        assert party_service.opening_balance_remaining(customer) == 0

        payment_service.reverse_payment(result.payments[0].id, reason="cash never received")

        assert party_service.opening_balance_remaining(customer) == 900


class TestReverseReceipt:

    def test_one_receipt_covers_every_record_of_a_payment(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 700)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")

        assert result.receipt_ref
        assert {p.receipt_ref for p in result.payments} == {result.receipt_ref}
        assert len(payment_service.payments_for_receipt(result.receipt_ref)) == 2

    def test_separate_payments_get_separate_receipts(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 1_000)
        first = allocation_service.allocate_payment(party_id=customer.id, amount_cents=300, method="CASH")
        second = allocation_service.allocate_payment(party_id=customer.id, amount_cents=300, method="CASH")
        assert first.receipt_ref != second.receipt_ref

    def test_receipt_reversal_undoes_document_share_and_surplus(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 700)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")

        audit = payment_service.reverse_receipt(result.receipt_ref, reason="wrong customer", actor_id="u3")

        db_session.expire_all()
        assert db_session.get(TradeDocument, sale.id).payment_status == "PENDING"
        assert db_session.get(Party, customer.id).credit_balance_cents == 0
        assert db_session.query(PaymentRecord).count() == 0
        stored = db_session.query(DeletedPaymentAudit).one()
        assert stored.id == audit.id
        assert stored.receipt_ref == result.receipt_ref
        assert stored.payment_snapshot["amount_cents"] == 1_000
        assert [p["amount_cents"] for p in stored.payment_snapshot["payments"]] == [700, 300]

    def test_credit_funded_receipt_gives_back_only_what_it_used(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 400)
        party = db_session.get(Party, customer.id)
        party.credit_balance_cents = 1_000
        db_session.commit()

        result = allocation_service.allocate_payment(
            party_id=customer.id, amount_cents=1_000, method="CREDIT_BALANCE", confirm_surplus=True,
        )
        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 600

        payment_service.reverse_receipt(result.receipt_ref, reason="applied by mistake")

        db_session.expire_all()
        assert db_session.get(Party, customer.id).credit_balance_cents == 1_000
        assert db_session.get(TradeDocument, sale.id).paid_amount_cents == 0

    def test_spent_surplus_blocks_the_whole_receipt(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 700, date="2024-01-01")
        first = allocation_service.allocate_payment(party_id=customer.id, amount_cents=1_000, method="CASH")
        _sale(customer, product, warehouse, 300, date="2024-02-01")
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=300, method="CREDIT_BALANCE")

        with pytest.raises(CreditInUse):
            payment_service.reverse_receipt(first.receipt_ref, reason="mistake")

        db_session.expire_all()
        assert db_session.get(TradeDocument, sale.id).payment_status == "PAID"
        assert db_session.query(DeletedPaymentAudit).count() == 0

    def test_unknown_receipt(self, db_session):
        with pytest.raises(NotFound):
            payment_service.reverse_receipt("RC-99999", reason="gone")

    def test_receipt_reason_required(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 700)
        result = allocation_service.allocate_payment(party_id=customer.id, amount_cents=700, method="CASH")
        with pytest.raises(ValidationError):
            payment_service.reverse_receipt(result.receipt_ref, reason="")


class TestReadHelpers:

    def test_list_payments_by_document(self, db_session, customer, product, warehouse):
        sale = _sale(customer, product, warehouse, 1_000)
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=300, method="CASH")
        allocation_service.allocate_payment(party_id=customer.id, amount_cents=200, method="CARD")

        payments = payment_service.list_payments(document_id=sale.id)
        assert sorted(p.amount_cents for p in payments) == [200, 300]
        assert payment_service.payments_for_document(sale.id)[0].amount_cents == 300
