"""
Trade document tests.

- grand total and payment status are always re-derived
- fulfilment edits revert the old stock effect before applying the new one
- deleting a document undoes its stock effect and reverses its payments
"""

import pytest

from tradeledger.errors import InsufficientStock, NotFound, ValidationError
from tradeledger.models import DeletedPaymentAudit, PaymentRecord, TradeDocument
from tradeledger.services import document_service, stock_service
from tradeledger.services.document_service import derive_payment_status


def _line(product, quantity, price=1_000):
    return [{"product_id": product.id, "quantity": quantity, "unit_price_cents": price}]


class TestDerivedFields:

    @pytest.mark.parametrize("paid,total,expected", [
        (0, 1_000, "PENDING"),
        (400, 1_000, "PARTIAL"),
        (1_000, 1_000, "PAID"),
        (1_200, 1_000, "PAID"),
        (0, 0, "PAID"),
    ])
    def test_derive_payment_status(self, paid, total, expected):
        assert derive_payment_status(paid, total) == expected

    def test_grand_total_includes_shipping(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 3, 1_500), shipping_cents=200,
        )
        assert sale.grand_total_cents == 4_700
        assert sale.payment_status == "PENDING"
        assert sale.reference_number == "FV-00001"

    def test_reference_numbers_are_sequential(self, db_session, customer, product, warehouse):
        first = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 1), fulfilment_status="PENDING",
        )
        second = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 1), fulfilment_status="PENDING",
        )
        assert (first.reference_number, second.reference_number) == ("FV-00001", "FV-00002")

    def test_initial_payment_sets_status(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 2, 1_000),
            initial_payment={"amount_cents": 500, "method": "CASH"},
        )
        assert sale.paid_amount_cents == 500
        assert sale.payment_status == "PARTIAL"
        assert db_session.query(PaymentRecord).filter_by(document_id=sale.id).count() == 1

    def test_sale_requires_customer(self, db_session, supplier, product, warehouse):
        with pytest.raises(ValidationError):
            document_service.record_sale(
                party_id=supplier.id, warehouse_id=warehouse.id,
                lines=_line(product, 1), fulfilment_status="PENDING",
            )

    def test_empty_lines_rejected(self, db_session, customer, warehouse):
        with pytest.raises(ValidationError):
            document_service.record_sale(party_id=customer.id, warehouse_id=warehouse.id, lines=[])


class TestFulfilment:

    def test_pending_sale_does_not_touch_stock(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 4), fulfilment_status="PENDING",
        )
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 10

    def test_edit_completed_sale_reverts_then_applies(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 5),
        )
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 5

        document_service.record_sale(
            document_id=sale.id, party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 7),
        )
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 3

    def test_edit_that_cannot_be_fulfilled_rolls_back(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 5),
        )

        with pytest.raises(InsufficientStock):
            document_service.record_sale(
                document_id=sale.id, party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 11),
            )

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 5
        db_session.expire_all()
        assert db_session.get(TradeDocument, sale.id).lines[0].quantity == 5

    def test_toggle_restores_and_deducts(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 4),
        )

        document_service.set_fulfilment_status(sale.id, "PENDING")
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 10

        document_service.set_fulfilment_status(sale.id, "COMPLETED")
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 6

    def test_warehouse_change_moves_the_effect(self, db_session, customer, product, warehouse, second_warehouse, stock_in):
        stock_in(product, warehouse, 10)
        stock_in(product, second_warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 3),
        )

        document_service.record_sale(
            document_id=sale.id, party_id=customer.id, warehouse_id=second_warehouse.id, lines=_line(product, 3),
        )

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 10
        assert stock_service.quantity_on_hand(product.id, second_warehouse.id) == 7

    def test_service_lines_skip_stock(self, db_session, customer, product, service_product, warehouse, stock_in):
        stock_in(product, warehouse, 2)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id,
            lines=_line(product, 1) + _line(service_product, 3, 500),
        )
        assert sale.grand_total_cents == 2_500
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 1


class TestPurchases:

    def test_purchase_receives_stock(self, db_session, supplier, product, warehouse):
        purchase = document_service.record_purchase(
            party_id=supplier.id, warehouse_id=warehouse.id, lines=_line(product, 8, 900),
        )
        assert purchase.reference_number == "FA-00001"
        assert purchase.fulfilment_status == "COMPLETED"
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 8

    def test_purchase_edit_adjusts_received_quantity(self, db_session, supplier, product, warehouse):
        purchase = document_service.record_purchase(
            party_id=supplier.id, warehouse_id=warehouse.id, lines=_line(product, 8),
        )
        document_service.record_purchase(
            document_id=purchase.id, party_id=supplier.id, warehouse_id=warehouse.id, lines=_line(product, 5),
        )
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 5


class TestDelete:

    def test_delete_completed_sale_restores_stock(self, db_session, customer, product, warehouse, stock_in):
        stock_in(product, warehouse, 10)
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 4),
            initial_payment={"amount_cents": 1_000, "method": "CASH"},
        )

        document_service.delete_document(sale.id, reason="entered twice", actor_id="u1")

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 10
        assert db_session.query(PaymentRecord).count() == 0
        audit = db_session.query(DeletedPaymentAudit).one()
        assert audit.reason == "entered twice"
        assert audit.payment_snapshot["amount_cents"] == 1_000
        with pytest.raises(NotFound):
            document_service.get_document(sale.id)

    def test_delete_purchase_whose_goods_were_sold_fails(self, db_session, supplier, customer, product, warehouse):
        purchase = document_service.record_purchase(
            party_id=supplier.id, warehouse_id=warehouse.id, lines=_line(product, 5),
        )
        document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 3),
        )

        with pytest.raises(InsufficientStock):
            document_service.delete_document(purchase.id, reason="wrong supplier")

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 2

    def test_delete_requires_reason(self, db_session, customer, product, warehouse):
        sale = document_service.record_sale(
            party_id=customer.id, warehouse_id=warehouse.id, lines=_line(product, 1), fulfilment_status="PENDING",
        )
        with pytest.raises(ValidationError):
            document_service.delete_document(sale.id, reason="")
