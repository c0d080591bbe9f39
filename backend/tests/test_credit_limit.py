import pytest

from tradeledger.errors import CreditLimitConfirmationRequired, ValidationError
from tradeledger.models import TradeDocument
from tradeledger.models.parties import PARTY_CUSTOMER, PARTY_SUPPLIER
from tradeledger.services import document_service, party_service


@pytest.fixture
def limited_customer(db_session):
    return party_service.create_party(
        party_type=PARTY_CUSTOMER, name="Quincaillerie Ndiaye",
        is_credit_limited=True, credit_limit_cents=50_000,
    )


def _sale(party, product, warehouse, amount, **kwargs):
    return document_service.record_sale(
        party_id=party.id, warehouse_id=warehouse.id, fulfilment_status="PENDING",
        lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": amount}],
        **kwargs,
    )


class TestCreditLimit:

    def test_sale_over_limit_needs_confirmation(self, db_session, limited_customer, product, warehouse):
        _sale(limited_customer, product, warehouse, 45_000)

        with pytest.raises(CreditLimitConfirmationRequired) as exc:
            _sale(limited_customer, product, warehouse, 10_000)

        assert exc.value.projected_cents == 55_000
        assert exc.value.limit_cents == 50_000
        assert db_session.query(TradeDocument).count() == 1

    def test_confirmed_sale_goes_through(self, db_session, limited_customer, product, warehouse):
        _sale(limited_customer, product, warehouse, 45_000)
        sale = _sale(limited_customer, product, warehouse, 10_000, confirm_over_limit=True)
        assert sale.grand_total_cents == 10_000
        assert party_service.outstanding_balance(limited_customer) == 55_000

    def test_upfront_payment_counts_against_projection(self, db_session, limited_customer, product, warehouse):
        _sale(limited_customer, product, warehouse, 45_000)
        sale = _sale(
            limited_customer, product, warehouse, 10_000,
            initial_payment={"amount_cents": 6_000, "method": "CASH"},
        )
        assert sale.payment_status == "PARTIAL"

    def test_editing_a_sale_excludes_its_old_total(self, db_session, limited_customer, product, warehouse):
        sale = _sale(limited_customer, product, warehouse, 45_000)
        edited = document_service.record_sale(
            document_id=sale.id, party_id=limited_customer.id, warehouse_id=warehouse.id,
            fulfilment_status="PENDING",
            lines=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 50_000}],
        )
        assert edited.grand_total_cents == 50_000

    def test_unlimited_customer_never_warned(self, db_session, customer, product, warehouse):
        _sale(customer, product, warehouse, 10_000_000)


class TestPartyRules:

    def test_limit_only_for_customers(self, db_session):
        with pytest.raises(ValidationError):
            party_service.create_party(
                party_type=PARTY_SUPPLIER, name="Fournisseur", is_credit_limited=True, credit_limit_cents=1_000,
            )

    def test_limited_customer_needs_a_limit(self, db_session):
        with pytest.raises(ValidationError):
            party_service.create_party(party_type=PARTY_CUSTOMER, name="Sans plafond", is_credit_limited=True)

    def test_balance_fields_not_editable(self, db_session, customer):
        with pytest.raises(ValidationError):
            party_service.update_party(customer.id, {"credit_balance_cents": 1_000_000})
