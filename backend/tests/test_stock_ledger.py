"""
Stock ledger tests.

- Quantities never go negative; a rejected change leaves the level untouched
- Service products carry no stock
- Transfers conserve the total across warehouses
- Every applied change leaves a movement row
"""

import pytest

from tradeledger.errors import InsufficientStock, ValidationError
from tradeledger.models import StockLevel, StockMovement
from tradeledger.services import stock_service


class TestAdjustStock:

    def test_addition_creates_level_lazily(self, db_session, product, warehouse):
        assert db_session.query(StockLevel).count() == 0
        stock_service.adjust_stock(
            product_id=product.id, warehouse_id=warehouse.id,
            direction="addition", quantity=12, reason="count", actor_id="u1",
        )
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 12

    def test_subtraction_beyond_stock_is_rejected(self, db_session, product, warehouse, stock_in):
        stock_in(product, warehouse, 3)

        with pytest.raises(InsufficientStock) as exc:
            stock_service.adjust_stock(
                product_id=product.id, warehouse_id=warehouse.id,
                direction="subtraction", quantity=4, reason="breakage",
            )

        assert exc.value.available == 3
        assert exc.value.requested == 4
        assert exc.value.product_name == "Rice 25kg"
        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 3

    def test_reason_is_required(self, db_session, product, warehouse):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(
                product_id=product.id, warehouse_id=warehouse.id,
                direction="addition", quantity=1, reason="  ",
            )

    def test_bad_direction(self, db_session, product, warehouse):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(
                product_id=product.id, warehouse_id=warehouse.id,
                direction="sideways", quantity=1, reason="x",
            )

    def test_service_product_cannot_be_adjusted(self, db_session, service_product, warehouse):
        with pytest.raises(ValidationError):
            stock_service.adjust_stock(
                product_id=service_product.id, warehouse_id=warehouse.id,
                direction="addition", quantity=1, reason="x",
            )

    def test_adjust_is_noop_for_services(self, db_session, service_product, warehouse):
        result = stock_service.adjust(service_product, warehouse.id, -50, movement_type="SALE")
        assert result is None
        assert db_session.query(StockMovement).count() == 0

    def test_movement_recorded(self, db_session, product, warehouse, stock_in):
        stock_in(product, warehouse, 5)
        movement = stock_service.adjust_stock(
            product_id=product.id, warehouse_id=warehouse.id,
            direction="subtraction", quantity=2, reason="damaged", actor_id="u2",
        )
        assert movement.quantity_delta == -2
        assert movement.quantity_after == 3
        assert movement.note == "damaged"
        assert movement.actor_id == "u2"


class TestTransfers:

    def test_transfer_conserves_total(self, db_session, product, warehouse, second_warehouse, stock_in):
        stock_in(product, warehouse, 10)

        stock_service.transfer_stock(
            product_id=product.id,
            from_warehouse_id=warehouse.id,
            to_warehouse_id=second_warehouse.id,
            quantity=4,
        )

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 6
        assert stock_service.quantity_on_hand(product.id, second_warehouse.id) == 4

    def test_transfer_more_than_available_changes_nothing(self, db_session, product, warehouse, second_warehouse, stock_in):
        stock_in(product, warehouse, 2)

        with pytest.raises(InsufficientStock):
            stock_service.transfer_stock(
                product_id=product.id,
                from_warehouse_id=warehouse.id,
                to_warehouse_id=second_warehouse.id,
                quantity=3,
            )

        assert stock_service.quantity_on_hand(product.id, warehouse.id) == 2
        assert stock_service.quantity_on_hand(product.id, second_warehouse.id) == 0

    def test_same_warehouse_rejected(self, db_session, product, warehouse):
        with pytest.raises(ValidationError):
            stock_service.transfer_stock(
                product_id=product.id,
                from_warehouse_id=warehouse.id,
                to_warehouse_id=warehouse.id,
                quantity=1,
            )


class TestLowStock:

    def test_low_stock_lists_products_at_threshold(self, db_session, product, service_product, warehouse, stock_in):
        stock_in(product, warehouse, 2)

        low = stock_service.list_low_stock()

        assert [item["sku"] for item in low] == ["RICE-25"]
        assert low[0]["total_quantity"] == 2

    def test_well_stocked_product_not_listed(self, db_session, product, warehouse, stock_in):
        stock_in(product, warehouse, 3)
        assert stock_service.list_low_stock() == []
