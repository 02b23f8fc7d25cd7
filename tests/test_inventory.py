import pytest

from common.exceptions import ErrorKind, ValidationError, NotFoundError, ResourceError
from modules.inventory.models import MovementType
from modules.inventory.service import inventory_service


class TestReserveRelease:

    def test_reserve_holds_units(self, db, product):
        inventory_service.reserve(db, product.id, 3, "order", 1)
        stock = inventory_service.get_stock(db, product.id)
        assert stock["stock_quantity"] == 5
        assert stock["reserved_quantity"] == 3
        assert stock["available_quantity"] == 2

    def test_reserve_beyond_available_fails(self, db, product):
        inventory_service.reserve(db, product.id, 4)
        with pytest.raises(ResourceError) as exc:
            inventory_service.reserve(db, product.id, 2)
        assert exc.value.kind == ErrorKind.INSUFFICIENT_STOCK
        assert inventory_service.get_stock(db, product.id)["reserved_quantity"] == 4

    def test_release_is_clamped_at_zero(self, db, product):
        inventory_service.reserve(db, product.id, 2)
        inventory_service.release(db, product.id, 5)
        assert inventory_service.get_stock(db, product.id)["reserved_quantity"] == 0

    def test_release_unknown_product(self, db):
        with pytest.raises(NotFoundError) as exc:
            inventory_service.release(db, 9999, 1)
        assert exc.value.kind == ErrorKind.PRODUCT_NOT_FOUND


class TestDecrementIncrement:

    def test_decrement_never_goes_negative(self, db, product):
        inventory_service.decrement(db, product.id, 5)
        with pytest.raises(ResourceError) as exc:
            inventory_service.decrement(db, product.id, 1)
        assert exc.value.kind == ErrorKind.INSUFFICIENT_STOCK
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 0

    def test_decrement_respects_other_reservations(self, db, product):
        inventory_service.reserve(db, product.id, 4)
        with pytest.raises(ResourceError):
            inventory_service.decrement(db, product.id, 2)
        inventory_service.decrement(db, product.id, 1)
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 4

    def test_increment_restores(self, db, product):
        inventory_service.decrement(db, product.id, 3)
        inventory_service.increment(db, product.id, 3, "cancellation", 7)
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == 5

    def test_commit_reservation_moves_hold_to_sale(self, db, product):
        inventory_service.reserve(db, product.id, 2)
        inventory_service.commit_reservation(db, product.id, 2, "order", 3)
        stock = inventory_service.get_stock(db, product.id)
        assert stock["stock_quantity"] == 3
        assert stock["reserved_quantity"] == 0

    @pytest.mark.parametrize("qty", [0, -1, "2"])
    def test_invalid_quantity(self, db, product, qty):
        with pytest.raises(ValidationError) as exc:
            inventory_service.decrement(db, product.id, qty)
        assert exc.value.kind == ErrorKind.INVALID_QUANTITY

    def test_unknown_product_on_decrement(self, db):
        with pytest.raises(NotFoundError):
            inventory_service.decrement(db, 12345, 1)


class TestMovements:

    def test_every_mutation_is_logged(self, db, product):
        inventory_service.reserve(db, product.id, 2, "order", 1)
        inventory_service.release(db, product.id, 2, "order", 1)
        inventory_service.decrement(db, product.id, 1, "order", 2)
        inventory_service.increment(db, product.id, 1, "return", 4)

        movements = inventory_service.get_movements(db, product.id)
        assert [m.movement_type for m in movements] == [
            MovementType.RESERVE.value,
            MovementType.RELEASE.value,
            MovementType.DECREMENT.value,
            MovementType.INCREMENT.value,
        ]
        assert movements[2].stock_after == 4
        assert movements[3].stock_after == 5
        assert movements[3].reference_type == "return"
        assert movements[3].reference_id == "4"

    def test_ledger_sums_to_current_stock(self, db, product):
        inventory_service.decrement(db, product.id, 2)
        inventory_service.increment(db, product.id, 1)
        inventory_service.decrement(db, product.id, 3)

        decs = inventory_service.get_movements(db, product.id, MovementType.DECREMENT.value)
        incs = inventory_service.get_movements(db, product.id, MovementType.INCREMENT.value)
        expected = 5 - sum(m.quantity for m in decs) + sum(m.quantity for m in incs)
        assert inventory_service.get_stock(db, product.id)["stock_quantity"] == expected == 1
