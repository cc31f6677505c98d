# Overview: Pytest coverage for the stock adjustment lifecycle.

import pytest

from stockcore.errors import InsufficientStockError, NotFoundError, ProductNotFoundError, ValidationError
from stockcore.models import StockAdjustment, StockMovement
from stockcore.services import adjustment_service, stock_service
from stockcore.services.movement_service import REASON_ADJUSTMENT, REASON_ADJUSTMENT_REVERSAL, REASON_SALE

from conftest import quantity_of


def _adjust(tenant, product, adjustment_type, quantity, reason="Damaged in storage", **kwargs):
    return adjustment_service.create_adjustment(
        tenant_id=tenant.id,
        product_id=product.id,
        adjustment_type=adjustment_type,
        quantity=quantity,
        reason=reason,
        **kwargs,
    )


class TestCreateAdjustment:

    def test_increase(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "increase", 5, actor_id=3)
        assert adjustment.previous_quantity == 10
        assert adjustment.new_quantity == 15
        assert quantity_of(product_a.id) == 15

        movement = (
            db_session.query(StockMovement)
            .filter_by(reference_type="stock_adjustment", reference_id=adjustment.id)
            .one()
        )
        assert movement.reason == REASON_ADJUSTMENT
        assert movement.movement_type == "increase"
        assert movement.created_by_user_id == 3

    def test_decrease(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "decrease", 7)
        assert adjustment.new_quantity == 3
        product = stock_service.get_stock_record(tenant_a.id, product_a.id)
        assert product.stock_status == "low_stock"

    def test_decrease_beyond_stock_rolls_back(self, db_session, tenant_a, product_a):
        with pytest.raises(InsufficientStockError) as exc:
            _adjust(tenant_a, product_a, "decrease", 11)
        assert exc.value.available == 10
        assert quantity_of(product_a.id) == 10
        assert db_session.query(StockAdjustment).count() == 0

    def test_decrease_checks_current_stock(self, db_session, tenant_a, product_a):
        stock_service.decrease_stock(tenant_id=tenant_a.id, product_id=product_a.id, quantity=8, reason=REASON_SALE)
        with pytest.raises(InsufficientStockError):
            _adjust(tenant_a, product_a, "decrease", 3)

    @pytest.mark.parametrize("kwargs", [
        {"adjustment_type": "increase", "quantity": 0, "reason": "x"},
        {"adjustment_type": "increase", "quantity": -2, "reason": "x"},
        {"adjustment_type": "increase", "quantity": 1, "reason": "   "},
        {"adjustment_type": "increase", "quantity": 1, "reason": "r" * 101},
        {"adjustment_type": "recount", "quantity": 1, "reason": "x"},
    ])
    def test_validation(self, db_session, tenant_a, product_a, kwargs):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(tenant_id=tenant_a.id, product_id=product_a.id, **kwargs)

    def test_missing_product(self, db_session, tenant_a):
        with pytest.raises(ProductNotFoundError):
            adjustment_service.create_adjustment(
                tenant_id=tenant_a.id, product_id=4242, adjustment_type="increase", quantity=1, reason="x",
            )


class TestReverseAdjustment:

    def test_reversal_restores_quantity(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "increase", 4)
        assert quantity_of(product_a.id) == 14

        reversed_adjustment = adjustment_service.reverse_adjustment(
            tenant_id=tenant_a.id, adjustment_id=adjustment.id, actor_id=8,
        )
        assert reversed_adjustment.is_reversed
        assert quantity_of(product_a.id) == 10

        reversal = (
            db_session.query(StockMovement)
            .filter_by(reason=REASON_ADJUSTMENT_REVERSAL, reference_id=adjustment.id)
            .one()
        )
        assert reversal.movement_type == "decrease"
        assert reversal.quantity == 4

    def test_second_reversal_is_not_found(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "decrease", 2)
        adjustment_service.delete_adjustment(tenant_id=tenant_a.id, adjustment_id=adjustment.id)
        assert quantity_of(product_a.id) == 10

        with pytest.raises(NotFoundError):
            adjustment_service.delete_adjustment(tenant_id=tenant_a.id, adjustment_id=adjustment.id)
        assert quantity_of(product_a.id) == 10
        assert db_session.query(StockMovement).filter_by(reason=REASON_ADJUSTMENT_REVERSAL).count() == 1

    def test_reversing_consumed_increase_fails_cleanly(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "increase", 5)
        stock_service.decrease_stock(tenant_id=tenant_a.id, product_id=product_a.id, quantity=13, reason=REASON_SALE)

        with pytest.raises(InsufficientStockError):
            adjustment_service.reverse_adjustment(tenant_id=tenant_a.id, adjustment_id=adjustment.id)

        # Claim rolled back with the failed decrement
        assert adjustment_service.get_adjustment(tenant_a.id, adjustment.id).deleted_at is None
        assert quantity_of(product_a.id) == 2

    def test_other_tenant_cannot_reverse(self, db_session, tenant_a, tenant_b, product_a):
        adjustment = _adjust(tenant_a, product_a, "increase", 1)
        with pytest.raises(NotFoundError):
            adjustment_service.reverse_adjustment(tenant_id=tenant_b.id, adjustment_id=adjustment.id)


class TestUpdateAndRead:

    def test_reason_and_notes_editable(self, db_session, tenant_a, product_a):
        adjustment = _adjust(tenant_a, product_a, "increase", 2)
        updated = adjustment_service.update_adjustment(
            tenant_id=tenant_a.id,
            adjustment_id=adjustment.id,
            changes={"reason": "Found in back room", "notes": "aisle 4"},
            actor_id=5,
        )
        assert updated.reason == "Found in back room"
        assert updated.notes == "aisle 4"
        assert updated.updated_by_user_id == 5
        assert quantity_of(product_a.id) == 12

    @pytest.mark.parametrize("changes", [{"quantity": 9}, {"adjustment_type": "decrease"}, {"reason": ""}])
    def test_frozen_fields_and_empty_reason_rejected(self, db_session, tenant_a, product_a, changes):
        adjustment = _adjust(tenant_a, product_a, "increase", 2)
        with pytest.raises(ValidationError):
            adjustment_service.update_adjustment(tenant_id=tenant_a.id, adjustment_id=adjustment.id, changes=changes)

    def test_list_excludes_reversed_and_filters(self, db_session, tenant_a, product_a, product_a2):
        kept = _adjust(tenant_a, product_a, "increase", 1, reason="Supplier bonus")
        gone = _adjust(tenant_a, product_a2, "decrease", 1, reason="Broken")
        adjustment_service.reverse_adjustment(tenant_id=tenant_a.id, adjustment_id=gone.id)

        listed = adjustment_service.list_adjustments(tenant_a.id)
        assert [a.id for a in listed] == [kept.id]

        assert adjustment_service.list_adjustments(tenant_a.id, reason="bonus")[0].id == kept.id
        assert adjustment_service.list_adjustments(tenant_a.id, adjustment_type="decrease") == []
        assert adjustment_service.list_adjustments(tenant_a.id, product_id=product_a2.id) == []

        with pytest.raises(NotFoundError):
            adjustment_service.get_adjustment(tenant_a.id, gone.id)
        assert adjustment_service.get_adjustment(tenant_a.id, gone.id, include_reversed=True).is_reversed
