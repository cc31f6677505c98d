# Overview: Pytest coverage for the order fulfillment engine.

from decimal import Decimal

import pytest

from stockcore.errors import (
    AlreadyVoidedError,
    HasActivePaymentsError,
    InsufficientStockError,
    NotFoundError,
    OrderVoidedError,
    PaymentCheckUnavailableError,
    ProductNotFoundError,
    ValidationError,
)
from stockcore.models import Order, Product, StockMovement
from stockcore.services import order_service, payment_service, stock_service
from stockcore.services.movement_service import REASON_ORDER_VOID, REASON_SALE
from stockcore.services.order_service import compute_order_totals

from conftest import quantity_of

USER = 77


def _order(tenant, *lines, **kwargs):
    return order_service.create_order(
        tenant_id=tenant.id,
        user_id=kwargs.pop("user_id", USER),
        lines=[{"product_id": p.id, "quantity": q} for p, q in lines],
        **kwargs,
    )


class TestTotals:

    def test_scenario_c_percentage_discount(self):
        """$100 subtotal, 10% off, 8% tax on the pre-discount subtotal -> $98."""
        totals = compute_order_totals(
            [{"product_id": 1, "quantity": 1, "unit_price_cents": 10000, "tax_rate_bps": 800}],
            "percentage", 10,
        )
        assert totals.subtotal_cents == 10000
        assert totals.tax_cents == 800
        assert totals.discount_cents == 1000
        assert totals.total_cents == 9800

    def test_fixed_discount_clamped_to_subtotal(self):
        totals = compute_order_totals(
            [{"product_id": 1, "quantity": 2, "unit_price_cents": 300, "tax_rate_bps": 1000}],
            "fixed", 5000,
        )
        assert totals.discount_cents == 600
        assert totals.total_cents == 60

    def test_tax_rounded_half_up_per_line(self):
        totals = compute_order_totals([
            {"product_id": 1, "quantity": 1, "unit_price_cents": 125, "tax_rate_bps": 1000},
            {"product_id": 2, "quantity": 1, "unit_price_cents": 125, "tax_rate_bps": 1000},
        ])
        assert [line.line_tax_cents for line in totals.lines] == [13, 13]
        assert totals.tax_cents == 26

    def test_fractional_percentage(self):
        totals = compute_order_totals(
            [{"product_id": 1, "quantity": 1, "unit_price_cents": 999, "tax_rate_bps": 0}],
            "percentage", "12.5",
        )
        assert totals.discount_cents == 125

    @pytest.mark.parametrize("discount_type,value", [
        ("percentage", 101),
        ("percentage", -1),
        ("fixed", "10.5"),
        ("coupon", 5),
        ("fixed", "abc"),
    ])
    def test_bad_discount(self, discount_type, value):
        with pytest.raises(ValidationError):
            compute_order_totals(
                [{"product_id": 1, "quantity": 1, "unit_price_cents": 100, "tax_rate_bps": 0}],
                discount_type, value,
            )


class TestCreateOrder:

    def test_create_decrements_each_line(self, db_session, tenant_a, product_a, product_a2):
        order = _order(tenant_a, (product_a, 3), (product_a2, 5), actor_id=4)

        assert quantity_of(product_a.id) == 7
        assert quantity_of(product_a2.id) == 15

        movements = _order_movements(db_session, order.id)
        assert {(m.product_id, m.quantity) for m in movements} == {(product_a.id, 3), (product_a2.id, 5)}
        assert all(m.reason == REASON_SALE and m.movement_type == "decrease" for m in movements)
        assert all(m.created_by_user_id == 4 for m in movements)

    def test_line_snapshot(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 2))
        product = db_session.get(Product, product_a.id)
        product.name = "Renamed"
        product.tax_rate_bps = 0
        db_session.commit()

        order = order_service.get_order(tenant_a.id, order.id)
        line = order.lines[0]
        assert line.product_name == "Product A"
        assert line.tax_rate_bps == 800
        assert line.line_subtotal_cents == 2000
        assert line.line_tax_cents == 160
        assert order.total_cents == 2160

    def test_explicit_unit_price(self, db_session, tenant_a, product_a):
        order = order_service.create_order(
            tenant_id=tenant_a.id, user_id=USER,
            lines=[{"product_id": product_a.id, "quantity": 1, "unit_price_cents": 800}],
        )
        assert order.subtotal_cents == 800

    def test_insufficient_line_rolls_back_everything(self, db_session, tenant_a, product_a, product_a2):
        with pytest.raises(InsufficientStockError) as exc:
            _order(tenant_a, (product_a2, 5), (product_a, 11))
        assert "Insufficient stock for product Product A" in exc.value.message

        assert quantity_of(product_a2.id) == 20
        assert db_session.query(Order).count() == 0

    def test_duplicate_product_lines_cannot_oversell(self, db_session, tenant_a, product_a):
        """Each line passes on its own; together they exceed stock."""
        with pytest.raises(InsufficientStockError):
            _order(tenant_a, (product_a, 6), (product_a, 6))
        assert quantity_of(product_a.id) == 10
        assert db_session.query(Order).count() == 0

    def test_exact_stock_leaves_out_of_stock(self, db_session, tenant_a, product_a):
        _order(tenant_a, (product_a, 10))
        product = stock_service.get_stock_record(tenant_a.id, product_a.id)
        assert product.quantity == 0
        assert product.stock_status == "out_of_stock"

    def test_missing_product(self, db_session, tenant_a, product_a):
        with pytest.raises(ProductNotFoundError):
            order_service.create_order(
                tenant_id=tenant_a.id, user_id=USER, lines=[{"product_id": 31337, "quantity": 1}],
            )

    @pytest.mark.parametrize("lines", [[], None, [{"product_id": 1, "quantity": 0}], [{"quantity": 1}]])
    def test_bad_lines(self, db_session, tenant_a, lines):
        with pytest.raises(ValidationError):
            order_service.create_order(tenant_id=tenant_a.id, user_id=USER, lines=lines)

    def test_discount_stored(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 1), discount_type="percentage", discount_value="10")
        assert order.discount_type == "percentage"
        assert order.discount_value == Decimal("10")
        assert order.discount_cents == 100
        assert order.total_cents == 1000 + 80 - 100


class TestUpdateOrder:

    def test_update_recomputes_totals_without_moving_stock(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 2))

        updated = order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"lines": [{"product_id": product_a.id, "quantity": 5}]},
            actor_id=9,
        )
        assert updated.subtotal_cents == 5000
        assert updated.tax_cents == 400
        assert updated.stock_review_required is True
        assert updated.updated_by_user_id == 9
        assert [line.quantity for line in updated.lines] == [5]
        assert quantity_of(product_a.id) == 8

    def test_discount_only_update(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 1))
        updated = order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"discount_type": "fixed", "discount_value": 250, "label_ids": ["vip"]},
        )
        assert updated.discount_cents == 250
        assert updated.total_cents == 1000 + 80 - 250
        assert updated.label_ids == ["vip"]
        assert updated.stock_review_required is False

    def test_same_quantities_not_flagged(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 2))
        updated = order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"lines": [{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 900}]},
        )
        assert updated.subtotal_cents == 1800
        assert updated.stock_review_required is False

    def test_voided_order_is_immutable(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 1))
        order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        with pytest.raises(OrderVoidedError):
            order_service.update_order(tenant_id=tenant_a.id, order_id=order.id, changes={"label_ids": []})

    def test_update_rejects_unknown_product(self, db_session, tenant_a, product_a, product_b):
        order = _order(tenant_a, (product_a, 2))

        for product_id in (987654, product_b.id):
            with pytest.raises(ProductNotFoundError):
                order_service.update_order(
                    tenant_id=tenant_a.id,
                    order_id=order.id,
                    changes={"lines": [{"product_id": product_id, "quantity": 4}]},
                )

        unchanged = order_service.get_order(tenant_a.id, order.id)
        assert [(line.product_id, line.quantity) for line in unchanged.lines] == [(product_a.id, 2)]
        assert unchanged.stock_review_required is False

    def test_update_keeps_snapshot_for_product_that_left_catalog(self, db_session, tenant_a, tenant_b, product_a):
        order = _order(tenant_a, (product_a, 2))
        db_session.query(Product).filter_by(id=product_a.id).update(
            {"tenant_id": tenant_b.id}, synchronize_session=False,
        )
        db_session.commit()

        updated = order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"lines": [{"product_id": product_a.id, "quantity": 3}]},
        )
        [line] = updated.lines
        assert line.product_name == "Product A"
        assert line.unit_price_cents == 1000
        assert line.tax_rate_bps == 0


class TestVoidOrder:

    def test_round_trip_restores_stock(self, db_session, tenant_a, product_a, product_a2):
        order = _order(tenant_a, (product_a, 4), (product_a2, 6))
        voided = order_service.void_order(tenant_id=tenant_a.id, order_id=order.id, actor_id=3, reason="Customer cancelled")

        assert voided.is_voided
        assert voided.voided_by_user_id == 3
        assert voided.void_reason == "Customer cancelled"
        assert voided.voided_at is not None
        assert quantity_of(product_a.id) == 10
        assert quantity_of(product_a2.id) == 20

        restores = db_session.query(StockMovement).filter_by(reason=REASON_ORDER_VOID, reference_id=order.id).all()
        assert sorted(m.quantity for m in restores) == [4, 6]

    def test_void_twice(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 4))
        order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        with pytest.raises(AlreadyVoidedError):
            order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 10

    def test_active_payment_blocks_void(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 1))
        payment = payment_service.record_payment(tenant_id=tenant_a.id, order_id=order.id, amount_cents=1080)

        with pytest.raises(HasActivePaymentsError):
            order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 9
        assert not order_service.get_order(tenant_a.id, order.id).is_voided

        payment_service.reverse_payment(tenant_id=tenant_a.id, payment_id=payment.id, reason="mistake")
        assert order_service.void_order(tenant_id=tenant_a.id, order_id=order.id).is_voided

    def test_refunded_payment_does_not_block(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 1))
        payment = payment_service.record_payment(tenant_id=tenant_a.id, order_id=order.id, amount_cents=500)
        payment_service.refund_payment(tenant_id=tenant_a.id, payment_id=payment.id)
        assert order_service.void_order(tenant_id=tenant_a.id, order_id=order.id).is_voided

    def test_payment_check_failure_fails_closed(self, db_session, tenant_a, product_a, monkeypatch):
        order = _order(tenant_a, (product_a, 2))

        def broken(*args, **kwargs):
            raise RuntimeError("payments unavailable")

        monkeypatch.setattr(order_service, "has_active_payments", broken)
        with pytest.raises(PaymentCheckUnavailableError):
            order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 8

    def test_payment_check_failure_can_fail_open(self, app, db_session, tenant_a, product_a, monkeypatch):
        order = _order(tenant_a, (product_a, 2))

        def broken(*args, **kwargs):
            raise RuntimeError("payments unavailable")

        monkeypatch.setattr(order_service, "has_active_payments", broken)
        app.config["VOID_PAYMENT_CHECK_FAIL_OPEN"] = True
        assert order_service.void_order(tenant_id=tenant_a.id, order_id=order.id).is_voided
        assert quantity_of(product_a.id) == 10

    def test_void_skips_products_that_no_longer_exist(self, db_session, tenant_a, tenant_b, product_a, product_a2):
        order = _order(tenant_a, (product_a, 1), (product_a2, 2))
        # Gone from tenant A's catalog
        db_session.query(Product).filter_by(id=product_a2.id).update(
            {"tenant_id": tenant_b.id}, synchronize_session=False,
        )
        db_session.commit()

        voided = order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert voided.is_voided
        assert quantity_of(product_a.id) == 10
        assert quantity_of(product_a2.id) == 18

    def test_void_after_quantity_edit_restores_what_was_taken(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 2))
        order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"lines": [{"product_id": product_a.id, "quantity": 7}]},
        )
        assert quantity_of(product_a.id) == 8

        order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 10

        [restore] = db_session.query(StockMovement).filter_by(reason=REASON_ORDER_VOID, reference_id=order.id).all()
        assert restore.quantity == 2

    def test_void_after_product_swap_restores_original_product(self, db_session, tenant_a, product_a, product_a2):
        order = _order(tenant_a, (product_a, 3))
        order_service.update_order(
            tenant_id=tenant_a.id,
            order_id=order.id,
            changes={"lines": [{"product_id": product_a2.id, "quantity": 3}]},
        )

        order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 10
        assert quantity_of(product_a2.id) == 20

    def test_void_restores_repeated_product_lines_in_one_movement(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 2), (product_a, 3))
        order_service.void_order(tenant_id=tenant_a.id, order_id=order.id)

        assert quantity_of(product_a.id) == 10
        restores = db_session.query(StockMovement).filter_by(reason=REASON_ORDER_VOID, reference_id=order.id).all()
        assert [m.quantity for m in restores] == [5]


class TestDeleteAndDuplicate:

    def test_delete_does_not_restore_stock(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 3))
        order_service.delete_order(tenant_id=tenant_a.id, order_id=order.id)

        assert quantity_of(product_a.id) == 7
        with pytest.raises(NotFoundError):
            order_service.get_order(tenant_a.id, order.id)
        assert order_service.get_order(tenant_a.id, order.id, include_deleted=True).deleted_at is not None

    def test_duplicate_revalidates_stock(self, db_session, tenant_a, product_a):
        order = _order(tenant_a, (product_a, 4), label_ids=["rush"])
        copy = order_service.duplicate_order(tenant_id=tenant_a.id, order_id=order.id)

        assert copy.id != order.id
        assert copy.label_ids == ["rush"]
        assert [line.quantity for line in copy.lines] == [4]
        assert quantity_of(product_a.id) == 2

        with pytest.raises(InsufficientStockError):
            order_service.duplicate_order(tenant_id=tenant_a.id, order_id=order.id)
        assert quantity_of(product_a.id) == 2

    def test_list_orders(self, db_session, tenant_a, product_a):
        first = _order(tenant_a, (product_a, 1))
        second = _order(tenant_a, (product_a, 1), user_id=USER + 1)
        order_service.void_order(tenant_id=tenant_a.id, order_id=first.id)

        assert {o.id for o in order_service.list_orders(tenant_a.id)} == {first.id, second.id}
        assert [o.id for o in order_service.list_orders(tenant_a.id, include_voided=False)] == [second.id]
        assert [o.id for o in order_service.list_orders(tenant_a.id, user_id=USER)] == [first.id]


def _order_movements(db_session, order_id):
    return (
        db_session.query(StockMovement)
        .filter_by(reference_type="order", reference_id=order_id)
        .all()
    )
