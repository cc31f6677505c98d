# Overview: Cart lines with a soft stock reservation check, and checkout into an order.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import CartLine, Order
from ..time_utils import utcnow
from ..validation import require_positive_int
from .concurrency import run_with_retry
from .customer_service import sync_customer_totals
from .order_service import _create_order_inner, normalize_discount
from .stock_service import get_stock_record
"""
Cart Reservation Rules (authoritative)

- For a (tenant, user, product) the quantities on the user's live cart lines
  must not exceed the product's on-hand quantity at the moment a line is
  written. On update the line being edited is left out of the sum.
- This is advisory. Nothing is decremented and nothing is locked; two users
  can both fill their carts and then race at checkout, where the order
  engine's conditional decrement decides.
- Removal and checkout are soft deletes.
"""


def _quantity_in_cart(tenant_id: int, user_id: int, product_id: int, *, exclude_line_id: int | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(CartLine.quantity), 0)).filter(
        CartLine.tenant_id == tenant_id,
        CartLine.user_id == user_id,
        CartLine.product_id == product_id,
        CartLine.deleted_at.is_(None),
    )
    if exclude_line_id is not None:
        q = q.filter(CartLine.id != exclude_line_id)
    return int(q.scalar() or 0)


def check_reservation(
    tenant_id: int,
    user_id: int,
    product_id: int,
    quantity: int,
    *,
    exclude_line_id: int | None = None,
):
    """
    Raise InsufficientStockError if the user's cart would hold more of the
    product than is on hand. Returns the product on success.
    """
    product = get_stock_record(tenant_id, product_id)
    in_cart = _quantity_in_cart(tenant_id, user_id, product_id, exclude_line_id=exclude_line_id)
    on_hand = product.quantity

    if in_cart + quantity > on_hand:
        available = on_hand - in_cart
        if available > 0:
            message = (
                f"Insufficient stock. You can add up to {available} more item(s). "
                f"You already have {in_cart} in your cart."
            )
        else:
            message = f"Insufficient stock. All available items ({on_hand}) are already in your cart."
        raise InsufficientStockError(
            message,
            product_id=product_id,
            current=on_hand,
            requested=quantity,
            available=available,
            details={"in_cart": in_cart},
        )
    return product


def get_cart_line(tenant_id: int, user_id: int, line_id: int) -> CartLine:
    """Live line owned by user_id; anything else is reported as not found."""
    line = CartLine.query.filter_by(id=line_id, tenant_id=tenant_id, user_id=user_id).filter(
        CartLine.deleted_at.is_(None)
    ).first()
    if line is None:
        raise NotFoundError(f"Cart line not found: {line_id}", details={"cart_line_id": line_id})
    return line


def list_cart_lines(tenant_id: int, user_id: int) -> list[CartLine]:
    return (
        CartLine.query.filter_by(tenant_id=tenant_id, user_id=user_id)
        .filter(CartLine.deleted_at.is_(None))
        .order_by(CartLine.created_at.asc(), CartLine.id.asc())
        .all()
    )


def add_to_cart(
    *,
    tenant_id: int,
    user_id: int,
    product_id: int,
    quantity: int,
    actor_id: int | None = None,
) -> CartLine:
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        product = check_reservation(tenant_id, user_id, product_id, quantity)
        line = CartLine(
            tenant_id=tenant_id,
            user_id=user_id,
            product_id=product.id,
            quantity=quantity,
            product_name=product.name,
            product_price_cents=product.price_cents,
            created_by_user_id=actor_id,
            updated_by_user_id=actor_id,
        )
        db.session.add(line)
        db.session.commit()
        return line

    return run_with_retry(_op)


def update_cart_line(
    *,
    tenant_id: int,
    user_id: int,
    line_id: int,
    quantity: int | None = None,
    product_id: int | None = None,
    actor_id: int | None = None,
) -> CartLine:
    """Change quantity and/or product of a line the user owns, re-checking stock."""
    if quantity is None and product_id is None:
        raise ValidationError("Nothing to update: provide quantity and/or product_id")
    if quantity is not None:
        quantity = require_positive_int(quantity, "quantity")

    def _op():
        line = get_cart_line(tenant_id, user_id, line_id)
        final_product_id = product_id if product_id is not None else line.product_id
        final_quantity = quantity if quantity is not None else line.quantity

        product = check_reservation(
            tenant_id, user_id, final_product_id, final_quantity, exclude_line_id=line.id,
        )
        line.product_id = product.id
        line.quantity = final_quantity
        line.product_name = product.name
        line.product_price_cents = product.price_cents
        line.updated_by_user_id = actor_id
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_cart_line(*, tenant_id: int, user_id: int, line_id: int, actor_id: int | None = None) -> CartLine:
    def _op():
        line = get_cart_line(tenant_id, user_id, line_id)
        line.deleted_at = utcnow()
        line.updated_by_user_id = actor_id
        db.session.commit()
        return line

    return run_with_retry(_op)


def duplicate_cart_line(*, tenant_id: int, user_id: int, line_id: int, actor_id: int | None = None) -> CartLine:
    """Add a second line for the same product and quantity; the reservation check runs again."""
    source = get_cart_line(tenant_id, user_id, line_id)
    return add_to_cart(
        tenant_id=tenant_id,
        user_id=user_id,
        product_id=source.product_id,
        quantity=source.quantity,
        actor_id=actor_id,
    )


def get_reservation_summary(tenant_id: int, user_id: int) -> list[dict]:
    """Per product in the user's cart: how many are in the cart and how many more fit."""
    summary = {}
    for line in list_cart_lines(tenant_id, user_id):
        entry = summary.setdefault(line.product_id, {
            "product_id": line.product_id,
            "product_name": line.product_name,
            "in_cart": 0,
        })
        entry["in_cart"] += line.quantity

    for entry in summary.values():
        try:
            on_hand = get_stock_record(tenant_id, entry["product_id"]).quantity
        except NotFoundError:
            on_hand = 0
        entry["on_hand"] = on_hand
        entry["can_add"] = max(0, on_hand - entry["in_cart"])
        entry["over_committed"] = entry["in_cart"] > on_hand
    return list(summary.values())


def checkout(
    *,
    tenant_id: int,
    user_id: int,
    line_ids: list | None = None,
    discount_type=None,
    discount_value=None,
    label_ids=None,
    actor_id: int | None = None,
) -> Order:
    """
    Turn the user's cart (or the chosen lines) into an order.

    Lines are priced at the current catalog price, not the cart snapshot.
    Order creation, the stock decrements and consuming the cart lines are
    one transaction: if any product is short, the cart is left untouched.
    """
    normalize_discount(discount_type, discount_value)

    def _op():
        q = CartLine.query.filter_by(tenant_id=tenant_id, user_id=user_id).filter(CartLine.deleted_at.is_(None))
        if line_ids is not None:
            q = q.filter(CartLine.id.in_(list(line_ids)))
        lines = q.order_by(CartLine.created_at.asc(), CartLine.id.asc()).all()
        if not lines:
            raise ValidationError("Cart is empty")
        if line_ids is not None and len(lines) != len(set(line_ids)):
            found = {line.id for line in lines}
            missing = sorted(set(line_ids) - found)
            raise NotFoundError("Cart line not found", details={"cart_line_ids": missing})

        order = _create_order_inner(
            tenant_id=tenant_id,
            user_id=user_id,
            lines=[
                {"product_id": line.product_id, "quantity": line.quantity, "unit_price_cents": None}
                for line in lines
            ],
            discount_type=discount_type,
            discount_value=discount_value,
            label_ids=label_ids,
            actor_id=actor_id,
        )

        now = utcnow()
        for line in lines:
            line.deleted_at = now
            line.checked_out_order_id = order.id
            line.updated_by_user_id = actor_id

        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "checkout tenant=%s user=%s order=%s total_cents=%s",
        tenant_id, user_id, order.id, order.total_cents,
    )
    sync_customer_totals(tenant_id, user_id)
    return order
