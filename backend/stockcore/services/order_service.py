# Overview: Order fulfillment engine: create, update, void, delete and duplicate orders.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..errors import (
    AlreadyVoidedError,
    HasActivePaymentsError,
    InsufficientStockError,
    NotFoundError,
    OrderVoidedError,
    PaymentCheckUnavailableError,
    ProductNotFoundError,
    SideEffectFailure,
    ValidationError,
)
from ..models import Order, OrderLine, Product, StockMovement
from ..models.inventory import MOVEMENT_DECREASE
from ..models.orders import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, DISCOUNT_TYPES
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import (
    coerce_decimal,
    coerce_label_ids,
    optional_text,
    require_positive_int,
    require_price_cents,
)
from .concurrency import lock_for_update, run_with_retry
from .customer_service import sync_customer_totals
from .movement_service import REASON_ORDER_VOID, REASON_SALE
from .payment_service import has_active_payments
from .stock_service import apply_stock_delta
"""
Order Invariants (authoritative)

Money:
- All amounts are integer cents. Tax rates are basis points (800 = 8%).
- line_subtotal = unit_price * quantity
- line_tax = line_subtotal * tax_rate_bps / 10000, rounded half-up per line
- discount: percentage -> subtotal * percent / 100 (half-up); fixed -> cents
  clamped to the subtotal in both cases
- total = subtotal + tax - discount

Stock:
- Create is all-or-nothing: the order, its lines and one 'sale' decrement
  per line commit together. Any line failing rolls back everything.
- Void gives back what the order's 'sale' movements took ('order_void'),
  per product, in the same transaction that sets is_voided. Voiding
  happens at most once.
- Update never moves stock. A change in line quantities sets
  stock_review_required and logs a warning.
- Soft delete never moves stock.

Customer totals are refreshed after commit, best-effort.
"""

REFERENCE_TYPE = "order"


# =============================================================================
# TOTALS
# =============================================================================

@dataclass
class LineTotals:
    product_id: int
    quantity: int
    unit_price_cents: int
    tax_rate_bps: int
    line_subtotal_cents: int
    line_tax_cents: int
    product_name: str | None = None


@dataclass
class OrderTotals:
    subtotal_cents: int
    tax_cents: int
    discount_cents: int
    total_cents: int
    lines: list[LineTotals] = field(default_factory=list)


def _half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_tax_cents(line_subtotal_cents: int, tax_rate_bps: int) -> int:
    return _half_up(Decimal(line_subtotal_cents) * Decimal(tax_rate_bps) / Decimal(10000))


def normalize_discount(discount_type, discount_value) -> tuple[str | None, Decimal | None]:
    """Validate a discount pair. No type, or a zero/absent value, means no discount."""
    if discount_type in (None, ""):
        return None, None
    if discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
    if discount_value is None:
        return discount_type, None

    value = coerce_decimal(discount_value, "discount_value")
    if value < 0:
        raise ValidationError("discount_value cannot be negative")
    if discount_type == DISCOUNT_PERCENTAGE and value > 100:
        raise ValidationError("percentage discount cannot exceed 100")
    if discount_type == DISCOUNT_FIXED and value != value.to_integral_value():
        raise ValidationError("fixed discount_value is in cents and must be a whole number")
    return discount_type, value


def compute_discount_cents(subtotal_cents: int, discount_type: str | None, discount_value: Decimal | None) -> int:
    if not discount_type or not discount_value:
        return 0
    if discount_type == DISCOUNT_PERCENTAGE:
        amount = _half_up(Decimal(subtotal_cents) * discount_value / Decimal(100))
    else:
        amount = int(discount_value)
    return max(0, min(amount, subtotal_cents))


def compute_order_totals(lines, discount_type=None, discount_value=None) -> OrderTotals:
    """
    Pure totals calculation.

    lines: iterables of dicts with product_id, quantity, unit_price_cents,
    tax_rate_bps (and optionally product_name). Tax is computed on the
    pre-discount line subtotal.
    """
    discount_type, discount_value = normalize_discount(discount_type, discount_value)

    computed = []
    subtotal = 0
    tax = 0
    for line in lines:
        line_subtotal = line["unit_price_cents"] * line["quantity"]
        line_tax = line_tax_cents(line_subtotal, line.get("tax_rate_bps") or 0)
        subtotal += line_subtotal
        tax += line_tax
        computed.append(LineTotals(
            product_id=line["product_id"],
            quantity=line["quantity"],
            unit_price_cents=line["unit_price_cents"],
            tax_rate_bps=line.get("tax_rate_bps") or 0,
            line_subtotal_cents=line_subtotal,
            line_tax_cents=line_tax,
            product_name=line.get("product_name"),
        ))

    discount = compute_discount_cents(subtotal, discount_type, discount_value)
    return OrderTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        discount_cents=discount,
        total_cents=subtotal + tax - discount,
        lines=computed,
    )


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_line_requests(lines) -> list[dict]:
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("Order must contain at least one line")

    normalized = []
    for index, raw in enumerate(lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"line {index} must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"line {index}: product_id is required")
        item = {
            "product_id": raw["product_id"],
            "quantity": require_positive_int(raw.get("quantity"), f"line {index} quantity"),
            "unit_price_cents": None,
        }
        if raw.get("unit_price_cents") is not None:
            item["unit_price_cents"] = require_price_cents(raw["unit_price_cents"], f"line {index} unit_price_cents")
        normalized.append(item)
    return normalized


def _coerce_order_date(value):
    if value is None:
        return utcnow()
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError("order_date must be an ISO-8601 datetime")
        return parsed or utcnow()
    return value


def _build_order_lines(order: Order, totals: OrderTotals) -> None:
    for number, line in enumerate(totals.lines, start=1):
        order.lines.append(OrderLine(
            line_number=number,
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            line_subtotal_cents=line.line_subtotal_cents,
            line_tax_cents=line.line_tax_cents,
            product_name=line.product_name,
            tax_rate_bps=line.tax_rate_bps,
        ))


def _apply_totals(order: Order, totals: OrderTotals) -> None:
    order.subtotal_cents = totals.subtotal_cents
    order.tax_cents = totals.tax_cents
    order.discount_cents = totals.discount_cents
    order.total_cents = totals.total_cents


# =============================================================================
# CREATE
# =============================================================================

def _create_order_inner(
    *,
    tenant_id: int,
    user_id: int,
    lines: list[dict],
    discount_type=None,
    discount_value=None,
    label_ids=None,
    order_date=None,
    actor_id: int | None = None,
) -> Order:
    """
    Validate, persist and decrement inside the caller's transaction.

    The per-line availability check gives a readable error up front; the
    conditional decrement is what actually guarantees stock never goes
    negative when another order commits in between (or when the same
    product appears on two lines).
    """
    priced = []
    for item in lines:
        product = db.session.query(Product).filter_by(id=item["product_id"], tenant_id=tenant_id).first()
        if product is None:
            raise ProductNotFoundError(item["product_id"])
        if item["quantity"] > product.quantity:
            raise InsufficientStockError(
                f"Insufficient stock for product {product.name}. "
                f"Available: {product.quantity}, Requested: {item['quantity']}",
                product_id=product.id,
                current=product.quantity,
                requested=item["quantity"],
            )
        priced.append({
            "product_id": product.id,
            "quantity": item["quantity"],
            "unit_price_cents": item["unit_price_cents"] if item["unit_price_cents"] is not None else product.price_cents,
            "tax_rate_bps": product.tax_rate_bps,
            "product_name": product.name,
        })

    discount_type, discount_value = normalize_discount(discount_type, discount_value)
    totals = compute_order_totals(priced, discount_type, discount_value)

    order = Order(
        tenant_id=tenant_id,
        user_id=user_id,
        order_date=_coerce_order_date(order_date),
        discount_type=discount_type,
        discount_value=discount_value,
        label_ids=coerce_label_ids(label_ids),
        created_by_user_id=actor_id,
        updated_by_user_id=actor_id,
    )
    _apply_totals(order, totals)
    _build_order_lines(order, totals)
    db.session.add(order)
    db.session.flush()

    for line in order.lines:
        apply_stock_delta(
            tenant_id=tenant_id,
            product_id=line.product_id,
            delta=-line.quantity,
            reason=REASON_SALE,
            actor_id=actor_id,
            reference_type=REFERENCE_TYPE,
            reference_id=order.id,
            commit=False,
        )
    return order


def create_order(
    *,
    tenant_id: int,
    user_id: int,
    lines,
    discount_type=None,
    discount_value=None,
    label_ids=None,
    order_date=None,
    actor_id: int | None = None,
) -> Order:
    """
    Create an order and take its stock.

    Args:
        lines: [{"product_id", "quantity", "unit_price_cents"?}] in request
            order; unit price defaults to the catalog price
        discount_type: "percentage" (value in percent) or "fixed" (cents)

    Raises:
        ValidationError, ProductNotFoundError, InsufficientStockError. On any
        of these nothing is written.
    """
    line_requests = _normalize_line_requests(lines)
    normalize_discount(discount_type, discount_value)

    def _op():
        order = _create_order_inner(
            tenant_id=tenant_id,
            user_id=user_id,
            lines=line_requests,
            discount_type=discount_type,
            discount_value=discount_value,
            label_ids=label_ids,
            order_date=order_date,
            actor_id=actor_id,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "order %s created tenant=%s user=%s lines=%s total_cents=%s",
        order.id, tenant_id, user_id, len(line_requests), order.total_cents,
    )
    sync_customer_totals(tenant_id, user_id)
    return order


# =============================================================================
# READS
# =============================================================================

def get_order(tenant_id: int, order_id: int, *, include_deleted: bool = False, lock: bool = False) -> Order:
    q = db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id)
    if not include_deleted:
        q = q.filter(Order.deleted_at.is_(None))
    if lock:
        q = lock_for_update(q)
    order = q.first()
    if order is None:
        raise NotFoundError(f"Order not found: {order_id}", details={"order_id": order_id})
    return order


def list_orders(
    tenant_id: int,
    *,
    user_id: int | None = None,
    date_from=None,
    date_to=None,
    include_voided: bool = True,
) -> list[Order]:
    q = Order.query.filter(Order.tenant_id == tenant_id, Order.deleted_at.is_(None))
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if not include_voided:
        q = q.filter(Order.is_voided.is_(False))
    try:
        start = parse_iso_datetime(date_from) if isinstance(date_from, str) else date_from
        end = parse_iso_datetime(date_to) if isinstance(date_to, str) else date_to
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 datetimes")
    if start is not None:
        q = q.filter(Order.order_date >= start)
    if end is not None:
        q = q.filter(Order.order_date <= end)
    return q.order_by(Order.order_date.desc(), Order.id.desc()).all()


# =============================================================================
# UPDATE
# =============================================================================

def _quantities_by_product(lines) -> dict:
    totals = {}
    for line in lines:
        totals[line["product_id"]] = totals.get(line["product_id"], 0) + line["quantity"]
    return totals


def update_order(
    *,
    tenant_id: int,
    order_id: int,
    changes: dict,
    actor_id: int | None = None,
) -> Order:
    """
    Edit a non-voided order. Informational only: stock is never moved here.

    Editable: lines, discount_type, discount_value, label_ids, order_date.
    When lines change, totals are recomputed from the new lines using the
    current catalog tax rate and name. A product already on the order that
    has since left the catalog keeps its previous name and price with a
    zero tax rate; any other unknown product raises ProductNotFoundError.
    """
    new_lines = _normalize_line_requests(changes["lines"]) if "lines" in changes else None
    label_ids = coerce_label_ids(changes["label_ids"]) if "label_ids" in changes else None
    order_date = _coerce_order_date(changes["order_date"]) if changes.get("order_date") is not None else None

    def _op():
        order = get_order(tenant_id, order_id, lock=True)
        if order.is_voided:
            raise OrderVoidedError("Cannot update a voided order", details={"order_id": order_id})

        discount_type = changes["discount_type"] if "discount_type" in changes else order.discount_type
        discount_value = changes["discount_value"] if "discount_value" in changes else order.discount_value
        discount_type, discount_value = normalize_discount(discount_type, discount_value)

        previous = [
            {
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price_cents": line.unit_price_cents,
                "tax_rate_bps": line.tax_rate_bps,
                "product_name": line.product_name,
            }
            for line in order.lines
        ]
        previous_names = {line["product_id"]: line["product_name"] for line in previous}
        previous_prices = {line["product_id"]: line["unit_price_cents"] for line in previous}

        if new_lines is not None:
            priced = []
            for item in new_lines:
                product = db.session.query(Product).filter_by(id=item["product_id"], tenant_id=tenant_id).first()
                if product is not None:
                    tax_rate_bps, name, catalog_price = product.tax_rate_bps, product.name, product.price_cents
                elif item["product_id"] not in previous_names:
                    raise ProductNotFoundError(item["product_id"])
                else:
                    tax_rate_bps, name = 0, previous_names[item["product_id"]]
                    catalog_price = previous_prices[item["product_id"]]
                priced.append({
                    "product_id": item["product_id"],
                    "quantity": item["quantity"],
                    "unit_price_cents": item["unit_price_cents"] if item["unit_price_cents"] is not None else catalog_price,
                    "tax_rate_bps": tax_rate_bps,
                    "product_name": name,
                })
        else:
            priced = previous

        totals = compute_order_totals(priced, discount_type, discount_value)

        if new_lines is not None:
            before = _quantities_by_product(previous)
            after = _quantities_by_product(priced)
            if before != after:
                order.stock_review_required = True
                current_app.logger.warning(
                    "order %s line quantities changed without stock movement (tenant=%s before=%s after=%s)",
                    order_id, tenant_id, before, after,
                )
            # Old rows go first; (order_id, line_number) is unique
            order.lines = []
            db.session.flush()
            _build_order_lines(order, totals)

        _apply_totals(order, totals)
        order.discount_type = discount_type
        order.discount_value = discount_value
        if label_ids is not None:
            order.label_ids = label_ids
        if order_date is not None:
            order.order_date = order_date
        order.updated_by_user_id = actor_id

        db.session.commit()
        return order

    order = run_with_retry(_op)
    sync_customer_totals(tenant_id, order.user_id)
    return order


# =============================================================================
# VOID
# =============================================================================

def _check_payments_for_void(tenant_id: int, order_id: int) -> None:
    try:
        active = has_active_payments(tenant_id, order_id)
    except Exception as exc:
        if current_app.config.get("VOID_PAYMENT_CHECK_FAIL_OPEN", False):
            failure = SideEffectFailure("payment check", exc, order_id=order_id, tenant_id=tenant_id)
            current_app.logger.exception("%s; voiding order %s anyway", failure, order_id)
            return
        raise PaymentCheckUnavailableError(
            "Payment status could not be verified; order was not voided",
            details={"order_id": order_id},
        ) from exc

    if active:
        raise HasActivePaymentsError(
            "Cannot void order with existing payments. Please reverse payments first.",
            details={"order_id": order_id},
        )


def _quantities_taken(tenant_id: int, order_id: int) -> list[tuple[int, int]]:
    """
    Units the order's 'sale' movements actually removed, per product.

    Lines may have been edited since create; the ledger is the record of
    what left stock.
    """
    rows = (
        db.session.query(StockMovement.product_id, func.sum(StockMovement.quantity))
        .filter(
            StockMovement.tenant_id == tenant_id,
            StockMovement.reference_type == REFERENCE_TYPE,
            StockMovement.reference_id == order_id,
            StockMovement.reason == REASON_SALE,
            StockMovement.movement_type == MOVEMENT_DECREASE,
        )
        .group_by(StockMovement.product_id)
        .order_by(StockMovement.product_id.asc())
        .all()
    )
    return [(product_id, int(total)) for product_id, total in rows if total]


def void_order(
    *,
    tenant_id: int,
    order_id: int,
    actor_id: int | None = None,
    reason: str | None = None,
) -> Order:
    """
    Void an order and put its stock back.

    The is_voided flag is claimed with a conditional UPDATE before any
    stock moves, so of two concurrent voids exactly one restores stock and
    the other gets AlreadyVoidedError.
    """
    reason = optional_text(reason, "reason", max_length=255)

    def _op():
        order = get_order(tenant_id, order_id)
        if order.is_voided:
            raise AlreadyVoidedError("Order is already voided", details={"order_id": order_id})

        _check_payments_for_void(tenant_id, order_id)

        claimed = db.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.tenant_id == tenant_id,
                Order.is_voided.is_(False),
            )
            .values(
                is_voided=True,
                voided_by_user_id=actor_id,
                voided_at=utcnow(),
                void_reason=reason,
                updated_by_user_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise AlreadyVoidedError("Order is already voided", details={"order_id": order_id})

        for product_id, quantity in _quantities_taken(tenant_id, order_id):
            try:
                apply_stock_delta(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    delta=quantity,
                    reason=REASON_ORDER_VOID,
                    actor_id=actor_id,
                    reference_type=REFERENCE_TYPE,
                    reference_id=order_id,
                    notes=reason,
                    commit=False,
                )
            except ProductNotFoundError:
                current_app.logger.warning(
                    "order %s void: product %s no longer exists, %s unit(s) not restored",
                    order_id, product_id, quantity,
                )

        db.session.commit()
        db.session.refresh(order)
        return order

    order = run_with_retry(_op)
    current_app.logger.info("order %s voided tenant=%s by=%s", order_id, tenant_id, actor_id)
    sync_customer_totals(tenant_id, order.user_id)
    return order


# =============================================================================
# DELETE / DUPLICATE
# =============================================================================

def delete_order(*, tenant_id: int, order_id: int, actor_id: int | None = None) -> Order:
    """Soft delete. Stock is not restored; void first to give it back."""
    def _op():
        order = get_order(tenant_id, order_id, lock=True)
        order.deleted_at = utcnow()
        order.updated_by_user_id = actor_id
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("order %s deleted tenant=%s voided=%s", order_id, tenant_id, order.is_voided)
    sync_customer_totals(tenant_id, order.user_id)
    return order


def duplicate_order(*, tenant_id: int, order_id: int, actor_id: int | None = None) -> Order:
    """New order for the same user, lines and labels; dated now, no discount."""
    source = get_order(tenant_id, order_id)
    lines = [
        {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
        }
        for line in source.lines
    ]
    return create_order(
        tenant_id=tenant_id,
        user_id=source.user_id,
        lines=lines,
        label_ids=list(source.label_ids or []),
        actor_id=actor_id,
    )
