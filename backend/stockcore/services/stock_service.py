# Overview: Product stock record; the only code path that writes Product.quantity.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..errors import InsufficientStockError, ProductNotFoundError, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DECREASE,
    MOVEMENT_INCREASE,
    STOCK_STATUS_IN_STOCK,
    STOCK_STATUS_LOW_STOCK,
    STOCK_STATUS_OUT_OF_STOCK,
    STOCK_STATUSES,
)
from ..validation import (
    coerce_int,
    optional_non_negative_int,
    optional_text,
    require_non_negative_int,
    require_price_cents,
    require_tax_rate_bps,
    require_text,
)
from .concurrency import lock_for_update, run_with_retry
from .movement_service import (
    REASON_INITIAL_STOCK,
    REASON_MANUAL,
    append_movement,
    ledger_balances,
)
"""
Stock Record Invariants (authoritative)

- quantity >= 0 at all times. Enforced twice: by the conditional UPDATE
  below (WHERE quantity >= :n) and by a CHECK constraint on the table.
- stock_status == derive_stock_status(quantity, minimum_stock_quantity),
  rewritten in the same transaction as every quantity/threshold change.
- Every quantity change appends exactly one StockMovement in the same
  transaction. No movement, no change.
- Read-modify-write never spans two round trips without a guard: deltas are
  one atomic UPDATE ... RETURNING; absolute recounts are compare-and-swap
  on the previously read quantity and retried on conflict.
"""


@dataclass(frozen=True)
class StockChange:
    product_id: int
    previous_quantity: int
    new_quantity: int
    stock_status: str
    movement: StockMovement

    @property
    def delta(self) -> int:
        return self.new_quantity - self.previous_quantity


def derive_stock_status(quantity: int, minimum_stock_quantity: int | None) -> str:
    """
    quantity == 0                     -> out_of_stock
    0 < quantity <= minimum           -> low_stock
    anything else (or no minimum set) -> in_stock
    """
    if quantity <= 0:
        return STOCK_STATUS_OUT_OF_STOCK
    if minimum_stock_quantity is not None and quantity <= minimum_stock_quantity:
        return STOCK_STATUS_LOW_STOCK
    return STOCK_STATUS_IN_STOCK


def _expire_cached_product(product_id: int) -> None:
    # Core UPDATEs bypass the identity map; drop any stale copy.
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached)


def _write_status(product_id: int, status: str) -> None:
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock_status=status)
        .execution_options(synchronize_session=False)
    )


def get_stock_record(tenant_id: int, product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def list_stock_records(
    tenant_id: int,
    *,
    status: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
) -> list[Product]:
    if status is not None and status not in STOCK_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(STOCK_STATUSES)}")

    q = Product.query.filter(Product.tenant_id == tenant_id)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if status is not None:
        q = q.filter(Product.stock_status == status)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(term), Product.sku.ilike(term)))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def _apply_delta_inner(
    *,
    tenant_id: int,
    product_id: int,
    delta: int,
    reason: str,
    actor_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
) -> StockChange:
    """
    Move stock by a signed delta inside the caller's transaction. Never commits.

    One conditional UPDATE does the check and the write together, so two
    concurrent decrements cannot both pass against the same starting value.
    Zero matched rows means the product is missing or the decrease would go
    negative; either way nothing was written.
    """
    delta = coerce_int(delta, "quantity")
    if delta == 0:
        raise ValidationError("quantity delta must be non-zero")

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.tenant_id == tenant_id)
        .values(quantity=Product.quantity + delta, version_id=Product.version_id + 1)
        .returning(Product.quantity, Product.minimum_stock_quantity)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(Product.quantity >= -delta)

    row = db.session.execute(stmt).first()
    if row is None:
        current = db.session.query(Product.quantity).filter_by(id=product_id, tenant_id=tenant_id).scalar()
        if current is None:
            raise ProductNotFoundError(product_id)
        raise InsufficientStockError(
            f"Insufficient stock. Available: {current}, Requested: {-delta}",
            product_id=product_id,
            current=current,
            requested=-delta,
        )

    new_quantity, minimum = int(row[0]), row[1]
    previous_quantity = new_quantity - delta
    status = derive_stock_status(new_quantity, minimum)
    _write_status(product_id, status)
    _expire_cached_product(product_id)

    movement = append_movement(
        tenant_id=tenant_id,
        product_id=product_id,
        movement_type=MOVEMENT_INCREASE if delta > 0 else MOVEMENT_DECREASE,
        quantity=abs(delta),
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        notes=notes,
    )

    current_app.logger.info(
        "stock %+d product=%s tenant=%s %s->%s reason=%s ref=%s:%s",
        delta, product_id, tenant_id, previous_quantity, new_quantity,
        reason, reference_type, reference_id,
    )
    return StockChange(
        product_id=product_id,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        stock_status=status,
        movement=movement,
    )


def apply_stock_delta(
    *,
    tenant_id: int,
    product_id: int,
    delta: int,
    reason: str,
    actor_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> StockChange:
    """
    Apply a signed quantity change and its ledger entry.

    commit=False joins the caller's transaction (order create, void,
    adjustments); the caller owns commit, rollback and retry.
    """
    kwargs = dict(
        tenant_id=tenant_id,
        product_id=product_id,
        delta=delta,
        reason=reason,
        actor_id=actor_id,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
    )
    if not commit:
        return _apply_delta_inner(**kwargs)

    def _op():
        change = _apply_delta_inner(**kwargs)
        db.session.commit()
        return change

    return run_with_retry(_op)


def increase_stock(*, tenant_id: int, product_id: int, quantity: int, reason: str, **kwargs) -> StockChange:
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than 0")
    return apply_stock_delta(tenant_id=tenant_id, product_id=product_id, delta=quantity, reason=reason, **kwargs)


def decrease_stock(*, tenant_id: int, product_id: int, quantity: int, reason: str, **kwargs) -> StockChange:
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than 0")
    return apply_stock_delta(tenant_id=tenant_id, product_id=product_id, delta=-quantity, reason=reason, **kwargs)


def set_stock_quantity(
    *,
    tenant_id: int,
    product_id: int,
    quantity: int,
    actor_id: int | None = None,
    notes: str | None = None,
) -> Product:
    """
    Manual recount: set on-hand to an absolute value.

    Recorded as an 'adjustment' movement whose signed delta is the
    difference. The write is a compare-and-swap against the quantity just
    read; a concurrent change makes it miss, and the retry re-reads.
    """
    new_quantity = require_non_negative_int(quantity, "quantity")
    notes = optional_text(notes, "notes")

    def _op():
        product = get_stock_record(tenant_id, product_id, lock=True)
        previous_quantity = product.quantity
        if previous_quantity == new_quantity:
            return product

        status = derive_stock_status(new_quantity, product.minimum_stock_quantity)
        result = db.session.execute(
            update(Product)
            .where(
                Product.id == product_id,
                Product.tenant_id == tenant_id,
                Product.quantity == previous_quantity,
            )
            .values(
                quantity=new_quantity,
                stock_status=status,
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDataError(f"stock for product {product_id} changed during recount")
        _expire_cached_product(product_id)

        append_movement(
            tenant_id=tenant_id,
            product_id=product_id,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=abs(new_quantity - previous_quantity),
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reason=REASON_MANUAL,
            actor_id=actor_id,
            notes=notes,
        )
        db.session.commit()
        current_app.logger.info(
            "stock recount product=%s tenant=%s %s->%s",
            product_id, tenant_id, previous_quantity, new_quantity,
        )
        return product

    return run_with_retry(_op)


def update_minimum_stock_quantity(
    *,
    tenant_id: int,
    product_id: int,
    minimum_stock_quantity: int | None,
) -> Product:
    """Change the low-stock threshold; status follows immediately."""
    minimum = optional_non_negative_int(minimum_stock_quantity, "minimum_stock_quantity")

    def _op():
        product = get_stock_record(tenant_id, product_id, lock=True)
        product.minimum_stock_quantity = minimum
        product.stock_status = derive_stock_status(product.quantity, minimum)
        db.session.commit()
        return product

    return run_with_retry(_op)


def create_product(
    *,
    tenant_id: int,
    name: str,
    price_cents: int = 0,
    tax_rate_bps: int = 0,
    quantity: int = 0,
    minimum_stock_quantity: int | None = None,
    sku: str | None = None,
    actor_id: int | None = None,
) -> Product:
    """
    Catalog seed used by the back office and tests.

    Opening stock goes through the ledger as an 'initial_stock' increase so
    that the sum of movements always equals the current quantity.
    """
    name = require_text(name, "name", max_length=255)
    price_cents = require_price_cents(price_cents)
    tax_rate_bps = require_tax_rate_bps(tax_rate_bps)
    opening = require_non_negative_int(quantity, "quantity")
    minimum = optional_non_negative_int(minimum_stock_quantity, "minimum_stock_quantity")
    sku = optional_text(sku, "sku", max_length=64)

    def _op():
        product = Product(
            tenant_id=tenant_id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            tax_rate_bps=tax_rate_bps,
            quantity=0,
            minimum_stock_quantity=minimum,
            stock_status=derive_stock_status(0, minimum),
        )
        db.session.add(product)
        db.session.flush()

        if opening > 0:
            _apply_delta_inner(
                tenant_id=tenant_id,
                product_id=product.id,
                delta=opening,
                reason=REASON_INITIAL_STOCK,
                actor_id=actor_id,
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def reconcile_stock(tenant_id: int, product_id: int | None = None) -> list[dict]:
    """
    Compare each product's quantity with what its ledger adds up to.

    A non-zero difference means something wrote Product.quantity outside
    this module.
    """
    balances = ledger_balances(tenant_id, product_id)

    q = Product.query.filter(Product.tenant_id == tenant_id)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    report = []
    for product in q.order_by(Product.id.asc()).all():
        ledger_quantity = balances.get(product.id, 0)
        report.append({
            "product_id": product.id,
            "name": product.name,
            "quantity": product.quantity,
            "ledger_quantity": ledger_quantity,
            "difference": product.quantity - ledger_quantity,
            "stock_status": product.stock_status,
            "status_consistent": product.stock_status == derive_stock_status(
                product.quantity, product.minimum_stock_quantity
            ),
        })
    return report
