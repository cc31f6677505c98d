# Overview: Append-only stock movement ledger and its audit reads.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..errors import ValidationError
from ..models import StockMovement
from ..models.inventory import (
    MOVEMENT_DECREASE,
    MOVEMENT_INCREASE,
    MOVEMENT_TYPES,
)
from ..time_utils import parse_iso_datetime
"""
Stock Movement Ledger Invariants (authoritative)

- One row per change to Product.quantity, written by stock_service in the
  same DB transaction as the change. If the insert fails the change rolls
  back with it.
- previous_quantity + signed delta == new_quantity.
- No updates, no deletes. Corrections are new movements.
- Reads are tenant-scoped and newest first.
"""

REASON_SALE = "sale"
REASON_ORDER_VOID = "order_void"
REASON_ADJUSTMENT = "adjustment"
REASON_ADJUSTMENT_REVERSAL = "adjustment_reversal"
REASON_MANUAL = "manual"
REASON_INITIAL_STOCK = "initial_stock"


def signed_delta_for(movement_type: str, quantity: int, previous_quantity: int, new_quantity: int) -> int:
    if movement_type == MOVEMENT_INCREASE:
        return quantity
    if movement_type == MOVEMENT_DECREASE:
        return -quantity
    return new_quantity - previous_quantity


def append_movement(
    *,
    tenant_id: int,
    product_id: int,
    movement_type: str,
    quantity: int,
    previous_quantity: int,
    new_quantity: int,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Append one ledger row. Flushes, never commits.

    The only rule enforced here is the arithmetic one; business checks
    belong to the caller.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of {', '.join(MOVEMENT_TYPES)}")
    if quantity < 0:
        raise ValidationError("movement quantity must be a non-negative magnitude")

    delta = signed_delta_for(movement_type, quantity, previous_quantity, new_quantity)
    if previous_quantity + delta != new_quantity:
        raise ValidationError(
            "movement does not balance",
            details={
                "movement_type": movement_type,
                "quantity": quantity,
                "previous_quantity": previous_quantity,
                "new_quantity": new_quantity,
            },
        )

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        created_by_user_id=actor_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _coerce_bound(value, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def list_movements(
    tenant_id: int,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    date_from=None,
    date_to=None,
    limit: int | None = None,
) -> list[StockMovement]:
    """Tenant-scoped ledger read, newest first. Date bounds are inclusive."""
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of {', '.join(MOVEMENT_TYPES)}")

    q = StockMovement.query.filter(StockMovement.tenant_id == tenant_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.movement_type == movement_type)
    if reason is not None:
        q = q.filter(StockMovement.reason == reason)
    if reference_type is not None:
        q = q.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(StockMovement.reference_id == reference_id)

    start = _coerce_bound(date_from, "date_from")
    end = _coerce_bound(date_to, "date_to")
    if start is not None:
        q = q.filter(StockMovement.created_at >= start)
    if end is not None:
        q = q.filter(StockMovement.created_at <= end)

    if limit is None:
        limit = current_app.config.get("MOVEMENT_LIST_LIMIT", 500)

    return q.order_by(
        StockMovement.created_at.desc(),
        StockMovement.id.desc(),
    ).limit(limit).all()


def get_movements_for_product(tenant_id: int, product_id: int) -> list[StockMovement]:
    return list_movements(tenant_id, product_id=product_id)


def get_movements_for_reference(tenant_id: int, reference_type: str, reference_id: int) -> list[StockMovement]:
    return list_movements(tenant_id, reference_type=reference_type, reference_id=reference_id)


def _signed_delta_expression():
    return case(
        (StockMovement.movement_type == MOVEMENT_INCREASE, StockMovement.quantity),
        (StockMovement.movement_type == MOVEMENT_DECREASE, -StockMovement.quantity),
        else_=StockMovement.new_quantity - StockMovement.previous_quantity,
    )


def ledger_balances(tenant_id: int, product_id: int | None = None) -> dict[int, int]:
    """Sum of signed deltas per product, i.e. what the ledger says is on hand."""
    q = db.session.query(
        StockMovement.product_id,
        func.coalesce(func.sum(_signed_delta_expression()), 0),
    ).filter(StockMovement.tenant_id == tenant_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    rows = q.group_by(StockMovement.product_id).all()
    return {pid: int(total or 0) for pid, total in rows}
