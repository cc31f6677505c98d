# Overview: Stock adjustment lifecycle (create, edit reason/notes, reverse).

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import StockAdjustment
from ..models.inventory import ADJUSTMENT_DECREASE, ADJUSTMENT_INCREASE, ADJUSTMENT_TYPES
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import optional_text, require_positive_int, require_text
from .concurrency import run_with_retry
from .movement_service import REASON_ADJUSTMENT, REASON_ADJUSTMENT_REVERSAL
from .stock_service import apply_stock_delta, get_stock_record
"""
Adjustment Invariants (authoritative)

- States: active -> reversed. Reversed is a soft delete; rows are kept.
- Creating an adjustment and its stock movement is one transaction.
- Reversal applies the inverse delta against CURRENT stock, not the
  creation snapshot, so reversing an increase can fail with
  InsufficientStockError when that stock has since been sold.
- adjustment_type and quantity never change after creation.
"""

REFERENCE_TYPE = "stock_adjustment"


def _signed(adjustment_type: str, quantity: int) -> int:
    return quantity if adjustment_type == ADJUSTMENT_INCREASE else -quantity


def _reason_max_length() -> int:
    return current_app.config.get("ADJUSTMENT_REASON_MAX_LENGTH", 100)


def create_adjustment(
    *,
    tenant_id: int,
    product_id: int,
    adjustment_type: str,
    quantity: int,
    reason: str,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockAdjustment:
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError(f"adjustment_type must be one of {', '.join(ADJUSTMENT_TYPES)}")
    quantity = require_positive_int(quantity, "quantity")
    reason = require_text(reason, "reason", max_length=_reason_max_length())
    notes = optional_text(notes, "notes")

    def _op():
        # 404 before any write
        get_stock_record(tenant_id, product_id)

        adjustment = StockAdjustment(
            tenant_id=tenant_id,
            product_id=product_id,
            adjustment_type=adjustment_type,
            quantity=quantity,
            previous_quantity=0,
            new_quantity=0,
            reason=reason,
            notes=notes,
            created_by_user_id=actor_id,
            updated_by_user_id=actor_id,
        )
        db.session.add(adjustment)
        db.session.flush()

        change = apply_stock_delta(
            tenant_id=tenant_id,
            product_id=product_id,
            delta=_signed(adjustment_type, quantity),
            reason=REASON_ADJUSTMENT,
            actor_id=actor_id,
            reference_type=REFERENCE_TYPE,
            reference_id=adjustment.id,
            notes=reason,
            commit=False,
        )
        adjustment.previous_quantity = change.previous_quantity
        adjustment.new_quantity = change.new_quantity

        db.session.commit()
        return adjustment

    adjustment = run_with_retry(_op)
    current_app.logger.info(
        "stock adjustment %s created: %s %s product=%s tenant=%s",
        adjustment.id, adjustment_type, quantity, product_id, tenant_id,
    )
    return adjustment


def get_adjustment(tenant_id: int, adjustment_id: int, *, include_reversed: bool = False) -> StockAdjustment:
    q = StockAdjustment.query.filter_by(id=adjustment_id, tenant_id=tenant_id)
    if not include_reversed:
        q = q.filter(StockAdjustment.deleted_at.is_(None))
    adjustment = q.first()
    if adjustment is None:
        raise NotFoundError(
            f"Stock adjustment not found: {adjustment_id}",
            details={"adjustment_id": adjustment_id},
        )
    return adjustment


def list_adjustments(
    tenant_id: int,
    *,
    product_id: int | None = None,
    adjustment_type: str | None = None,
    reason: str | None = None,
    date_from=None,
    date_to=None,
) -> list[StockAdjustment]:
    if adjustment_type is not None and adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError(f"adjustment_type must be one of {', '.join(ADJUSTMENT_TYPES)}")

    q = StockAdjustment.query.filter(
        StockAdjustment.tenant_id == tenant_id,
        StockAdjustment.deleted_at.is_(None),
    )
    if product_id is not None:
        q = q.filter(StockAdjustment.product_id == product_id)
    if adjustment_type is not None:
        q = q.filter(StockAdjustment.adjustment_type == adjustment_type)
    if reason:
        q = q.filter(StockAdjustment.reason.ilike(f"%{reason}%"))

    try:
        start = parse_iso_datetime(date_from) if isinstance(date_from, str) else date_from
        end = parse_iso_datetime(date_to) if isinstance(date_to, str) else date_to
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 datetimes")
    if start is not None:
        q = q.filter(StockAdjustment.created_at >= start)
    if end is not None:
        q = q.filter(StockAdjustment.created_at <= end)

    return q.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc()).all()


def update_adjustment(
    *,
    tenant_id: int,
    adjustment_id: int,
    changes: dict,
    actor_id: int | None = None,
) -> StockAdjustment:
    """Edit reason and/or notes. Anything that would move stock is refused."""
    frozen = sorted(k for k in ("quantity", "adjustment_type", "product_id") if k in changes)
    if frozen:
        raise ValidationError(
            "quantity, adjustment_type and product_id cannot be changed after creation",
            details={"fields": frozen},
        )

    updates = {}
    if "reason" in changes:
        updates["reason"] = require_text(changes["reason"], "reason", max_length=_reason_max_length())
    if "notes" in changes:
        updates["notes"] = optional_text(changes["notes"], "notes")

    def _op():
        adjustment = get_adjustment(tenant_id, adjustment_id)
        for field, value in updates.items():
            setattr(adjustment, field, value)
        if updates:
            adjustment.updated_by_user_id = actor_id
        db.session.commit()
        return adjustment

    return run_with_retry(_op)


def reverse_adjustment(
    *,
    tenant_id: int,
    adjustment_id: int,
    actor_id: int | None = None,
) -> StockAdjustment:
    """
    Soft-delete an adjustment and undo its stock effect.

    The soft-delete is claimed first with a conditional UPDATE; a second
    reversal (concurrent or later) matches no row and gets NotFoundError.
    If the inverse stock change fails the claim rolls back with it.
    """
    def _op():
        adjustment = get_adjustment(tenant_id, adjustment_id)

        claimed = db.session.execute(
            update(StockAdjustment)
            .where(
                StockAdjustment.id == adjustment_id,
                StockAdjustment.tenant_id == tenant_id,
                StockAdjustment.deleted_at.is_(None),
            )
            .values(deleted_at=utcnow(), updated_by_user_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise NotFoundError(
                f"Stock adjustment not found: {adjustment_id}",
                details={"adjustment_id": adjustment_id},
            )

        inverse = ADJUSTMENT_DECREASE if adjustment.adjustment_type == ADJUSTMENT_INCREASE else ADJUSTMENT_INCREASE
        apply_stock_delta(
            tenant_id=tenant_id,
            product_id=adjustment.product_id,
            delta=_signed(inverse, adjustment.quantity),
            reason=REASON_ADJUSTMENT_REVERSAL,
            actor_id=actor_id,
            reference_type=REFERENCE_TYPE,
            reference_id=adjustment.id,
            notes=adjustment.reason,
            commit=False,
        )

        db.session.commit()
        db.session.refresh(adjustment)
        return adjustment

    adjustment = run_with_retry(_op)
    current_app.logger.info(
        "stock adjustment %s reversed product=%s tenant=%s",
        adjustment_id, adjustment.product_id, tenant_id,
    )
    return adjustment


# Route-facing name: DELETE reverses.
delete_adjustment = reverse_adjustment
