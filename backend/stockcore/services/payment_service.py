# Overview: Minimal payment collaborator; the order engine asks it whether an order may be voided.

"""
Payment Collaborator

Payments are recorded by the payment subsystem against an order. The stock
core only needs one answer from it: does this order still have money
attached? An active payment is one that is neither reversed nor refunded,
and an order with an active payment cannot be voided.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, OrderVoidedError, ValidationError
from ..models import Order, Payment
from ..models.payments import PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_REFUNDED
from ..time_utils import utcnow
from ..validation import optional_text, require_positive_int
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# RECORDING
# =============================================================================

def record_payment(
    *,
    tenant_id: int,
    order_id: int,
    amount_cents: int,
    actor_id: int | None = None,
) -> Payment:
    """
    Record a completed payment against an order.

    Raises:
        NotFoundError: order missing, in another tenant, or soft-deleted
        OrderVoidedError: order already voided
        ValidationError: amount not a positive integer
    """
    amount_cents = require_positive_int(amount_cents, "amount_cents")

    def _op():
        order = Order.query.filter_by(id=order_id, tenant_id=tenant_id).filter(Order.deleted_at.is_(None)).first()
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}", details={"order_id": order_id})
        if order.is_voided:
            raise OrderVoidedError("Cannot add payment to a voided order", details={"order_id": order_id})

        payment = Payment(
            tenant_id=tenant_id,
            order_id=order_id,
            amount_cents=amount_cents,
            payment_status=PAYMENT_STATUS_COMPLETED,
            created_by_user_id=actor_id,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _get_payment_locked(tenant_id: int, payment_id: int) -> Payment:
    payment = lock_for_update(
        db.session.query(Payment).filter_by(id=payment_id, tenant_id=tenant_id)
    ).first()
    if payment is None:
        raise NotFoundError(f"Payment not found: {payment_id}", details={"payment_id": payment_id})
    return payment


# =============================================================================
# REVERSALS
# =============================================================================

def reverse_payment(
    *,
    tenant_id: int,
    payment_id: int,
    actor_id: int | None = None,
    reason: str | None = None,
) -> Payment:
    reason = optional_text(reason, "reason", max_length=255)

    def _op():
        payment = _get_payment_locked(tenant_id, payment_id)
        if payment.is_reversed:
            raise ValidationError("Payment is already reversed", details={"payment_id": payment_id})

        payment.is_reversed = True
        payment.reversed_by_user_id = actor_id
        payment.reversed_at = utcnow()
        payment.reversal_reason = reason
        db.session.commit()
        return payment

    return run_with_retry(_op)


def refund_payment(*, tenant_id: int, payment_id: int, actor_id: int | None = None) -> Payment:
    def _op():
        payment = _get_payment_locked(tenant_id, payment_id)
        if payment.payment_status == PAYMENT_STATUS_REFUNDED:
            raise ValidationError("Payment is already refunded", details={"payment_id": payment_id})
        payment.payment_status = PAYMENT_STATUS_REFUNDED
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_payments_for_order(tenant_id: int, order_id: int) -> list[Payment]:
    return (
        Payment.query.filter_by(tenant_id=tenant_id, order_id=order_id)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )


def has_active_payments(tenant_id: int, order_id: int) -> bool:
    """True when at least one payment on the order is not reversed and not refunded."""
    count = (
        db.session.query(db.func.count(Payment.id))
        .filter(
            Payment.tenant_id == tenant_id,
            Payment.order_id == order_id,
            Payment.is_reversed.is_(False),
            Payment.payment_status != PAYMENT_STATUS_REFUNDED,
        )
        .scalar()
    )
    return bool(count)
