# Overview: Customer records and the denormalized lifetime purchase total.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import SideEffectFailure
from ..models import Customer, Order, User
from ..time_utils import utcnow
from .concurrency import run_with_retry


def get_or_create_customer_for_user(tenant_id: int, user_id: int) -> Customer:
    """
    Return the customer linked to user_id, creating it on first use.

    Name and email come from the users table when the row exists. Flushes,
    never commits.
    """
    customer = Customer.query.filter_by(tenant_id=tenant_id, linked_user_id=user_id).first()
    if customer is not None:
        return customer

    user = User.query.filter_by(id=user_id, tenant_id=tenant_id).first()
    name = None
    email = None
    phone_number = None
    if user is not None:
        name = user.full_name or user.email
        email = user.email
        phone_number = user.phone_number

    customer = Customer(
        tenant_id=tenant_id,
        linked_user_id=user_id,
        name=name or f"User {user_id}",
        email=email,
        phone_number=phone_number,
        total_purchases_cents=0,
    )
    db.session.add(customer)
    db.session.flush()
    return customer


def compute_total_purchases(tenant_id: int, user_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(Order.total_cents), 0))
        .filter(
            Order.tenant_id == tenant_id,
            Order.user_id == user_id,
            Order.is_voided.is_(False),
            Order.deleted_at.is_(None),
        )
        .scalar()
    )
    return int(total or 0)


def _write_total(tenant_id: int, user_id: int) -> Customer:
    customer = get_or_create_customer_for_user(tenant_id, user_id)
    customer.total_purchases_cents = compute_total_purchases(tenant_id, user_id)
    customer.totals_synced_at = utcnow()
    return customer


def sync_customer_totals(tenant_id: int, user_id: int) -> Customer | None:
    """
    Best-effort refresh of one customer's total after an order change.

    Runs after the order transaction has committed. Any failure is logged
    and rolled back here; the order operation that triggered it has already
    succeeded and must not see the error.
    """
    try:
        customer = _write_total(tenant_id, user_id)
        db.session.commit()
        return customer
    except Exception as exc:
        db.session.rollback()
        failure = SideEffectFailure("customer total sync", exc, tenant_id=tenant_id, user_id=user_id)
        current_app.logger.exception("%s (tenant=%s user=%s)", failure, tenant_id, user_id)
        return None


def recalculate_all_customer_totals(tenant_id: int) -> int:
    """
    Rebuild totals for every user with orders or a linked customer.

    Operator repair path, so errors propagate. Returns the number of
    customers written.
    """
    def _op():
        order_users = {
            uid for (uid,) in db.session.query(Order.user_id).filter(Order.tenant_id == tenant_id).distinct()
        }
        linked_users = {
            uid
            for (uid,) in db.session.query(Customer.linked_user_id)
            .filter(Customer.tenant_id == tenant_id, Customer.linked_user_id.isnot(None))
            .distinct()
        }
        user_ids = sorted(order_users | linked_users)
        for user_id in user_ids:
            _write_total(tenant_id, user_id)
        db.session.commit()
        return len(user_ids)

    count = run_with_retry(_op)
    current_app.logger.info("recalculated %s customer totals for tenant=%s", count, tenant_id)
    return count
