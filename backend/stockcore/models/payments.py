from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_REFUNDED = "refunded"


class Payment(db.Model):
    """
    Payment recorded against an order by the payment subsystem.

    The order engine only reads these to decide whether a void is allowed:
    a payment is active while it is neither reversed nor refunded.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_tenant_order", "tenant_id", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_COMPLETED, index=True)

    is_reversed = db.Column(db.Boolean, nullable=False, default=False)
    reversed_by_user_id = db.Column(db.Integer, nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return not self.is_reversed and self.payment_status != PAYMENT_STATUS_REFUNDED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "payment_status": self.payment_status,
            "is_reversed": self.is_reversed,
            "reversed_by_user_id": self.reversed_by_user_id,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversal_reason": self.reversal_reason,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
