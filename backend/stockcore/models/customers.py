from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer record linked to an ordering user.

    MULTI-TENANT: customers are scoped to tenants via tenant_id; at most one
    customer per (tenant, linked user).

    total_purchases_cents is a denormalized aggregate over the user's
    non-voided, non-deleted orders. It is eventually consistent: the order
    engine refreshes it after each order change on a best-effort basis.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "linked_user_id", name="uq_customers_tenant_user"),
        db.Index("ix_customers_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    linked_user_id = db.Column(db.Integer, nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    totals_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "linked_user_id": self.linked_user_id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "is_active": self.is_active,
            "total_purchases_cents": self.total_purchases_cents,
            "totals_synced_at": to_utc_z(self.totals_synced_at) if self.totals_synced_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
