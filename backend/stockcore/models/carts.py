from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CartLine(db.Model):
    """
    One product line in a user's cart.

    Carts hold a soft reservation only: lines are checked against
    Product.quantity when written, but stock is not decremented until
    checkout creates an order. product_name / product_price_cents are a
    display snapshot refreshed on every write.
    """
    __tablename__ = "cart_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_cart_lines_quantity_positive"),
        db.Index("ix_cart_lines_tenant_user_product", "tenant_id", "user_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    product_price_cents = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    # Set on removal and on checkout
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    checked_out_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "product_name": self.product_name,
            "product_price_cents": self.product_price_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "checked_out_order_id": self.checked_out_order_id,
        }
