from __future__ import annotations

from ..extensions import db
from codetrack.time_utils import to_utc_z


ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_SUBMITTED = "submitted"
ORDER_STATUS_APPROVED = "approved"
ORDER_STATUS_CLOSED = "closed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_SUBMITTED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_CLOSED,
    ORDER_STATUS_CANCELLED,
)

# Orders a batch may be generated for
CODE_ELIGIBLE_ORDER_STATUSES = (ORDER_STATUS_APPROVED, ORDER_STATUS_CLOSED)


class Order(db.Model):
    """
    Purchase order placed with a manufacturer.

    Owned by the ordering system; the tracking engine only reads it to size
    a batch. buffer_percent / units_per_case override the configured
    defaults when set.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_seller_status", "seller_org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_no = db.Column(db.String(64), nullable=False, unique=True, index=True)

    buyer_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    seller_org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_DRAFT, index=True)

    buffer_percent = db.Column(db.Integer, nullable=True)
    units_per_case = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer_org = db.relationship("Organization", foreign_keys=[buyer_org_id])
    seller_org = db.relationship("Organization", foreign_keys=[seller_org_id])
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_no": self.order_no,
            "buyer_org_id": self.buyer_org_id,
            "seller_org_id": self.seller_org_id,
            "status": self.status,
            "buffer_percent": self.buffer_percent,
            "units_per_case": self.units_per_case,
            "created_at": to_utc_z(self.created_at),
        }


class OrderLine(db.Model):
    """One product/variant on an order. quantity is in saleable units."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    variant_code = db.Column(db.String(64), nullable=True)
    variant_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "variant_code": self.variant_code,
            "variant_name": self.variant_name,
            "quantity": self.quantity,
        }
