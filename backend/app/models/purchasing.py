from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from .inventory import _num
from .sales import SETTLEMENT_SETTLED


RECEIPT_PENDING = "PENDING"
RECEIPT_APPROVED = "APPROVED"
RECEIPT_COMPLETED = "COMPLETED"
RECEIPT_CANCELLED = "CANCELLED"
RECEIPT_STATUSES = {RECEIPT_PENDING, RECEIPT_APPROVED, RECEIPT_COMPLETED, RECEIPT_CANCELLED}


class PurchaseOrder(db.Model):
    """
    Purchase order from a supplier.

    Two independent status axes:
    - receipt_status: goods flow. Stock is received (inbound movements) exactly
      once, when the order is created COMPLETED or first moves to COMPLETED.
      stock_received_at marks that it happened.
    - settlement_status: money flow, mirrored from the linked payable.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(64), nullable=False)
    order_date = db.Column(db.Date, nullable=False)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    receipt_status = db.Column(db.String(16), nullable=False, default=RECEIPT_PENDING, index=True)
    settlement_status = db.Column(db.String(20), nullable=False, default=SETTLEMENT_SETTLED, index=True)
    stock_received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    lines = db.relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def label(self) -> str:
        return f"Purchase {self.po_number}"

    @property
    def is_received(self) -> bool:
        return self.stock_received_at is not None

    def to_dict(self, include_lines: bool = False) -> dict:
        payable = getattr(self, "payable", None)
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "order_date": to_iso_date(self.order_date),
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "total_amount": _num(self.total_amount),
            "discount": _num(self.discount),
            "final_amount": _num(self.final_amount),
            "paid_amount": _num(self.paid_amount),
            "receipt_status": self.receipt_status,
            "settlement_status": self.settlement_status,
            "stock_received_at": to_utc_z(self.stock_received_at),
            "receivable_id": payable.id if payable else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(
        db.Integer, db.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(15, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    purchase_order = db.relationship("PurchaseOrder", back_populates="lines")
    item = db.relationship("Item")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": _num(self.quantity),
            "unit_price": _num(self.unit_price),
            "line_total": _num(self.line_total),
            "version_id": self.version_id,
        }
