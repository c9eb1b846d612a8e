from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from .inventory import _num


SETTLEMENT_SETTLED = "SETTLED"
SETTLEMENT_PARTIAL = "PARTIALLY_SETTLED"
SETTLEMENT_STATUSES = {SETTLEMENT_SETTLED, SETTLEMENT_PARTIAL}


class Sale(db.Model):
    """
    Committed sale of catalog items.

    A sale row only exists in a committed state: stock was decremented in the
    same DB transaction that inserted it. Deleting it is the reversal.

    status mirrors the linked receivable (if any): SETTLED iff the
    installments cover final_amount. Only the settlement ledger writes it
    after creation.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_date = db.Column(db.Date, nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = db.Column(db.String(255), nullable=False, default="Walk-in Customer")
    payment_method = db.Column(db.String(32), nullable=False)

    # Money amounts (shop currency, 2 decimals)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default=SETTLEMENT_SETTLED, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client")
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def label(self) -> str:
        return f"Sale #{self.id}"

    def to_dict(self, include_lines: bool = False) -> dict:
        receivable = getattr(self, "receivable", None)
        data = {
            "id": self.id,
            "sale_date": to_iso_date(self.sale_date),
            "client_id": self.client_id,
            "client_name": self.client_name,
            "payment_method": self.payment_method,
            "total_amount": _num(self.total_amount),
            "discount": _num(self.discount),
            "final_amount": _num(self.final_amount),
            "paid_amount": _num(self.paid_amount),
            "remaining_amount": _num(self.final_amount - self.paid_amount),
            "status": self.status,
            "receivable_id": receivable.id if receivable else None,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale; owned by the sale and deleted with it."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(15, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "quantity": _num(self.quantity),
            "unit_price": _num(self.unit_price),
            "line_total": _num(self.line_total),
        }
