from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from .inventory import _num


DIRECTION_OWED_TO_SHOP = "OWED_TO_SHOP"
DIRECTION_OWED_BY_SHOP = "OWED_BY_SHOP"
DIRECTIONS = {DIRECTION_OWED_TO_SHOP, DIRECTION_OWED_BY_SHOP}

RECEIVABLE_PENDING = "PENDING"
RECEIVABLE_PAID = "PAID"
RECEIVABLE_OVERDUE = "OVERDUE"
RECEIVABLE_STATUSES = {RECEIVABLE_PENDING, RECEIVABLE_PAID, RECEIVABLE_OVERDUE}

ORIGIN_ACTIVE = "ACTIVE"
ORIGIN_REVERSED = "REVERSED"


class Receivable(db.Model):
    """
    Amount owed to the shop (client debt) or by the shop (supplier payable).

    LINKAGE: sale_id / purchase_order_id are explicit foreign keys to the
    originating transaction. origin_label keeps the human reference
    ("Sale #12") for display only; nothing parses it.

    When the originating transaction is deleted the FK is cleared and
    origin_state becomes REVERSED. The receivable itself is never deleted by
    a transaction edit or delete.

    INVARIANTS:
    - principal - SUM(installments.amount) = outstanding balance >= 0
    - status == PAID  <=>  outstanding balance == 0
    """
    __tablename__ = "receivables"
    __table_args__ = (
        db.Index("ix_receivables_status_due", "status", "due_date"),
        db.CheckConstraint("principal > 0", name="ck_receivables_principal_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    direction = db.Column(db.String(16), nullable=False, index=True)

    # Counterparty snapshot (name/phone/email as known when the debt was created)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)
    counterparty_name = db.Column(db.String(255), nullable=False)
    counterparty_phone = db.Column(db.String(50), nullable=True)
    counterparty_email = db.Column(db.String(255), nullable=True)

    principal = db.Column(db.Numeric(12, 2), nullable=False)
    issued_on = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=RECEIVABLE_PENDING, index=True)
    description = db.Column(db.Text, nullable=True)

    # Originating transaction
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, unique=True)
    purchase_order_id = db.Column(
        db.Integer, db.ForeignKey("purchase_orders.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    origin_label = db.Column(db.String(64), nullable=True)
    origin_state = db.Column(db.String(16), nullable=True)
    origin_reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("receivable", uselist=False, lazy=True))
    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("payable", uselist=False, lazy=True))
    installments = db.relationship(
        "Installment",
        back_populates="receivable",
        cascade="all, delete-orphan",
        order_by="(Installment.payment_date, Installment.id)",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_paid(self) -> Decimal:
        return sum((inst.amount for inst in self.installments), Decimal("0"))

    @property
    def outstanding_balance(self) -> Decimal:
        return max(Decimal("0"), Decimal(self.principal) - self.total_paid)

    def to_dict(self, include_installments: bool = False) -> dict:
        data = {
            "id": self.id,
            "direction": self.direction,
            "client_id": self.client_id,
            "supplier_id": self.supplier_id,
            "counterparty_name": self.counterparty_name,
            "counterparty_phone": self.counterparty_phone,
            "counterparty_email": self.counterparty_email,
            "principal": _num(self.principal),
            "total_paid": _num(self.total_paid),
            "outstanding_balance": _num(self.outstanding_balance),
            "issued_on": to_iso_date(self.issued_on),
            "due_date": to_iso_date(self.due_date),
            "status": self.status,
            "description": self.description,
            "sale_id": self.sale_id,
            "purchase_order_id": self.purchase_order_id,
            "origin_label": self.origin_label,
            "origin_state": self.origin_state,
            "origin_reversed_at": to_utc_z(self.origin_reversed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_installments:
            data["installments"] = [inst.to_dict() for inst in self.installments]
        return data


class Installment(db.Model):
    """
    Partial payment against a receivable.

    Append-only except for explicit deletion, which recomputes the
    receivable's totals and status.
    """
    __tablename__ = "installments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_installments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receivable_id = db.Column(
        db.Integer, db.ForeignKey("receivables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    receivable = db.relationship("Receivable", back_populates="installments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receivable_id": self.receivable_id,
            "amount": _num(self.amount),
            "payment_date": to_iso_date(self.payment_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
