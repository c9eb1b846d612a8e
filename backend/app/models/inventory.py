from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


MOVEMENT_INBOUND = "INBOUND"
MOVEMENT_OUTBOUND = "OUTBOUND"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_REVERSAL = "REVERSAL"
MOVEMENT_TYPES = {MOVEMENT_INBOUND, MOVEMENT_OUTBOUND, MOVEMENT_ADJUSTMENT, MOVEMENT_REVERSAL}


def _num(value):
    return float(value) if value is not None else None


class Item(db.Model):
    """
    Catalog item with a stored on-hand quantity.

    WHY stored (not ledger-derived): the shop reads on-hand quantity on every
    sale screen. The StockMovement trail justifies the stored value; the
    two are written in the same DB transaction by the stock ledger only.

    previous_quantity is the value just before the most recent mutation.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_items_quantity_non_negative"),
        db.Index("ix_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(100), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(15, 3), nullable=False, default=0)
    previous_quantity = db.Column(db.Numeric(15, 3), nullable=False, default=0)
    min_quantity = db.Column(db.Numeric(15, 3), nullable=False, default=5)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "quantity": _num(self.quantity),
            "previous_quantity": _num(self.previous_quantity),
            "min_quantity": _num(self.min_quantity),
            "price": _num(self.price),
            "cost": _num(self.cost),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one stock ledger mutation.

    IMMUTABLE: Records are never updated or deleted.
    quantity_delta is the requested signed change; new_quantity is what was
    stored (clamped at zero).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_occurred", "item_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    change_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Numeric(15, 3), nullable=False)
    previous_quantity = db.Column(db.Numeric(15, 3), nullable=False)
    new_quantity = db.Column(db.Numeric(15, 3), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    item = db.relationship("Item", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "change_type": self.change_type,
            "quantity_delta": _num(self.quantity_delta),
            "previous_quantity": _num(self.previous_quantity),
            "new_quantity": _num(self.new_quantity),
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
