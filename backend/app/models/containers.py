from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date
from .inventory import _num


CONTAINER_FILLED = "FILLED"
CONTAINER_EMPTY = "EMPTY"
CONTAINER_MAINTENANCE = "MAINTENANCE"
CONTAINER_STATES = {CONTAINER_FILLED, CONTAINER_EMPTY, CONTAINER_MAINTENANCE}


class ContainerBatch(db.Model):
    """
    One purchase of returnable containers (e.g. 20L water jerrycans).

    quantity_acquired is the purchased quantity. Sales never change it; they
    only move units between pool rows.
    """
    __tablename__ = "container_batches"
    __table_args__ = (
        db.CheckConstraint("quantity_acquired > 0", name="ck_container_batches_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)
    capacity = db.Column(db.String(32), nullable=False)
    state = db.Column(db.String(16), nullable=False, default=CONTAINER_FILLED)

    quantity_acquired = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    container_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    unit_resale_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    supplier_name = db.Column(db.String(255), nullable=True)
    acquired_on = db.Column(db.Date, nullable=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_cost(self):
        return self.unit_cost * self.quantity_acquired

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "capacity": self.capacity,
            "state": self.state,
            "quantity_acquired": self.quantity_acquired,
            "unit_cost": _num(self.unit_cost),
            "container_price": _num(self.container_price),
            "unit_resale_price": _num(self.unit_resale_price),
            "total_cost": _num(self.total_cost),
            "supplier_name": self.supplier_name,
            "acquired_on": to_iso_date(self.acquired_on),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class ContainerPoolRow(db.Model):
    """
    Aggregated count of containers for one (product, capacity, state) key.

    INVARIANTS:
    - at most one row per key (unique constraint)
    - quantity > 0 at rest; a row reaching zero is deleted by the pool
    batch_id is the most recent batch that fed this row (provenance only).
    """
    __tablename__ = "container_pool_rows"
    __table_args__ = (
        db.UniqueConstraint("product_name", "capacity", "state", name="uq_container_pool_key"),
        db.CheckConstraint("quantity >= 0", name="ck_container_pool_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)
    capacity = db.Column(db.String(32), nullable=False)
    state = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    batch_id = db.Column(
        db.Integer, db.ForeignKey("container_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def key(self) -> tuple:
        return (self.product_name, self.capacity, self.state)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "capacity": self.capacity,
            "state": self.state,
            "quantity": self.quantity,
            "batch_id": self.batch_id,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ContainerSale(db.Model):
    """
    Sale of filled containers.

    Two modes, fixed at creation:
    - keep: includes_container and not customer_brings_container. The
      customer leaves with the container; FILLED units are consumed.
    - swap: anything else. The customer returns an empty, so units move
      FILLED -> EMPTY.
    """
    __tablename__ = "container_sales"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_container_sales_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)
    capacity = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    customer_name = db.Column(db.String(255), nullable=False, default="Walk-in Customer")
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    includes_container = db.Column(db.Boolean, nullable=False, default=False)
    customer_brings_container = db.Column(db.Boolean, nullable=False, default=True)

    batch_id = db.Column(
        db.Integer, db.ForeignKey("container_batches.id", ondelete="SET NULL"), nullable=True, index=True
    )
    sale_date = db.Column(db.Date, nullable=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    batch = db.relationship("ContainerBatch", backref=db.backref("sales", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def keeps_container(self) -> bool:
        return bool(self.includes_container and not self.customer_brings_container)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_name": self.product_name,
            "capacity": self.capacity,
            "quantity": self.quantity,
            "unit_price": _num(self.unit_price),
            "total_amount": _num(self.total_amount),
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "includes_container": self.includes_container,
            "customer_brings_container": self.customer_brings_container,
            "mode": "keep" if self.keeps_container else "swap",
            "batch_id": self.batch_id,
            "sale_date": to_iso_date(self.sale_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
