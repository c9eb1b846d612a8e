from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class ActivityLog(db.Model):
    """
    Activity feed entry written by the default event sink after a committed
    ledger change (sale created, installment recorded, price drift, ...).

    Written outside the ledger transaction; losing a row never affects stock
    or balances.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_kind = db.Column(db.String(64), nullable=False, index=True)  # e.g. sale.created
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    summary = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "event_kind": self.event_kind,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "summary": self.summary,
            "created_at": to_utc_z(self.created_at),
        }
