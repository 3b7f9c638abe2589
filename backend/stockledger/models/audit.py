from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuditEvent(db.Model):
    """
    Append-only audit trail for order lifecycle actions.

    Written after the audited change commits, in its own transaction.
    A missing audit row never means the change did not happen.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_user_id = db.Column(db.Integer, nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }
