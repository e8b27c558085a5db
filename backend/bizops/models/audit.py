from __future__ import annotations

from ..extensions import db
from bizops.time_utils import to_utc_z

class AuditLog(db.Model):
    """
    Action log for completed mutating operations.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Written after the operation it describes has committed.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_business_created", "business_id", "created_at"),
        db.Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. invoice.created
    resource_type = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.Integer, nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "created_at": to_utc_z(self.created_at),
        }
