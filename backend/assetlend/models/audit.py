from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Append-only record of every mutation the lending core performs.

    IMMUTABLE: Never updated. Rows are only removed by the bulk retention
    cleanup. Written inside the same DB transaction as the change it
    describes, so a change without its audit row is never committed.

    target_table/target_id point at the affected row without a foreign key:
    history outlives deleted items.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_target", "target_table", "target_id"),
        db.Index("ix_audit_logs_user_timestamp", "user_id", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Actor (nullable for system actions such as CLI seeding)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    action_type = db.Column(db.String(64), nullable=False, index=True)
    target_table = db.Column(db.String(64), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)

    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} {self.action_type} {self.target_table}:{self.target_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action_type": self.action_type,
            "target_table": self.target_table,
            "target_id": self.target_id,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "timestamp": to_utc_z(self.timestamp),
        }
