from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


DAMAGE_SEVERITY_LOW = "Low"
DAMAGE_SEVERITY_MEDIUM = "Medium"
DAMAGE_SEVERITY_HIGH = "High"
DAMAGE_SEVERITY_CRITICAL = "Critical"

DAMAGE_SEVERITIES = (
    DAMAGE_SEVERITY_LOW,
    DAMAGE_SEVERITY_MEDIUM,
    DAMAGE_SEVERITY_HIGH,
    DAMAGE_SEVERITY_CRITICAL,
)

DAMAGE_STATUS_PENDING = "Pending"
DAMAGE_STATUS_UNDER_REVIEW = "Under Review"
DAMAGE_STATUS_RESOLVED = "Resolved"

DAMAGE_STATUSES = (
    DAMAGE_STATUS_PENDING,
    DAMAGE_STATUS_UNDER_REVIEW,
    DAMAGE_STATUS_RESOLVED,
)

# Reports still waiting on a store keeper
OPEN_DAMAGE_STATUSES = (DAMAGE_STATUS_PENDING, DAMAGE_STATUS_UNDER_REVIEW)


class Damage(db.Model):
    """
    A damage report against an item.

    A Critical report takes the item out of service (status damaged);
    resolving the last open Critical report puts it back. Lower severities
    are recorded only.
    """
    __tablename__ = "damages"
    __table_args__ = (
        db.CheckConstraint("quantity_damaged >= 1", name="ck_damages_quantity_positive"),
        db.Index("ix_damages_item_status", "item_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    reported_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    description = db.Column(db.Text, nullable=False)
    severity = db.Column(db.String(16), nullable=False, default=DAMAGE_SEVERITY_MEDIUM, index=True)
    quantity_damaged = db.Column(db.Integer, nullable=False, default=1)
    serial_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=DAMAGE_STATUS_PENDING, index=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    item = db.relationship("Item", backref=db.backref("damage_reports", lazy=True))
    reported_by = db.relationship("User", foreign_keys=[reported_by_user_id])
    resolved_by = db.relationship("User", foreign_keys=[resolved_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Damage id={self.id} item_id={self.item_id} severity={self.severity} status={self.status}>"

    @property
    def is_critical(self) -> bool:
        return self.severity == DAMAGE_SEVERITY_CRITICAL

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_DAMAGE_STATUSES

    def resolution_hours(self) -> float | None:
        if self.resolved_at is None or self.created_at is None:
            return None
        return round((self.resolved_at - self.created_at).total_seconds() / 3600, 2)

    def snapshot(self) -> dict:
        return {
            "item_id": self.item_id,
            "severity": self.severity,
            "quantity_damaged": self.quantity_damaged,
            "status": self.status,
            "resolved_by_user_id": self.resolved_by_user_id,
            "notes": self.notes,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "reported_by_user_id": self.reported_by_user_id,
            "description": self.description,
            "severity": self.severity,
            "quantity_damaged": self.quantity_damaged,
            "serial_number": self.serial_number,
            "notes": self.notes,
            "status": self.status,
            "is_critical": self.is_critical,
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolved_at": to_utc_z(self.resolved_at),
            "resolution_hours": self.resolution_hours(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
