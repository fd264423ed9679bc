from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


MAINTENANCE_STATUS_SCHEDULED = "scheduled"
MAINTENANCE_STATUS_IN_PROGRESS = "in_progress"
MAINTENANCE_STATUS_COMPLETED = "completed"
MAINTENANCE_STATUS_CANCELLED = "cancelled"

MAINTENANCE_STATUSES = (
    MAINTENANCE_STATUS_SCHEDULED,
    MAINTENANCE_STATUS_IN_PROGRESS,
    MAINTENANCE_STATUS_COMPLETED,
    MAINTENANCE_STATUS_CANCELLED,
)

OPEN_MAINTENANCE_STATUSES = (MAINTENANCE_STATUS_SCHEDULED, MAINTENANCE_STATUS_IN_PROGRESS)

MAINTENANCE_TYPES = ("preventive", "corrective", "inspection", "calibration")
MAINTENANCE_PRIORITIES = ("low", "medium", "high", "critical")


class MaintenanceLog(db.Model):
    """
    One scheduled service of an item.

    LIFECYCLE:
    1. scheduled: booked, item untouched (may be rescheduled)
    2. in_progress: item status is maintenance while work happens
    3. completed or cancelled (terminal); the item goes back into service
       once no other log holds it in maintenance
    """
    __tablename__ = "maintenance_logs"
    __table_args__ = (
        db.Index("ix_maintenance_logs_item_status", "item_id", "status"),
        db.Index("ix_maintenance_logs_status_scheduled", "status", "scheduled_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    maintenance_type = db.Column(db.String(32), nullable=False)
    priority = db.Column(db.String(16), nullable=False, default="medium")

    status = db.Column(db.String(16), nullable=False, default=MAINTENANCE_STATUS_SCHEDULED, index=True)
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)
    work_performed = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    item = db.relationship("Item", backref=db.backref("maintenance_logs", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<MaintenanceLog id={self.id} item_id={self.item_id} status={self.status}>"

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Still scheduled after its date has passed."""
        return self.status == MAINTENANCE_STATUS_SCHEDULED and (now or utcnow()) > self.scheduled_date

    def append_note(self, stamp: datetime, label: str, text: str) -> None:
        line = f"{label} on {to_utc_z(stamp)}: {text}"
        self.notes = f"{self.notes}\n\n{line}" if self.notes else line

    def snapshot(self) -> dict:
        return {
            "item_id": self.item_id,
            "status": self.status,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "duration_minutes": self.duration_minutes,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "created_by_user_id": self.created_by_user_id,
            "title": self.title,
            "description": self.description,
            "maintenance_type": self.maintenance_type,
            "priority": self.priority,
            "status": self.status,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "duration_minutes": self.duration_minutes,
            "work_performed": self.work_performed,
            "notes": self.notes,
            "is_overdue": self.is_overdue(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
