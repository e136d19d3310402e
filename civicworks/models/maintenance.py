"""
CivicWorks Workflow Engine
Maintenance schedule model.

A schedule is the maintenance task a material request is raised for. The
engine only moves it when its materials become available:

    REQUESTED | PAUSED ──(materials ready)──▶ STARTED
"""

from datetime import datetime, timezone

from civicworks.models import db
from civicworks.utils.helpers import iso

MAINTENANCE_STATUSES = ("REQUESTED", "STARTED", "PAUSED", "COMPLETED")

STARTABLE_STATUSES = frozenset({"REQUESTED", "PAUSED"})


class MaintenanceSchedule(db.Model):
    __tablename__ = "maintenance_schedules"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('REQUESTED','STARTED','PAUSED','COMPLETED')",
            name="ck_maintenance_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True, comment="MS-0001")
    title = db.Column(db.String(200), nullable=False)
    asset_reference = db.Column(db.String(60), nullable=True)
    description = db.Column(db.Text, default="")
    scheduled_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="REQUESTED")
    requested_by = db.Column(db.String(150), nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    material_requests = db.relationship("MaterialRequest", backref="maintenance_schedule", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "asset_reference": self.asset_reference,
            "description": self.description,
            "scheduled_date": iso(self.scheduled_date),
            "status": self.status,
            "requested_by": self.requested_by,
            "started_at": iso(self.started_at),
            "material_request_ids": [mr.id for mr in self.material_requests],
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<MaintenanceSchedule {self.code} [{self.status}]>"
