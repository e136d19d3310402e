"""
CivicWorks Workflow Engine
Incident (accident report) domain models.

Models:
    - Incident:          accident report moving through inspection, two-tier review and repair
    - ApprovalRecord:    immutable, append-only log of every main-axis transition
    - DamagedComponent:  catalog of repairable components priced per damage level

Architecture:
    Incident ──1:N──▶ ApprovalRecord
    Incident ──N:M──▶ DamagedComponent  (component ids + priced breakdown frozen at inspection)

Lifecycle states:
    Incident.status:       REPORTED → INSPECTED → SUPERVISOR_REVIEW → [FINANCE_REVIEW] → APPROVED
                           → UNDER_REPAIR → COMPLETED  |  INSPECTED/SUPERVISOR_REVIEW/FINANCE_REVIEW → REJECTED
    Incident.claim_status: NOT_SUBMITTED → SUBMITTED → APPROVED → PAID  |  SUBMITTED → REJECTED
                           (only once status is APPROVED, UNDER_REPAIR or COMPLETED)
"""

from datetime import datetime, timezone
from decimal import Decimal

from civicworks.models import db
from civicworks.utils.helpers import as_float, iso


# ── Constants ────────────────────────────────────────────────────────────────

INCIDENT_STATUSES = (
    "REPORTED", "INSPECTED", "SUPERVISOR_REVIEW", "FINANCE_REVIEW",
    "APPROVED", "REJECTED", "UNDER_REPAIR", "COMPLETED",
)

CLAIM_STATUSES = ("NOT_SUBMITTED", "SUBMITTED", "APPROVED", "REJECTED", "PAID")

# Claim may only leave NOT_SUBMITTED once the incident itself is approved.
CLAIM_OPEN_STATUSES = frozenset({"APPROVED", "UNDER_REPAIR", "COMPLETED"})

# damage level → DamagedComponent cost column
DAMAGE_LEVELS = {
    "MINOR": "minor_cost",
    "MODERATE": "moderate_cost",
    "SEVERE": "severe_cost",
    "TOTAL_LOSS": "total_loss_cost",
}

APPROVAL_ACTIONS = ("APPROVE", "REJECT")

APPROVAL_STAGES = ("INSPECTION", "SUPERVISOR_REVIEW", "FINANCE_REVIEW", "REPAIR")


# ── Lifecycle Transition Tables ──────────────────────────────────────────────

# status → {action: next status}
INCIDENT_TRANSITIONS = {
    "REPORTED":          {"inspect": "INSPECTED"},
    "INSPECTED":         {"approve": "SUPERVISOR_REVIEW", "reject": "REJECTED"},
    "SUPERVISOR_REVIEW": {"approve": "APPROVED", "reject": "REJECTED",
                          "begin_finance_review": "FINANCE_REVIEW"},
    "FINANCE_REVIEW":    {"approve": "APPROVED", "reject": "REJECTED"},
    "APPROVED":          {"start_repair": "UNDER_REPAIR"},
    "UNDER_REPAIR":      {"complete_repair": "COMPLETED"},
    "REJECTED":          {},
    "COMPLETED":         {},
}

# Which approval stage a transition out of a given status belongs to
STAGE_BY_SOURCE = {
    "REPORTED": "INSPECTION",
    "INSPECTED": "SUPERVISOR_REVIEW",
    "SUPERVISOR_REVIEW": "FINANCE_REVIEW",
    "FINANCE_REVIEW": "FINANCE_REVIEW",
    "APPROVED": "REPAIR",
    "UNDER_REPAIR": "REPAIR",
}

CLAIM_TRANSITIONS = {
    "NOT_SUBMITTED": ["SUBMITTED"],
    "SUBMITTED":     ["APPROVED", "REJECTED"],
    "APPROVED":      ["PAID"],
    "REJECTED":      [],
    "PAID":          [],
}


def next_incident_status(current: str, action: str) -> str | None:
    """Return the target status for ``action`` from ``current``, or None if undefined."""
    return INCIDENT_TRANSITIONS.get(current, {}).get(action)


def validate_claim_transition(old_status: str, new_status: str) -> bool:
    """Return True if the claim sub-state may move from old to new."""
    return new_status in CLAIM_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# Incident
# ═════════════════════════════════════════════════════════════════════════════


class Incident(db.Model):
    """
    Accident report against a municipal asset.

    Two independent axes: ``status`` (inspection / review / repair) and
    ``claim_status`` (insurance claim). Every ``status`` change is paired
    with one ApprovalRecord in the same transaction.
    """

    __tablename__ = "incidents"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('REPORTED','INSPECTED','SUPERVISOR_REVIEW','FINANCE_REVIEW',"
            "'APPROVED','REJECTED','UNDER_REPAIR','COMPLETED')",
            name="ck_incident_status",
        ),
        db.CheckConstraint(
            "claim_status IN ('NOT_SUBMITTED','SUBMITTED','APPROVED','REJECTED','PAID')",
            name="ck_incident_claim_status",
        ),
        db.Index("idx_incident_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    incident_code = db.Column(db.String(20), nullable=False, unique=True, comment="ACC-0001")

    # ── Report ────────────────────────────────────────────────────────
    accident_type = db.Column(db.String(60), nullable=False)
    accident_date = db.Column(db.Date, nullable=False)
    accident_time = db.Column(db.String(5), nullable=True, comment="HH:MM")
    pole_code = db.Column(db.String(60), nullable=True, comment="Asset reference, free text")
    location_description = db.Column(db.Text, nullable=False)
    vehicle_plate_number = db.Column(db.String(20), nullable=True)
    driver_name = db.Column(db.String(150), nullable=True)
    insurance_company = db.Column(db.String(150), nullable=True)
    reported_by = db.Column(db.String(150), nullable=False)

    # ── Lifecycle ─────────────────────────────────────────────────────
    status = db.Column(db.String(20), nullable=False, default="REPORTED")
    claim_status = db.Column(db.String(20), nullable=False, default="NOT_SUBMITTED")
    claim_reference_number = db.Column(db.String(60), nullable=True)

    # ── Inspection (set atomically with REPORTED → INSPECTED) ─────────
    damage_level = db.Column(db.String(20), nullable=True)
    damage_description = db.Column(db.Text, nullable=True)
    safety_risk = db.Column(db.Boolean, nullable=True)
    damaged_component_ids = db.Column(db.JSON, nullable=True)
    cost_breakdown = db.Column(db.JSON, nullable=True)
    estimated_cost = db.Column(db.Numeric(14, 2), nullable=True)
    inspected_by = db.Column(db.String(150), nullable=True)
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    approvals = db.relationship(
        "ApprovalRecord", backref="incident", lazy="select",
        order_by="ApprovalRecord.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_approvals=True):
        d = {
            "id": self.id,
            "incident_id": self.incident_code,
            "accident_type": self.accident_type,
            "accident_date": iso(self.accident_date),
            "accident_time": self.accident_time,
            "pole_code": self.pole_code,
            "location_description": self.location_description,
            "vehicle_plate_number": self.vehicle_plate_number,
            "driver_name": self.driver_name,
            "insurance_company": self.insurance_company,
            "reported_by": self.reported_by,
            "status": self.status,
            "claim_status": self.claim_status,
            "claim_reference_number": self.claim_reference_number,
            "damage_level": self.damage_level,
            "damage_description": self.damage_description,
            "safety_risk": self.safety_risk,
            "damaged_components": self.damaged_component_ids or [],
            "cost_breakdown": self.cost_breakdown or [],
            "estimated_cost": as_float(self.estimated_cost),
            "inspected_by": self.inspected_by,
            "inspected_at": iso(self.inspected_at),
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_approvals:
            d["approvals"] = [a.to_dict() for a in self.approvals]
        return d

    def __repr__(self):
        return f"<Incident {self.incident_code} [{self.status}/{self.claim_status}]>"


class ApprovalRecord(db.Model):
    """Append-only record of one incident transition. Never updated, never deleted."""

    __tablename__ = "incident_approvals"
    __table_args__ = (
        db.CheckConstraint("action IN ('APPROVE','REJECT')", name="ck_approval_action"),
        db.CheckConstraint(
            "stage IN ('INSPECTION','SUPERVISOR_REVIEW','FINANCE_REVIEW','REPAIR')",
            name="ck_approval_stage",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(
        db.Integer, db.ForeignKey("incidents.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    stage = db.Column(db.String(20), nullable=False)
    action = db.Column(db.String(10), nullable=False)
    transition = db.Column(db.String(30), nullable=False, comment="inspect | approve | reject | start_repair | …")
    actor = db.Column(db.String(150), nullable=False)
    actor_role = db.Column(db.String(30), nullable=False)
    previous_status = db.Column(db.String(20), nullable=False)
    new_status = db.Column(db.String(20), nullable=False)
    comments = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "stage": self.stage,
            "action": self.action,
            "transition": self.transition,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "comments": self.comments,
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<ApprovalRecord {self.id}: {self.previous_status}→{self.new_status}>"


class DamagedComponent(db.Model):
    """Catalog entry used to price an inspection."""

    __tablename__ = "damaged_components"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    minor_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    moderate_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    severe_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_loss_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def cost_for(self, damage_level: str) -> Decimal:
        return Decimal(getattr(self, DAMAGE_LEVELS[damage_level]) or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "minor_cost": as_float(self.minor_cost),
            "moderate_cost": as_float(self.moderate_cost),
            "severe_cost": as_float(self.severe_cost),
            "total_loss_cost": as_float(self.total_loss_cost),
            "is_active": self.is_active,
        }
