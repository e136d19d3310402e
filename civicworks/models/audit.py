"""
CivicWorks Workflow Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of status changes on
      material requests, purchase requests, maintenance schedules,
      incident claims and the inventory registry.

Incident main-axis transitions are NOT written here; they have their own
ApprovalRecord log (see models/incident.py).
"""

import json
from datetime import UTC, datetime

from civicworks.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "incident", "damaged_component", "inventory_item",
    "material_request", "purchase_request", "maintenance_schedule",
}


class AuditLog(db.Model):
    """
    One row per lifecycle event.

    ``diff_json`` carries an old→new snapshot, e.g.
    ``{"status": {"old": "PENDING", "new": "APPROVED"}}``.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(
        db.String(60), nullable=False,
        comment="material_request.approve | purchase_request.deliver | incident.claim_status | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_role = db.Column(db.String(30), nullable=True)
    request_id = db.Column(db.String(64), nullable=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "request_id": self.request_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    actor_role: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    The request id is picked up from ``g`` when called inside a request.
    """
    from flask import g, has_request_context

    request_id = getattr(g, "request_id", None) if has_request_context() else None

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_role=actor_role,
        request_id=request_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def audit_trail(entity_type: str, entity_id) -> list[AuditLog]:
    """Return the audit rows for one entity, oldest first."""
    return (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditLog.id)
        .all()
    )
