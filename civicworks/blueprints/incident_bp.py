"""
Incident blueprint: accident reports and the damaged-component catalog.

Endpoints:
    POST  /api/v1/incidents                           submit (any role)
    GET   /api/v1/incidents/<id>                      projection + approvals log
    POST  /api/v1/incidents/<id>/inspect              REPORTED → INSPECTED
    POST  /api/v1/incidents/<id>/review               {"action": "APPROVE"|"REJECT", "comments"}
    POST  /api/v1/incidents/<id>/finance-review       SUPERVISOR_REVIEW → FINANCE_REVIEW
    POST  /api/v1/incidents/<id>/start-repair         APPROVED → UNDER_REPAIR
    POST  /api/v1/incidents/<id>/complete-repair      UNDER_REPAIR → COMPLETED
    POST  /api/v1/incidents/<id>/claim                {"claim_status", "claim_reference_number"}
    GET   /api/v1/incidents/<id>/claim-history        claim audit rows

    GET   /api/v1/damaged-components                  catalog (?active=true)
    POST  /api/v1/damaged-components                  create (ADMIN)
    PUT   /api/v1/damaged-components/<id>             update costs (ADMIN)
    DELETE /api/v1/damaged-components/<id>            remove from the catalog (ADMIN)
    POST  /api/v1/damaged-components/<id>/toggle      activate / deactivate (ADMIN)
"""

import logging

from flask import Blueprint, request

from civicworks.blueprints import command_response, json_body, query_response
from civicworks.models.audit import audit_trail
from civicworks.services import damaged_component_service as catalog
from civicworks.services import incident_lifecycle as lifecycle

logger = logging.getLogger(__name__)

incident_bp = Blueprint("incidents", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# Incidents
# ═════════════════════════════════════════════════════════════════════════════


@incident_bp.route("/incidents", methods=["POST"])
def submit_incident():
    data = json_body()
    return command_response(
        "submit_incident",
        lambda actor: lifecycle.submit_incident(data, actor).to_dict(),
        status=201,
    )


@incident_bp.route("/incidents/<int:incident_id>", methods=["GET"])
def get_incident(incident_id):
    return query_response(lambda: lifecycle.get_incident(incident_id).to_dict())


@incident_bp.route("/incidents/<int:incident_id>/inspect", methods=["POST"])
def inspect_incident(incident_id):
    data = json_body()
    return command_response(
        "inspect_incident",
        lambda actor: lifecycle.inspect_incident(incident_id, data, actor).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/review", methods=["POST"])
def review_incident(incident_id):
    data = json_body()
    return command_response(
        "review_incident",
        lambda actor: lifecycle.review_incident(
            incident_id, actor, data.get("action"), data.get("comments"),
        ).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/finance-review", methods=["POST"])
def begin_finance_review(incident_id):
    data = json_body()
    return command_response(
        "begin_finance_review",
        lambda actor: lifecycle.begin_finance_review(incident_id, actor, data.get("comments")).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/start-repair", methods=["POST"])
def start_repair(incident_id):
    data = json_body()
    return command_response(
        "start_repair",
        lambda actor: lifecycle.start_repair(incident_id, actor, data.get("comments")).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/complete-repair", methods=["POST"])
def complete_repair(incident_id):
    data = json_body()
    return command_response(
        "complete_repair",
        lambda actor: lifecycle.complete_repair(incident_id, actor, data.get("comments")).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/claim", methods=["POST"])
def update_claim_status(incident_id):
    data = json_body()
    return command_response(
        "update_claim_status",
        lambda actor: lifecycle.update_claim_status(
            incident_id, actor, data.get("claim_status"), data.get("claim_reference_number"),
        ).to_dict(),
    )


@incident_bp.route("/incidents/<int:incident_id>/claim-history", methods=["GET"])
def claim_history(incident_id):
    def _history():
        incident = lifecycle.get_incident(incident_id)
        return {"items": [a.to_dict() for a in audit_trail("incident", incident.id)]}
    return query_response(_history)


# ═════════════════════════════════════════════════════════════════════════════
# Damaged-component catalog
# ═════════════════════════════════════════════════════════════════════════════


@incident_bp.route("/damaged-components", methods=["GET"])
def list_damaged_components():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    return query_response(
        lambda: {"items": [c.to_dict() for c in catalog.list_components(active_only)]},
    )


@incident_bp.route("/damaged-components", methods=["POST"])
def create_damaged_component():
    data = json_body()
    return command_response(
        "create_damaged_component",
        lambda actor: catalog.create_component(data, actor).to_dict(),
        status=201,
    )


@incident_bp.route("/damaged-components/<int:component_id>", methods=["PUT"])
def update_damaged_component(component_id):
    data = json_body()
    return command_response(
        "update_damaged_component",
        lambda actor: catalog.update_component(component_id, data, actor).to_dict(),
    )


@incident_bp.route("/damaged-components/<int:component_id>", methods=["DELETE"])
def delete_damaged_component(component_id):
    return command_response(
        "delete_damaged_component",
        lambda actor: catalog.delete_component(component_id, actor),
    )


@incident_bp.route("/damaged-components/<int:component_id>/toggle", methods=["POST"])
def toggle_damaged_component(component_id):
    return command_response(
        "toggle_damaged_component",
        lambda actor: catalog.toggle_component(component_id, actor).to_dict(),
    )
