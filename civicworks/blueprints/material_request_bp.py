"""
Material request blueprint.

Endpoints:
    POST  /api/v1/material-requests                 submit {"items": [...], "maintenance_schedule_id", "description"}
    GET   /api/v1/material-requests/<id>            projection with per-line allocations
    PATCH /api/v1/material-requests/<id>            {"items", "description", "maintenance_schedule_id"} (ADMIN, PENDING)
    DELETE /api/v1/material-requests/<id>           remove a PENDING request (ADMIN)
    POST  /api/v1/material-requests/<id>/approve    allocate against stock (ADMIN)
    POST  /api/v1/material-requests/<id>/reject     {"reason"} (ADMIN)
    POST  /api/v1/material-requests/<id>/receive    {"notes"} (MAINTENANCE_ENGINEER)
    GET   /api/v1/material-requests/<id>/history    audit rows
"""

from flask import Blueprint

from civicworks.blueprints import command_response, json_body, query_response
from civicworks.models.audit import audit_trail
from civicworks.services import material_fulfillment as fulfillment

material_request_bp = Blueprint("material_requests", __name__, url_prefix="/api/v1/material-requests")


@material_request_bp.route("", methods=["POST"])
def submit_material_request():
    data = json_body()
    return command_response(
        "submit_material_request",
        lambda actor: fulfillment.submit_material_request(data, actor).to_dict(),
        status=201,
    )


@material_request_bp.route("/<int:request_id>", methods=["GET"])
def get_material_request(request_id):
    return query_response(lambda: fulfillment.get_material_request(request_id).to_dict())


@material_request_bp.route("/<int:request_id>", methods=["PATCH"])
def update_material_request(request_id):
    data = json_body()
    return command_response(
        "update_material_request",
        lambda actor: fulfillment.update_material_request(request_id, data, actor).to_dict(),
    )


@material_request_bp.route("/<int:request_id>", methods=["DELETE"])
def delete_material_request(request_id):
    return command_response(
        "delete_material_request",
        lambda actor: fulfillment.delete_material_request(request_id, actor),
    )


@material_request_bp.route("/<int:request_id>/approve", methods=["POST"])
def approve_material_request(request_id):
    return command_response(
        "approve_material_request",
        lambda actor: fulfillment.approve_material_request(request_id, actor).to_dict(),
    )


@material_request_bp.route("/<int:request_id>/reject", methods=["POST"])
def reject_material_request(request_id):
    data = json_body()
    return command_response(
        "reject_material_request",
        lambda actor: fulfillment.reject_material_request(request_id, actor, data.get("reason")).to_dict(),
    )


@material_request_bp.route("/<int:request_id>/receive", methods=["POST"])
def receive_material_request(request_id):
    data = json_body()
    return command_response(
        "receive_material_request",
        lambda actor: fulfillment.receive_material_request(request_id, actor, data.get("notes")).to_dict(),
    )


@material_request_bp.route("/<int:request_id>/history", methods=["GET"])
def material_request_history(request_id):
    def _history():
        mr = fulfillment.get_material_request(request_id)
        return {"items": [a.to_dict() for a in audit_trail("material_request", mr.id)]}
    return query_response(_history)
