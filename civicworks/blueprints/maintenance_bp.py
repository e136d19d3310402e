"""
Maintenance schedule blueprint.

Endpoints:
    POST  /api/v1/maintenance-schedules         create (ADMIN, SUPERVISOR)
    GET   /api/v1/maintenance-schedules/<id>    projection
"""

from flask import Blueprint

from civicworks.blueprints import command_response, json_body, query_response
from civicworks.services import maintenance_service

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/v1/maintenance-schedules")


@maintenance_bp.route("", methods=["POST"])
def create_schedule():
    data = json_body()
    return command_response(
        "create_maintenance_schedule",
        lambda actor: maintenance_service.create_schedule(data, actor).to_dict(),
        status=201,
    )


@maintenance_bp.route("/<int:schedule_id>", methods=["GET"])
def get_schedule(schedule_id):
    return query_response(lambda: maintenance_service.get_schedule(schedule_id).to_dict())
