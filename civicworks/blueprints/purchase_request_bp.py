"""
Purchase request blueprint. Every command is ADMIN-only.

Endpoints:
    POST  /api/v1/purchase-requests                 direct purchase {"items", "supplier_name", "supplier_contact"}
    GET   /api/v1/purchase-requests/<id>            projection with lines
    POST  /api/v1/purchase-requests/<id>/approve    PENDING → APPROVED (total frozen)
    POST  /api/v1/purchase-requests/<id>/reject     {"reason"}
    POST  /api/v1/purchase-requests/<id>/order      APPROVED → ORDERED
    POST  /api/v1/purchase-requests/<id>/arrive     ORDERED → ARRIVED_IN_STOCK (stock credited)
    POST  /api/v1/purchase-requests/<id>/deliver    ARRIVED_IN_STOCK → DELIVERED
    GET   /api/v1/purchase-requests/<id>/history    audit rows
"""

from flask import Blueprint

from civicworks.blueprints import command_response, json_body, query_response
from civicworks.models.audit import audit_trail
from civicworks.services import purchase_pipeline as pipeline

purchase_request_bp = Blueprint("purchase_requests", __name__, url_prefix="/api/v1/purchase-requests")


@purchase_request_bp.route("", methods=["POST"])
def create_purchase_request():
    data = json_body()
    return command_response(
        "create_purchase_request",
        lambda actor: pipeline.create_purchase_request(data, actor).to_dict(),
        status=201,
    )


@purchase_request_bp.route("/<int:purchase_id>", methods=["GET"])
def get_purchase_request(purchase_id):
    return query_response(lambda: pipeline.get_purchase_request(purchase_id).to_dict())


@purchase_request_bp.route("/<int:purchase_id>/approve", methods=["POST"])
def approve_purchase(purchase_id):
    data = json_body()
    return command_response(
        "approve_purchase",
        lambda actor: pipeline.approve_purchase(
            purchase_id, actor, data.get("supplier_name"), data.get("supplier_contact"),
        ).to_dict(),
    )


@purchase_request_bp.route("/<int:purchase_id>/reject", methods=["POST"])
def reject_purchase(purchase_id):
    data = json_body()
    return command_response(
        "reject_purchase",
        lambda actor: pipeline.reject_purchase(purchase_id, actor, data.get("reason")).to_dict(),
    )


@purchase_request_bp.route("/<int:purchase_id>/order", methods=["POST"])
def order_purchase(purchase_id):
    return command_response(
        "order_purchase",
        lambda actor: pipeline.order_purchase(purchase_id, actor).to_dict(),
    )


@purchase_request_bp.route("/<int:purchase_id>/arrive", methods=["POST"])
def mark_purchase_arrived(purchase_id):
    return command_response(
        "mark_purchase_arrived",
        lambda actor: pipeline.mark_purchase_arrived(purchase_id, actor).to_dict(),
    )


@purchase_request_bp.route("/<int:purchase_id>/deliver", methods=["POST"])
def deliver_purchase(purchase_id):
    return command_response(
        "deliver_purchase",
        lambda actor: pipeline.deliver_purchase(purchase_id, actor).to_dict(),
    )


@purchase_request_bp.route("/<int:purchase_id>/history", methods=["GET"])
def purchase_request_history(purchase_id):
    def _history():
        pr = pipeline.get_purchase_request(purchase_id)
        return {"items": [a.to_dict() for a in audit_trail("purchase_request", pr.id)]}
    return query_response(_history)
