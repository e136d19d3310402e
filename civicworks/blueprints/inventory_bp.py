"""
Inventory blueprint: item registry, stock ledger reads and availability preview.

Endpoints:
    GET     /api/v1/inventory                          items with stock status (?include_deleted=true)
    POST    /api/v1/inventory                          register item (ADMIN)
    GET     /api/v1/inventory/<code>                   item projection
    PUT     /api/v1/inventory/<code>                   edit name / threshold / unit cost (ADMIN)
    DELETE  /api/v1/inventory/<code>                   soft delete (ADMIN)
    POST    /api/v1/inventory/<code>/adjust            stocktake {"new_stock", "reason"} (ADMIN)
    GET     /api/v1/inventory/<code>/transactions      append-only ledger rows
    GET     /api/v1/inventory/<code>/balance           ledger vs. current stock check
    POST    /api/v1/inventory/check-availability       {"items": [{inventory_item_code, requested_quantity}]}
"""

from flask import Blueprint, current_app, request

from civicworks.blueprints import command_response, json_body, query_response
from civicworks.services import inventory_ledger as ledger
from civicworks.services import inventory_service

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/v1/inventory")


def _ratio() -> float:
    return current_app.config.get("LOW_STOCK_WARNING_RATIO", 1.5)


@inventory_bp.route("", methods=["GET"])
def list_items():
    include_deleted = request.args.get("include_deleted", "").lower() in ("1", "true", "yes")
    return query_response(lambda: {
        "items": [i.to_dict(_ratio()) for i in inventory_service.list_items(include_deleted)],
    })


@inventory_bp.route("", methods=["POST"])
def register_item():
    data = json_body()
    return command_response(
        "register_inventory_item",
        lambda actor: inventory_service.register_item(data, actor).to_dict(_ratio()),
        status=201,
    )


@inventory_bp.route("/check-availability", methods=["POST"])
def check_availability():
    data = json_body()
    return query_response(lambda: {"items": ledger.check_availability(data.get("items"))})


@inventory_bp.route("/<code>", methods=["GET"])
def get_item(code):
    return query_response(lambda: inventory_service.get_item(code, include_deleted=True).to_dict(_ratio()))


@inventory_bp.route("/<code>", methods=["PUT"])
def update_item(code):
    data = json_body()
    return command_response(
        "update_inventory_item",
        lambda actor: inventory_service.update_item(code, data, actor).to_dict(_ratio()),
    )


@inventory_bp.route("/<code>", methods=["DELETE"])
def delete_item(code):
    return command_response(
        "delete_inventory_item",
        lambda actor: inventory_service.delete_item(code, actor).to_dict(_ratio()),
    )


@inventory_bp.route("/<code>/adjust", methods=["POST"])
def adjust_stock(code):
    data = json_body()
    return command_response(
        "adjust_inventory_stock",
        lambda actor: inventory_service.adjust_stock(code, data, actor).to_dict(),
    )


@inventory_bp.route("/<code>/transactions", methods=["GET"])
def list_transactions(code):
    return query_response(lambda: {"items": [t.to_dict() for t in ledger.list_transactions(code)]})


@inventory_bp.route("/<code>/balance", methods=["GET"])
def verify_balance(code):
    return query_response(lambda: ledger.verify_item_balance(code))
