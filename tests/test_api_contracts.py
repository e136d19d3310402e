"""
API Contract Tests: authentication, error shapes, idempotent command replay
and end-to-end flows over HTTP.

Every error response follows the standard format:
    { "error": "human message", "code": "<TAXONOMY CODE>", "details": {...}? }

Run: python -m pytest tests/test_api_contracts.py -v
"""

import pytest

from civicworks.models import db
from civicworks.models.inventory import InventoryTransaction
from civicworks.models.material import MaterialRequest

TAXONOMY = {
    "PERMISSION_DENIED", "INVALID_TRANSITION", "INSUFFICIENT_STOCK",
    "VALIDATION_ERROR", "ITEM_NOT_FOUND", "CONFLICT",
    "UNAUTHENTICATED", "METHOD_NOT_ALLOWED",
}


# ── Helpers ──────────────────────────────────────────────────────────────


def _assert_standard_error(res, expected_status, expected_code):
    """Assert that a response is a standard error shape."""
    body = res.get_json()
    assert body is not None, "Error response should have JSON body"
    assert "error" in body, f"Error response must have 'error' field, got: {body}"
    assert body.get("code") in TAXONOMY, f"Unexpected error code: {body}"
    assert res.status_code == expected_status, \
        f"Expected {expected_status}, got {res.status_code}: {body}"
    assert body["code"] == expected_code


def _register(client, auth, code="BULB-01", stock=4, unit_cost=12.5):
    res = client.post("/api/v1/inventory", headers=auth("ADMIN"), json={
        "code": code, "name": f"Item {code}", "initial_stock": stock,
        "minimum_threshold": 2, "unit_cost": unit_cost,
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _submit_mr(client, auth, *pairs, **headers):
    return client.post("/api/v1/material-requests", headers=auth("SUPERVISOR", **headers), json={
        "items": [{"inventory_item_code": c, "requested_quantity": q} for c, q in pairs],
    })


# ── Contract: Authentication ─────────────────────────────────────────────


class TestAuthentication:
    def test_missing_token_is_401(self, client):
        res = client.get("/api/v1/inventory")
        _assert_standard_error(res, 401, "UNAUTHENTICATED")

    def test_garbage_token_is_401(self, client):
        res = client.get("/api/v1/inventory", headers={"Authorization": "Bearer not-a-jwt"})
        _assert_standard_error(res, 401, "UNAUTHENTICATED")

    def test_expired_token_is_401(self, client, mint_token):
        token = mint_token("admin-1", "ADMIN", expires_in=-10)
        res = client.get("/api/v1/inventory", headers={"Authorization": f"Bearer {token}"})
        _assert_standard_error(res, 401, "UNAUTHENTICATED")

    def test_unknown_role_is_401(self, client, auth):
        res = client.get("/api/v1/inventory", headers=auth("JANITOR", "j-1"))
        _assert_standard_error(res, 401, "UNAUTHENTICATED")

    def test_health_needs_no_token(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "trace-123"})
        assert res.headers["X-Request-ID"] == "trace-123"


# ── Contract: Error Shape ────────────────────────────────────────────────


class TestErrorShape:
    def test_permission_denied(self, client, auth):
        res = client.post("/api/v1/inventory", headers=auth("SUPERVISOR"), json={"code": "X", "name": "X"})
        _assert_standard_error(res, 403, "PERMISSION_DENIED")
        assert res.get_json()["details"]["action"] == "register_inventory_item"

    def test_validation_error_names_field(self, client, auth):
        res = client.post("/api/v1/inventory", headers=auth("ADMIN"), json={"code": "X"})
        _assert_standard_error(res, 400, "VALIDATION_ERROR")
        assert res.get_json()["details"] == {"name": "required"}

    def test_unknown_item(self, client, auth):
        res = client.get("/api/v1/inventory/GHOST", headers=auth("ADMIN"))
        _assert_standard_error(res, 404, "ITEM_NOT_FOUND")

    def test_unknown_route(self, client, auth):
        res = client.get("/api/v1/does-not-exist", headers=auth("ADMIN"))
        _assert_standard_error(res, 404, "ITEM_NOT_FOUND")

    def test_method_not_allowed(self, client, auth):
        res = client.delete("/api/v1/material-requests", headers=auth("ADMIN"))
        _assert_standard_error(res, 405, "METHOD_NOT_ALLOWED")

    def test_invalid_transition(self, client, auth):
        _register(client, auth)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        res = client.post(f"/api/v1/material-requests/{mr['id']}/receive", headers=auth("MAINTENANCE_ENGINEER"))
        _assert_standard_error(res, 409, "INVALID_TRANSITION")
        assert res.get_json()["details"]["current_status"] == "PENDING"

    def test_duplicate_item_code_conflicts(self, client, auth):
        _register(client, auth)
        res = client.post("/api/v1/inventory", headers=auth("ADMIN"), json={"code": "BULB-01", "name": "Again"})
        _assert_standard_error(res, 409, "CONFLICT")

    def test_stock_adjust_below_zero_rejected(self, client, auth):
        _register(client, auth)
        res = client.post("/api/v1/inventory/BULB-01/adjust", headers=auth("ADMIN"),
                          json={"new_stock": -2, "reason": "count"})
        _assert_standard_error(res, 400, "VALIDATION_ERROR")


# ── Contract: Idempotent commands ────────────────────────────────────────


class TestIdempotency:
    def test_resubmitted_request_creates_one_record(self, client, auth):
        _register(client, auth)
        first = _submit_mr(client, auth, ("BULB-01", 2), **{"Idempotency-Key": "mr-create-1"})
        second = _submit_mr(client, auth, ("BULB-01", 2), **{"Idempotency-Key": "mr-create-1"})

        assert first.status_code == second.status_code == 201
        assert "Idempotent-Replayed" not in first.headers
        assert second.headers["Idempotent-Replayed"] == "true"
        assert first.get_json()["id"] == second.get_json()["id"]
        assert MaterialRequest.query.count() == 1

    def test_replayed_approval_issues_stock_once(self, client, auth):
        _register(client, auth, stock=4)
        mr = _submit_mr(client, auth, ("BULB-01", 10)).get_json()
        headers = auth("ADMIN", **{"Idempotency-Key": "approve-7"})

        first = client.post(f"/api/v1/material-requests/{mr['id']}/approve", headers=headers)
        second = client.post(f"/api/v1/material-requests/{mr['id']}/approve", headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.get_json() == second.get_json()
        assert second.get_json()["status"] == "AWAITING_DELIVERY"
        assert InventoryTransaction.query.filter_by(transaction_type="ISSUE").count() == 1
        stock = client.get("/api/v1/inventory/BULB-01", headers=auth("ADMIN")).get_json()
        assert stock["current_stock"] == 0

    def test_request_id_in_body_is_honoured(self, client, auth):
        _register(client, auth)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        body = {"reason": "Not needed", "request_id": "reject-1"}
        first = client.post(f"/api/v1/material-requests/{mr['id']}/reject", headers=auth("ADMIN"), json=body)
        second = client.post(f"/api/v1/material-requests/{mr['id']}/reject", headers=auth("ADMIN"), json=body)
        assert first.status_code == second.status_code == 200
        assert second.headers["Idempotent-Replayed"] == "true"

    def test_without_key_second_approval_is_invalid(self, client, auth):
        _register(client, auth, stock=4)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        assert client.post(f"/api/v1/material-requests/{mr['id']}/approve", headers=auth("ADMIN")).status_code == 200
        res = client.post(f"/api/v1/material-requests/{mr['id']}/approve", headers=auth("ADMIN"))
        _assert_standard_error(res, 409, "INVALID_TRANSITION")

    def test_key_reused_for_other_command_conflicts(self, client, auth):
        _register(client, auth)
        mr = _submit_mr(client, auth, ("BULB-01", 1), **{"Idempotency-Key": "shared"}).get_json()
        res = client.post(f"/api/v1/material-requests/{mr['id']}/approve",
                          headers=auth("ADMIN", **{"Idempotency-Key": "shared"}))
        _assert_standard_error(res, 409, "CONFLICT")

    def test_failed_command_leaves_no_receipt(self, client, auth):
        _register(client, auth)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        url = f"/api/v1/material-requests/{mr['id']}/reject"
        res = client.post(url, headers=auth("ADMIN", **{"Idempotency-Key": "rej"}), json={})
        _assert_standard_error(res, 400, "VALIDATION_ERROR")
        res = client.post(url, headers=auth("ADMIN", **{"Idempotency-Key": "rej"}), json={"reason": "Dup"})
        assert res.status_code == 200
        assert "Idempotent-Replayed" not in res.headers

    def test_key_reused_by_another_caller_conflicts(self, client, auth):
        _register(client, auth)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        url = f"/api/v1/material-requests/{mr['id']}/reject"
        body = {"reason": "Not needed"}
        first = client.post(url, headers=auth("ADMIN", "admin-1", **{"Idempotency-Key": "rej-9"}), json=body)
        assert first.status_code == 200

        res = client.post(url, headers=auth("ADMIN", "admin-2", **{"Idempotency-Key": "rej-9"}), json=body)
        _assert_standard_error(res, 409, "CONFLICT")
        assert "Idempotent-Replayed" not in res.headers
        assert res.get_json()["details"] == {"request_id": "rej-9"}


# ── End-to-end flows ─────────────────────────────────────────────────────


class TestIncidentFlow:
    def test_report_to_paid_claim(self, client, auth):
        comp = client.post("/api/v1/damaged-components", headers=auth("ADMIN"), json={
            "name": "Lamp head", "minor_cost": 100, "moderate_cost": 250,
            "severe_cost": 600, "total_loss_cost": 900,
        })
        assert comp.status_code == 201
        comp_id = comp.get_json()["id"]
        catalog = client.get("/api/v1/damaged-components?active=true", headers=auth("INSPECTOR")).get_json()
        assert [c["id"] for c in catalog["items"]] == [comp_id]

        res = client.post("/api/v1/incidents", headers=auth("INSPECTOR"), json={
            "accident_type": "VEHICLE_COLLISION", "accident_date": "2026-03-14",
            "location_description": "Elm St. pole 14",
        })
        assert res.status_code == 201
        incident = res.get_json()
        assert incident["incident_id"] == "ACC-0001"
        base = f"/api/v1/incidents/{incident['id']}"

        res = client.post(f"{base}/inspect", headers=auth("INSPECTOR"), json={
            "damage_level": "SEVERE", "damage_description": "Head crushed",
            "safety_risk": False, "damaged_components": [comp_id],
        })
        assert res.status_code == 200
        assert res.get_json()["estimated_cost"] == 600.0

        res = client.post(f"{base}/claim", headers=auth("FINANCE"), json={"claim_status": "SUBMITTED"})
        _assert_standard_error(res, 409, "INVALID_TRANSITION")

        res = client.post(f"{base}/review", headers=auth("FINANCE"), json={"action": "APPROVE"})
        _assert_standard_error(res, 403, "PERMISSION_DENIED")

        assert client.post(f"{base}/review", headers=auth("SUPERVISOR"), json={"action": "APPROVE"}).status_code == 200
        assert client.post(f"{base}/finance-review", headers=auth("FINANCE")).status_code == 200
        res = client.post(f"{base}/review", headers=auth("FINANCE"), json={"action": "APPROVE"})
        assert res.get_json()["status"] == "APPROVED"

        for claim in ("SUBMITTED", "APPROVED", "PAID"):
            res = client.post(f"{base}/claim", headers=auth("FINANCE"), json={"claim_status": claim})
            assert res.status_code == 200, res.get_json()

        res = client.get(base, headers=auth("SUPERVISOR"))
        body = res.get_json()
        assert body["status"] == "APPROVED"
        assert body["claim_status"] == "PAID"
        assert [a["new_status"] for a in body["approvals"]] == [
            "INSPECTED", "SUPERVISOR_REVIEW", "FINANCE_REVIEW", "APPROVED",
        ]
        history = client.get(f"{base}/claim-history", headers=auth("FINANCE")).get_json()
        assert len(history["items"]) == 3

    def test_reject_then_finance_review_is_invalid(self, client, auth):
        res = client.post("/api/v1/incidents", headers=auth("SUPERVISOR"), json={
            "accident_type": "STORM", "accident_date": "2026-03-14", "location_description": "Park",
        })
        incident_id = res.get_json()["id"]
        from civicworks.models.incident import Incident
        incident = db.session.get(Incident, incident_id)
        incident.status = "INSPECTED"
        db.session.commit()

        base = f"/api/v1/incidents/{incident_id}"
        res = client.post(f"{base}/review", headers=auth("SUPERVISOR"), json={"action": "REJECT"})
        assert res.get_json()["status"] == "REJECTED"
        res = client.post(f"{base}/review", headers=auth("FINANCE"), json={"action": "APPROVE"})
        _assert_standard_error(res, 409, "INVALID_TRANSITION")


class TestMaterialFlow:
    def test_shortfall_purchase_through_delivery(self, client, auth):
        _register(client, auth, stock=4)
        sched = client.post("/api/v1/maintenance-schedules", headers=auth("SUPERVISOR"),
                            json={"title": "Relamp Elm St.", "scheduled_date": "2026-04-01"})
        assert sched.status_code == 201
        schedule_id = sched.get_json()["id"]

        mr = client.post("/api/v1/material-requests", headers=auth("SUPERVISOR"), json={
            "items": [{"inventory_item_code": "BULB-01", "requested_quantity": 10}],
            "maintenance_schedule_id": schedule_id,
        }).get_json()

        preview = client.post("/api/v1/inventory/check-availability", headers=auth("SUPERVISOR"), json={
            "items": [{"inventory_item_code": "BULB-01", "requested_quantity": 10}],
        }).get_json()
        assert preview["items"][0]["needs_purchase"] == 6

        approved = client.post(f"/api/v1/material-requests/{mr['id']}/approve", headers=auth("ADMIN")).get_json()
        assert approved["status"] == "AWAITING_DELIVERY"
        line = approved["items"][0]
        assert (line["available_quantity_snapshot"], line["usage_quantity"], line["purchase_quantity"]) == (4, 4, 6)
        [pr_id] = approved["purchase_request_ids"]

        base = f"/api/v1/purchase-requests/{pr_id}"
        for step in ("approve", "order", "arrive"):
            res = client.post(f"{base}/{step}", headers=auth("ADMIN"))
            assert res.status_code == 200, res.get_json()
        res = client.post(f"{base}/arrive", headers=auth("ADMIN"))
        _assert_standard_error(res, 409, "INVALID_TRANSITION")

        item = client.get("/api/v1/inventory/BULB-01", headers=auth("ADMIN")).get_json()
        assert item["current_stock"] == 6

        assert client.post(f"{base}/deliver", headers=auth("ADMIN")).status_code == 200
        final = client.get(f"/api/v1/material-requests/{mr['id']}", headers=auth("ADMIN")).get_json()
        assert final["status"] == "DELIVERED"
        schedule = client.get(f"/api/v1/maintenance-schedules/{schedule_id}", headers=auth("ADMIN")).get_json()
        assert schedule["status"] == "STARTED"

        balance = client.get("/api/v1/inventory/BULB-01/balance", headers=auth("ADMIN")).get_json()
        assert balance["balanced"] is True
        txns = client.get("/api/v1/inventory/BULB-01/transactions", headers=auth("ADMIN")).get_json()["items"]
        assert [t["transaction_type"] for t in txns] == ["ISSUE", "RECEIPT"]

        mr_history = client.get(f"/api/v1/material-requests/{mr['id']}/history", headers=auth("ADMIN")).get_json()
        assert [h["action"] for h in mr_history["items"]] == ["material_request.approve", "material_request.receive"]
        pr_history = client.get(f"{base}/history", headers=auth("ADMIN")).get_json()
        assert [h["diff"]["status"]["new"] for h in pr_history["items"]] == [
            "APPROVED", "ORDERED", "ARRIVED_IN_STOCK", "DELIVERED",
        ]

    def test_inventory_listing_shows_stock_status(self, client, auth):
        _register(client, auth, code="BULB-01", stock=2)
        _register(client, auth, code="POLE-01", stock=3)
        _register(client, auth, code="CABLE-02", stock=50)
        items = client.get("/api/v1/inventory", headers=auth("INSPECTOR")).get_json()["items"]
        assert {i["code"]: i["stock_status"] for i in items} == {
            "BULB-01": "LOW_STOCK", "CABLE-02": "IN_STOCK", "POLE-01": "WARNING",
        }

    @pytest.mark.parametrize("field", ["current_stock", "initial_stock"])
    def test_stock_not_editable_via_update(self, client, auth, field):
        _register(client, auth)
        res = client.put("/api/v1/inventory/BULB-01", headers=auth("ADMIN"), json={field: 100})
        _assert_standard_error(res, 400, "VALIDATION_ERROR")

    def test_soft_deleted_item_cannot_be_requested(self, client, auth):
        _register(client, auth)
        assert client.delete("/api/v1/inventory/BULB-01", headers=auth("ADMIN")).status_code == 200
        res = _submit_mr(client, auth, ("BULB-01", 1))
        _assert_standard_error(res, 404, "ITEM_NOT_FOUND")

    def test_admin_edits_then_deletes_pending_request(self, client, auth):
        _register(client, auth, code="BULB-01")
        _register(client, auth, code="CABLE-02")
        mr = _submit_mr(client, auth, ("BULB-01", 2)).get_json()
        url = f"/api/v1/material-requests/{mr['id']}"

        res = client.patch(url, headers=auth("SUPERVISOR"), json={"description": "mine"})
        _assert_standard_error(res, 403, "PERMISSION_DENIED")

        res = client.patch(url, headers=auth("ADMIN"), json={
            "items": [{"inventory_item_code": "CABLE-02", "requested_quantity": 7}],
        })
        assert res.status_code == 200, res.get_json()
        assert [(i["inventory_item_code"], i["requested_quantity"]) for i in res.get_json()["items"]] == [("CABLE-02", 7)]

        res = client.delete(url, headers=auth("ADMIN"))
        assert res.status_code == 200
        assert res.get_json() == {"id": mr["id"], "code": mr["code"], "deleted": True}

        _assert_standard_error(client.get(url, headers=auth("ADMIN")), 404, "ITEM_NOT_FOUND")
        history = client.get(f"{url}/history", headers=auth("ADMIN"))
        _assert_standard_error(history, 404, "ITEM_NOT_FOUND")

    def test_approved_request_cannot_be_edited_or_deleted(self, client, auth):
        _register(client, auth, stock=4)
        mr = _submit_mr(client, auth, ("BULB-01", 1)).get_json()
        url = f"/api/v1/material-requests/{mr['id']}"
        assert client.post(f"{url}/approve", headers=auth("ADMIN")).status_code == 200

        _assert_standard_error(client.patch(url, headers=auth("ADMIN"), json={"description": "x"}),
                               409, "INVALID_TRANSITION")
        _assert_standard_error(client.delete(url, headers=auth("ADMIN")), 409, "INVALID_TRANSITION")

    def test_damaged_component_can_be_deleted(self, client, auth):
        comp = client.post("/api/v1/damaged-components", headers=auth("ADMIN"), json={
            "name": "Pole base", "minor_cost": 50, "moderate_cost": 120,
        }).get_json()
        url = f"/api/v1/damaged-components/{comp['id']}"

        _assert_standard_error(client.delete(url, headers=auth("SUPERVISOR")), 403, "PERMISSION_DENIED")
        res = client.delete(url, headers=auth("ADMIN"))
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True
        catalog = client.get("/api/v1/damaged-components", headers=auth("INSPECTOR")).get_json()
        assert catalog["items"] == []
        _assert_standard_error(client.delete(url, headers=auth("ADMIN")), 404, "ITEM_NOT_FOUND")
