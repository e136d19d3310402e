"""
Concurrent approvals against one stock balance.

Runs on a file-backed SQLite database (the shared in-memory connection used
by the rest of the suite cannot host two writers) with write serialisation
switched on, the same way a deployed single-node engine runs.
"""

import threading
from decimal import Decimal

import pytest

from civicworks import create_app
from civicworks.models import db
from civicworks.models.inventory import InventoryItem, InventoryTransaction
from civicworks.models.material import MaterialRequest
from civicworks.services import inventory_ledger as ledger
from civicworks.services import material_fulfillment as fulfillment
from civicworks.services.permission import Actor


@pytest.fixture()
def file_app(tmp_path):
    application = create_app("testing", overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "SQLITE_SERIALIZE_WRITES": True,
    })
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.engine.dispose()


def _seed(application, stock, *quantities):
    supervisor = Actor(id="supervisor-1", role="SUPERVISOR")
    with application.app_context():
        db.session.add(InventoryItem(
            code="BULB-01", name="LED bulb", current_stock=stock, initial_stock=stock,
            minimum_threshold=1, unit_cost=Decimal("12.50"),
        ))
        db.session.commit()
        ids = []
        for qty in quantities:
            mr = fulfillment.submit_material_request(
                {"items": [{"inventory_item_code": "BULB-01", "requested_quantity": qty}]}, supervisor,
            )
            db.session.commit()
            ids.append(mr.id)
        return ids


def _approve_concurrently(application, request_ids, mint_token):
    with application.app_context():
        headers = {"Authorization": f"Bearer {mint_token('admin-1', 'ADMIN')}"}
    barrier = threading.Barrier(len(request_ids))
    responses = {}

    def _approve(mr_id):
        client = application.test_client()
        barrier.wait()
        res = client.post(f"/api/v1/material-requests/{mr_id}/approve", headers=headers)
        responses[mr_id] = (res.status_code, res.get_json())

    threads = [threading.Thread(target=_approve, args=(mr_id,)) for mr_id in request_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return responses


class TestConcurrentApproval:
    def test_two_approvals_never_oversell(self, file_app, mint_token):
        ids = _seed(file_app, 5, 4, 4)

        responses = _approve_concurrently(file_app, ids, mint_token)

        assert sorted(code for code, _ in responses.values()) == [200, 200], responses
        with file_app.app_context():
            statuses = sorted(db.session.get(MaterialRequest, i).status for i in ids)
            assert statuses == ["AWAITING_DELIVERY", "FULFILLED"]

            issued = sum(
                t.quantity for t in InventoryTransaction.query.filter_by(transaction_type="ISSUE")
            )
            assert issued == 5
            assert ledger.get_stock("BULB-01") == 0
            assert ledger.verify_item_balance("BULB-01")["balanced"] is True

            waiting = MaterialRequest.query.filter_by(status="AWAITING_DELIVERY").one()
            line = waiting.items[0]
            assert (line.usage_quantity, line.purchase_quantity) == (1, 3)
            assert waiting.purchase_requests[0].items[0].requested_quantity == 3

    def test_parallel_issues_stay_non_negative(self, file_app, mint_token):
        ids = _seed(file_app, 3, 2, 2, 2)

        responses = _approve_concurrently(file_app, ids, mint_token)

        assert all(code == 200 for code, _ in responses.values()), responses
        with file_app.app_context():
            assert ledger.get_stock("BULB-01") == 0
            usage = sorted(r["items"][0]["usage_quantity"] for _, r in responses.values())
            assert sum(usage) == 3
            assert ledger.verify_item_balance("BULB-01")["balanced"] is True
