"""
Shared blueprint helpers.

Every state-changing endpoint is a thin wrapper:

    @incident_bp.route("/incidents/<int:incident_id>/review", methods=["POST"])
    def review(incident_id):
        data = json_body()
        return command_response(
            "review_incident",
            lambda actor: lifecycle.review_incident(incident_id, actor, data.get("action")).to_dict(),
        )

``command_response`` resolves the actor, runs the service inside the command
runner (one transaction, replay by request id) and serialises the result.
Errors propagate as DomainError subclasses to the app-level handler.
"""

from flask import jsonify, request

from civicworks.middleware.jwt_auth import current_actor
from civicworks.services.command_service import run_command

IDEMPOTENCY_HEADER = "Idempotency-Key"


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def request_id() -> str | None:
    """Caller's idempotency key: header first, then ``request_id`` in the body."""
    rid = request.headers.get(IDEMPOTENCY_HEADER) or json_body().get("request_id")
    if rid is None:
        return None
    return str(rid).strip() or None


def command_response(command: str, fn, *, status: int = 200):
    """Run ``fn(actor)`` as an idempotent command and return the Flask response."""
    actor = current_actor()
    body, code, replayed = run_command(
        command, actor, lambda: fn(actor),
        request_id=request_id(), success_status=status,
    )
    response = jsonify(body)
    response.status_code = code
    if replayed:
        response.headers["Idempotent-Replayed"] = "true"
    return response


def query_response(fn):
    """Authenticated read-only projection."""
    current_actor()
    return jsonify(fn())
