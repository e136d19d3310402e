"""Standardised API error responses.

Usage
-----
    from civicworks.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Incident 7 not found")
    return api_error(E.VALIDATION_ERROR, "reason is required", details={"reason": "required"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes returned in the ``code`` field.

    The first six form the engine's error taxonomy; the rest describe
    transport-level failures raised before a command reaches a service.
    """

    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "ITEM_NOT_FOUND"
    CONFLICT = "CONFLICT"

    UNAUTHENTICATED = "UNAUTHENTICATED"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL = "INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.PERMISSION_DENIED: 403,
    E.INVALID_TRANSITION: 409,
    E.INSUFFICIENT_STOCK: 409,
    E.VALIDATION_ERROR: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT: 409,
    E.UNAUTHENTICATED: 401,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Structured payload (offending fields, stock figures, current status).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``, usable directly as a Flask view result.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
