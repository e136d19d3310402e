"""
JWT Auth Middleware: resolves the acting identity from the bearer token.

Sets, per request:
    g.actor_id    ← token ``sub``
    g.actor_role  ← token ``role`` (or first of ``roles``), upper-cased

An absent, expired or invalid token leaves both as None; endpoints that need
an actor call ``current_actor()``, which raises AuthenticationRequired.
"""

import logging

import jwt as pyjwt
from flask import g, request

from civicworks.core.exceptions import AuthenticationRequired
from civicworks.services.jwt_service import decode_access_token, role_from_claims
from civicworks.services.permission import ROLES, Actor

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor_id = None
        g.actor_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired bearer token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return

        g.actor_id = payload.get("sub")
        g.actor_role = role_from_claims(payload)


def current_actor() -> Actor:
    """Return the request's actor, or raise AuthenticationRequired."""
    actor_id = getattr(g, "actor_id", None)
    role = getattr(g, "actor_role", None)
    if not actor_id or not role:
        raise AuthenticationRequired()
    if role not in ROLES:
        raise AuthenticationRequired(f"Unknown role {role!r}")
    return Actor(id=str(actor_id), role=role)
