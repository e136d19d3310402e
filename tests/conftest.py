"""
Shared pytest fixtures for the CivicWorks workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - mint_token: Signs an access token the way the identity provider would
    - auth: Builds bearer headers for an (actor id, role) pair
    - actor: Builds a service-level Actor
    - run: Executes a service call through the command runner (commit/rollback)
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from flask import current_app

from civicworks import create_app
from civicworks.models import db as _db
from civicworks.services.command_service import run_command
from civicworks.services.jwt_service import ALGORITHM
from civicworks.services.permission import Actor

# Default actor ids per role used across tests
ACTOR_IDS = {
    "ADMIN": "admin-1",
    "INSPECTOR": "inspector-1",
    "SUPERVISOR": "supervisor-1",
    "FINANCE": "finance-1",
    "MAINTENANCE_ENGINEER": "engineer-1",
}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


def _sign(actor_id: str, role: str, expires_in: int = 900) -> str:
    """HS256 access token for the current app, as the identity provider would issue it."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": actor_id,
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "jti": str(uuid.uuid4()),
    }
    secret = current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


@pytest.fixture()
def mint_token():
    """Return the signer: ``mint_token("admin-1", "ADMIN", expires_in=-10)``."""
    return _sign


@pytest.fixture()
def auth():
    """Return a builder: ``auth("FINANCE")`` → Authorization headers."""

    def _headers(role: str, actor_id: str | None = None, **extra) -> dict:
        token = _sign(actor_id or ACTOR_IDS.get(role, "someone"), role)
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(extra)
        return headers

    return _headers


@pytest.fixture()
def actor():
    """Return a builder: ``actor("ADMIN")`` → Actor(id="admin-1", role="ADMIN")."""

    def _actor(role: str, actor_id: str | None = None) -> Actor:
        return Actor(id=actor_id or ACTOR_IDS.get(role, "someone"), role=role)

    return _actor


@pytest.fixture()
def run():
    """Run ``fn()`` as one committed command; any error rolls everything back."""

    def _run(command_actor: Actor, fn, command: str = "test_command"):
        body, _status, _replayed = run_command(command, command_actor, lambda: fn() or {})
        return body

    return _run
