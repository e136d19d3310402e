"""
JWT Service: access-token verification.

Token issuance belongs to the identity provider in front of the engine; the
engine only needs to read ``sub`` (actor id) and ``role`` from a verified token.

Algorithm: HS256, key = JWT_SECRET_KEY (falls back to SECRET_KEY)

Token payload:
{
    "sub": "<actor id>",
    "role": "SUPERVISOR",          # or "roles": ["SUPERVISOR", ...]
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import jwt
from flask import current_app


ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Raises:
        jwt.ExpiredSignatureError: Token has expired.
        jwt.InvalidTokenError: Token is malformed, tampered, or not an access token.
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    return payload


def role_from_claims(payload: dict) -> str | None:
    """``role`` claim, or the first entry of ``roles``."""
    role = payload.get("role")
    if not role:
        roles = payload.get("roles") or []
        role = roles[0] if roles else None
    return role.upper() if isinstance(role, str) else None
