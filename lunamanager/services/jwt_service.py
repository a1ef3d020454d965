"""
JWT Service — token generation, verification and session rotation.

Access token:  15 minutes (JWT_ACCESS_EXPIRES)
Refresh token: 7 days     (JWT_REFRESH_EXPIRES)
Algorithm:     HS256

Access payload:
{
    "sub": "<user_id>",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Users are global, so no workspace travels in the token; workspace access
is resolved per request from the URL.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from lunamanager.models import db
from lunamanager.models.auth import Session


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
DEFAULT_REFRESH_EXPIRES = 604800   # 7 days
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


def _get_refresh_expires():
    return current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int) -> str:
    """Generate a short-lived access token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_refresh_token(user_id: int) -> tuple[str, str, datetime]:
    """
    Generate a long-lived refresh token.
    Returns: (raw_token, token_hash, expires_at)
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(seconds=_get_refresh_expires())
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "iat": now,
        "exp": expires_at,
        "jti": str(uuid.uuid4()),
    }
    raw_token = jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)
    return raw_token, hash_token(raw_token), expires_at


def generate_token_pair(user_id: int) -> dict:
    """Generate both access + refresh tokens."""
    access_token = generate_access_token(user_id)
    refresh_token, token_hash, expires_at = generate_refresh_token(user_id)
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_hash": token_hash,
        "expires_at": expires_at,
        "token_type": "Bearer",
        "expires_in": _get_access_expires(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT.

    Returns the payload with ``sub`` converted back to int.
    Raises jwt.InvalidTokenError subclasses on failure.
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise jwt.InvalidTokenError("Token subject is missing or malformed")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")


# ═══════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════
def hash_token(token: str) -> str:
    """SHA-256 of a token; raw refresh and verification tokens are never stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ═══════════════════════════════════════════════════════════════
# Session Management
# Callers commit; these only flush.
# ═══════════════════════════════════════════════════════════════
def create_session(
    user_id: int,
    token_hash: str,
    ip_address: str | None,
    user_agent: str | None,
    expires_at: datetime,
) -> Session:
    """Persist a new refresh-token session (already flushed)."""
    session = Session(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(session)
    db.session.flush()
    return session


def issue_tokens(user_id: int, ip_address: str | None, user_agent: str | None) -> dict:
    """Generate a token pair and store its session. Returns the client payload."""
    pair = generate_token_pair(user_id)
    create_session(user_id, pair["token_hash"], ip_address, user_agent, pair["expires_at"])
    return {
        "access_token": pair["access_token"],
        "refresh_token": pair["refresh_token"],
        "token_type": pair["token_type"],
        "expires_in": pair["expires_in"],
    }


def revoke_session(session: Session) -> None:
    session.is_active = False
    db.session.flush()


def revoke_session_by_token(token_hash: str) -> Session | None:
    """Deactivate the active session with this hash. Returns it, or None when none matched."""
    session = Session.query.filter_by(token_hash=token_hash, is_active=True).first()
    if not session:
        return None
    session.is_active = False
    db.session.flush()
    return session


def revoke_all_user_sessions(user_id: int) -> int:
    """Revoke every active session of a user. Returns the number revoked."""
    count = Session.query.filter_by(user_id=user_id, is_active=True).update(
        {"is_active": False}, synchronize_session=False
    )
    db.session.flush()
    return count


def rotate_session(
    old_session: Session,
    new_token_hash: str,
    new_expires_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
) -> Session:
    """Deactivate the old session and create its replacement in one flush."""
    old_session.is_active = False
    old_session.last_used_at = datetime.now(timezone.utc)

    new_session = Session(
        user_id=old_session.user_id,
        token_hash=new_token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=new_expires_at,
    )
    db.session.add(new_session)
    db.session.flush()
    return new_session


def get_active_session_by_token(user_id: int, token_hash: str) -> Session | None:
    return Session.query.filter_by(
        user_id=user_id, token_hash=token_hash, is_active=True
    ).first()
