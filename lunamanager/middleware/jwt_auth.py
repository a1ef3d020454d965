"""
JWT Auth Middleware — parses the Bearer token and sets g.jwt_user_id.

The hook never rejects a request by itself; routes opt in with
``@login_required``. Public routes (sign-up, login, refresh, health,
invitation tokens) simply never look at g.jwt_user_id.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, jsonify, request

from lunamanager.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/sign-up",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT parsing as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
            g.jwt_user_id = payload["sub"]
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired access token on %s", path)
        except pyjwt.InvalidTokenError:
            logger.debug("Invalid access token on %s", path)


def login_required(f):
    """Reject the request with 401 unless a valid access token was sent."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "jwt_user_id", None) is None:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated
