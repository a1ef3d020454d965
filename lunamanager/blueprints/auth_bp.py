"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/sign-up                     — Create account -> JWT pair
  POST /api/v1/auth/login                       — Email + password -> JWT pair
  POST /api/v1/auth/refresh                     — Rotate refresh token
  POST /api/v1/auth/logout                      — Revoke refresh token
  GET  /api/v1/auth/me                          — Current user + workspaces
  PUT  /api/v1/auth/me                          — Update profile
  POST /api/v1/auth/password                    — Change password
  POST /api/v1/auth/email-verification/verify   — Confirm email token
  POST /api/v1/auth/email-verification/resend   — New verification email
"""

import jwt as pyjwt
from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.services.activity_service import record_activity
from lunamanager.services.email_service import send_verification_email
from lunamanager.services.jwt_service import (
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    issue_tokens,
    revoke_session,
    revoke_session_by_token,
    rotate_session,
)
from lunamanager.services.user_service import (
    UserServiceError,
    authenticate_user,
    change_password,
    create_user,
    get_user_by_id,
    issue_verification_token,
    resend_verification,
    update_profile,
    verify_email,
)
from lunamanager.services.workspace_service import list_user_workspaces
from lunamanager.utils.helpers import db_commit_or_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _client_info():
    return request.remote_addr, request.headers.get("User-Agent", "")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/sign-up
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/sign-up", methods=["POST"])
def sign_up():
    """
    Create an account and log it in.

    Body: { "name": "...", "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not name or not email or not password:
        return jsonify({"error": "Name, email and password are required"}), 400

    try:
        user = create_user(email, password, name)
        raw_token = issue_verification_token(user)
        tokens = issue_tokens(user.id, *_client_info())
        record_activity(
            "user.create", user_id=user.id, resource_type="user", resource_id=user.id, resource_name=user.name
        )
    except UserServiceError as e:
        return jsonify({"error": e.message}), e.status_code

    err = db_commit_or_error()
    if err:
        return err

    send_verification_email(user, raw_token)
    return jsonify({**tokens, "user": user.to_dict()}), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        user = authenticate_user(email, password)
    except UserServiceError as e:
        record_activity("auth.failed_login", user_email=email[:255], status="failed", error_message=e.message)
        err = db_commit_or_error()
        if err:
            return err
        return jsonify({"error": e.message}), e.status_code

    tokens = issue_tokens(user.id, *_client_info())
    record_activity("auth.login", user_id=user.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**tokens, "user": user.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""
    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    try:
        payload = decode_refresh_token(refresh_token)
    except pyjwt.InvalidTokenError:
        return jsonify({"error": "Invalid or expired refresh token"}), 401

    user_id = payload["sub"]
    session = get_active_session_by_token(user_id, hash_token(refresh_token))
    if not session:
        return jsonify({"error": "Session not found or revoked"}), 401
    if session.is_expired:
        revoke_session(session)
        err = db_commit_or_error()
        if err:
            return err
        return jsonify({"error": "Session expired"}), 401

    user = get_user_by_id(user_id)
    if not user or user.status != "active":
        return jsonify({"error": "User not found or inactive"}), 401

    tokens = generate_token_pair(user_id)
    rotate_session(session, tokens["token_hash"], tokens["expires_at"], *_client_info())
    err = db_commit_or_error()
    if err:
        return err

    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Body: { "refresh_token": "..." }"""
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""
    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    session = revoke_session_by_token(hash_token(refresh_token))
    if session is not None:
        record_activity("auth.logout", user_id=session.user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Logged out successfully"}), 200


# ═══════════════════════════════════════════════════════════════
# /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    user = get_user_by_id(g.jwt_user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({**user.to_dict(), "workspaces": list_user_workspaces(user.id)}), 200


@auth_bp.route("/me", methods=["PUT"])
@login_required
def update_me():
    """Body: { "name"?, "phone"?, "image"? }"""
    data = request.get_json(silent=True) or {}
    user = get_user_by_id(g.jwt_user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    try:
        update_profile(user, data)
    except UserServiceError as e:
        return jsonify({"error": e.message}), e.status_code

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 200


@auth_bp.route("/password", methods=["POST"])
@login_required
def password():
    """Body: { "current_password": "...", "new_password": "..." }"""
    data = request.get_json(silent=True) or {}
    current = data.get("current_password") or ""
    new = data.get("new_password") or ""
    if not current or not new:
        return jsonify({"error": "Current and new password are required"}), 400

    user = get_user_by_id(g.jwt_user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    try:
        revoked = change_password(user, current, new)
        record_activity("auth.password_change", user_id=user.id, metadata={"sessions_revoked": revoked})
    except UserServiceError as e:
        return jsonify({"error": e.message}), e.status_code

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Password changed", "sessions_revoked": revoked}), 200


# ═══════════════════════════════════════════════════════════════
# Email verification
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/email-verification/verify", methods=["POST"])
def verify():
    """Body: { "token": "..." }"""
    data = request.get_json(silent=True) or {}
    token = (data.get("token") or "").strip()
    if not token:
        return jsonify({"error": "Token is required"}), 400

    try:
        user = verify_email(token)
    except UserServiceError as e:
        return jsonify({"error": e.message}), e.status_code

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Email verified", "user": user.to_dict()}), 200


@auth_bp.route("/email-verification/resend", methods=["POST"])
@login_required
def resend():
    user = get_user_by_id(g.jwt_user_id)
    if not user:
        return jsonify({"error": "User not found"}), 404

    try:
        raw_token = resend_verification(user)
    except UserServiceError as e:
        return jsonify({"error": e.message}), e.status_code

    err = db_commit_or_error()
    if err:
        return err
    send_verification_email(user, raw_token)
    return jsonify({"message": "Verification email sent"}), 200
