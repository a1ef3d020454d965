"""
Invitation Blueprints — workspace-side management and the public token flow.

Workspace side (owner / admin):
  GET    /api/v1/workspaces/<ws>/invitations?status=
  POST   /api/v1/workspaces/<ws>/invitations
  POST   /api/v1/workspaces/<ws>/invitations/<id>/resend
  DELETE /api/v1/workspaces/<ws>/invitations/<id>

Public (token holder, no auth):
  GET    /api/v1/invitations/<token>
  POST   /api/v1/invitations/<token>/accept
  POST   /api/v1/invitations/<token>/decline
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.models.invitation import INVITATION_STATUSES
from lunamanager.services import invitation_service
from lunamanager.services.invitation_service import InvitationError
from lunamanager.services.jwt_service import issue_tokens
from lunamanager.services.user_service import get_user_by_id
from lunamanager.services.workspace_service import require_manager
from lunamanager.utils.helpers import db_commit_or_error, normalize_body

invitation_bp = Blueprint("invitations", __name__, url_prefix="/api/v1/workspaces")
public_invitation_bp = Blueprint("public_invitations", __name__, url_prefix="/api/v1/invitations")


# ═════════════════════════════════════════════════════════════════════════════
# Workspace side
# ═════════════════════════════════════════════════════════════════════════════

@invitation_bp.route("/<ws>/invitations", methods=["GET"])
@workspace_required
def list_invitations(ws):
    require_manager(g.workspace, g.jwt_user_id)
    status = request.args.get("status") or None
    if status and status not in INVITATION_STATUSES:
        return jsonify({"error": f"Invalid status: {status}"}), 400
    rows = invitation_service.list_invitations(g.workspace.id, status=status)
    return jsonify([i.to_dict() for i in rows])


@invitation_bp.route("/<ws>/invitations", methods=["POST"])
@workspace_required
def create_invitation(ws):
    """Body: { email, role?, type?, company_id?, message? }"""
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("email"):
        return jsonify({"error": "email is required"}), 400

    require_manager(g.workspace, g.jwt_user_id)
    inviter = get_user_by_id(g.jwt_user_id)
    invitation = invitation_service.create_invitation(g.workspace, inviter, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(invitation.to_dict(include_token=True)), 201


@invitation_bp.route("/<ws>/invitations/<int:invitation_id>/resend", methods=["POST"])
@workspace_required
def resend_invitation(ws, invitation_id):
    require_manager(g.workspace, g.jwt_user_id)
    invitation = invitation_service.get_invitation(g.workspace.id, invitation_id)
    invitation_service.resend_invitation(invitation, get_user_by_id(g.jwt_user_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(invitation.to_dict(include_token=True))


@invitation_bp.route("/<ws>/invitations/<int:invitation_id>", methods=["DELETE"])
@workspace_required
def cancel_invitation(ws, invitation_id):
    require_manager(g.workspace, g.jwt_user_id)
    invitation = invitation_service.get_invitation(g.workspace.id, invitation_id)
    invitation_service.cancel_invitation(invitation)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(invitation.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Public token flow
# ═════════════════════════════════════════════════════════════════════════════

@public_invitation_bp.route("/<token>", methods=["GET"])
def get_invitation(token):
    return jsonify(invitation_service.public_view(invitation_service.get_by_token(token)))


@public_invitation_bp.route("/<token>/accept", methods=["POST"])
def accept_invitation(token):
    """
    Body (new users only): { "name": "...", "password": "..." }

    Returns workspace, company and user. A JWT pair is issued only for an
    account created here; existing users sign in with their own password.
    """
    data = request.get_json(silent=True) or {}
    try:
        invitation = invitation_service.get_pending_by_token(token)
        if invitation.is_expired:
            invitation_service.mark_expired(invitation)
            err = db_commit_or_error()
            if err:
                return err
            return jsonify({"error": "Invitation has expired"}), 400

        user, workspace, company, created = invitation_service.accept_invitation(invitation, data)
    except InvitationError as e:
        return jsonify({"error": e.message}), e.status_code

    tokens = None
    if created:
        tokens = issue_tokens(user.id, request.remote_addr, request.headers.get("User-Agent", ""))
    err = db_commit_or_error()
    if err:
        return err

    return jsonify({
        "workspace": workspace.to_dict(),
        "company": company.to_dict() if company else None,
        "user": user.to_dict(),
        "tokens": tokens,
    }), 200


@public_invitation_bp.route("/<token>/decline", methods=["POST"])
def decline_invitation(token):
    try:
        invitation = invitation_service.get_pending_by_token(token)
    except InvitationError as e:
        return jsonify({"error": e.message}), e.status_code

    invitation_service.decline_invitation(invitation)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Invitation declined"}), 200
