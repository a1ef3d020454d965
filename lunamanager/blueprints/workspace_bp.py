"""
Workspace Blueprint — workspace CRUD, members and context resolution.

  GET    /api/v1/workspaces
  POST   /api/v1/workspaces
  GET    /api/v1/workspaces/<ws>
  PUT    /api/v1/workspaces/<ws>
  DELETE /api/v1/workspaces/<ws>
  GET    /api/v1/workspaces/<ws>/members
  PUT    /api/v1/workspaces/<ws>/members/<user_id>
  DELETE /api/v1/workspaces/<ws>/members/<user_id>
  GET    /api/v1/workspace-context/<ws>/<co>

<ws> is a workspace id or slug; <co> a company id or first-word slug.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import workspace_service
from lunamanager.utils.helpers import db_commit_or_error

workspace_bp = Blueprint("workspaces", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# Workspaces
# ═════════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces", methods=["GET"])
@login_required
def list_workspaces():
    return jsonify(workspace_service.list_user_workspaces(g.jwt_user_id))


@workspace_bp.route("/workspaces", methods=["POST"])
@login_required
def create_workspace():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "Workspace name is required"}), 400
    if "settings" in data and not isinstance(data["settings"], dict):
        return jsonify({"error": "settings must be an object"}), 400

    workspace = workspace_service.create_workspace(
        g.jwt_user_id, name, description=data.get("description"), settings=data.get("settings")
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**workspace.to_dict(), "role": "owner"}), 201


@workspace_bp.route("/workspaces/<ws>", methods=["GET"])
@workspace_required
def get_workspace(ws):
    workspace = g.workspace
    return jsonify({
        **workspace.to_dict(),
        "role": workspace_service.get_user_role(workspace, g.jwt_user_id),
        "companies": [c.to_dict() for c in workspace_service.workspace_companies_query(workspace.id).all()],
    })


@workspace_bp.route("/workspaces/<ws>", methods=["PUT"])
@workspace_required
def update_workspace(ws):
    data = request.get_json(silent=True) or {}
    workspace_service.require_manager(g.workspace, g.jwt_user_id)
    workspace = workspace_service.update_workspace(g.workspace, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(workspace.to_dict())


@workspace_bp.route("/workspaces/<ws>", methods=["DELETE"])
@workspace_required
def delete_workspace(ws):
    workspace_service.delete_workspace(g.workspace, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Workspace deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspaces/<ws>/members", methods=["GET"])
@workspace_required
def list_members(ws):
    return jsonify(workspace_service.list_members(g.workspace))


@workspace_bp.route("/workspaces/<ws>/members/<int:user_id>", methods=["PUT"])
@workspace_required
def update_member(ws, user_id):
    data = request.get_json(silent=True) or {}
    if "role" not in data and "restrictedToCompany" not in data:
        return jsonify({"error": "role or restrictedToCompany is required"}), 400

    workspace_service.require_manager(g.workspace, g.jwt_user_id)
    member = workspace_service.update_member(g.workspace, user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict(include_user=True))


@workspace_bp.route("/workspaces/<ws>/members/<int:user_id>", methods=["DELETE"])
@workspace_required
def remove_member(ws, user_id):
    workspace_service.require_manager(g.workspace, g.jwt_user_id)
    workspace_service.remove_member(g.workspace, user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Member removed"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Context
# ═════════════════════════════════════════════════════════════════════════════

@workspace_bp.route("/workspace-context/<ws>/<co>", methods=["GET"])
@workspace_required
def workspace_context(ws, co):
    membership = g.membership
    return jsonify({
        "workspace": g.workspace.to_dict(),
        "company": g.company.to_dict(),
        "membership": membership.to_dict() if membership else None,
        "role": workspace_service.get_user_role(g.workspace, g.jwt_user_id),
    })
