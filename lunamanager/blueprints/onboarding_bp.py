"""
Onboarding Blueprint — first-run wizard for a new account.

  POST /api/v1/onboarding/workspace                    → step 1, create workspace
  POST /api/v1/onboarding/workspace/<id>/company       → step 2, first company
  POST /api/v1/onboarding/complete                     → step 3, mark done
  GET  /api/v1/onboarding/status                       → which step comes next
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.core.exceptions import NotFoundError
from lunamanager.middleware.jwt_auth import login_required
from lunamanager.services import onboarding_service as svc
from lunamanager.services.workspace_service import find_workspace
from lunamanager.utils.helpers import db_commit_or_error, normalize_body

onboarding_bp = Blueprint("onboarding", __name__, url_prefix="/api/v1/onboarding")


@onboarding_bp.route("/workspace", methods=["POST"])
@login_required
def step_workspace():
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "name is required"}), 400

    workspace = svc.create_workspace(g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(workspace.to_dict()), 201


@onboarding_bp.route("/workspace/<int:workspace_id>/company", methods=["POST"])
@login_required
def step_company(workspace_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "name is required"}), 400

    workspace = find_workspace(workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace", workspace_id)
    company = svc.create_company(workspace, g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(company.to_dict()), 201


@onboarding_bp.route("/complete", methods=["POST"])
@login_required
def step_complete():
    workspace = svc.complete(g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"completed": True, "workspace": workspace.to_dict()}), 200


@onboarding_bp.route("/status", methods=["GET"])
@login_required
def status():
    return jsonify(svc.get_status(g.jwt_user_id)), 200
