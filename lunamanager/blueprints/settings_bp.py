"""
Settings Blueprint — workspace/company settings and feature flags.

  GET|POST  /api/v1/settings/workspace?workspaceId=
  GET|POST  /api/v1/settings/company?workspaceId=&companyId=
  GET|POST  /api/v1/settings/feature-flags?workspaceId=&companyId=
  GET       /api/v1/settings/feature-flags/<key>/evaluate?workspaceId=&companyId=

workspaceId / companyId may also travel in the JSON body of POSTs; both
accept ids or slugs like the URL-based routes.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.services import settings_service
from lunamanager.services.workspace_service import require_manager, resolve_workspace_context
from lunamanager.utils.helpers import db_commit_or_error, parse_int

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


def _scope(data=None, company_required=False):
    """
    Resolve (workspace, company) from the query string, then the body.

    Returns (workspace, company, None) or (None, None, error_response).
    """
    data = data or {}
    ws_ref = request.args.get("workspaceId") or data.get("workspaceId")
    co_ref = request.args.get("companyId") or data.get("companyId")
    if not ws_ref:
        return None, None, (jsonify({"error": "workspaceId is required"}), 400)
    if company_required and not co_ref:
        return None, None, (jsonify({"error": "companyId is required"}), 400)

    workspace, company, _ = resolve_workspace_context(
        g.jwt_user_id, ws_ref, co_ref or None, method=request.method
    )
    return workspace, company, None


# ═════════════════════════════════════════════════════════════════════════════
# Workspace settings
# ═════════════════════════════════════════════════════════════════════════════

@settings_bp.route("/workspace", methods=["GET"])
@login_required
def get_workspace_settings():
    workspace, _, err = _scope()
    if err:
        return err
    settings = settings_service.get_workspace_settings(workspace.id)
    # First read may have created the defaults
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(settings.to_dict())


@settings_bp.route("/workspace", methods=["POST"])
@login_required
def update_workspace_settings():
    data = request.get_json(silent=True) or {}
    workspace, _, err = _scope(data)
    if err:
        return err
    if data.get("working_days") is not None and not isinstance(data["working_days"], list):
        return jsonify({"error": "working_days must be a list"}), 400
    if data.get("public_holidays") is not None and not isinstance(data["public_holidays"], list):
        return jsonify({"error": "public_holidays must be a list"}), 400

    require_manager(workspace, g.jwt_user_id)
    settings = settings_service.update_workspace_settings(workspace.id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(settings.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Company settings
# ═════════════════════════════════════════════════════════════════════════════

@settings_bp.route("/company", methods=["GET"])
@login_required
def get_company_settings():
    workspace, company, err = _scope(company_required=True)
    if err:
        return err
    view = settings_service.company_settings_view(workspace.id, company.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(view)


@settings_bp.route("/company", methods=["POST"])
@login_required
def upsert_company_settings():
    data = request.get_json(silent=True) or {}
    workspace, company, err = _scope(data, company_required=True)
    if err:
        return err
    if data.get("working_days") is not None and not isinstance(data["working_days"], list):
        return jsonify({"error": "working_days must be a list"}), 400

    settings_service.upsert_company_settings(workspace.id, company.id, data)
    view = settings_service.company_settings_view(workspace.id, company.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(view)


# ═════════════════════════════════════════════════════════════════════════════
# Feature flags
# ═════════════════════════════════════════════════════════════════════════════

@settings_bp.route("/feature-flags", methods=["GET"])
@login_required
def list_flags():
    workspace, company, err = _scope()
    if err:
        return err
    flags = settings_service.list_flags(workspace.id, company.id if company else None)
    return jsonify([f.to_dict() for f in flags])


@settings_bp.route("/feature-flags", methods=["POST"])
@login_required
def upsert_flag():
    """Body: { workspaceId, companyId?, key, name?, description?, category?, is_enabled?, rollout_percentage? }"""
    data = request.get_json(silent=True) or {}
    workspace, company, err = _scope(data)
    if err:
        return err
    if not (data.get("key") or "").strip():
        return jsonify({"error": "key is required"}), 400
    data["key"] = data["key"].strip()
    try:
        if "rollout_percentage" in data:
            data["rollout_percentage"] = parse_int(data["rollout_percentage"], "rollout_percentage")
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    flag, created = settings_service.upsert_flag(workspace.id, company.id if company else None, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(flag.to_dict()), 201 if created else 200


@settings_bp.route("/feature-flags/<key>/evaluate", methods=["GET"])
@login_required
def evaluate_flag(key):
    workspace, company, err = _scope()
    if err:
        return err
    result = settings_service.evaluate_flag(
        workspace.id, key, company.id if company else None, subject=g.jwt_user_id
    )
    return jsonify(result)
