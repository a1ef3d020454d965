"""
User Blueprint — per-user role assignments and direct permission grants.

  GET                /api/v1/users/<user_id>
  GET|POST|DELETE    /api/v1/users/<user_id>/roles
  GET|POST|DELETE    /api/v1/users/<user_id>/permissions
  POST               /api/v1/users/<user_id>/permissions/bulk
  GET                /api/v1/users/<user_id>/permissions/effective

Reads need membership in the target workspace; writes need owner/admin.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.services import permission_service, rbac_service
from lunamanager.services.workspace_service import (
    list_user_workspaces,
    require_manager,
    resolve_workspace_context,
)
from lunamanager.utils.helpers import db_commit_or_error, parse_int

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@user_bp.errorhandler(ValueError)
def _bad_number(e):
    return jsonify({"error": str(e)}), 400


def _scope_ids(source, manage=False):
    """
    Read workspaceId / companyId from ``source`` and authorise the caller.

    Returns (workspace_id, company_id or None). Raises ValueError for a
    missing or malformed id.
    """
    ws_value = source.get("workspaceId", source.get("workspace_id"))
    if ws_value in (None, ""):
        raise ValueError("workspaceId is required")
    workspace_id = parse_int(ws_value, "workspaceId")
    co_value = source.get("companyId", source.get("company_id"))
    company_id = parse_int(co_value, "companyId") if co_value not in (None, "") else None

    workspace, _, _ = resolve_workspace_context(
        g.jwt_user_id, workspace_id, company_id, method=request.method
    )
    if manage:
        require_manager(workspace, g.jwt_user_id)
    return workspace_id, company_id


def _committed(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), status


@user_bp.route("/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    """Profile plus the workspaces the caller shares with this user."""
    user = rbac_service.get_user(user_id)
    mine = {w["id"] for w in list_user_workspaces(g.jwt_user_id)}
    shared = [w for w in list_user_workspaces(user_id) if w["id"] in mine]
    return jsonify({**user.to_dict(), "workspaces": shared})


# ═════════════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════════════

@user_bp.route("/<int:user_id>/roles", methods=["GET"])
@login_required
def list_roles(user_id):
    workspace_id, company_id = _scope_ids(request.args)
    rows = rbac_service.list_user_roles(user_id, workspace_id, company_id)
    return jsonify([r.to_dict() for r in rows])


@user_bp.route("/<int:user_id>/roles", methods=["POST"])
@login_required
def assign_role(user_id):
    """Body: { roleId, workspaceId, companyId?, expiresAt? }; an existing assignment returns 200."""
    data = request.get_json(silent=True) or {}
    workspace_id, company_id = _scope_ids(data, manage=True)
    role_value = data.get("roleId", data.get("role_id"))
    if role_value in (None, ""):
        return jsonify({"error": "roleId is required"}), 400

    row, created = rbac_service.assign_user_role(
        user_id,
        {
            "role_id": parse_int(role_value, "roleId"),
            "workspace_id": workspace_id,
            "company_id": company_id,
            "expires_at": data.get("expiresAt", data.get("expires_at")),
        },
        assigned_by=g.jwt_user_id,
    )
    return _committed(row.to_dict(), 201 if created else 200)


@user_bp.route("/<int:user_id>/roles", methods=["DELETE"])
@login_required
def remove_role(user_id):
    workspace_id, company_id = _scope_ids(request.args, manage=True)
    if not request.args.get("roleId"):
        return jsonify({"error": "roleId is required"}), 400
    role_id = parse_int(request.args["roleId"], "roleId")
    count = rbac_service.remove_user_role(user_id, role_id, workspace_id, company_id)
    return _committed({"deleted": count})


# ═════════════════════════════════════════════════════════════════════════════
# Direct permissions
# ═════════════════════════════════════════════════════════════════════════════

@user_bp.route("/<int:user_id>/permissions", methods=["GET"])
@login_required
def list_permissions(user_id):
    workspace_id, company_id = _scope_ids(request.args)
    rows = rbac_service.list_user_permissions(user_id, workspace_id, company_id)
    return jsonify([r.to_dict() for r in rows])


@user_bp.route("/<int:user_id>/permissions", methods=["POST"])
@login_required
def upsert_permission(user_id):
    """Body: { permissionId, workspaceId, companyId?, isGranted?, expiresAt? }"""
    data = request.get_json(silent=True) or {}
    workspace_id, company_id = _scope_ids(data, manage=True)
    permission_value = data.get("permissionId", data.get("permission_id"))
    if permission_value in (None, ""):
        return jsonify({"error": "permissionId is required"}), 400

    row, created = rbac_service.upsert_user_permission(
        user_id,
        {
            "permission_id": parse_int(permission_value, "permissionId"),
            "workspace_id": workspace_id,
            "company_id": company_id,
            "is_granted": data.get("isGranted", data.get("is_granted", True)),
            "expires_at": data.get("expiresAt", data.get("expires_at")),
        },
        granted_by=g.jwt_user_id,
    )
    return _committed(row.to_dict(), 201 if created else 200)


@user_bp.route("/<int:user_id>/permissions", methods=["DELETE"])
@login_required
def delete_permission(user_id):
    workspace_id, company_id = _scope_ids(request.args, manage=True)
    if not request.args.get("permissionId"):
        return jsonify({"error": "permissionId is required"}), 400
    permission_id = parse_int(request.args["permissionId"], "permissionId")
    count = rbac_service.delete_user_permission(user_id, permission_id, workspace_id, company_id)
    return _committed({"deleted": count})


@user_bp.route("/<int:user_id>/permissions/bulk", methods=["POST"])
@login_required
def bulk_permissions(user_id):
    """Body: { workspaceId, companyId?, grants: [{permissionId, isGranted}], replace? }"""
    data = request.get_json(silent=True) or {}
    workspace_id, company_id = _scope_ids(data, manage=True)
    raw_grants = data.get("grants")
    if not isinstance(raw_grants, list):
        return jsonify({"error": "grants must be a list"}), 400

    grants = []
    for grant in raw_grants:
        if not isinstance(grant, dict) or grant.get("permissionId") in (None, ""):
            return jsonify({"error": "each grant needs a permissionId"}), 400
        grants.append({
            "permission_id": parse_int(grant["permissionId"], "permissionId"),
            "is_granted": bool(grant.get("isGranted", True)),
        })

    counts = rbac_service.bulk_upsert_user_permissions(
        user_id, workspace_id, company_id, grants,
        replace=bool(data.get("replace")), granted_by=g.jwt_user_id,
    )
    return _committed(counts)


@user_bp.route("/<int:user_id>/permissions/effective", methods=["GET"])
@login_required
def effective_permissions(user_id):
    """?shape=map returns {name: true}; otherwise the sorted list with sources."""
    workspace_id, company_id = _scope_ids(request.args)
    rbac_service.get_user(user_id)
    perms = permission_service.get_effective_permissions(user_id, workspace_id, company_id)
    if request.args.get("shape") == "map":
        return jsonify({p["name"]: True for p in perms})
    return jsonify(perms)
