"""
System Blueprint — module catalogue, roles, role grants and policies.

  /api/v1/system/modules               GET|POST, /<id> GET|PUT|DELETE, /<id>/toggle PATCH
  /api/v1/system/modules/assignments   GET|POST  (company module switches)
  /api/v1/system/resources             GET|POST, /<id> GET|PUT|DELETE, /<id>/toggle PATCH
  /api/v1/system/permissions           GET|POST, /<id> GET|PUT|DELETE, /<id>/toggle PATCH
  /api/v1/system/permissions/cleanup   POST
  /api/v1/system/roles                 GET|POST, /<id> GET|PUT|DELETE, /<id>/toggle PATCH
  /api/v1/system/role-permissions      GET|POST|DELETE
  /api/v1/system/policies              GET|POST, /<id> GET|PUT|DELETE
  /api/v1/system/policies/<id>/assignments  GET|POST|DELETE

Request bodies use snake_case; list filters use camelCase query params.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.services import policy_service, rbac_service
from lunamanager.services.workspace_service import require_manager, resolve_workspace_context
from lunamanager.utils.helpers import db_commit_or_error, normalize_body, parse_int

system_bp = Blueprint("system", __name__, url_prefix="/api/v1/system")


@system_bp.errorhandler(ValueError)
def _bad_number(e):
    # parse_int messages are client-facing
    return jsonify({"error": str(e)}), 400


def _body(int_fields=()):
    data = normalize_body(request.get_json(silent=True) or {})
    for field in int_fields:
        if data.get(field) is not None:
            data[field] = parse_int(data[field], field)
    return data


def _query_int(name):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    return parse_int(value, name)


def _missing(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        return jsonify({"error": f"{', '.join(missing)} required"}), 400
    return None


def _committed(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(payload), status


def _require_workspace_manager(workspace_id, company_id=None):
    """Workspace-scoped role writes are limited to that workspace's owner and admins."""
    workspace, _, _ = resolve_workspace_context(
        g.jwt_user_id, workspace_id, company_id, method=request.method
    )
    require_manager(workspace, g.jwt_user_id)


# ═════════════════════════════════════════════════════════════════════════════
# Modules
# ═════════════════════════════════════════════════════════════════════════════

@system_bp.route("/modules", methods=["GET"])
@login_required
def list_modules():
    include_inactive = request.args.get("includeInactive", "true").lower() != "false"
    return jsonify([m.to_dict() for m in rbac_service.list_modules(include_inactive)])


@system_bp.route("/modules", methods=["POST"])
@login_required
def create_module():
    data = _body(("sort_order",))
    err = _missing(data, "code", "name")
    if err:
        return err
    return _committed(rbac_service.create_module(data).to_dict(), 201)


@system_bp.route("/modules/<int:module_id>", methods=["GET"])
@login_required
def get_module(module_id):
    return jsonify(rbac_service.get_module(module_id).to_dict())


@system_bp.route("/modules/<int:module_id>", methods=["PUT"])
@login_required
def update_module(module_id):
    data = _body(("sort_order",))
    module = rbac_service.update_module(rbac_service.get_module(module_id), data)
    return _committed(module.to_dict())


@system_bp.route("/modules/<int:module_id>", methods=["DELETE"])
@login_required
def delete_module(module_id):
    rbac_service.delete_module(rbac_service.get_module(module_id))
    return _committed({"message": "Module deleted"})


@system_bp.route("/modules/<int:module_id>/toggle", methods=["PATCH"])
@login_required
def toggle_module(module_id):
    module = rbac_service.toggle_module(rbac_service.get_module(module_id))
    return _committed(module.to_dict())


@system_bp.route("/modules/assignments", methods=["GET"])
@login_required
def list_company_modules():
    company_id = _query_int("companyId")
    return jsonify([r.to_dict() for r in rbac_service.list_company_modules(company_id)])


@system_bp.route("/modules/assignments", methods=["POST"])
@login_required
def set_company_module():
    """Body: { company_id, module_id, is_enabled, settings? }"""
    data = _body(("company_id", "module_id"))
    err = _missing(data, "company_id", "module_id")
    if err:
        return err
    row, created = rbac_service.set_company_module(
        data["company_id"], data["module_id"], data.get("is_enabled", True), data.get("settings")
    )
    return _committed(row.to_dict(), 201 if created else 200)


# ═════════════════════════════════════════════════════════════════════════════
# Resources
# ═════════════════════════════════════════════════════════════════════════════

RESOURCE_INTS = ("module_id", "parent_resource_id", "sort_order")


@system_bp.route("/resources", methods=["GET"])
@login_required
def list_resources():
    return jsonify([r.to_dict() for r in rbac_service.list_resources(_query_int("moduleId"))])


@system_bp.route("/resources", methods=["POST"])
@login_required
def create_resource():
    data = _body(RESOURCE_INTS)
    err = _missing(data, "module_id", "code", "name")
    if err:
        return err
    return _committed(rbac_service.create_resource(data).to_dict(), 201)


@system_bp.route("/resources/<int:resource_id>", methods=["GET"])
@login_required
def get_resource(resource_id):
    return jsonify(rbac_service.get_resource(resource_id).to_dict())


@system_bp.route("/resources/<int:resource_id>", methods=["PUT"])
@login_required
def update_resource(resource_id):
    data = _body(RESOURCE_INTS)
    data.pop("module_id", None)
    resource = rbac_service.update_resource(rbac_service.get_resource(resource_id), data)
    return _committed(resource.to_dict())


@system_bp.route("/resources/<int:resource_id>", methods=["DELETE"])
@login_required
def delete_resource(resource_id):
    rbac_service.delete_resource(rbac_service.get_resource(resource_id))
    return _committed({"message": "Resource deleted"})


@system_bp.route("/resources/<int:resource_id>/toggle", methods=["PATCH"])
@login_required
def toggle_resource(resource_id):
    resource = rbac_service.toggle_resource(rbac_service.get_resource(resource_id))
    return _committed(resource.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Permissions
# ═════════════════════════════════════════════════════════════════════════════

@system_bp.route("/permissions", methods=["GET"])
@login_required
def list_permissions():
    rows = rbac_service.list_permissions(_query_int("resourceId"), _query_int("moduleId"))
    return jsonify([p.to_dict() for p in rows])


@system_bp.route("/permissions", methods=["POST"])
@login_required
def create_permission():
    """Body: { resource_id, action, name?, display_name?, description?, conditions? }"""
    data = _body(("resource_id",))
    err = _missing(data, "resource_id", "action")
    if err:
        return err
    return _committed(rbac_service.create_permission(data).to_dict(), 201)


@system_bp.route("/permissions/cleanup", methods=["POST"])
@login_required
def cleanup_permissions():
    return _committed(rbac_service.cleanup_inactive_permissions())


@system_bp.route("/permissions/<int:permission_id>", methods=["GET"])
@login_required
def get_permission(permission_id):
    return jsonify(rbac_service.get_permission(permission_id).to_dict())


@system_bp.route("/permissions/<int:permission_id>", methods=["PUT"])
@login_required
def update_permission(permission_id):
    permission = rbac_service.update_permission(rbac_service.get_permission(permission_id), _body())
    return _committed(permission.to_dict())


@system_bp.route("/permissions/<int:permission_id>", methods=["DELETE"])
@login_required
def delete_permission(permission_id):
    rbac_service.delete_permission(rbac_service.get_permission(permission_id))
    return _committed({"message": "Permission deleted"})


@system_bp.route("/permissions/<int:permission_id>/toggle", methods=["PATCH"])
@login_required
def toggle_permission(permission_id):
    permission = rbac_service.toggle_permission(rbac_service.get_permission(permission_id))
    return _committed(permission.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════════════

ROLE_INTS = ("workspace_id", "company_id", "sort_order")


def _scoped_role(role_id):
    role = rbac_service.get_role(role_id)
    if role.workspace_id is not None:
        _require_workspace_manager(role.workspace_id)
    return role


@system_bp.route("/roles", methods=["GET"])
@login_required
def list_roles():
    include_system = request.args.get("includeSystem", "true").lower() != "false"
    roles = rbac_service.list_roles(_query_int("workspaceId"), _query_int("companyId"), include_system)
    return jsonify([r.to_dict() for r in roles])


@system_bp.route("/roles", methods=["POST"])
@login_required
def create_role():
    data = _body(ROLE_INTS)
    err = _missing(data, "code", "name")
    if err:
        return err
    if data.get("workspace_id") is not None:
        _require_workspace_manager(data["workspace_id"], data.get("company_id"))
    return _committed(rbac_service.create_role(data).to_dict(), 201)


@system_bp.route("/roles/<int:role_id>", methods=["GET"])
@login_required
def get_role(role_id):
    return jsonify(rbac_service.get_role(role_id).to_dict(include_permissions=True))


@system_bp.route("/roles/<int:role_id>", methods=["PUT"])
@login_required
def update_role(role_id):
    data = _body(("sort_order",))
    role = _scoped_role(role_id)
    role = rbac_service.update_role(role, data)
    return _committed(role.to_dict())


@system_bp.route("/roles/<int:role_id>", methods=["DELETE"])
@login_required
def delete_role(role_id):
    rbac_service.delete_role(_scoped_role(role_id))
    return _committed({"message": "Role deleted"})


@system_bp.route("/roles/<int:role_id>/toggle", methods=["PATCH"])
@login_required
def toggle_role(role_id):
    role = rbac_service.toggle_role(_scoped_role(role_id))
    return _committed(role.to_dict())


# ── Role permissions ────────────────────────────────────────────────────────

@system_bp.route("/role-permissions", methods=["GET"])
@login_required
def list_role_permissions():
    rows = rbac_service.list_role_permissions(
        _query_int("roleId"), _query_int("workspaceId"), _query_int("companyId")
    )
    return jsonify([r.to_dict() for r in rows])


@system_bp.route("/role-permissions", methods=["POST"])
@login_required
def upsert_role_permission():
    """Body: { role_id, permission_id, workspace_id, company_id?, is_granted?, expires_at?, conditions? }"""
    data = _body(("role_id", "permission_id", "workspace_id", "company_id"))
    err = _missing(data, "role_id", "permission_id", "workspace_id")
    if err:
        return err
    _require_workspace_manager(data["workspace_id"], data.get("company_id"))
    row, created = rbac_service.upsert_role_permission(data, granted_by=g.jwt_user_id)
    return _committed(row.to_dict(), 201 if created else 200)


@system_bp.route("/role-permissions", methods=["DELETE"])
@login_required
def delete_role_permission():
    role_id = _query_int("roleId")
    permission_id = _query_int("permissionId")
    workspace_id = _query_int("workspaceId")
    if role_id is None or permission_id is None or workspace_id is None:
        return jsonify({"error": "roleId, permissionId and workspaceId are required"}), 400
    _require_workspace_manager(workspace_id)
    count = rbac_service.delete_role_permission(
        role_id, permission_id, workspace_id, _query_int("companyId")
    )
    return _committed({"deleted": count})


# ═════════════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════════════

@system_bp.route("/policies", methods=["GET"])
@login_required
def list_policies():
    filters = request.args.to_dict()
    if filters.get("workspaceId") and not filters["workspaceId"].isdigit():
        return jsonify({"error": "workspaceId must be an integer"}), 400
    return jsonify([p.to_dict() for p in policy_service.list_policies(filters)])


@system_bp.route("/policies", methods=["POST"])
@login_required
def create_policy():
    """Body: { title, type?, content?, status?, is_active?, workspace_id? }"""
    data = _body(("workspace_id",))
    err = _missing(data, "title")
    if err:
        return err
    policy = policy_service.create_policy(data, g.jwt_user_id)
    return _committed(policy.to_dict(), 201)


@system_bp.route("/policies/<int:policy_id>", methods=["GET"])
@login_required
def get_policy(policy_id):
    return jsonify(policy_service.get_policy(policy_id).to_dict(include_assignments=True))


@system_bp.route("/policies/<int:policy_id>", methods=["PUT"])
@login_required
def update_policy(policy_id):
    policy = policy_service.update_policy(policy_service.get_policy(policy_id), _body())
    return _committed(policy.to_dict())


@system_bp.route("/policies/<int:policy_id>", methods=["DELETE"])
@login_required
def delete_policy(policy_id):
    policy_service.delete_policy(policy_service.get_policy(policy_id))
    return _committed({"message": "Policy deleted"})


@system_bp.route("/policies/<int:policy_id>/assignments", methods=["GET"])
@login_required
def list_policy_assignments(policy_id):
    policy = policy_service.get_policy(policy_id)
    return jsonify([a.to_dict() for a in policy_service.list_assignments(policy)])


@system_bp.route("/policies/<int:policy_id>/assignments", methods=["POST"])
@login_required
def assign_policy(policy_id):
    """Body: exactly one of { workspace_id } or { company_id }"""
    data = _body(("workspace_id", "company_id"))
    policy = policy_service.get_policy(policy_id)
    assignment = policy_service.assign_policy(
        policy, data.get("workspace_id"), data.get("company_id"), user_id=g.jwt_user_id
    )
    return _committed(assignment.to_dict(), 201)


@system_bp.route("/policies/<int:policy_id>/assignments", methods=["DELETE"])
@login_required
def unassign_policy(policy_id):
    assignment_id = _query_int("assignmentId")
    if assignment_id is None:
        return jsonify({"error": "assignmentId is required"}), 400
    policy_service.unassign_policy(policy_service.get_policy(policy_id), assignment_id)
    return _committed({"message": "Assignment removed"})
