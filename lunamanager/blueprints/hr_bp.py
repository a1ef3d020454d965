"""
HR Blueprint — employee profiles, position history and employee files.

Base: /api/v1/workspaces/<ws>/companies/<co>/employees

  GET|POST           /employees
  GET|PUT|DELETE     /employees/<id>
  GET|POST           /employees/<id>/position-changes
  GET|POST           /employees/<id>/files
  DELETE             /employees/<id>/files/<file_id>

Reads need hr.employees.view, writes hr.employees.manage; workspace
owners and admins bypass both.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.permission_required import require_permission
from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import hr_service
from lunamanager.utils.helpers import db_commit_or_error, normalize_body, parse_int

hr_bp = Blueprint("hr", __name__, url_prefix="/api/v1/workspaces")

BASE = "/<ws>/companies/<co>/employees"
VIEW = "hr.employees.view"
MANAGE = "hr.employees.manage"

PROFILE_INT_FIELDS = ("user_id", "department_id", "unit_id", "manager_id")
CHANGE_INT_FIELDS = ("new_department_id", "new_unit_id")


def _coerce_ints(data, fields):
    for field in fields:
        if field in data:
            data[field] = parse_int(data[field], field)
    return data


def _employee(employee_id):
    return hr_service.get_employee(g.workspace.id, g.company.id, employee_id)


# ═════════════════════════════════════════════════════════════════════════════
# Profiles
# ═════════════════════════════════════════════════════════════════════════════

@hr_bp.route(BASE, methods=["GET"])
@workspace_required
@require_permission(VIEW)
def list_employees(ws, co):
    filters = request.args.to_dict()
    if filters.get("department_id") and not filters["department_id"].isdigit():
        return jsonify({"error": "department_id must be an integer"}), 400
    return jsonify(hr_service.list_employees(g.workspace.id, g.company.id, filters))


@hr_bp.route(BASE, methods=["POST"])
@workspace_required
@require_permission(MANAGE)
def onboard_employee(ws, co):
    """Body: { user_id, position?, department_id?, unit_id?, start_date?, ... }"""
    data = normalize_body(request.get_json(silent=True) or {})
    if data.get("user_id") is None:
        return jsonify({"error": "user_id is required"}), 400
    try:
        _coerce_ints(data, PROFILE_INT_FIELDS)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    profile = hr_service.onboard_employee(g.workspace.id, g.company.id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(hr_service.serialize(profile)), 201


@hr_bp.route(BASE + "/<int:employee_id>", methods=["GET"])
@workspace_required
@require_permission(VIEW)
def get_employee(ws, co, employee_id):
    profile = _employee(employee_id)
    return jsonify({**hr_service.serialize(profile), "user": profile.user.to_brief()})


@hr_bp.route(BASE + "/<int:employee_id>", methods=["PUT"])
@workspace_required
@require_permission(MANAGE)
def update_employee(ws, co, employee_id):
    data = normalize_body(request.get_json(silent=True) or {})
    data.pop("user_id", None)
    try:
        _coerce_ints(data, PROFILE_INT_FIELDS)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    profile = hr_service.update_employee(_employee(employee_id), data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(hr_service.serialize(profile))


@hr_bp.route(BASE + "/<int:employee_id>", methods=["DELETE"])
@workspace_required
@require_permission(MANAGE)
def delete_employee(ws, co, employee_id):
    hr_service.delete_employee(_employee(employee_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Employee deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Position changes
# ═════════════════════════════════════════════════════════════════════════════

@hr_bp.route(BASE + "/<int:employee_id>/position-changes", methods=["GET"])
@workspace_required
@require_permission(VIEW)
def list_position_changes(ws, co, employee_id):
    """Newest effective date first; department and unit names included."""
    changes = hr_service.list_position_changes(_employee(employee_id))
    return jsonify([c.to_dict() for c in changes])


@hr_bp.route(BASE + "/<int:employee_id>/position-changes", methods=["POST"])
@workspace_required
@require_permission(MANAGE)
def record_position_change(ws, co, employee_id):
    """Body: { effective_date, new_position?, new_department_id?, new_unit_id?, reason? }"""
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("effective_date"):
        return jsonify({"error": "effective_date is required"}), 400
    try:
        _coerce_ints(data, CHANGE_INT_FIELDS)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    change = hr_service.record_position_change(_employee(employee_id), data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(change.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# Files
# ═════════════════════════════════════════════════════════════════════════════

@hr_bp.route(BASE + "/<int:employee_id>/files", methods=["GET"])
@workspace_required
@require_permission(VIEW)
def list_files(ws, co, employee_id):
    return jsonify([f.to_dict() for f in hr_service.list_files(_employee(employee_id))])


@hr_bp.route(BASE + "/<int:employee_id>/files", methods=["POST"])
@workspace_required
@require_permission(MANAGE)
def add_file(ws, co, employee_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "name is required"}), 400
    try:
        _coerce_ints(data, ("size",))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    file = hr_service.add_file(_employee(employee_id), data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(file.to_dict()), 201


@hr_bp.route(BASE + "/<int:employee_id>/files/<int:file_id>", methods=["DELETE"])
@workspace_required
@require_permission(MANAGE)
def delete_file(ws, co, employee_id, file_id):
    hr_service.delete_file(_employee(employee_id), file_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "File deleted"}), 200
