"""
Company Blueprint — companies and their org structure, locations and files.

Base: /api/v1/workspaces/<ws>/companies

  GET|POST           /companies
  GET|PUT|DELETE     /companies/<co>
  GET                /companies/<co>/members
  GET|POST           /companies/<co>/departments
  GET|PUT|DELETE     /companies/<co>/departments/<id>
  GET|POST           /companies/<co>/departments/<id>/units
  PUT|DELETE         /companies/<co>/departments/<id>/units/<unit_id>
  GET|POST           /companies/<co>/locations
  GET|PUT|DELETE     /companies/<co>/locations/<id>
  GET|POST           /companies/<co>/files
  GET|DELETE         /companies/<co>/files/<id>
  POST               /companies/<co>/files/<id>/versions
  POST               /companies/<co>/files/<id>/versions/<vid>/make-current
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.models.company import Company, Department
from lunamanager.services import company_service, workspace_service
from lunamanager.utils.helpers import db_commit_or_error, normalize_body, parse_int

company_bp = Blueprint("companies", __name__, url_prefix="/api/v1/workspaces")


def _int_or_none(data, field):
    """Coerce ``field`` to int in place; return an error message on bad input."""
    if field not in data:
        return None
    try:
        data[field] = parse_int(data[field], field)
    except ValueError as e:
        return str(e)
    return None


# ═════════════════════════════════════════════════════════════════════════════
# Companies
# ═════════════════════════════════════════════════════════════════════════════

@company_bp.route("/<ws>/companies", methods=["GET"])
@workspace_required
def list_companies(ws):
    companies = workspace_service.workspace_companies_query(g.workspace.id).order_by(Company.name).all()
    restricted = g.membership.restricted_company_id if g.membership else None
    if restricted is not None:
        companies = [c for c in companies if c.id == restricted]
    return jsonify([c.to_dict() for c in companies])


@company_bp.route("/<ws>/companies", methods=["POST"])
@workspace_required
def create_company(ws):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "Company name is required"}), 400
    msg = _int_or_none(data, "parent_company_id")
    if msg:
        return jsonify({"error": msg}), 400

    workspace_service.require_manager(g.workspace, g.jwt_user_id)
    company = company_service.create_company(g.workspace, data, user_id=g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(company.to_dict()), 201


@company_bp.route("/<ws>/companies/<co>", methods=["GET"])
@workspace_required
def get_company(ws, co):
    return jsonify(g.company.to_dict())


@company_bp.route("/<ws>/companies/<co>", methods=["PUT"])
@workspace_required
def update_company(ws, co):
    data = normalize_body(request.get_json(silent=True) or {})
    if "name" in data and not data["name"]:
        return jsonify({"error": "Company name is required"}), 400
    msg = _int_or_none(data, "parent_company_id")
    if msg:
        return jsonify({"error": msg}), 400

    company = company_service.update_company(g.workspace, g.company, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(company.to_dict())


@company_bp.route("/<ws>/companies/<co>", methods=["DELETE"])
@workspace_required
def delete_company(ws, co):
    workspace_service.require_manager(g.workspace, g.jwt_user_id)
    company_service.delete_company(g.company)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Company deleted"}), 200


@company_bp.route("/<ws>/companies/<co>/members", methods=["GET"])
@workspace_required
def list_company_members(ws, co):
    return jsonify(company_service.list_company_members(g.workspace, g.company))


# ═════════════════════════════════════════════════════════════════════════════
# Departments
# ═════════════════════════════════════════════════════════════════════════════

@company_bp.route("/<ws>/companies/<co>/departments", methods=["GET"])
@workspace_required
def list_departments(ws, co):
    departments = Department.query.filter_by(company_id=g.company.id).order_by(Department.name).all()
    return jsonify([d.to_dict(include_units=True) for d in departments])


@company_bp.route("/<ws>/companies/<co>/departments", methods=["POST"])
@workspace_required
def create_department(ws, co):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "Department name is required"}), 400
    for field in ("parent_department_id", "manager_id"):
        msg = _int_or_none(data, field)
        if msg:
            return jsonify({"error": msg}), 400
    if data.get("goals") is not None and not isinstance(data["goals"], dict):
        return jsonify({"error": "goals must be an object"}), 400

    department = company_service.create_department(g.company, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(department.to_dict(include_units=True)), 201


@company_bp.route("/<ws>/companies/<co>/departments/<int:department_id>", methods=["GET"])
@workspace_required
def get_department(ws, co, department_id):
    department = company_service.get_department(g.company, department_id)
    return jsonify(department.to_dict(include_units=True))


@company_bp.route("/<ws>/companies/<co>/departments/<int:department_id>", methods=["PUT"])
@workspace_required
def update_department(ws, co, department_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if "name" in data and not data["name"]:
        return jsonify({"error": "Department name is required"}), 400
    for field in ("parent_department_id", "manager_id"):
        msg = _int_or_none(data, field)
        if msg:
            return jsonify({"error": msg}), 400

    department = company_service.get_department(g.company, department_id)
    company_service.update_department(g.company, department, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(department.to_dict(include_units=True))


@company_bp.route("/<ws>/companies/<co>/departments/<int:department_id>", methods=["DELETE"])
@workspace_required
def delete_department(ws, co, department_id):
    department = company_service.get_department(g.company, department_id)
    company_service.delete_department(department)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Department deleted"}), 200


# ── Units ────────────────────────────────────────────────────────────────────

@company_bp.route("/<ws>/companies/<co>/departments/<int:department_id>/units", methods=["GET"])
@workspace_required
def list_units(ws, co, department_id):
    department = company_service.get_department(g.company, department_id)
    return jsonify([u.to_dict() for u in department.units])


@company_bp.route("/<ws>/companies/<co>/departments/<int:department_id>/units", methods=["POST"])
@workspace_required
def create_unit(ws, co, department_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "Unit name is required"}), 400
    for field in ("staff_count", "lead_id"):
        msg = _int_or_none(data, field)
        if msg:
            return jsonify({"error": msg}), 400

    department = company_service.get_department(g.company, department_id)
    unit = company_service.create_unit(department, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(unit.to_dict()), 201


@company_bp.route(
    "/<ws>/companies/<co>/departments/<int:department_id>/units/<int:unit_id>", methods=["PUT"]
)
@workspace_required
def update_unit(ws, co, department_id, unit_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if "name" in data and not data["name"]:
        return jsonify({"error": "Unit name is required"}), 400
    for field in ("staff_count", "lead_id"):
        msg = _int_or_none(data, field)
        if msg:
            return jsonify({"error": msg}), 400

    department = company_service.get_department(g.company, department_id)
    unit = company_service.get_unit(department, unit_id)
    company_service.update_unit(department, unit, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(unit.to_dict())


@company_bp.route(
    "/<ws>/companies/<co>/departments/<int:department_id>/units/<int:unit_id>", methods=["DELETE"]
)
@workspace_required
def delete_unit(ws, co, department_id, unit_id):
    department = company_service.get_department(g.company, department_id)
    unit = company_service.get_unit(department, unit_id)
    company_service.delete_unit(unit)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Unit deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Locations
# ═════════════════════════════════════════════════════════════════════════════

@company_bp.route("/<ws>/companies/<co>/locations", methods=["GET"])
@workspace_required
def list_locations(ws, co):
    return jsonify([loc.to_dict() for loc in company_service.list_locations(g.company)])


@company_bp.route("/<ws>/companies/<co>/locations", methods=["POST"])
@workspace_required
def create_location(ws, co):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "Location name is required"}), 400

    location = company_service.create_location(g.company, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(location.to_dict()), 201


@company_bp.route("/<ws>/companies/<co>/locations/<int:location_id>", methods=["GET"])
@workspace_required
def get_location(ws, co, location_id):
    return jsonify(company_service.get_location(g.company, location_id).to_dict())


@company_bp.route("/<ws>/companies/<co>/locations/<int:location_id>", methods=["PUT"])
@workspace_required
def update_location(ws, co, location_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if "name" in data and not data["name"]:
        return jsonify({"error": "Location name is required"}), 400

    location = company_service.get_location(g.company, location_id)
    company_service.update_location(g.company, location, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(location.to_dict())


@company_bp.route("/<ws>/companies/<co>/locations/<int:location_id>", methods=["DELETE"])
@workspace_required
def delete_location(ws, co, location_id):
    location = company_service.get_location(g.company, location_id)
    company_service.delete_location(location)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Location deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Files (metadata only; blobs live in external storage)
# ═════════════════════════════════════════════════════════════════════════════

@company_bp.route("/<ws>/companies/<co>/files", methods=["GET"])
@workspace_required
def list_files(ws, co):
    return jsonify([f.to_dict() for f in company_service.list_files(g.company)])


@company_bp.route("/<ws>/companies/<co>/files", methods=["POST"])
@workspace_required
def create_file(ws, co):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name") or not data.get("blob_url"):
        return jsonify({"error": "name and blob_url are required"}), 400

    file = company_service.create_file(g.company, data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(file.to_dict(include_versions=True)), 201


@company_bp.route("/<ws>/companies/<co>/files/<int:file_id>", methods=["GET"])
@workspace_required
def get_file(ws, co, file_id):
    return jsonify(company_service.get_file(g.company, file_id).to_dict(include_versions=True))


@company_bp.route("/<ws>/companies/<co>/files/<int:file_id>", methods=["DELETE"])
@workspace_required
def delete_file(ws, co, file_id):
    file = company_service.get_file(g.company, file_id)
    company_service.delete_file(file)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "File deleted"}), 200


@company_bp.route("/<ws>/companies/<co>/files/<int:file_id>/versions", methods=["POST"])
@workspace_required
def add_file_version(ws, co, file_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("blob_url"):
        return jsonify({"error": "blob_url is required"}), 400

    file = company_service.get_file(g.company, file_id)
    version = company_service.add_file_version(file, data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(version.to_dict()), 201


@company_bp.route(
    "/<ws>/companies/<co>/files/<int:file_id>/versions/<int:version_id>/make-current",
    methods=["POST"],
)
@workspace_required
def make_version_current(ws, co, file_id, version_id):
    file = company_service.get_file(g.company, file_id)
    company_service.make_version_current(file, version_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(file.to_dict(include_versions=True))
