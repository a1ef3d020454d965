"""
Talep Blueprint — customer/supplier requests and their workflow.

Base: /api/v1/workspaces/<ws>/companies/<co>/talep

  GET|POST           /talep
  GET                /talep/stats
  GET|PUT|DELETE     /talep/<id>
  PATCH              /talep/<id>/status
  GET|POST           /talep/<id>/items        (alias /products)
  PUT|DELETE         /talep/<id>/items/<item_id>
  GET|POST           /talep/<id>/notes
  GET|POST           /talep/<id>/files
  GET|POST           /talep/<id>/actions
  GET                /talep/<id>/activities

Workspace-wide: GET /api/v1/workspaces/<ws>/requests?companyId=

Every mutation goes through request_service and is committed here as a
single transaction.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import request_service
from lunamanager.services.workspace_service import list_company_scope
from lunamanager.utils.helpers import (
    db_commit_or_error,
    normalize_body,
    parse_datetime,
    parse_decimal,
    parse_int,
)

talep_bp = Blueprint("talep", __name__, url_prefix="/api/v1/workspaces")

BASE = "/<ws>/companies/<co>/talep"

TALEP_INT_FIELDS = ("entity_id", "entity_contact_id", "assigned_to")
TALEP_DECIMAL_FIELDS = ("estimated_hours", "actual_hours", "estimated_cost", "actual_cost")
ITEM_INT_FIELDS = ("requested_quantity",)
ITEM_DECIMAL_FIELDS = ("target_price",)
TALEP_TEXT_FIELDS = ("title", "description", "type", "category", "priority", "status")


def _coerce(data, int_fields=(), decimal_fields=(), datetime_fields=()):
    """In-place coercion of typed fields. Raises ValueError with a client message."""
    for field in int_fields:
        if field in data:
            data[field] = parse_int(data[field], field)
    for field in decimal_fields:
        if field in data:
            data[field] = parse_decimal(data[field], field)
    for field in datetime_fields:
        if data.get(field) is not None:
            parsed = parse_datetime(data[field])
            if parsed is None:
                raise ValueError(f"{field} must be a date or datetime")
            data[field] = parsed
    return data


def _non_text(data, fields=TALEP_TEXT_FIELDS):
    """400 response for the first field holding a non-string value, else None."""
    for field in fields:
        if data.get(field) is not None and not isinstance(data[field], str):
            return jsonify({"error": f"{field} must be a string"}), 400
    return None


def _item_body(data):
    return _coerce(normalize_body(data), ITEM_INT_FIELDS, ITEM_DECIMAL_FIELDS)


def _talep(talep_id):
    return request_service.get_request(g.workspace.id, g.company.id, talep_id)


# ═════════════════════════════════════════════════════════════════════════════
# Talep CRUD
# ═════════════════════════════════════════════════════════════════════════════

def _list_filters():
    """Query-string filters with ids and paging coerced. Raises ValueError."""
    filters = request.args.to_dict()
    for key in ("customer", "entity_id", "assigned_to"):
        if key in filters:
            filters[key] = parse_int(filters[key], key)
    filters["limit"] = min(parse_int(filters.get("limit"), "limit", minimum=1, default=20), 100)
    filters["offset"] = parse_int(filters.get("offset"), "offset", minimum=0, default=0)
    return filters


@talep_bp.route(BASE, methods=["GET"])
@workspace_required
def list_talep(ws, co):
    try:
        filters = _list_filters()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(request_service.get_requests(g.workspace.id, g.company.id, filters))


@talep_bp.route("/<ws>/requests", methods=["GET"])
@workspace_required
def list_workspace_talep(ws):
    """Requests across every company of the workspace; ``companyId`` narrows to one."""
    try:
        filters = _list_filters()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    company_id = list_company_scope(g.workspace, g.membership, request.args.get("companyId"))
    return jsonify(request_service.get_requests(g.workspace.id, company_id, filters))


@talep_bp.route(BASE + "/stats", methods=["GET"])
@workspace_required
def talep_stats(ws, co):
    return jsonify(request_service.get_stats(g.workspace.id, g.company.id))


@talep_bp.route(BASE, methods=["POST"])
@workspace_required
def create_talep(ws, co):
    """
    Body: { title, description, entity_id, type?, category?, priority?,
            assigned_to?, deadline?, ..., items?: [ {product_name, ...} ] }
    """
    raw = request.get_json(silent=True) or {}
    items = raw.get("items") or []
    if not isinstance(items, list):
        return jsonify({"error": "items must be a list"}), 400

    data = normalize_body(raw)
    err = _non_text(data)
    if err:
        return err
    title = data.get("title")
    if not title or not data.get("description") or data.get("entity_id") is None:
        return jsonify({"error": "title, description and entity_id are required"}), 400
    if len(title) > 255:
        return jsonify({"error": "title must be at most 255 characters"}), 400
    try:
        _coerce(data, TALEP_INT_FIELDS, TALEP_DECIMAL_FIELDS, ("deadline",))
        data["items"] = [_item_body(i) for i in items if isinstance(i, dict)]
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    talep = request_service.create_request(g.workspace.id, g.company.id, g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(request_service.get_request_with_details(talep)), 201


@talep_bp.route(BASE + "/<int:talep_id>", methods=["GET"])
@workspace_required
def get_talep(ws, co, talep_id):
    return jsonify(request_service.get_request_with_details(_talep(talep_id)))


@talep_bp.route(BASE + "/<int:talep_id>", methods=["PUT"])
@workspace_required
def update_talep(ws, co, talep_id):
    data = normalize_body(request.get_json(silent=True) or {})
    err = _non_text(data)
    if err:
        return err
    if data.get("title") and len(data["title"]) > 255:
        return jsonify({"error": "title must be at most 255 characters"}), 400
    try:
        _coerce(data, TALEP_INT_FIELDS, TALEP_DECIMAL_FIELDS, ("deadline",))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    data.pop("entity_id", None)

    talep = request_service.update_request(_talep(talep_id), g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(talep.to_dict())


@talep_bp.route(BASE + "/<int:talep_id>", methods=["DELETE"])
@workspace_required
def delete_talep(ws, co, talep_id):
    request_service.delete_request(_talep(talep_id), g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Talep deleted"}), 200


@talep_bp.route(BASE + "/<int:talep_id>/status", methods=["PATCH"])
@workspace_required
def update_status(ws, co, talep_id):
    """Body: { "status": "...", "notes"?: "..." }"""
    data = request.get_json(silent=True) or {}
    err = _non_text(data, ("status", "notes"))
    if err:
        return err
    new_status = (data.get("status") or "").strip()
    if not new_status:
        return jsonify({"error": "status is required"}), 400

    talep = request_service.update_request_status(
        _talep(talep_id), new_status, g.jwt_user_id, notes=data.get("notes")
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(talep.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════

@talep_bp.route(BASE + "/<int:talep_id>/items", methods=["GET"])
@talep_bp.route(BASE + "/<int:talep_id>/products", methods=["GET"])
@workspace_required
def list_items(ws, co, talep_id):
    return jsonify([i.to_dict() for i in request_service.list_items(_talep(talep_id))])


@talep_bp.route(BASE + "/<int:talep_id>/items", methods=["POST"])
@talep_bp.route(BASE + "/<int:talep_id>/products", methods=["POST"])
@workspace_required
def add_item(ws, co, talep_id):
    try:
        data = _item_body(request.get_json(silent=True) or {})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not data.get("product_name"):
        return jsonify({"error": "product_name is required"}), 400

    item = request_service.add_request_item(_talep(talep_id), g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


@talep_bp.route(BASE + "/<int:talep_id>/items/<int:item_id>", methods=["PUT"])
@talep_bp.route(BASE + "/<int:talep_id>/products/<int:item_id>", methods=["PUT"])
@workspace_required
def revise_item(ws, co, talep_id, item_id):
    try:
        data = _item_body(request.get_json(silent=True) or {})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    item = request_service.get_item(_talep(talep_id), item_id)
    request_service.revise_request_item(item, g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@talep_bp.route(BASE + "/<int:talep_id>/items/<int:item_id>", methods=["DELETE"])
@talep_bp.route(BASE + "/<int:talep_id>/products/<int:item_id>", methods=["DELETE"])
@workspace_required
def delete_item(ws, co, talep_id, item_id):
    item = request_service.get_item(_talep(talep_id), item_id)
    request_service.delete_request_item(item, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Item deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Notes / files / actions / activities
# ═════════════════════════════════════════════════════════════════════════════

@talep_bp.route(BASE + "/<int:talep_id>/notes", methods=["GET"])
@workspace_required
def list_notes(ws, co, talep_id):
    return jsonify([n.to_dict() for n in request_service.list_notes(_talep(talep_id))])


@talep_bp.route(BASE + "/<int:talep_id>/notes", methods=["POST"])
@workspace_required
def add_note(ws, co, talep_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("content"):
        return jsonify({"error": "content is required"}), 400

    note = request_service.add_note_to_request(_talep(talep_id), g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(note.to_dict()), 201


@talep_bp.route(BASE + "/<int:talep_id>/files", methods=["GET"])
@workspace_required
def list_files(ws, co, talep_id):
    return jsonify([f.to_dict() for f in request_service.list_files(_talep(talep_id))])


@talep_bp.route(BASE + "/<int:talep_id>/files", methods=["POST"])
@workspace_required
def attach_file(ws, co, talep_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("name"):
        return jsonify({"error": "name is required"}), 400
    try:
        _coerce(data, ("size",))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    file = request_service.attach_file_to_request(_talep(talep_id), g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(file.to_dict()), 201


@talep_bp.route(BASE + "/<int:talep_id>/actions", methods=["GET"])
@workspace_required
def list_actions(ws, co, talep_id):
    return jsonify([a.to_dict() for a in request_service.list_actions(_talep(talep_id))])


@talep_bp.route(BASE + "/<int:talep_id>/actions", methods=["POST"])
@workspace_required
def add_action(ws, co, talep_id):
    data = normalize_body(request.get_json(silent=True) or {})
    if not data.get("action_type") or not data.get("description"):
        return jsonify({"error": "action_type and description are required"}), 400
    for field in ("related_product_ids", "attachment_ids"):
        if data.get(field) is not None and not isinstance(data[field], list):
            return jsonify({"error": f"{field} must be a list"}), 400
    try:
        _coerce(data, ("duration",), (), ("follow_up_date", "action_date"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    action = request_service.add_action(_talep(talep_id), g.jwt_user_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(action.to_dict()), 201


@talep_bp.route(BASE + "/<int:talep_id>/activities", methods=["GET"])
@workspace_required
def list_activities(ws, co, talep_id):
    limit = min(request.args.get("limit", 100, type=int), 500)
    return jsonify([a.to_dict() for a in request_service.list_activities(_talep(talep_id), limit=limit)])
