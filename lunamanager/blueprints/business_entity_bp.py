"""
Business Entity Blueprint — customers and suppliers.

Base: /api/v1/workspaces/<ws>/companies/<co>/<view>
where <view> is one of business-entities, customers, suppliers.

  GET|POST           /<view>
  GET                /business-entities/export        (.xlsx)
  GET|PUT|DELETE     /<view>/<id>
  GET|POST           /<view>/<id>/addresses|contacts|notes|files
  PUT|DELETE         /<view>/<id>/addresses|contacts|notes|files/<child_id>
  GET                /<view>/<id>/activities

Workspace-wide (every company, ``companyId`` narrows):
  GET                /api/v1/workspaces/<ws>/suppliers
  GET                /api/v1/workspaces/<ws>/suppliers/<id>
"""

import io

from flask import Blueprint, g, jsonify, request, send_file

from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import business_entity_service as svc
from lunamanager.services.export_service import export_business_entities_xlsx
from lunamanager.services.workspace_service import list_company_scope
from lunamanager.utils.helpers import (
    db_commit_or_error,
    normalize_body,
    page_args,
    parse_decimal,
    parse_int,
)

business_entity_bp = Blueprint("business_entities", __name__, url_prefix="/api/v1/workspaces")

VIEW_RULE = '/<ws>/companies/<co>/<any("business-entities", "customers", "suppliers"):view>'

INT_FIELDS = ("lead_time_days", "minimum_order_quantity", "parent_entity_id")
DECIMAL_FIELDS = ("credit_limit", "discount_rate", "quality_rating", "delivery_rating")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _scope_view(view):
    """URL segment -> service view name (None = every type)."""
    return None if view == "business-entities" else view


def _entity(view, entity_id):
    return svc.get_entity(g.workspace.id, g.company.id, entity_id, view=_scope_view(view))


def _entity_body():
    """Normalised body with numeric fields coerced. Raises ValueError on bad input."""
    data = normalize_body(request.get_json(silent=True) or {})
    for field in INT_FIELDS:
        if field in data:
            data[field] = parse_int(data[field], field)
    for field in DECIMAL_FIELDS:
        if field in data:
            data[field] = parse_decimal(data[field], field)
    if data.get("certifications") is not None and not isinstance(data["certifications"], list):
        raise ValueError("certifications must be a list")
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Entities
# ═════════════════════════════════════════════════════════════════════════════

@business_entity_bp.route("/<ws>/companies/<co>/business-entities/export", methods=["GET"])
@workspace_required
def export_entities(ws, co):
    """Same filters as the list; whole result set, no pagination."""
    content = export_business_entities_xlsx(g.workspace.id, g.company.id, request.args.to_dict())
    return send_file(
        io.BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"business_entities_{g.company.id}.xlsx",
    )


@business_entity_bp.route(VIEW_RULE, methods=["GET"])
@workspace_required
def list_entities(ws, co, view):
    page, limit = page_args(request.args)
    result = svc.list_entities(
        g.workspace.id, g.company.id, request.args.to_dict(), page, limit, view=_scope_view(view)
    )
    return jsonify(result)


@business_entity_bp.route("/<ws>/suppliers", methods=["GET"])
@workspace_required
def list_workspace_suppliers(ws):
    page, limit = page_args(request.args)
    company_id = list_company_scope(g.workspace, g.membership, request.args.get("companyId"))
    filters = request.args.to_dict()
    return jsonify(svc.list_entities(g.workspace.id, company_id, filters, page, limit, view="suppliers"))


@business_entity_bp.route("/<ws>/suppliers/<int:entity_id>", methods=["GET"])
@workspace_required
def get_workspace_supplier(ws, entity_id):
    company_id = list_company_scope(g.workspace, g.membership)
    entity = svc.get_entity(g.workspace.id, company_id, entity_id, view="suppliers")
    return jsonify(svc.get_entity_detail(entity))


@business_entity_bp.route(VIEW_RULE, methods=["POST"])
@workspace_required
def create_entity(ws, co, view):
    try:
        data = _entity_body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not data.get("name"):
        return jsonify({"error": "Name is required"}), 400

    entity = svc.create_entity(g.workspace.id, g.company.id, data, g.jwt_user_id, view=_scope_view(view))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(entity.to_dict()), 201


@business_entity_bp.route(VIEW_RULE + "/<int:entity_id>", methods=["GET"])
@workspace_required
def get_entity(ws, co, view, entity_id):
    return jsonify(svc.get_entity_detail(_entity(view, entity_id)))


@business_entity_bp.route(VIEW_RULE + "/<int:entity_id>", methods=["PUT"])
@workspace_required
def update_entity(ws, co, view, entity_id):
    try:
        data = _entity_body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if "name" in data and not data["name"]:
        return jsonify({"error": "Name is required"}), 400

    entity = svc.update_entity(_entity(view, entity_id), data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(entity.to_dict())


@business_entity_bp.route(VIEW_RULE + "/<int:entity_id>", methods=["DELETE"])
@workspace_required
def delete_entity(ws, co, view, entity_id):
    svc.delete_entity(_entity(view, entity_id), g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Sub-resources
# ═════════════════════════════════════════════════════════════════════════════

# kind -> (list, create, update, delete, required fields on create)
SUB_RESOURCES = {
    "addresses": (svc.list_addresses, svc.create_address, svc.update_address, svc.delete_address, ("address",)),
    "contacts": (svc.list_contacts, svc.create_contact, svc.update_contact, svc.delete_contact,
                 ("first_name", "last_name")),
    "notes": (svc.list_notes, svc.create_note, svc.update_note, svc.delete_note, ("content",)),
    "files": (svc.list_files, svc.create_file, svc.update_file, svc.delete_file, ("name",)),
}

SUB_RULE = VIEW_RULE + '/<int:entity_id>/<any("addresses", "contacts", "notes", "files"):kind>'


@business_entity_bp.route(SUB_RULE, methods=["GET"])
@workspace_required
def list_children(ws, co, view, entity_id, kind):
    lister = SUB_RESOURCES[kind][0]
    return jsonify([c.to_dict() for c in lister(_entity(view, entity_id))])


@business_entity_bp.route(SUB_RULE, methods=["POST"])
@workspace_required
def create_child(ws, co, view, entity_id, kind):
    _, creator, _, _, required = SUB_RESOURCES[kind]
    data = normalize_body(request.get_json(silent=True) or {})
    missing = [f for f in required if not data.get(f)]
    if missing:
        return jsonify({"error": f"{', '.join(missing)} required"}), 400

    child = creator(_entity(view, entity_id), data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(child.to_dict()), 201


@business_entity_bp.route(SUB_RULE + "/<int:child_id>", methods=["PUT"])
@workspace_required
def update_child(ws, co, view, entity_id, kind, child_id):
    updater = SUB_RESOURCES[kind][2]
    data = normalize_body(request.get_json(silent=True) or {})
    child = updater(_entity(view, entity_id), child_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(child.to_dict())


@business_entity_bp.route(SUB_RULE + "/<int:child_id>", methods=["DELETE"])
@workspace_required
def delete_child(ws, co, view, entity_id, kind, child_id):
    deleter = SUB_RESOURCES[kind][3]
    deleter(_entity(view, entity_id), child_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Deleted"}), 200


@business_entity_bp.route(VIEW_RULE + "/<int:entity_id>/activities", methods=["GET"])
@workspace_required
def list_activities(ws, co, view, entity_id):
    limit = min(request.args.get("limit", 100, type=int), 500)
    return jsonify([a.to_dict() for a in svc.list_activities(_entity(view, entity_id), limit=limit)])
