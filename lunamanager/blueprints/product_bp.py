"""
Product Blueprint — workspace product catalogue.

  GET|POST           /api/v1/workspaces/<ws>/products
  GET|PUT|DELETE     /api/v1/workspaces/<ws>/products/<id>
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import product_service
from lunamanager.utils.helpers import (
    db_commit_or_error,
    normalize_body,
    page_args,
    parse_decimal,
    parse_int,
)

product_bp = Blueprint("products", __name__, url_prefix="/api/v1/workspaces")

INT_FIELDS = ("company_id", "min_stock_level")
DECIMAL_FIELDS = ("base_price", "tax_rate")


def _body():
    data = normalize_body(request.get_json(silent=True) or {})
    for field in INT_FIELDS:
        if field in data:
            data[field] = parse_int(data[field], field)
    for field in DECIMAL_FIELDS:
        if field in data:
            data[field] = parse_decimal(data[field], field)
    if data.get("specifications") is not None and not isinstance(data["specifications"], dict):
        raise ValueError("specifications must be an object")
    return data


@product_bp.route("/<ws>/products", methods=["GET"])
@workspace_required
def list_products(ws):
    filters = request.args.to_dict()
    if filters.get("companyId") and not filters["companyId"].isdigit():
        return jsonify({"error": "companyId must be an integer"}), 400
    page, limit = page_args(request.args)
    return jsonify(product_service.list_products(g.workspace.id, filters, page, limit))


@product_bp.route("/<ws>/products", methods=["POST"])
@workspace_required
def create_product(ws):
    try:
        data = _body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if not data.get("name") or not data.get("sku"):
        return jsonify({"error": "name and sku are required"}), 400

    product = product_service.create_product(g.workspace.id, data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(product.to_dict()), 201


@product_bp.route("/<ws>/products/<int:product_id>", methods=["GET"])
@workspace_required
def get_product(ws, product_id):
    return jsonify(product_service.get_product(g.workspace.id, product_id).to_dict())


@product_bp.route("/<ws>/products/<int:product_id>", methods=["PUT"])
@workspace_required
def update_product(ws, product_id):
    try:
        data = _body()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    product = product_service.get_product(g.workspace.id, product_id)
    product_service.update_product(product, data, g.jwt_user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(product.to_dict())


@product_bp.route("/<ws>/products/<int:product_id>", methods=["DELETE"])
@workspace_required
def delete_product(ws, product_id):
    product_service.delete_product(product_service.get_product(g.workspace.id, product_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Product deleted"}), 200
