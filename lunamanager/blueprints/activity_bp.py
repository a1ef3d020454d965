"""
Activity Blueprint — the user activity log.

  GET  /api/v1/activities/me                            own activity
  GET  /api/v1/workspaces/<ws>/activities               owners/admins
  GET  /api/v1/workspaces/<ws>/activities/summary?days= owners/admins

List filters: category, type (name prefix), status, userId, companyId,
resourceType, page, limit.
"""

from flask import Blueprint, g, jsonify, request

from lunamanager.middleware.jwt_auth import login_required
from lunamanager.middleware.workspace_access import workspace_required
from lunamanager.services import activity_service
from lunamanager.services.workspace_service import require_manager
from lunamanager.utils.helpers import page_args, parse_int

activity_bp = Blueprint("activities", __name__, url_prefix="/api/v1")


@activity_bp.errorhandler(ValueError)
def _bad_number(e):
    return jsonify({"error": str(e)}), 400


def _filters():
    filters = request.args.to_dict()
    for key in ("userId", "companyId"):
        filters[key] = parse_int(filters.get(key), key)
    return filters


@activity_bp.route("/activities/me", methods=["GET"])
@login_required
def my_activities():
    page, limit = page_args(request.args, default_limit=50, max_limit=200)
    filters = _filters()
    filters.pop("userId")
    return jsonify(activity_service.list_activities(filters, page, limit, user_id=g.jwt_user_id))


@activity_bp.route("/workspaces/<ws>/activities", methods=["GET"])
@workspace_required
def workspace_activities(ws):
    require_manager(g.workspace, g.jwt_user_id)
    page, limit = page_args(request.args, default_limit=50, max_limit=200)
    return jsonify(
        activity_service.list_activities(_filters(), page, limit, workspace_id=g.workspace.id)
    )


@activity_bp.route("/workspaces/<ws>/activities/summary", methods=["GET"])
@workspace_required
def workspace_activity_summary(ws):
    require_manager(g.workspace, g.jwt_user_id)
    days = parse_int(request.args.get("days"), "days", default=30)
    return jsonify({
        "days": days,
        "totals": activity_service.count_by_category(g.workspace.id),
        "rows": activity_service.summarize(g.workspace.id, days),
    })
