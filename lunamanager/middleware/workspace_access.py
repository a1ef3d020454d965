"""
Workspace access decorator.

Routes under ``/workspaces/<ws>`` and ``/workspaces/<ws>/companies/<co>``
resolve their tenant context once, here:

    @bp.route("/<ws>/companies/<co>/talep", methods=["GET"])
    @workspace_required
    def list_talep(ws, co):
        g.workspace, g.company, g.membership  # resolved and authorised

Unknown workspace/company -> NotFoundError, no access -> ForbiddenError;
the app-wide handlers render both.
"""

import functools

from flask import g, jsonify, request

from lunamanager.services.workspace_service import resolve_workspace_context


def workspace_required(f):
    """Resolve ``ws`` (and ``co`` when the route has it) for the JWT user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return jsonify({"error": "Unauthorized"}), 401

        workspace, company, membership = resolve_workspace_context(
            user_id, kwargs.get("ws"), kwargs.get("co"), method=request.method
        )
        g.workspace = workspace
        g.company = company
        g.membership = membership
        return f(*args, **kwargs)

    return decorated
