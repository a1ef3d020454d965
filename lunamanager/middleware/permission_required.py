"""
Permission decorators — module RBAC checks for route protection.

Must sit below ``@workspace_required`` so g.workspace / g.company are set:

    @bp.route("/<ws>/companies/<co>/employees", methods=["POST"])
    @workspace_required
    @require_permission("hr.employees.manage")
    def onboard_employee(ws, co):
        ...

Workspace owners and owner/admin members bypass the check. Every check,
granted or not, is written to the module access log.
"""

import functools
import logging

from flask import g, jsonify

from lunamanager.services.permission_service import has_permission, record_access
from lunamanager.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)


def require_permission(name: str):
    """
    Decorator: require the JWT user to hold ``name`` in the current scope.

    Args:
        name: Permission key, e.g. "hr.employees.view"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return jsonify({"error": "Unauthorized"}), 401

            workspace = g.workspace
            company = getattr(g, "company", None)
            company_id = company.id if company is not None else None

            granted = has_permission(user_id, workspace.id, name, company_id=company_id)
            record_access(user_id, workspace.id, name, granted, company_id=company_id)
            # Read-only handlers never commit, so the log row is committed here
            err = db_commit_or_error()
            if err:
                return err

            if not granted:
                logger.warning(
                    "User %d denied: missing permission '%s' on %s",
                    user_id, name, f.__name__,
                )
                return jsonify({"error": "Permission denied", "required": name}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator
