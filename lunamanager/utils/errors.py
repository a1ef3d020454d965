"""JSON error bodies for service exceptions.

Every handled error leaves the API as::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty. Blueprint-level input errors keep the
short ``{"error": ...}`` form with a 400.

Usage
-----
    from lunamanager.utils.errors import service_error_response

    @app.errorhandler(NotFoundError)
    def _handle(e):
        return service_error_response(e)
"""

from __future__ import annotations

from flask import jsonify

from lunamanager.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError


class E:
    """Machine-readable error codes."""

    BUSINESS_RULE = "ERR_BUSINESS_RULE"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"


_STATUS: dict[str, int] = {
    E.BUSINESS_RULE: 422,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
}

# exception type -> (code, details builder)
_MAPPING = {
    NotFoundError: (E.NOT_FOUND, lambda e: None),
    ValidationError: (E.BUSINESS_RULE, lambda e: e.details),
    ConflictError: (E.CONFLICT_DUPLICATE, lambda e: {"field": e.field}),
    ForbiddenError: (E.FORBIDDEN, lambda e: None),
}

SERVICE_ERRORS = tuple(_MAPPING)


def api_error(code: str, message: str, *, details: dict | None = None):
    """Return ``(jsonify(body), status)`` for an ``E.*`` code."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), _STATUS.get(code, 400)


def service_error_response(exc: Exception):
    """Render one of ``SERVICE_ERRORS`` with its code and status."""
    code, details = _MAPPING[type(exc)]
    return api_error(code, exc.message, details=details(exc))
