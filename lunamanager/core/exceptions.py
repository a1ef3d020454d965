"""
Service-layer exception hierarchy.

Services raise these; the app factory registers one handler per type so
every blueprint gets the same status codes and body shape.

Usage:
    from lunamanager.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Talep", resource_id=42)
    raise ValidationError("Invalid status transition", details={"status": "..."})
"""


class NotFoundError(Exception):
    """Raised when a record does not exist inside the requested scope.

    Also raised when the record exists but belongs to another workspace or
    company, so callers cannot discover ids outside their scope.

    Args:
        resource: Human-readable model name (e.g. "Company", "Talep").
        resource_id: The id that was looked up. Logged, not returned.
        workspace_id: Optional scope that was enforced, for logs only.
        message: Optional override for the client-facing message.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        workspace_id: int | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.workspace_id = workspace_id
        self.message = message or f"{resource} not found"
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if workspace_id is not None:
            msg += f" (workspace={workspace_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input breaks a business rule.

    Malformed input (missing field, wrong type) is rejected with 400 in
    the blueprint before the service is called. This one maps to 422.

    Args:
        message: Human-readable explanation.
        details: Optional field -> error mapping.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value. Maps to 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.message = f"{resource} with this {field} already exists"
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ForbiddenError(Exception):
    """Raised when the caller is known but not allowed to act. Maps to 403."""

    def __init__(self, message: str = "Access denied") -> None:
        self.message = message
        super().__init__(message)
