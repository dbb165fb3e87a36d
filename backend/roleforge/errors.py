"""
Domain error taxonomy.

Services raise these; the exception handler registered in main.py turns
them into JSON responses with the matching HTTP status. Routers never
build HTTP errors for domain failures themselves.
"""


class RoleForgeError(Exception):
    """Base exception for authorization-domain failures."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An error occurred", **details):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "error": self.code}
        body.update(self.details)
        return body


class NotFoundError(RoleForgeError):
    """Role type, person, assignment or permission identifier does not exist."""

    status_code = 404
    code = "not_found"


class UnauthorizedError(RoleForgeError):
    """Acting principal may not read/assign the target role or permission."""

    status_code = 403
    code = "unauthorized"


class ValidationError(RoleForgeError):
    """Malformed permission payload or role data."""

    status_code = 422
    code = "validation_error"


class ConflictError(RoleForgeError):
    """Duplicate role, stale version, or hierarchy inconsistency."""

    status_code = 409
    code = "conflict"


class PartialWriteError(RoleForgeError):
    """A multi-step write failed after some of its steps had been applied."""

    status_code = 500
    code = "partial_write"
