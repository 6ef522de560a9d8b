"""
Domain exception hierarchy.

Services raise these instead of HTTPException so the same rules can be
exercised without a request. `main.py` registers a single handler that turns
any DomainError into a JSON envelope:

    {"error": {"kind": "conflict", "message": "...", "field": null}}

`kind` is stable and machine-readable; `message` is for humans.
"""
from typing import Optional, Union
import uuid


class DomainError(Exception):
    kind: str = "domain_error"
    status_code: int = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "field": self.field}


class ValidationError(DomainError):
    """Malformed or out-of-policy input. `field` names the offending input."""
    kind = "validation_error"
    status_code = 422


class AuthorizationError(DomainError):
    """Missing permission or insufficient role level. Raised before any write."""
    kind = "authorization_error"
    status_code = 403


class ProtectedResourceError(AuthorizationError):
    """
    The target is a protected role (or a user holding one). Raised regardless
    of the acting principal's own permissions.
    """
    kind = "protected_resource"


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id: Union[uuid.UUID, str, None] = None,
        field: Optional[str] = None,
    ):
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource} not found."
        if resource_id is not None:
            msg = f"{resource} '{resource_id}' not found."
        super().__init__(msg, field=field)


class ConflictError(DomainError):
    """Duplicate unique value, or a state-machine guard that no longer holds."""
    kind = "conflict"
    status_code = 409


class InternalError(DomainError):
    kind = "internal_error"
    status_code = 500
