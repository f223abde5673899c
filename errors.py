"""
Error taxonomy shared by the API server and the client.

Every error carries the HTTP status it is rendered with, a human-readable
message and optional field-level details ``[{"field": ..., "message": ...}]``.
"""

from typing import Any, Dict, List, Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str):
        return cls(message, errors=[{"field": field, "message": message}])


class Unauthorized(ApiError):
    status_code = 401
    default_message = "not authorized"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "These dates are unavailable"


class ServiceUnavailable(ApiError):
    status_code = 503
    default_message = "Database not available"


_BY_STATUS = {
    cls.status_code: cls
    for cls in (ValidationFailed, Unauthorized, Forbidden, NotFound, Conflict, ServiceUnavailable)
}


def error_for_status(status_code: int, message: Optional[str] = None, errors=None) -> ApiError:
    """Rebuild the matching error from an HTTP status, e.g. on the client side."""
    cls = _BY_STATUS.get(status_code, ApiError)
    err = cls(message, errors=errors)
    if cls is ApiError:
        err.status_code = status_code
    return err
