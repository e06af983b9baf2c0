from typing import Any, Dict, Optional

from pydantic.alias_generators import to_camel


class ApiError(Exception):
    """Error a handler raises to produce a JSON error response.

    Extra keyword arguments end up in the body next to ``error``, with
    their names camelCased (``requires_verification`` -> ``requiresVerification``).
    """

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **extra: Any):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.message}
        body.update({to_camel(k): v for k, v in self.extra.items() if v is not None})
        return body


class BadRequestError(ApiError):
    status_code = 400
    default_message = "Bad request"


class AuthenticationError(ApiError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class ServiceUnavailableError(ApiError):
    status_code = 503
    default_message = "Service unavailable"
