"""
Error taxonomy

Every failure raised by the service modules is an AppError. The API layer
turns them into a JSON body carrying `message` and a machine-readable `code`.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500
    code = "server_fault"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        if self.errors:
            body["errors"] = self.errors
        return body


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class Conflict(AppError):
    status_code = 400
    code = "conflict"


class ValidationFailed(AppError):
    status_code = 400
    code = "validation"


class InvalidCredential(AppError):
    status_code = 400
    code = "invalid_credential"


class InvalidTransition(AppError):
    status_code = 409
    code = "invalid_transition"


class ServerFault(AppError):
    status_code = 500
    code = "server_fault"
