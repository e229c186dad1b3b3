"""
Error taxonomy of the permission engine.

Every engine error carries the HTTP status the API maps it to; the
exception handler in app.main turns them into `{"message": ...}` responses.
"""
from fastapi import status


class PermissionEngineError(Exception):
    """Base class for all engine errors."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(PermissionEngineError):
    """A resource, role or permission anchor required by the operation is absent."""
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(PermissionEngineError):
    status_code = status.HTTP_409_CONFLICT


class DuplicateResource(Conflict):
    def __init__(self, key: str):
        super().__init__(f"Resource '{key}' already exists")
        self.key = key


class InvalidAccessType(PermissionEngineError):
    """The access type is not declared for the resource."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class Forbidden(PermissionEngineError):
    status_code = status.HTTP_403_FORBIDDEN


class PreconditionFailed(PermissionEngineError):
    """Enforcement was invoked without an authenticated identity."""
    status_code = status.HTTP_412_PRECONDITION_FAILED


class StoreError(PermissionEngineError):
    """Underlying storage failure; the whole operation was rolled back."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InvalidRoutePolicy(PermissionEngineError):
    """The route policy configuration could not be loaded."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
