"""Exception hierarchy shared by the service modules and the HTTP layer.

Service functions raise these; ``librarycard.api`` turns them into JSON
responses of the form ``{"error": message, **details}``.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class LibraryCardError(Exception):
    """Base exception for LibraryCard."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error": self.message}
        result.update(self.details)
        return result


class InvalidRequest(LibraryCardError):
    """Malformed input or a request the current state does not allow."""

    status_code = 400


class AuthenticationFailed(LibraryCardError):
    status_code = 401


class PermissionDenied(LibraryCardError):
    status_code = 403


class NotFound(LibraryCardError):
    status_code = 404


class UpstreamServiceError(LibraryCardError):
    """A remote collaborator (metadata, OCR, email) failed."""

    status_code = 502


class ServiceUnavailable(LibraryCardError):
    """A remote collaborator is not configured."""

    status_code = 503


class EmailDeliveryError(UpstreamServiceError):
    pass


async def librarycard_exception_handler(request: Request, exc: LibraryCardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
