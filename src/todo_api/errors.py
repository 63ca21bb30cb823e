from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """
    Base exception for errors surfaced to API clients.

    Subclasses fix the HTTP status code and the envelope status tag; the
    exception handler below renders them as:
        {"status": <tag>, "message": <message>, "errors"?: [...]}
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    status: str = "error"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the API response envelope."""
        body: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class BadRequestError(ApiError):
    """Raised when a payload or query fails validation. Nothing is written."""

    status_code = status.HTTP_400_BAD_REQUEST
    status = "bad_request"


class TodoNotFoundError(ApiError):
    """Raised when the target todo id does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    status = "not_found"

    def __init__(self, todo_id: str) -> None:
        super().__init__("Todo not found")
        self.todo_id = todo_id


# PUBLIC_INTERFACE
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError as its JSON envelope."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# PUBLIC_INTERFACE
def error_response(message: str) -> JSONResponse:
    """Envelope for unexpected failures (HTTP 500)."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "message": message},
    )
