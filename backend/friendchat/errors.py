"""
Error taxonomy.

Validation, not-found and conflict errors are expected outcomes of user input
and are rendered as user-facing messages. Transport errors mean the store
could not be reached.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from .logs import get_logger

logger = get_logger(__name__)


class ChatError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "CHAT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationError(ChatError):
    """Empty input or self-reference."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "Validation"


class NotFoundError(ChatError):
    """Handle, request or channel absent."""
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NotFound"


class ConflictError(ChatError):
    """Duplicate handle, duplicate pending request, already friends."""
    status_code = status.HTTP_409_CONFLICT
    default_code = "Conflict"


class TransportError(ChatError):
    """Store unreachable or denied."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "Transport"


# Raised for user input; never escapes a session operation.
USER_ERRORS = (ValidationError, NotFoundError, ConflictError)


async def chat_exception_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.warning(
        "request.rejected",
        code=exc.code,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )
