# core/errors.py
"""
Domain errors and their HTTP rendering.

Every error body keeps the shape {"success": false, "error": <message>} so
browser and worker clients can branch on `success` alone.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.logger import logger


class MessageNotFoundError(Exception):
    """Raised when a callback or lookup names an identifier we never issued."""

    def __init__(self, message_id: str):
        super().__init__(f"Message ID not found: {message_id}")
        self.message_id = message_id


class InvalidPayloadError(ValueError):
    """Client sent content we refuse to store (missing, wrong type, too large)."""

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


async def invalid_payload_handler(request: Request, exc: InvalidPayloadError) -> JSONResponse:
    logger.info(f"Rejected payload on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


async def message_not_found_handler(request: Request, exc: MessageNotFoundError) -> JSONResponse:
    logger.warning(f"Message ID not found: {exc.message_id} ({request.method} {request.url.path})")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "success": False,
            "error": "Message ID not found",
            "messageId": exc.message_id,
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )
