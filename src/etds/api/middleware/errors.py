"""Error handling middleware for consistent JSON error responses.

All errors are converted to one JSON structure:
- error: Error code
- message: Human-readable description
- detail: Offending field, status or agency, when known
- request_id: Correlation ID for debugging

Workflow errors map to fixed HTTP statuses so callers always learn which
rule they broke rather than seeing a generic failure.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from etds.api.middleware.request_id import get_request_id
from etds.services.errors import (
    AlreadySubmittedError,
    ApplicationNotFoundError,
    ConflictingUpdateError,
    ForbiddenError,
    InvalidTransitionError,
    WorkflowError,
    WorkflowValidationError,
)
from etds.services.storage import ObjectNotFoundError, StorageError

logger = logging.getLogger(__name__)

WORKFLOW_ERROR_STATUS: dict[type[WorkflowError], int] = {
    InvalidTransitionError: 409,
    ForbiddenError: 403,
    WorkflowValidationError: 422,
    AlreadySubmittedError: 409,
    ApplicationNotFoundError: 404,
    ConflictingUpdateError: 409,
}


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


def workflow_error_response(exc: WorkflowError) -> JSONResponse:
    """Map a workflow error to its HTTP response."""
    status_code = next(
        (code for cls, code in WORKFLOW_ERROR_STATUS.items() if isinstance(exc, cls)),
        400,
    )
    return build_error_response(
        error=exc.code,
        message=exc.message,
        status_code=status_code,
        detail=exc.detail(),
    )


def storage_error_response(exc: StorageError) -> JSONResponse:
    """Map a blob store error to its HTTP response."""
    if isinstance(exc, ObjectNotFoundError):
        return build_error_response(error="not_found", message=exc.message, status_code=404)

    logger.error(
        "Blob store failure",
        extra={"operation": exc.operation, "bucket": exc.bucket, "key": exc.key},
    )
    return build_error_response(
        error="storage_error",
        message="The document store is unavailable",
        status_code=502,
        detail={"operation": exc.operation} if exc.operation else None,
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns consistent JSON errors.

    Handles:
    - WorkflowError: Typed workflow failures (409/403/422/404)
    - StorageError: Blob store failures (502, or 404 for a missing blob)
    - HTTPException and pydantic ValidationError
    - Generic exceptions: Unexpected errors (logged, returns 500)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except WorkflowError as exc:
            return workflow_error_response(exc)
        except StorageError as exc:
            return storage_error_response(exc)
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except ValidationError as exc:
            return build_error_response(
                error="validation_error",
                message="Request validation failed",
                status_code=422,
                detail={"errors": exc.errors()},
            )
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
