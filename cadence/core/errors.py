"""
Custom exception hierarchy for Cadence.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

NotFound / AlreadyCompleted / EntityArchived / InvalidRule are expected,
user-facing outcomes. StorageFailure (and its PartialFailure subclass) are faults.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class CadenceException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(CadenceException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} with identifier '{identifier}' not found.",
            details={"resource": resource, "id": identifier},
        )


class AlreadyCompletedError(CadenceException):
    http_status = status.HTTP_409_CONFLICT
    code = "ALREADY_COMPLETED"

    def __init__(
        self,
        entity_id: Any,
        period_id: Any = None,
        next_available_at: Optional[datetime] = None,
    ):
        details: dict[str, Any] = {"entity_id": entity_id}
        if period_id is not None:
            details["period_id"] = period_id
        if next_available_at is not None:
            details["next_available_at"] = next_available_at.isoformat()
        super().__init__(
            message=f"Entity {entity_id} is already completed for the current period.",
            details=details,
        )


class EntityArchivedError(CadenceException):
    http_status = status.HTTP_409_CONFLICT
    code = "ENTITY_ARCHIVED"

    def __init__(self, entity_id: Any):
        super().__init__(
            message=f"Entity {entity_id} is archived and no longer accepts completions.",
            details={"entity_id": entity_id},
        )


class InvalidRuleError(CadenceException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_RULE"

    def __init__(self, repeat_type: Any, frequency: Any):
        super().__init__(
            message=f"Invalid repetition rule: type={repeat_type!r}, frequency={frequency!r}.",
            details={"repeat_type": str(repeat_type), "frequency": frequency},
        )


class ConcurrentTransitionError(CadenceException):
    http_status = status.HTTP_409_CONFLICT
    code = "CONCURRENT_TRANSITION"

    def __init__(self, entity_id: Any):
        super().__init__(
            message=f"Another transition is in progress for entity {entity_id}. Retry.",
            details={"entity_id": entity_id},
        )


class StorageFailureError(CadenceException):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORAGE_FAILURE"

    def __init__(self, message: str = "The datastore failed to complete the operation."):
        super().__init__(message=message)


class PartialFailureError(StorageFailureError):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PARTIAL_FAILURE"

    def __init__(self, operation: str, entity_id: Any):
        CadenceException.__init__(
            self,
            message=f"{operation} for entity {entity_id} failed midway and was rolled back.",
            details={"operation": operation, "entity_id": entity_id},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def cadence_exception_handler(request: Request, exc: CadenceException) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
