"""
Error kinds raised by the matching pipeline.

Services raise these; the HTTP layer turns them into JSON responses through
``pipeline_error_handler``. ``hint`` tells an operator which phase to run
before retrying.
"""

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base class for pipeline failures surfaced to callers."""

    status_code = 500

    def __init__(self, message: str, *, hint: str | None = None):
        self.message = message
        self.hint = hint
        super().__init__(message)

    def to_detail(self) -> dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "hint": self.hint,
            "type": self.__class__.__name__,
        }


class UnauthorizedError(PipelineError):
    """Caller could not be identified."""

    status_code = 401


class ForbiddenError(PipelineError):
    """Caller lacks the role, or does not own the targeted assignment."""

    status_code = 403


class NotFoundError(PipelineError):
    """Referenced batch, assignment, pairing or user is absent."""

    status_code = 404


class PreconditionFailedError(PipelineError):
    """Phase invoked out of order or while already running."""

    status_code = 409


class ConcurrentModificationError(PreconditionFailedError):
    """Row changed underneath the caller; safe to retry."""


class ValidationFailedError(PipelineError):
    """Malformed input."""

    status_code = 400


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Pipeline error in {request.url.path}: {exc}", exc_info=True)
    else:
        logger.info(f"{exc.__class__.__name__} in {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())
