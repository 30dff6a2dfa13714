"""Error taxonomy and its HTTP rendering.

Services raise ``ServiceError`` subclasses; the handlers installed by
``install_exception_handlers`` turn them into
``{"success": false, "error": <reason>, ...}`` responses. Internal
details and tracebacks never reach callers.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 500
    default_reason = "internal"

    def __init__(self, reason: str | None = None, detail: str | None = None):
        self.reason = reason or self.default_reason
        self.detail = detail
        super().__init__(detail or self.reason)

    def to_payload(self) -> dict:
        payload: dict = {"success": False, "error": self.reason}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class Unauthorized(ServiceError):
    status_code = 401
    default_reason = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    default_reason = "forbidden"


class ValidationError(ServiceError):
    """Missing or malformed input. ``fields`` names the offending fields."""

    status_code = 400
    default_reason = "validation_error"

    def __init__(
        self,
        reason: str | None = None,
        fields: list[str] | None = None,
        detail: str | None = None,
    ):
        self.fields = list(fields or [])
        if detail is None and self.fields:
            detail = "Invalid or missing fields: " + ", ".join(self.fields)
        super().__init__(reason, detail)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["fields"] = self.fields
        return payload


class NotFound(ServiceError):
    status_code = 404
    default_reason = "not_found"


class Conflict(ServiceError):
    status_code = 409
    default_reason = "conflict"


class BackendFailure(ServiceError):
    """The execution backend or the record store failed."""

    status_code = 502
    default_reason = "backend_failure"


class InternalError(ServiceError):
    status_code = 500
    default_reason = "internal"


def require_fields(**values) -> None:
    """Raise ValidationError listing every argument that is None or blank."""
    missing = [
        name
        for name, value in values.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError("missing_fields", fields=missing)


async def _service_error_handler(request: Request, exc: ServiceError) -> ORJSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        name = ".".join(loc) or "body"
        if name not in fields:
            fields.append(name)
    error = ValidationError("invalid_request", fields=fields)
    return ORJSONResponse(status_code=error.status_code, content=error.to_payload())


async def _unhandled_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return ORJSONResponse(status_code=500, content=InternalError().to_payload())


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
