"""Error normalization and handlers."""

import logging
from typing import Optional, Sequence
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from iiskills_access.core.logging import get_request_id

logger = logging.getLogger("iiskills.errors")


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class UnknownAppError(NotFoundError):
    """App id is not in the catalog. Never defaulted to free or paid."""
    code = "unknown_app"

    def __init__(self, app_id: str, **kwargs):
        super().__init__(f"Unknown app: {app_id}", **kwargs)
        self.app_id = app_id


class UnknownBundleError(NotFoundError):
    code = "unknown_bundle"

    def __init__(self, bundle_id: str, **kwargs):
        super().__init__(f"Unknown bundle: {bundle_id}", **kwargs)
        self.bundle_id = bundle_id


class CatalogConfigError(AppError):
    """App/bundle definitions violate a catalog invariant."""
    code = "catalog_invalid"
    status_code = 500


class StorageUnavailableError(AppError):
    code = "storage_unavailable"
    status_code = 503


class DuplicateActiveGrantError(ConflictError):
    code = "duplicate_active_grant"


class FreeAppPaymentError(ValidationError):
    code = "free_app_payment"

    def __init__(self, app_id: str, **kwargs):
        super().__init__(f"{app_id} is a free app. No payment is needed to access it.", **kwargs)
        self.app_id = app_id


class PartialBundleGrantError(AppError):
    """Some bundle writes succeeded while the purchased app itself did not."""
    code = "partial_bundle_grant"
    status_code = 502

    def __init__(self, message: str, *, succeeded: Sequence[str], failed: Sequence[str], **kwargs):
        super().__init__(message, **kwargs)
        self.succeeded = list(succeeded)
        self.failed = list(failed)


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(request: Request, status_code: int, code: str, message, *, request_id: Optional[str] = None, **details) -> JSONResponse:
    """Render the service error envelope and echo the request id header.

    Shape: {"error": {"code", "message", "request_id", **details}, "detail": message}
    """
    rid = request_id or _request_id_for(request)
    error = {"code": code, "message": message, "request_id": rid}
    error.update(details)
    response = JSONResponse(status_code=status_code, content={"error": error, "detail": message})
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    details = {}
    if isinstance(exc, PartialBundleGrantError):
        details = {"succeeded": exc.succeeded, "failed": exc.failed}
    response = error_response(request, exc.status_code, exc.code, exc.message, request_id=exc.request_id, **details)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={
            "request_id": response.headers["x-request-id"],
            "error_code": exc.code,
            "status": exc.status_code,
            "path": request.url.path,
        },
    )
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    code = "not_found" if exc.status_code == 404 else "http_error"
    response = error_response(request, exc.status_code, code, exc.detail or "HTTP error")
    logger.warning(
        "http.error",
        extra={"request_id": response.headers["x-request-id"], "error_code": code, "status": exc.status_code, "path": request.url.path},
    )
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    response = error_response(request, 500, "internal_error", "Unexpected error")
    logger.error(
        "unhandled.exception",
        exc_info=exc,
        extra={"request_id": response.headers["x-request-id"], "error_code": "internal_error", "path": request.url.path},
    )
    return response
