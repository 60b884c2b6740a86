# bites/errors.py
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings

logger = logging.getLogger("bites.errors")


class AppError(Exception):
    """Business failure with a stable machine-readable code."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class ValidationFailed(AppError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthError(AppError):
    status_code = 401
    default_code = "INVALID_TOKEN"


class Forbidden(AppError):
    status_code = 403
    default_code = "INSUFFICIENT_PERMISSIONS"


class NotFound(AppError):
    status_code = 404
    default_code = "RESOURCE_NOT_FOUND"


class Conflict(AppError):
    status_code = 409
    default_code = "CONFLICT"


class DependencyUnavailable(AppError):
    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"


# -------------------
# Envelopes
# -------------------
def ok(data: Any = None, message: str | None = None, warnings: Optional[List[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    if warnings:
        body["warnings"] = warnings
    return body


def _error_body(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        err["details"] = details
    return {"success": False, "error": err}


def _field_name(loc: Any) -> str:
    parts = [str(p) for p in (loc or ()) if p not in ("body", "query", "path", "cookie", "header")]
    return ".".join(parts) or "request"


def install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(AppError)
    async def _app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, exc.details))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        details = [{"field": _field_name(e.get("loc")), "message": e.get("msg", "")} for e in exc.errors()]
        message = ", ".join(d["message"] for d in details) or "Invalid request"
        return JSONResponse(status_code=400, content=_error_body("VALIDATION_ERROR", message, details))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(
                status_code=404,
                content=_error_body("ROUTE_NOT_FOUND", f"Route {request.url.path} not found"),
            )
        return JSONResponse(status_code=exc.status_code, content=_error_body("HTTP_ERROR", str(exc.detail)))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = _error_body("INTERNAL_ERROR", "Internal server error")
        # Stack traces only leave the process in development
        if settings.is_development:
            body["error"]["message"] = str(exc) or body["error"]["message"]
            body["error"]["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
        return JSONResponse(status_code=500, content=body)
