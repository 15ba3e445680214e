"""Uniform JSON envelope.

Success: {"success": true, "data": ...}
Error:   {"success": false, "error": "<message>"}

Handlers return `ok(...)`; every error path (application errors, HTTPException,
request validation, anything unexpected) is rendered by the handlers installed here.
"""

from __future__ import annotations

import math
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from synapse_backend.errors import AuthError, RateLimitError, SynapseError


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


def ok(data: Any = None) -> Dict[str, Any]:
    return {"success": True, "data": data}


def error_response(
    message: str,
    status_code: int = 500,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    if status_code < 400 or status_code > 599:
        _debug(f"Invalid error status {status_code}, using 500")
        status_code = 500
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid_request"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    field = ".".join(loc)
    msg = str(first.get("msg") or "invalid value")
    return f"{field}: {msg}" if field else msg


async def _synapse_error_handler(request: Request, exc: SynapseError) -> JSONResponse:
    headers: Dict[str, str] = {}
    if isinstance(exc, AuthError):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    if exc.status_code >= 500:
        _debug(f"{request.method} {request.url.path} -> {exc.status_code} {exc.message}")
    return error_response(exc.message, exc.status_code, headers=headers or None)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"resource_not_found: {request.url.path}"
    else:
        message = str(exc.detail)
    return error_response(message, exc.status_code, headers=getattr(exc, "headers", None))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(_validation_message(exc), 400)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Detail stays server-side.
    _debug(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
    _debug("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return error_response("internal_server_error", 500)


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SynapseError, _synapse_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
