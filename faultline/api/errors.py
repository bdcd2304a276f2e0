"""REST rendering boundary: every failure leaves the app as a REST error envelope."""

from __future__ import annotations

from collections.abc import Mapping

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from faultline.core.config import Settings, get_settings
from faultline.core.envelope import dumps, render_rest
from faultline.core.errors import AppError, coerce, validation_error_from
from faultline.middleware.request_id import REQUEST_ID_HEADER

logger = structlog.get_logger(__name__)


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def log_error(err: AppError, exc: BaseException) -> None:
    if err.http_status >= 500:
        logger.error(
            "error_rendered",
            error=err.name,
            status=err.http_status,
            exc_type=type(exc).__name__,
            exc_info=exc,
        )
        sentry_sdk.capture_exception(exc)
    else:
        logger.warning(
            "error_rendered", error=err.name, status=err.http_status, message=err.message
        )


def rest_error_response(err: AppError, headers: Mapping[str, str] | None = None) -> Response:
    headers = dict(headers or {})
    if err.http_status == 429:
        headers.setdefault("Retry-After", "60")
    return Response(
        content=dumps(render_rest(err)),
        status_code=err.http_status,
        media_type="application/json",
        headers=headers,
    )


async def _app_error_handler(_: Request, exc: AppError) -> Response:
    log_error(exc, exc)
    return rest_error_response(exc)


async def _validation_exception_handler(_: Request, exc: RequestValidationError) -> Response:
    err = validation_error_from(list(exc.errors()))
    log_error(err, exc)
    return rest_error_response(err)


async def _http_exception_handler(_: Request, exc: StarletteHTTPException) -> Response:
    err = coerce(exc)
    log_error(err, exc)
    return rest_error_response(err, exc.headers)


async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    err = coerce(exc, expose_internal=_settings_for(request).expose_internal_errors)
    log_error(err, exc)
    # runs outside the request id middleware, which leaves its bindings behind
    rid = structlog.contextvars.get_contextvars().get("request_id")
    return rest_error_response(err, {REQUEST_ID_HEADER: rid} if rid else None)


def install(app: FastAPI) -> None:
    """Register the exception handlers that render REST envelopes."""

    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
