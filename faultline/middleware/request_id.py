from __future__ import annotations

import time
import uuid
from collections.abc import Callable

import sentry_sdk
import structlog
from fastapi import Request, Response

REQUEST_ID_HEADER = "X-Request-ID"


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else None) or "-"


async def request_id_middleware(request: Request, call_next: Callable) -> Response:
    """Propagate X-Request-ID and emit one structured access log per request.

    The id is bound to structlog contextvars so error renders and transaction
    events logged while handling the request carry it. On an unhandled
    exception the bindings are left in place for the server error handler,
    which renders the 500 envelope after this middleware has re-raised.
    """
    logger = structlog.get_logger(__name__)

    rid = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=rid, path=request.url.path, method=request.method
    )
    sentry_sdk.set_tag("request_id", rid)

    start_ns = time.perf_counter_ns()
    try:
        response = await call_next(request)
    except Exception:
        logger.error(
            "http_request",
            status=500,
            duration_ms=round((time.perf_counter_ns() - start_ns) / 1_000_000.0, 3),
            client_ip=_client_ip(request),
            exc_info=True,
        )
        raise

    logger.info(
        "http_request",
        status=response.status_code,
        duration_ms=round((time.perf_counter_ns() - start_ns) / 1_000_000.0, 3),
        client_ip=_client_ip(request),
    )
    response.headers[REQUEST_ID_HEADER] = rid
    structlog.contextvars.clear_contextvars()
    return response
