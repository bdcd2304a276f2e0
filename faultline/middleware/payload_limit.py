from __future__ import annotations

from collections.abc import Callable

from fastapi import Request, Response

from faultline.api.errors import log_error, rest_error_response
from faultline.core.errors import PAYLOAD_TOO_LARGE_ERROR, AppError


def payload_limit_middleware(max_bytes: int) -> Callable:
    """Reject requests whose declared Content-Length exceeds ``max_bytes``."""

    async def _middleware(request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length")
        if declared is not None and declared.isdigit() and int(declared) > max_bytes:
            err = AppError(
                PAYLOAD_TOO_LARGE_ERROR,
                details={"limit": max_bytes, "received": int(declared)},
            )
            log_error(err, err)
            return rest_error_response(err)
        return await call_next(request)

    return _middleware
