from __future__ import annotations

from collections.abc import Callable

from fastapi import Request, Response
from limits import parse as parse_limit
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from faultline.api.errors import log_error, rest_error_response
from faultline.core.config import Settings
from faultline.core.errors import RATE_LIMIT_ERROR, AppError

_READ_METHODS = {"GET", "HEAD"}
_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def client_ip(request: Request) -> str:
    # First X-Forwarded-For hop, then the ASGI peer
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "local"


class RateLimiter:
    """Per-IP, per-method moving window limits kept in process memory."""

    def __init__(self, read_limit: str, write_limit: str) -> None:
        self.read_limit = read_limit
        self.write_limit = write_limit
        self._rate = MovingWindowRateLimiter(MemoryStorage())

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(settings.rate_limit_read, settings.rate_limit_write)

    def limit_for(self, method: str) -> str | None:
        m = method.upper()
        if m in _READ_METHODS:
            return self.read_limit
        if m in _WRITE_METHODS:
            return self.write_limit
        # OPTIONS (CORS preflight) and the rest are not limited
        return None

    def hit(self, request: Request) -> AppError | None:
        limit_str = self.limit_for(request.method)
        if limit_str is None:
            return None
        key = f"ip:{client_ip(request)}|m:{request.method.upper()}"
        if self._rate.hit(parse_limit(limit_str), key):
            return None
        return AppError(
            RATE_LIMIT_ERROR,
            details={"method": request.method.upper(), "limit": limit_str},
        )

    def middleware(self) -> Callable:
        async def _middleware(request: Request, call_next: Callable) -> Response:
            err = self.hit(request)
            if err is not None:
                log_error(err, err)
                return rest_error_response(err)
            response = await call_next(request)
            limit_str = self.limit_for(request.method)
            if limit_str:
                response.headers.setdefault("X-RateLimit-Limit", limit_str)
            return response

        return _middleware
