"""Error taxonomy: error kinds, the kind registry and raisable error instances."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException


@runtime_checkable
class ErrorCapability(Protocol):
    """Capability set every error kind provides, built-in or custom."""

    name: str
    default_message: str
    http_status: int


@dataclass(frozen=True)
class ErrorKind:
    """A tagged error variant: stable name, default message and HTTP status."""

    name: str
    default_message: str
    http_status: int
    graphql_code: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("error kind name must not be empty")
        if not 100 <= self.http_status <= 599:
            raise ValueError(f"invalid http status for {self.name}: {self.http_status}")


APPLICATION_ERROR = ErrorKind("ApplicationError", "An application error occured", 400)
VALIDATION_ERROR = ErrorKind("ValidationError", "Validation error", 400)
POLICY_ERROR = ErrorKind("PolicyError", "Policy Failed", 403)
PAGINATION_ERROR = ErrorKind("PaginationError", "Invalid pagination", 400)
NOT_FOUND_ERROR = ErrorKind("NotFoundError", "Entity not found", 404)
FORBIDDEN_ERROR = ErrorKind("ForbiddenError", "Forbidden access", 403)
UNAUTHORIZED_ERROR = ErrorKind("UnauthorizedError", "Unauthorized", 401)
METHOD_NOT_ALLOWED_ERROR = ErrorKind("MethodNotAllowedError", "Method not allowed", 405)
NOT_ACCEPTABLE_ERROR = ErrorKind("NotAcceptableError", "Not acceptable", 406)
CONFLICT_ERROR = ErrorKind("ConflictError", "Conflict", 409)
PAYLOAD_TOO_LARGE_ERROR = ErrorKind("PayloadTooLargeError", "Entity too large", 413)
UNSUPPORTED_MEDIA_TYPE_ERROR = ErrorKind(
    "UnsupportedMediaTypeError", "Unsupported media type", 415
)
RATE_LIMIT_ERROR = ErrorKind(
    "RateLimitError", "Too many requests, please try again later.", 429
)
NOT_IMPLEMENTED_ERROR = ErrorKind(
    "NotImplementedError", "This feature is not implemented yet", 501
)
INTERNAL_SERVER_ERROR = ErrorKind("InternalServerError", "Internal Server Error", 500)

BUILTIN_KINDS: tuple[ErrorKind, ...] = (
    APPLICATION_ERROR,
    VALIDATION_ERROR,
    POLICY_ERROR,
    PAGINATION_ERROR,
    NOT_FOUND_ERROR,
    FORBIDDEN_ERROR,
    UNAUTHORIZED_ERROR,
    METHOD_NOT_ALLOWED_ERROR,
    NOT_ACCEPTABLE_ERROR,
    CONFLICT_ERROR,
    PAYLOAD_TOO_LARGE_ERROR,
    UNSUPPORTED_MEDIA_TYPE_ERROR,
    RATE_LIMIT_ERROR,
    NOT_IMPLEMENTED_ERROR,
    INTERNAL_SERVER_ERROR,
)

_REGISTRY: dict[str, ErrorCapability] = {kind.name: kind for kind in BUILTIN_KINDS}

# HTTPException status -> kind used by coerce()
_STATUS_KINDS: dict[int, ErrorKind] = {
    400: APPLICATION_ERROR,
    401: UNAUTHORIZED_ERROR,
    403: FORBIDDEN_ERROR,
    404: NOT_FOUND_ERROR,
    405: METHOD_NOT_ALLOWED_ERROR,
    406: NOT_ACCEPTABLE_ERROR,
    409: CONFLICT_ERROR,
    413: PAYLOAD_TOO_LARGE_ERROR,
    415: UNSUPPORTED_MEDIA_TYPE_ERROR,
    422: VALIDATION_ERROR,
    429: RATE_LIMIT_ERROR,
    501: NOT_IMPLEMENTED_ERROR,
}


def register_kind(kind: ErrorCapability) -> ErrorCapability:
    """Register a custom error kind so it can be looked up by name.

    Re-registering the same kind is a no-op; registering a different kind
    under a name that is already taken raises ``ValueError``.
    """

    _check_capability(kind)
    existing = _REGISTRY.get(kind.name)
    if existing is not None and existing != kind:
        raise ValueError(f"error kind {kind.name!r} is already registered")
    _REGISTRY[kind.name] = kind
    return kind


def get_kind(name: str) -> ErrorCapability:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise KeyError(f"unknown error kind: {name!r}") from None


def registered_kinds() -> list[ErrorCapability]:
    return list(_REGISTRY.values())


def _check_capability(kind: object) -> None:
    if not isinstance(kind, ErrorCapability):
        raise TypeError(f"{kind!r} does not provide name, default_message and http_status")
    if not isinstance(kind.name, str) or not kind.name:
        raise TypeError("error kind name must be a non-empty string")
    if not isinstance(kind.default_message, str):
        raise TypeError(f"default_message of {kind.name} must be a string")
    if isinstance(kind.http_status, bool) or not isinstance(kind.http_status, int):
        raise TypeError(f"http_status of {kind.name} must be an integer")


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    return value


class AppError(Exception):
    """A raisable, immutable error instance bound to exactly one kind.

    ``message`` falls back to the kind's default message and ``details`` is a
    read-only mapping (empty when not provided).
    """

    _FROZEN = frozenset({"_kind", "_message", "_details", "args"})

    def __init__(
        self,
        kind: ErrorCapability | str,
        message: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        if isinstance(kind, str):
            kind = get_kind(kind)
        _check_capability(kind)
        if details is not None and not isinstance(details, Mapping):
            raise TypeError("details must be a mapping")
        resolved = kind.default_message if message is None else message
        self.__dict__["_kind"] = kind
        self.__dict__["_message"] = resolved
        self.__dict__["_details"] = _freeze(details or {})
        super().__init__(resolved)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._FROZEN:
            raise AttributeError(f"{type(self).__name__}.{name} is read-only")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if name in self._FROZEN:
            raise AttributeError(f"{type(self).__name__}.{name} is read-only")
        super().__delattr__(name)

    def __reduce__(self):
        return (type(self), (self._kind, self._message, _thaw(self._details)))

    @property
    def kind(self) -> ErrorCapability:
        return self._kind

    @property
    def name(self) -> str:
        return self._kind.name

    @property
    def message(self) -> str:
        return self._message

    @property
    def details(self) -> Mapping[str, Any]:
        return self._details

    @property
    def http_status(self) -> int:
        return self._kind.http_status

    def __repr__(self) -> str:
        return f"AppError(kind={self.name!r}, message={self._message!r})"


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    if isinstance(value, frozenset):
        return sorted((_thaw(v) for v in value), key=repr)
    return value


def thaw(details: Mapping[str, Any]) -> dict[str, Any]:
    """Return a plain, JSON-friendly copy of frozen error details."""

    return _thaw(details)


def classify(
    kind: ErrorCapability | str,
    message: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> AppError:
    """Build an error instance of ``kind``; no side effects."""

    return AppError(kind, message, details)


def validation_error_from(errors: list[dict[str, Any]], message: str | None = None) -> AppError:
    """Build a ValidationError from pydantic/FastAPI style error dicts."""

    items = [
        {
            "path": [str(p) for p in err.get("loc", ())],
            "message": err.get("msg", ""),
            "name": "ValidationError",
        }
        for err in errors
    ]
    if message is None and items:
        message = items[0]["message"] if len(items) == 1 else f"{len(items)} errors occurred"
    return AppError(VALIDATION_ERROR, message, {"errors": items})


def coerce(exc: BaseException, *, expose_internal: bool = False) -> AppError:
    """Map any exception onto the taxonomy.

    Unknown exceptions become a generic internal error whose message never
    contains the original exception text unless ``expose_internal`` is set.
    """

    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, PydanticValidationError):
        return validation_error_from(exc.errors())
    if isinstance(exc, StarletteHTTPException):
        kind = _STATUS_KINDS.get(exc.status_code)
        if kind is None:
            kind = APPLICATION_ERROR if exc.status_code < 500 else INTERNAL_SERVER_ERROR
        message = exc.detail if isinstance(exc.detail, str) and exc.status_code < 500 else None
        return AppError(kind, message)
    details: dict[str, Any] = {}
    if expose_internal:
        details["debug"] = {"type": type(exc).__name__, "message": str(exc)}
    return AppError(INTERNAL_SERVER_ERROR, None, details)
