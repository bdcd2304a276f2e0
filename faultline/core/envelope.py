"""Wire envelopes for rendered errors (REST and GraphQL)."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from faultline.core.errors import AppError, thaw

DEFAULT_GRAPHQL_CODE = "INTERNAL_SERVER_ERROR"

GRAPHQL_CODES: dict[str, str] = {
    "ApplicationError": "BAD_REQUEST",
    "ValidationError": "BAD_USER_INPUT",
    "PaginationError": "BAD_USER_INPUT",
    "PolicyError": "FORBIDDEN",
    "ForbiddenError": "FORBIDDEN",
    "UnauthorizedError": "UNAUTHENTICATED",
    "MethodNotAllowedError": "METHOD_NOT_ALLOWED",
    "NotAcceptableError": "BAD_REQUEST",
    "ConflictError": "CONFLICT",
    "NotFoundError": "NOT_FOUND",
    "PayloadTooLargeError": "PAYLOAD_TOO_LARGE",
    "UnsupportedMediaTypeError": "BAD_REQUEST",
    "RateLimitError": "RATE_LIMITED",
    "NotImplementedError": "NOT_IMPLEMENTED",
    "InternalServerError": DEFAULT_GRAPHQL_CODE,
}


class ErrorBody(BaseModel):
    status: int = Field(description="HTTP status of the error kind")
    name: str = Field(description="Stable error kind name")
    message: str = Field(description="Human readable message")
    details: dict[str, Any] = Field(default_factory=dict, description="Producer defined payload")


class RestErrorEnvelope(BaseModel):
    data: None = None
    error: ErrorBody

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "data": None,
                    "error": {
                        "status": 404,
                        "name": "NotFoundError",
                        "message": "Entity not found",
                        "details": {},
                    },
                }
            ]
        }
    }


class GraphqlErrorInfo(BaseModel):
    name: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class GraphqlErrorExtensions(BaseModel):
    error: GraphqlErrorInfo
    code: str


class GraphqlError(BaseModel):
    message: str
    extensions: GraphqlErrorExtensions


class GraphqlErrorEnvelope(BaseModel):
    errors: list[GraphqlError]
    data: dict[str, None]


def graphql_code(err: AppError) -> str:
    code = getattr(err.kind, "graphql_code", None)
    if isinstance(code, str) and code:
        return code
    return GRAPHQL_CODES.get(err.name, DEFAULT_GRAPHQL_CODE)


def render_rest(err: AppError) -> dict[str, Any]:
    return {
        "data": None,
        "error": {
            "status": err.http_status,
            "name": err.name,
            "message": err.message,
            "details": thaw(err.details),
        },
    }


def render_graphql(err: AppError, operation_name: str) -> dict[str, Any]:
    """Render ``err`` the way a GraphQL server reports a failed operation.

    ``data`` carries the failed operation's field set to null.
    """

    return {
        "errors": [
            {
                "message": err.message,
                "extensions": {
                    "error": {
                        "name": err.name,
                        "message": err.message,
                        "details": thaw(err.details),
                    },
                    "code": graphql_code(err),
                },
            }
        ],
        "data": {operation_name: None},
    }


def dumps(envelope: dict[str, Any]) -> bytes:
    """Canonical JSON encoding: same envelope, same bytes."""

    return json.dumps(
        envelope,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    ).encode("utf-8")
