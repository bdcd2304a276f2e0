"""GraphQL rendering boundary.

GraphQL servers answer failed operations with HTTP 200 and an ``errors``
list; the executor calls :func:`graphql_error_response` with whatever the
resolver raised.
"""

from __future__ import annotations

from fastapi.responses import Response

from faultline.api.errors import log_error
from faultline.core.config import get_settings
from faultline.core.envelope import dumps, render_graphql
from faultline.core.errors import coerce


def graphql_error_payload(
    exc: BaseException, operation_name: str, *, expose_internal: bool | None = None
) -> dict:
    if expose_internal is None:
        expose_internal = get_settings().expose_internal_errors
    err = coerce(exc, expose_internal=expose_internal)
    log_error(err, exc)
    return render_graphql(err, operation_name)


def graphql_error_response(
    exc: BaseException,
    operation_name: str,
    *,
    status_code: int = 200,
    expose_internal: bool | None = None,
) -> Response:
    payload = graphql_error_payload(exc, operation_name, expose_internal=expose_internal)
    return Response(content=dumps(payload), status_code=status_code, media_type="application/json")
