from __future__ import annotations

import sentry_sdk
import structlog
from fastapi import FastAPI
from sentry_sdk.integrations.starlette import StarletteIntegration

from faultline.api import errors as error_boundary
from faultline.api.routers.healthz import router as healthz_router
from faultline.core.config import Settings, get_settings
from faultline.core.policies import PolicyRegistry
from faultline.db import create_coordinator
from faultline.infra.transactions import TransactionCoordinator
from faultline.logging import setup_logging
from faultline.middleware.payload_limit import payload_limit_middleware
from faultline.middleware.rate_limit import RateLimiter
from faultline.middleware.request_id import request_id_middleware
from faultline.schemas.common import error_responses


def _init_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=settings.release,
        integrations=[StarletteIntegration()],
        traces_sample_rate=settings.sentry_traces_rate,
        send_default_pii=False,
    )


def create_app(
    settings: Settings | None = None,
    *,
    coordinator: TransactionCoordinator | None = None,
    policies: PolicyRegistry | None = None,
) -> FastAPI:
    """Build the application with its error boundary installed.

    ``coordinator`` is exposed as ``app.state.coordinator`` for the
    ``transaction_scope`` dependency; ``policies`` backs named policies.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    _init_sentry(settings)

    app = FastAPI(
        title="faultline",
        responses=error_responses(400, 401, 403, 404, 413, 429, 500),
    )
    app.state.settings = settings
    app.state.coordinator = coordinator if coordinator is not None else create_coordinator(settings)
    app.state.policies = policies or PolicyRegistry()

    # Registered innermost first; request_id ends up outermost so rejections
    # from the payload and rate limiters are logged with a request id.
    if settings.rate_limit_enabled:
        app.middleware("http")(RateLimiter.from_settings(settings).middleware())
    app.middleware("http")(payload_limit_middleware(settings.max_request_size_bytes))
    app.middleware("http")(request_id_middleware)

    error_boundary.install(app)
    app.include_router(healthz_router)

    structlog.get_logger(__name__).info("app_startup", env=settings.app_env)
    return app
