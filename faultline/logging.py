from __future__ import annotations

import logging
import os
from typing import Any

import structlog

from faultline.core.config import Settings, get_settings

# Processors applied to structlog events and to records from stdlib loggers
# (uvicorn, sqlalchemy) alike.
_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.format_exc_info,
]


def _renderer(settings: Settings) -> Any:
    if settings.resolved_log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(sort_keys=True)


def _handlers(log_file: str | os.PathLike | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(str(log_file)) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))
    return handlers


def setup_logging(
    settings: Settings | None = None, log_file: str | os.PathLike | None = None
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Events carry request_id (bound by the request-id middleware) so error
    renders and transaction transitions can be correlated per request.
    """

    settings = settings or get_settings()

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(settings),
        ],
    )
    handlers = _handlers(log_file)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
    # SQL echo is noisy at INFO; transaction events already cover scope lifecycles
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
