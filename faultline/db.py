# faultline/db.py
from __future__ import annotations

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from faultline.core.config import Settings, get_settings
from faultline.infra.data_access import SqlAlchemyDataAccess
from faultline.infra.transactions import TransactionCoordinator

_ASYNC_SCHEMES = {
    "postgresql+psycopg://": "postgresql+asyncpg://",
    "postgresql+psycopg2://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def normalize_database_url(database_url: str) -> str:
    """Rewrite sync Postgres URLs to the asyncpg driver."""

    for prefix, replacement in _ASYNC_SCHEMES.items():
        if database_url.startswith(prefix):
            return database_url.replace(prefix, replacement, 1)
    return database_url


def create_engine(database_url: str) -> AsyncEngine:
    url = make_url(normalize_database_url(database_url))
    connect_args = {}

    if url.get_backend_name() == "postgresql" and url.get_driver_name() == "asyncpg":
        query = dict(url.query)
        if "sslmode" in query:
            # asyncpg takes the libpq sslmode values through "ssl"
            connect_args["ssl"] = query.pop("sslmode")
        # not understood by asyncpg
        query.pop("channel_binding", None)
        url = url.set(query=query)

    return create_async_engine(url, pool_pre_ping=True, connect_args=connect_args)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # autobegin off: SqlAlchemyDataAccess opens transactions explicitly
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autobegin=False,
    )


def create_coordinator(
    settings: Settings | None = None, *, database_url: str | None = None
) -> TransactionCoordinator:
    """Build a TransactionCoordinator over a fresh engine.

    No connection is made until the first scope is opened.
    """

    settings = settings or get_settings()
    engine = create_engine(database_url or settings.database_url)
    return TransactionCoordinator(
        SqlAlchemyDataAccess(create_session_factory(engine)),
        timeout=settings.transaction_timeout_seconds,
    )
