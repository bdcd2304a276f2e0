"""Data-access collaborator boundary used by the transaction coordinator."""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import Executable


class DataAccess(Protocol):
    """Resource-transaction operations supplied by the data layer."""

    async def begin(self) -> Any: ...

    async def execute(self, handle: Any, op: Any) -> Any: ...

    async def commit(self, handle: Any) -> None: ...

    async def rollback(self, handle: Any) -> None: ...


class SqlAlchemyDataAccess(DataAccess):
    """DataAccess backed by SQLAlchemy async sessions.

    Each ``begin`` opens a fresh session with an explicit transaction; the
    session is the handle and is closed once the transaction ends.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def begin(self) -> AsyncSession:
        session = self._session_factory()
        try:
            await session.begin()
        except BaseException:
            await session.close()
            raise
        return session

    async def execute(self, handle: AsyncSession, op: Executable) -> Any:
        return await handle.execute(op)

    async def commit(self, handle: AsyncSession) -> None:
        try:
            await handle.commit()
        finally:
            await handle.close()

    async def rollback(self, handle: AsyncSession) -> None:
        try:
            await handle.rollback()
        finally:
            await handle.close()
