"""Transaction-scoped rollback coordination.

A scope forwards every operation to one underlying resource transaction and
either commits it (body finished) or rolls it back (body raised, was
cancelled, timed out, or asked for a rollback). Nested scopes opened from the
same task join the enclosing one, so the outermost scope is the single
commit/rollback unit.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from contextvars import ContextVar
from enum import Enum
from typing import Any, TypeVar

import structlog

from faultline.infra.data_access import DataAccess

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Hook = Callable[[], Any]


class ScopeState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionError(Exception):
    """Base class for coordinator failures."""


class TransactionStateError(TransactionError):
    """Raised when a scope is used after it reached a terminal state."""


class TransactionRollbackFailure(TransactionError):
    """Raised when the underlying rollback itself failed.

    ``original`` is the error that triggered the rollback (``None`` for an
    explicit rollback); the rollback error is chained as ``__cause__``.
    """

    def __init__(self, scope_id: str, original: BaseException | None = None) -> None:
        super().__init__(f"rollback of transaction scope {scope_id} failed")
        self.scope_id = scope_id
        self.original = original


async def _call_hook(hook: Hook) -> None:
    result = hook()
    if inspect.isawaitable(result):
        await result


class TransactionScope:
    """Handle passed to a scoped body."""

    def __init__(self, scope_id: str, data_access: DataAccess, handle: Any) -> None:
        self.id = scope_id
        self._data_access = data_access
        self._handle = handle
        self._state = ScopeState.OPEN
        self._ops: list[Any] = []
        self._frozen: tuple[Any, ...] | None = None
        self._on_commit: list[Hook] = []
        self._on_rollback: list[Hook] = []
        self._failure: BaseException | None = None
        self._owner = asyncio.current_task()

    def __repr__(self) -> str:
        return f"<TransactionScope {self.id} {self._state.value} ops={len(self._ops)}>"

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def operations(self) -> tuple[Any, ...]:
        if self._frozen is not None:
            return self._frozen
        return tuple(self._ops)

    @property
    def failure(self) -> BaseException | None:
        """Error that rolled the scope back, if any."""
        return self._failure

    def on_commit(self, hook: Hook) -> None:
        self._ensure_open("register a commit hook")
        self._on_commit.append(hook)

    def on_rollback(self, hook: Hook) -> None:
        self._ensure_open("register a rollback hook")
        self._on_rollback.append(hook)

    def _ensure_open(self, action: str) -> None:
        if self._state is not ScopeState.OPEN:
            raise TransactionStateError(
                f"cannot {action}: transaction scope {self.id} is {self._state.value}"
            )
        self._ensure_owner()

    def owned_by_current_task(self) -> bool:
        return self._owner is None or asyncio.current_task() is self._owner

    def _ensure_owner(self) -> None:
        if not self.owned_by_current_task():
            raise TransactionStateError(
                f"transaction scope {self.id} belongs to another task"
            )

    def _close(self, state: ScopeState) -> None:
        self._state = state
        self._frozen = tuple(self._ops)

    async def execute(self, op: Any) -> Any:
        self._ensure_open("execute")
        self._ops.append(op)
        return await self._data_access.execute(self._handle, op)

    async def commit(self) -> None:
        self._ensure_open("commit")
        try:
            await self._data_access.commit(self._handle)
        except BaseException as exc:
            logger.error("transaction_commit_failed", scope_id=self.id, exc_info=True)
            await self._abort(exc)
            raise
        self._close(ScopeState.COMMITTED)
        logger.info("transaction_committed", scope_id=self.id, operations=len(self._ops))
        for hook in self._on_commit:
            await _call_hook(hook)

    async def rollback(self) -> None:
        """Explicitly roll the scope back; the body may keep running."""

        self._ensure_open("roll back")
        await self._abort(None)

    async def _abort(self, cause: BaseException | None) -> None:
        self._ensure_owner()
        self._close(ScopeState.ROLLED_BACK)
        self._failure = cause
        try:
            await self._data_access.rollback(self._handle)
        except Exception as exc:
            logger.error(
                "transaction_rollback_failed",
                scope_id=self.id,
                cause=type(cause).__name__ if cause is not None else None,
                exc_info=True,
            )
            raise TransactionRollbackFailure(self.id, cause) from exc
        logger.info(
            "transaction_rolled_back",
            scope_id=self.id,
            operations=len(self._ops),
            cause=type(cause).__name__ if cause is not None else "explicit",
        )
        for hook in self._on_rollback:
            try:
                await _call_hook(hook)
            except Exception:
                logger.exception("transaction_rollback_hook_failed", scope_id=self.id)


class TransactionCoordinator:
    """Opens transaction scopes over a DataAccess collaborator.

    Instances are created by the application and handed to the code that
    needs scoped writes; there is no module level coordinator.
    """

    def __init__(self, data_access: DataAccess, *, timeout: float | None = None) -> None:
        self._data_access = data_access
        self._timeout = timeout
        self._current: ContextVar[TransactionScope | None] = ContextVar(
            f"faultline_scope_{id(self):x}", default=None
        )

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def current(self) -> TransactionScope | None:
        return self._current.get()

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[TransactionScope]:
        enclosing = self._current.get()
        # Child tasks inherit the context var but not the scope: only the
        # owning task joins, others open an independent scope.
        if enclosing is not None and enclosing.owned_by_current_task():
            async with self._joined(enclosing) as joined:
                yield joined
            return

        handle = await self._data_access.begin()
        scope = TransactionScope(uuid.uuid4().hex, self._data_access, handle)
        token = self._current.set(scope)
        logger.debug("transaction_opened", scope_id=scope.id)
        try:
            try:
                async with asyncio.timeout(self._timeout):
                    yield scope
            except BaseException as exc:
                if scope.state is ScopeState.OPEN:
                    await scope._abort(exc)
                raise
            if scope.state is ScopeState.OPEN:
                await scope.commit()
            elif scope.failure is not None:
                # A nested scope failed and the body swallowed the error.
                raise TransactionStateError(
                    f"transaction scope {scope.id} was rolled back by a nested failure"
                ) from scope.failure
        finally:
            self._current.reset(token)

    @asynccontextmanager
    async def _joined(self, scope: TransactionScope) -> AsyncIterator[TransactionScope]:
        try:
            yield scope
        except BaseException as exc:
            if scope.state is ScopeState.OPEN:
                await scope._abort(exc)
            raise

    async def run_scoped(self, body: Callable[[TransactionScope], Awaitable[T] | T]) -> T:
        """Run ``body`` inside a scope and return its result.

        The scope commits when ``body`` returns, and rolls back (re-raising
        the original error) when it raises.
        """

        async with self.scope() as scope:
            result = body(scope)
            if inspect.isawaitable(result):
                result = await result
            return result
