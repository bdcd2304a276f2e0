from __future__ import annotations

import asyncio

import pytest

from faultline.core.errors import AppError, classify
from faultline.infra.transactions import (
    ScopeState,
    TransactionCoordinator,
    TransactionRollbackFailure,
    TransactionStateError,
)
from tests.fakes import DataAccessFailure, InMemoryDataAccess


@pytest.mark.asyncio
async def test_body_returning_normally_commits(coordinator, data_access):
    captured = {}

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("insert a")
        await scope.execute("insert b")
        return "done"

    result = await coordinator.run_scoped(body)

    scope = captured["scope"]
    assert result == "done"
    assert scope.state is ScopeState.COMMITTED
    assert scope.operations == ("insert a", "insert b")
    assert data_access.committed == ["insert a", "insert b"]
    assert data_access.call_names() == ["begin", "execute", "execute", "commit"]


@pytest.mark.asyncio
async def test_error_in_body_rolls_back_and_reraises(coordinator, data_access):
    captured = {}
    raised = classify("ApplicationError", "stop")

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("insert a")
        raise raised

    with pytest.raises(AppError) as exc:
        await coordinator.run_scoped(body)

    assert exc.value is raised
    assert captured["scope"].state is ScopeState.ROLLED_BACK
    assert captured["scope"].failure is raised
    assert data_access.committed == []
    assert "commit" not in data_access.call_names()


@pytest.mark.asyncio
async def test_explicit_rollback_skips_commit(coordinator, data_access):
    captured = {}

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("insert a")
        await scope.rollback()
        return 42

    assert await coordinator.run_scoped(body) == 42
    assert captured["scope"].state is ScopeState.ROLLED_BACK
    assert data_access.committed == []
    assert data_access.call_names() == ["begin", "execute", "rollback"]


@pytest.mark.asyncio
async def test_sync_body_is_supported(coordinator, data_access):
    assert await coordinator.run_scoped(lambda scope: scope.id) is not None
    assert data_access.call_names() == ["begin", "commit"]


@pytest.mark.asyncio
async def test_operations_frozen_after_transition(coordinator):
    async with coordinator.scope() as scope:
        await scope.execute("a")
        assert scope.operations == ("a",)

    assert scope.state is ScopeState.COMMITTED
    with pytest.raises(TransactionStateError):
        await scope.execute("b")
    with pytest.raises(TransactionStateError):
        await scope.commit()
    with pytest.raises(TransactionStateError):
        await scope.rollback()
    assert scope.operations == ("a",)


@pytest.mark.asyncio
async def test_execute_after_explicit_rollback_fails(coordinator, data_access):
    async def body(scope):
        await scope.rollback()
        await scope.execute("late write")

    with pytest.raises(TransactionStateError):
        await coordinator.run_scoped(body)
    assert data_access.call_names() == ["begin", "rollback"]


@pytest.mark.asyncio
async def test_begin_failure_propagates_without_rollback():
    data_access = InMemoryDataAccess(fail_begin=True)
    coordinator = TransactionCoordinator(data_access)
    ran = False

    async def body(scope):
        nonlocal ran
        ran = True

    with pytest.raises(DataAccessFailure):
        await coordinator.run_scoped(body)
    assert ran is False
    assert data_access.calls == []


@pytest.mark.asyncio
async def test_rollback_failure_is_escalated():
    data_access = InMemoryDataAccess(fail_rollback=True)
    coordinator = TransactionCoordinator(data_access)
    raised = classify("ApplicationError")

    async def body(scope):
        await scope.execute("a")
        raise raised

    with pytest.raises(TransactionRollbackFailure) as exc:
        await coordinator.run_scoped(body)

    assert exc.value.original is raised
    assert isinstance(exc.value.__cause__, DataAccessFailure)


@pytest.mark.asyncio
async def test_explicit_rollback_failure_is_escalated():
    coordinator = TransactionCoordinator(InMemoryDataAccess(fail_rollback=True))

    async def body(scope):
        await scope.rollback()

    with pytest.raises(TransactionRollbackFailure) as exc:
        await coordinator.run_scoped(body)
    assert exc.value.original is None


@pytest.mark.asyncio
async def test_commit_failure_rolls_back_and_reraises():
    data_access = InMemoryDataAccess(fail_commit=True)
    coordinator = TransactionCoordinator(data_access)
    captured = {}

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("a")

    with pytest.raises(DataAccessFailure, match="commit failed"):
        await coordinator.run_scoped(body)

    assert captured["scope"].state is ScopeState.ROLLED_BACK
    assert data_access.call_names() == ["begin", "execute", "commit", "rollback"]


@pytest.mark.asyncio
async def test_explicit_commit_then_return(coordinator, data_access):
    async def body(scope):
        await scope.execute("a")
        await scope.commit()
        return scope

    scope = await coordinator.run_scoped(body)

    assert scope.state is ScopeState.COMMITTED
    assert data_access.call_names() == ["begin", "execute", "commit"]


@pytest.mark.asyncio
async def test_hooks_run_after_transitions(coordinator):
    events = []

    async def note_async():
        events.append("async-commit")

    async with coordinator.scope() as scope:
        scope.on_commit(lambda: events.append("commit"))
        scope.on_commit(note_async)
        scope.on_rollback(lambda: events.append("rollback"))
        await scope.execute("a")
        assert events == []

    assert events == ["commit", "async-commit"]

    events.clear()
    with pytest.raises(AppError):
        async with coordinator.scope() as scope:
            scope.on_commit(lambda: events.append("commit"))
            scope.on_rollback(lambda: events.append("rollback"))
            raise classify("ApplicationError")
    assert events == ["rollback"]


@pytest.mark.asyncio
async def test_cancellation_rolls_back(data_access):
    coordinator = TransactionCoordinator(data_access)
    started = asyncio.Event()
    captured = {}

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("a")
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(coordinator.run_scoped(body))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert captured["scope"].state is ScopeState.ROLLED_BACK
    assert data_access.committed == []
    assert data_access.call_names()[-1] == "rollback"


@pytest.mark.asyncio
async def test_timeout_rolls_back(data_access):
    coordinator = TransactionCoordinator(data_access, timeout=0.01)
    captured = {}

    async def body(scope):
        captured["scope"] = scope
        await scope.execute("a")
        await asyncio.sleep(1)

    with pytest.raises(TimeoutError):
        await coordinator.run_scoped(body)

    assert captured["scope"].state is ScopeState.ROLLED_BACK
    assert data_access.committed == []


@pytest.mark.asyncio
async def test_nested_scope_joins_enclosing(coordinator, data_access):
    async def inner(scope):
        await scope.execute("inner")
        return scope

    async def outer(scope):
        await scope.execute("outer")
        joined = await coordinator.run_scoped(inner)
        assert joined is scope
        assert scope.state is ScopeState.OPEN
        return scope

    scope = await coordinator.run_scoped(outer)

    assert scope.operations == ("outer", "inner")
    assert data_access.call_names().count("begin") == 1
    assert data_access.call_names().count("commit") == 1
    assert data_access.committed == ["outer", "inner"]
    assert coordinator.current is None


@pytest.mark.asyncio
async def test_nested_failure_rolls_back_whole_unit(coordinator, data_access):
    async def inner(scope):
        await scope.execute("inner")
        raise classify("ValidationError")

    async def outer(scope):
        await scope.execute("outer")
        await coordinator.run_scoped(inner)

    with pytest.raises(AppError):
        await coordinator.run_scoped(outer)

    assert data_access.committed == []
    assert data_access.call_names().count("rollback") == 1


@pytest.mark.asyncio
async def test_swallowed_nested_failure_is_reported(coordinator, data_access):
    async def inner(scope):
        raise classify("ValidationError")

    async def outer(scope):
        await scope.execute("outer")
        try:
            await coordinator.run_scoped(inner)
        except AppError:
            pass
        return "ok"

    with pytest.raises(TransactionStateError) as exc:
        await coordinator.run_scoped(outer)

    assert isinstance(exc.value.__cause__, AppError)
    assert data_access.committed == []


@pytest.mark.asyncio
async def test_concurrent_tasks_get_independent_scopes(data_access):
    coordinator = TransactionCoordinator(data_access)

    async def body(scope):
        await scope.execute(f"op-{scope.id}")
        await asyncio.sleep(0)
        return scope

    first, second = await asyncio.gather(
        coordinator.run_scoped(body), coordinator.run_scoped(body)
    )

    assert first is not second
    assert first.state is second.state is ScopeState.COMMITTED
    assert data_access.call_names().count("begin") == 2


@pytest.mark.asyncio
async def test_scope_is_confined_to_owning_task(coordinator):
    async with coordinator.scope() as scope:
        with pytest.raises(TransactionStateError):
            await asyncio.create_task(scope.execute("from background"))
        await scope.execute("from owner")

    assert scope.operations == ("from owner",)


@pytest.mark.asyncio
async def test_child_task_opens_its_own_scope(coordinator, data_access):
    async def child(scope):
        await scope.execute("child write")
        return scope

    async with coordinator.scope() as outer:
        await outer.execute("outer write")
        (inner,) = await asyncio.gather(
            coordinator.run_scoped(child), return_exceptions=True
        )
        assert inner is not outer
        assert inner.state is ScopeState.COMMITTED
        assert outer.state is ScopeState.OPEN
        assert coordinator.current is outer

    assert outer.state is ScopeState.COMMITTED
    assert data_access.call_names().count("begin") == 2
    assert sorted(data_access.committed) == ["child write", "outer write"]


@pytest.mark.asyncio
async def test_child_task_failure_leaves_parent_scope_open(coordinator, data_access):
    async def child(scope):
        await scope.execute("child write")
        raise classify("ValidationError")

    async with coordinator.scope() as outer:
        await outer.execute("outer write")
        with pytest.raises(AppError):
            await asyncio.create_task(coordinator.run_scoped(child))
        assert outer.state is ScopeState.OPEN

    assert data_access.committed == ["outer write"]


@pytest.mark.asyncio
async def test_abort_from_another_task_is_refused(coordinator, data_access):
    async with coordinator.scope() as scope:
        with pytest.raises(TransactionStateError):
            await asyncio.create_task(scope._abort(RuntimeError("boom")))
        assert scope.state is ScopeState.OPEN
        await scope.execute("still usable")

    assert data_access.committed == ["still usable"]
