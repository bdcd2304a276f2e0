"""API dependency helpers: policy enforcement and transaction scopes."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from fastapi import Request

from faultline.core.policies import PolicyEntry, PolicyRegistry, enforce
from faultline.infra.transactions import TransactionCoordinator, TransactionScope

__all__ = [
    "PolicyContext",
    "require_policies",
    "get_coordinator",
    "transaction_scope",
]


class PolicyContext:
    """What a policy sees about the request it guards."""

    def __init__(self, request: Request) -> None:
        self.request = request
        self.state = request.state
        self.path_params = dict(request.path_params)
        self.query_params = dict(request.query_params)

    @property
    def user(self) -> Any:
        return getattr(self.state, "user", None)


def require_policies(*policies: PolicyEntry, registry: PolicyRegistry | None = None):
    """Dependency running ``policies`` before the handler; raises the first denial.

    Named entries are looked up in ``registry`` or, when omitted, in
    ``app.state.policies``.
    """

    async def _dep(request: Request) -> None:
        reg = registry or getattr(request.app.state, "policies", None)
        await enforce(policies, PolicyContext(request), reg)

    return _dep


def get_coordinator(request: Request) -> TransactionCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise RuntimeError("no TransactionCoordinator configured on app.state.coordinator")
    return coordinator


async def transaction_scope(request: Request) -> AsyncIterator[TransactionScope]:
    """Dependency yielding a scope that commits after the handler returns."""

    async with get_coordinator(request).scope() as scope:
        yield scope
