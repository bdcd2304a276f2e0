"""Policy gate: run guard functions before a handler and turn denials into errors."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

import structlog

from faultline.core.errors import POLICY_ERROR, AppError

logger = structlog.get_logger(__name__)

PolicyResult = Union[bool, None, Awaitable[Union[bool, None]]]
Policy = Callable[[Any, Mapping[str, Any]], PolicyResult]
PolicyEntry = Union[Policy, str, tuple[Union[Policy, str], Mapping[str, Any]]]


class DecisionState(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class Decision:
    state: DecisionState
    error: AppError | None = None

    def __post_init__(self) -> None:
        # a denial always carries the error to raise, an allow never does
        if (self.state is DecisionState.DENIED) != (self.error is not None):
            raise ValueError(f"{self.state.value} decision with error={self.error!r}")

    @property
    def allowed(self) -> bool:
        return self.state is DecisionState.ALLOWED


ALLOW = Decision(DecisionState.ALLOWED)


def _policy_name(policy: Policy) -> str:
    return getattr(policy, "__qualname__", None) or repr(policy)


async def evaluate(
    policy: Policy, context: Any, config: Mapping[str, Any] | None = None
) -> Decision:
    """Evaluate a single policy.

    ``True`` allows. A falsy result denies with the generic ``PolicyError``;
    an ``AppError`` raised by the policy denies with that exact instance.
    Any other exception propagates to the caller.
    """

    try:
        result = policy(context, config or {})
        if inspect.isawaitable(result):
            result = await result
    except AppError as err:
        logger.info("policy_denied", policy=_policy_name(policy), error=err.name)
        return Decision(DecisionState.DENIED, err)

    if result is True:
        return ALLOW
    if result:
        logger.warning(
            "policy_non_boolean_result",
            policy=_policy_name(policy),
            result_type=type(result).__name__,
        )
        return ALLOW
    logger.info("policy_denied", policy=_policy_name(policy), error=POLICY_ERROR.name)
    return Decision(DecisionState.DENIED, AppError(POLICY_ERROR))


class PolicyRegistry:
    """Named policies, e.g. ``"is-owner"`` or ``"plugin::users.is-admin"``."""

    def __init__(self) -> None:
        self._policies: dict[str, Policy] = {}

    def register(self, name: str, policy: Policy | None = None):
        """Register ``policy`` under ``name``; usable as a decorator."""

        def _add(fn: Policy) -> Policy:
            if name in self._policies and self._policies[name] is not fn:
                raise ValueError(f"policy {name!r} is already registered")
            self._policies[name] = fn
            return fn

        if policy is None:
            return _add
        return _add(policy)

    def get(self, name: str) -> Policy:
        try:
            return self._policies[name]
        except KeyError:
            raise KeyError(f"unknown policy: {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._policies


def _resolve(
    entry: PolicyEntry, registry: PolicyRegistry | None
) -> tuple[Policy, Mapping[str, Any]]:
    config: Mapping[str, Any] = {}
    if isinstance(entry, tuple):
        entry, config = entry
    if isinstance(entry, str):
        if registry is None:
            raise LookupError(f"policy {entry!r} referenced by name without a registry")
        return registry.get(entry), config
    return entry, config


async def enforce(
    policies: Iterable[PolicyEntry],
    context: Any,
    registry: PolicyRegistry | None = None,
) -> None:
    """Evaluate ``policies`` in order and raise the first denial."""

    for entry in policies:
        policy, config = _resolve(entry, registry)
        decision = await evaluate(policy, context, config)
        if decision.error is not None:
            raise decision.error
