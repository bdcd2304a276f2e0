"""Structured error taxonomy, error envelopes, policies and scoped transactions."""

from faultline.core.envelope import dumps, render_graphql, render_rest
from faultline.core.errors import (
    AppError,
    ErrorCapability,
    ErrorKind,
    classify,
    coerce,
    get_kind,
    register_kind,
    registered_kinds,
)
from faultline.core.policies import Decision, DecisionState, PolicyRegistry, enforce, evaluate
from faultline.infra.transactions import (
    ScopeState,
    TransactionCoordinator,
    TransactionRollbackFailure,
    TransactionScope,
    TransactionStateError,
)

__all__ = [
    "AppError",
    "Decision",
    "DecisionState",
    "ErrorCapability",
    "ErrorKind",
    "PolicyRegistry",
    "ScopeState",
    "TransactionCoordinator",
    "TransactionRollbackFailure",
    "TransactionScope",
    "TransactionStateError",
    "classify",
    "coerce",
    "dumps",
    "enforce",
    "evaluate",
    "get_kind",
    "register_kind",
    "registered_kinds",
    "render_graphql",
    "render_rest",
]
