# desk_core/workflows/__init__.py
from __future__ import annotations

# Engine entry points. Model-bound helpers (guards) are imported from
# their own module so this package stays importable before app loading.

from .definitions import StateSpec, TransitionSpec, WorkflowGraph, normalize_slug
from .hooks import (
    HookError,
    HookInvoker,
    HookOutcome,
    HookRegistry,
    HookTimeout,
    UnknownHook,
    get_hook_invoker,
    install_registry,
)
from .reconcile import (
    PersistedTransition,
    ReconciliationError,
    StatePlan,
    TransitionPlan,
    plan_states,
    plan_transitions,
)
from .runtime import (
    CommentRequired,
    GuardRejected,
    NoSuchTransition,
    TransitionError,
    TransitionResult,
    allowed_transitions,
    execute_transition,
)

__all__ = [
    "CommentRequired",
    "GuardRejected",
    "HookError",
    "HookInvoker",
    "HookOutcome",
    "HookRegistry",
    "HookTimeout",
    "NoSuchTransition",
    "PersistedTransition",
    "ReconciliationError",
    "StatePlan",
    "StateSpec",
    "TransitionError",
    "TransitionPlan",
    "TransitionResult",
    "TransitionSpec",
    "UnknownHook",
    "WorkflowGraph",
    "allowed_transitions",
    "execute_transition",
    "get_hook_invoker",
    "install_registry",
    "normalize_slug",
    "plan_states",
    "plan_transitions",
]
