# desk_core/workflows/runtime.py

"""
Workflow runtime enforcement layer.

Responsibilities:
- Resolve a requested transition against a workflow graph
- Enforce the comment requirement and the guard hook
- Apply the state change through a caller-supplied callback
- Run the destination entry hook (fail open)

This module MUST remain free of UI, serializers, or persistence logic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .definitions import TransitionSpec, WorkflowGraph, normalize_slug
from .hooks import HookInvoker, HookOutcome, HookTimeout, get_hook_invoker

logger = logging.getLogger(__name__)


class TransitionError(Exception):
    """
    Base for expected, recoverable transition failures. The ticket state is
    unchanged whenever one of these is raised.
    """

    code = "transition_error"

    def __init__(self, message: str, *, from_state: str = "", to_state: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message)

    def as_dict(self) -> Dict[str, str]:
        return {"code": self.code, "detail": str(self)}


class NoSuchTransition(TransitionError):
    code = "no_such_transition"

    def __init__(self, *, from_state: str, to_state: str):
        super().__init__(
            f"No transition from '{from_state}' to '{to_state}'.",
            from_state=from_state,
            to_state=to_state,
        )


class CommentRequired(TransitionError):
    code = "comment_required"

    def __init__(self, *, from_state: str, to_state: str):
        super().__init__(
            f"A comment is required to move from '{from_state}' to '{to_state}'.",
            from_state=from_state,
            to_state=to_state,
        )


class GuardRejected(TransitionError):
    code = "guard_rejected"

    def __init__(self, *, from_state: str, to_state: str, hook_id: str, reason: str = ""):
        self.hook_id = hook_id
        self.reason = reason
        message = f"Transition '{from_state}' -> '{to_state}' rejected by guard '{hook_id}'."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, from_state=from_state, to_state=to_state)


@dataclass
class TransitionResult:
    from_state: str
    to_state: str
    transition: TransitionSpec
    comment: str = ""
    warnings: List[str] = field(default_factory=list)
    recompute_sla: bool = False


def _run_guard(hooks: HookInvoker, transition: TransitionSpec, *, ticket, context) -> bool:
    hook_id = transition.guard_hook
    try:
        outcome = hooks.invoke(hook_id, ticket=ticket, transition=transition, context=context)
    except HookTimeout as exc:
        raise GuardRejected(
            from_state=transition.from_slug,
            to_state=transition.to_slug,
            hook_id=hook_id,
            reason=str(exc),
        ) from exc
    except Exception as exc:
        # guards fail closed on any hook error
        logger.warning(
            "ticket.workflow.guard_failed",
            extra={"hook_id": hook_id, "error": str(exc)},
        )
        raise GuardRejected(
            from_state=transition.from_slug,
            to_state=transition.to_slug,
            hook_id=hook_id,
            reason=str(exc),
        ) from exc

    if outcome is HookOutcome.DENY:
        raise GuardRejected(
            from_state=transition.from_slug,
            to_state=transition.to_slug,
            hook_id=hook_id,
        )
    return outcome is HookOutcome.RECOMPUTE_SLA


def _run_entry_hook(
    hooks: HookInvoker,
    hook_id: str,
    transition: TransitionSpec,
    *,
    ticket,
    context,
    result: TransitionResult,
) -> None:
    try:
        outcome = hooks.invoke(hook_id, ticket=ticket, transition=transition, context=context)
    except Exception as exc:
        # state is already applied; report and continue
        message = f"Entry hook '{hook_id}' failed: {exc}"
        result.warnings.append(message)
        logger.warning(
            "ticket.workflow.entry_hook_failed",
            exc_info=not isinstance(exc, HookTimeout),
            extra={
                "hook_id": hook_id,
                "from_state": transition.from_slug,
                "to_state": transition.to_slug,
                "ticket_id": getattr(ticket, "pk", None),
            },
        )
        return

    if outcome is HookOutcome.RECOMPUTE_SLA:
        result.recompute_sla = True


def execute_transition(
    *,
    graph: WorkflowGraph,
    current_state: str,
    target_state: str,
    apply: Callable[[TransitionSpec], Any],
    ticket=None,
    comment: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    hooks: Optional[HookInvoker] = None,
) -> TransitionResult:
    """
    Order is fixed: lookup, comment, guard, apply, entry hook.

    `apply` performs the state write and is only called once every check
    has passed. Self-transitions need an explicit self-loop.
    """
    hooks = hooks or get_hook_invoker()
    context = dict(context or {})
    current = normalize_slug(current_state)
    target = normalize_slug(target_state)

    # 1) Lookup
    transition = graph.find_transition(current, target)
    if transition is None:
        raise NoSuchTransition(from_state=current, to_state=target)

    # 2) Comment requirement (before any hook runs)
    comment = (comment or "").strip()
    if transition.requires_comment and not comment:
        raise CommentRequired(from_state=current, to_state=target)

    context["comment"] = comment
    context["metadata"] = dict(transition.metadata or {})

    # 3) Guard
    recompute = False
    if transition.guard_hook:
        recompute = _run_guard(hooks, transition, ticket=ticket, context=context)

    # 4) Apply
    apply(transition)

    result = TransitionResult(
        from_state=current,
        to_state=target,
        transition=transition,
        comment=comment,
        recompute_sla=recompute,
    )

    # 5) Entry hook (fail open)
    destination = graph.state(target)
    if destination is not None and destination.entry_hook:
        _run_entry_hook(
            hooks,
            destination.entry_hook,
            transition,
            ticket=ticket,
            context=context,
            result=result,
        )

    return result


def allowed_transitions(graph: WorkflowGraph, current_state: str) -> List[TransitionSpec]:
    """
    Outgoing transitions of the current state, ordered by destination position.
    """
    positions = {s.slug: (s.position, s.id or 0) for s in graph.states}
    return sorted(
        graph.outgoing(current_state),
        key=lambda t: positions.get(t.to_slug, (0, 0)),
    )
