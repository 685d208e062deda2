# desk_core/workflows/definitions.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

"""
In-memory workflow graph.

PURE DATA. Loaded from persisted TicketWorkflow rows (see
TicketWorkflow.graph()) and consumed by the runtime and the diff planner.
"""


def normalize_slug(value) -> str:
    return str(value or "").strip().lower()


@dataclass(frozen=True)
class StateSpec:
    slug: str
    name: str = ""
    position: int = 0
    is_initial: bool = False
    is_terminal: bool = False
    sla_minutes: Optional[int] = None
    entry_hook: str = ""
    description: str = ""
    id: Optional[int] = None

    CONTENT_FIELDS = (
        "name",
        "slug",
        "position",
        "is_initial",
        "is_terminal",
        "sla_minutes",
        "entry_hook",
        "description",
    )

    def content(self) -> Tuple[Any, ...]:
        return tuple(getattr(self, f) for f in self.CONTENT_FIELDS)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any], *, index: int = 0) -> "StateSpec":
        position = data.get("position")
        return cls(
            slug=normalize_slug(data.get("slug")),
            name=str(data.get("name") or "").strip(),
            position=index if position is None else int(position),
            is_initial=bool(data.get("is_initial", False)),
            is_terminal=bool(data.get("is_terminal", False)),
            sla_minutes=data.get("sla_minutes"),
            entry_hook=str(data.get("entry_hook") or "").strip(),
            description=str(data.get("description") or ""),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class TransitionSpec:
    from_slug: str
    to_slug: str
    guard_hook: str = ""
    requires_comment: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    id: Optional[int] = None

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.from_slug, self.to_slug)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "TransitionSpec":
        return cls(
            from_slug=normalize_slug(data.get("from") or data.get("from_slug")),
            to_slug=normalize_slug(data.get("to") or data.get("to_slug")),
            guard_hook=str(data.get("guard_hook") or "").strip(),
            requires_comment=bool(data.get("requires_comment", False)),
            metadata=dict(data.get("metadata") or {}),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class WorkflowGraph:
    """
    Flat state machine: states keyed by slug, transitions keyed by
    (from_slug, to_slug). Terminal flags are advisory only.
    """

    states: Tuple[StateSpec, ...] = ()
    transitions: Tuple[TransitionSpec, ...] = ()
    workflow_id: Optional[int] = None
    slug: str = ""

    def state(self, slug) -> Optional[StateSpec]:
        key = normalize_slug(slug)
        for s in self.states:
            if s.slug == key:
                return s
        return None

    def has_state(self, slug) -> bool:
        return self.state(slug) is not None

    def find_transition(self, from_slug, to_slug) -> Optional[TransitionSpec]:
        pair = (normalize_slug(from_slug), normalize_slug(to_slug))
        for t in self.transitions:
            if t.pair == pair:
                return t
        return None

    def outgoing(self, from_slug) -> List[TransitionSpec]:
        key = normalize_slug(from_slug)
        return [t for t in self.transitions if t.from_slug == key]

    def initial_state(self) -> Optional[StateSpec]:
        """
        The state flagged is_initial. Definitions saved before the
        single-initial rule fall back to the lowest position.
        """
        ordered = sorted(self.states, key=lambda s: (s.position, s.id or 0))
        for s in ordered:
            if s.is_initial:
                return s
        return ordered[0] if ordered else None

    @classmethod
    def build(
        cls,
        *,
        states: Iterable = (),
        transitions: Iterable = (),
        workflow_id: Optional[int] = None,
        slug: str = "",
    ) -> "WorkflowGraph":
        parsed_states = [
            s if isinstance(s, StateSpec) else StateSpec.from_mapping(s, index=i)
            for i, s in enumerate(states)
        ]
        parsed_transitions = [
            t if isinstance(t, TransitionSpec) else TransitionSpec.from_mapping(t)
            for t in transitions
        ]
        return cls(
            states=tuple(parsed_states),
            transitions=tuple(parsed_transitions),
            workflow_id=workflow_id,
            slug=slug,
        )
