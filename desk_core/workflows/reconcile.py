# desk_core/workflows/reconcile.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .definitions import StateSpec, TransitionSpec

"""
Diff planner for workflow definitions.

PURE LOGIC. Compares the persisted children of one definition with the
desired children submitted by an administrator and returns the minimal
create / update / delete plan. The persistence layer
(services.workflow_definitions) applies the plan inside one transaction.

Matching order for each desired item:
  1) durable id known to this definition
  2) states: same slug; transitions: same (from, to) state pair
  3) otherwise it is new

Persisted items nobody claimed are deleted. Items whose content did not
change are reported as unchanged and never written.
"""


class ReconciliationError(Exception):
    """
    Integrity problem detected while planning; the unit of work must abort.
    """

    def __init__(self, message: str, *, field_name: str = "non_field_errors", items: Sequence = ()):
        self.field_name = field_name
        self.items = list(items)
        super().__init__(message)


# ===============================================================
# STATES
# ===============================================================

@dataclass
class StatePlan:
    creates: List[StateSpec] = field(default_factory=list)
    updates: List[StateSpec] = field(default_factory=list)
    unchanged: List[StateSpec] = field(default_factory=list)
    deletes: List[StateSpec] = field(default_factory=list)

    @property
    def kept(self) -> List[StateSpec]:
        return self.updates + self.unchanged

    @property
    def deleted_ids(self) -> Set[int]:
        return {s.id for s in self.deletes}

    @property
    def has_changes(self) -> bool:
        return bool(self.creates or self.updates or self.deletes)


def _check_unique(values: Iterable, *, label: str, field_name: str) -> None:
    seen: Set = set()
    dupes: List = []
    for v in values:
        if v in seen and v not in dupes:
            dupes.append(v)
        seen.add(v)
    if dupes:
        raise ReconciliationError(
            f"Duplicate {label}: {', '.join(str(d) for d in dupes)}.",
            field_name=field_name,
            items=dupes,
        )


def plan_states(existing: Sequence[StateSpec], desired: Sequence) -> StatePlan:
    """
    existing: persisted states (id always set)
    desired:  StateSpec or mappings, in submission order; position falls
              back to the index in this list
    """
    desired_specs = [
        d if isinstance(d, StateSpec) else StateSpec.from_mapping(d, index=i)
        for i, d in enumerate(desired)
    ]

    missing = [i for i, d in enumerate(desired_specs) if not d.slug]
    if missing:
        raise ReconciliationError("Every state needs a slug.", field_name="states", items=missing)

    _check_unique((d.slug for d in desired_specs), label="state slug", field_name="states")
    _check_unique(
        (d.id for d in desired_specs if d.id is not None),
        label="state id",
        field_name="states",
    )

    by_id: Dict[int, StateSpec] = {s.id: s for s in existing}
    claimed: Dict[int, StateSpec] = {}
    matches: List[Optional[StateSpec]] = [None] * len(desired_specs)

    # pass 1: durable ids
    for i, d in enumerate(desired_specs):
        if d.id is not None and d.id in by_id:
            matches[i] = by_id[d.id]
            claimed[d.id] = by_id[d.id]

    # pass 2: slug among unclaimed
    by_slug = {s.slug: s for s in existing if s.id not in claimed}
    for i, d in enumerate(desired_specs):
        if matches[i] is not None:
            continue
        hit = by_slug.pop(d.slug, None)
        if hit is not None:
            matches[i] = hit
            claimed[hit.id] = hit

    plan = StatePlan()
    for d, match in zip(desired_specs, matches):
        if match is None:
            plan.creates.append(_with_id(d, None))
            continue

        target = _with_id(d, match.id)
        if target.content() == match.content():
            plan.unchanged.append(target)
        else:
            plan.updates.append(target)

    plan.deletes = [s for s in existing if s.id not in claimed]
    return plan


def _with_id(item: StateSpec, state_id: Optional[int]) -> StateSpec:
    if item.id == state_id:
        return item
    return StateSpec(**{**{f: getattr(item, f) for f in StateSpec.CONTENT_FIELDS}, "id": state_id})


# ===============================================================
# TRANSITIONS
# ===============================================================

@dataclass(frozen=True)
class PersistedTransition:
    id: int
    from_state_id: int
    to_state_id: int
    guard_hook: str = ""
    requires_comment: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def pair(self) -> Tuple[int, int]:
        return (self.from_state_id, self.to_state_id)

    def content(self) -> Tuple[Any, ...]:
        return (
            self.from_state_id,
            self.to_state_id,
            self.guard_hook or "",
            bool(self.requires_comment),
            self.metadata or {},
        )


@dataclass
class TransitionPlan:
    creates: List[PersistedTransition] = field(default_factory=list)
    updates: List[PersistedTransition] = field(default_factory=list)
    unchanged: List[PersistedTransition] = field(default_factory=list)
    deletes: List[PersistedTransition] = field(default_factory=list)
    skipped: List[TransitionSpec] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.creates or self.updates or self.deletes)


def plan_transitions(
    existing: Sequence[PersistedTransition],
    desired: Optional[Sequence],
    slug_to_state_id: Dict[str, int],
    *,
    deleted_state_ids: Iterable[int] = (),
) -> TransitionPlan:
    """
    existing:          persisted transitions, keyed by state ids
    desired:           TransitionSpec or mappings referencing state slugs,
                       or None to leave transitions untouched
    slug_to_state_id:  the reconciled state set

    Desired transitions naming an unknown slug are skipped, not rejected.
    Created items carry id=0 until persisted.
    """
    deleted_state_ids = set(deleted_state_ids)
    plan = TransitionPlan()

    if desired is None:
        dangling = [
            t.id for t in existing
            if t.from_state_id in deleted_state_ids or t.to_state_id in deleted_state_ids
        ]
        if dangling:
            raise ReconciliationError(
                "Cannot delete states that are still referenced by transitions.",
                field_name="states",
                items=dangling,
            )
        plan.unchanged = list(existing)
        return plan

    wanted = [
        d if isinstance(d, TransitionSpec) else TransitionSpec.from_mapping(d)
        for d in desired
    ]

    resolved: List[Tuple[TransitionSpec, Tuple[int, int]]] = []
    for item in wanted:
        from_id = slug_to_state_id.get(item.from_slug)
        to_id = slug_to_state_id.get(item.to_slug)
        if from_id is None or to_id is None:
            plan.skipped.append(item)
            continue
        resolved.append((item, (from_id, to_id)))

    _check_unique(
        ((item.from_slug, item.to_slug) for item, _ in resolved),
        label="transition",
        field_name="transitions",
    )
    _check_unique(
        (item.id for item, _ in resolved if item.id is not None),
        label="transition id",
        field_name="transitions",
    )

    by_id = {t.id: t for t in existing}
    claimed: Set[int] = set()
    matches: List[Optional[PersistedTransition]] = [None] * len(resolved)

    for i, (item, _) in enumerate(resolved):
        if item.id is not None and item.id in by_id:
            matches[i] = by_id[item.id]
            claimed.add(item.id)

    by_pair = {t.pair: t for t in existing if t.id not in claimed}
    for i, (_, pair) in enumerate(resolved):
        if matches[i] is not None:
            continue
        hit = by_pair.pop(pair, None)
        if hit is not None:
            matches[i] = hit
            claimed.add(hit.id)

    for (item, (from_id, to_id)), match in zip(resolved, matches):
        target = PersistedTransition(
            id=match.id if match is not None else 0,
            from_state_id=from_id,
            to_state_id=to_id,
            guard_hook=item.guard_hook,
            requires_comment=item.requires_comment,
            metadata=dict(item.metadata or {}),
        )
        if match is None:
            plan.creates.append(target)
        elif target.content() == match.content():
            plan.unchanged.append(target)
        else:
            plan.updates.append(target)

    plan.deletes = [t for t in existing if t.id not in claimed]
    return plan
