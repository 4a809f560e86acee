"""
dbset - Typestate Synthesizer
=============================
Partitions an entity's fields, per query shape, into *required* slots (which
gate the terminal method) and *free* fields (settable at any time).

A builder state is a bitset over the shape's slots: bit ``i`` is 1 when slot
``i`` is Set.  The initial state is ``0``.  A state is complete when it
covers the mask of at least one completion path.

Shape rules
-----------
many    no slots; every field except Unique fields (and the Key field when it
        is the only one) is a free ``<field>_eq`` filter.
insert  one slot per field that is neither Optional nor Auto; optional
        non-auto fields are free.  Setters are named after the field.
one /   a Key axis (one slot per Key field, all must be Set) and a Unique
delete  axis (one slot, Set by any Unique-field setter).  The axes are
        exclusive: once one has a Set slot the other's setters are hidden.
update  one ``data`` slot, Set by ``data(entity)``.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set, Tuple

from dbset.errors import FieldError, SlotAlreadySetError
from dbset.models import CompletionPath, EntitySchema, QueryShape, SlotState

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.typestate")

KEY_AXIS: str = "key"
UNIQUE_AXIS: str = "unique"


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Slot:
    """A named required input; ``index`` is its bit position."""

    name: str
    index: int
    label: str
    axis: Optional[str] = None

    @property
    def bit(self) -> int:
        return 1 << self.index


@dataclass(frozen=True, slots=True)
class SetterSpec:
    """
    One builder setter.

    ``slot`` is ``None`` for a free setter.  ``field_name`` is ``None`` for
    the Update ``data`` setter, which takes a whole entity.
    """

    name: str
    field_name: Optional[str]
    slot: Optional[Slot] = None

    @property
    def is_free(self) -> bool:
        return self.slot is None


@dataclass(frozen=True, slots=True)
class CompletionRule:
    path: CompletionPath
    mask: int


# ---------------------------------------------------------------------------
# ShapeTypestate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShapeTypestate:
    """The slot layout, setters and completion paths of one shape."""

    shape: QueryShape
    entity: str
    slots: Tuple[Slot, ...]
    setters: Tuple[SetterSpec, ...]
    paths: Tuple[CompletionRule, ...]
    _by_name: Dict[str, SetterSpec] = field(
        init=False, default_factory=dict, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        self._by_name.update({s.name: s for s in self.setters})

    # -- introspection -----------------------------------------------------

    @property
    def initial_state(self) -> int:
        return 0

    @property
    def free_setters(self) -> List[SetterSpec]:
        return [s for s in self.setters if s.is_free]

    @property
    def required_setters(self) -> List[SetterSpec]:
        return [s for s in self.setters if not s.is_free]

    def setter(self, name: str) -> SetterSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise AttributeError(
                f"{self.shape.value} builder of {self.entity} has no setter '{name}'"
            ) from None

    def slot_states(self, state: int) -> Dict[str, SlotState]:
        return {
            s.name: SlotState.SET if state & s.bit else SlotState.UNSET
            for s in self.slots
        }

    # -- predicates ----------------------------------------------------------

    def completed_path(self, state: int) -> Optional[CompletionPath]:
        """The first completion path whose slots are all Set, if any."""
        for rule in self.paths:
            if state & rule.mask == rule.mask:
                return rule.path
        return None

    def is_complete(self, state: int) -> bool:
        return self.completed_path(state) is not None

    def _axis_touched(self, axis: str, state: int) -> bool:
        return any(s.axis == axis and state & s.bit for s in self.slots)

    def _blocked_reason(self, spec: SetterSpec, state: int) -> Optional[str]:
        slot: Optional[Slot] = spec.slot
        if slot is None:
            return None
        if state & slot.bit:
            return f"slot '{slot.name}' is already set"
        if slot.axis is not None:
            for other in (KEY_AXIS, UNIQUE_AXIS):
                if other != slot.axis and self._axis_touched(other, state):
                    return f"the {other} lookup path was already chosen"
        return None

    def setter_exposed(self, name: str, state: int) -> bool:
        return self._blocked_reason(self.setter(name), state) is None

    def exposed_setters(self, state: int) -> List[str]:
        return [s.name for s in self.setters if self._blocked_reason(s, state) is None]

    # -- transitions ---------------------------------------------------------

    def transition(self, state: int, name: str) -> int:
        """
        Apply setter *name* to *state*.

        Every other slot passes through unchanged.  Raises
        ``SlotAlreadySetError`` when the setter is not exposed in *state*.
        """
        spec: SetterSpec = self.setter(name)
        reason: Optional[str] = self._blocked_reason(spec, state)
        if reason is not None:
            raise SlotAlreadySetError(self.builder_label, name, reason)
        if spec.slot is None:
            return state
        return state | spec.slot.bit

    def missing_slots(self, state: int) -> List[str]:
        """
        Labels of the slots still needed to complete.

        When a path has already been started only that path is reported.
        """
        if self.is_complete(state):
            return []
        started: List[CompletionRule] = [r for r in self.paths if r.mask & state]
        candidates: List[CompletionRule] = started or list(self.paths)
        labels: List[str] = []
        for rule in candidates:
            for s in self.slots:
                if rule.mask & s.bit and not state & s.bit and s.label not in labels:
                    labels.append(s.label)
        return labels

    @property
    def builder_label(self) -> str:
        return f"{self.entity}.{self.shape.value}"


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def many_filter_fields(schema: EntitySchema) -> List[str]:
    """Names of the free filter fields of the Many builder."""
    exclude_key: bool = len(schema.key_fields) == 1
    return [
        f.name for f in schema.fields
        if not f.is_unique and not (exclude_key and f.is_key)
    ]


def _many(schema: EntitySchema) -> Tuple[List[Slot], List[SetterSpec], List[CompletionRule]]:
    setters: List[SetterSpec] = [
        SetterSpec(name=f"{name}_eq", field_name=name)
        for name in many_filter_fields(schema)
    ]
    return [], setters, [CompletionRule(CompletionPath.ALL, 0)]


def _insert(schema: EntitySchema) -> Tuple[List[Slot], List[SetterSpec], List[CompletionRule]]:
    insertable = [f for f in schema.fields if not f.is_auto]
    if not insertable:
        raise FieldError("Insert has no insertable fields (all are auto).",
                         entity=schema.struct_name)
    slots: List[Slot] = []
    setters: List[SetterSpec] = []
    for f in insertable:
        if f.is_optional:
            setters.append(SetterSpec(name=f.name, field_name=f.name))
        else:
            slot: Slot = Slot(name=f.name, index=len(slots), label=f.name)
            slots.append(slot)
            setters.append(SetterSpec(name=f.name, field_name=f.name, slot=slot))
    mask: int = sum(s.bit for s in slots)
    return slots, setters, [CompletionRule(CompletionPath.ALL, mask)]


def _lookup(schema: EntitySchema, shape: QueryShape) -> Tuple[List[Slot], List[SetterSpec], List[CompletionRule]]:
    keys = schema.key_fields
    uniques = schema.unique_fields
    if not keys and not uniques:
        raise FieldError(
            f"{shape.value} needs at least one key or unique field.",
            entity=schema.struct_name,
        )
    slots: List[Slot] = []
    setters: List[SetterSpec] = []
    rules: List[CompletionRule] = []

    for f in keys:
        slot: Slot = Slot(name=f.name, index=len(slots), label=f.name, axis=KEY_AXIS)
        slots.append(slot)
        setters.append(SetterSpec(name=f"{f.name}_eq", field_name=f.name, slot=slot))
    if keys:
        rules.append(CompletionRule(CompletionPath.KEY, sum(s.bit for s in slots)))

    if uniques:
        names: List[str] = [f.name for f in uniques]
        label: str = names[0] if len(names) == 1 else f"one of ({', '.join(names)})"
        unique_slot: Slot = Slot(name=UNIQUE_AXIS, index=len(slots), label=label,
                                 axis=UNIQUE_AXIS)
        slots.append(unique_slot)
        setters.extend(
            SetterSpec(name=f"{n}_eq", field_name=n, slot=unique_slot) for n in names
        )
        rules.append(CompletionRule(CompletionPath.UNIQUE, unique_slot.bit))

    return slots, setters, rules


def _update(schema: EntitySchema) -> Tuple[List[Slot], List[SetterSpec], List[CompletionRule]]:
    slot: Slot = Slot(name="data", index=0, label="data")
    return [slot], [SetterSpec(name="data", field_name=None, slot=slot)], [
        CompletionRule(CompletionPath.DATA, slot.bit)
    ]


def synthesize(schema: EntitySchema, shape: QueryShape) -> ShapeTypestate:
    """Derive the slot layout and setters of *shape* for *schema*."""
    shape = QueryShape(shape)
    if shape is QueryShape.MANY:
        slots, setters, rules = _many(schema)
    elif shape is QueryShape.INSERT:
        slots, setters, rules = _insert(schema)
    elif shape is QueryShape.UPDATE:
        slots, setters, rules = _update(schema)
    else:
        slots, setters, rules = _lookup(schema, shape)

    ts: ShapeTypestate = ShapeTypestate(
        shape=shape,
        entity=schema.struct_name,
        slots=tuple(slots),
        setters=tuple(setters),
        paths=tuple(rules),
    )
    logger.debug(
        "[%s] %s typestate: %d slot(s), %d free setter(s), paths=%s",
        schema.struct_name,
        shape.value,
        len(slots),
        len(ts.free_setters),
        [r.path.value for r in rules],
    )
    return ts


def reachable_states(typestate: ShapeTypestate) -> List[int]:
    """Every state reachable from the initial state, in BFS order."""
    start: int = typestate.initial_state
    seen: Set[int] = {start}
    order: List[int] = [start]
    queue: Deque[int] = deque([start])
    while queue:
        state: int = queue.popleft()
        for spec in typestate.required_setters:
            if not typestate.setter_exposed(spec.name, state):
                continue
            nxt: int = typestate.transition(state, spec.name)
            if nxt not in seen:
                seen.add(nxt)
                order.append(nxt)
                queue.append(nxt)
    return order


__all__: List[str] = [
    "KEY_AXIS",
    "UNIQUE_AXIS",
    "Slot",
    "SetterSpec",
    "CompletionRule",
    "ShapeTypestate",
    "many_filter_fields",
    "synthesize",
    "reachable_states",
]
