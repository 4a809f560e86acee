"""
dbset - Runtime Builders
========================
Base classes for the five builder kinds.  A concrete builder (created by
``dbset.facade`` at runtime or written out by ``dbset.templates``) sets two
class attributes:

``plan``
    the ``ShapePlan`` holding the typestate and the statements;
``row_model``
    the pydantic model result rows are decoded into.

Builders are immutable.  Every setter returns a new builder carrying a copy
of the stored values and the new slot bitset; the receiver is unchanged.
"""

from __future__ import annotations

import enum
import logging
from types import MappingProxyType
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from dbset.errors import BuilderError, MissingRequiredFieldError
from dbset.executors import Executor
from dbset.models import CompletionPath, SlotState, Statement
from dbset.shapes import ShapePlan

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.builders")

B = TypeVar("B", bound="QueryBuilder")


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------


def strip_type_annotations(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop the ``:Type`` suffix of ``"name:Type"`` result columns."""
    return {str(key).split(":", 1)[0]: value for key, value in row.items()}


def encode_value(value: Any) -> Any:
    """Prepare a Python value for positional binding."""
    if isinstance(value, enum.Enum):
        return value.value
    return value


# ---------------------------------------------------------------------------
# Base builder
# ---------------------------------------------------------------------------


class QueryBuilder:
    """Shared state handling for every builder kind."""

    __slots__ = ("_values", "_state")

    plan: ClassVar[ShapePlan]
    row_model: ClassVar[Type[BaseModel]]

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        state: int = 0,
    ) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self._state: int = state

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> int:
        """The slot bitset; bit ``i`` is set when slot ``i`` is Set."""
        return self._state

    @property
    def slot_states(self) -> Dict[str, SlotState]:
        return self.plan.typestate.slot_states(self._state)

    @property
    def values(self) -> Mapping[str, Any]:
        """Values supplied so far, keyed by field name."""
        return MappingProxyType(self._values)

    @property
    def is_complete(self) -> bool:
        return self.plan.typestate.is_complete(self._state)

    def missing_slots(self) -> List[str]:
        return self.plan.typestate.missing_slots(self._state)

    # -- transitions ---------------------------------------------------------

    def _apply(self: B, setter: str, updates: Mapping[str, Any]) -> B:
        new_state: int = self.plan.typestate.transition(self._state, setter)
        values: Dict[str, Any] = dict(self._values)
        values.update(updates)
        return type(self)(values, new_state)

    def _set(self: B, setter: str, value: Any) -> B:
        spec = self.plan.typestate.setter(setter)
        return self._apply(setter, {spec.field_name: value})

    # -- statements ----------------------------------------------------------

    def _require_complete(self) -> CompletionPath:
        path: Optional[CompletionPath] = self.plan.typestate.completed_path(self._state)
        if path is None:
            raise MissingRequiredFieldError(type(self).__name__, self.missing_slots())
        return path

    def statement(self) -> Statement:
        """The statement the terminal method would issue."""
        return self.plan.statement_for(self._require_complete())

    def bound_params(self) -> Tuple[Any, ...]:
        """Positional parameters for ``statement()``, in placeholder order."""
        statement: Statement = self.statement()
        return tuple(encode_value(v) for v in statement.bind(self._values))

    def decode_row(self, row: Mapping[str, Any]) -> BaseModel:
        return self.row_model.model_validate(strip_type_annotations(row))

    def __repr__(self) -> str:
        set_slots: List[str] = [
            name for name, st in self.slot_states.items() if st is SlotState.SET
        ]
        return (
            f"<{type(self).__name__} set={set_slots} "
            f"complete={self.is_complete}>"
        )


# ---------------------------------------------------------------------------
# Per-shape bases
# ---------------------------------------------------------------------------


class ManyQueryBuilderBase(QueryBuilder):
    """Filters are all optional; ``fetch_all`` is always available."""

    __slots__ = ()

    async def fetch_all(self, executor: Executor) -> List[BaseModel]:
        statement: Statement = self.statement()
        rows = await executor.fetch_all(statement.text, self.bound_params())
        logger.debug("%s.fetch_all → %d row(s)", type(self).__name__, len(rows))
        return [self.decode_row(r) for r in rows]


class OneQueryBuilderBase(QueryBuilder):
    """Lookup of a single row by the key path or the unique path."""

    __slots__ = ()

    async def fetch_one(self, executor: Executor) -> BaseModel:
        statement: Statement = self.statement()
        row = await executor.fetch_one(statement.text, self.bound_params())
        return self.decode_row(row)

    async def fetch_optional(self, executor: Executor) -> Optional[BaseModel]:
        statement: Statement = self.statement()
        row = await executor.fetch_optional(statement.text, self.bound_params())
        return None if row is None else self.decode_row(row)


class InsertBuilderBase(QueryBuilder):
    """
    Required fields gate ``insert``; optional fields are free.

    Optional fields that were never set are left out of the column list so
    the column default applies.
    """

    __slots__ = ()

    def statement(self) -> Statement:
        return self.plan.statement_for(self._require_complete(), self._values.keys())

    async def insert(self, executor: Executor) -> BaseModel:
        statement: Statement = self.statement()
        row = await executor.fetch_one(statement.text, self.bound_params())
        return self.decode_row(row)


class UpdateBuilderBase(QueryBuilder):
    """Full-row replacement keyed by the entity's key fields."""

    __slots__ = ()

    def data(self: B, entity: Any) -> B:
        """Supply the replacement entity (row model, mapping or object)."""
        names: List[str] = [f.name for f in self.plan.schema.fields]
        if isinstance(entity, Mapping):
            source: Mapping[str, Any] = entity
        else:
            source = {n: getattr(entity, n) for n in names if hasattr(entity, n)}
        missing: List[str] = [n for n in names if n not in source]
        if missing:
            raise BuilderError(
                f"{type(self).__name__}.data(): replacement entity lacks "
                f"field(s) {', '.join(missing)}."
            )
        return self._apply("data", {n: source[n] for n in names})

    async def update(self, executor: Executor) -> BaseModel:
        statement: Statement = self.statement()
        row = await executor.fetch_one(statement.text, self.bound_params())
        return self.decode_row(row)


class DeleteQueryBuilderBase(QueryBuilder):
    """Delete by the key path or the unique path."""

    __slots__ = ()

    async def delete(self, executor: Executor) -> None:
        statement: Statement = self.statement()
        await executor.execute(statement.text, self.bound_params())


__all__: List[str] = [
    "strip_type_annotations",
    "encode_value",
    "QueryBuilder",
    "ManyQueryBuilderBase",
    "OneQueryBuilderBase",
    "InsertBuilderBase",
    "UpdateBuilderBase",
    "DeleteQueryBuilderBase",
]
