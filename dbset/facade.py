"""
dbset - Facade Assembler
========================
Stitches the builder plans of one entity into a live ``<Entity>DbSet``
class at process start::

    UserDbSet = build_dbset(User)

    user = await UserDbSet.one().id_eq("user-1").fetch_one(executor)
    rows = await UserDbSet.many().name_eq("bob").fetch_all(executor)

``compile_entity`` returns the full ``CompiledEntity`` (schema, plans, row
model, enum types, builder classes, facade).  Results for class sources are
memoized, so every call for the same class returns the same objects.
"""

from __future__ import annotations

import datetime as _dt
import decimal
import enum
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, create_model

from dbset.analyzer import EntitySource, analyze, python_field_types, split_top_level
from dbset.builders import (
    DeleteQueryBuilderBase,
    InsertBuilderBase,
    ManyQueryBuilderBase,
    OneQueryBuilderBase,
    QueryBuilder,
    UpdateBuilderBase,
)
from dbset.errors import ConfigError
from dbset.models import EntitySchema, EnumDeclaration, Field, QueryShape, Statement
from dbset.shapes import ShapePlan, plan_shapes
from dbset.typestate import SetterSpec
from dbset.utils import to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.facade")

BUILDER_BASES: Dict[QueryShape, Type[QueryBuilder]] = {
    QueryShape.MANY: ManyQueryBuilderBase,
    QueryShape.ONE: OneQueryBuilderBase,
    QueryShape.INSERT: InsertBuilderBase,
    QueryShape.UPDATE: UpdateBuilderBase,
    QueryShape.DELETE: DeleteQueryBuilderBase,
}

# ---------------------------------------------------------------------------
# Declared-type resolution
# ---------------------------------------------------------------------------

# Type names usable in declarations: name → (import module or None, object).
PYTHON_TYPES: Dict[str, Tuple[Optional[str], Any]] = {
    "str": (None, str),
    "int": (None, int),
    "float": (None, float),
    "bool": (None, bool),
    "bytes": (None, bytes),
    "dict": (None, dict),
    "list": (None, list),
    "set": (None, set),
    "tuple": (None, tuple),
    "None": (None, type(None)),
    "Any": ("typing", Any),
    "Optional": ("typing", Optional),
    "Union": ("typing", Union),
    "List": ("typing", List),
    "Dict": ("typing", Dict),
    "Tuple": ("typing", Tuple),
    "datetime": ("datetime", _dt.datetime),
    "date": ("datetime", _dt.date),
    "time": ("datetime", _dt.time),
    "timedelta": ("datetime", _dt.timedelta),
    "Decimal": ("decimal", decimal.Decimal),
    "UUID": ("uuid", uuid.UUID),
}


def resolve_type(type_name: str, namespace: Dict[str, Any]) -> Any:
    """
    Resolve a declared type string against *namespace*.

    Supports plain names, subscripted generics and ``|`` unions.  Unknown
    names resolve to ``Any``.
    """
    text: str = type_name.strip()
    parts: List[str] = split_top_level(text, "|")
    if len(parts) > 1:
        return Union[tuple(resolve_type(p, namespace) for p in parts)]
    if text.endswith("]") and "[" in text:
        head, _, rest = text.partition("[")
        origin: Any = namespace.get(head.strip(), Any)
        if origin is Any:
            return Any
        args: List[Any] = [
            resolve_type(a, namespace) for a in split_top_level(rest[:-1], ",") if a
        ]
        return origin[tuple(args)] if len(args) > 1 else origin[args[0]]
    if text not in namespace:
        logger.debug("Unknown type %r resolves to Any", text)
    return namespace.get(text, Any)


def enum_member_name(value: str) -> str:
    name: str = to_snake_case(value).upper() or "EMPTY"
    return f"_{name}" if name[0].isdigit() else name


def build_enum(decl: EnumDeclaration) -> Type[enum.Enum]:
    """A ``str`` enum whose values are the declared database values."""
    return enum.Enum(  # type: ignore[return-value]
        decl.name, [(enum_member_name(v), v) for v in decl.values], type=str
    )


# ---------------------------------------------------------------------------
# CompiledEntity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompiledEntity:
    """Everything derived from one entity declaration."""

    schema: EntitySchema
    plans: Dict[QueryShape, ShapePlan]
    row_model: Type[BaseModel]
    enum_types: Dict[str, Type[enum.Enum]]
    builders: Dict[QueryShape, Type[QueryBuilder]]
    facade: type

    @property
    def name(self) -> str:
        return self.schema.struct_name

    def statements(self) -> List[Statement]:
        """Every statement the entity's builders can issue, canonical forms."""
        return [s for plan in self.plans.values() for s in plan.statements.values()]


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_row_model(
    schema: EntitySchema,
    enum_types: Dict[str, Type[enum.Enum]],
    python_types: Optional[Dict[str, Any]] = None,
) -> Type[BaseModel]:
    """The pydantic model result rows decode into."""
    namespace: Dict[str, Any] = {k: v for k, (_, v) in PYTHON_TYPES.items()}
    namespace.update(enum_types)
    definitions: Dict[str, Any] = {}
    for f in schema.fields:
        if python_types and f.name in python_types:
            annotation: Any = python_types[f.name]
        else:
            annotation = resolve_type(f.declared_type, namespace)
        default: Any = None if f.is_optional else ...
        definitions[f.name] = (annotation, default)
    model: Type[BaseModel] = create_model(schema.struct_name, **definitions)
    model.__doc__ = schema.description or f"Row of table ``{schema.table_name}``."
    return model


def _make_setter(class_name: str, spec: SetterSpec, f: Field) -> Callable[..., Any]:
    def setter(self: QueryBuilder, value: Any) -> QueryBuilder:
        return self._set(spec.name, value)

    setter.__name__ = spec.name
    setter.__qualname__ = f"{class_name}.{spec.name}"
    kind: str = "Filter on" if spec.is_free and spec.name.endswith("_eq") else "Set"
    setter.__doc__ = f"{kind} ``{f.name}`` ({f.value_type})."
    return setter


def build_builder_class(plan: ShapePlan, row_model: Type[BaseModel]) -> Type[QueryBuilder]:
    namespace: Dict[str, Any] = {
        "__slots__": (),
        "__doc__": f"{plan.shape.value} builder for ``{plan.schema.table_name}``.",
        "plan": plan,
        "row_model": row_model,
    }
    for spec in plan.typestate.setters:
        if spec.field_name is None:
            continue
        f: Optional[Field] = plan.schema.get_field(spec.field_name)
        namespace[spec.name] = _make_setter(plan.class_name, spec, f)
    return type(plan.class_name, (BUILDER_BASES[plan.shape],), namespace)


def _make_entry_point(builder: Type[QueryBuilder]) -> staticmethod:
    def entry() -> QueryBuilder:
        return builder()

    entry.__name__ = builder.plan.shape.value
    entry.__doc__ = f"A fresh {builder.__name__} with every slot unset."
    return staticmethod(entry)


def assemble(
    schema: EntitySchema,
    python_types: Optional[Dict[str, Any]] = None,
) -> CompiledEntity:
    """Plan every shape and build the row model, builders and facade."""
    plans: Dict[QueryShape, ShapePlan] = plan_shapes(schema)

    # Enum classes the entity class already annotates with win over built ones.
    python_enums: Dict[str, Type[enum.Enum]] = {
        value.__name__: value
        for value in (python_types or {}).values()
        if isinstance(value, type) and issubclass(value, enum.Enum)
    }
    enum_types: Dict[str, Type[enum.Enum]] = {}
    for decl in schema.enums:
        enum_types[decl.name] = python_enums.get(decl.name) or build_enum(decl)
    for name, value in python_enums.items():
        enum_types.setdefault(name, value)

    row_model: Type[BaseModel] = build_row_model(schema, enum_types, python_types)
    builders: Dict[QueryShape, Type[QueryBuilder]] = {
        shape: build_builder_class(plan, row_model) for shape, plan in plans.items()
    }

    facade_ns: Dict[str, Any] = {
        "__doc__": f"Query entry points for ``{schema.table_name}``.",
        "schema": schema,
        "row_model": row_model,
    }
    for shape, builder in builders.items():
        facade_ns[shape.value] = _make_entry_point(builder)
    facade: type = type(schema.facade_name, (), facade_ns)

    logger.info("Assembled %s with %d builder(s).", schema.facade_name, len(builders))
    return CompiledEntity(
        schema=schema,
        plans=plans,
        row_model=row_model,
        enum_types=enum_types,
        builders=builders,
        facade=facade,
    )


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

_CLASS_CACHE: Dict[type, CompiledEntity] = {}
_CACHE_LOCK: threading.Lock = threading.Lock()


def compile_entity(source: EntitySource) -> CompiledEntity:
    """
    Analyse and assemble an entity.

    Class sources are compiled once per process; dict and declaration
    sources are compiled on every call.
    """
    if not isinstance(source, type):
        return assemble(analyze(source))

    with _CACHE_LOCK:
        cached: Optional[CompiledEntity] = _CLASS_CACHE.get(source)
        if cached is None:
            schema: EntitySchema = analyze(source)
            hints: Dict[str, Any] = python_field_types(source)
            cached = assemble(schema, {f.name: hints[f.name] for f in schema.fields})
            _CLASS_CACHE[source] = cached
        return cached


def build_dbset(source: EntitySource) -> type:
    """Return the ``<Entity>DbSet`` facade class for *source*."""
    return compile_entity(source).facade


def compile_entities(sources: List[EntitySource]) -> Dict[str, CompiledEntity]:
    """Compile several entities, keyed by struct name."""
    compiled: Dict[str, CompiledEntity] = {}
    for source in sources:
        entity: CompiledEntity = compile_entity(source)
        if entity.name in compiled:
            raise ConfigError(f"Entity '{entity.name}' declared twice.")
        compiled[entity.name] = entity
    return compiled


__all__: List[str] = [
    "PYTHON_TYPES",
    "BUILDER_BASES",
    "resolve_type",
    "enum_member_name",
    "build_enum",
    "CompiledEntity",
    "build_row_model",
    "build_builder_class",
    "assemble",
    "compile_entity",
    "build_dbset",
    "compile_entities",
]
