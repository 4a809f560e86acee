"""
dbset - Schema Analyzer
=======================
Turns an entity declaration into the immutable ``EntitySchema`` every later
stage reads.

Three declaration sources are accepted:

* an ``EntityDeclaration`` instance,
* a plain mapping (a parsed YAML/JSON entity block),
* a Python class: a dataclass, a pydantic model or a plain annotated class.
  Field annotations are attached with ``typing.Annotated``::

      @dataclass
      class User:
          __dbset__ = {"table_name": "users"}

          id: Annotated[str, Key]
          name: str
          details: Optional[str]
          email: Annotated[str, Unique]
          status: Annotated[UserStatus, CustomEnum("user_status")]

Analysis is a pure function of the declaration.  Class reflection is
memoized per class for the lifetime of the process.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
import inspect
import logging
import types
import typing
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from dbset.errors import ConfigError
from dbset.models import (
    ATTRIBUTE_CATEGORIES,
    EntityDeclaration,
    EntitySchema,
    EnumDeclaration,
    Field,
    FieldCategory,
    FieldDeclaration,
)
from dbset.utils import is_python_identifier, is_sql_identifier, to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.analyzer")

# ---------------------------------------------------------------------------
# Annotation markers for class-based declarations
# ---------------------------------------------------------------------------


class FieldMarker:
    """A bare field annotation usable inside ``typing.Annotated``."""

    __slots__ = ("attribute",)

    def __init__(self, attribute: str) -> None:
        self.attribute: str = attribute

    def __repr__(self) -> str:
        return self.attribute.capitalize()


class CustomEnum:
    """
    Marks a field as backed by a database enum type.

    ``type_name`` is the database type used in ``$n::type`` casts; it
    defaults to the snake_case name of the field's Python type.
    """

    __slots__ = ("type_name",)

    def __init__(self, type_name: Optional[str] = None) -> None:
        self.type_name: Optional[str] = type_name

    def __repr__(self) -> str:
        return f"CustomEnum({self.type_name!r})"


Key: FieldMarker = FieldMarker("key")
Unique: FieldMarker = FieldMarker("unique")
Auto: FieldMarker = FieldMarker("auto")

_ENTITY_OVERRIDE_KEYS: Tuple[str, ...] = (
    "table_name",
    "facade_name",
    "set_name",
    "shapes",
    "enums",
    "description",
)

# ---------------------------------------------------------------------------
# Optional-type unwrap
# ---------------------------------------------------------------------------

_NONE_NAMES: Tuple[str, ...] = ("None", "NoneType", "type(None)")


def _strip_typing_prefix(name: str) -> str:
    for prefix in ("typing.", "t."):
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def split_top_level(text: str, sep: str) -> List[str]:
    """Split *text* on *sep* outside any ``[...]`` brackets."""
    parts: List[str] = []
    depth: int = 0
    current: List[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return parts


def _subscript(text: str, name: str) -> Optional[str]:
    """Return the bracket contents when *text* is exactly ``name[...]``."""
    if not text.startswith(name + "[") or not text.endswith("]"):
        return None
    inner: str = text[len(name) + 1:-1]
    # Reject "Optional[str] | Optional[int]"-style texts whose outer brackets
    # do not match each other.
    depth: int = 0
    for ch in inner:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth < 0:
                return None
    return inner.strip() if depth == 0 else None


def unwrap_optional(type_name: str) -> Tuple[bool, Optional[str]]:
    """
    Detect a single level of optional wrapping in a declared type.

    Returns ``(is_optional, inner_type)``.  Only the outermost wrapper is
    removed, so ``Optional[Optional[str]]`` yields ``"Optional[str]"``.

    Examples:
        >>> unwrap_optional("Optional[str]")
        (True, 'str')
        >>> unwrap_optional("None | int")
        (True, 'int')
        >>> unwrap_optional("str")
        (False, None)
    """
    text: str = _strip_typing_prefix(type_name.strip())

    inner: Optional[str] = _subscript(text, "Optional")
    if inner:
        return True, inner

    union_args: Optional[str] = _subscript(text, "Union")
    if union_args is not None:
        args: List[str] = split_top_level(union_args, ",")
        rest: List[str] = [a for a in args if a not in _NONE_NAMES]
        if rest and len(rest) < len(args):
            if len(rest) == 1:
                return True, rest[0]
            return True, f"Union[{', '.join(rest)}]"
        return False, None

    parts: List[str] = split_top_level(text, "|")
    if len(parts) > 1:
        rest = [p for p in parts if p not in _NONE_NAMES]
        if rest and len(rest) < len(parts):
            return True, " | ".join(rest)

    return False, None


# ---------------------------------------------------------------------------
# Declaration parsing
# ---------------------------------------------------------------------------


def parse_declaration(raw: Mapping[str, Any]) -> EntityDeclaration:
    """Validate a raw mapping into an ``EntityDeclaration``."""
    if not isinstance(raw, Mapping):
        raise ConfigError(
            f"Entity declaration must be a mapping, got {type(raw).__name__}."
        )
    name: Optional[str] = raw.get("name") if isinstance(raw.get("name"), str) else None
    try:
        return EntityDeclaration.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigError(f"Invalid entity declaration: {exc}", entity=name) from exc


# ---------------------------------------------------------------------------
# Field analysis
# ---------------------------------------------------------------------------


def _resolve_categories(
    decl: FieldDeclaration,
    entity: str,
) -> Tuple[frozenset, Any]:
    categories: set = set()
    enum_value: Any = None
    for attr, value in decl.attributes.items():
        category: Optional[FieldCategory] = ATTRIBUTE_CATEGORIES.get(attr)
        if category is None:
            raise ConfigError(
                f"Field '{decl.name}' has unknown attribute '{attr}'. "
                f"Allowed: {sorted(ATTRIBUTE_CATEGORIES)}.",
                entity=entity,
            )
        if category is FieldCategory.CUSTOM_ENUM:
            if value is not True and not isinstance(value, str):
                raise ConfigError(
                    f"Field '{decl.name}': custom_enum expects a database type "
                    f"name, got {type(value).__name__}.",
                    entity=entity,
                )
            enum_value = value
        elif value is not True:
            raise ConfigError(
                f"Field '{decl.name}': attribute '{attr}' takes no value "
                f"(got {value!r}).",
                entity=entity,
            )
        categories.add(category)
    return frozenset(categories), enum_value


def analyze_field(
    decl: FieldDeclaration,
    *,
    entity: str,
    enums: Tuple[EnumDeclaration, ...] = (),
) -> Field:
    """Categorise one field and unwrap its optional wrapper."""
    if not is_python_identifier(decl.name) or not is_sql_identifier(decl.name):
        raise ConfigError(
            f"Field name '{decl.name}' is not a valid identifier.", entity=entity
        )

    categories, enum_value = _resolve_categories(decl, entity)
    is_optional, inner = unwrap_optional(decl.type_name)
    value_type: str = inner if is_optional and inner else decl.type_name

    enum_type_name: Optional[str] = None
    if FieldCategory.CUSTOM_ENUM in categories:
        if isinstance(enum_value, str):
            enum_type_name = enum_value
        else:
            declared: Optional[EnumDeclaration] = next(
                (e for e in enums if e.name == value_type), None
            )
            enum_type_name = (
                declared.resolved_type_name if declared else to_snake_case(value_type)
            )
        if not is_sql_identifier(enum_type_name):
            raise ConfigError(
                f"Field '{decl.name}': enum type '{enum_type_name}' is not a "
                f"valid SQL identifier.",
                entity=entity,
            )

    field_model: Field = Field(
        name=decl.name,
        declared_type=decl.type_name,
        is_optional=is_optional,
        inner_type=inner,
        categories=categories,
        enum_type_name=enum_type_name,
        description=decl.description,
    )
    logger.debug("[%s] analysed %r", entity, field_model)
    return field_model


# ---------------------------------------------------------------------------
# Entity analysis
# ---------------------------------------------------------------------------


def analyze_declaration(decl: EntityDeclaration) -> EntitySchema:
    """Analyse a validated declaration into an ``EntitySchema``."""
    entity: str = decl.name
    if not is_python_identifier(entity):
        raise ConfigError(f"Entity name '{entity}' is not a valid identifier.")

    if not decl.fields:
        raise ConfigError(
            "Entity is not a record with named fields (no fields declared).",
            entity=entity,
        )

    table_name: str = decl.table_name or entity.lower()
    if not is_sql_identifier(table_name):
        raise ConfigError(
            f"Table name '{table_name}' is not a valid SQL identifier.",
            entity=entity,
        )

    facade_name: str = decl.facade_name or f"{entity}DbSet"
    if not is_python_identifier(facade_name):
        raise ConfigError(
            f"Facade name '{facade_name}' is not a valid identifier.",
            entity=entity,
        )

    seen: set = set()
    for fd in decl.fields:
        if fd.name in seen:
            raise ConfigError(f"Duplicate field name '{fd.name}'.", entity=entity)
        seen.add(fd.name)

    enums: Tuple[EnumDeclaration, ...] = tuple(decl.enums)
    fields: Tuple[Field, ...] = tuple(
        analyze_field(fd, entity=entity, enums=enums) for fd in decl.fields
    )

    schema: EntitySchema = EntitySchema(
        struct_name=entity,
        table_name=table_name,
        facade_name=facade_name,
        fields=fields,
        shapes=tuple(decl.shapes),
        enums=enums,
        description=decl.description,
    )
    logger.info(
        "Analysed entity %s: %d fields (%d key, %d unique, %d auto).",
        entity,
        len(fields),
        len(schema.key_fields),
        len(schema.unique_fields),
        len(schema.auto_fields),
    )
    return schema


# ---------------------------------------------------------------------------
# Class reflection
# ---------------------------------------------------------------------------


def _type_repr(tp: Any) -> str:
    if tp is type(None):
        return "None"
    if isinstance(tp, type):
        return tp.__name__
    return _strip_typing_prefix(repr(tp)).replace("typing.", "")


def _render_declared_type(tp: Any) -> str:
    origin: Any = typing.get_origin(tp)
    args: Tuple[Any, ...] = typing.get_args(tp)
    if origin is Union or _is_union_type(origin):
        rest: List[Any] = [a for a in args if a is not type(None)]
        if len(rest) < len(args):
            if len(rest) == 1:
                return f"Optional[{_type_repr(rest[0])}]"
            return f"Optional[Union[{', '.join(_type_repr(a) for a in rest)}]]"
    return _type_repr(tp)


def _is_union_type(origin: Any) -> bool:
    return origin is types.UnionType


def _record_field_names(cls: type) -> List[str]:
    if dataclasses.is_dataclass(cls):
        return [f.name for f in dataclasses.fields(cls)]
    if issubclass(cls, BaseModel):
        return list(cls.model_fields)
    names: List[str] = []
    for klass in reversed(cls.__mro__):
        for name in inspect.get_annotations(klass):
            if not name.startswith("_") and name not in names:
                names.append(name)
    return names


def _class_hints(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls, include_extras=True)
    except (NameError, TypeError) as exc:
        raise ConfigError(
            f"Cannot resolve type annotations: {exc}", entity=cls.__name__
        ) from exc


def _split_annotated(hint: Any) -> Tuple[Any, Tuple[Any, ...]]:
    if typing.get_origin(hint) is typing.Annotated:
        base, *extras = typing.get_args(hint)
        return base, tuple(extras)
    return hint, ()


def _enum_from_python(tp: Any, type_name: Optional[str]) -> Optional[EnumDeclaration]:
    base: Any = tp
    origin: Any = typing.get_origin(tp)
    if origin is Union or _is_union_type(origin):
        rest: List[Any] = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(rest) == 1:
            base = rest[0]
    if isinstance(base, type) and issubclass(base, enum.Enum):
        return EnumDeclaration(
            name=base.__name__,
            type_name=type_name,
            values=[str(m.value) for m in base],
        )
    return None


def declaration_from_class(cls: type) -> EntityDeclaration:
    """Reflect a record class into an ``EntityDeclaration``."""
    if not isinstance(cls, type):
        raise ConfigError(
            f"Expected a class, got {type(cls).__name__}; entity is not a "
            f"record with named fields."
        )

    names: List[str] = [
        n for n in _record_field_names(cls) if not n.startswith("_")
    ]
    hints: Dict[str, Any] = _class_hints(cls)
    names = [
        n for n in names
        if n in hints and typing.get_origin(hints[n]) is not typing.ClassVar
    ]
    if not names:
        raise ConfigError(
            "Entity is not a record with named fields.", entity=cls.__name__
        )

    overrides: Any = getattr(cls, "__dbset__", {}) or {}
    if not isinstance(overrides, Mapping):
        raise ConfigError("__dbset__ must be a mapping.", entity=cls.__name__)
    unknown: List[str] = [k for k in overrides if k not in _ENTITY_OVERRIDE_KEYS]
    if unknown:
        raise ConfigError(
            f"Unknown __dbset__ keys {unknown}. Allowed: {list(_ENTITY_OVERRIDE_KEYS)}.",
            entity=cls.__name__,
        )
    for key in ("table_name", "facade_name", "set_name"):
        if key in overrides and not isinstance(overrides[key], str):
            raise ConfigError(
                f"__dbset__['{key}'] must be a string, got "
                f"{type(overrides[key]).__name__}.",
                entity=cls.__name__,
            )

    fields: List[Dict[str, Any]] = []
    enums: Dict[str, EnumDeclaration] = {}
    for name in names:
        base, extras = _split_annotated(hints[name])
        attributes: Dict[str, Any] = {}
        for extra in extras:
            if isinstance(extra, FieldMarker):
                attributes[extra.attribute] = True
            elif isinstance(extra, CustomEnum):
                attributes["custom_enum"] = extra.type_name or True
                found: Optional[EnumDeclaration] = _enum_from_python(base, extra.type_name)
                if found is not None:
                    enums.setdefault(found.name, found)
        fields.append(
            {"name": name, "type": _render_declared_type(base), "attributes": attributes}
        )

    raw: Dict[str, Any] = {"name": cls.__name__, "fields": fields}
    raw.update({k: v for k, v in overrides.items() if k != "enums"})
    declared_enums: List[Any] = list(overrides.get("enums", []))
    declared_names: set = {
        e.name if isinstance(e, EnumDeclaration) else e.get("name")
        for e in declared_enums
    }
    declared_enums.extend(e for n, e in enums.items() if n not in declared_names)
    raw["enums"] = declared_enums
    if cls.__doc__ and "description" not in raw and not dataclasses.is_dataclass(cls):
        raw["description"] = cls.__doc__.strip()
    return parse_declaration(raw)


@functools.lru_cache(maxsize=None)
def _analyze_class_cached(cls: type) -> EntitySchema:
    logger.debug("Reflecting class %s.%s", cls.__module__, cls.__qualname__)
    return analyze_declaration(declaration_from_class(cls))


def python_field_types(cls: type) -> Dict[str, Any]:
    """Return each record field's Python type with ``Annotated`` extras removed."""
    hints: Dict[str, Any] = _class_hints(cls)
    return {name: _split_annotated(hint)[0] for name, hint in hints.items()}


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

EntitySource = Union[EntityDeclaration, Mapping[str, Any], type]


def analyze(source: EntitySource) -> EntitySchema:
    """
    Analyse any supported declaration source into an ``EntitySchema``.

    Raises:
        ConfigError: the source is not a record with named fields, or an
            annotation is malformed.
    """
    if isinstance(source, EntitySchema):
        return source
    if isinstance(source, EntityDeclaration):
        return analyze_declaration(source)
    if isinstance(source, type):
        return _analyze_class_cached(source)
    if isinstance(source, Mapping):
        return analyze_declaration(parse_declaration(source))
    raise ConfigError(
        f"Cannot analyse {type(source).__name__}: entity is not a record with "
        f"named fields."
    )


__all__: List[str] = [
    "FieldMarker",
    "CustomEnum",
    "Key",
    "Unique",
    "Auto",
    "EntitySource",
    "split_top_level",
    "unwrap_optional",
    "parse_declaration",
    "analyze_field",
    "analyze_declaration",
    "declaration_from_class",
    "python_field_types",
    "analyze",
]
