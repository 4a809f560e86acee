"""
dbset - Core Data Models
========================
Pydantic V2 models for every stage of the pipeline:

    Declaration (raw input) → EntitySchema (analysed) → Statement (compiled)

Declarations are the permissive, user-facing shape of an entity (what a YAML
file or an annotated class provides).  ``Field`` and ``EntitySchema`` are the
analysed, frozen form produced once by ``dbset.analyzer`` and read-only
afterwards.  ``Statement`` is one parameterized SQL text plus the ordered list
of fields bound to its placeholders.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field as PydanticField,
    computed_field,
    field_validator,
    model_validator,
)

from dbset.utils import is_python_identifier, to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.models")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FieldCategory(str, Enum):
    """Per-field metadata annotations.  No category means *Regular*."""

    KEY = "key"
    UNIQUE = "unique"
    AUTO = "auto"
    CUSTOM_ENUM = "custom_enum"


class QueryShape(str, Enum):
    """The five statement shapes generated for every entity."""

    MANY = "many"
    ONE = "one"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


ALL_SHAPES: Tuple[QueryShape, ...] = (
    QueryShape.MANY,
    QueryShape.ONE,
    QueryShape.INSERT,
    QueryShape.UPDATE,
    QueryShape.DELETE,
)


class SlotState(str, Enum):
    """Two-valued state of a required builder slot."""

    UNSET = "unset"
    SET = "set"


class CompletionPath(str, Enum):
    """Name of the route by which a builder reached a terminal method."""

    ALL = "all"
    KEY = "key"
    UNIQUE = "unique"
    DATA = "data"


# Annotation names accepted on a field, mapped to their category.
ATTRIBUTE_CATEGORIES: Dict[str, FieldCategory] = {
    "key": FieldCategory.KEY,
    "unique": FieldCategory.UNIQUE,
    "auto": FieldCategory.AUTO,
    "custom_enum": FieldCategory.CUSTOM_ENUM,
}

# ---------------------------------------------------------------------------
# Shared model configuration
# ---------------------------------------------------------------------------

_DECLARATION_CONFIG: ConfigDict = ConfigDict(
    populate_by_name=True,
    validate_assignment=True,
    extra="forbid",
)

_FROZEN_CONFIG: ConfigDict = ConfigDict(
    frozen=True,
    extra="forbid",
)


# ---------------------------------------------------------------------------
# Declarations (raw input)
# ---------------------------------------------------------------------------


class FieldDeclaration(BaseModel):
    """
    One field of an entity as written by the entity author.

    ``attributes`` accepts a list of annotation names (``[key, auto]``), a
    mapping (``{custom_enum: user_status}``) or a single name.  The boolean
    shortcuts ``key: true`` / ``unique: true`` / ``auto: true`` and
    ``custom_enum: <db type>`` are folded into ``attributes``.
    """

    model_config = _DECLARATION_CONFIG

    name: str = PydanticField(..., min_length=1, description="Field name.")
    type_name: str = PydanticField(
        ...,
        min_length=1,
        validation_alias=AliasChoices("type", "type_name"),
        description="Declared type, e.g. 'str', 'Optional[str]', 'UserStatus'.",
    )
    attributes: Dict[str, Any] = PydanticField(
        default_factory=dict,
        description="Annotation name → value (True for bare annotations).",
    )
    description: Optional[str] = PydanticField(default=None, description="Field doc.")

    @model_validator(mode="before")
    @classmethod
    def _fold_shortcut_flags(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        attrs: Any = data.get("attributes", {})
        folded: Dict[str, Any] = dict(_normalise_attributes(attrs))
        for name in ATTRIBUTE_CATEGORIES:
            if name in data:
                value: Any = data.pop(name)
                if value is not False and value is not None:
                    folded[name] = value
        data["attributes"] = folded
        return data

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, v: Any) -> Dict[str, Any]:
        return _normalise_attributes(v)


def _normalise_attributes(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return {value: True}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        result: Dict[str, Any] = {}
        for item in value:
            if isinstance(item, Mapping):
                result.update(item)
            else:
                result[item] = True
        return result
    raise ValueError(
        f"attributes must be a list, mapping or string, got {type(value).__name__}"
    )


class EnumDeclaration(BaseModel):
    """A database enum type backing one or more ``custom_enum`` fields."""

    model_config = _DECLARATION_CONFIG

    name: str = PydanticField(..., min_length=1, description="Python type name.")
    type_name: Optional[str] = PydanticField(
        default=None, description="Database type name (default: snake_case of name)."
    )
    values: List[str] = PydanticField(
        ..., min_length=1, description="Allowed values for this enum."
    )

    @field_validator("values")
    @classmethod
    def _unique_values(cls, v: List[str]) -> List[str]:
        if len(v) != len(set(v)):
            dupes: List[str] = sorted({x for x in v if v.count(x) > 1})
            raise ValueError(f"Duplicate enum values detected: {dupes}")
        return v

    @property
    def resolved_type_name(self) -> str:
        return self.type_name or to_snake_case(self.name)


class EntityDeclaration(BaseModel):
    """An entity (record) as declared in a schema file or reflected from a class."""

    model_config = _DECLARATION_CONFIG

    name: str = PydanticField(..., min_length=1, description="Record / struct name.")
    table_name: Optional[str] = PydanticField(
        default=None, description="Table name override (default: lowercase name)."
    )
    facade_name: Optional[str] = PydanticField(
        default=None,
        validation_alias=AliasChoices("facade_name", "set_name"),
        description="Facade class name override (default: <Name>DbSet).",
    )
    fields: List[FieldDeclaration] = PydanticField(
        default_factory=list, description="Ordered field declarations."
    )
    shapes: List[QueryShape] = PydanticField(
        default_factory=lambda: list(ALL_SHAPES),
        description="Query shapes to generate for this entity.",
    )
    enums: List[EnumDeclaration] = PydanticField(
        default_factory=list, description="Enum types used by custom_enum fields."
    )
    description: Optional[str] = PydanticField(default=None, description="Entity doc.")

    @field_validator("shapes")
    @classmethod
    def _no_duplicate_shapes(cls, v: List[QueryShape]) -> List[QueryShape]:
        if len(v) != len(set(v)):
            raise ValueError(f"Duplicate shapes: {[s.value for s in v]}")
        return v


# ---------------------------------------------------------------------------
# Analysed model
# ---------------------------------------------------------------------------


class Field(BaseModel):
    """
    One analysed field.

    ``is_optional`` / ``inner_type`` come from a single-level unwrap of the
    declared type; ``categories`` is empty for a regular field.
    """

    model_config = _FROZEN_CONFIG

    name: str
    declared_type: str
    is_optional: bool = False
    inner_type: Optional[str] = None
    categories: FrozenSet[FieldCategory] = frozenset()
    enum_type_name: Optional[str] = None
    description: Optional[str] = None

    @property
    def is_key(self) -> bool:
        return FieldCategory.KEY in self.categories

    @property
    def is_unique(self) -> bool:
        return FieldCategory.UNIQUE in self.categories

    @property
    def is_auto(self) -> bool:
        return FieldCategory.AUTO in self.categories

    @property
    def is_custom_enum(self) -> bool:
        return FieldCategory.CUSTOM_ENUM in self.categories

    @property
    def is_regular(self) -> bool:
        return not self.categories

    @property
    def value_type(self) -> str:
        """The type a setter accepts: the inner type for optional fields."""
        return self.inner_type if self.is_optional and self.inner_type else self.declared_type

    def __repr__(self) -> str:
        cats: str = ",".join(sorted(c.value for c in self.categories)) or "regular"
        opt: str = "?" if self.is_optional else ""
        return f"<Field {self.name}: {self.declared_type}{opt} [{cats}]>"


class EntitySchema(BaseModel):
    """
    Immutable field-and-metadata model of one entity.

    Built once by the analyser; every later stage only reads it.
    """

    model_config = _FROZEN_CONFIG

    struct_name: str
    table_name: str
    facade_name: str
    fields: Tuple[Field, ...]
    shapes: Tuple[QueryShape, ...] = ALL_SHAPES
    enums: Tuple[EnumDeclaration, ...] = ()
    description: Optional[str] = None

    @computed_field  # type: ignore[misc]
    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def key_fields(self) -> List[Field]:
        return [f for f in self.fields if f.is_key]

    @property
    def unique_fields(self) -> List[Field]:
        """Unique fields that are not also keys (a key always wins)."""
        return [f for f in self.fields if f.is_unique and not f.is_key]

    @property
    def auto_fields(self) -> List[Field]:
        return [f for f in self.fields if f.is_auto]

    @property
    def custom_enum_fields(self) -> List[Field]:
        return [f for f in self.fields if f.is_custom_enum]

    def get_field(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_enum(self, name: str) -> Optional[EnumDeclaration]:
        for e in self.enums:
            if e.name == name:
                return e
        return None

    def has_shape(self, shape: QueryShape) -> bool:
        return shape in self.shapes

    def to_declaration(self) -> Dict[str, Any]:
        """A plain-data declaration that analyses back to this schema."""
        fields: List[Dict[str, Any]] = []
        for f in self.fields:
            attributes: Dict[str, Any] = {
                name: True
                for name, category in ATTRIBUTE_CATEGORIES.items()
                if category in f.categories and category is not FieldCategory.CUSTOM_ENUM
            }
            if f.is_custom_enum:
                attributes["custom_enum"] = f.enum_type_name
            entry: Dict[str, Any] = {"name": f.name, "type": f.declared_type}
            if attributes:
                entry["attributes"] = attributes
            fields.append(entry)
        declaration: Dict[str, Any] = {
            "name": self.struct_name,
            "table_name": self.table_name,
            "facade_name": self.facade_name,
            "fields": fields,
            "shapes": [s.value for s in self.shapes],
        }
        if self.enums:
            declaration["enums"] = [
                {"name": e.name, "type_name": e.resolved_type_name, "values": list(e.values)}
                for e in self.enums
            ]
        return declaration

    def __repr__(self) -> str:
        return (
            f"<EntitySchema {self.struct_name} → {self.table_name} "
            f"({len(self.fields)} fields, facade {self.facade_name})>"
        )


# ---------------------------------------------------------------------------
# Compiled statement
# ---------------------------------------------------------------------------


class Statement(BaseModel):
    """
    One static parameterized SQL statement.

    ``params`` lists field names in placeholder order: ``params[0]`` binds
    ``$1`` and so on.
    """

    model_config = _FROZEN_CONFIG

    shape: QueryShape
    path: CompletionPath
    text: str
    params: Tuple[str, ...] = ()

    def bind(self, values: Mapping[str, Any]) -> Tuple[Any, ...]:
        """Return the positional parameters; missing values bind as ``None``."""
        return tuple(values.get(name) for name in self.params)

    def __str__(self) -> str:
        return self.text


# ---------------------------------------------------------------------------
# Code generation configuration
# ---------------------------------------------------------------------------


class GenerationConfig(BaseModel):
    """Settings for the build-time source generator."""

    model_config = _DECLARATION_CONFIG

    package_name: str = PydanticField(
        default="dbsets",
        min_length=1,
        description="Name of the generated Python package.",
    )
    output_dir: str = PydanticField(
        default="./generated", description="Root directory for generated code."
    )
    overwrite_existing: bool = PydanticField(
        default=False, description="Overwrite files that already exist."
    )
    generate_init: bool = PydanticField(
        default=True, description="Write an __init__.py re-exporting every facade."
    )
    include_sql_in_docstrings: bool = PydanticField(
        default=True, description="Show each builder's statements in its docstring."
    )
    write_manifest: bool = PydanticField(
        default=True, description="Write dbset_manifest.json next to the code."
    )

    @field_validator("package_name")
    @classmethod
    def _package_is_identifier(cls, v: str) -> str:
        if not is_python_identifier(v):
            raise ValueError(f"package_name {v!r} is not a valid Python identifier.")
        return v


__all__: List[str] = [
    "FieldCategory",
    "QueryShape",
    "ALL_SHAPES",
    "SlotState",
    "CompletionPath",
    "ATTRIBUTE_CATEGORIES",
    "FieldDeclaration",
    "EnumDeclaration",
    "EntityDeclaration",
    "Field",
    "EntitySchema",
    "Statement",
    "GenerationConfig",
]

logger.debug("dbset.models loaded — %d public symbols.", len(__all__))
