"""
dbset - Entity & Configuration Validators
=========================================
Cross-entity semantic checks run before code generation.

Pydantic handles the structure of each declaration and the analyser rejects
malformed entities one at a time.  This module adds checks that need the
whole schema file (duplicate names across entities) and suspicious but legal
declarations (warnings), and reports analyser failures as issues instead of
exceptions so the user sees every problem in one run.

Usage:
    from dbset.validators import validate_full
    result = validate_full(entities, config)
    if not result.is_valid:
        print(result.format_report())
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from dbset.analyzer import analyze_declaration
from dbset.errors import GenerationError
from dbset.models import EntityDeclaration, EntitySchema, GenerationConfig, QueryShape
from dbset.shapes import plan_shapes
from dbset.typestate import many_filter_fields
from dbset.utils import to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.validators")

# ---------------------------------------------------------------------------
# Validation result container
# ---------------------------------------------------------------------------


class ValidationIssue:
    """Lightweight issue descriptor."""

    __slots__ = ("level", "code", "message", "context")

    def __init__(
        self,
        level: str,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.level: str = level  # "error" | "warning" | "info"
        self.code: str = code
        self.message: str = message
        self.context: Dict[str, Any] = context or {}

    @property
    def is_error(self) -> bool:
        return self.level == "error"

    @property
    def is_warning(self) -> bool:
        return self.level == "warning"

    def __repr__(self) -> str:
        return f"[{self.level.upper()}] {self.code}: {self.message}"

    def __str__(self) -> str:
        return self.__repr__()


class ValidationResult:
    """Accumulates ``ValidationIssue`` instances."""

    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: List[ValidationIssue] = []

    def add_error(self, code: str, message: str,
                  context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("error", code, message, context))

    def add_warning(self, code: str, message: str,
                    context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("warning", code, message, context))

    def add_info(self, code: str, message: str,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self._items.append(ValidationIssue("info", code, message, context))

    def merge(self, other: "ValidationResult") -> None:
        self._items.extend(other._items)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_error]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [e for e in self._items if e.is_warning]

    @property
    def all_items(self) -> List[ValidationIssue]:
        return list(self._items)

    @property
    def has_errors(self) -> bool:
        return any(e.is_error for e in self._items)

    @property
    def has_warnings(self) -> bool:
        return any(e.is_warning for e in self._items)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    def codes(self) -> List[str]:
        return [e.code for e in self._items]

    def summary(self) -> str:
        return (
            f"Validation: {len(self.errors)} error(s), "
            f"{len(self.warnings)} warning(s), "
            f"{len(self._items)} total item(s)."
        )

    def __repr__(self) -> str:
        return f"<ValidationResult {self.summary()}>"

    def __bool__(self) -> bool:
        """Truthy when there are no errors."""
        return self.is_valid

    def __len__(self) -> int:
        return len(self._items)

    def format_report(self, include_info: bool = False) -> str:
        lines: List[str] = [self.summary(), ""]
        for item in self._items:
            if not include_info and item.level == "info":
                continue
            prefix: str = {"error": "✗", "warning": "⚠", "info": "ℹ"}.get(item.level, "•")
            lines.append(f"  {prefix} [{item.code}] {item.message}")
            for k, v in item.context.items():
                lines.append(f"       {k}: {v}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Reserved words
# ---------------------------------------------------------------------------

# Identifiers are interpolated unquoted, so these trip most SQL parsers.
_SQL_RESERVED_WORDS: FrozenSet[str] = frozenset(
    {
        "select", "insert", "update", "delete", "from", "where", "join",
        "and", "or", "not", "null", "true", "false", "in", "is", "as",
        "order", "by", "group", "having", "limit", "offset", "union", "all",
        "distinct", "case", "when", "then", "else", "end", "table", "column",
        "primary", "foreign", "references", "check", "default", "unique",
        "set", "values", "into", "user", "returning", "with",
    }
)


def _error_code(exc: GenerationError) -> str:
    return to_snake_case(type(exc).__name__).upper()


# ---------------------------------------------------------------------------
# Individual validators
# ---------------------------------------------------------------------------


def validate_unique_names(entities: Sequence[EntityDeclaration]) -> ValidationResult:
    """Entity, facade, table and module names must be unique across the file."""
    result: ValidationResult = ValidationResult()

    def report(code: str, label: str, values: List[str]) -> None:
        for value, count in Counter(values).items():
            if count > 1:
                result.add_error(
                    code,
                    f"{label} '{value}' is declared {count} times.",
                    {label.lower().replace(" ", "_"): value},
                )

    report("DUPLICATE_ENTITY", "Entity name", [e.name for e in entities])
    report("DUPLICATE_FACADE", "Facade name",
           [e.facade_name or f"{e.name}DbSet" for e in entities])
    report("DUPLICATE_TABLE", "Table name",
           [e.table_name or e.name.lower() for e in entities])

    modules: List[str] = [to_snake_case(e.name) for e in entities]
    names: List[str] = [e.name for e in entities]
    for module, count in Counter(modules).items():
        clashing: List[str] = sorted({n for n, m in zip(names, modules) if m == module})
        if count > 1 and len(clashing) > 1:
            result.add_error(
                "MODULE_NAME_CLASH",
                f"Entities {clashing} would all be written to '{module}.py'.",
                {"module": module},
            )
    return result


def validate_compilation(
    entities: Sequence[EntityDeclaration],
) -> Tuple[ValidationResult, List[EntitySchema]]:
    """
    Analyse every entity and plan its builders.

    Generation errors become issues; the schemas that compiled are returned
    for the remaining checks.
    """
    result: ValidationResult = ValidationResult()
    schemas: List[EntitySchema] = []
    for decl in entities:
        try:
            schema: EntitySchema = analyze_declaration(decl)
            plan_shapes(schema)
        except GenerationError as exc:
            result.add_error(_error_code(exc), str(exc), {"entity": decl.name})
            continue
        schemas.append(schema)
    return result, schemas


def validate_optional_unique(schemas: Sequence[EntitySchema]) -> ValidationResult:
    """Unique lookups bind ``(f = $n OR $n IS NULL)``, so NULLs match loosely."""
    result: ValidationResult = ValidationResult()
    for schema in schemas:
        for f in schema.unique_fields:
            if f.is_optional:
                result.add_warning(
                    "OPTIONAL_UNIQUE_FIELD",
                    f"{schema.struct_name}.{f.name} is Optional and Unique; a unique "
                    f"lookup that supplies it as None matches any row.",
                    {"entity": schema.struct_name, "field": f.name},
                )
    return result


def validate_many_filters(schemas: Sequence[EntitySchema]) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for schema in schemas:
        if schema.has_shape(QueryShape.MANY) and not many_filter_fields(schema):
            result.add_warning(
                "MANY_WITHOUT_FILTERS",
                f"{schema.struct_name}: the many() builder has no filterable fields "
                f"and always fetches the whole table.",
                {"entity": schema.struct_name},
            )
    return result


def validate_enums(schemas: Sequence[EntitySchema]) -> ValidationResult:
    """Custom-enum fields without a declared enum decode as plain strings."""
    result: ValidationResult = ValidationResult()
    for schema in schemas:
        declared: Dict[str, Any] = {e.name: e for e in schema.enums}
        used: set = set()
        for f in schema.custom_enum_fields:
            if f.value_type in declared:
                used.add(f.value_type)
            else:
                result.add_info(
                    "UNDECLARED_ENUM",
                    f"{schema.struct_name}.{f.name}: no enum '{f.value_type}' declared; "
                    f"values decode as str.",
                    {"entity": schema.struct_name, "field": f.name},
                )
        for name in sorted(set(declared) - used):
            result.add_warning(
                "UNUSED_ENUM",
                f"{schema.struct_name}: enum '{name}' is not used by any custom_enum field.",
                {"entity": schema.struct_name, "enum": name},
            )
    return result


def validate_reserved_words(schemas: Sequence[EntitySchema]) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    for schema in schemas:
        if schema.table_name.lower() in _SQL_RESERVED_WORDS:
            result.add_warning(
                "SQL_RESERVED_TABLE",
                f"Table name '{schema.table_name}' is an SQL reserved word.",
                {"entity": schema.struct_name},
            )
        for f in schema.fields:
            if f.name.lower() in _SQL_RESERVED_WORDS:
                result.add_warning(
                    "SQL_RESERVED_FIELD",
                    f"{schema.struct_name}.{f.name} is an SQL reserved word.",
                    {"entity": schema.struct_name, "field": f.name},
                )
    return result


def validate_generation_config(config: GenerationConfig) -> ValidationResult:
    result: ValidationResult = ValidationResult()
    if config.package_name == "dbset":
        result.add_error(
            "PACKAGE_SHADOWS_DBSET",
            "package_name 'dbset' would shadow the dbset runtime package.",
        )
    if not config.output_dir.strip():
        result.add_error("EMPTY_OUTPUT_DIR", "output_dir must not be empty.")
    return result


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


def validate_full(
    entities: Sequence[EntityDeclaration],
    config: GenerationConfig,
) -> ValidationResult:
    """Run every validator; the single call the generator and CLI make."""
    logger.info("Starting full validation — %d entities.", len(entities))
    result: ValidationResult = ValidationResult()

    if not entities:
        result.add_error("NO_ENTITIES", "The schema declares no entities.")

    result.merge(validate_unique_names(entities))
    compiled, schemas = validate_compilation(entities)
    result.merge(compiled)
    result.merge(validate_optional_unique(schemas))
    result.merge(validate_many_filters(schemas))
    result.merge(validate_enums(schemas))
    result.merge(validate_reserved_words(schemas))
    result.merge(validate_generation_config(config))

    if result.has_errors:
        logger.error("Validation FAILED. %s", result.summary())
    else:
        logger.info("Validation PASSED. %s", result.summary())
    return result


__all__: List[str] = [
    "ValidationIssue",
    "ValidationResult",
    "validate_unique_names",
    "validate_compilation",
    "validate_optional_unique",
    "validate_many_filters",
    "validate_enums",
    "validate_reserved_words",
    "validate_generation_config",
    "validate_full",
]

logger.debug("dbset.validators loaded — %d public symbols.", len(__all__))
