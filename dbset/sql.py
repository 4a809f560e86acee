"""
dbset - SQL Template Assembler
==============================
Builds the static, parameterized statement text for each query shape.

Rules shared by every statement:

- Only schema-controlled identifiers (table and field names) are
  interpolated; every value is bound positionally as ``$n``.
- Placeholder numbering is local to one statement and follows the order of
  that statement's field list.
- A bound value for a ``custom_enum`` field is cast explicitly
  (``$n::user_status``) and a ``custom_enum`` column in a ``SELECT`` or
  ``RETURNING`` list is annotated as ``status AS "status:UserStatus"``.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from dbset.errors import SqlError
from dbset.models import CompletionPath, EntitySchema, Field, QueryShape, Statement
from dbset.utils import is_sql_identifier

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.sql")

# ---------------------------------------------------------------------------
# Clause helpers
# ---------------------------------------------------------------------------


def _check_identifiers(table_name: str, fields: Iterable[Field]) -> None:
    if not is_sql_identifier(table_name):
        raise SqlError(f"Refusing to interpolate table name {table_name!r}.")
    for f in fields:
        if not is_sql_identifier(f.name):
            raise SqlError(f"Refusing to interpolate field name {f.name!r}.")


def column_expr(f: Field) -> str:
    """A ``SELECT`` / ``RETURNING`` list entry for *f*."""
    if f.is_custom_enum:
        return f'{f.name} AS "{f.name}:{f.value_type}"'
    return f.name


def select_list(fields: Sequence[Field]) -> str:
    return ", ".join(column_expr(f) for f in fields)


def placeholder(position: int, f: Field) -> str:
    """``$n``, cast to the database enum type for ``custom_enum`` fields."""
    if f.is_custom_enum and f.enum_type_name:
        return f"${position}::{f.enum_type_name}"
    return f"${position}"


def strict_conditions(fields: Sequence[Field], start: int = 1) -> List[str]:
    """``name = $n`` for each field, numbered from *start*."""
    return [f"{f.name} = {placeholder(start + i, f)}" for i, f in enumerate(fields)]


def optional_conditions(fields: Sequence[Field], start: int = 1) -> List[str]:
    """``(name = $n OR $n IS NULL)`` for each field, numbered from *start*."""
    return [
        f"({f.name} = {placeholder(start + i, f)} OR ${start + i} IS NULL)"
        for i, f in enumerate(fields)
    ]


def where_clause(conditions: Sequence[str]) -> str:
    if not conditions:
        return ""
    return " WHERE " + " AND ".join(conditions)


# ---------------------------------------------------------------------------
# Per-shape assembly
# ---------------------------------------------------------------------------


def many_statement(schema: EntitySchema, filters: Sequence[Field]) -> Statement:
    """``SELECT`` with one optional-equality condition per filter field."""
    _check_identifiers(schema.table_name, schema.fields)
    text: str = (
        f"SELECT {select_list(schema.fields)} FROM {schema.table_name}"
        f"{where_clause(optional_conditions(filters))}"
    )
    return Statement(
        shape=QueryShape.MANY,
        path=CompletionPath.ALL,
        text=text,
        params=tuple(f.name for f in filters),
    )


def _lookup_conditions(
    schema: EntitySchema, path: CompletionPath
) -> Tuple[List[str], Tuple[str, ...]]:
    if path is CompletionPath.KEY:
        keys: List[Field] = schema.key_fields
        if not keys:
            raise SqlError("Key path requested but the entity has no key fields.",
                           entity=schema.struct_name)
        return strict_conditions(keys), tuple(f.name for f in keys)
    if path is CompletionPath.UNIQUE:
        uniques: List[Field] = schema.unique_fields
        if not uniques:
            raise SqlError("Unique path requested but the entity has no unique fields.",
                           entity=schema.struct_name)
        return optional_conditions(uniques), tuple(f.name for f in uniques)
    raise SqlError(f"Lookup statements have no '{path.value}' path.",
                   entity=schema.struct_name)


def one_statement(schema: EntitySchema, path: CompletionPath) -> Statement:
    """``SELECT`` of a single row by the key path or the unique path."""
    _check_identifiers(schema.table_name, schema.fields)
    conditions, params = _lookup_conditions(schema, path)
    text: str = (
        f"SELECT {select_list(schema.fields)} FROM {schema.table_name}"
        f"{where_clause(conditions)}"
    )
    return Statement(shape=QueryShape.ONE, path=path, text=text, params=params)


def delete_statement(schema: EntitySchema, path: CompletionPath) -> Statement:
    _check_identifiers(schema.table_name, schema.fields)
    conditions, params = _lookup_conditions(schema, path)
    text: str = f"DELETE FROM {schema.table_name}{where_clause(conditions)}"
    return Statement(shape=QueryShape.DELETE, path=path, text=text, params=params)


def insert_columns(
    schema: EntitySchema,
    supplied: Optional[Iterable[str]] = None,
) -> List[Field]:
    """
    The insert column list in declaration order.

    Auto fields are never inserted.  Optional fields are only inserted when
    named in *supplied*; ``None`` means every optional field (the canonical
    statement).
    """
    wanted: Optional[frozenset] = None if supplied is None else frozenset(supplied)
    return [
        f for f in schema.fields
        if not f.is_auto and (not f.is_optional or wanted is None or f.name in wanted)
    ]


def insert_statement(
    schema: EntitySchema,
    supplied: Optional[Iterable[str]] = None,
) -> Statement:
    """``INSERT ... RETURNING`` every field."""
    columns: List[Field] = insert_columns(schema, supplied)
    if not columns:
        raise SqlError("Insert requested but every field is auto-generated.",
                       entity=schema.struct_name)
    _check_identifiers(schema.table_name, schema.fields)
    values: str = ", ".join(placeholder(i + 1, f) for i, f in enumerate(columns))
    text: str = (
        f"INSERT INTO {schema.table_name}({', '.join(f.name for f in columns)}) "
        f"VALUES ({values}) RETURNING {select_list(schema.fields)};"
    )
    return Statement(
        shape=QueryShape.INSERT,
        path=CompletionPath.ALL,
        text=text,
        params=tuple(f.name for f in columns),
    )


def update_statement(schema: EntitySchema) -> Statement:
    """
    ``UPDATE ... SET <non-key fields> WHERE <keys> RETURNING`` every field.

    Key fields bind ``$1..$k``; the SET fields follow in declaration order.
    """
    keys: List[Field] = schema.key_fields
    data: List[Field] = [f for f in schema.fields if not f.is_key]
    if not keys:
        raise SqlError("Update requested but the entity has no key fields.",
                       entity=schema.struct_name)
    if not data:
        raise SqlError("Update requested but every field is a key.",
                       entity=schema.struct_name)
    _check_identifiers(schema.table_name, schema.fields)
    set_list: str = ", ".join(strict_conditions(data, start=len(keys) + 1))
    text: str = (
        f"UPDATE {schema.table_name} SET {set_list}"
        f"{where_clause(strict_conditions(keys))}"
        f" RETURNING {select_list(schema.fields)};"
    )
    return Statement(
        shape=QueryShape.UPDATE,
        path=CompletionPath.DATA,
        text=text,
        params=tuple(f.name for f in keys) + tuple(f.name for f in data),
    )


# ---------------------------------------------------------------------------
# Generic entry point
# ---------------------------------------------------------------------------


def assemble(
    schema: EntitySchema,
    shape: QueryShape,
    field_subset: Optional[Sequence[Field]] = None,
    *,
    path: Optional[CompletionPath] = None,
) -> Statement:
    """
    Produce one statement for *shape*.

    *field_subset* is the Many filter list or the supplied Insert fields;
    *path* selects the One / Delete completion path.
    """
    shape = QueryShape(shape)
    if shape is QueryShape.MANY:
        statement: Statement = many_statement(schema, list(field_subset or ()))
    elif shape is QueryShape.INSERT:
        statement = insert_statement(
            schema, None if field_subset is None else [f.name for f in field_subset]
        )
    elif shape is QueryShape.UPDATE:
        statement = update_statement(schema)
    elif path is None:
        raise SqlError(f"Shape '{shape.value}' needs a completion path.",
                       entity=schema.struct_name)
    elif shape is QueryShape.ONE:
        statement = one_statement(schema, path)
    else:
        statement = delete_statement(schema, path)

    logger.debug("[%s] %s/%s: %s", schema.struct_name, shape.value,
                 statement.path.value, statement.text)
    return statement


__all__: List[str] = [
    "column_expr",
    "select_list",
    "placeholder",
    "strict_conditions",
    "optional_conditions",
    "where_clause",
    "many_statement",
    "one_statement",
    "delete_statement",
    "insert_columns",
    "insert_statement",
    "update_statement",
    "assemble",
]
