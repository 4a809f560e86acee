"""
tests/test_sql.py
Unit tests for dbset.sql statement assembly.

Tests cover:
- Exact statement text for the reference User entity, per shape and path
- Placeholder numbering and parameter order
- Enum casts on bound values and "name:Type" annotations on selected columns
- Insert column lists with and without optional fields
- Rejections for shapes the entity cannot support
"""

from __future__ import annotations

import re
from typing import Any, Dict, List

import pytest

from dbset import sql
from dbset.analyzer import analyze
from dbset.errors import SqlError
from dbset.models import CompletionPath, EntitySchema, QueryShape

_COLUMNS: str = 'id, name, details, email, status AS "status:UserStatus"'
_PLACEHOLDER_RE = re.compile(r"\$(\d+)")


def _numbers(text: str) -> List[int]:
    return sorted({int(n) for n in _PLACEHOLDER_RE.findall(text)})


# ===========================================================================
# Clause helpers
# ===========================================================================


class TestClauseHelpers:

    def test_enum_column_is_annotated(self, user_schema: EntitySchema) -> None:
        assert sql.column_expr(user_schema.get_field("status")) == 'status AS "status:UserStatus"'
        assert sql.column_expr(user_schema.get_field("name")) == "name"

    def test_enum_placeholder_is_cast(self, user_schema: EntitySchema) -> None:
        assert sql.placeholder(3, user_schema.get_field("status")) == "$3::user_status"
        assert sql.placeholder(3, user_schema.get_field("name")) == "$3"

    def test_optional_conditions_repeat_the_placeholder(self, user_schema: EntitySchema) -> None:
        fields = [user_schema.get_field("name"), user_schema.get_field("details")]
        assert sql.optional_conditions(fields, start=2) == [
            "(name = $2 OR $2 IS NULL)",
            "(details = $3 OR $3 IS NULL)",
        ]

    def test_empty_where_clause(self) -> None:
        assert sql.where_clause([]) == ""
        assert sql.where_clause(["a = $1", "b = $2"]) == " WHERE a = $1 AND b = $2"


# ===========================================================================
# Statements for the reference entity
# ===========================================================================


class TestUserStatements:
    """Exact statement text for User(id key, email unique, status enum)."""

    def test_many(self, user_schema: EntitySchema) -> None:
        filters = [user_schema.get_field(n) for n in ("name", "details", "status")]
        statement = sql.many_statement(user_schema, filters)
        assert statement.text == (
            f"SELECT {_COLUMNS} FROM users WHERE (name = $1 OR $1 IS NULL) "
            "AND (details = $2 OR $2 IS NULL) AND (status = $3::user_status OR $3 IS NULL)"
        )
        assert statement.params == ("name", "details", "status")
        assert statement.path is CompletionPath.ALL

    def test_many_without_filters_has_no_where(self, user_schema: EntitySchema) -> None:
        statement = sql.many_statement(user_schema, [])
        assert statement.text == f"SELECT {_COLUMNS} FROM users"
        assert statement.params == ()

    def test_one_by_key(self, user_schema: EntitySchema) -> None:
        statement = sql.one_statement(user_schema, CompletionPath.KEY)
        assert statement.text == f"SELECT {_COLUMNS} FROM users WHERE id = $1"
        assert statement.params == ("id",)

    def test_one_by_unique(self, user_schema: EntitySchema) -> None:
        statement = sql.one_statement(user_schema, CompletionPath.UNIQUE)
        assert statement.text == f"SELECT {_COLUMNS} FROM users WHERE (email = $1 OR $1 IS NULL)"
        assert statement.params == ("email",)

    def test_delete_by_key(self, user_schema: EntitySchema) -> None:
        statement = sql.delete_statement(user_schema, CompletionPath.KEY)
        assert statement.text == "DELETE FROM users WHERE id = $1"

    def test_delete_by_unique(self, user_schema: EntitySchema) -> None:
        statement = sql.delete_statement(user_schema, CompletionPath.UNIQUE)
        assert statement.text == "DELETE FROM users WHERE (email = $1 OR $1 IS NULL)"

    def test_insert_canonical(self, user_schema: EntitySchema) -> None:
        statement = sql.insert_statement(user_schema)
        assert statement.text == (
            "INSERT INTO users(id, name, details, email, status) "
            f"VALUES ($1, $2, $3, $4, $5::user_status) RETURNING {_COLUMNS};"
        )
        assert statement.params == ("id", "name", "details", "email", "status")

    def test_insert_without_optional_field(self, user_schema: EntitySchema) -> None:
        statement = sql.insert_statement(user_schema, supplied=["id", "name", "email", "status"])
        assert statement.text == (
            "INSERT INTO users(id, name, email, status) "
            f"VALUES ($1, $2, $3, $4::user_status) RETURNING {_COLUMNS};"
        )
        assert "details" not in statement.params

    def test_update(self, user_schema: EntitySchema) -> None:
        statement = sql.update_statement(user_schema)
        assert statement.text == (
            "UPDATE users SET name = $2, details = $3, email = $4, status = $5::user_status "
            f"WHERE id = $1 RETURNING {_COLUMNS};"
        )
        assert statement.params == ("id", "name", "details", "email", "status")
        assert statement.path is CompletionPath.DATA


# ===========================================================================
# Placeholder invariants
# ===========================================================================


class TestPlaceholders:
    """Every statement numbers placeholders 1..n with n == len(params)."""

    @pytest.mark.parametrize(
        "build",
        [
            lambda s: sql.many_statement(s, [f for f in s.fields if not f.is_unique]),
            lambda s: sql.one_statement(s, CompletionPath.KEY),
            lambda s: sql.one_statement(s, CompletionPath.UNIQUE),
            lambda s: sql.delete_statement(s, CompletionPath.UNIQUE),
            lambda s: sql.insert_statement(s),
            lambda s: sql.insert_statement(s, supplied=[]),
            lambda s: sql.update_statement(s),
        ],
    )
    def test_contiguous_numbering(self, user_schema: EntitySchema, build: Any) -> None:
        statement = build(user_schema)
        assert _numbers(statement.text) == list(range(1, len(statement.params) + 1))

    def test_bind_follows_params_order(self, user_schema: EntitySchema) -> None:
        statement = sql.update_statement(user_schema)
        values: Dict[str, Any] = {
            "status": "active", "email": "e", "name": "n", "id": "user-1", "details": None,
        }
        assert statement.bind(values) == ("user-1", "n", None, "e", "active")

    def test_composite_key(self) -> None:
        schema = analyze({
            "name": "Membership",
            "fields": [
                {"name": "group_id", "type": "int", "key": True},
                {"name": "user_id", "type": "int", "key": True},
                {"name": "role", "type": "str"},
            ],
        })
        statement = sql.update_statement(schema)
        assert statement.text == (
            "UPDATE membership SET role = $3 WHERE group_id = $1 AND user_id = $2 "
            "RETURNING group_id, user_id, role;"
        )
        assert sql.one_statement(schema, CompletionPath.KEY).text.endswith(
            "WHERE group_id = $1 AND user_id = $2"
        )


# ===========================================================================
# Rejections
# ===========================================================================


class TestRejections:

    def _schema(self, fields: List[Dict[str, Any]]) -> EntitySchema:
        return analyze({"name": "Thing", "fields": fields})

    def test_update_without_key(self) -> None:
        schema = self._schema([{"name": "code", "type": "str", "unique": True},
                               {"name": "label", "type": "str"}])
        with pytest.raises(SqlError, match="no key fields"):
            sql.update_statement(schema)

    def test_update_with_only_keys(self) -> None:
        schema = self._schema([{"name": "id", "type": "int", "key": True}])
        with pytest.raises(SqlError, match="every field is a key"):
            sql.update_statement(schema)

    def test_insert_with_only_auto_fields(self) -> None:
        schema = self._schema([{"name": "id", "type": "int", "key": True, "auto": True}])
        with pytest.raises(SqlError, match="auto-generated"):
            sql.insert_statement(schema)

    def test_unique_path_without_unique_fields(self) -> None:
        schema = self._schema([{"name": "id", "type": "int", "key": True}])
        with pytest.raises(SqlError, match="no unique fields"):
            sql.one_statement(schema, CompletionPath.UNIQUE)

    def test_lookup_needs_a_path(self, user_schema: EntitySchema) -> None:
        with pytest.raises(SqlError, match="needs a completion path"):
            sql.assemble(user_schema, QueryShape.ONE)

    def test_lookup_rejects_data_path(self, user_schema: EntitySchema) -> None:
        with pytest.raises(SqlError, match="no 'data' path"):
            sql.assemble(user_schema, QueryShape.DELETE, path=CompletionPath.DATA)

    def test_assemble_dispatch(self, user_schema: EntitySchema) -> None:
        assert sql.assemble(user_schema, QueryShape.UPDATE) == sql.update_statement(user_schema)
        assert (
            sql.assemble(user_schema, QueryShape.ONE, path=CompletionPath.KEY)
            == sql.one_statement(user_schema, CompletionPath.KEY)
        )
