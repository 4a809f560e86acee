"""
tests/test_builders.py
Runtime tests for the builders produced by dbset.facade.

Tests cover:
- Facade entry points and fresh builders
- Immutability of setters
- Errors for incomplete builders and repeated one-shot setters
- Statements and bound parameters handed to the executor
- Row decoding (":Type" column suffixes, enums, optional fields)
- Class-based entities and memoized compilation
- Replacing shape generators and binding statement text

Async terminals are driven with asyncio.run().
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import enum
from typing import Annotated, Any, Dict, Iterator, List, Optional

import pytest

from dbset import build_dbset
from dbset.analyzer import CustomEnum, Key, Unique
from dbset.builders import encode_value, strip_type_annotations
from dbset.errors import (
    BuilderError,
    CodeGenError,
    ConfigError,
    MissingRequiredFieldError,
    RowNotFoundError,
    SlotAlreadySetError,
)
from dbset.facade import CompiledEntity, compile_entities, compile_entity, resolve_type
from dbset.models import CompletionPath, EntitySchema, QueryShape, SlotState
from dbset.shapes import (
    SHAPE_GENERATORS,
    ShapePlan,
    bind_statements,
    generate_many,
    get_shape_generator,
    plan_shapes,
    register_shape,
)

_COLUMNS: str = 'id, name, details, email, status AS "status:UserStatus"'


class Status(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclasses.dataclass
class Member:
    id: Annotated[str, Key]
    name: str
    details: Optional[str]
    email: Annotated[str, Unique]
    status: Annotated[Status, CustomEnum("user_status")]

    __dbset__ = {"table_name": "users", "facade_name": "Members"}


# ===========================================================================
# Facade
# ===========================================================================


class TestFacade:

    def test_entry_points(self, user_compiled: CompiledEntity) -> None:
        facade = user_compiled.facade
        assert facade.__name__ == "UserDbSet"
        for shape in QueryShape:
            builder = getattr(facade, shape.value)()
            assert isinstance(builder, user_compiled.builders[shape])
            assert builder.state == 0
            assert not builder.values

    def test_class_names(self, user_compiled: CompiledEntity) -> None:
        names = {s: b.__name__ for s, b in user_compiled.builders.items()}
        assert names == {
            QueryShape.MANY: "UserDbSetManyQueryBuilder",
            QueryShape.ONE: "UserDbSetOneQueryBuilder",
            QueryShape.INSERT: "UserDbSetInsertBuilder",
            QueryShape.UPDATE: "UserDbSetUpdateBuilder",
            QueryShape.DELETE: "UserDbSetDeleteQueryBuilder",
        }

    def test_every_call_returns_a_fresh_builder(self, user_dbset: type) -> None:
        assert user_dbset.one() is not user_dbset.one()

    def test_shapes_can_be_restricted(self, user_entity: Dict[str, Any]) -> None:
        entity = user_entity
        entity["shapes"] = ["many", "one"]
        facade = build_dbset(entity)
        assert hasattr(facade, "many") and hasattr(facade, "one")
        assert not hasattr(facade, "insert")

    def test_setters_only_for_shape_fields(self, user_dbset: type) -> None:
        assert hasattr(user_dbset.many(), "name_eq")
        assert not hasattr(user_dbset.many(), "email_eq")
        assert not hasattr(user_dbset.many(), "id_eq")
        assert hasattr(user_dbset.one(), "email_eq")
        assert not hasattr(user_dbset.one(), "name_eq")

    def test_setter_colliding_with_builder_method(self) -> None:
        with pytest.raises(CodeGenError, match="collides with a builder method"):
            compile_entity({
                "name": "Job",
                "fields": [
                    {"name": "id", "type": "int", "key": True},
                    {"name": "statement", "type": "str"},
                ],
            })

    def test_duplicate_entities_rejected(self, user_entity: Dict[str, Any]) -> None:
        with pytest.raises(ConfigError, match="declared twice"):
            compile_entities([user_entity, copy.deepcopy(user_entity)])


# ===========================================================================
# Immutability and typestate errors
# ===========================================================================


class TestBuilderState:

    def test_setters_do_not_mutate(self, user_dbset: type) -> None:
        empty = user_dbset.insert()
        with_id = empty.id("user-1")
        assert empty.state == 0 and dict(empty.values) == {}
        assert with_id.state != 0 and dict(with_id.values) == {"id": "user-1"}
        assert with_id is not empty

    def test_branching_from_one_builder(self, user_dbset: type) -> None:
        base = user_dbset.one()
        by_key = base.id_eq("user-1")
        by_email = base.email_eq("bob@example.com")
        assert by_key.statement().path is CompletionPath.KEY
        assert by_email.statement().path is CompletionPath.UNIQUE

    def test_values_are_read_only(self, user_dbset: type) -> None:
        builder = user_dbset.insert().id("user-1")
        with pytest.raises(TypeError):
            builder.values["id"] = "user-2"  # type: ignore[index]

    def test_slot_states(self, user_dbset: type) -> None:
        builder = user_dbset.one().id_eq("user-1")
        assert builder.slot_states == {"id": SlotState.SET, "unique": SlotState.UNSET}

    def test_incomplete_insert_names_missing_fields(self, user_dbset: type) -> None:
        builder = user_dbset.insert().id("user-4").name("carol")
        assert builder.missing_slots() == ["email", "status"]
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            builder.statement()
        assert exc_info.value.slots == ["email", "status"]
        assert "email, status" in str(exc_info.value)

    def test_terminal_refuses_incomplete_builder(
        self, user_dbset: type, executor: Any
    ) -> None:
        with pytest.raises(MissingRequiredFieldError):
            asyncio.run(user_dbset.delete().delete(executor))
        assert executor.calls == []

    def test_second_set_of_a_slot(self, user_dbset: type) -> None:
        builder = user_dbset.insert().name("carol")
        with pytest.raises(SlotAlreadySetError, match=r"User\.insert\.name\(\)"):
            builder.name("dave")

    def test_mixing_lookup_paths(self, user_dbset: type) -> None:
        with pytest.raises(SlotAlreadySetError, match="key lookup path"):
            user_dbset.one().id_eq("user-1").email_eq("bob@example.com")

    def test_free_setters_may_repeat(self, user_dbset: type) -> None:
        builder = user_dbset.many().name_eq("bob").name_eq("alice")
        assert builder.values["name"] == "alice"

    def test_repr(self, user_dbset: type) -> None:
        assert repr(user_dbset.one().id_eq("x")) == (
            "<UserDbSetOneQueryBuilder set=['id'] complete=True>"
        )


# ===========================================================================
# Terminals
# ===========================================================================


class TestTerminals:

    def test_many_without_filters_binds_nulls(
        self, user_dbset: type, executor: Any
    ) -> None:
        rows = asyncio.run(user_dbset.many().fetch_all(executor))
        method, sql, params = executor.last_call
        assert method == "fetch_all"
        assert sql.startswith(f"SELECT {_COLUMNS} FROM users WHERE")
        assert params == (None, None, None)
        assert [r.id for r in rows] == ["user-1", "user-2", "user-3"]

    def test_many_filter_and_enum_value(
        self, user_dbset: type, user_compiled: CompiledEntity, executor: Any
    ) -> None:
        user_status = user_compiled.enum_types["UserStatus"]
        asyncio.run(
            user_dbset.many().name_eq("bob").status_eq(user_status("active")).fetch_all(executor)
        )
        assert executor.last_call[2] == ("bob", None, "active")

    def test_rows_are_decoded(
        self, user_dbset: type, user_compiled: CompiledEntity, executor: Any
    ) -> None:
        rows = asyncio.run(user_dbset.many().fetch_all(executor))
        second = rows[1]
        assert isinstance(second, user_compiled.row_model)
        assert second.details == "the best bob"
        assert second.status is user_compiled.enum_types["UserStatus"]("inactive")
        assert rows[0].details is None

    def test_fetch_one_by_key(self, user_dbset: type, executor: Any) -> None:
        user = asyncio.run(user_dbset.one().id_eq("user-1").fetch_one(executor))
        assert executor.last_call == (
            "fetch_one", f"SELECT {_COLUMNS} FROM users WHERE id = $1", ("user-1",)
        )
        assert user.name == "bob"

    def test_fetch_optional_by_unique(
        self, user_dbset: type, empty_executor: Any
    ) -> None:
        result = asyncio.run(
            user_dbset.one().email_eq("nobody@example.com").fetch_optional(empty_executor)
        )
        assert result is None
        assert empty_executor.last_call[1].endswith("WHERE (email = $1 OR $1 IS NULL)")

    def test_fetch_one_propagates_not_found(
        self, user_dbset: type, empty_executor: Any
    ) -> None:
        with pytest.raises(RowNotFoundError):
            asyncio.run(user_dbset.one().id_eq("ghost").fetch_one(empty_executor))

    def test_insert_without_optional_field(
        self, user_dbset: type, executor: Any
    ) -> None:
        builder = user_dbset.insert().status("active").email("c@example.com").name("carol").id("user-4")
        asyncio.run(builder.insert(executor))
        method, sql, params = executor.last_call
        assert method == "fetch_one"
        assert sql == (
            "INSERT INTO users(id, name, email, status) "
            f"VALUES ($1, $2, $3, $4::user_status) RETURNING {_COLUMNS};"
        )
        assert params == ("user-4", "carol", "c@example.com", "active")

    def test_insert_with_explicit_none(self, user_dbset: type, executor: Any) -> None:
        builder = (
            user_dbset.insert().id("user-4").name("carol").email("c@example.com")
            .status("active").details(None)
        )
        asyncio.run(builder.insert(executor))
        assert "details" in executor.last_call[1]
        assert executor.last_call[2] == ("user-4", "carol", None, "c@example.com", "active")

    def test_insert_variants_are_reused(self, user_dbset: type) -> None:
        a = user_dbset.insert().id("a").name("a").email("a").status("active")
        b = user_dbset.insert().status("active").email("b").name("b").id("b")
        assert a.statement() is b.statement()

    def test_update_from_row_model(
        self, user_dbset: type, user_compiled: CompiledEntity, executor: Any
    ) -> None:
        user = user_compiled.row_model.model_validate(strip_type_annotations(executor.rows[0]))
        changed = user.model_copy(update={"name": "robert"})
        asyncio.run(user_dbset.update().data(changed).update(executor))
        method, sql, params = executor.last_call
        assert sql.startswith("UPDATE users SET name = $2")
        assert params == ("user-1", "robert", None, "bob@example.com", "active")

    def test_update_from_mapping_missing_fields(self, user_dbset: type) -> None:
        with pytest.raises(BuilderError, match="lacks field"):
            user_dbset.update().data({"id": "user-1", "name": "x"})

    def test_update_data_is_one_shot(self, user_dbset: type) -> None:
        row: Dict[str, Any] = {
            "id": "user-1", "name": "bob", "details": None,
            "email": "bob@example.com", "status": "active",
        }
        builder = user_dbset.update().data(row)
        with pytest.raises(SlotAlreadySetError):
            builder.data(row)

    def test_delete_by_unique(self, user_dbset: type, executor: Any) -> None:
        result = asyncio.run(user_dbset.delete().email_eq("bob@example.com").delete(executor))
        assert result is None
        assert executor.last_call == (
            "execute",
            "DELETE FROM users WHERE (email = $1 OR $1 IS NULL)",
            ("bob@example.com",),
        )


# ===========================================================================
# Class-based entities
# ===========================================================================


class TestClassEntities:

    def test_compiled_once_per_class(self) -> None:
        assert compile_entity(Member) is compile_entity(Member)
        assert build_dbset(Member).__name__ == "Members"

    def test_python_enum_is_reused(self, executor: Any) -> None:
        compiled = compile_entity(Member)
        assert compiled.enum_types["Status"] is Status
        row = asyncio.run(build_dbset(Member).one().id_eq("user-1").fetch_one(executor))
        assert row.status is Status.ACTIVE

    def test_enum_member_binds_its_value(self) -> None:
        builder = build_dbset(Member).many().status_eq(Status.INACTIVE)
        assert builder.bound_params() == (None, None, "inactive")


# ===========================================================================
# Shape registry
# ===========================================================================


@pytest.fixture()
def restore_many_generator() -> Iterator[None]:
    saved = SHAPE_GENERATORS[QueryShape.MANY]
    try:
        yield
    finally:
        SHAPE_GENERATORS[QueryShape.MANY] = saved


class TestShapeRegistry:

    @pytest.mark.usefixtures("restore_many_generator")
    def test_registered_generator_replaces_builtin(self, user_schema: EntitySchema) -> None:
        seen: List[str] = []

        @register_shape(QueryShape.MANY)
        def ordered_many(schema: EntitySchema) -> ShapePlan:
            seen.append(schema.struct_name)
            plan = generate_many(schema)
            statement = plan.statements[CompletionPath.ALL]
            plan.statements = {
                CompletionPath.ALL: statement.model_copy(
                    update={"text": statement.text + " ORDER BY id"}
                )
            }
            return plan

        assert get_shape_generator(QueryShape.MANY) is ordered_many
        plans = plan_shapes(user_schema)
        assert seen == ["User"]
        assert plans[QueryShape.MANY].statements[CompletionPath.ALL].text.endswith(" ORDER BY id")
        assert plans[QueryShape.ONE].class_name == "UserDbSetOneQueryBuilder"

    def test_builtin_generator_is_restored(self) -> None:
        assert get_shape_generator(QueryShape.MANY) is generate_many

    @pytest.mark.usefixtures("restore_many_generator")
    def test_unregistered_shape(self) -> None:
        del SHAPE_GENERATORS[QueryShape.MANY]
        with pytest.raises(CodeGenError, match="No generator registered"):
            get_shape_generator(QueryShape.MANY)


class TestBindStatements:

    def test_replaces_text_and_keeps_params(self, user_schema: EntitySchema) -> None:
        plans = plan_shapes(user_schema)
        before = plans[QueryShape.ONE].statements[CompletionPath.UNIQUE]
        bound = bind_statements(
            plans, {(QueryShape.ONE, CompletionPath.UNIQUE): before.text + " LIMIT 1"}
        )
        after = bound[QueryShape.ONE].statement_for(CompletionPath.UNIQUE)
        assert after.text == before.text + " LIMIT 1"
        assert after.params == before.params
        assert bound[QueryShape.ONE].statements[CompletionPath.KEY].text.endswith("WHERE id = $1")

    def test_unchanged_text_keeps_statement(self, user_schema: EntitySchema) -> None:
        plans = plan_shapes(user_schema)
        statement = plans[QueryShape.MANY].statements[CompletionPath.ALL]
        bind_statements(plans, {(QueryShape.MANY, CompletionPath.ALL): statement.text})
        assert plans[QueryShape.MANY].statements[CompletionPath.ALL] is statement

    def test_unknown_path(self, user_schema: EntitySchema) -> None:
        plans = plan_shapes(user_schema)
        with pytest.raises(CodeGenError, match="No many statement on path"):
            bind_statements(plans, {(QueryShape.MANY, CompletionPath.KEY): "SELECT 1"})


# ===========================================================================
# Helpers
# ===========================================================================


class TestHelpers:

    def test_strip_type_annotations(self) -> None:
        assert strip_type_annotations({"status:UserStatus": "active", "id": 1}) == {
            "status": "active", "id": 1,
        }

    def test_encode_value(self) -> None:
        assert encode_value(Status.ACTIVE) == "active"
        assert encode_value(3) == 3

    def test_resolve_type(self) -> None:
        namespace = {"str": str, "int": int, "Optional": Optional}
        assert resolve_type("Optional[str]", namespace) == Optional[str]
        assert resolve_type("int | None", {"int": int, "None": type(None)}) == Optional[int]
        assert resolve_type("Money", namespace) is Any
