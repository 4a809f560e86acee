"""
dbset - Shape Generators
========================
Each generator combines the typestate of one query shape with the statements
its completion paths unlock, producing a ``ShapePlan``.  Plans are the single
source both the runtime builders and the source templates read.

Generators live in a small registry keyed by ``QueryShape``; a project may
replace one with ``register_shape``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from dbset import sql
from dbset.errors import CodeGenError
from dbset.models import CompletionPath, EntitySchema, QueryShape, Statement
from dbset.typestate import ShapeTypestate, many_filter_fields, synthesize

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.shapes")

# Terminal methods per shape.
TERMINALS: Dict[QueryShape, Tuple[str, ...]] = {
    QueryShape.MANY: ("fetch_all",),
    QueryShape.ONE: ("fetch_one", "fetch_optional"),
    QueryShape.INSERT: ("insert",),
    QueryShape.UPDATE: ("update",),
    QueryShape.DELETE: ("delete",),
}

# Builder class name suffix per shape.
CLASS_SUFFIXES: Dict[QueryShape, str] = {
    QueryShape.MANY: "ManyQueryBuilder",
    QueryShape.ONE: "OneQueryBuilder",
    QueryShape.INSERT: "InsertBuilder",
    QueryShape.UPDATE: "UpdateBuilder",
    QueryShape.DELETE: "DeleteQueryBuilder",
}

# Methods every runtime builder defines; no setter may shadow them.
BUILDER_METHODS: FrozenSet[str] = frozenset({
    "statement",
    "bound_params",
    "state",
    "slot_states",
    "is_complete",
    "missing_slots",
    "values",
    "plan",
    "row_model",
    "decode_row",
})


# ---------------------------------------------------------------------------
# ShapePlan
# ---------------------------------------------------------------------------


@dataclass
class ShapePlan:
    """Everything needed to run or render the builder of one shape."""

    shape: QueryShape
    schema: EntitySchema
    typestate: ShapeTypestate
    statements: Dict[CompletionPath, Statement]
    terminals: Tuple[str, ...]
    class_name: str
    _variants: Dict[FrozenSet[str], Statement] = field(
        default_factory=dict, repr=False, compare=False
    )

    @property
    def canonical_statement(self) -> Statement:
        return next(iter(self.statements.values()))

    def statement_for(
        self,
        path: CompletionPath,
        supplied: Optional[Iterable[str]] = None,
    ) -> Statement:
        """
        The statement issued on *path*.

        For Insert, *supplied* names the fields that were given a value;
        optional fields missing from it are left out of the column list.
        Each variant is assembled once per plan.
        """
        if self.shape is not QueryShape.INSERT or supplied is None:
            return self.statements[path]
        optional: FrozenSet[str] = frozenset(
            f.name for f in self.schema.fields if f.is_optional and not f.is_auto
        )
        chosen: FrozenSet[str] = optional & frozenset(supplied)
        if chosen == optional:
            return self.statements[path]
        statement: Optional[Statement] = self._variants.get(chosen)
        if statement is None:
            statement = sql.insert_statement(self.schema, chosen)
            self._variants[chosen] = statement
            logger.debug("[%s] new insert variant for %s", self.schema.struct_name,
                         sorted(chosen) or "no optional fields")
        return statement

    def __repr__(self) -> str:
        return f"<ShapePlan {self.class_name} paths={[p.value for p in self.statements]}>"


def _check_names(schema: EntitySchema, shape: QueryShape, ts: ShapeTypestate) -> None:
    reserved: FrozenSet[str] = BUILDER_METHODS | frozenset(TERMINALS[shape])
    seen: set = set()
    for spec in ts.setters:
        if spec.name in reserved:
            raise CodeGenError(
                f"Setter '{spec.name}' of the {shape.value} builder collides with a "
                f"builder method; rename the field.",
                entity=schema.struct_name,
            )
        if spec.name.startswith("_"):
            raise CodeGenError(
                f"Setter '{spec.name}' would be private; field names may not start "
                f"with an underscore.",
                entity=schema.struct_name,
            )
        if spec.name in seen:
            raise CodeGenError(f"Duplicate setter '{spec.name}'.", entity=schema.struct_name)
        seen.add(spec.name)


def _plan(schema: EntitySchema, shape: QueryShape,
          statements: Dict[CompletionPath, Statement],
          ts: ShapeTypestate) -> ShapePlan:
    _check_names(schema, shape, ts)
    return ShapePlan(
        shape=shape,
        schema=schema,
        typestate=ts,
        statements=statements,
        terminals=TERMINALS[shape],
        class_name=f"{schema.facade_name}{CLASS_SUFFIXES[shape]}",
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ShapeGenerator = Callable[[EntitySchema], ShapePlan]

SHAPE_GENERATORS: Dict[QueryShape, ShapeGenerator] = {}


def register_shape(shape: QueryShape) -> Callable[[ShapeGenerator], ShapeGenerator]:
    """Decorator registering a generator for *shape*, replacing any previous one."""

    def decorator(func: ShapeGenerator) -> ShapeGenerator:
        SHAPE_GENERATORS[QueryShape(shape)] = func
        logger.debug("Registered %s generator %s", QueryShape(shape).value, func.__name__)
        return func

    return decorator


def get_shape_generator(shape: QueryShape) -> ShapeGenerator:
    try:
        return SHAPE_GENERATORS[QueryShape(shape)]
    except KeyError:
        raise CodeGenError(f"No generator registered for shape '{shape}'.") from None


# ---------------------------------------------------------------------------
# Built-in generators
# ---------------------------------------------------------------------------


@register_shape(QueryShape.MANY)
def generate_many(schema: EntitySchema) -> ShapePlan:
    ts: ShapeTypestate = synthesize(schema, QueryShape.MANY)
    names: List[str] = many_filter_fields(schema)
    filters = [f for f in schema.fields if f.name in names]
    statement: Statement = sql.many_statement(schema, filters)
    return _plan(schema, QueryShape.MANY, {CompletionPath.ALL: statement}, ts)


def _lookup_statements(
    schema: EntitySchema,
    ts: ShapeTypestate,
    build: Callable[[EntitySchema, CompletionPath], Statement],
) -> Dict[CompletionPath, Statement]:
    return {rule.path: build(schema, rule.path) for rule in ts.paths}


@register_shape(QueryShape.ONE)
def generate_one(schema: EntitySchema) -> ShapePlan:
    ts: ShapeTypestate = synthesize(schema, QueryShape.ONE)
    statements = _lookup_statements(schema, ts, sql.one_statement)
    return _plan(schema, QueryShape.ONE, statements, ts)


@register_shape(QueryShape.DELETE)
def generate_delete(schema: EntitySchema) -> ShapePlan:
    ts: ShapeTypestate = synthesize(schema, QueryShape.DELETE)
    statements = _lookup_statements(schema, ts, sql.delete_statement)
    return _plan(schema, QueryShape.DELETE, statements, ts)


@register_shape(QueryShape.INSERT)
def generate_insert(schema: EntitySchema) -> ShapePlan:
    ts: ShapeTypestate = synthesize(schema, QueryShape.INSERT)
    statement: Statement = sql.insert_statement(schema)
    return _plan(schema, QueryShape.INSERT, {CompletionPath.ALL: statement}, ts)


@register_shape(QueryShape.UPDATE)
def generate_update(schema: EntitySchema) -> ShapePlan:
    ts: ShapeTypestate = synthesize(schema, QueryShape.UPDATE)
    statement: Statement = sql.update_statement(schema)
    return _plan(schema, QueryShape.UPDATE, {CompletionPath.DATA: statement}, ts)


def plan_shapes(schema: EntitySchema) -> Dict[QueryShape, ShapePlan]:
    """Run the registered generator of every shape the entity asks for."""
    plans: Dict[QueryShape, ShapePlan] = {}
    for shape in schema.shapes:
        plans[shape] = get_shape_generator(shape)(schema)
    logger.info(
        "[%s] planned %d builder(s): %s",
        schema.struct_name,
        len(plans),
        ", ".join(p.class_name for p in plans.values()),
    )
    return plans


def bind_statements(
    plans: Dict[QueryShape, ShapePlan],
    texts: Dict[Tuple[QueryShape, CompletionPath], str],
) -> Dict[QueryShape, ShapePlan]:
    """
    Make *plans* issue the SQL in *texts* instead of the planned text.

    Generated modules pass their ``*_SQL`` constants through here, so the
    constants are what their builders execute.  Parameter order is kept from
    the plan.  Insert variants that leave optional columns out are still
    assembled from the declaration.
    """
    for (shape, path), text in texts.items():
        plan: Optional[ShapePlan] = plans.get(QueryShape(shape))
        if plan is None or CompletionPath(path) not in plan.statements:
            raise CodeGenError(
                f"No {QueryShape(shape).value} statement on path '{CompletionPath(path).value}'."
            )
        planned: Statement = plan.statements[CompletionPath(path)]
        if planned.text != text:
            logger.warning(
                "[%s] %s/%s statement differs from the declaration; using the given text.",
                plan.schema.struct_name, planned.shape.value, planned.path.value,
            )
            plan.statements = dict(plan.statements)
            plan.statements[planned.path] = planned.model_copy(update={"text": text})
    return plans


__all__: List[str] = [
    "TERMINALS",
    "CLASS_SUFFIXES",
    "BUILDER_METHODS",
    "ShapePlan",
    "ShapeGenerator",
    "SHAPE_GENERATORS",
    "register_shape",
    "get_shape_generator",
    "generate_many",
    "generate_one",
    "generate_delete",
    "generate_insert",
    "generate_update",
    "plan_shapes",
    "bind_statements",
]
