"""
dbset - Source Template Engine
==============================
Renders one Python module per compiled entity, plus the package
``__init__.py``.

A generated module contains, in order:

    1. the entity declaration (``ENTITY``) and its builder plans,
    2. the statement constants (``USER_MANY_SQL`` ...),
    3. enum classes for declared database enums,
    4. the pydantic row model,
    5. one builder class per shape with an explicit method per setter,
    6. the ``<Entity>DbSet`` facade.

All string assembly uses the ``List[str]`` + ``"\\n".join()`` pattern and
output is deterministic for a given declaration.
"""

from __future__ import annotations

import logging
import pprint
import re
from typing import Dict, List, Sequence, Set

from dbset.facade import PYTHON_TYPES, CompiledEntity, enum_member_name
from dbset.models import CompletionPath, EnumDeclaration, Field, GenerationConfig, QueryShape
from dbset.shapes import ShapePlan
from dbset.utils import build_import_block, indent_lines, make_docstring, to_snake_case

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.templates")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_INDENT: str = "    "

_IDENT_RE: re.Pattern[str] = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_BASE_CLASS: Dict[QueryShape, str] = {
    QueryShape.MANY: "ManyQueryBuilderBase",
    QueryShape.ONE: "OneQueryBuilderBase",
    QueryShape.INSERT: "InsertBuilderBase",
    QueryShape.UPDATE: "UpdateBuilderBase",
    QueryShape.DELETE: "DeleteQueryBuilderBase",
}

_SHAPE_SUMMARY: Dict[QueryShape, str] = {
    QueryShape.MANY: "Fetch every row matching the optional equality filters.",
    QueryShape.ONE: "Fetch one row by its key fields or by one unique field.",
    QueryShape.INSERT: "Insert one row; every non-optional, non-auto field is required.",
    QueryShape.UPDATE: "Replace one row, matched by its key fields.",
    QueryShape.DELETE: "Delete one row by its key fields or by one unique field.",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def module_name(compiled: CompiledEntity) -> str:
    """File stem of the module generated for *compiled*."""
    return to_snake_case(compiled.schema.struct_name)


def statement_constant(compiled: CompiledEntity, shape: QueryShape, path: CompletionPath) -> str:
    """``USER_ONE_KEY_SQL`` style name of one statement constant."""
    parts: List[str] = [to_snake_case(compiled.schema.struct_name).upper(), shape.value.upper()]
    if path in (CompletionPath.KEY, CompletionPath.UNIQUE):
        parts.append(path.value.upper())
    parts.append("SQL")
    return "_".join(parts)


def annotation_for(type_name: str, enum_names: Set[str]) -> str:
    """The declared type when every name in it is importable, else ``Any``."""
    names: List[str] = _IDENT_RE.findall(type_name)
    if all(n in PYTHON_TYPES or n in enum_names for n in names):
        return type_name
    return "Any"


def _collect_type_imports(annotations: Sequence[str], imports: Dict[str, Set[str]]) -> None:
    for annotation in annotations:
        for name in _IDENT_RE.findall(annotation):
            module: str = PYTHON_TYPES.get(name, (None, None))[0] or ""
            if module:
                imports.setdefault(module, set()).add(name)


# ---------------------------------------------------------------------------
# TemplateGenerator
# ---------------------------------------------------------------------------


class TemplateGenerator:
    """
    Stateless source renderer.

    Each ``render_*`` method returns a complete file content string.
    """

    def __init__(self, config: GenerationConfig) -> None:
        self._config: GenerationConfig = config
        logger.debug(
            "TemplateGenerator initialised (package=%s, sql_docstrings=%s).",
            config.package_name,
            config.include_sql_in_docstrings,
        )

    # ===================================================================
    # Entity module
    # ===================================================================

    def render_entity(self, compiled: CompiledEntity) -> str:
        """Render the full module for one entity."""
        schema = compiled.schema
        enum_names: Set[str] = {e.name for e in schema.enums}

        field_annotations: List[str] = [
            annotation_for(f.declared_type, enum_names) for f in schema.fields
        ]
        setter_annotations: List[str] = [
            annotation_for(f.value_type, enum_names) for f in schema.fields
        ]

        imports: Dict[str, Set[str]] = {
            "typing": {"Any", "Dict"},
            "pydantic": {"BaseModel"},
            "dbset.analyzer": {"analyze"},
            "dbset.models": {"CompletionPath", "QueryShape"},
            "dbset.shapes": {"bind_statements", "plan_shapes"},
            "dbset.builders": {_BASE_CLASS[shape] for shape in compiled.plans},
        }
        _collect_type_imports(field_annotations + setter_annotations, imports)
        stdlib: Dict[str, Set[str]] = {
            k: v for k, v in imports.items()
            if not k.startswith(("pydantic", "dbset"))
        }
        third_party: Dict[str, Set[str]] = {"pydantic": imports["pydantic"]}
        local: Dict[str, Set[str]] = {
            k: v for k, v in imports.items() if k.startswith("dbset")
        }

        lines: List[str] = []
        summary: str = schema.description or f"{schema.struct_name} data access layer."
        lines.append('"""')
        lines.append(summary)
        lines.append("")
        lines.append(f"Generated by dbset from the ``{schema.table_name}`` entity declaration.")
        lines.append("Regenerate instead of editing by hand.")
        lines.append('"""')
        lines.append("")
        lines.append("from __future__ import annotations")
        lines.append("")
        if schema.enums:
            lines.append("import enum")
        lines.append(build_import_block(stdlib))
        lines.append("")
        lines.append(build_import_block(third_party))
        lines.append("")
        lines.append(build_import_block(local))
        lines.append("")
        lines.append("ENTITY: Dict[str, Any] = " + pprint.pformat(
            schema.to_declaration(), width=88, sort_dicts=False
        ))
        lines.append("")

        lines.extend(self._render_statements(compiled))

        for decl in schema.enums:
            lines.append("")
            lines.extend(self._render_enum(decl))

        lines.append("")
        lines.extend(self._render_row_model(compiled, field_annotations))

        for plan in compiled.plans.values():
            lines.append("")
            lines.extend(self._render_builder(plan, setter_annotations))

        lines.append("")
        lines.extend(self._render_facade(compiled))
        lines.append("")

        exported: List[str] = [e.name for e in schema.enums]
        exported.append(schema.struct_name)
        exported.extend(p.class_name for p in compiled.plans.values())
        exported.append(schema.facade_name)
        lines.append("")
        lines.append("__all__ = [")
        lines.extend(f'{_INDENT}"{name}",' for name in exported)
        lines.append("]")
        lines.append("")

        content: str = "\n".join(lines)
        logger.debug("Rendered %s module: %d lines.", schema.struct_name, content.count("\n"))
        return content

    def _render_statements(self, compiled: CompiledEntity) -> List[str]:
        lines: List[str] = []
        lines.append("# " + "-" * 75)
        lines.append("# Statements")
        lines.append("# " + "-" * 75)
        lines.append("")
        bindings: List[str] = []
        for shape, plan in compiled.plans.items():
            for path, statement in plan.statements.items():
                name: str = statement_constant(compiled, shape, path)
                lines.append(f"{name}: str = {statement.text!r}")
                bindings.append(
                    f"{_INDENT * 2}(QueryShape.{shape.name}, CompletionPath.{path.name}): {name},"
                )
        lines.append("")
        # Builders execute the constants above.
        lines.append("_PLANS = bind_statements(")
        lines.append(f"{_INDENT}plan_shapes(analyze(ENTITY)),")
        lines.append(f"{_INDENT}{{")
        lines.extend(bindings)
        lines.append(f"{_INDENT}}},")
        lines.append(")")
        lines.append("")
        return lines

    def _render_enum(self, decl: EnumDeclaration) -> List[str]:
        lines: List[str] = [f"class {decl.name}(str, enum.Enum):"]
        lines.extend(make_docstring(f"Database enum ``{decl.resolved_type_name}``."))
        lines.append("")
        for value in decl.values:
            lines.append(f"{_INDENT}{enum_member_name(value)} = {value!r}")
        lines.append("")
        return lines

    def _render_row_model(self, compiled: CompiledEntity, annotations: List[str]) -> List[str]:
        schema = compiled.schema
        lines: List[str] = [f"class {schema.struct_name}(BaseModel):"]
        lines.extend(make_docstring(f"Row of table ``{schema.table_name}``."))
        lines.append("")
        for f, annotation in zip(schema.fields, annotations):
            default: str = " = None" if f.is_optional else ""
            lines.append(f"{_INDENT}{f.name}: {annotation}{default}")
        lines.append("")
        return lines

    def _render_builder(self, plan: ShapePlan, setter_annotations: List[str]) -> List[str]:
        schema = plan.schema
        annotations: Dict[str, str] = {
            f.name: a for f, a in zip(schema.fields, setter_annotations)
        }

        doc: List[str] = [_SHAPE_SUMMARY[plan.shape]]
        ts = plan.typestate
        if plan.shape in (QueryShape.ONE, QueryShape.DELETE):
            doc.append("")
            doc.append("Complete exactly one lookup path:")
            doc.append("")
            for rule in ts.paths:
                labels: List[str] = [s.label for s in ts.slots if rule.mask & s.bit]
                doc.append(f"- {rule.path.value.capitalize()} path: {', '.join(labels)}.")
        elif ts.slots:
            doc.append("")
            doc.append(f"Required: {', '.join(s.label for s in ts.slots)}.")
        if self._config.include_sql_in_docstrings:
            for path, statement in plan.statements.items():
                doc.append("")
                doc.append(f"SQL ({path.value})::")
                doc.append("")
                doc.append(f"{_INDENT}{statement.text}")

        lines: List[str] = [f"class {plan.class_name}({_BASE_CLASS[plan.shape]}):"]
        lines.extend(make_docstring("\n".join(doc)))
        lines.append("")
        lines.append(f"{_INDENT}__slots__ = ()")
        lines.append(f"{_INDENT}plan = _PLANS[QueryShape.{plan.shape.name}]")
        lines.append(f"{_INDENT}row_model = {schema.struct_name}")

        for spec in plan.typestate.setters:
            if spec.field_name is None:
                continue
            f: Field = schema.get_field(spec.field_name)
            kind: str = "Filter on" if spec.is_free and plan.shape is QueryShape.MANY else "Set"
            body: List[str] = [
                f"def {spec.name}(self, value: {annotations[f.name]}) -> {plan.class_name}:",
            ]
            body.extend(make_docstring(f"{kind} ``{f.name}``.", indent_level=1))
            body.append(f'{_INDENT}return self._set("{spec.name}", value)')
            lines.append("")
            lines.extend(indent_lines(body))
        lines.append("")
        return lines

    def _render_facade(self, compiled: CompiledEntity) -> List[str]:
        schema = compiled.schema
        lines: List[str] = [f"class {schema.facade_name}:"]
        lines.extend(make_docstring(f"Query entry points for ``{schema.table_name}``."))
        for shape, plan in compiled.plans.items():
            lines.append("")
            lines.append(f"{_INDENT}@staticmethod")
            lines.append(f"{_INDENT}def {shape.value}() -> {plan.class_name}:")
            lines.append(f"{_INDENT * 2}return {plan.class_name}()")
        lines.append("")
        return lines

    # ===================================================================
    # Package files
    # ===================================================================

    def render_package_init(self, compiled: Sequence[CompiledEntity]) -> str:
        """``__init__.py`` re-exporting every row model and facade."""
        lines: List[str] = []
        lines.append('"""')
        lines.append(f"{self._config.package_name} package.")
        lines.append("Generated by dbset.")
        lines.append('"""')
        lines.append("")
        exported: List[str] = []
        for entity in compiled:
            names: List[str] = [entity.schema.struct_name, entity.schema.facade_name]
            lines.append(f"from .{module_name(entity)} import {', '.join(names)}")
            exported.extend(names)
        lines.append("")
        lines.append("__all__ = [")
        lines.extend(f'{_INDENT}"{name}",' for name in exported)
        lines.append("]")
        lines.append("")
        return "\n".join(lines)

    def render_sql_listing(self, compiled: Sequence[CompiledEntity]) -> str:
        """Every canonical statement, one per line, labelled with a SQL comment."""
        lines: List[str] = []
        for entity in compiled:
            for shape, plan in entity.plans.items():
                for path, statement in plan.statements.items():
                    lines.append(f"-- {entity.name}.{shape.value} [{path.value}]")
                    lines.append(statement.text)
            lines.append("")
        return "\n".join(lines)

    def generate_all(self, compiled: Sequence[CompiledEntity]) -> Dict[str, str]:
        """
        Render every file of the generated package.

        Returns a dict of relative_path → file_content.
        """
        package: str = self._config.package_name
        result: Dict[str, str] = {}
        for entity in compiled:
            result[f"{package}/{module_name(entity)}.py"] = self.render_entity(entity)
        if self._config.generate_init:
            result[f"{package}/__init__.py"] = self.render_package_init(compiled)

        logger.info(
            "Rendered %d file(s) for %d entit%s.",
            len(result),
            len(compiled),
            "y" if len(compiled) == 1 else "ies",
        )
        return result


__all__: List[str] = [
    "module_name",
    "statement_constant",
    "annotation_for",
    "TemplateGenerator",
]

logger.debug("dbset.templates loaded.")
