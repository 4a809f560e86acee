"""
dbset — Typed Query Builders for Relational Tables
===================================================

Derives, from one entity declaration, a family of immutable query builders:
``many`` (filtered fetch), ``one`` (lookup by key or unique field), ``insert``,
``update`` and ``delete``.  Each builder tracks which required slots are set
and only lets a complete builder produce its statement and run it.

Architecture overview::

    ┌──────────────┐     ┌───────────────┐     ┌──────────────────┐
    │  declaration │────▶│   analyzer    │────▶│  typestate + sql │
    │ class / yaml │     │ (EntitySchema)│     │    (shapes.py)   │
    └──────────────┘     └───────────────┘     └────────┬─────────┘
                                                        │
                         ┌──────────────────────────────┼──────────┐
                         ▼                              ▼          ▼
                  ┌────────────┐              ┌────────────┐ ┌──────────┐
                  │  facade    │              │ templates  │ │ executors│
                  │ (runtime)  │              │ (codegen)  │ │ (I/O)    │
                  └────────────┘              └────────────┘ └──────────┘

Usage::

    # At runtime, from an annotated class
    from dbset import Key, Unique, build_dbset
    UserDbSet = build_dbset(User)
    user = await UserDbSet.one().id_eq("user-1").fetch_one(executor)

    # At build time, from the command line
    dbset --schema entities.yaml --output ./src
"""

from __future__ import annotations

__version__: str = "1.0.0"
__license__: str = "MIT"

from dbset.analyzer import Auto, CustomEnum, Key, Unique, analyze
from dbset.builders import (
    DeleteQueryBuilderBase,
    InsertBuilderBase,
    ManyQueryBuilderBase,
    OneQueryBuilderBase,
    QueryBuilder,
    UpdateBuilderBase,
)
from dbset.errors import (
    BuilderError,
    CodeGenError,
    ConfigError,
    DbSetError,
    FieldError,
    GenerationError,
    MissingRequiredFieldError,
    RowNotFoundError,
    SlotAlreadySetError,
    SqlError,
)
from dbset.executors import AsyncpgExecutor, Executor, SQLAlchemyExecutor
from dbset.facade import CompiledEntity, build_dbset, compile_entities, compile_entity
from dbset.models import (
    CompletionPath,
    EntityDeclaration,
    EntitySchema,
    Field,
    GenerationConfig,
    QueryShape,
    SlotState,
    Statement,
)
from dbset.generator import DbSetGenerator, GenerationReport
from dbset.validators import ValidationResult, validate_full

__all__: list[str] = [
    # Version info
    "__version__",
    "__license__",
    # Field markers
    "Key",
    "Unique",
    "Auto",
    "CustomEnum",
    # Runtime entry points
    "analyze",
    "build_dbset",
    "compile_entity",
    "compile_entities",
    "CompiledEntity",
    # Builders
    "QueryBuilder",
    "ManyQueryBuilderBase",
    "OneQueryBuilderBase",
    "InsertBuilderBase",
    "UpdateBuilderBase",
    "DeleteQueryBuilderBase",
    # Executors
    "Executor",
    "AsyncpgExecutor",
    "SQLAlchemyExecutor",
    # Models
    "CompletionPath",
    "EntityDeclaration",
    "EntitySchema",
    "Field",
    "GenerationConfig",
    "QueryShape",
    "SlotState",
    "Statement",
    # Build-time generation
    "DbSetGenerator",
    "GenerationReport",
    "ValidationResult",
    "validate_full",
    # Errors
    "DbSetError",
    "GenerationError",
    "ConfigError",
    "FieldError",
    "SqlError",
    "CodeGenError",
    "BuilderError",
    "MissingRequiredFieldError",
    "SlotAlreadySetError",
    "RowNotFoundError",
]
