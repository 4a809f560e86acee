"""
dbset - Error Taxonomy
======================

Two families of errors exist:

* ``GenerationError`` and its subclasses are raised while an entity is being
  analysed and compiled.  They are always fatal to generation: the entity
  author fixes the declaration and regenerates.
* ``BuilderError`` and its subclasses are raised by the runtime builders when
  a caller misuses the fluent API (terminal method called too early, a
  one-shot setter called twice).

Errors coming from the database executor are never wrapped; they reach the
caller unchanged.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class DbSetError(Exception):
    """Base class for every error raised by dbset itself."""


# ---------------------------------------------------------------------------
# Generation-time errors
# ---------------------------------------------------------------------------


class GenerationError(DbSetError):
    """Fatal problem found while compiling an entity."""

    def __init__(self, message: str, *, entity: Optional[str] = None) -> None:
        self.entity: Optional[str] = entity
        if entity:
            message = f"[{entity}] {message}"
        super().__init__(message)


class ConfigError(GenerationError, ValueError):
    """Malformed declaration or annotation."""


class FieldError(GenerationError):
    """A query shape has no eligible fields to work with."""


class SqlError(GenerationError):
    """Statement assembly was asked for something inconsistent."""


class CodeGenError(GenerationError):
    """Internal synthesis failure (e.g. colliding method names)."""


# ---------------------------------------------------------------------------
# Runtime builder errors
# ---------------------------------------------------------------------------


class BuilderError(DbSetError):
    """Misuse of a generated builder."""


class MissingRequiredFieldError(BuilderError):
    """A terminal method was called before every required slot was set."""

    def __init__(self, builder: str, slots: Sequence[str]) -> None:
        self.builder: str = builder
        self.slots: List[str] = list(slots)
        super().__init__(
            f"{builder}: cannot execute before the required input(s) "
            f"{', '.join(self.slots)} are set."
        )


class SlotAlreadySetError(BuilderError):
    """A one-shot setter was called on a slot that is no longer unset."""

    def __init__(self, builder: str, setter: str, reason: str) -> None:
        self.builder: str = builder
        self.setter: str = setter
        super().__init__(f"{builder}.{setter}() is not available: {reason}")


class RowNotFoundError(DbSetError):
    """``fetch_one`` ran but the statement returned no row."""

    def __init__(self, sql: str) -> None:
        self.sql: str = sql
        super().__init__(f"No row returned by: {sql}")


__all__: List[str] = [
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
