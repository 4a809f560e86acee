"""
dbset - Database Executors
==========================
Terminal builder methods talk to the database through the ``Executor``
protocol.  Statements use PostgreSQL-style ``$n`` positional placeholders and
parameters arrive as a tuple in placeholder order.

Two adapters ship with dbset:

* ``AsyncpgExecutor`` wraps an asyncpg ``Connection`` or ``Pool`` (native
  ``$n`` placeholders).
* ``SQLAlchemyExecutor`` wraps a SQLAlchemy ``AsyncConnection`` or
  ``AsyncSession`` and rewrites ``$n`` to named binds for ``text()``.

Errors raised by the driver are never caught or wrapped here.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from sqlalchemy import text

from dbset.errors import RowNotFoundError

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.executors")

Row = Mapping[str, Any]


@runtime_checkable
class Executor(Protocol):
    """What a builder needs from a database client."""

    async def fetch_all(self, sql: str, params: Sequence[Any]) -> List[Row]:
        ...

    async def fetch_one(self, sql: str, params: Sequence[Any]) -> Row:
        ...

    async def fetch_optional(self, sql: str, params: Sequence[Any]) -> Optional[Row]:
        ...

    async def execute(self, sql: str, params: Sequence[Any]) -> Any:
        ...


# ---------------------------------------------------------------------------
# asyncpg
# ---------------------------------------------------------------------------


class AsyncpgExecutor:
    """
    Adapter for an asyncpg connection or pool.

    asyncpg is an optional dependency (``pip install dbset[postgres]``); the
    adapter only relies on ``fetch``, ``fetchrow`` and ``execute``.
    """

    def __init__(self, connection: Any) -> None:
        self._conn: Any = connection

    async def fetch_all(self, sql: str, params: Sequence[Any]) -> List[Row]:
        logger.debug("asyncpg fetch: %s %r", sql, params)
        records = await self._conn.fetch(sql, *params)
        return [dict(r) for r in records]

    async def fetch_optional(self, sql: str, params: Sequence[Any]) -> Optional[Row]:
        logger.debug("asyncpg fetchrow: %s %r", sql, params)
        record = await self._conn.fetchrow(sql, *params)
        return None if record is None else dict(record)

    async def fetch_one(self, sql: str, params: Sequence[Any]) -> Row:
        row: Optional[Row] = await self.fetch_optional(sql, params)
        if row is None:
            raise RowNotFoundError(sql)
        return row

    async def execute(self, sql: str, params: Sequence[Any]) -> Any:
        logger.debug("asyncpg execute: %s %r", sql, params)
        return await self._conn.execute(sql, *params)


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------

_PLACEHOLDER_RE: re.Pattern[str] = re.compile(r"\$(\d+)(?:::([A-Za-z_][A-Za-z0-9_]*))?")


def to_named_binds(sql: str, params: Sequence[Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite ``$n`` placeholders to ``:pn`` named binds.

    ``$n::type`` casts become ``CAST(:pn AS type)`` because ``text()`` does
    not parse a bind directly followed by ``::``.

    Example:
        >>> to_named_binds("SELECT * FROM t WHERE a = $1 OR $1 IS NULL", ["x"])
        ('SELECT * FROM t WHERE a = :p1 OR :p1 IS NULL', {'p1': 'x'})
    """

    def replace(match: re.Match[str]) -> str:
        bind: str = f":p{match.group(1)}"
        cast: Optional[str] = match.group(2)
        return f"CAST({bind} AS {cast})" if cast else bind

    rewritten: str = _PLACEHOLDER_RE.sub(replace, sql)
    binds: Dict[str, Any] = {f"p{i}": value for i, value in enumerate(params, start=1)}
    return rewritten, binds


class SQLAlchemyExecutor:
    """Adapter for a SQLAlchemy ``AsyncConnection`` or ``AsyncSession``."""

    def __init__(self, connection: Any) -> None:
        self._conn: Any = connection

    async def _run(self, sql: str, params: Sequence[Any]) -> Any:
        statement, binds = to_named_binds(sql, params)
        logger.debug("sqlalchemy execute: %s %r", statement, binds)
        return await self._conn.execute(text(statement), binds)

    async def fetch_all(self, sql: str, params: Sequence[Any]) -> List[Row]:
        result = await self._run(sql, params)
        return [dict(m) for m in result.mappings().all()]

    async def fetch_optional(self, sql: str, params: Sequence[Any]) -> Optional[Row]:
        result = await self._run(sql, params)
        mapping = result.mappings().first()
        return None if mapping is None else dict(mapping)

    async def fetch_one(self, sql: str, params: Sequence[Any]) -> Row:
        row: Optional[Row] = await self.fetch_optional(sql, params)
        if row is None:
            raise RowNotFoundError(sql)
        return row

    async def execute(self, sql: str, params: Sequence[Any]) -> Any:
        result = await self._run(sql, params)
        return result.rowcount


__all__: List[str] = [
    "Row",
    "Executor",
    "AsyncpgExecutor",
    "SQLAlchemyExecutor",
    "to_named_binds",
]
