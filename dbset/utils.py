"""
dbset - Utility Functions & Helpers
===================================
Identifier transformation, source formatting, file I/O and timing helpers
shared by the analyser, the template engine and the exporter.

- Case-conversion helpers are ``lru_cache``-decorated; the same field and
  entity names are converted many times during one generation pass.
- File writes go through a temp file + rename so a crash never leaves a
  half-written module behind.
"""

from __future__ import annotations

import functools
import hashlib
import keyword
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------
logger: logging.Logger = logging.getLogger("dbset.utils")

# ---------------------------------------------------------------------------
# Pre-compiled regex patterns
# ---------------------------------------------------------------------------

_CAMEL_TO_SNAKE_RE1: re.Pattern[str] = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_TO_SNAKE_RE2: re.Pattern[str] = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALPHANUM_RE: re.Pattern[str] = re.compile(r"[^a-zA-Z0-9]")
_MULTI_UNDERSCORE_RE: re.Pattern[str] = re.compile(r"_{2,}")
_LEADING_TRAILING_UNDERSCORE_RE: re.Pattern[str] = re.compile(r"^_+|_+$")

# SQL identifiers are interpolated into statement text, so only plain ASCII
# names are accepted.
_SQL_IDENTIFIER_RE: re.Pattern[str] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ---------------------------------------------------------------------------
# Cached string transformation functions
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=None)
def to_snake_case(name: str) -> str:
    """
    Convert any string to snake_case.

    Examples:
        >>> to_snake_case("UserStatus")
        'user_status'
        >>> to_snake_case("UserDbSet")
        'user_db_set'
    """
    if not name:
        return ""
    s: str = _CAMEL_TO_SNAKE_RE1.sub(r"\1_\2", name)
    s = _CAMEL_TO_SNAKE_RE2.sub(r"\1_\2", s)
    s = _NON_ALPHANUM_RE.sub("_", s)
    s = _MULTI_UNDERSCORE_RE.sub("_", s)
    s = _LEADING_TRAILING_UNDERSCORE_RE.sub("", s)
    return s.lower()


def is_sql_identifier(name: str) -> bool:
    """True when *name* may be interpolated into SQL text as-is."""
    return bool(_SQL_IDENTIFIER_RE.match(name))


def is_python_identifier(name: str) -> bool:
    """True when *name* can be used as a Python attribute / method name."""
    return name.isidentifier() and not keyword.iskeyword(name)


# ---------------------------------------------------------------------------
# Source formatting helpers
# ---------------------------------------------------------------------------


def indent_lines(lines: Sequence[str], level: int = 1, size: int = 4) -> List[str]:
    """Indent a list of lines, leaving blank lines empty."""
    prefix: str = " " * (level * size)
    return [prefix + line if line.strip() else "" for line in lines]


def make_docstring(text: str, indent_level: int = 1, size: int = 4) -> List[str]:
    """
    Create a formatted docstring as a list of source lines.

    Single-line docstrings stay on one line; multi-line ones use a block.
    """
    prefix: str = " " * (indent_level * size)
    stripped: str = text.strip()

    if "\n" not in stripped and len(stripped) + len(prefix) + 6 <= 99:
        return [f'{prefix}"""{stripped}"""']

    parts: List[str] = [f'{prefix}"""']
    parts.extend(f"{prefix}{line}" if line.strip() else "" for line in stripped.split("\n"))
    parts.append(f'{prefix}"""')
    return parts


def build_import_block(imports: Dict[str, Set[str]]) -> str:
    """
    Build a sorted, de-duplicated import block from a mapping of
    module → set of names.

    Example:
        >>> build_import_block({"typing": {"List", "Optional"}, "enum": {"Enum"}})
        'from enum import Enum\\nfrom typing import List, Optional'
    """
    lines: List[str] = []
    for module in sorted(imports.keys()):
        names: List[str] = sorted(imports[module])
        if names:
            lines.append(f"from {module} import {', '.join(names)}")
        else:
            lines.append(f"import {module}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# File I/O helpers
# ---------------------------------------------------------------------------


def ensure_directory(path: Path) -> None:
    """Create directory (and parents) if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured directory exists: %s", path)


def write_file(path: Path, content: str, atomic: bool = True) -> int:
    """
    Write *content* to *path*.

    When *atomic* is True, writes to a temporary file in the same directory
    first, then renames it over the target.

    Returns the number of bytes written.
    """
    ensure_directory(path.parent)

    encoded: bytes = content.encode("utf-8")

    if atomic:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(encoded)
            os.replace(tmp_path, str(path))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    else:
        path.write_bytes(encoded)

    logger.debug("Wrote %d bytes to %s", len(encoded), path)
    return len(encoded)


# ---------------------------------------------------------------------------
# Checksum & metrics
# ---------------------------------------------------------------------------


def sha256_hex(content: str) -> str:
    """Return SHA-256 hex digest of a string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def count_lines(content: str) -> int:
    """Count the number of lines in a string."""
    if not content:
        return 0
    return content.count("\n") + (1 if not content.endswith("\n") else 0)


# ---------------------------------------------------------------------------
# Timer context manager
# ---------------------------------------------------------------------------


class Timer:
    """
    Simple context-manager timer for profiling pipeline steps.

    Usage:
        with Timer("compile entities") as t:
            ...
        print(t.elapsed)
    """

    __slots__ = ("label", "start_time", "end_time", "elapsed")

    def __init__(self, label: str = "operation") -> None:
        self.label: str = label
        self.start_time: float = 0.0
        self.end_time: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        self.end_time = time.perf_counter()
        self.elapsed = self.end_time - self.start_time
        logger.debug("Timer [%s]: %.4f seconds", self.label, self.elapsed)

    def __repr__(self) -> str:
        return f"<Timer {self.label}: {self.elapsed:.4f}s>"


__all__: List[str] = [
    "to_snake_case",
    "is_sql_identifier",
    "is_python_identifier",
    "indent_lines",
    "make_docstring",
    "build_import_block",
    "ensure_directory",
    "write_file",
    "sha256_hex",
    "count_lines",
    "Timer",
]
