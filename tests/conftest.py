"""
tests/conftest.py
Shared fixtures for the dbset test suite.

No external mocking libraries are used: database access goes through a small
recording executor, and file I/O happens inside pytest's tmp_path.
"""

from __future__ import annotations

import copy
import pathlib
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
import yaml

from dbset.analyzer import analyze
from dbset.errors import RowNotFoundError
from dbset.facade import CompiledEntity, compile_entity
from dbset.models import EntitySchema


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

ROOT_DIR: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
EXAMPLE_SCHEMA_PATH: pathlib.Path = ROOT_DIR / "entities_example.yaml"


# ---------------------------------------------------------------------------
# Sample rows (as a database driver would return them)
# ---------------------------------------------------------------------------

SAMPLE_ROWS: List[Dict[str, Any]] = [
    {
        "id": "user-1",
        "name": "bob",
        "details": None,
        "email": "bob@example.com",
        "status:UserStatus": "active",
    },
    {
        "id": "user-2",
        "name": "bob",
        "details": "the best bob",
        "email": "bob2@example.com",
        "status:UserStatus": "inactive",
    },
    {
        "id": "user-3",
        "name": "alice",
        "details": None,
        "email": "alice@example.com",
        "status:UserStatus": "active",
    },
]


class RecordingExecutor:
    """
    Executor double: records every call and answers from canned rows.

    ``fetch_one`` / ``fetch_optional`` answer with the first canned row.
    """

    def __init__(self, rows: Optional[Sequence[Dict[str, Any]]] = None) -> None:
        self.rows: List[Dict[str, Any]] = [dict(r) for r in rows or []]
        self.calls: List[Tuple[str, str, Tuple[Any, ...]]] = []

    def _record(self, method: str, sql: str, params: Sequence[Any]) -> None:
        self.calls.append((method, sql, tuple(params)))

    async def fetch_all(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        self._record("fetch_all", sql, params)
        return [dict(r) for r in self.rows]

    async def fetch_one(self, sql: str, params: Sequence[Any]) -> Dict[str, Any]:
        self._record("fetch_one", sql, params)
        if not self.rows:
            raise RowNotFoundError(sql)
        return dict(self.rows[0])

    async def fetch_optional(self, sql: str, params: Sequence[Any]) -> Optional[Dict[str, Any]]:
        self._record("fetch_optional", sql, params)
        return dict(self.rows[0]) if self.rows else None

    async def execute(self, sql: str, params: Sequence[Any]) -> int:
        self._record("execute", sql, params)
        return 1

    @property
    def last_call(self) -> Tuple[str, str, Tuple[Any, ...]]:
        return self.calls[-1]


# ---------------------------------------------------------------------------
# Entity declaration fixtures
# ---------------------------------------------------------------------------


def make_user_entity() -> Dict[str, Any]:
    """The reference ``User`` entity used across the suite."""
    return {
        "name": "User",
        "table_name": "users",
        "fields": [
            {"name": "id", "type": "str", "key": True},
            {"name": "name", "type": "str"},
            {"name": "details", "type": "Optional[str]"},
            {"name": "email", "type": "str", "unique": True},
            {"name": "status", "type": "UserStatus", "custom_enum": True},
        ],
        "enums": [
            {"name": "UserStatus", "type_name": "user_status", "values": ["active", "inactive"]},
        ],
    }


@pytest.fixture()
def user_entity() -> Dict[str, Any]:
    """Fresh copy of the User declaration; tests may mutate it."""
    return make_user_entity()


@pytest.fixture()
def user_schema(user_entity: Dict[str, Any]) -> EntitySchema:
    return analyze(user_entity)


@pytest.fixture()
def user_compiled(user_entity: Dict[str, Any]) -> CompiledEntity:
    return compile_entity(user_entity)


@pytest.fixture()
def user_dbset(user_compiled: CompiledEntity) -> type:
    """The runtime ``UserDbSet`` facade."""
    return user_compiled.facade


@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor(SAMPLE_ROWS)


@pytest.fixture()
def empty_executor() -> RecordingExecutor:
    return RecordingExecutor([])


# ---------------------------------------------------------------------------
# Schema file fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def raw_example_dict() -> Dict[str, Any]:
    """Load entities_example.yaml once per session."""
    assert EXAMPLE_SCHEMA_PATH.exists(), (
        f"Reference schema not found at {EXAMPLE_SCHEMA_PATH}. "
        "Make sure entities_example.yaml is in the project root."
    )
    with open(EXAMPLE_SCHEMA_PATH, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    assert isinstance(data, dict), "Top-level YAML must be a mapping."
    return data


@pytest.fixture()
def example_dict(raw_example_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of the example schema so each test can mutate freely."""
    return copy.deepcopy(raw_example_dict)


@pytest.fixture()
def user_schema_dict(user_entity: Dict[str, Any]) -> Dict[str, Any]:
    """A complete schema file body holding only the User entity."""
    return {
        "config": {"package_name": "store"},
        "entities": [user_entity],
    }


@pytest.fixture()
def write_schema(tmp_path: pathlib.Path):
    """Return a helper that dumps a schema dict to ``tmp_path`` as YAML."""

    def _write(data: Dict[str, Any], name: str = "entities.yaml") -> pathlib.Path:
        path = tmp_path / name
        with open(path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(data, fh, default_flow_style=False, sort_keys=False)
        return path

    return _write


@pytest.fixture()
def user_yaml_path(user_schema_dict: Dict[str, Any], write_schema) -> pathlib.Path:
    return write_schema(user_schema_dict)


@pytest.fixture()
def output_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """A clean output directory inside tmp_path."""
    out = tmp_path / "generated_output"
    out.mkdir(parents=True, exist_ok=True)
    return out


@pytest.fixture()
def example_schema_path() -> pathlib.Path:
    return EXAMPLE_SCHEMA_PATH
