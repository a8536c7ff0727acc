from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import pytest

from batch_loader.errors import ExecutionFailedError
from batch_loader.mapping.config_store import InMemoryConfigStore
from batch_loader.mapping.types import CalculationKind, FieldMapping, LoadConfig, LoadKind


@dataclass
class Call:
    """One recorded executor call."""
    method: str
    statement: str
    params: Any


@dataclass
class RecordingExecutor:
    """
    A `StatementExecutor` without a database.

    Records every call. `fail_on` holds 1-based call numbers that raise
    `ExecutionFailedError`, `fail_when` fails any call whose statement matches.
    """
    rowcount: int = 1
    fail_on: set[int] = field(default_factory=set)
    fail_when: Callable[[str], bool] | None = None
    returning: Callable[[str, Any], list[tuple[Any, ...]]] | None = None
    calls: list[Call] = field(default_factory=list)

    def _record(self, method: str, statement: str, params: Any) -> None:
        self.calls.append(Call(method, statement, params))
        if len(self.calls) in self.fail_on or (self.fail_when is not None and self.fail_when(statement)):
            raise ExecutionFailedError(f"call {len(self.calls)} failed")

    def execute(self, statement: str, params: Sequence[Any] | None = None) -> int:
        self._record("execute", statement, params)
        return self.rowcount

    def execute_many(self, statement: str, params_list: Sequence[Sequence[Any]]) -> int:
        self._record("execute_many", statement, list(params_list))
        return self.rowcount * len(params_list)

    def execute_returning(self, statement: str, params: Sequence[Any] | None = None) -> list[tuple[Any, ...]]:
        self._record("execute_returning", statement, params)
        if self.returning is None:
            return []
        return self.returning(statement, params)


@pytest.fixture()
def executor() -> RecordingExecutor:
    """A fresh recording executor (never fails unless told to)."""
    return RecordingExecutor()


@pytest.fixture()
def make_executor() -> Callable[..., RecordingExecutor]:
    """Factory for executors that fail on given calls or return generated keys."""
    return RecordingExecutor


@pytest.fixture()
def users_mappings() -> list[FieldMapping]:
    """id (primary), name (required) and an arithmetic total."""
    return [
        FieldMapping("id", "id", is_primary=True, is_required=True),
        FieldMapping("name", "name", is_required=True),
        FieldMapping(None, "total", CalculationKind.arithmetic, "price * qty"),
    ]


@pytest.fixture()
def make_config(users_mappings: list[FieldMapping]) -> Callable[..., LoadConfig]:
    """Build a `users` load config, overriding any field by keyword."""

    def _make(**overrides: Any) -> LoadConfig:
        values: dict[str, Any] = {
            "config_id": "users",
            "table_name": "users",
            "load_kind": LoadKind.insert,
            "field_mappings": users_mappings,
            "batch_size": 3,
            "dialect": "postgresql",
        }
        values.update(overrides)
        return LoadConfig(**values)

    return _make


@pytest.fixture()
def store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


def user_records(n: int) -> list[dict[str, Any]]:
    return [{"id": i, "name": f"user{i}", "price": "2.50", "qty": i} for i in range(1, n + 1)]


@pytest.fixture()
def records() -> Callable[[int], list[dict[str, Any]]]:
    """`records(n)` gives n valid user source records, ids starting at 1."""
    return user_records
