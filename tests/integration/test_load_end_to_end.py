from __future__ import annotations

from decimal import Decimal

import psycopg
import pytest

from batch_loader.db.executor import PsycopgExecutor
from batch_loader.errors import ExecutionFailedError
from batch_loader.load.orchestrator import BatchLoader
from batch_loader.mapping.config_store import InMemoryConfigStore
from batch_loader.mapping.types import CalculationKind, FieldMapping, LoadConfig, LoadKind

pytestmark = pytest.mark.integration

USER_MAPPINGS = [
    FieldMapping("id", "id", is_primary=True),
    FieldMapping("name", "name"),
    FieldMapping(None, "total", CalculationKind.arithmetic, "price * qty"),
]


def users_config(**overrides) -> LoadConfig:
    values = {
        "config_id": "users",
        "table_name": "loader_users",
        "load_kind": LoadKind.insert,
        "field_mappings": USER_MAPPINGS,
        "batch_size": 2,
        "dialect": "postgresql",
    }
    values.update(overrides)
    return LoadConfig(**values)


def users(n: int, *, name: str = "user") -> list[dict]:
    return [{"id": i, "name": f"{name}{i}", "price": "1.50", "qty": i} for i in range(1, n + 1)]


@pytest.fixture()
def loader(conn: psycopg.Connection) -> BatchLoader:
    return BatchLoader(InMemoryConfigStore(), PsycopgExecutor(conn))


def test_insert_in_batches(loader: BatchLoader, conn: psycopg.Connection, row_count) -> None:
    result = loader.load(users_config(), users(5))

    assert result.success
    assert result.affected_rows == 5
    assert row_count("loader_users") == 5
    total = conn.execute("SELECT SUM(total) FROM loader_users").fetchone()[0]
    assert total == Decimal("22.50")


def test_native_upsert_updates_existing_rows(loader: BatchLoader, conn: psycopg.Connection, row_count) -> None:
    loader.load(users_config(), users(3))
    result = loader.load(users_config(load_kind=LoadKind.upsert), users(4, name="new"))

    assert result.success
    assert row_count("loader_users") == 4
    names = [r[0] for r in conn.execute("SELECT name FROM loader_users ORDER BY id").fetchall()]
    assert names == ["new1", "new2", "new3", "new4"]


def test_values_join_update(loader: BatchLoader, conn: psycopg.Connection) -> None:
    """12 rows per batch goes through the UPDATE ... FROM (VALUES ...) form."""
    loader.load(users_config(batch_size=20), users(12))
    result = loader.load(users_config(load_kind=LoadKind.update, batch_size=12), users(12, name="upd"))

    assert result.success
    assert result.affected_rows == 12
    ct = conn.execute("SELECT COUNT(*) FROM loader_users WHERE name LIKE 'upd%%'").fetchone()[0]
    assert ct == 12


def test_statement_per_row_update_counts_every_statement(loader: BatchLoader) -> None:
    loader.load(users_config(), users(3))
    result = loader.load(users_config(load_kind=LoadKind.update, batch_size=3), users(3, name="x"))
    assert result.affected_rows == 3


def test_delete_by_key(loader: BatchLoader, row_count) -> None:
    loader.load(users_config(), users(5))
    result = loader.load(users_config(load_kind=LoadKind.delete), users(3))

    assert result.success
    assert result.affected_rows == 3
    assert row_count("loader_users") == 2


def test_non_transactional_failure_keeps_other_batches(loader: BatchLoader, row_count) -> None:
    rows = users(6)
    rows[2]["name"] = None      # NOT NULL violation in batch 2
    result = loader.load(users_config(), rows)

    assert result.failed_records == 2
    assert result.success_records == 4
    assert result.errors[0].startswith("batch 2: execution_failed")
    assert row_count("loader_users") == 4


def test_transactional_failure_rolls_back_everything(
    loader: BatchLoader, conn: psycopg.Connection, row_count
) -> None:
    rows = users(6)
    rows[2]["name"] = None

    with pytest.raises(ExecutionFailedError) as e:
        with conn.transaction():
            loader.load(users_config(transactional=True), rows)

    assert e.value.batch_number == 2
    assert row_count("loader_users") == 0


def test_keyed_insert_returns_generated_keys(loader: BatchLoader) -> None:
    config = LoadConfig(
        config_id="items",
        table_name="loader_items",
        load_kind=LoadKind.insert,
        field_mappings=[FieldMapping("label", "label")],
        generated_key="item_id",
    )
    result = loader.batch_insert_optimized(config, [{"label": f"item{i}"} for i in range(5)], 2)

    assert result.success
    assert result.generated_keys == [1, 2, 3, 4, 5]
    assert result.affected_rows == 5
