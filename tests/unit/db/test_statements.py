from __future__ import annotations

import pytest

from batch_loader.db.statements import (
    BatchStrategy,
    DialectClass,
    Statement,
    StatementBuilder,
    dialect_class,
    select_batch_strategy,
)
from batch_loader.errors import BatchTooLargeError, ConfigInvalidError, UnsupportedOperationError
from batch_loader.mapping.types import ConditionConfig, ConditionOperator, LoadConfig, LoadKind

FIELDS = ["id", "name", "age"]
PKS = ["id"]


@pytest.fixture()
def builder() -> StatementBuilder:
    return StatementBuilder()


## -- strategy selection


@pytest.mark.parametrize(
    ("batch_size", "dialect", "expected"),
    [
        (1, "mysql", BatchStrategy.single),
        (1, "oracle", BatchStrategy.single),
        (2, "postgresql", BatchStrategy.statement_per_row),
        (5, "mysql", BatchStrategy.statement_per_row),
        (10, "sqlserver", BatchStrategy.statement_per_row),
        (11, "mysql", BatchStrategy.values_join),
        (50, "MySQL", BatchStrategy.values_join),
        (100, "mariadb", BatchStrategy.values_join),
        (500, "postgresql", BatchStrategy.values_join),
        (11, "sqlserver", BatchStrategy.merge),
        (1000, "oracle", BatchStrategy.merge),
        (50, "sqlite", BatchStrategy.statement_per_row),
    ],
)
def test_select_batch_strategy(batch_size: int, dialect: str, expected: BatchStrategy) -> None:
    assert select_batch_strategy(batch_size, dialect) is expected


def test_mysql_batch_over_one_hundred_is_too_large() -> None:
    with pytest.raises(BatchTooLargeError) as e:
        select_batch_strategy(150, "mysql")
    assert "150" in str(e.value)


@pytest.mark.parametrize("batch_size", [0, -1, True, "5"])
def test_batch_size_must_be_positive_int(batch_size: object) -> None:
    with pytest.raises(ConfigInvalidError):
        select_batch_strategy(batch_size, "mysql")  # type: ignore[arg-type]


def test_dialect_class_is_case_insensitive() -> None:
    assert dialect_class(" PostgreSQL ") is DialectClass.postgres
    assert dialect_class("MSSQL") is DialectClass.merge
    assert dialect_class(None) is DialectClass.unknown


## -- single-row statements


def test_build_insert_with_literals(builder: StatementBuilder) -> None:
    stmt = builder.build(LoadKind.insert, "users", ["id", "name"], ["1", "'a'"])
    assert stmt.text == "INSERT INTO users (id, name) VALUES (1, 'a')"
    assert stmt.bindings == ()


def test_build_insert_with_placeholders(builder: StatementBuilder) -> None:
    stmt = builder.build("insert", "public.users", ["id", "name"])
    assert stmt.text == "INSERT INTO public.users (id, name) VALUES (%s, %s)"
    assert stmt.bind([{"id": 7, "name": "Ada"}]) == (7, "Ada")


def test_build_update(builder: StatementBuilder) -> None:
    stmt = builder.build("update", "users", ["name"], ["'b'"], where=["id = 1", "age > 3"])
    assert stmt.text == "UPDATE users SET name = 'b' WHERE id = 1 AND age > 3"


def test_build_delete(builder: StatementBuilder) -> None:
    assert builder.build("delete", "users", where=["id = 1"]).text == "DELETE FROM users WHERE id = 1"


@pytest.mark.parametrize("kind", ["update", "delete"])
def test_update_and_delete_need_where(builder: StatementBuilder, kind: str) -> None:
    with pytest.raises(ConfigInvalidError) as e:
        builder.build(kind, "users", ["name"], ["'b'"])
    assert "where" in str(e.value)


def test_fields_values_size_mismatch(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError) as e:
        builder.build("insert", "users", ["id", "name"], ["1"])
    assert "mismatch" in str(e.value)


def test_empty_fields(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError):
        builder.build("insert", "users", [], [])


@pytest.mark.parametrize("table", ["", "  ", "users; DROP TABLE x", "a.b.c", "1users"])
def test_bad_table_names_are_rejected(builder: StatementBuilder, table: str) -> None:
    with pytest.raises(ConfigInvalidError):
        builder.build("insert", table, ["id"])


def test_bad_field_names_are_all_reported(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError) as e:
        builder.build_batch_insert("users", ["id", "name--", "a b"], 2)
    assert len(e.value.violations) == 2


def test_unsupported_kind(builder: StatementBuilder) -> None:
    with pytest.raises(UnsupportedOperationError):
        builder.build("merge", "users", ["id"])


def test_single_upsert_mysql_excludes_keys_from_update_set(builder: StatementBuilder) -> None:
    stmt = builder.build("upsert", "users", FIELDS, primary_keys=PKS, dialect="mysql")
    head, _, clause = stmt.text.partition(" ON DUPLICATE KEY UPDATE ")
    assert head == "INSERT INTO users (id, name, age) VALUES (%s, %s, %s)"
    assert clause == "name = VALUES(name), age = VALUES(age)"
    assert "id" not in clause


def test_single_upsert_postgres(builder: StatementBuilder) -> None:
    stmt = builder.build("upsert", "users", FIELDS, primary_keys=PKS, dialect="postgresql")
    assert stmt.text.endswith("ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, age = EXCLUDED.age")


def test_single_upsert_defaults_to_postgres(builder: StatementBuilder) -> None:
    """Same default dialect as `LoadConfig`."""
    stmt = builder.build("upsert", "users", FIELDS, primary_keys=PKS)
    assert stmt.text.endswith("ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, age = EXCLUDED.age")
    assert LoadConfig("c", "users", LoadKind.upsert, []).dialect == "postgresql"


def test_upsert_with_only_key_fields_is_rejected(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError):
        builder.build("upsert", "users", ["id"], primary_keys=["id"])


def test_upsert_needs_keys_among_fields(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError):
        builder.build("upsert", "users", ["name"], primary_keys=["id"])
    with pytest.raises(ConfigInvalidError):
        builder.build("upsert", "users", ["name"], primary_keys=[])


## -- batch statements


def test_batch_insert_binds_rows_in_order(builder: StatementBuilder) -> None:
    stmt = builder.build_batch(LoadKind.insert, "users", ["id", "name"], None, 3, "mysql")
    assert stmt.text == "INSERT INTO users (id, name) VALUES (%s, %s), (%s, %s), (%s, %s)"
    rows = [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}, {"id": 3, "name": "c"}]
    assert stmt.bind(rows) == (1, "a", 2, "b", 3, "c")
    assert stmt.row_count == 3


def test_batch_update_single_row(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 1, "mysql")
    assert stmt.text == "UPDATE users SET name = %s, age = %s WHERE id = %s"
    assert stmt.bind([{"id": 1, "name": "a", "age": 30}]) == ("a", 30, 1)


def test_batch_update_five_rows_is_five_statements(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 5, "postgresql")
    parts = stmt.text.split("; ")
    assert len(parts) == 5
    assert all(p == "UPDATE users SET name = %s, age = %s WHERE id = %s" for p in parts)
    assert len(stmt.bindings) == 15


def test_batch_update_mysql_values_join(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 50, "mysql")
    assert stmt.text.startswith("UPDATE users AS target JOIN (VALUES ROW(%s, %s, %s), ROW(")
    assert stmt.text.count("ROW(") == 50
    assert stmt.text.endswith(
        "AS source (id, name, age) ON target.id = source.id SET target.name = source.name, target.age = source.age"
    )
    assert len(stmt.bindings) == 150


def test_batch_update_mysql_too_large(builder: StatementBuilder) -> None:
    with pytest.raises(BatchTooLargeError):
        builder.build_batch("update", "users", FIELDS, PKS, 150, "mysql")


def test_batch_update_postgres_from_values(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 12, "postgresql")
    assert stmt.text.startswith("UPDATE users AS target SET name = source.name, age = source.age FROM (VALUES (")
    assert stmt.text.endswith("AS source (id, name, age) WHERE target.id = source.id")


def test_batch_update_sqlserver_merge(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 11, "sqlserver")
    assert stmt.text.startswith("MERGE INTO users AS target USING (VALUES (")
    assert "ON target.id = source.id WHEN MATCHED THEN UPDATE SET target.name = source.name" in stmt.text
    assert "WHEN NOT MATCHED" not in stmt.text


def test_batch_update_unknown_dialect_falls_back_to_per_row(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("update", "users", FIELDS, PKS, 11, "sqlite")
    assert len(stmt.text.split("; ")) == 11


def test_batch_upsert_postgres(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("upsert", "users", FIELDS, PKS, 2, "postgresql")
    assert stmt.text == (
        "INSERT INTO users (id, name, age) VALUES (%s, %s, %s), (%s, %s, %s) "
        "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, age = EXCLUDED.age"
    )


def test_batch_upsert_merge(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("upsert", "users", FIELDS, PKS, 2, "oracle")
    assert "WHEN MATCHED THEN UPDATE SET target.name = source.name, target.age = source.age" in stmt.text
    assert stmt.text.endswith("WHEN NOT MATCHED THEN INSERT (id, name, age) VALUES (source.id, source.name, source.age);")


def test_batch_delete_single_key(builder: StatementBuilder) -> None:
    stmt = builder.build_batch("delete", "users", FIELDS, PKS, 3, "mysql")
    assert stmt.text == "DELETE FROM users WHERE id IN (%s, %s, %s)"
    assert stmt.bind([{"id": 1}, {"id": 2}, {"id": 3}]) == (1, 2, 3)


def test_batch_delete_composite_key_matches_tuples(builder: StatementBuilder) -> None:
    """Only the exact (a, b) pairs are deleted, never cross combinations."""
    stmt = builder.build_batch_delete("t", ["a", "b"], 2, "postgresql")
    assert stmt.text == "DELETE FROM t WHERE (a, b) IN ((%s, %s), (%s, %s))"
    assert stmt.bind([{"a": 1, "b": 2}, {"a": 3, "b": 4}]) == (1, 2, 3, 4)


def test_batch_delete_composite_key_without_row_values(builder: StatementBuilder) -> None:
    stmt = builder.build_batch_delete("t", ["a", "b"], 2, "sqlserver")
    assert stmt.text == "DELETE FROM t WHERE (a = %s AND b = %s) OR (a = %s AND b = %s)"


def test_batch_delete_needs_keys(builder: StatementBuilder) -> None:
    with pytest.raises(ConfigInvalidError):
        builder.build_batch_delete("t", [], 2, "mysql")


## -- keyed inserts


def test_keyed_insert_postgres_returning(builder: StatementBuilder) -> None:
    stmt = builder.build_keyed_insert("users", ["name"], "id", 2, "postgresql")
    assert stmt.text == "INSERT INTO users (name) VALUES (%s), (%s) RETURNING id"


def test_keyed_insert_sqlserver_output(builder: StatementBuilder) -> None:
    stmt = builder.build_keyed_insert("users", ["name"], "id", 1, "sqlserver")
    assert stmt.text == "INSERT INTO users (name) OUTPUT INSERTED.id VALUES (%s)"


def test_keyed_insert_mysql_is_a_plain_multi_row_insert(builder: StatementBuilder) -> None:
    """mysql has no RETURNING, its driver reports the generated keys."""
    stmt = builder.build_keyed_insert("users", ["name"], "id", 2, "mysql")
    assert stmt.text == "INSERT INTO users (name) VALUES (%s), (%s)"
    assert stmt.bind([{"name": "a"}, {"name": "b"}]) == ("a", "b")


## -- conditional statements


def test_conditional_update_binds_fields_then_conditions(builder: StatementBuilder) -> None:
    conditions = [
        ConditionConfig("email", ConditionOperator.eq, "${email}"),
        ConditionConfig("deleted_at", ConditionOperator.is_null),
    ]
    stmt = builder.build_conditional("update", "users", ["name"], conditions)
    assert stmt.text == "UPDATE users SET name = %s WHERE email = %s AND deleted_at IS NULL"
    assert [b.key for b in stmt.bindings] == ["name", "__cond_0"]


def test_conditional_delete_with_in_list(builder: StatementBuilder) -> None:
    conditions = [ConditionConfig("status", ConditionOperator.in_, ["a", "b", "c"])]
    stmt = builder.build_conditional("delete", "users", None, conditions)
    assert stmt.text == "DELETE FROM users WHERE status IN (%s, %s, %s)"


def test_conditional_insert_is_unsupported(builder: StatementBuilder) -> None:
    with pytest.raises(UnsupportedOperationError):
        builder.build_conditional("insert", "users", ["name"], [ConditionConfig("id", value=1)])


## -- binding


def test_qmark_placeholder() -> None:
    stmt = StatementBuilder(placeholder="?").build_batch_insert("users", ["id"], 2)
    assert stmt.text == "INSERT INTO users (id) VALUES (?), (?)"


def test_unknown_placeholder_style() -> None:
    with pytest.raises(ConfigInvalidError):
        StatementBuilder(placeholder=":1")


def test_bind_missing_key_and_too_few_rows() -> None:
    stmt = StatementBuilder().build_batch_insert("users", ["id", "name"], 2)
    with pytest.raises(ConfigInvalidError):
        stmt.bind([{"id": 1}, {"id": 2, "name": "b"}])
    with pytest.raises(ConfigInvalidError):
        stmt.bind([{"id": 1, "name": "a"}])


def test_literal_statement_binds_nothing() -> None:
    assert Statement("SELECT 1").bind([]) == ()
    assert str(Statement("SELECT 1")) == "SELECT 1"
