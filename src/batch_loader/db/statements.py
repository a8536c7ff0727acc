from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from batch_loader.db.conditions import render_condition
from batch_loader.db.identifiers import check_columns, check_identifier, check_table_name
from batch_loader.errors import (
    BatchTooLargeError,
    ConfigInvalidError,
    UnsupportedOperationError,
)
from batch_loader.mapping.types import ConditionConfig, LoadKind, parse_enum

# batch update thresholds
SINGLE_ROW_MAX = 1
STATEMENT_PER_ROW_MAX = 10
MYSQL_VALUES_JOIN_MAX = 100


class DialectClass(str, Enum):
    mysql = "mysql"
    postgres = "postgres"
    merge = "merge"         # sqlserver/oracle
    unknown = "unknown"


_DIALECTS: dict[str, DialectClass] = {
    "mysql": DialectClass.mysql,
    "mariadb": DialectClass.mysql,
    "postgresql": DialectClass.postgres,
    "postgres": DialectClass.postgres,
    "pg": DialectClass.postgres,
    "sqlserver": DialectClass.merge,
    "mssql": DialectClass.merge,
    "oracle": DialectClass.merge,
}


def dialect_class(dialect: str | None) -> DialectClass:
    """Group a dialect string (case-insensitive). Anything unrecognised is `unknown`."""
    return _DIALECTS.get(str(dialect or "").strip().lower(), DialectClass.unknown)


class BatchStrategy(str, Enum):
    single = "single"                         # one single-row statement
    statement_per_row = "statement_per_row"   # N single-row statements joined by `;`
    values_join = "values_join"               # UPDATE joined to a literal VALUES row set
    merge = "merge"                           # MERGE matched on primary key


def select_batch_strategy(batch_size: int, dialect: str) -> BatchStrategy:
    """
    Pick the batch update form for `batch_size` rows on `dialect`.

    | batch_size | dialect          | strategy                    |
    |------------|------------------|-----------------------------|
    | 1          | any              | single                      |
    | 2..10      | any              | statement_per_row           |
    | 11..100    | mysql-class      | values_join                 |
    | > 100      | mysql-class      | BatchTooLargeError          |
    | > 10       | postgres-class   | values_join                 |
    | > 10       | sqlserver/oracle | merge                       |
    | > 10       | unknown          | statement_per_row           |
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigInvalidError(f"batch size must be a positive integer, got {batch_size!r}")
    if batch_size <= SINGLE_ROW_MAX:
        return BatchStrategy.single
    if batch_size <= STATEMENT_PER_ROW_MAX:
        return BatchStrategy.statement_per_row

    dc = dialect_class(dialect)
    if dc is DialectClass.mysql:
        if batch_size > MYSQL_VALUES_JOIN_MAX:
            raise BatchTooLargeError(
                f"batch of {batch_size} rows exceeds {MYSQL_VALUES_JOIN_MAX} for {dialect}; split it into smaller batches"
            )
        return BatchStrategy.values_join
    if dc is DialectClass.postgres:
        return BatchStrategy.values_join
    if dc is DialectClass.merge:
        return BatchStrategy.merge
    return BatchStrategy.statement_per_row


@dataclass(frozen=True, slots=True)
class Binding:
    """Where one placeholder's value comes from: `rows[row][key]`."""
    row: int
    key: str


@dataclass(frozen=True, slots=True)
class Statement:
    """
    Statement text plus the ordered source of every placeholder in it.

    `bind(rows)` flattens per-row parameter dicts into the positional tuple the
    driver expects. Literal statements have no bindings.
    """
    text: str
    bindings: tuple[Binding, ...] = ()

    @property
    def row_count(self) -> int:
        return max((b.row for b in self.bindings), default=-1) + 1

    def bind(self, rows: Sequence[Mapping[str, Any]]) -> tuple[Any, ...]:
        if len(rows) < self.row_count:
            raise ConfigInvalidError(f"statement expects {self.row_count} rows, got {len(rows)}")
        try:
            return tuple(rows[b.row][b.key] for b in self.bindings)
        except KeyError as e:
            raise ConfigInvalidError(f"row is missing parameter {e.args[0]!r}") from None

    def __str__(self) -> str:
        return self.text


def _kind(kind: LoadKind | str) -> LoadKind:
    try:
        return parse_enum(LoadKind, kind)
    except ConfigInvalidError:
        raise UnsupportedOperationError(f"unsupported operation kind {kind!r}") from None


class StatementBuilder:
    """
    Builds insert/update/upsert/delete statements, single-row or batched.

    Stateless after construction. Every table and column name is checked by
    `batch_loader.db.identifiers` before it reaches statement text; values are
    placeholders (`%s` for psycopg/pymysql, `?` for qmark drivers) unless the
    caller supplies pre-rendered literals to `build`.
    """

    def __init__(self, placeholder: str = "%s") -> None:
        if placeholder not in ("%s", "?"):
            raise ConfigInvalidError(f"unsupported placeholder style {placeholder!r}")
        self.placeholder = placeholder

    ## -- shared pieces

    def _row_group(self, fields: Sequence[str], row: int, bindings: list[Binding]) -> str:
        bindings.extend(Binding(row, f) for f in fields)
        return "(" + ", ".join(self.placeholder for _ in fields) + ")"

    def _values_rows(
        self, fields: Sequence[str], batch_size: int, bindings: list[Binding], *, row_prefix: str = ""
    ) -> str:
        return ", ".join(row_prefix + self._row_group(fields, i, bindings) for i in range(batch_size))

    @staticmethod
    def _update_fields(fields: Sequence[str], primary_keys: Sequence[str]) -> list[str]:
        out = [f for f in fields if f not in primary_keys]
        if not out:
            raise ConfigInvalidError("no fields to update (all fields are primary keys)")
        return out

    @staticmethod
    def _check_keys(fields: Sequence[str], primary_keys: Sequence[str] | None) -> list[str]:
        if not primary_keys:
            raise ConfigInvalidError("primary keys cannot be empty")
        pks = check_columns(primary_keys, what="primary key")
        missing = [k for k in pks if k not in fields]
        if missing:
            raise ConfigInvalidError(f"primary keys not among fields: {missing}")
        return pks

    @staticmethod
    def _check_fields(fields: Sequence[str] | None) -> list[str]:
        if not fields:
            raise ConfigInvalidError("fields cannot be empty")
        return check_columns(fields)

    @staticmethod
    def _check_batch_size(batch_size: int) -> None:
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            raise ConfigInvalidError(f"batch size must be a positive integer, got {batch_size!r}")

    ## -- single-row statements

    def build(
        self,
        kind: LoadKind | str,
        table: str,
        fields: Sequence[str] | None = None,
        values: Sequence[str] | None = None,
        where: Sequence[str] | None = None,
        primary_keys: Sequence[str] | None = None,
        *,
        dialect: str = "postgresql",
    ) -> Statement:
        """
        One single-row statement.

        `values` are SQL literal fragments (see `conditions.format_literal`) and,
        when omitted, placeholders bound to row 0 are generated. `where` holds
        already-rendered condition fragments, joined with AND.
        """
        op = _kind(kind)
        tbl = check_table_name(table)

        if op is LoadKind.delete:
            if not where:
                raise ConfigInvalidError("where conditions are required for delete")
            return Statement(f"DELETE FROM {tbl} WHERE {' AND '.join(where)}")

        cols = self._check_fields(fields)
        if values is not None and len(values) != len(cols):
            raise ConfigInvalidError(f"fields and values size mismatch ({len(cols)} != {len(values)})")

        bindings: list[Binding] = []
        if values is None:
            rendered = [self.placeholder] * len(cols)
            bindings = [Binding(0, c) for c in cols]
        else:
            rendered = list(values)

        if op is LoadKind.insert:
            return Statement(
                f"INSERT INTO {tbl} ({', '.join(cols)}) VALUES ({', '.join(rendered)})",
                tuple(bindings),
            )

        if op is LoadKind.update:
            if not where:
                raise ConfigInvalidError("where conditions are required for update")
            sets = ", ".join(f"{c} = {v}" for c, v in zip(cols, rendered))
            return Statement(f"UPDATE {tbl} SET {sets} WHERE {' AND '.join(where)}", tuple(bindings))

        # upsert
        pks = self._check_keys(cols, primary_keys)
        return Statement(
            self._upsert_text(tbl, cols, pks, "(" + ", ".join(rendered) + ")", dialect),
            tuple(bindings),
        )

    def _upsert_text(self, tbl: str, cols: list[str], pks: list[str], rows_sql: str, dialect: str) -> str:
        """Insert of `rows_sql` with conflict resolution on `pks`. Keys are never in the update set."""
        upd = self._update_fields(cols, pks)
        dc = dialect_class(dialect)
        col_list = ", ".join(cols)

        if dc is DialectClass.postgres:
            sets = ", ".join(f"{c} = EXCLUDED.{c}" for c in upd)
            return f"INSERT INTO {tbl} ({col_list}) VALUES {rows_sql} ON CONFLICT ({', '.join(pks)}) DO UPDATE SET {sets}"

        if dc is DialectClass.merge:
            on = " AND ".join(f"target.{k} = source.{k}" for k in pks)
            sets = ", ".join(f"target.{c} = source.{c}" for c in upd)
            src = ", ".join(f"source.{c}" for c in cols)
            return (
                f"MERGE INTO {tbl} AS target USING (VALUES {rows_sql}) AS source ({col_list}) ON {on} "
                f"WHEN MATCHED THEN UPDATE SET {sets} "
                f"WHEN NOT MATCHED THEN INSERT ({col_list}) VALUES ({src});"
            )

        # mysql-class, and the default for unknown dialects
        sets = ", ".join(f"{c} = VALUES({c})" for c in upd)
        return f"INSERT INTO {tbl} ({col_list}) VALUES {rows_sql} ON DUPLICATE KEY UPDATE {sets}"

    def _update_by_key(self, tbl: str, cols: list[str], pks: list[str], row: int, bindings: list[Binding]) -> str:
        upd = self._update_fields(cols, pks)
        bindings.extend(Binding(row, c) for c in upd)
        bindings.extend(Binding(row, k) for k in pks)
        sets = ", ".join(f"{c} = {self.placeholder}" for c in upd)
        cond = " AND ".join(f"{k} = {self.placeholder}" for k in pks)
        return f"UPDATE {tbl} SET {sets} WHERE {cond}"

    ## -- batch statements

    def build_batch(
        self,
        kind: LoadKind | str,
        table: str,
        fields: Sequence[str] | None,
        primary_keys: Sequence[str] | None,
        batch_size: int,
        dialect: str,
    ) -> Statement:
        """One statement covering `batch_size` rows, bound from rows `0..batch_size-1`."""
        op = _kind(kind)
        self._check_batch_size(batch_size)
        if op is LoadKind.insert:
            return self.build_batch_insert(table, fields, batch_size)
        if op is LoadKind.update:
            return self.build_batch_update(table, fields, primary_keys, batch_size, dialect)
        if op is LoadKind.upsert:
            return self.build_batch_upsert(table, fields, primary_keys, batch_size, dialect)
        return self.build_batch_delete(table, primary_keys, batch_size, dialect)

    def build_batch_insert(self, table: str, fields: Sequence[str] | None, batch_size: int) -> Statement:
        """Multi-row INSERT, valid at any size on every supported dialect."""
        tbl = check_table_name(table)
        cols = self._check_fields(fields)
        self._check_batch_size(batch_size)
        bindings: list[Binding] = []
        rows_sql = self._values_rows(cols, batch_size, bindings)
        return Statement(f"INSERT INTO {tbl} ({', '.join(cols)}) VALUES {rows_sql}", tuple(bindings))

    def build_batch_update(
        self,
        table: str,
        fields: Sequence[str] | None,
        primary_keys: Sequence[str] | None,
        batch_size: int,
        dialect: str,
    ) -> Statement:
        """Keyed batch update in the form `select_batch_strategy` picks."""
        tbl = check_table_name(table)
        cols = self._check_fields(fields)
        pks = self._check_keys(cols, primary_keys)
        strategy = select_batch_strategy(batch_size, dialect)
        bindings: list[Binding] = []

        if strategy is BatchStrategy.single:
            return Statement(self._update_by_key(tbl, cols, pks, 0, bindings), tuple(bindings))

        if strategy is BatchStrategy.statement_per_row:
            text = "; ".join(self._update_by_key(tbl, cols, pks, i, bindings) for i in range(batch_size))
            return Statement(text, tuple(bindings))

        upd = self._update_fields(cols, pks)
        col_list = ", ".join(cols)
        on = " AND ".join(f"target.{k} = source.{k}" for k in pks)

        if strategy is BatchStrategy.merge:
            rows_sql = self._values_rows(cols, batch_size, bindings)
            sets = ", ".join(f"target.{c} = source.{c}" for c in upd)
            return Statement(
                f"MERGE INTO {tbl} AS target USING (VALUES {rows_sql}) AS source ({col_list}) ON {on} "
                f"WHEN MATCHED THEN UPDATE SET {sets};",
                tuple(bindings),
            )

        if dialect_class(dialect) is DialectClass.mysql:
            # MySQL 8 row constructors joined to the target
            rows_sql = self._values_rows(cols, batch_size, bindings, row_prefix="ROW")
            sets = ", ".join(f"target.{c} = source.{c}" for c in upd)
            return Statement(
                f"UPDATE {tbl} AS target JOIN (VALUES {rows_sql}) AS source ({col_list}) ON {on} SET {sets}",
                tuple(bindings),
            )

        rows_sql = self._values_rows(cols, batch_size, bindings)
        sets = ", ".join(f"{c} = source.{c}" for c in upd)
        return Statement(
            f"UPDATE {tbl} AS target SET {sets} FROM (VALUES {rows_sql}) AS source ({col_list}) WHERE {on}",
            tuple(bindings),
        )

    def build_batch_upsert(
        self,
        table: str,
        fields: Sequence[str] | None,
        primary_keys: Sequence[str] | None,
        batch_size: int,
        dialect: str,
    ) -> Statement:
        """One native insert-with-conflict-resolution statement for the whole batch."""
        tbl = check_table_name(table)
        cols = self._check_fields(fields)
        pks = self._check_keys(cols, primary_keys)
        self._check_batch_size(batch_size)
        bindings: list[Binding] = []
        rows_sql = self._values_rows(cols, batch_size, bindings)
        return Statement(self._upsert_text(tbl, cols, pks, rows_sql, dialect), tuple(bindings))

    def build_batch_delete(
        self,
        table: str,
        primary_keys: Sequence[str] | None,
        batch_size: int,
        dialect: str,
    ) -> Statement:
        """
        Delete `batch_size` rows by primary key.

        A single key uses `pk IN (...)`. Composite keys match whole tuples:
        `(a, b) IN ((..), (..))` on mysql/postgres, OR-ed AND groups elsewhere.
        """
        tbl = check_table_name(table)
        if not primary_keys:
            raise ConfigInvalidError("primary keys cannot be empty")
        pks = check_columns(primary_keys, what="primary key")
        self._check_batch_size(batch_size)
        bindings: list[Binding] = []

        if len(pks) == 1:
            (pk,) = pks
            bindings = [Binding(i, pk) for i in range(batch_size)]
            ph = ", ".join(self.placeholder for _ in range(batch_size))
            return Statement(f"DELETE FROM {tbl} WHERE {pk} IN ({ph})", tuple(bindings))

        if dialect_class(dialect) in (DialectClass.mysql, DialectClass.postgres):
            rows_sql = self._values_rows(pks, batch_size, bindings)
            return Statement(f"DELETE FROM {tbl} WHERE ({', '.join(pks)}) IN ({rows_sql})", tuple(bindings))

        groups: list[str] = []
        for i in range(batch_size):
            bindings.extend(Binding(i, k) for k in pks)
            groups.append("(" + " AND ".join(f"{k} = {self.placeholder}" for k in pks) + ")")
        return Statement(f"DELETE FROM {tbl} WHERE {' OR '.join(groups)}", tuple(bindings))

    def build_keyed_insert(
        self,
        table: str,
        fields: Sequence[str] | None,
        key_column: str,
        batch_size: int,
        dialect: str,
    ) -> Statement:
        """
        Multi-row insert that hands back `key_column` for every inserted row, in row order.

        postgres and mariadb get `RETURNING`, sqlserver gets `OUTPUT INSERTED`.
        Everywhere else this is the plain multi-row insert and the executor
        reports the keys the driver generated (mysql: `lastrowid` onwards).
        """
        tbl = check_table_name(table)
        cols = self._check_fields(fields)
        key = check_identifier(key_column, what="key column")
        self._check_batch_size(batch_size)
        bindings: list[Binding] = []
        rows_sql = self._values_rows(cols, batch_size, bindings)
        dc = dialect_class(dialect)
        d = str(dialect).strip().lower()

        if dc is DialectClass.postgres or d == "mariadb":
            return Statement(
                f"INSERT INTO {tbl} ({', '.join(cols)}) VALUES {rows_sql} RETURNING {key}", tuple(bindings)
            )
        if d in ("sqlserver", "mssql"):
            return Statement(
                f"INSERT INTO {tbl} ({', '.join(cols)}) OUTPUT INSERTED.{key} VALUES {rows_sql}", tuple(bindings)
            )
        return Statement(f"INSERT INTO {tbl} ({', '.join(cols)}) VALUES {rows_sql}", tuple(bindings))

    def build_conditional(
        self,
        kind: LoadKind | str,
        table: str,
        fields: Sequence[str] | None,
        conditions: Sequence[ConditionConfig],
    ) -> Statement:
        """
        Single-row update/delete filtered by configured conditions.

        Bound per record from the computed target values plus
        `conditions.resolve_condition_params(...)`.
        """
        op = _kind(kind)
        if op not in (LoadKind.update, LoadKind.delete):
            raise UnsupportedOperationError(f"conditions only apply to update/delete, not {op.value}")
        if not conditions:
            raise ConfigInvalidError(f"where conditions are required for {op.value}")

        where: list[str] = []
        cond_bindings: list[Binding] = []
        for i, c in enumerate(conditions):
            fragment, keys = render_condition(c, i, placeholder=self.placeholder)
            where.append(fragment)
            cond_bindings.extend(Binding(0, k) for k in keys)

        stmt = self.build(op, table, fields, where=where)
        return Statement(stmt.text, stmt.bindings + tuple(cond_bindings))
