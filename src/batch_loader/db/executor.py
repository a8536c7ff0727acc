from __future__ import annotations

from typing import Any, Protocol, Sequence

import psycopg
from psycopg import Connection

from batch_loader.errors import ExecutionFailedError

Params = Sequence[Any]


class StatementExecutor(Protocol):
    """The one thing the loader needs from a datastore: run a statement, count rows."""

    def execute(self, statement: str, params: Params | None = None) -> int: ...

    def execute_many(self, statement: str, params_list: Sequence[Params]) -> int: ...

    def execute_returning(self, statement: str, params: Params | None = None) -> list[tuple[Any, ...]]:
        """
        One row per inserted row, generated key first.

        For a plain insert (no `RETURNING`/`OUTPUT`) the executor derives the
        keys from its driver, e.g. mysql's `lastrowid` plus `rowcount`.
        """
        ...


def _failed(e: psycopg.Error) -> ExecutionFailedError:
    detail = str(e).strip().splitlines()[0] if str(e).strip() else ""
    return ExecutionFailedError(f"{type(e).__name__}: {detail}" if detail else type(e).__name__)


class PsycopgExecutor:
    """
    `StatementExecutor` over a psycopg connection.

    Every call runs inside `conn.transaction()`: with no transaction open that
    commits the call on its own (independent batches), and inside a caller's
    outer `with conn.transaction():` it becomes a savepoint, so one failing
    batch can't poison the rest and the caller still decides the final commit.

    Uses a client-side binding cursor so `;`-joined multi-statement batches can
    carry parameters.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _cursor(self) -> psycopg.ClientCursor:
        return psycopg.ClientCursor(self.conn)

    def execute(self, statement: str, params: Params | None = None) -> int:
        try:
            with self.conn.transaction():
                with self._cursor() as cur:
                    cur.execute(statement, params)
                    total = max(cur.rowcount, 0)
                    # `;`-joined statements produce one result each
                    while cur.nextset():
                        total += max(cur.rowcount, 0)
                    return total
        except psycopg.Error as e:
            raise _failed(e) from e

    def execute_many(self, statement: str, params_list: Sequence[Params]) -> int:
        if not params_list:
            return 0
        try:
            with self.conn.transaction():
                with self._cursor() as cur:
                    cur.executemany(statement, params_list)  # sequential batch processing
                    return max(cur.rowcount, 0)
        except psycopg.Error as e:
            raise _failed(e) from e

    def execute_returning(self, statement: str, params: Params | None = None) -> list[tuple[Any, ...]]:
        try:
            with self.conn.transaction():
                with self._cursor() as cur:
                    cur.execute(statement, params)
                    if cur.description is None:
                        # no RETURNING clause, postgres has no lastrowid to fall back on
                        return []
                    return [tuple(r) for r in cur.fetchall()]
        except psycopg.Error as e:
            raise _failed(e) from e
