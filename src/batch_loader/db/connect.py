from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection

from batch_loader.settings import get_settings


def get_database_url() -> str:
    """The DSN loads run against."""
    # CLI/runtime reads BATCH_LOADER_DSN.
    # integration tests read BATCH_LOADER_TEST_DSN on their own.
    return get_settings().dsn


def connect(database_url: Optional[str] = None, *, autocommit: bool = False) -> Connection:
    """
    Open a psycopg connection for a load.

    - Falls back to `BATCH_LOADER_DSN` when no URL is given.
    - Autocommit stays OFF by default: `PsycopgExecutor` scopes each batch in
      `conn.transaction()`, and callers may wrap a whole load in one.
    """
    return psycopg.connect(database_url or get_database_url(), autocommit=autocommit)
