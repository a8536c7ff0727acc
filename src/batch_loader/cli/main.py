from __future__ import annotations

import argparse
import sys
from pathlib import Path

from batch_loader.calc.registry import default_registry
from batch_loader.db.connect import connect
from batch_loader.db.executor import PsycopgExecutor
from batch_loader.db.statements import StatementBuilder
from batch_loader.errors import LoadError
from batch_loader.expression.evaluator import evaluate
from batch_loader.ingest.readers import read_records
from batch_loader.load.orchestrator import BatchLoader
from batch_loader.mapping.config_store import InMemoryConfigStore, load_config_file
from batch_loader.mapping.types import LoadKind
from batch_loader.settings import get_settings
from batch_loader.utils.logging import configure_logging


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for p in pairs:
        name, sep, value = p.partition("=")
        if not sep or not name.strip():
            raise argparse.ArgumentTypeError(f"expected name=value, got {p!r}")
        out[name.strip()] = value.strip()
    return out


def main(argv: list[str] | None = None) -> int:
    """
    A CLI for running configuration-driven loads.

    The `cmd` options are:
    ## load:
    Load a CSV/JSONL/JSON file through a JSON load config into the configured table.
    - `--config` path to the load config document,
    - `--input` path to the records,
    - `--dsn` optional, defaults to `BATCH_LOADER_DSN`.

    A result summary prints in the terminal upon completion. Exit code 1 if any batch failed.

    ### Example load usage:
    - `batch-loader load --config configs/orders.json --input data/orders.csv`

    ## sql:
    Print the batch statement a config would execute (dry run).
    - `--batch-size`, `--dialect` override the config.

    ## eval:
    Evaluate an arithmetic expression.
    - `batch-loader eval "(price - discount) * qty" --var price=9.99 --var discount=1 --var qty=3`
    """
    p = argparse.ArgumentParser(prog="batch-loader")
    sub = p.add_subparsers(dest="cmd", required=True)

    # load cmd
    load = sub.add_parser("load", help="Load records into a table through a load config.")
    load.add_argument("--config", required=True, help="Path to a JSON load config.")
    load.add_argument("--input", required=True, help="Path to input records (CSV, JSONL or JSON).")
    load.add_argument("--dsn", default=None, help="Database URL (defaults to BATCH_LOADER_DSN).")

    # sql cmd
    sql_p = sub.add_parser("sql", help="Print the statement a load config would run.")
    sql_p.add_argument("--config", required=True, help="Path to a JSON load config.")
    sql_p.add_argument("--batch-size", type=int, default=None)
    sql_p.add_argument("--dialect", default=None)

    # eval cmd
    eval_p = sub.add_parser("eval", help="Evaluate an arithmetic expression.")
    eval_p.add_argument("expression")
    eval_p.add_argument("--var", action="append", default=[], help="name=value, repeatable.")
    eval_p.add_argument("--scale", type=int, default=None, help="Defaults to BATCH_LOADER_SCALE.")

    p.add_argument("--log-level", default=None, help="Overrides BATCH_LOADER_LOG_LEVEL.")

    args = p.parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.cmd == "load":
            config = load_config_file(Path(args.config))
            records = read_records(Path(args.input))
            with connect(args.dsn) as conn:
                loader = BatchLoader(
                    InMemoryConfigStore([config]),
                    PsycopgExecutor(conn),
                    registry=default_registry(scale=get_settings().scale),
                )
                if config.transactional:
                    # one outer transaction, so a failed batch rolls back the whole load
                    with conn.transaction():
                        result = loader.load(config.config_id, records)
                else:
                    result = loader.load(config.config_id, records)

            print(result.render_one_line())
            for e in result.errors:
                print(f"  {e}")
            return 0 if result.success else 1

        if args.cmd == "sql":
            config = load_config_file(Path(args.config))
            builder = StatementBuilder()
            if config.conditions and config.load_kind in (LoadKind.update, LoadKind.delete):
                fields = config.target_fields if config.load_kind is LoadKind.update else None
                stmt = builder.build_conditional(config.load_kind, config.table_name, fields, config.conditions)
            else:
                stmt = builder.build_batch(
                    config.load_kind,
                    config.table_name,
                    config.target_fields,
                    config.primary_keys,
                    args.batch_size or config.batch_size,
                    args.dialect or config.dialect,
                )
            print(stmt.text)
            return 0

        if args.cmd == "eval":
            try:
                context = _parse_vars(args.var)
            except argparse.ArgumentTypeError as e:
                p.error(str(e))
            scale = get_settings().scale if args.scale is None else args.scale
            print(evaluate(args.expression, context, scale=scale))
            return 0

    except (LoadError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 2
