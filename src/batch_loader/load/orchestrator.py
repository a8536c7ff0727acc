from __future__ import annotations

from typing import Any, Iterator, Mapping, Sequence

from batch_loader.calc.registry import CalculatorRegistry, default_registry
from batch_loader.db.conditions import resolve_condition_params
from batch_loader.db.executor import StatementExecutor
from batch_loader.db.statements import Statement, StatementBuilder
from batch_loader.errors import ConfigInvalidError, ExecutionFailedError, LoadError, UnknownLoadError
from batch_loader.load.results import BatchResult, LoadResult
from batch_loader.mapping.config_store import ConfigStore
from batch_loader.mapping.types import LoadConfig, LoadKind, UpsertMode
from batch_loader.utils.logging import get_logger

logger = get_logger(__name__)

Record = Mapping[str, Any]


def chunked(records: Sequence[Record], size: int) -> Iterator[Sequence[Record]]:
    """Sequential, non-overlapping slices of at most `size` records."""
    for start in range(0, len(records), size):
        yield records[start:start + size]


class _Plan:
    """
    Statements for one load call, built per distinct batch size.

    Local to a call, so concurrent loads share nothing mutable.
    """

    def __init__(self, builder: StatementBuilder, config: LoadConfig) -> None:
        self.builder = builder
        self.config = config
        self._cache: dict[tuple[str, int], Statement] = {}

    def _get(self, kind: LoadKind, n: int) -> Statement:
        key = (kind.value, n)
        if key not in self._cache:
            c = self.config
            self._cache[key] = self.builder.build_batch(
                kind, c.table_name, c.target_fields, c.primary_keys, n, c.dialect
            )
        return self._cache[key]

    @property
    def conditional(self) -> bool:
        return bool(self.config.conditions) and self.config.load_kind in (LoadKind.update, LoadKind.delete)

    def conditional_statement(self) -> Statement:
        key = ("conditional", 1)
        if key not in self._cache:
            c = self.config
            fields = c.target_fields if c.load_kind is LoadKind.update else None
            self._cache[key] = self.builder.build_conditional(c.load_kind, c.table_name, fields, c.conditions)
        return self._cache[key]

    def main_statement(self, n: int) -> Statement:
        kind = self.config.load_kind
        if kind is LoadKind.upsert and self.config.upsert_mode is UpsertMode.insert_then_update:
            kind = LoadKind.insert
        return self._get(kind, n)

    def fallback_statement(self, n: int) -> Statement:
        return self._get(LoadKind.update, n)

    def prepare(self, n: int) -> None:
        """Build everything a batch of `n` rows needs, so statement errors surface before execution."""
        if self.conditional:
            self.conditional_statement()
            return
        self.main_statement(n)
        if self.config.load_kind is LoadKind.upsert and self.config.upsert_mode is UpsertMode.insert_then_update:
            self.fallback_statement(n)


class BatchLoader:
    """
    Configuration-driven batch loader.

    For each batch of source records: compute target values through the
    calculator registry, build the statement for the config's load kind and
    hand it to the executor. Batches run strictly in order, one at a time.

    - `transactional=False`: a failing batch is recorded in the `LoadResult`
      and the next batch still runs.
    - `transactional=True`: the first failing batch raises its `LoadError`
      (with `batch_number` set) and no later batch runs. Rolling back earlier
      batches is up to the executor's transaction scope.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        executor: StatementExecutor,
        *,
        registry: CalculatorRegistry | None = None,
        builder: StatementBuilder | None = None,
    ) -> None:
        self.config_store = config_store
        self.executor = executor
        self.registry = registry or default_registry()
        self.builder = builder or StatementBuilder()

    ## -- validation

    def _resolve_config(self, config_or_id: LoadConfig | str) -> LoadConfig:
        config = config_or_id if isinstance(config_or_id, LoadConfig) else self.config_store.get_config(config_or_id)
        config.validate()
        return config

    @staticmethod
    def _check_records(records: Sequence[Record] | None) -> list[Record]:
        if records is None:
            raise ConfigInvalidError("records cannot be None")
        rows = list(records)
        bad = [i for i, r in enumerate(rows) if not isinstance(r, Mapping)]
        if bad:
            raise ConfigInvalidError(f"records must be mappings, got non-mapping at index {bad[:10]}")
        return rows

    ## -- operations

    def transform(self, config_or_id: LoadConfig | str, records: Sequence[Record]) -> list[dict[str, Any]]:
        """Computed target rows, without executing anything."""
        config = self._resolve_config(config_or_id)
        return self.registry.transform(self._check_records(records), config.field_mappings)

    def load(self, config_or_id: LoadConfig | str, records: Sequence[Record]) -> LoadResult:
        """
        Run a full load.

        Config and input validation (and statement construction) happen before
        any statement executes, whatever the transactional mode.
        """
        config = self._resolve_config(config_or_id)
        rows = self._check_records(records)
        plan = _Plan(self.builder, config)
        if rows:
            plan.prepare(min(config.batch_size, len(rows)))

        log = logger.bind(
            config_id=config.config_id,
            table_name=config.table_name,
            load_kind=config.load_kind.value,
            transactional=config.transactional,
        )
        result = LoadResult(config_id=config.config_id)
        result.start(len(rows))
        log.info("load_started", records=len(rows), batch_size=config.batch_size)

        for number, batch in enumerate(chunked(rows, config.batch_size), start=1):
            try:
                affected = self._run_batch(config, plan, batch)
            except LoadError as e:
                if config.transactional:
                    e.batch_number = number
                    log.error("load_aborted", batch_number=number, rows=len(batch), error=str(e))
                    raise
                result.record_batch_failure(number, len(batch), str(e))
                log.warning("batch_failed", batch_number=number, rows=len(batch), error=str(e))
                continue
            except Exception as e:
                err = UnknownLoadError(f"{type(e).__name__}: {e}")
                if config.transactional:
                    err.batch_number = number
                    log.error("load_aborted", batch_number=number, rows=len(batch), error=str(err))
                    raise err from e
                result.record_batch_failure(number, len(batch), str(err))
                log.warning("batch_failed", batch_number=number, rows=len(batch), error=str(err))
                continue

            result.record_batch_success(len(batch), affected)
            log.debug("batch_executed", batch_number=number, rows=len(batch), affected_rows=affected)

        result.finish()
        log.info(
            "load_finished",
            success=result.success,
            success_records=result.success_records,
            failed_records=result.failed_records,
            affected_rows=result.affected_rows,
        )
        return result

    def _run_batch(self, config: LoadConfig, plan: _Plan, batch: Sequence[Record]) -> int:
        """Compute, build and execute one batch. Returns affected rows."""
        targets = self.registry.transform(batch, config.field_mappings)

        if plan.conditional:
            stmt = plan.conditional_statement()
            params_list = [
                stmt.bind([{**t, **resolve_condition_params(config.conditions, src)}])
                for t, src in zip(targets, batch)
            ]
            return self.executor.execute_many(stmt.text, params_list)

        stmt = plan.main_statement(len(targets))
        if config.load_kind is not LoadKind.upsert or config.upsert_mode is UpsertMode.native:
            return self.executor.execute(stmt.text, stmt.bind(targets))

        # whole-batch fallback: any insert failure retries the entire batch as an update
        try:
            return self.executor.execute(stmt.text, stmt.bind(targets))
        except ExecutionFailedError as e:
            logger.info("upsert_fallback_to_update", config_id=config.config_id, rows=len(targets), error=str(e))
            fallback = plan.fallback_statement(len(targets))
            return self.executor.execute(fallback.text, fallback.bind(targets))

    ## -- keyed inserts

    def batch_insert_with_keys(self, config_or_id: LoadConfig | str, records: Sequence[Record]) -> BatchResult:
        """
        Insert all `records` in one statement and collect the generated keys.

        Invalid configs raise; computation and execution failures come back as a
        failed `BatchResult`.
        """
        config = self._resolve_config(config_or_id)
        return self._insert_with_keys(config, self._check_records(records))

    def batch_insert_optimized(
        self, config_or_id: LoadConfig | str, records: Sequence[Record], batch_size: int
    ) -> BatchResult:
        """
        `batch_insert_with_keys` over sub-batches of `batch_size`.

        Keys are concatenated and affected rows summed. Stops at the first
        failing sub-batch and reports what was done up to there.
        """
        if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
            raise ConfigInvalidError(f"batch size must be a positive integer, got {batch_size!r}")
        config = self._resolve_config(config_or_id)
        rows = self._check_records(records)

        affected = 0
        keys: list[Any] = []
        for number, chunk in enumerate(chunked(rows, batch_size), start=1):
            res = self._insert_with_keys(config, chunk)
            if not res.success:
                return BatchResult.failed(
                    f"sub-batch {number}: {res.error_message}",
                    affected_rows=affected,
                    generated_keys=keys,
                )
            affected += res.affected_rows
            keys.extend(res.generated_keys)
        return BatchResult(success=True, affected_rows=affected, generated_keys=keys)

    def _insert_with_keys(self, config: LoadConfig, rows: Sequence[Record]) -> BatchResult:
        key = config.key_column
        if key is None:
            raise ConfigInvalidError("keyed insert needs a primary field mapping or a generated_key column")
        if not rows:
            return BatchResult(success=True)

        stmt = self.builder.build_keyed_insert(
            config.table_name, config.target_fields, key, len(rows), config.dialect
        )
        try:
            targets = self.registry.transform(rows, config.field_mappings)
            returned = self.executor.execute_returning(stmt.text, stmt.bind(targets))
        except LoadError as e:
            logger.warning("keyed_insert_failed", config_id=config.config_id, rows=len(rows), error=str(e))
            return BatchResult.failed(str(e))
        except Exception as e:
            err = UnknownLoadError(f"{type(e).__name__}: {e}")
            err.__cause__ = e
            logger.warning("keyed_insert_failed", config_id=config.config_id, rows=len(rows), error=str(err))
            return BatchResult.failed(str(err))

        # one key per input row, None where the row came back without one
        keys: list[Any] = [r[0] if r else None for r in returned[: len(rows)]]
        keys.extend([None] * (len(rows) - len(keys)))
        logger.debug("keyed_insert_executed", config_id=config.config_id, rows=len(rows), keys=len(returned))
        return BatchResult(success=True, affected_rows=len(returned), generated_keys=keys)
