from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

LoadState = Literal["not_started", "running", "completed"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LoadResult:
    """
    Running tally of one `load` call.

    not_started -> running (`start()`) -> completed (`finish()`), completed is terminal.
    Successful iff nothing failed and no error was recorded.
    """
    config_id: str
    total_records: int = 0
    success_records: int = 0
    failed_records: int = 0
    affected_rows: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def state(self) -> LoadState:
        if self.finished_at is not None:
            return "completed"
        if self.started_at is not None:
            return "running"
        return "not_started"

    @property
    def success(self) -> bool:
        return self.failed_records == 0 and not self.errors

    def _require_running(self) -> None:
        if self.state != "running":
            raise RuntimeError(f"load result for {self.config_id!r} is {self.state}, not running")

    def start(self, total_records: int) -> None:
        if self.state != "not_started":
            raise RuntimeError(f"load result for {self.config_id!r} already {self.state}")
        self.total_records = total_records
        self.started_at = _now()

    def record_batch_success(self, rows: int, affected_rows: int) -> None:
        self._require_running()
        self.success_records += rows
        self.affected_rows += affected_rows

    def record_batch_failure(self, batch_number: int, rows: int, reason: str) -> None:
        self._require_running()
        self.failed_records += rows
        self.errors.append(f"batch {batch_number}: {reason}")

    def finish(self) -> None:
        self._require_running()
        self.finished_at = _now()

    @property
    def duration_s(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def render_one_line(self) -> str:
        """How a load result is formatted for the terminal."""
        return (
            f"{self.config_id}: total={self.total_records} success={self.success_records} "
            f"failed={self.failed_records} affected={self.affected_rows} errors={len(self.errors)}"
        )


@dataclass
class BatchResult:
    """
    Outcome of a keyed insert.

    `generated_keys` has one entry per input row, `None` where no key came back.
    """
    success: bool
    affected_rows: int = 0
    generated_keys: list[Any] = field(default_factory=list)
    error_message: str | None = None

    @classmethod
    def failed(cls, message: str, *, affected_rows: int = 0, generated_keys: list[Any] | None = None) -> BatchResult:
        return cls(
            success=False,
            affected_rows=affected_rows,
            generated_keys=list(generated_keys or []),
            error_message=message,
        )
