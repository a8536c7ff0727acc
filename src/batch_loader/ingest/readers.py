from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Iterator, Mapping


def stream_csv_dict_rows(path: Path) -> Iterator[Mapping[str, Any]]:
    """
    Yields one dict per CSV data row, header not counted.

    Empty cells become `None`, so default-value mappings apply to them.
    """
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            # csv.DictReader returns dict[str, str | None]
            yield {k.strip(): (v if v not in ("", None) else None) for k, v in row.items() if k is not None}


def stream_jsonl_dict_rows(path: Path) -> Iterator[Mapping[str, Any]]:
    """
    Yields one dict per JSONL line.

    Blank lines are skipped; line numbers in errors count them anyway.
    """
    with path.open("r", encoding="utf-8") as f:
        for i, line in enumerate(f, start=1):
            s = line.strip()
            if not s:
                continue
            obj = json.loads(s)
            if not isinstance(obj, dict):
                raise ValueError(f"JSONL line {i} is not an object")
            yield obj


def read_records(path: Path) -> list[Mapping[str, Any]]:
    """All records of a `.csv`, `.jsonl` or `.json` (array of objects) file."""
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return list(stream_csv_dict_rows(path))
    if suffix in (".jsonl", ".ndjson"):
        return list(stream_jsonl_dict_rows(path))
    if suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise ValueError(f"{path}: expected a JSON array of objects")
        return data
    raise ValueError(f"unsupported input format: {path.suffix or path.name}")
