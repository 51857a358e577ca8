from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Iterable

import polars as pl

from .commit import CommitRecord
from .runtime import OptimizeTaskRuntime, TableOptimizeRuntime

_HISTORY_SCHEMA = {
    "table_id": pl.Utf8,
    "partition": pl.Utf8,
    "optimize_type": pl.Utf8,
    "commit_time": pl.Int64,
    "duration_ms": pl.Int64,
    "snapshot_id": pl.Int64,
    "task_count": pl.Int64,
    "removed_file_count": pl.Int64,
    "removed_file_size": pl.Int64,
    "added_file_count": pl.Int64,
    "added_file_size": pl.Int64,
    "relocated": pl.Boolean,
}


class RuntimeStore:
    """Durable home for optimize runtimes and commit history under one directory.

    Layout::

        <root>/tables/<table>.json            table optimize runtime
        <root>/tasks/<table>.json             task runtimes keyed by trace id
        <root>/history/<table>.parquet        commit records
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _fsync_dir(self, path: Path) -> None:
        try:
            fd = os.open(path, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def _atomic_write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path.parent, delete=False) as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_path = Path(tmp.name)
        os.replace(tmp_path, path)
        self._fsync_dir(path.parent)

    def _path(self, kind: str, table_id: str, suffix: str) -> Path:
        return self.root / kind / f"{_safe_name(table_id)}{suffix}"

    def _save_json(self, path: Path, payload: Any) -> None:
        self._atomic_write(path, json.dumps(payload, indent=2, sort_keys=True).encode("utf-8"))

    def load_table_runtime(self, table_id: str) -> TableOptimizeRuntime:
        path = self._path("tables", table_id, ".json")
        if not path.exists():
            return TableOptimizeRuntime(table_id)
        return TableOptimizeRuntime.from_dict(json.loads(path.read_text()))

    def save_table_runtime(self, runtime: TableOptimizeRuntime) -> None:
        self._save_json(self._path("tables", runtime.table_id, ".json"), runtime.to_dict())

    def load_task_runtimes(self, table_id: str) -> dict[str, OptimizeTaskRuntime]:
        path = self._path("tasks", table_id, ".json")
        if not path.exists():
            return {}
        payload = json.loads(path.read_text())
        return {
            str(trace_id): OptimizeTaskRuntime.from_dict(item)
            for trace_id, item in payload.items()
        }

    def save_task_runtimes(self, table_id: str, runtimes: Iterable[OptimizeTaskRuntime]) -> None:
        payload = {runtime.task_id.trace_id: runtime.to_dict() for runtime in runtimes}
        self._save_json(self._path("tasks", table_id, ".json"), payload)

    def append_history(self, records: Iterable[CommitRecord]) -> int:
        rows = [record.to_dict() for record in records]
        if not rows:
            return 0
        frame = pl.DataFrame(rows, schema=_HISTORY_SCHEMA)
        by_table = frame.partition_by("table_id", as_dict=True)
        for key, chunk in by_table.items():
            table_id = key[0] if isinstance(key, tuple) else key
            path = self._path("history", str(table_id), ".parquet")
            existing = pl.read_parquet(path) if path.exists() else None
            combined = chunk if existing is None else pl.concat([existing, chunk], how="vertical_relaxed")
            self._write_parquet(path, combined)
        return len(rows)

    def load_history(self, table_id: str) -> pl.DataFrame:
        path = self._path("history", table_id, ".parquet")
        if not path.exists():
            return pl.DataFrame(schema=_HISTORY_SCHEMA)
        return pl.read_parquet(path)

    def _write_parquet(self, path: Path, df: pl.DataFrame) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        df.write_parquet(tmp_path)
        os.replace(tmp_path, path)
        try:
            with path.open("rb") as handle:
                os.fsync(handle.fileno())
        except OSError:
            pass
        self._fsync_dir(path.parent)

    def delete(self, table_id: str) -> bool:
        removed = False
        for kind, suffix in (("tables", ".json"), ("tasks", ".json"), ("history", ".parquet")):
            path = self._path(kind, table_id, suffix)
            if path.exists():
                path.unlink(missing_ok=True)
                removed = True
        return removed


def _safe_name(table_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", table_id)
