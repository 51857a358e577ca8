from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import InvalidTransitionError
from .files import ContentFile
from .task import OptimizeTask, OptimizeTaskId, OptimizeType

NEVER = -1


def now_ms() -> int:
    return int(time.time() * 1000)


class OptimizeStatus(str, Enum):
    PENDING = "Pending"
    SCHEDULED = "Scheduled"
    ACKED = "Acked"
    PREPARED = "Prepared"
    FAILED = "Failed"
    COMMITTED = "Committed"


_TRANSITIONS: dict[OptimizeStatus, frozenset[OptimizeStatus]] = {
    OptimizeStatus.PENDING: frozenset({OptimizeStatus.SCHEDULED}),
    OptimizeStatus.SCHEDULED: frozenset({OptimizeStatus.ACKED, OptimizeStatus.FAILED}),
    OptimizeStatus.ACKED: frozenset({OptimizeStatus.PREPARED, OptimizeStatus.FAILED}),
    OptimizeStatus.PREPARED: frozenset({OptimizeStatus.COMMITTED}),
    OptimizeStatus.FAILED: frozenset(),
    OptimizeStatus.COMMITTED: frozenset(),
}


class OptimizeTaskRuntime:
    """Execution state of one dispatched task, fed by the executor feedback channel."""

    def __init__(self, task_id: OptimizeTaskId) -> None:
        self.task_id = task_id
        self.status = OptimizeStatus.PENDING
        self.schedule_time = NEVER
        self.ack_time = NEVER
        self.prepared_time = NEVER
        self.report_time = NEVER
        self.commit_time = NEVER
        self.fail_time = NEVER
        self.fail_reason: str | None = None
        self.cost_time = 0
        self.target_files: list[ContentFile] = []
        self.new_file_count = 0
        self.new_file_size = 0
        self._lock = threading.Lock()

    def schedule(self, now: int | None = None) -> None:
        with self._lock:
            self._transition(OptimizeStatus.SCHEDULED)
            self.schedule_time = _resolve(now)

    def ack(self, now: int | None = None) -> None:
        with self._lock:
            self._transition(OptimizeStatus.ACKED)
            self.ack_time = _resolve(now)

    def report_prepared(
        self,
        target_files: Iterable[ContentFile],
        new_file_count: int,
        new_file_size: int,
        cost_time: int,
        now: int | None = None,
    ) -> None:
        with self._lock:
            self._transition(OptimizeStatus.PREPARED)
            timestamp = _resolve(now)
            self.target_files = list(target_files)
            self.new_file_count = int(new_file_count)
            self.new_file_size = int(new_file_size)
            self.cost_time = int(cost_time)
            self.prepared_time = timestamp
            self.report_time = timestamp

    def report_failed(self, reason: str, now: int | None = None) -> None:
        with self._lock:
            self._transition(OptimizeStatus.FAILED)
            timestamp = _resolve(now)
            self.fail_reason = reason
            self.fail_time = timestamp
            self.report_time = timestamp

    def mark_committed(self, now: int | None = None) -> None:
        with self._lock:
            self._transition(OptimizeStatus.COMMITTED)
            self.commit_time = _resolve(now)

    def _transition(self, target: OptimizeStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.task_id.trace_id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id.to_dict(),
            "status": self.status.value,
            "schedule_time": self.schedule_time,
            "ack_time": self.ack_time,
            "prepared_time": self.prepared_time,
            "report_time": self.report_time,
            "commit_time": self.commit_time,
            "fail_time": self.fail_time,
            "fail_reason": self.fail_reason,
            "cost_time": self.cost_time,
            "target_files": [file.to_dict() for file in self.target_files],
            "new_file_count": self.new_file_count,
            "new_file_size": self.new_file_size,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "OptimizeTaskRuntime":
        runtime = cls(OptimizeTaskId.from_dict(payload["task_id"]))
        runtime.status = OptimizeStatus(payload.get("status", OptimizeStatus.PENDING.value))
        runtime.schedule_time = int(payload.get("schedule_time", NEVER))
        runtime.ack_time = int(payload.get("ack_time", NEVER))
        runtime.prepared_time = int(payload.get("prepared_time", NEVER))
        runtime.report_time = int(payload.get("report_time", NEVER))
        runtime.commit_time = int(payload.get("commit_time", NEVER))
        runtime.fail_time = int(payload.get("fail_time", NEVER))
        runtime.fail_reason = payload.get("fail_reason")
        runtime.cost_time = int(payload.get("cost_time", 0))
        runtime.target_files = [ContentFile.from_dict(item) for item in payload.get("target_files", [])]
        runtime.new_file_count = int(payload.get("new_file_count", 0))
        runtime.new_file_size = int(payload.get("new_file_size", 0))
        return runtime

    def __repr__(self) -> str:
        return (
            f"OptimizeTaskRuntime(trace_id={self.task_id.trace_id!r}, status={self.status.value}, "
            f"new_file_count={self.new_file_count})"
        )


@dataclass(frozen=True)
class OptimizeTaskItem:
    task: OptimizeTask
    runtime: OptimizeTaskRuntime

    @classmethod
    def of(cls, task: OptimizeTask) -> "OptimizeTaskItem":
        return cls(task=task, runtime=OptimizeTaskRuntime(task.task_id))

    @property
    def partition(self) -> str:
        return self.task.partition


def group_by_partition(items: Iterable[OptimizeTaskItem]) -> dict[str, list[OptimizeTaskItem]]:
    grouped: dict[str, list[OptimizeTaskItem]] = {}
    for item in items:
        grouped.setdefault(item.partition, []).append(item)
    return grouped


class TableOptimizeRuntime:
    """Per-table, per-partition timestamps of the last successful optimizations.

    The planner only reads it; a successful commit is the only writer.
    """

    def __init__(
        self,
        table_id: str,
        *,
        latest_major_optimize_time: Mapping[str, int] | None = None,
        latest_full_optimize_time: Mapping[str, int] | None = None,
    ) -> None:
        self.table_id = table_id
        self._major = dict(latest_major_optimize_time or {})
        self._full = dict(latest_full_optimize_time or {})
        self._lock = threading.Lock()

    def get_latest_major_optimize_time(self, partition: str) -> int:
        with self._lock:
            return self._major.get(partition, NEVER)

    def get_latest_full_optimize_time(self, partition: str) -> int:
        with self._lock:
            return self._full.get(partition, NEVER)

    def record_commit(self, partition: str, optimize_type: OptimizeType, commit_time: int) -> None:
        with self._lock:
            if optimize_type in (OptimizeType.MAJOR, OptimizeType.FULL_MAJOR):
                self._major[partition] = commit_time
            if optimize_type is OptimizeType.FULL_MAJOR:
                self._full[partition] = commit_time

    def snapshot(self) -> "TableOptimizeRuntime":
        with self._lock:
            return TableOptimizeRuntime(
                self.table_id,
                latest_major_optimize_time=self._major,
                latest_full_optimize_time=self._full,
            )

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "table_id": self.table_id,
                "latest_major_optimize_time": dict(self._major),
                "latest_full_optimize_time": dict(self._full),
            }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TableOptimizeRuntime":
        return cls(
            str(payload["table_id"]),
            latest_major_optimize_time={
                str(k): int(v) for k, v in (payload.get("latest_major_optimize_time") or {}).items()
            },
            latest_full_optimize_time={
                str(k): int(v) for k, v in (payload.get("latest_full_optimize_time") or {}).items()
            },
        )


def _resolve(now: int | None) -> int:
    return now_ms() if now is None else int(now)
