from __future__ import annotations

import logging
from typing import Any, Protocol


class OptimizeObserver(Protocol):
    def on_partition_planned(self, table_id: str, partition: str, optimize_type: str, file_count: int) -> None:
        raise NotImplementedError

    def on_partition_skipped(self, table_id: str, partition: str, reason: str) -> None:
        raise NotImplementedError

    def on_tasks_created(self, table_id: str, tasks: list[Any]) -> None:
        raise NotImplementedError

    def on_commit_start(self, table_id: str, partition: str, task_count: int) -> None:
        raise NotImplementedError

    def on_partition_committed(
        self,
        table_id: str,
        partition: str,
        duration_s: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError

    def on_error(self, stage: str, table_id: str, partition: str | None, exc: Exception) -> None:
        raise NotImplementedError


class LoggingObserver:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("lake_optimizer")

    def on_partition_planned(self, table_id: str, partition: str, optimize_type: str, file_count: int) -> None:
        self._log(
            "partition_planned",
            table=table_id,
            partition=partition,
            optimize_type=optimize_type,
            file_count=file_count,
        )

    def on_partition_skipped(self, table_id: str, partition: str, reason: str) -> None:
        self._logger.debug("event=partition_skipped table=%s partition=%s reason=%s", table_id, partition, reason)

    def on_tasks_created(self, table_id: str, tasks: list[Any]) -> None:
        self._log("tasks_created", table=table_id, task_count=len(tasks))

    def on_commit_start(self, table_id: str, partition: str, task_count: int) -> None:
        self._log("commit_start", table=table_id, partition=partition, task_count=task_count)

    def on_partition_committed(
        self,
        table_id: str,
        partition: str,
        duration_s: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {"table": table_id, "partition": partition, "duration_s": duration_s}
        if metadata:
            payload["metadata"] = metadata
        self._log("partition_committed", **payload)

    def on_error(self, stage: str, table_id: str, partition: str | None, exc: Exception) -> None:
        self._logger.error(
            "event=error stage=%s table=%s partition=%s error=%s",
            stage,
            table_id,
            partition,
            exc,
            exc_info=exc,
        )

    def _log(self, event: str, **fields: Any) -> None:
        parts = [f"event={event}"]
        for key, value in fields.items():
            parts.append(f"{key}={value}")
        self._logger.info(" ".join(parts))
