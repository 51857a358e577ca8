from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Collection, Iterable, Mapping

from .classifier import Classification, FileClassifier
from .config import TableConfig
from .errors import InvalidTableStateError, LakeOptimizerError, PlanningError
from .files import ContentFile
from .grouper import TaskGrouper
from .guard import DEFAULT_GUARD, PartitionGuard
from .observability import OptimizeObserver
from .runtime import TableOptimizeRuntime, now_ms
from .tables.base import TableCapabilities, TableHandle, TableKind
from .task import OptimizeTask, OptimizeType

logger = logging.getLogger("lake_optimizer")


@dataclass(frozen=True)
class PartitionDecision:
    partition: str
    optimize_type: OptimizeType | None
    tasks: tuple[OptimizeTask, ...] = ()
    reason: str | None = None

    @property
    def planned(self) -> bool:
        return self.optimize_type is not None and bool(self.tasks)


class OptimizePlan:
    """Plan one optimizing pass over a table's file listing.

    Each partition is decided independently from its own files and its own
    last-optimize timestamps; partitions that are already running are skipped.
    """

    def __init__(
        self,
        table: TableHandle,
        table_optimize_runtime: TableOptimizeRuntime,
        data_files: Iterable[ContentFile],
        delete_files: Iterable[ContentFile],
        running_partitions: Mapping[str, bool] | Collection[str] | None,
        queue_id: int,
        current_time: int | None = None,
        is_snapshot_cached: Callable[[int], bool] | None = None,
        *,
        capabilities: TableCapabilities | None = None,
        snapshot_id: int | None = None,
        guard: PartitionGuard | None = None,
        observer: OptimizeObserver | None = None,
        max_workers: int = 1,
    ) -> None:
        self.table = table
        self.table_optimize_runtime = table_optimize_runtime
        self.queue_id = queue_id
        self.current_time = now_ms() if current_time is None else int(current_time)
        self.is_snapshot_cached = is_snapshot_cached
        self.capabilities = capabilities or TableCapabilities.for_table(table)
        self.snapshot_id = snapshot_id
        self.guard = guard or DEFAULT_GUARD
        self.observer = observer
        self.max_workers = max(1, int(max_workers))
        self.running_partitions = _running_set(running_partitions)
        self.task_group = str(uuid.uuid4())
        self.decisions: dict[str, PartitionDecision] = {}
        self.errors: dict[str, Exception] = {}

        self._partition_base_files: dict[str, list[ContentFile]] = {}
        self._partition_delete_files: dict[str, list[ContentFile]] = {}
        for file in data_files:
            self._partition_base_files.setdefault(file.partition, []).append(file)
        for file in delete_files:
            self._partition_delete_files.setdefault(file.partition, []).append(file)

        self._config: TableConfig | None = None
        self._classifier: FileClassifier | None = None
        self._grouper: TaskGrouper | None = None

    @property
    def table_id(self) -> str:
        return self.table.identifier

    @property
    def config(self) -> TableConfig:
        if self._config is None:
            self._config = TableConfig.from_properties(self.table.properties)
        return self._config

    @property
    def classifier(self) -> FileClassifier:
        if self._classifier is None:
            self._classifier = FileClassifier(self.config, self.capabilities)
        return self._classifier

    @property
    def skipped(self) -> dict[str, str]:
        return {
            partition: decision.reason or "skipped"
            for partition, decision in self.decisions.items()
            if not decision.planned
        }

    def plan(self) -> list[OptimizeTask]:
        kind = self.table.kind
        if kind not in (TableKind.KEYED, TableKind.UNKEYED):
            raise InvalidTableStateError(f"Table {self.table_id} is neither keyed nor unkeyed: {kind!r}")
        config = self.config
        if not config.enabled:
            logger.info("event=plan_disabled table=%s", self.table_id)
            return []

        snapshot_id = self.snapshot_id if self.snapshot_id is not None else self.table.current_snapshot_id()
        if snapshot_id is not None and self.is_snapshot_cached is not None:
            if not self.is_snapshot_cached(snapshot_id):
                logger.info(
                    "event=plan_skipped table=%s reason=snapshot_not_cached snapshot_id=%s",
                    self.table_id,
                    snapshot_id,
                )
                return []

        self._grouper = TaskGrouper(
            table_id=self.table_id,
            kind=kind,
            queue_id=self.queue_id,
            task_group=self.task_group,
            current_time=self.current_time,
            base_snapshot_id=snapshot_id,
            classifier=self.classifier,
        )

        partitions = sorted(self._partition_base_files)
        if self.max_workers > 1 and len(partitions) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(self._plan_partition_guarded, partitions))
        else:
            outcomes = [self._plan_partition_guarded(partition) for partition in partitions]

        tasks: list[OptimizeTask] = []
        for partition, outcome in zip(partitions, outcomes):
            if isinstance(outcome, Exception):
                self.errors[partition] = outcome
                continue
            self.decisions[partition] = outcome
            tasks.extend(outcome.tasks)

        if tasks and self.observer is not None:
            self.observer.on_tasks_created(self.table_id, tasks)
        logger.info(
            "event=plan_finished table=%s partitions=%s planned=%s tasks=%s errors=%s",
            self.table_id,
            len(partitions),
            sum(1 for decision in self.decisions.values() if decision.planned),
            len(tasks),
            len(self.errors),
        )
        return tasks

    def partition_needs_plan(self, partition: str) -> bool:
        return self._decide_type(self._classify(partition)) is not None

    def _plan_partition_guarded(self, partition: str) -> PartitionDecision | Exception:
        if partition in self.running_partitions:
            return self._skip(partition, "partition_running")
        try:
            with self.guard.try_hold(self.table_id, partition) as acquired:
                if not acquired:
                    return self._skip(partition, "partition_locked")
                return self._plan_partition(partition)
        except LakeOptimizerError as exc:
            self._report_error(partition, exc)
            return exc
        except Exception as exc:
            error = PlanningError(f"Failed to plan partition {partition!r} of {self.table_id}: {exc}")
            error.__cause__ = exc
            self._report_error(partition, error)
            return error

    def _plan_partition(self, partition: str) -> PartitionDecision:
        classification = self._classify(partition)
        optimize_type = self._decide_type(classification)
        if optimize_type is None:
            return self._skip(partition, "no_trigger")

        if optimize_type is OptimizeType.FULL_MAJOR:
            base_files = classification.base_files
        else:
            base_files = classification.eligible_files
        assert self._grouper is not None
        tasks = self._grouper.group(partition, optimize_type, base_files, classification.delete_files)
        if not tasks:
            return self._skip(partition, "nothing_to_rewrite")

        if self.observer is not None:
            file_count = sum(len(task.source_files) for task in tasks)
            self.observer.on_partition_planned(self.table_id, partition, optimize_type.value, file_count)
        return PartitionDecision(partition=partition, optimize_type=optimize_type, tasks=tuple(tasks))

    def _classify(self, partition: str) -> Classification:
        return self.classifier.classify(
            partition,
            self._partition_base_files.get(partition, []),
            self._partition_delete_files.get(partition, []),
        )

    def _decide_type(self, classification: Classification) -> OptimizeType | None:
        partition = classification.partition
        config = self.config
        runtime = self.table_optimize_runtime

        if config.full_optimize_enabled:
            elapsed = self.current_time - runtime.get_latest_full_optimize_time(partition)
            if elapsed >= config.full_max_interval_ms and self.classifier.needs_full_rewrite(classification):
                return OptimizeType.FULL_MAJOR

        if len(classification.small_files) >= config.min_small_file_count:
            return OptimizeType.MAJOR

        elapsed = self.current_time - runtime.get_latest_major_optimize_time(partition)
        if elapsed >= config.major_max_interval_ms and len(classification.eligible_files) >= 1:
            return OptimizeType.MAJOR

        return None

    def _skip(self, partition: str, reason: str) -> PartitionDecision:
        logger.debug(
            "event=partition_skipped table=%s partition=%s reason=%s", self.table_id, partition, reason
        )
        if self.observer is not None:
            self.observer.on_partition_skipped(self.table_id, partition, reason)
        return PartitionDecision(partition=partition, optimize_type=None, reason=reason)

    def _report_error(self, partition: str, exc: Exception) -> None:
        logger.warning(
            "event=partition_plan_failed table=%s partition=%s error=%s", self.table_id, partition, exc
        )
        if self.observer is not None:
            self.observer.on_error("plan", self.table_id, partition, exc)


def plan(
    table: TableHandle,
    table_optimize_runtime: TableOptimizeRuntime,
    data_files: Iterable[ContentFile] | None = None,
    delete_files: Iterable[ContentFile] | None = None,
    running_partitions: Mapping[str, bool] | Collection[str] | None = None,
    queue_id: int = 0,
    now: int | None = None,
    *,
    is_snapshot_cached: Callable[[int], bool] | None = None,
    capabilities: TableCapabilities | None = None,
    guard: PartitionGuard | None = None,
    observer: OptimizeObserver | None = None,
    max_workers: int = 1,
) -> list[OptimizeTask]:
    """Plan optimize tasks for ``table``.

    When ``data_files``/``delete_files`` are omitted, the table's current
    listing is used and split by content kind.
    """
    snapshot_id = None
    if data_files is None and delete_files is None:
        snapshot_id = table.current_snapshot_id()
        listing = table.list_files()
        data_files = [file for file in listing if not file.is_delete]
        delete_files = [file for file in listing if file.is_delete]
    return OptimizePlan(
        table,
        table_optimize_runtime,
        data_files or [],
        delete_files or [],
        running_partitions,
        queue_id,
        now,
        is_snapshot_cached,
        capabilities=capabilities,
        snapshot_id=snapshot_id,
        guard=guard,
        observer=observer,
        max_workers=max_workers,
    ).plan()


def _running_set(running: Mapping[str, bool] | Collection[str] | None) -> frozenset[str]:
    if running is None:
        return frozenset()
    if isinstance(running, Mapping):
        return frozenset(partition for partition, flag in running.items() if flag)
    return frozenset(running)
