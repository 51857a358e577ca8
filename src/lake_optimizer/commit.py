from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from .classifier import output_relocates
from .errors import (
    CommitError,
    InconsistentTaskRuntimeError,
    InvalidTableStateError,
    UnresolvedTreeNodeError,
)
from .files import ContentFile
from .guard import DEFAULT_GUARD, PartitionGuard
from .observability import OptimizeObserver
from .runtime import OptimizeStatus, OptimizeTaskItem, TableOptimizeRuntime, now_ms
from .tables.base import TableCapabilities, TableHandle, TableKind
from .task import OptimizeType
from .tree import TreeNode

logger = logging.getLogger("lake_optimizer")


@dataclass(frozen=True)
class CommitRecord:
    table_id: str
    partition: str
    optimize_type: OptimizeType
    commit_time: int
    duration_ms: int
    snapshot_id: int
    task_count: int
    removed_file_count: int
    removed_file_size: int
    added_file_count: int
    added_file_size: int
    relocated: bool

    def to_dict(self) -> dict:
        return {
            "table_id": self.table_id,
            "partition": self.partition,
            "optimize_type": self.optimize_type.value,
            "commit_time": self.commit_time,
            "duration_ms": self.duration_ms,
            "snapshot_id": self.snapshot_id,
            "task_count": self.task_count,
            "removed_file_count": self.removed_file_count,
            "removed_file_size": self.removed_file_size,
            "added_file_count": self.added_file_count,
            "added_file_size": self.added_file_size,
            "relocated": self.relocated,
        }


@dataclass
class CommitResult:
    committed: list[CommitRecord] = field(default_factory=list)
    failures: dict[str, CommitError] = field(default_factory=dict)
    pending: dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def committed_partitions(self) -> list[str]:
        return [record.partition for record in self.committed]

    def raise_on_failure(self) -> None:
        if self.failures:
            partition = sorted(self.failures)[0]
            raise self.failures[partition]


@dataclass(frozen=True)
class _PartitionRewrite:
    removed: tuple[ContentFile, ...]
    added: tuple[ContentFile, ...]
    optimize_type: OptimizeType
    relocated: bool
    base_snapshot_id: int | None
    key_ranges: tuple[TreeNode, ...] | None = None


class OptimizeCommit:
    """Commit prepared optimize tasks back into the table, one transaction per partition.

    Tasks that are not yet prepared stay out of the commit and are reported in
    ``CommitResult.pending``. Failures are isolated per partition; the table
    optimize runtime only moves forward for partitions that committed.
    A failing ``on_committed`` callback is reported in ``CommitResult.failures``
    while the partition stays in ``CommitResult.committed``.
    """

    def __init__(
        self,
        table: TableHandle,
        partition_task_items: Mapping[str, Sequence[OptimizeTaskItem]],
        on_committed: Callable[[OptimizeTaskItem], None] | None = None,
        *,
        capabilities: TableCapabilities | None = None,
        guard: PartitionGuard | None = None,
        observer: OptimizeObserver | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.table = table
        self.partition_task_items = {
            partition: list(items) for partition, items in partition_task_items.items()
        }
        self.on_committed = on_committed
        self.capabilities = capabilities or TableCapabilities.for_table(table)
        self.guard = guard or DEFAULT_GUARD
        self.observer = observer
        self.lock_timeout = lock_timeout

    @property
    def table_id(self) -> str:
        return self.table.identifier

    def commit(self, table_optimize_runtime: TableOptimizeRuntime) -> CommitResult:
        kind = self.table.kind
        if kind not in (TableKind.KEYED, TableKind.UNKEYED):
            raise InvalidTableStateError(f"Table {self.table_id} is neither keyed nor unkeyed: {kind!r}")
        for items in self.partition_task_items.values():
            for item in items:
                if item.task.table_id != self.table_id:
                    raise InvalidTableStateError(
                        f"Task {item.task.task_id.trace_id} belongs to {item.task.table_id}, "
                        f"not {self.table_id}"
                    )

        result = CommitResult()
        for partition in sorted(self.partition_task_items):
            items = self.partition_task_items[partition]
            prepared = [item for item in items if item.runtime.status is OptimizeStatus.PREPARED]
            waiting = len(items) - len(prepared)
            if waiting:
                result.pending[partition] = waiting
            if not prepared:
                continue
            try:
                with self.guard.hold(self.table_id, partition, timeout=self.lock_timeout):
                    record = self._commit_partition(partition, prepared, kind, table_optimize_runtime)
            except CommitError as exc:
                if exc.partition is None:
                    exc.partition = partition
                self._report_failure(result, partition, exc)
                continue
            except Exception as exc:
                error = CommitError(
                    f"Failed to commit partition {partition!r} of {self.table_id}: {exc}", partition=partition
                )
                error.__cause__ = exc
                self._report_failure(result, partition, error)
                continue
            result.committed.append(record)
            if self.on_committed is not None:
                self._notify_committed(result, partition, prepared, record)
        return result

    def _notify_committed(
        self, result: CommitResult, partition: str, prepared: list[OptimizeTaskItem], record: CommitRecord
    ) -> None:
        for item in prepared:
            try:
                self.on_committed(item)
            except Exception as exc:
                # The rewrite is already in the table; only the feedback owner missed it.
                error = CommitError(
                    f"Partition {partition!r} committed as snapshot {record.snapshot_id} but "
                    f"on_committed failed for task {item.task.task_id.trace_id}: {exc}",
                    partition=partition,
                )
                error.__cause__ = exc
                self._report_failure(result, partition, error)
                return

    def _report_failure(self, result: CommitResult, partition: str, exc: CommitError) -> None:
        result.failures[partition] = exc
        logger.warning(
            "event=partition_commit_failed table=%s partition=%s error_type=%s error=%s",
            self.table_id,
            partition,
            type(exc).__name__,
            exc,
        )
        if self.observer is not None:
            self.observer.on_error("commit", self.table_id, partition, exc)

    def _commit_partition(
        self,
        partition: str,
        prepared: list[OptimizeTaskItem],
        kind: TableKind,
        table_optimize_runtime: TableOptimizeRuntime,
    ) -> CommitRecord:
        start = time.monotonic()
        if self.observer is not None:
            self.observer.on_commit_start(self.table_id, partition, len(prepared))
        rewrite = self._prepare_rewrite(partition, prepared, kind)
        properties = {
            "optimize-type": rewrite.optimize_type.value,
            "partition": partition,
            "task-count": str(len(prepared)),
            "relocated": str(rewrite.relocated).lower(),
        }
        snapshot_id = self.table.rewrite_files(
            rewrite.removed,
            rewrite.added,
            base_snapshot_id=rewrite.base_snapshot_id,
            properties=properties,
            key_ranges=rewrite.key_ranges,
        )
        commit_time = now_ms()
        table_optimize_runtime.record_commit(partition, rewrite.optimize_type, commit_time)
        duration_s = time.monotonic() - start
        record = CommitRecord(
            table_id=self.table_id,
            partition=partition,
            optimize_type=rewrite.optimize_type,
            commit_time=commit_time,
            duration_ms=int(duration_s * 1000),
            snapshot_id=snapshot_id,
            task_count=len(prepared),
            removed_file_count=len(rewrite.removed),
            removed_file_size=sum(file.size for file in rewrite.removed),
            added_file_count=len(rewrite.added),
            added_file_size=sum(file.size for file in rewrite.added),
            relocated=rewrite.relocated,
        )
        if self.observer is not None:
            self.observer.on_partition_committed(
                self.table_id,
                partition,
                duration_s,
                metadata={
                    "snapshot_id": snapshot_id,
                    "removed": record.removed_file_count,
                    "added": record.added_file_count,
                },
            )
        return record

    def _prepare_rewrite(
        self, partition: str, prepared: list[OptimizeTaskItem], kind: TableKind
    ) -> _PartitionRewrite:
        removed: dict[str, ContentFile] = {}
        added: dict[str, ContentFile] = {}
        relocations: set[bool] = set()
        for item in prepared:
            self._check_runtime(partition, item)
            relocate = self._check_placement(partition, item)
            relocations.add(relocate)
            for file in item.task.source_files:
                removed[file.path] = file
            for file in item.runtime.target_files:
                if file.path in added:
                    raise InconsistentTaskRuntimeError(
                        f"Target file {file.path} reported by more than one task", partition=partition
                    )
                added[file.path] = file

        if kind is TableKind.KEYED:
            self._check_tree_nodes(partition, prepared)

        overlap = set(removed) & set(added)
        if overlap:
            raise InconsistentTaskRuntimeError(
                f"Target files overlap source files: {sorted(overlap)[:5]}", partition=partition
            )

        types = {item.task.optimize_type for item in prepared}
        # Full-rewrite bookkeeping only applies when every committed task was a full rewrite.
        optimize_type = OptimizeType.FULL_MAJOR if types == {OptimizeType.FULL_MAJOR} else OptimizeType.MAJOR
        if types == {OptimizeType.MINOR}:
            optimize_type = OptimizeType.MINOR

        snapshots = [item.task.base_snapshot_id for item in prepared]
        base_snapshot_id = min(snapshots) if None not in snapshots else None
        key_ranges = None
        if kind is TableKind.KEYED:
            # Other tree nodes of the partition may have committed since the plan.
            key_ranges = tuple(sorted({node for item in prepared for node in item.task.source_nodes}))
        return _PartitionRewrite(
            removed=tuple(removed[path] for path in sorted(removed)),
            added=tuple(added[path] for path in sorted(added)),
            optimize_type=optimize_type,
            relocated=relocations == {True},
            base_snapshot_id=base_snapshot_id,
            key_ranges=key_ranges,
        )

    def _check_runtime(self, partition: str, item: OptimizeTaskItem) -> None:
        runtime = item.runtime
        trace_id = item.task.task_id.trace_id
        if runtime.new_file_count > 0 and not runtime.target_files:
            raise InconsistentTaskRuntimeError(
                f"Task {trace_id} reports {runtime.new_file_count} new files but no target files",
                partition=partition,
            )
        for file in runtime.target_files:
            if file.partition != partition:
                raise InconsistentTaskRuntimeError(
                    f"Task {trace_id} produced {file.path} for partition {file.partition!r}",
                    partition=partition,
                )

    def _check_placement(self, partition: str, item: OptimizeTaskItem) -> bool:
        task = item.task
        has_deletes = task.properties.get("partition-has-deletes", "false") == "true"
        expected = output_relocates(self.capabilities, task.optimize_type, has_deletes)
        if expected != task.relocates:
            raise InconsistentTaskRuntimeError(
                f"Task {task.task_id.trace_id} placement does not match its optimize type",
                partition=partition,
            )
        if not self.capabilities.warehouse_compatible:
            return False
        location = self.capabilities.partition_location(partition)
        for file in item.runtime.target_files:
            inside = location is not None and file.is_under(location)
            if expected and not inside:
                raise InconsistentTaskRuntimeError(
                    f"Target file {file.path} must be written under {location}", partition=partition
                )
            if not expected and self.capabilities.exclude(file):
                raise InconsistentTaskRuntimeError(
                    f"Target file {file.path} must stay out of the external location", partition=partition
                )
        return expected

    def _check_tree_nodes(self, partition: str, prepared: list[OptimizeTaskItem]) -> None:
        for item in prepared:
            for file in item.runtime.target_files:
                node = file.node
                owners = [other for other in prepared if other.task.covers(node)]
                if item not in owners:
                    raise UnresolvedTreeNodeError(
                        f"Target file {file.path} has tree node {node} outside task "
                        f"{item.task.task_id.trace_id} nodes {[str(n) for n in item.task.source_nodes]}",
                        partition=partition,
                    )
                if len(owners) > 1:
                    raise InconsistentTaskRuntimeError(
                        f"Tree node {node} of {file.path} is covered by {len(owners)} tasks",
                        partition=partition,
                    )


def commit(
    table: TableHandle,
    partition_task_items: Mapping[str, Sequence[OptimizeTaskItem]],
    table_optimize_runtime: TableOptimizeRuntime,
    *,
    on_committed: Callable[[OptimizeTaskItem], None] | None = None,
    capabilities: TableCapabilities | None = None,
    guard: PartitionGuard | None = None,
    observer: OptimizeObserver | None = None,
) -> CommitResult:
    return OptimizeCommit(
        table,
        partition_task_items,
        on_committed,
        capabilities=capabilities,
        guard=guard,
        observer=observer,
    ).commit(table_optimize_runtime)
