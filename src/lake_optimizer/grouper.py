from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .classifier import FileClassifier
from .files import ContentFile
from .tables.base import TableCapabilities, TableKind
from .task import OptimizeTask, OptimizeTaskId, OptimizeType
from .tree import TreeNode, covering_roots


@dataclass(frozen=True)
class FileGroup:
    node: TreeNode
    base_files: tuple[ContentFile, ...]
    delete_files: tuple[ContentFile, ...]


def group_by_node(
    base_files: Sequence[ContentFile], delete_files: Sequence[ContentFile]
) -> list[FileGroup]:
    """Group keyed files under the top-most tree node present among them.

    Groups have pairwise disjoint key ranges and every file lands in exactly
    one group, delete files included.
    """
    roots = covering_roots([file.node for file in base_files] + [file.node for file in delete_files])
    bases: dict[TreeNode, list[ContentFile]] = {}
    deletes: dict[TreeNode, list[ContentFile]] = {}
    for file in base_files:
        bases.setdefault(roots[file.node], []).append(file)
    for file in delete_files:
        deletes.setdefault(roots[file.node], []).append(file)
    groups = []
    for node in sorted(set(roots.values())):
        groups.append(
            FileGroup(
                node=node,
                base_files=tuple(sorted(bases.get(node, []), key=lambda f: f.path)),
                delete_files=tuple(sorted(deletes.get(node, []), key=lambda f: f.path)),
            )
        )
    return groups


class TaskGrouper:
    def __init__(
        self,
        *,
        table_id: str,
        kind: TableKind,
        queue_id: int,
        task_group: str,
        current_time: int,
        base_snapshot_id: int | None,
        classifier: FileClassifier,
    ) -> None:
        self.table_id = table_id
        self.kind = kind
        self.queue_id = queue_id
        self.task_group = task_group
        self.current_time = current_time
        self.base_snapshot_id = base_snapshot_id
        self.classifier = classifier

    @property
    def capabilities(self) -> TableCapabilities:
        return self.classifier.capabilities

    def group(
        self,
        partition: str,
        optimize_type: OptimizeType,
        base_files: Sequence[ContentFile],
        delete_files: Sequence[ContentFile],
    ) -> list[OptimizeTask]:
        has_deletes = bool(delete_files)
        relocate = self.classifier.relocates_output(optimize_type, has_deletes)
        if self.kind is TableKind.KEYED:
            groups = group_by_node(base_files, delete_files)
        else:
            # Unkeyed tables get a single task per partition.
            groups = [
                FileGroup(
                    node=TreeNode.root(),
                    base_files=tuple(sorted(base_files, key=lambda f: f.path)),
                    delete_files=tuple(sorted(delete_files, key=lambda f: f.path)),
                )
            ]
        tasks: list[OptimizeTask] = []
        for file_group in groups:
            if not self.classifier.need_optimize(file_group.delete_files, file_group.base_files):
                continue
            tasks.append(self._build_task(partition, optimize_type, file_group, relocate, has_deletes))
        return tasks

    def _build_task(
        self,
        partition: str,
        optimize_type: OptimizeType,
        file_group: FileGroup,
        relocate: bool,
        has_deletes: bool,
    ) -> OptimizeTask:
        properties = {
            "optimize-type": optimize_type.value,
            "partition-has-deletes": str(has_deletes).lower(),
            "target-size-bytes": str(self.classifier.config.target_size_bytes),
            "base-file-count": str(len(file_group.base_files)),
            "delete-file-count": str(len(file_group.delete_files)),
        }
        return OptimizeTask(
            task_id=OptimizeTaskId.create(optimize_type),
            table_id=self.table_id,
            partition=partition,
            queue_id=self.queue_id,
            task_group=self.task_group,
            create_time=self.current_time,
            base_snapshot_id=self.base_snapshot_id,
            source_nodes=(file_group.node,),
            base_files=file_group.base_files,
            delete_files=file_group.delete_files,
            target_location=self.capabilities.partition_location(partition) if relocate else None,
            properties=properties,
        )
