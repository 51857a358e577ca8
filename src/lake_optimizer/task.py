from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .files import ContentFile
from .tree import TreeNode


class OptimizeType(str, Enum):
    MINOR = "Minor"
    MAJOR = "Major"
    FULL_MAJOR = "FullMajor"


_TASK_SEQUENCE = itertools.count(1)


def next_task_sequence() -> int:
    return next(_TASK_SEQUENCE)


@dataclass(frozen=True)
class OptimizeTaskId:
    type: OptimizeType
    trace_id: str
    sequence: int

    @classmethod
    def create(cls, optimize_type: OptimizeType) -> "OptimizeTaskId":
        return cls(type=optimize_type, trace_id=str(uuid.uuid4()), sequence=next_task_sequence())

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "trace_id": self.trace_id, "sequence": self.sequence}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "OptimizeTaskId":
        return cls(
            type=OptimizeType(payload["type"]),
            trace_id=str(payload["trace_id"]),
            sequence=int(payload["sequence"]),
        )


@dataclass(frozen=True)
class OptimizeTask:
    """One dispatchable rewrite unit: a partition's files inside one tree node."""

    task_id: OptimizeTaskId
    table_id: str
    partition: str
    queue_id: int
    task_group: str
    create_time: int
    base_snapshot_id: int | None
    source_nodes: tuple[TreeNode, ...]
    base_files: tuple[ContentFile, ...]
    delete_files: tuple[ContentFile, ...] = ()
    target_location: str | None = None
    properties: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def optimize_type(self) -> OptimizeType:
        return self.task_id.type

    @property
    def relocates(self) -> bool:
        return self.target_location is not None

    @property
    def source_files(self) -> tuple[ContentFile, ...]:
        return self.base_files + self.delete_files

    @property
    def base_file_size(self) -> int:
        return sum(file.size for file in self.base_files)

    @property
    def delete_file_size(self) -> int:
        return sum(file.size for file in self.delete_files)

    def covers(self, node: TreeNode) -> bool:
        return any(source.covers(node) for source in self.source_nodes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id.to_dict(),
            "table_id": self.table_id,
            "partition": self.partition,
            "queue_id": self.queue_id,
            "task_group": self.task_group,
            "create_time": self.create_time,
            "base_snapshot_id": self.base_snapshot_id,
            "source_nodes": [[node.mask, node.index] for node in self.source_nodes],
            "base_files": [file.to_dict() for file in self.base_files],
            "delete_files": [file.to_dict() for file in self.delete_files],
            "target_location": self.target_location,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "OptimizeTask":
        return cls(
            task_id=OptimizeTaskId.from_dict(payload["task_id"]),
            table_id=str(payload["table_id"]),
            partition=str(payload["partition"]),
            queue_id=int(payload["queue_id"]),
            task_group=str(payload["task_group"]),
            create_time=int(payload["create_time"]),
            base_snapshot_id=payload.get("base_snapshot_id"),
            source_nodes=tuple(TreeNode(int(mask), int(index)) for mask, index in payload["source_nodes"]),
            base_files=tuple(ContentFile.from_dict(item) for item in payload["base_files"]),
            delete_files=tuple(ContentFile.from_dict(item) for item in payload.get("delete_files", [])),
            target_location=payload.get("target_location"),
            properties={str(k): str(v) for k, v in (payload.get("properties") or {}).items()},
        )
