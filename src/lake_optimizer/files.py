from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

import polars as pl

from .tree import TreeNode, node_of_path


class ContentKind(str, Enum):
    DATA = "data"
    POSITION_DELETE = "position_delete"
    EQUALITY_DELETE = "equality_delete"


@dataclass(frozen=True)
class ContentFile:
    path: str
    size: int
    partition: str = ""
    kind: ContentKind = ContentKind.DATA
    record_count: int | None = None

    @property
    def is_delete(self) -> bool:
        return self.kind is not ContentKind.DATA

    @property
    def node(self) -> TreeNode:
        return node_of_path(self.path)

    def is_under(self, location: str) -> bool:
        return _is_under(self.path, location)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "path": self.path,
            "size": self.size,
            "partition": self.partition,
            "kind": self.kind.value,
        }
        if self.record_count is not None:
            payload["record_count"] = self.record_count
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ContentFile":
        return cls(
            path=str(payload["path"]),
            size=int(payload["size"]),
            partition=str(payload.get("partition", "")),
            kind=ContentKind(payload.get("kind", ContentKind.DATA.value)),
            record_count=payload.get("record_count"),
        )


def data_file(path: str, size: int, partition: str = "", **kwargs: Any) -> ContentFile:
    return ContentFile(path=path, size=size, partition=partition, kind=ContentKind.DATA, **kwargs)


def pos_delete_file(path: str, size: int, partition: str = "", **kwargs: Any) -> ContentFile:
    return ContentFile(
        path=path, size=size, partition=partition, kind=ContentKind.POSITION_DELETE, **kwargs
    )


def files_frame(files: Iterable[ContentFile]) -> pl.DataFrame:
    rows = []
    for file in files:
        node = file.node
        rows.append(
            {
                "path": file.path,
                "size": file.size,
                "partition": file.partition,
                "kind": file.kind.value,
                "node_mask": node.mask,
                "node_index": node.index,
                "record_count": file.record_count,
            }
        )
    schema = {
        "path": pl.Utf8,
        "size": pl.Int64,
        "partition": pl.Utf8,
        "kind": pl.Utf8,
        "node_mask": pl.Int64,
        "node_index": pl.Int64,
        "record_count": pl.Int64,
    }
    return pl.DataFrame(rows, schema=schema)


def _is_under(path: str, location: str) -> bool:
    prefix = location.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")
