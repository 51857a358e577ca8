from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from ..config import TableConfig, external_location
from ..errors import CommitConflictError
from ..files import ContentFile
from ..tree import TreeNode


class TableKind(str, Enum):
    KEYED = "keyed"
    UNKEYED = "unkeyed"


class TableHandle(Protocol):
    """Collaborator contract for a table the optimizer plans and commits against."""

    @property
    def identifier(self) -> str:
        raise NotImplementedError

    @property
    def kind(self) -> TableKind:
        raise NotImplementedError

    @property
    def properties(self) -> Mapping[str, Any]:
        raise NotImplementedError

    def current_snapshot_id(self) -> int | None:
        raise NotImplementedError

    def list_files(self) -> list[ContentFile]:
        raise NotImplementedError

    def rewrite_files(
        self,
        removed: Sequence[ContentFile],
        added: Sequence[ContentFile],
        *,
        base_snapshot_id: int | None,
        properties: Mapping[str, str] | None = None,
        key_ranges: Sequence[TreeNode] | None = None,
    ) -> int:
        """Atomically replace ``removed`` with ``added``; return the new snapshot id.

        Raises CommitConflictError when the table advanced since ``base_snapshot_id``
        in a way that touches the rewritten partitions (within ``key_ranges`` when given).
        """
        raise NotImplementedError


@dataclass(frozen=True)
class TableCapabilities:
    """Capability set that selects the eligibility and output-placement policy."""

    warehouse_compatible: bool = False
    external_location: str | None = None
    exclude: Callable[[ContentFile], bool] = field(default=lambda file: False)

    @classmethod
    def for_table(cls, table: TableHandle) -> "TableCapabilities":
        location = external_location(table.properties)
        if location is None:
            return cls()
        return cls(
            warehouse_compatible=True,
            external_location=location,
            exclude=lambda file: file.is_under(location),
        )

    def partition_location(self, partition: str) -> str | None:
        if self.external_location is None:
            return None
        base = self.external_location.rstrip("/")
        return f"{base}/{partition}" if partition else base


def table_config(table: TableHandle) -> TableConfig:
    return TableConfig.from_properties(table.properties)


@dataclass(frozen=True)
class SnapshotChange:
    snapshot_id: int
    operation: str
    added: tuple[ContentFile, ...] = ()
    removed: tuple[ContentFile, ...] = ()
    timestamp_ms: int | None = None
    properties: dict[str, str] = field(default_factory=dict)

    def partitions(self, key_ranges: Sequence[TreeNode] | None = None) -> set[str]:
        """Partitions this change touched, optionally only within ``key_ranges``."""
        touched = set()
        for file in self.added + self.removed:
            if key_ranges is None or any(file.node.overlaps(node) for node in key_ranges):
                touched.add(file.partition)
        return touched


def validate_rewrite(
    *,
    history: Iterable[SnapshotChange],
    live_paths: set[str],
    base_snapshot_id: int | None,
    removed: Sequence[ContentFile],
    added: Sequence[ContentFile],
    key_ranges: Sequence[TreeNode] | None = None,
) -> None:
    """Reject a rewrite that would silently merge with a concurrent change.

    ``history`` holds every snapshot after ``base_snapshot_id``. Any of them
    touching a rewritten partition, or any removed file no longer live, is a
    conflict. With ``key_ranges`` set, only changes to files whose tree node
    overlaps one of the ranges count; files without a node cover every range.
    """
    partitions = {file.partition for file in removed} | {file.partition for file in added}
    for change in history:
        if base_snapshot_id is not None and change.snapshot_id <= base_snapshot_id:
            continue
        touched = change.partitions(key_ranges) & partitions
        if touched:
            raise CommitConflictError(
                f"Snapshot {change.snapshot_id} ({change.operation}) changed partitions "
                f"{sorted(touched)} after base snapshot {base_snapshot_id}",
                partition=sorted(touched)[0],
            )
    missing = [file.path for file in removed if file.path not in live_paths]
    if missing:
        raise CommitConflictError(
            f"Files already removed from the table: {sorted(missing)[:5]}",
            partition=removed[0].partition,
        )
    duplicated = [file.path for file in added if file.path in live_paths]
    if duplicated:
        raise CommitConflictError(
            f"Files already present in the table: {sorted(duplicated)[:5]}",
            partition=added[0].partition,
        )
