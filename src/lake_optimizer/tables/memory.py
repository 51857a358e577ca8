from __future__ import annotations

import threading
import time
from typing import Any, Iterable, Mapping, Sequence

from ..config import primary_keys
from ..files import ContentFile
from ..tree import TreeNode
from .base import SnapshotChange, TableKind, validate_rewrite


class InMemoryTable:
    """Snapshot-versioned table kept entirely in memory.

    Every mutation produces a new snapshot id; rewrites validate against the
    snapshot history the same way a real table format does.
    """

    def __init__(
        self,
        identifier: str,
        *,
        properties: Mapping[str, Any] | None = None,
        kind: TableKind | None = None,
    ) -> None:
        self._identifier = identifier
        self._properties: dict[str, Any] = dict(properties or {})
        if kind is None:
            kind = TableKind.KEYED if primary_keys(self._properties) else TableKind.UNKEYED
        self._kind = kind
        self._live: dict[str, ContentFile] = {}
        self._history: list[SnapshotChange] = []
        self._lock = threading.Lock()

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def kind(self) -> TableKind:
        return self._kind

    @property
    def properties(self) -> Mapping[str, Any]:
        return dict(self._properties)

    def update_properties(self, updates: Mapping[str, Any]) -> None:
        with self._lock:
            self._properties.update(updates)

    def current_snapshot_id(self) -> int | None:
        with self._lock:
            return self._history[-1].snapshot_id if self._history else None

    def snapshots(self) -> list[SnapshotChange]:
        with self._lock:
            return list(self._history)

    def list_files(self) -> list[ContentFile]:
        with self._lock:
            return [self._live[path] for path in sorted(self._live)]

    def append(self, files: Iterable[ContentFile], *, operation: str = "append") -> int:
        added = tuple(files)
        with self._lock:
            for file in added:
                self._live[file.path] = file
            return self._record(operation, added=added, removed=())

    def delete(self, files: Iterable[ContentFile]) -> int:
        removed = tuple(files)
        with self._lock:
            for file in removed:
                self._live.pop(file.path, None)
            return self._record("delete", added=(), removed=removed)

    def rewrite_files(
        self,
        removed: Sequence[ContentFile],
        added: Sequence[ContentFile],
        *,
        base_snapshot_id: int | None,
        properties: Mapping[str, str] | None = None,
        key_ranges: Sequence[TreeNode] | None = None,
    ) -> int:
        with self._lock:
            validate_rewrite(
                history=self._history,
                live_paths=set(self._live),
                base_snapshot_id=base_snapshot_id,
                removed=removed,
                added=added,
                key_ranges=key_ranges,
            )
            for file in removed:
                self._live.pop(file.path, None)
            for file in added:
                self._live[file.path] = file
            return self._record(
                "rewrite", added=tuple(added), removed=tuple(removed), properties=properties
            )

    def _record(
        self,
        operation: str,
        *,
        added: tuple[ContentFile, ...],
        removed: tuple[ContentFile, ...],
        properties: Mapping[str, str] | None = None,
    ) -> int:
        snapshot_id = self._history[-1].snapshot_id + 1 if self._history else 1
        self._history.append(
            SnapshotChange(
                snapshot_id=snapshot_id,
                operation=operation,
                added=added,
                removed=removed,
                timestamp_ms=int(time.time() * 1000),
                properties=dict(properties or {}),
            )
        )
        return snapshot_id
