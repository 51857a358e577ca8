from __future__ import annotations

import json
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence
from urllib.parse import quote, unquote, urlparse

import polars as pl

from ..config import primary_keys
from ..errors import CommitConflictError, InvalidTableStateError
from ..files import ContentFile, ContentKind
from ..tree import TreeNode
from .base import SnapshotChange, TableKind, validate_rewrite

logger = logging.getLogger("lake_optimizer")

DEFAULT_PARTITION = "__HIVE_DEFAULT_PARTITION__"
CONTENT_TAG = "lake_optimizer.content"


@dataclass
class _LogState:
    version: int | None = None
    live: dict[str, ContentFile] = field(default_factory=dict)
    changes: list[SnapshotChange] = field(default_factory=list)
    configuration: dict[str, Any] = field(default_factory=dict)
    partition_columns: list[str] = field(default_factory=list)
    checkpoint_version: int | None = None


class DeltaLogTable:
    """Table handle over a local Delta table directory.

    The file listing is rebuilt by replaying ``_delta_log`` (starting from the
    last parquet checkpoint when one exists). Rewrites are committed by
    creating the next ``<version>.json`` log entry exclusively, so a writer
    that got there first turns the attempt into a CommitConflictError.
    """

    def __init__(
        self,
        table_path: str | Path,
        *,
        identifier: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        self.table_path = Path(table_path).resolve()
        if not self._log_dir().is_dir():
            raise InvalidTableStateError(f"Not a Delta table (missing _delta_log): {self.table_path}")
        self._identifier = identifier or self.table_path.name
        self._options = dict(options or {})
        self._lock = threading.Lock()

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def kind(self) -> TableKind:
        return TableKind.KEYED if primary_keys(self.properties) else TableKind.UNKEYED

    @property
    def properties(self) -> Mapping[str, Any]:
        props = dict(self._load_state().configuration)
        props.update(self._options)
        return props

    @property
    def partition_columns(self) -> list[str]:
        return list(self._load_state().partition_columns)

    def current_snapshot_id(self) -> int | None:
        return self._latest_version()

    def list_files(self) -> list[ContentFile]:
        state = self._load_state()
        return [state.live[path] for path in sorted(state.live)]

    def history(self, since_version: int | None = None) -> list[SnapshotChange]:
        state = self._load_state()
        if since_version is None:
            return list(state.changes)
        return [change for change in state.changes if change.snapshot_id > since_version]

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
            state = self._load_state()
            if (
                base_snapshot_id is not None
                and state.checkpoint_version is not None
                and base_snapshot_id < state.checkpoint_version
                and not _covers_versions(state.changes, base_snapshot_id, state.version)
            ):
                raise CommitConflictError(
                    f"Cannot validate rewrite from version {base_snapshot_id}: log history truncated"
                )
            validate_rewrite(
                history=state.changes,
                live_paths=set(state.live),
                base_snapshot_id=base_snapshot_id,
                removed=removed,
                added=added,
                key_ranges=key_ranges,
            )
            version = 0 if state.version is None else state.version + 1
            timestamp = int(time.time() * 1000)
            lines: list[dict[str, Any]] = [
                {
                    "commitInfo": {
                        "timestamp": timestamp,
                        "operation": "OPTIMIZE",
                        "operationParameters": dict(properties or {}),
                        "readVersion": state.version,
                        "isBlindAppend": False,
                    }
                }
            ]
            for file in removed:
                lines.append({"remove": self._remove_action(file, state.partition_columns, timestamp)})
            for file in added:
                lines.append({"add": self._add_action(file, state.partition_columns, timestamp)})
            self._write_exclusive(version, lines)
            logger.info(
                "event=delta_rewrite_committed table=%s version=%s removed=%s added=%s",
                self._identifier,
                version,
                len(removed),
                len(added),
            )
            return version

    def _log_dir(self) -> Path:
        return self.table_path / "_delta_log"

    def _list_log_versions(self) -> list[int]:
        versions: list[int] = []
        for path in self._log_dir().glob("*.json"):
            try:
                versions.append(int(path.stem))
            except ValueError:
                continue
        return sorted(versions)

    def _latest_version(self) -> int | None:
        versions = self._list_log_versions()
        checkpoint = self._last_checkpoint_version()
        if not versions:
            return checkpoint
        if checkpoint is not None and checkpoint > versions[-1]:
            return checkpoint
        return versions[-1]

    def _last_checkpoint_version(self) -> int | None:
        path = self._log_dir() / "_last_checkpoint"
        if not path.exists():
            return None
        payload = json.loads(path.read_text())
        version = payload.get("version") if isinstance(payload, dict) else None
        return int(version) if isinstance(version, int) else None

    def _load_state(self) -> _LogState:
        state = _LogState()
        known: dict[str, ContentFile] = {}
        checkpoint = self._last_checkpoint_version()
        if checkpoint is not None:
            self._load_checkpoint(checkpoint, state, known)
            state.version = checkpoint
            state.checkpoint_version = checkpoint
        for version in self._list_log_versions():
            if checkpoint is not None and version <= checkpoint:
                continue
            self._apply_version(version, state, known)
            state.version = version
        return state

    def _load_checkpoint(self, version: int, state: _LogState, known: dict[str, ContentFile]) -> None:
        path = self._log_dir() / f"{version:020d}.checkpoint.parquet"
        if not path.exists():
            raise InvalidTableStateError(f"Checkpoint listed in _last_checkpoint is missing: {path}")
        frame = pl.read_parquet(path)
        if "metaData" in frame.columns:
            for row in frame.filter(pl.col("metaData").is_not_null())["metaData"].to_list():
                # Older writers decode null struct rows as all-null fields.
                if row and row.get("id") is not None:
                    self._apply_metadata(row, state)
        if "add" in frame.columns:
            for row in frame.filter(pl.col("add").is_not_null())["add"].to_list():
                if not row or row.get("path") is None:
                    continue
                file = self._file_from_action(row, state.partition_columns)
                state.live[file.path] = file
                known[file.path] = file

    def _apply_version(self, version: int, state: _LogState, known: dict[str, ContentFile]) -> None:
        added: list[ContentFile] = []
        removed: list[ContentFile] = []
        operation = "unknown"
        timestamp: int | None = None
        for payload in self._iter_log_lines(version):
            if "metaData" in payload:
                self._apply_metadata(payload["metaData"], state)
            elif "commitInfo" in payload:
                info = payload["commitInfo"] or {}
                operation = str(info.get("operation", operation))
                ts = info.get("timestamp")
                timestamp = int(ts) if isinstance(ts, (int, float)) else None
            elif "add" in payload:
                file = self._file_from_action(payload["add"], state.partition_columns)
                state.live[file.path] = file
                known[file.path] = file
                added.append(file)
            elif "remove" in payload:
                remove = payload["remove"]
                path = self._absolute_path(remove["path"])
                file = known.get(path) or self._file_from_action(remove, state.partition_columns)
                state.live.pop(path, None)
                removed.append(file)
        state.changes.append(
            SnapshotChange(
                snapshot_id=version,
                operation=operation,
                added=tuple(added),
                removed=tuple(removed),
                timestamp_ms=timestamp,
            )
        )

    def _iter_log_lines(self, version: int) -> Iterator[dict[str, Any]]:
        log_path = self._log_dir() / f"{version:020d}.json"
        with log_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                yield json.loads(line)

    def _apply_metadata(self, metadata: Mapping[str, Any], state: _LogState) -> None:
        state.configuration = _map_to_dict(metadata.get("configuration"))
        columns = metadata.get("partitionColumns") or []
        state.partition_columns = [str(column) for column in columns]

    def _file_from_action(self, action: Mapping[str, Any], partition_columns: list[str]) -> ContentFile:
        values = _map_to_dict(action.get("partitionValues"))
        tags = _map_to_dict(action.get("tags"))
        kind = ContentKind(tags.get(CONTENT_TAG, ContentKind.DATA.value))
        return ContentFile(
            path=self._absolute_path(str(action["path"])),
            size=int(action.get("size") or 0),
            partition=_partition_path(values, partition_columns),
            kind=kind,
            record_count=_num_records(action.get("stats")),
        )

    def _add_action(self, file: ContentFile, partition_columns: list[str], timestamp: int) -> dict[str, Any]:
        action: dict[str, Any] = {
            "path": self._relative_path(file.path),
            "partitionValues": _partition_values(file.partition, partition_columns),
            "size": file.size,
            "modificationTime": timestamp,
            "dataChange": False,
        }
        if file.record_count is not None:
            action["stats"] = json.dumps({"numRecords": file.record_count})
        if file.kind is not ContentKind.DATA:
            action["tags"] = {CONTENT_TAG: file.kind.value}
        return action

    def _remove_action(self, file: ContentFile, partition_columns: list[str], timestamp: int) -> dict[str, Any]:
        return {
            "path": self._relative_path(file.path),
            "deletionTimestamp": timestamp,
            "dataChange": False,
            "extendedFileMetadata": True,
            "partitionValues": _partition_values(file.partition, partition_columns),
            "size": file.size,
        }

    def _absolute_path(self, raw: str) -> str:
        if "://" in raw:
            parsed = urlparse(raw)
            if parsed.scheme == "file":
                return unquote(parsed.path)
            return raw
        decoded = unquote(raw)
        if decoded.startswith("/"):
            return decoded
        return (self.table_path / decoded).as_posix()

    def _relative_path(self, path: str) -> str:
        candidate = Path(path)
        try:
            relative = candidate.relative_to(self.table_path)
        except ValueError:
            return candidate.as_uri() if candidate.is_absolute() else path
        return quote(relative.as_posix(), safe="/=")

    def _write_exclusive(self, version: int, lines: list[dict[str, Any]]) -> None:
        target = self._log_dir() / f"{version:020d}.json"
        tmp_path = self._log_dir() / f".{version:020d}.{uuid.uuid4().hex}.tmp"
        data = "\n".join(json.dumps(line, sort_keys=True) for line in lines) + "\n"
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            try:
                os.link(tmp_path, target)
            except FileExistsError as exc:
                raise CommitConflictError(
                    f"Delta log version {version} was written concurrently for {self._identifier}"
                ) from exc
        finally:
            tmp_path.unlink(missing_ok=True)


def _covers_versions(changes: list[SnapshotChange], base: int, latest: int | None) -> bool:
    if latest is None:
        return True
    present = {change.snapshot_id for change in changes}
    return all(version in present for version in range(base + 1, latest + 1))


def _map_to_dict(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, list):
        result: dict[str, Any] = {}
        for entry in value:
            if isinstance(entry, Mapping) and "key" in entry:
                result[str(entry["key"])] = entry.get("value")
        return result
    return {}


def _partition_path(values: Mapping[str, Any], partition_columns: list[str]) -> str:
    parts = []
    for column in partition_columns:
        value = values.get(column)
        parts.append(f"{column}={DEFAULT_PARTITION if value is None else value}")
    return "/".join(parts)


def _partition_values(partition: str, partition_columns: list[str]) -> dict[str, str | None]:
    parsed: dict[str, str | None] = {}
    if partition:
        for part in partition.split("/"):
            key, _, value = part.partition("=")
            parsed[key] = None if value == DEFAULT_PARTITION else value
    return {column: parsed.get(column) for column in partition_columns}


def _num_records(stats: Any) -> int | None:
    if not isinstance(stats, str) or not stats:
        return None
    try:
        payload = json.loads(stats)
    except ValueError:
        return None
    value = payload.get("numRecords") if isinstance(payload, dict) else None
    return int(value) if isinstance(value, int) else None
