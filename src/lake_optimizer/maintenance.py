from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import polars as pl

from .config import TableConfig
from .files import ContentKind, files_frame
from .tables.base import TableHandle


@dataclass(frozen=True)
class TableInfo:
    table_id: str
    snapshot_id: int | None
    partitions: int
    data_files: int
    delete_files: int
    small_files: int
    total_bytes: int


def inspect_partitions(table: TableHandle, config: TableConfig | None = None) -> pl.DataFrame:
    """Per-partition file counts and sizes for the table's current listing.

    Columns: partition, data_files, delete_files, small_files, data_bytes,
    delete_bytes. Sorted by partition.
    """
    config = config or TableConfig.from_properties(table.properties)
    frame = files_frame(table.list_files())
    data_kind = ContentKind.DATA.value
    is_data = pl.col("kind") == data_kind
    return (
        frame.group_by("partition")
        .agg(
            is_data.sum().cast(pl.Int64).alias("data_files"),
            (~is_data).sum().cast(pl.Int64).alias("delete_files"),
            (is_data & (pl.col("size") <= config.small_file_size_bytes))
            .sum()
            .cast(pl.Int64)
            .alias("small_files"),
            pl.col("size").filter(is_data).sum().cast(pl.Int64).alias("data_bytes"),
            pl.col("size").filter(~is_data).sum().cast(pl.Int64).alias("delete_bytes"),
        )
        .sort("partition")
    )


def inspect_table(table: TableHandle, config: TableConfig | None = None) -> TableInfo:
    """Return a summary of the table's current file layout."""
    partitions = inspect_partitions(table, config)
    return TableInfo(
        table_id=table.identifier,
        snapshot_id=table.current_snapshot_id(),
        partitions=partitions.height,
        data_files=int(partitions["data_files"].sum() or 0),
        delete_files=int(partitions["delete_files"].sum() or 0),
        small_files=int(partitions["small_files"].sum() or 0),
        total_bytes=int((partitions["data_bytes"].sum() or 0) + (partitions["delete_bytes"].sum() or 0)),
    )


def vacuum_delta_table(
    table_path: str | Path,
    *,
    retention_hours: float = 168.0,
    dry_run: bool = False,
    enforce_retention: bool | None = None,
) -> Any:
    """Vacuum a Delta table using deltalake (delta-rs).

    Removes data files that optimize commits dropped from the log once they
    are older than the retention window.
    """
    if isinstance(retention_hours, float) and retention_hours.is_integer():
        retention_hours = int(retention_hours)
    table = _get_delta_table(table_path)
    kwargs: dict[str, Any] = {"retention_hours": retention_hours, "dry_run": dry_run}
    if enforce_retention is not None:
        kwargs["enforce_retention_duration"] = enforce_retention
    try:
        return table.vacuum(**kwargs)
    except TypeError:
        # Older delta-rs versions may not support enforce_retention_duration.
        kwargs.pop("enforce_retention_duration", None)
        return table.vacuum(**kwargs)


def _get_delta_table(table_path: str | Path):
    from deltalake import DeltaTable  # type: ignore

    return DeltaTable(str(table_path))
