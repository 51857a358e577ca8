from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path

import polars as pl
import lake_optimizer as lo


def _write_batch(table_path: Path, batch_id: int) -> None:
    df = pl.DataFrame(
        {
            "event_id": [f"e{batch_id}_0", f"e{batch_id}_1"],
            "batch_id": [batch_id, batch_id],
            "value": [batch_id * 1.0, batch_id * 2.0],
        }
    )
    df.write_delta(str(table_path), mode="append")


def _execute(task: lo.OptimizeTask, table_path: Path) -> lo.OptimizeTaskItem:
    """Stand-in executor: merge a task's base files into one parquet file."""
    item = lo.OptimizeTaskItem.of(task)
    item.runtime.schedule()
    item.runtime.ack()
    start = time.monotonic()
    frame = pl.read_parquet([file.path for file in task.base_files])
    directory = Path(task.target_location) if task.target_location else table_path / task.partition
    directory.mkdir(parents=True, exist_ok=True)
    out_path = directory / f"part-optimized-{uuid.uuid4().hex}.parquet"
    frame.write_parquet(out_path)
    target = lo.data_file(str(out_path), out_path.stat().st_size, task.partition, record_count=frame.height)
    item.runtime.report_prepared(
        [target],
        new_file_count=1,
        new_file_size=target.size,
        cost_time=int((time.monotonic() - start) * 1000),
    )
    return item


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    table_path = Path("data/delta/optimize_demo").resolve()
    table_path.mkdir(parents=True, exist_ok=True)

    # Create a few small files to give compaction something to do.
    for batch_id in range(3):
        _write_batch(table_path, batch_id)

    table = lo.DeltaLogTable(table_path, options={"self-optimizing.small-file-size-bytes": 1024 * 1024})
    store = lo.RuntimeStore(Path("data/optimizer_state"))
    runtime = store.load_table_runtime(table.identifier)
    observer = lo.LoggingObserver()

    print(lo.inspect_partitions(table))
    tasks = lo.plan(table, runtime, observer=observer)
    items = [_execute(task, table_path) for task in tasks]

    result = lo.commit(
        table,
        lo.group_by_partition(items),
        runtime,
        on_committed=lambda item: item.runtime.mark_committed(),
        observer=observer,
    )
    store.save_table_runtime(runtime)
    store.save_task_runtimes(table.identifier, [item.runtime for item in items])
    store.append_history(result.committed)

    print("committed partitions:", result.committed_partitions)
    print("rows after optimize:", pl.read_delta(str(table_path)).height)
    print(lo.inspect_table(table))


if __name__ == "__main__":
    main()
