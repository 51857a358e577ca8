"""Example: plan and commit one optimizing pass against an in-memory table."""

import logging

import lake_optimizer as lo

logging.basicConfig(level=logging.INFO)

table = lo.InMemoryTable(
    "db.orders",
    properties={
        "self-optimizing.small-file-size-bytes": "8192",
        "warehouse.external-location": "/warehouse/orders",
    },
)
table.append([lo.data_file(f"/lake/orders/dt=2024-01-01/f{i}.parquet", 1024, "dt=2024-01-01") for i in range(3)])

runtime = lo.TableOptimizeRuntime(table.identifier)
tasks = lo.plan(table, runtime, observer=lo.LoggingObserver())

items = []
for task in tasks:
    item = lo.OptimizeTaskItem.of(task)
    item.runtime.schedule()
    item.runtime.ack()
    # Files without deletes are rewritten into the external location.
    target = lo.data_file(f"{task.target_location}/merged.parquet", 3072, task.partition)
    item.runtime.report_prepared([target], new_file_count=1, new_file_size=target.size, cost_time=1)
    items.append(item)

result = lo.commit(table, lo.group_by_partition(items), runtime, observer=lo.LoggingObserver())
print("committed:", result.committed_partitions)
print("files:", [file.path for file in table.list_files()])
