import logging
import unittest

from lake_optimizer.files import data_file
from lake_optimizer.observability import LoggingObserver
from lake_optimizer.plan import plan
from lake_optimizer.runtime import TableOptimizeRuntime
from lake_optimizer.tables import InMemoryTable


class TestLoggingObserver(unittest.TestCase):
    def test_logging_observer_events(self) -> None:
        logger = logging.getLogger("lake_optimizer.test")
        observer = LoggingObserver(logger)

        with self.assertLogs("lake_optimizer.test", level="INFO") as captured:
            observer.on_partition_planned("db.t", "dt=1", "Major", 3)
            observer.on_tasks_created("db.t", [object(), object()])
            observer.on_commit_start("db.t", "dt=1", 2)
            observer.on_partition_committed("db.t", "dt=1", 0.01, metadata={"snapshot_id": 4})

        joined = "\n".join(captured.output)
        self.assertIn("event=partition_planned table=db.t partition=dt=1 optimize_type=Major file_count=3", joined)
        self.assertIn("event=tasks_created", joined)
        self.assertIn("event=commit_start", joined)
        self.assertIn("event=partition_committed", joined)

    def test_skips_log_at_debug(self) -> None:
        logger = logging.getLogger("lake_optimizer.test_debug")
        observer = LoggingObserver(logger)

        with self.assertLogs("lake_optimizer.test_debug", level="DEBUG") as captured:
            observer.on_partition_skipped("db.t", "dt=1", "partition_running")

        self.assertEqual(captured.records[0].levelno, logging.DEBUG)
        self.assertIn("reason=partition_running", captured.output[0])

    def test_logging_observer_error(self) -> None:
        logger = logging.getLogger("lake_optimizer.test_error")
        observer = LoggingObserver(logger)
        exc = ValueError("boom")

        with self.assertLogs("lake_optimizer.test_error", level="ERROR") as captured:
            observer.on_error("commit", "db.t", "dt=1", exc)

        self.assertTrue(any("event=error stage=commit" in line for line in captured.output))

    def test_planner_reports_through_observer(self) -> None:
        table = InMemoryTable("db.t", properties={"self-optimizing.small-file-size-bytes": "4096"})
        table.append([data_file(f"/lake/dt=1/f{i}.parquet", 100, "dt=1") for i in range(2)])
        logger = logging.getLogger("lake_optimizer.test_plan")

        with self.assertLogs("lake_optimizer.test_plan", level="INFO") as captured:
            plan(table, TableOptimizeRuntime("db.t"), now=1_000, observer=LoggingObserver(logger))

        joined = "\n".join(captured.output)
        self.assertIn("event=partition_planned table=db.t partition=dt=1", joined)
        self.assertIn("event=tasks_created table=db.t task_count=1", joined)


if __name__ == "__main__":
    unittest.main()
