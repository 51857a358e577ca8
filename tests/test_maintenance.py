import sys
import unittest
from pathlib import Path
from unittest import mock

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_ROOT))

import lake_optimizer as lo

KB = 1024


class TestInspect(unittest.TestCase):
    def setUp(self) -> None:
        self.table = lo.InMemoryTable(
            "db.orders", properties={"self-optimizing.small-file-size-bytes": str(8 * KB)}
        )
        self.table.append(
            [
                lo.data_file("/lake/dt=1/a.parquet", KB, "dt=1"),
                lo.data_file("/lake/dt=1/b.parquet", 64 * KB, "dt=1"),
                lo.pos_delete_file("/lake/dt=1/d.parquet", 2 * KB, "dt=1"),
                lo.data_file("/lake/dt=2/c.parquet", 2 * KB, "dt=2"),
            ]
        )

    def test_inspect_partitions(self) -> None:
        frame = lo.inspect_partitions(self.table)
        self.assertEqual(frame["partition"].to_list(), ["dt=1", "dt=2"])
        self.assertEqual(frame["data_files"].to_list(), [2, 1])
        self.assertEqual(frame["delete_files"].to_list(), [1, 0])
        self.assertEqual(frame["small_files"].to_list(), [1, 1])
        self.assertEqual(frame["data_bytes"].to_list(), [65 * KB, 2 * KB])
        self.assertEqual(frame["delete_bytes"].to_list(), [2 * KB, 0])

    def test_inspect_table(self) -> None:
        info = lo.inspect_table(self.table)
        self.assertEqual(info.table_id, "db.orders")
        self.assertEqual(info.snapshot_id, 1)
        self.assertEqual(info.partitions, 2)
        self.assertEqual(info.data_files, 3)
        self.assertEqual(info.delete_files, 1)
        self.assertEqual(info.small_files, 2)
        self.assertEqual(info.total_bytes, 69 * KB)

    def test_inspect_empty_table(self) -> None:
        info = lo.inspect_table(lo.InMemoryTable("db.empty"))
        self.assertEqual(info.partitions, 0)
        self.assertEqual(info.total_bytes, 0)
        self.assertIsNone(info.snapshot_id)


class TestVacuum(unittest.TestCase):
    def test_vacuum_delta_table_calls_deltalake(self) -> None:
        fake_table = mock.Mock()
        with mock.patch("lake_optimizer.maintenance._get_delta_table", return_value=fake_table):
            lo.vacuum_delta_table("/tmp/table", retention_hours=24.0, dry_run=True)
        fake_table.vacuum.assert_called_once_with(retention_hours=24, dry_run=True)

    def test_vacuum_retries_without_enforce_flag(self) -> None:
        fake_table = mock.Mock()
        fake_table.vacuum.side_effect = [TypeError("unexpected keyword"), ["old.parquet"]]
        with mock.patch("lake_optimizer.maintenance._get_delta_table", return_value=fake_table):
            result = lo.vacuum_delta_table("/tmp/table", enforce_retention=False)
        self.assertEqual(result, ["old.parquet"])
        self.assertEqual(fake_table.vacuum.call_count, 2)
        self.assertNotIn("enforce_retention_duration", fake_table.vacuum.call_args.kwargs)


if __name__ == "__main__":
    unittest.main()
