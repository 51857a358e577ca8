import unittest

from lake_optimizer.classifier import FileClassifier, output_relocates
from lake_optimizer.config import TableConfig
from lake_optimizer.files import data_file, pos_delete_file
from lake_optimizer.tables import InMemoryTable, TableCapabilities
from lake_optimizer.task import OptimizeType

KB = 1024


def _warehouse(location: str = "/warehouse/orders") -> TableCapabilities:
    table = InMemoryTable("db.orders", properties={"warehouse.external-location": location})
    return TableCapabilities.for_table(table)


class TestFileClassifier(unittest.TestCase):
    def setUp(self) -> None:
        self.config = TableConfig(small_file_size_bytes=8 * KB)

    def test_threshold_is_inclusive(self) -> None:
        classifier = FileClassifier(self.config)
        self.assertTrue(classifier.is_small(data_file("/lake/a.parquet", 8 * KB)))
        self.assertFalse(classifier.is_small(data_file("/lake/b.parquet", 8 * KB + 1)))
        self.assertFalse(classifier.is_small(pos_delete_file("/lake/d.parquet", 1)))

    def test_without_deletes_every_included_file_is_eligible(self) -> None:
        classifier = FileClassifier(self.config)
        small = data_file("/lake/p/a.parquet", KB, "p")
        big = data_file("/lake/p/b.parquet", 64 * KB, "p")
        result = classifier.classify("p", [small, big], [])
        self.assertEqual(result.small_files, (small,))
        self.assertEqual(set(result.eligible_files), {small, big})
        self.assertFalse(result.has_deletes)

    def test_with_deletes_only_small_files_are_eligible(self) -> None:
        classifier = FileClassifier(self.config)
        small = data_file("/lake/p/a.parquet", KB, "p")
        big = data_file("/lake/p/b.parquet", 64 * KB, "p")
        delete = pos_delete_file("/lake/p/d.parquet", KB, "p")
        result = classifier.classify("p", [small, big], [delete])
        self.assertEqual(result.eligible_files, (small,))
        self.assertTrue(result.has_deletes)

    def test_files_at_external_location_are_excluded(self) -> None:
        classifier = FileClassifier(self.config, _warehouse())
        canonical = data_file("/warehouse/orders/p/a.parquet", KB, "p")
        sibling = data_file("/warehouse/orders2/p/b.parquet", KB, "p")
        staged = data_file("/lake/orders/p/c.parquet", KB, "p")
        result = classifier.classify("p", [canonical, sibling, staged], [])
        self.assertEqual(result.excluded_files, (canonical,))
        self.assertEqual(set(result.small_files), {sibling, staged})

    def test_plain_table_never_excludes(self) -> None:
        classifier = FileClassifier(self.config)
        self.assertFalse(classifier.is_excluded(data_file("/warehouse/orders/p/a.parquet", KB, "p")))


class TestNeedOptimize(unittest.TestCase):
    def setUp(self) -> None:
        self.one = [data_file("/lake/p/a.parquet", KB, "p")]
        self.two = self.one + [data_file("/lake/p/b.parquet", KB, "p")]
        self.deletes = [pos_delete_file("/lake/p/d.parquet", KB, "p")]

    def test_warehouse_compatible(self) -> None:
        classifier = FileClassifier(TableConfig(), _warehouse())
        self.assertFalse(classifier.need_optimize([], []))
        self.assertTrue(classifier.need_optimize([], self.one))
        self.assertFalse(classifier.need_optimize(self.deletes, self.one))
        self.assertTrue(classifier.need_optimize(self.deletes, self.two))

    def test_plain_table(self) -> None:
        classifier = FileClassifier(TableConfig())
        self.assertFalse(classifier.need_optimize([], []))
        self.assertFalse(classifier.need_optimize([], self.one))
        self.assertTrue(classifier.need_optimize([], self.two))
        self.assertTrue(classifier.need_optimize(self.deletes, self.one))
        self.assertFalse(classifier.need_optimize(self.deletes, []))


class TestOutputPlacement(unittest.TestCase):
    def test_plain_table_never_relocates(self) -> None:
        capabilities = TableCapabilities()
        for optimize_type in OptimizeType:
            for has_deletes in (True, False):
                self.assertFalse(output_relocates(capabilities, optimize_type, has_deletes))

    def test_warehouse_table(self) -> None:
        capabilities = _warehouse()
        self.assertTrue(output_relocates(capabilities, OptimizeType.MAJOR, False))
        self.assertFalse(output_relocates(capabilities, OptimizeType.MAJOR, True))
        self.assertTrue(output_relocates(capabilities, OptimizeType.FULL_MAJOR, True))
        self.assertTrue(output_relocates(capabilities, OptimizeType.FULL_MAJOR, False))
        self.assertFalse(output_relocates(capabilities, OptimizeType.MINOR, False))

    def test_partition_location(self) -> None:
        capabilities = _warehouse("/warehouse/orders/")
        self.assertEqual(capabilities.partition_location("dt=1"), "/warehouse/orders/dt=1")
        self.assertEqual(capabilities.partition_location(""), "/warehouse/orders")
        self.assertIsNone(TableCapabilities().partition_location("dt=1"))


if __name__ == "__main__":
    unittest.main()
