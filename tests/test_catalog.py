import json
import sys
import tempfile
import unittest
from pathlib import Path

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_ROOT))

import lake_optimizer as lo
from lake_optimizer.errors import MissingOptionError, UnsupportedFormatError


def _seed_delta(table_path: Path) -> None:
    log_dir = table_path / "_delta_log"
    log_dir.mkdir(parents=True)
    actions = [
        {"commitInfo": {"timestamp": 1000}},
        {"metaData": {"id": "t", "partitionColumns": [], "configuration": {"table.primary-keys": "id"}}},
        {"add": {"path": "part-0000.parquet", "size": 10, "partitionValues": {}}},
    ]
    (log_dir / f"{0:020d}.json").write_text("\n".join(json.dumps(action) for action in actions) + "\n")


class TestCatalog(unittest.TestCase):
    def test_mapping_catalog_opens_delta_table(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            table_path = Path(tmpdir) / "orders"
            _seed_delta(table_path)
            catalog = lo.LocalCatalog(
                {
                    "tables": {
                        "db.orders": {
                            "format": "delta",
                            "path": str(table_path),
                            "self-optimizing.small-file-size-bytes": 1024,
                            "self-optimizing.group": None,
                        },
                    }
                }
            )

            self.assertEqual(catalog.names(), ["db.orders"])
            spec = catalog.resolve("db.orders")
            self.assertEqual(spec.options, {"self-optimizing.small-file-size-bytes": 1024})

            table = catalog.load_table("db.orders")
            self.assertIsInstance(table, lo.DeltaLogTable)
            self.assertEqual(table.identifier, "db.orders")
            self.assertIs(table.kind, lo.TableKind.KEYED)
            self.assertEqual(lo.TableConfig.from_properties(table.properties).small_file_size_bytes, 1024)
            self.assertEqual(len(table.list_files()), 1)

    def test_toml_catalog(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            table_path = Path(tmpdir) / "orders"
            _seed_delta(table_path)
            catalog_path = Path(tmpdir) / "catalog.toml"
            catalog_path.write_text(
                "[tables.orders]\n"
                'format = "delta"\n'
                f'path = "{table_path.as_posix()}"\n'
                "[tables.orders.options]\n"
                '"self-optimizing.enabled" = "false"\n'
            )

            table = lo.LocalCatalog(catalog_path).load_table("orders")

            self.assertFalse(lo.TableConfig.from_properties(table.properties).enabled)

    def test_invalid_entries(self) -> None:
        catalog = lo.LocalCatalog(
            {
                "tables": {
                    "no_format": {"path": "/tmp/x"},
                    "no_path": {"format": "delta"},
                    "iceberg": {"format": "iceberg", "path": "/tmp/x"},
                }
            }
        )
        with self.assertRaises(MissingOptionError):
            catalog.resolve("no_format")
        with self.assertRaises(MissingOptionError):
            catalog.resolve("no_path")
        with self.assertRaises(UnsupportedFormatError):
            catalog.load_table("iceberg")
        with self.assertRaises(KeyError):
            catalog.resolve("missing")

    def test_unsupported_catalog_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "catalog.yaml"
            path.write_text("tables: {}")
            with self.assertRaises(ValueError):
                lo.LocalCatalog(path)


if __name__ == "__main__":
    unittest.main()
