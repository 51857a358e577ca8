from .base import SnapshotChange, TableCapabilities, TableHandle, TableKind, validate_rewrite
from .delta_log import DeltaLogTable
from .memory import InMemoryTable

__all__ = [
    "DeltaLogTable",
    "InMemoryTable",
    "SnapshotChange",
    "TableCapabilities",
    "TableHandle",
    "TableKind",
    "validate_rewrite",
]
