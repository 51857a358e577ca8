from .catalog import Catalog, LocalCatalog, TableSpec
from .version import __version__
from .classifier import Classification, FileClassifier
from .commit import CommitRecord, CommitResult, OptimizeCommit, commit
from .config import TableConfig
from .errors import (
    CommitConflictError,
    CommitError,
    InconsistentTaskRuntimeError,
    InvalidTableStateError,
    InvalidTransitionError,
    LakeOptimizerError,
    MissingOptionError,
    PlanningError,
    UnresolvedTreeNodeError,
    UnsupportedFormatError,
)
from .files import ContentFile, ContentKind, data_file, files_frame, pos_delete_file
from .grouper import TaskGrouper
from .guard import PartitionGuard
from .maintenance import TableInfo, inspect_partitions, inspect_table, vacuum_delta_table
from .observability import LoggingObserver, OptimizeObserver
from .plan import OptimizePlan, PartitionDecision, plan
from .runtime import (
    NEVER,
    OptimizeStatus,
    OptimizeTaskItem,
    OptimizeTaskRuntime,
    TableOptimizeRuntime,
    group_by_partition,
)
from .state import RuntimeStore
from .tables import DeltaLogTable, InMemoryTable, TableCapabilities, TableHandle, TableKind
from .task import OptimizeTask, OptimizeTaskId, OptimizeType
from .tree import (
    DataFileType,
    KeyedFileMeta,
    TreeNode,
    keyed_file_name,
    node_for_hash,
    parse_keyed_file_name,
    split_tree,
)

__all__ = [
    "Catalog",
    "Classification",
    "CommitConflictError",
    "CommitError",
    "CommitRecord",
    "CommitResult",
    "ContentFile",
    "ContentKind",
    "DataFileType",
    "DeltaLogTable",
    "FileClassifier",
    "InMemoryTable",
    "InconsistentTaskRuntimeError",
    "InvalidTableStateError",
    "InvalidTransitionError",
    "KeyedFileMeta",
    "LakeOptimizerError",
    "LocalCatalog",
    "LoggingObserver",
    "MissingOptionError",
    "NEVER",
    "OptimizeCommit",
    "OptimizeObserver",
    "OptimizePlan",
    "OptimizeStatus",
    "OptimizeTask",
    "OptimizeTaskId",
    "OptimizeTaskItem",
    "OptimizeTaskRuntime",
    "OptimizeType",
    "PartitionDecision",
    "PartitionGuard",
    "PlanningError",
    "RuntimeStore",
    "TableCapabilities",
    "TableConfig",
    "TableHandle",
    "TableInfo",
    "TableKind",
    "TableOptimizeRuntime",
    "TableSpec",
    "TaskGrouper",
    "TreeNode",
    "UnresolvedTreeNodeError",
    "UnsupportedFormatError",
    "__version__",
    "commit",
    "data_file",
    "files_frame",
    "group_by_partition",
    "inspect_partitions",
    "inspect_table",
    "keyed_file_name",
    "node_for_hash",
    "parse_keyed_file_name",
    "plan",
    "pos_delete_file",
    "split_tree",
    "vacuum_delta_table",
]
