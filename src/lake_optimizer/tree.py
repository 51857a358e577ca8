from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Iterable


@dataclass(frozen=True, order=True)
class TreeNode:
    """Address of one node of the perfect binary tree over the key-hash space.

    A node ``(mask, index)`` owns every hash ``h`` with ``h & mask == index``.
    ``mask`` is always ``2**depth - 1``.
    """

    mask: int
    index: int

    def __post_init__(self) -> None:
        if self.mask < 0 or (self.mask + 1) & self.mask:
            raise ValueError(f"Tree node mask must be 2^n - 1, got {self.mask}")
        if not 0 <= self.index <= self.mask:
            raise ValueError(f"Tree node index {self.index} out of range for mask {self.mask}")

    @classmethod
    def root(cls) -> "TreeNode":
        return cls(0, 0)

    @classmethod
    def of_id(cls, node_id: int) -> "TreeNode":
        if node_id < 1:
            raise ValueError(f"Tree node id must be positive, got {node_id}")
        top = 1 << (node_id.bit_length() - 1)
        return cls(top - 1, node_id - top)

    @property
    def id(self) -> int:
        return self.mask + 1 + self.index

    @property
    def depth(self) -> int:
        return (self.mask + 1).bit_length() - 1

    @property
    def is_root(self) -> bool:
        return self.mask == 0

    def left(self) -> "TreeNode":
        return TreeNode(self.mask * 2 + 1, self.index)

    def right(self) -> "TreeNode":
        return TreeNode(self.mask * 2 + 1, self.index + self.mask + 1)

    def parent(self) -> "TreeNode":
        if self.is_root:
            raise ValueError("Root tree node has no parent")
        parent_mask = self.mask >> 1
        return TreeNode(parent_mask, self.index & parent_mask)

    def covers(self, other: "TreeNode") -> bool:
        """True when ``other``'s key range lies within this node's range (or is equal)."""
        return other.mask >= self.mask and (other.index & self.mask) == self.index

    def is_son_of(self, other: "TreeNode") -> bool:
        return self != other and other.covers(self)

    def overlaps(self, other: "TreeNode") -> bool:
        return self.covers(other) or other.covers(self)

    def contains_hash(self, key_hash: int) -> bool:
        return (key_hash & self.mask) == self.index

    def __str__(self) -> str:
        return f"({self.mask}, {self.index})"


def split_tree(bucket_count: int) -> list[TreeNode]:
    """Split the key space into ``bucket_count`` disjoint nodes.

    Power-of-two counts produce a balanced level; other counts split the
    shallowest leaves first, so leaf depths differ by at most one.
    """
    if bucket_count < 1:
        raise ValueError(f"bucket_count must be >= 1, got {bucket_count}")
    leaves: deque[TreeNode] = deque([TreeNode.root()])
    while len(leaves) < bucket_count:
        node = leaves.popleft()
        leaves.append(node.left())
        leaves.append(node.right())
    return sorted(leaves, key=lambda node: (node.mask, node.index))


def node_for_hash(key_hash: int, nodes: Iterable[TreeNode]) -> TreeNode:
    matches = [node for node in nodes if node.contains_hash(key_hash)]
    if len(matches) != 1:
        raise ValueError(f"Nodes are not a disjoint cover for hash {key_hash}: {matches}")
    return matches[0]


def covering_roots(nodes: Iterable[TreeNode]) -> dict[TreeNode, TreeNode]:
    """Map every node to its top-most ancestor present in ``nodes``.

    The distinct values have pairwise disjoint key ranges.
    """
    unique = sorted(set(nodes))
    mapping: dict[TreeNode, TreeNode] = {}
    for node in unique:
        root = node
        for candidate in unique:
            if candidate.mask >= root.mask:
                break
            if candidate.covers(node):
                root = candidate
                break
        mapping[node] = root
    return mapping


class DataFileType(str, Enum):
    BASE_FILE = "B"
    INSERT_FILE = "I"
    EQ_DELETE_FILE = "ED"
    POS_DELETE_FILE = "PD"


@dataclass(frozen=True)
class KeyedFileMeta:
    node: TreeNode
    file_type: DataFileType
    transaction_id: int
    partition_id: int = 0
    task_id: int = 0
    count: int = 0


_KEYED_NAME = re.compile(r"^(\d+)-(B|I|ED|PD)-(\d+)-(\d+)-(\d+)-(\d+)(?:\.[\w.]+)?$")


def keyed_file_name(meta: KeyedFileMeta, *, extension: str = "parquet") -> str:
    return (
        f"{meta.node.id}-{meta.file_type.value}-{meta.transaction_id}-"
        f"{meta.partition_id}-{meta.task_id}-{meta.count}.{extension}"
    )


def parse_keyed_file_name(path: str) -> KeyedFileMeta | None:
    """Decode the tree node and file metadata embedded in a keyed file name."""
    name = PurePosixPath(str(path)).name
    match = _KEYED_NAME.match(name)
    if match is None:
        return None
    node_id, file_type, transaction_id, partition_id, task_id, count = match.groups()
    return KeyedFileMeta(
        node=TreeNode.of_id(int(node_id)),
        file_type=DataFileType(file_type),
        transaction_id=int(transaction_id),
        partition_id=int(partition_id),
        task_id=int(task_id),
        count=int(count),
    )


def node_of_path(path: str) -> TreeNode:
    """Tree node encoded in ``path``; files not written by a keyed writer cover the whole key space."""
    meta = parse_keyed_file_name(path)
    return meta.node if meta is not None else TreeNode.root()
