import unittest

from lake_optimizer.tree import (
    DataFileType,
    KeyedFileMeta,
    TreeNode,
    covering_roots,
    keyed_file_name,
    node_for_hash,
    node_of_path,
    parse_keyed_file_name,
    split_tree,
)


class TestTreeNode(unittest.TestCase):
    def test_id_roundtrip(self) -> None:
        self.assertEqual(TreeNode.root().id, 1)
        self.assertEqual(TreeNode(1, 0).id, 2)
        self.assertEqual(TreeNode(1, 1).id, 3)
        self.assertEqual(TreeNode(3, 2).id, 6)
        for node_id in range(1, 64):
            self.assertEqual(TreeNode.of_id(node_id).id, node_id)

    def test_children_and_parent(self) -> None:
        node = TreeNode(1, 1)
        self.assertEqual(node.left(), TreeNode(3, 1))
        self.assertEqual(node.right(), TreeNode(3, 3))
        self.assertEqual(node.left().parent(), node)
        self.assertEqual(node.right().parent(), node)
        with self.assertRaises(ValueError):
            TreeNode.root().parent()

    def test_invalid_nodes(self) -> None:
        with self.assertRaises(ValueError):
            TreeNode(2, 0)
        with self.assertRaises(ValueError):
            TreeNode(3, 4)
        with self.assertRaises(ValueError):
            TreeNode.of_id(0)

    def test_covers(self) -> None:
        root = TreeNode.root()
        self.assertTrue(root.covers(TreeNode(7, 5)))
        self.assertTrue(TreeNode(1, 1).covers(TreeNode(7, 5)))
        self.assertFalse(TreeNode(1, 0).covers(TreeNode(7, 5)))
        self.assertFalse(TreeNode(7, 5).covers(TreeNode(1, 1)))
        self.assertTrue(TreeNode(7, 5).is_son_of(TreeNode(1, 1)))
        self.assertFalse(TreeNode(1, 1).is_son_of(TreeNode(1, 1)))
        self.assertTrue(TreeNode(7, 5).overlaps(TreeNode(1, 1)))
        self.assertTrue(TreeNode(1, 1).overlaps(TreeNode(7, 5)))
        self.assertFalse(TreeNode(1, 0).overlaps(TreeNode(3, 1)))


class TestSplitTree(unittest.TestCase):
    def test_balanced(self) -> None:
        nodes = split_tree(4)
        self.assertEqual(nodes, [TreeNode(3, 0), TreeNode(3, 1), TreeNode(3, 2), TreeNode(3, 3)])

    def test_unbalanced_is_disjoint_cover(self) -> None:
        for bucket_count in (1, 3, 5, 6, 7):
            nodes = split_tree(bucket_count)
            self.assertEqual(len(nodes), bucket_count)
            for key_hash in range(64):
                owner = node_for_hash(key_hash, nodes)
                self.assertTrue(owner.contains_hash(key_hash))

    def test_three_buckets(self) -> None:
        self.assertEqual(split_tree(3), [TreeNode(1, 1), TreeNode(3, 0), TreeNode(3, 2)])

    def test_invalid_bucket_count(self) -> None:
        with self.assertRaises(ValueError):
            split_tree(0)

    def test_node_for_hash_rejects_overlap(self) -> None:
        with self.assertRaises(ValueError):
            node_for_hash(0, [TreeNode.root(), TreeNode(1, 0)])


class TestCoveringRoots(unittest.TestCase):
    def test_maps_to_topmost_ancestor(self) -> None:
        nodes = [TreeNode(1, 0), TreeNode(3, 0), TreeNode(3, 2), TreeNode(3, 1), TreeNode(7, 5)]
        roots = covering_roots(nodes)
        self.assertEqual(roots[TreeNode(3, 0)], TreeNode(1, 0))
        self.assertEqual(roots[TreeNode(3, 2)], TreeNode(1, 0))
        self.assertEqual(roots[TreeNode(3, 1)], TreeNode(3, 1))
        self.assertEqual(roots[TreeNode(7, 5)], TreeNode(3, 1))
        self.assertEqual(set(roots.values()), {TreeNode(1, 0), TreeNode(3, 1)})

    def test_root_swallows_everything(self) -> None:
        roots = covering_roots([TreeNode(3, 3), TreeNode.root(), TreeNode(1, 0)])
        self.assertEqual(set(roots.values()), {TreeNode.root()})


class TestKeyedFileNames(unittest.TestCase):
    def test_name_roundtrip(self) -> None:
        meta = KeyedFileMeta(
            node=TreeNode(3, 2),
            file_type=DataFileType.POS_DELETE_FILE,
            transaction_id=42,
            partition_id=1,
            task_id=7,
            count=3,
        )
        name = keyed_file_name(meta)
        self.assertEqual(name, "6-PD-42-1-7-3.parquet")
        self.assertEqual(parse_keyed_file_name(f"/lake/t/dt=1/{name}"), meta)

    def test_unparseable_name_maps_to_root(self) -> None:
        self.assertIsNone(parse_keyed_file_name("/lake/t/part-0000.parquet"))
        self.assertEqual(node_of_path("/lake/t/part-0000.parquet"), TreeNode.root())
        self.assertEqual(node_of_path("/lake/t/5-B-1-0-0-1.parquet"), TreeNode(3, 1))


if __name__ == "__main__":
    unittest.main()
