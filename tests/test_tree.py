"""
Unit tests for refinement trees.
"""

import pytest

from watfAMR.errors import MergeError
from watfAMR.tree.tree import position_from_path, path_from_position


class TestPaths:
    """Tests for son-type paths and integer positions."""

    def test_position_from_path(self):
        """Test integer position from son types."""
        # Son 1 (upper x) then son 2 (upper y): cell (2, 1) at level 2
        assert position_from_path([1, 2], 2) == (2, 1)
        assert position_from_path([], 3) == (0, 0, 0)

    def test_path_roundtrip(self):
        """Test position to path and back."""
        for path in ([0], [3, 1], [2, 0, 1]):
            pos = position_from_path(path, 2)
            assert path_from_position(pos, len(path), 2) == path


class TestTreeArena:
    """Tests for split/merge on the arena."""

    def test_roots(self, square_mesh):
        """Test roots are level-0 leaves."""
        arena = square_mesh.arena
        assert len(arena) == 4
        for h in square_mesh.roots:
            node = arena[h]
            assert node.is_root()
            assert node.is_leaf()
            assert node.level == 0
            assert node.root == h

    def test_split_creates_sons(self, square_mesh):
        """Test a split creates 2^d sons."""
        arena = square_mesh.arena
        assert square_mesh.split(0)
        node = arena[0]
        assert not node.is_leaf()
        assert len(node.children) == 4
        for son_type, child in enumerate(node.children):
            assert arena[child].parent == 0
            assert arena[child].son_type == son_type
            assert arena[child].level == 1
            assert arena[child].root == 0

    def test_split_of_split_node_is_noop(self, square_mesh):
        """Test splitting a split node does nothing."""
        square_mesh.split(0)
        children = list(square_mesh.arena[0].children)
        assert not square_mesh.split(0)
        assert square_mesh.arena[0].children == children

    def test_handles_not_reused(self, square_mesh):
        """Test handles are not reused after a merge."""
        square_mesh.split(0)
        first = list(square_mesh.arena[0].children)
        square_mesh.merge(0)
        square_mesh.split(0)
        second = square_mesh.arena[0].children
        assert not set(first) & set(second)
        for h in first:
            assert h not in square_mesh.arena

    def test_merge_of_leaf_is_noop(self, square_mesh):
        """Test merging a leaf does nothing."""
        assert not square_mesh.merge(1)

    def test_merge_with_split_son(self, square_mesh):
        """Test merging with a split son, non-strict and strict."""
        square_mesh.split(0)
        son = square_mesh.arena[0].children[3]
        square_mesh.split(son)
        assert not square_mesh.arena.can_merge(0)
        assert not square_mesh.merge(0)
        assert not square_mesh.arena[0].is_leaf()
        with pytest.raises(MergeError):
            square_mesh.merge(0, strict=True)

    def test_leaves_depth_first(self, square_mesh):
        """Test leaves are listed depth first."""
        square_mesh.split(0)
        leaves = square_mesh.leaves()
        children = square_mesh.arena[0].children
        assert leaves == list(children) + [1, 2, 3]

    def test_path_and_position(self, square_mesh):
        """Test path and position of a level-2 node."""
        square_mesh.split(0)
        son = square_mesh.arena[0].children[1]
        square_mesh.split(son)
        grandson = square_mesh.arena[son].children[2]
        assert square_mesh.arena.path_to_root(grandson) == [1, 2]
        assert square_mesh.arena.position(grandson) == (2, 1)
        assert square_mesh.arena.ancestors(grandson) == [son, 0]
        assert square_mesh.arena.descend(0, [1, 2]) == grandson
        # Descent stops at a leaf
        assert square_mesh.arena.descend(1, [3, 3]) == 1

    def test_leaves_touching(self, square_mesh):
        """Test leaves touching a face."""
        square_mesh.split(0)
        children = square_mesh.arena[0].children
        assert square_mesh.arena.leaves_touching(0, (1, 0)) == sorted([children[1], children[3]])
        assert square_mesh.arena.leaves_touching(0, (-1, -1)) == [children[0]]


class TestMeshLinking:
    """Split/merge keep the node <-> element links consistent."""

    def test_split_links_nodes(self, square_mesh):
        """Test a split links the new elements to their nodes."""
        square_mesh.split(0)
        square_mesh.verify_linking_invariant()
        # 9 coarse nodes + 5 new ones inside the bottom-left quad
        assert square_mesh.n_nodes == 14

    def test_split_merge_restores(self, square_mesh):
        """Test split then merge restores nodes and leaves."""
        before = set(square_mesh.nodes)
        square_mesh.split(0)
        square_mesh.assign_equation_numbers()
        assert square_mesh.n_hanging == 2
        assert square_mesh.merge(0)
        square_mesh.verify_linking_invariant()
        square_mesh.assign_equation_numbers()
        assert set(square_mesh.nodes) == before
        assert square_mesh.n_hanging == 0
        assert square_mesh.leaves() == [0, 1, 2, 3]

    def test_neighbouring_splits_share_nodes(self, square_mesh):
        """Test neighbouring splits share nodes."""
        square_mesh.split(0)
        square_mesh.split(1)
        square_mesh.verify_linking_invariant()
        # Fine 5x3 grid of nodes on the bottom row, 3 coarse nodes on top
        assert square_mesh.n_nodes == 18
