"""
Unit tests for the tree forest and its root adjacency table.
"""

import pytest

from watfAMR.errors import AdjacencyError
from watfAMR.tree.forest import FaceConnection, TreeForest


class TestRootAdjacency:
    """Tests for adjacency derived from shared vertices."""

    def test_structured_identity(self, square_mesh):
        """Test connections of a structured mesh keep the axes."""
        forest = square_mesh.forest
        conn = forest.connection(0, (0, 1))
        assert conn.root == 1
        assert conn.face == (0, -1)
        assert conn.axis_map == (0, 1)
        assert conn.flips == (False, False)
        assert forest.connection(0, (1, 1)).root == 2

    def test_boundary_faces(self, square_mesh):
        """Test faces on the domain boundary."""
        forest = square_mesh.forest
        assert forest.connection(0, (0, -1)) is None
        assert forest.connection(0, (1, -1)) is None
        assert len(forest.boundary_faces) == 8

    def test_symmetry(self, square_mesh):
        """Test every connection has its inverse."""
        adjacency = square_mesh.forest.adjacency
        for (root, face), conn in adjacency.items():
            assert adjacency[(conn.root, conn.face)] == conn.inverse(root)

    def test_rotated_neighbour(self, rotated_mesh):
        """Test the connection across a rotated face."""
        mesh = rotated_mesh
        conn = mesh.forest.connection(0, (0, 1))
        assert conn.root == 1
        # Shared edge is the right root's upper-s1 face; global +x runs
        # along its -s1
        assert conn.face == (1, 1)
        assert conn.axis_map == (1, 0)
        assert conn.flips == (True, False)

    def test_rotated_position_transform(self, rotated_mesh):
        """Test positions and directions across a rotated face."""
        mesh = rotated_mesh
        conn = mesh.forest.connection(0, (0, 1))
        # Cell (2, 1) at level 1 (x in [1, 1.5], y in [0.5, 1]) lies in the
        # upper-right quarter of root 1
        assert conn.transform_position((2, 1), 2) == (1, 1)
        assert conn.transform_direction((1, 0)) == (0, -1)


class TestForestValidation:
    """Tests for table validation."""

    def test_asymmetric_table(self, square_mesh):
        """Test a table without the reverse entry is rejected."""
        arena = square_mesh.arena
        bad = {(0, (0, 1)): FaceConnection((0, 1), 1, (0, -1), (0, 1), (False, False))}
        with pytest.raises(AdjacencyError):
            TreeForest(arena, square_mesh.roots, bad, set())

    def test_uncovered_face(self, square_mesh):
        """Test a face neither connected nor on the boundary is rejected."""
        arena = square_mesh.arena
        adjacency = square_mesh.forest.adjacency
        boundary = square_mesh.forest.boundary_faces
        boundary.discard((0, (0, -1)))
        with pytest.raises(AdjacencyError):
            TreeForest(arena, square_mesh.roots, adjacency, boundary)

    def test_connected_and_boundary(self, square_mesh):
        """Test a face both connected and on the boundary is rejected."""
        arena = square_mesh.arena
        adjacency = square_mesh.forest.adjacency
        boundary = square_mesh.forest.boundary_faces | {(0, (0, 1))}
        with pytest.raises(AdjacencyError):
            TreeForest(arena, square_mesh.roots, adjacency, boundary)


class TestForestLevels:

    def test_levels(self, square_mesh):
        """Test forest level range after a split."""
        square_mesh.split(0)
        square_mesh.split(square_mesh.arena[0].children[0])
        assert square_mesh.max_level() == 2
        assert square_mesh.min_level() == 0
        assert square_mesh.forest.max_level() == 2
