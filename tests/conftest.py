"""
Pytest configuration and shared fixtures for watfAMR tests.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add the parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from watfAMR.discretization.mesh import Mesh, build_rectangle_mesh, build_line_mesh, build_brick_mesh


@pytest.fixture
def tolerance():
    """Default tolerance for floating point comparisons."""
    return 1e-12


@pytest.fixture
def loose_tolerance():
    """Looser tolerance for numerical integration tests."""
    return 1e-8


@pytest.fixture
def square_mesh():
    """2x2 bilinear quads on the unit square (roots 0..3, x fastest)."""
    return build_rectangle_mesh(2, 2)


@pytest.fixture
def quadratic_square_mesh():
    """2x2 biquadratic quads on the unit square."""
    return build_rectangle_mesh(2, 2, nnode_1d=3)


@pytest.fixture
def refined_square_mesh():
    """2x2 bilinear quads with the bottom-left root split once."""
    mesh = build_rectangle_mesh(2, 2)
    mesh.split(mesh.roots[0])
    return mesh


@pytest.fixture
def line_mesh():
    """4 linear elements on [0, 1]."""
    return build_line_mesh(4)


@pytest.fixture
def cube_mesh():
    """2x2x2 trilinear hexes on the unit cube."""
    return build_brick_mesh(2, 2, 2)


def node_at(mesh, x, tol=1e-10):
    """Node of the mesh at position x (None if there is none)."""
    x = np.asarray(x, dtype=float)
    for node in mesh.nodes.values():
        if np.max(np.abs(node.coordinates - x)) < tol:
            return node
    return None


@pytest.fixture
def find_node():
    """Lookup helper: find_node(mesh, x) -> Node or None."""
    return node_at


@pytest.fixture
def rotated_mesh():
    """
    Two unit quads side by side; the right one has its local axes rotated
    by 90 degrees (its s0 runs along global +y, its s1 along global -x).

        2---3---5
        |   |   |
        0---1---4
    """
    coords = np.array([[0, 0], [1, 0], [0, 1], [1, 1], [2, 0], [2, 1]], dtype=float)
    left = [0, 1, 2, 3]
    # Local vertex order (s0 fastest): (0,0)->4, (1,0)->5, (0,1)->1, (1,1)->3
    right = [4, 5, 1, 3]
    return Mesh.from_coarse_mesh(coords, [left, right], dimension=2)


@pytest.fixture
def rotated_mesh_with_boundary():
    """The rotated two-root mesh with its outer boundary tagged "outer"."""
    coords = np.array([[0, 0], [1, 0], [0, 1], [1, 1], [2, 0], [2, 1]], dtype=float)

    def on_outer(x, tol=1e-10):
        return (abs(x[0]) < tol or abs(x[0] - 2.0) < tol
                or abs(x[1]) < tol or abs(x[1] - 1.0) < tol)

    return Mesh.from_coarse_mesh(coords, [[0, 1, 2, 3], [4, 5, 1, 3]], dimension=2,
                                 boundaries={"outer": on_outer})
