"""
Neighbour finding across refinement levels and across roots.

Directions are integer vectors with entries in {-1, 0, +1}:

    (1, 0)    east face          (0, -1, 0)  south face (3D)
    (1, 1)    north-east vertex  (1, 0, -1)  edge (3D)

The search never stores neighbour pointers. It converts the tree path of
the node into an integer cell position at the node's level, offsets it by
the direction, carries the position into the adjacent root whenever it
leaves the current one, and descends the target tree along the path that
the shifted position encodes. The descent stops at a leaf, so the result
is either a tree node of the same size (leaf or split) or a coarser leaf.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .forest import TreeForest
from .tree import path_from_position
from ..errors import AdjacencyError

logger = logging.getLogger(__name__)


def face_directions(dimension: int) -> List[Tuple[int, ...]]:
    """Unit directions towards the 2d faces, ordered (-x, +x, -y, +y, ...)."""
    result = []
    for axis in range(dimension):
        for side in (-1, 1):
            d = [0] * dimension
            d[axis] = side
            result.append(tuple(d))
    return result


def all_directions(dimension: int) -> List[Tuple[int, ...]]:
    """Every face, edge and vertex direction (3^d - 1 of them)."""
    return [d for d in itertools.product((-1, 0, 1), repeat=dimension) if any(d)]


@dataclass(frozen=True)
class NeighborInfo:
    """
    Result of a neighbour search.

    Attributes:
        handle: Tree node found (same level, or a coarser leaf)
        level_difference: Own level minus neighbour level (> 0: coarser neighbour)
        direction: The search direction expressed in the neighbour's root frame
        root_crossings: Number of root faces crossed
        is_leaf: Whether the neighbour is a leaf
    """
    handle: int
    level_difference: int
    direction: Tuple[int, ...]
    root_crossings: int
    is_leaf: bool


class NeighborLocator:
    """
    Finds neighbours of tree nodes in a forest.

    Attributes:
        forest: TreeForest to search
    """

    def __init__(self, forest: TreeForest):
        self.forest = forest

    def _check_direction(self, direction: Sequence[int]) -> Tuple[int, ...]:
        direction = tuple(int(d) for d in direction)
        if len(direction) != self.forest.dimension:
            raise ValueError(
                f"Direction {direction} does not match dimension {self.forest.dimension}"
            )
        if any(d not in (-1, 0, 1) for d in direction) or not any(direction):
            raise ValueError(f"Invalid direction: {direction}")
        return direction

    def locate(self, handle: int, direction: Sequence[int]) -> Optional[NeighborInfo]:
        """
        Find the neighbour of a tree node in a direction.

        Parameters:
            handle: Tree node whose neighbour is sought
            direction: Face/edge/vertex direction

        Returns:
            NeighborInfo, or None if the direction leads out of the domain

        Raises:
            AdjacencyError: the adjacency table lacks an entry for a root
                            face that is not on the domain boundary
        """
        direction = self._check_direction(direction)
        arena = self.forest.arena
        dim = self.forest.dimension
        node = arena[handle]
        level = node.level
        n_cells = 2 ** level

        root = node.root
        position = [p + d for p, d in zip(arena.position(handle), direction)]
        crossings = 0

        while True:
            outside = [a for a in range(dim) if not 0 <= position[a] < n_cells]
            if not outside:
                break
            if crossings >= dim:
                raise AdjacencyError(
                    f"Neighbour search from tree node {handle} in direction "
                    f"{direction} did not settle after {crossings} root crossings"
                )
            axis = outside[0]
            face = (axis, 1 if position[axis] >= n_cells else -1)
            conn = self.forest.connection(root, face)
            if conn is None:
                return None
            position = list(conn.transform_position(position, n_cells))
            direction = conn.transform_direction(direction)
            root = conn.root
            crossings += 1

        target = arena.descend(root, path_from_position(position, level, dim))
        found = arena[target]
        return NeighborInfo(
            handle=target,
            level_difference=level - found.level,
            direction=direction,
            root_crossings=crossings,
            is_leaf=found.is_leaf(),
        )

    def face_neighbors(self, handle: int) -> List[Optional[NeighborInfo]]:
        """Neighbours across every face, in face_directions order."""
        return [self.locate(handle, d) for d in face_directions(self.forest.dimension)]

    def leaf_neighbors(self, handle: int, direction: Sequence[int]) -> List[int]:
        """
        All leaves touching the face/edge/vertex of a node in a direction.

        A coarser or same-size leaf is returned on its own; for a split
        neighbour of the same size, its leaves on the shared entity are
        returned.
        """
        info = self.locate(handle, direction)
        if info is None:
            return []
        if info.is_leaf:
            return [info.handle]
        towards_me = tuple(-d for d in info.direction)
        return self.forest.arena.leaves_touching(info.handle, towards_me)

    def all_leaf_neighbors(self, handle: int) -> List[int]:
        """Leaves touching the node anywhere (faces, edges, vertices)."""
        seen = set()
        result = []
        for d in all_directions(self.forest.dimension):
            for h in self.leaf_neighbors(handle, d):
                if h != handle and h not in seen:
                    seen.add(h)
                    result.append(h)
        return result
