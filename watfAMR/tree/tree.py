"""
Refinement tree: binary (1D), quad (2D) or oct (3D) trees in an arena.

Every element of a refineable mesh is wrapped by a TreeNode. Tree nodes
live in a TreeArena and refer to each other by integer handle:

- parent:   handle of the father (None for a root), non-owning
- children: handles of the 2^d sons (empty for a leaf), owning
- son_type: position of the node among its father's sons

A tree node is either a leaf (its element is active in assembly) or fully
split (all 2^d sons present, element kept but inactive so the node can
be merged again). Handles are never reused, so a handle held by a caller
either refers to the same tree node or to nothing.

Son type convention (shared with LagrangeElement.son_bounds): bit a of
the son type is 1 if the son occupies the upper half along axis a.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ..discretization.element import LagrangeElement, NodeFactory
from ..errors import MergeError

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    """
    One element at one refinement level.

    Attributes:
        handle: Index of this node in the arena
        level: Refinement level (0 = root)
        element: The finite element wrapped by this node
        root: Handle of the root of the tree containing this node
        parent: Handle of the father (None for roots)
        son_type: Position among the father's sons (None for roots)
        children: Handles of the sons, ordered by son type
    """
    handle: int
    level: int
    element: LagrangeElement
    root: int
    parent: Optional[int] = None
    son_type: Optional[int] = None
    children: List[int] = field(default_factory=list)

    def is_leaf(self) -> bool:
        """Leaves carry the active elements."""
        return len(self.children) == 0

    def is_root(self) -> bool:
        return self.parent is None

    @property
    def active(self) -> bool:
        return self.is_leaf()


class TreeArena:
    """
    Storage for all tree nodes of a forest, indexed by handle.

    Attributes:
        dimension: Spatial dimension (number of son-type bits)
    """

    def __init__(self, dimension: int):
        if not 1 <= dimension <= 3:
            raise ValueError(f"Unsupported dimension: {dimension}")
        self.dimension = dimension
        self._nodes: Dict[int, TreeNode] = {}
        self._next_handle = 0

    @property
    def n_sons(self) -> int:
        return 2 ** self.dimension

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, handle: int) -> bool:
        return handle in self._nodes

    def __getitem__(self, handle: int) -> TreeNode:
        return self._nodes[handle]

    def __iter__(self) -> Iterator[TreeNode]:
        return iter(self._nodes.values())

    def _allocate(self) -> int:
        handle = self._next_handle
        self._next_handle += 1
        return handle

    def add_root(self, element: LagrangeElement) -> int:
        """Wrap a level-0 element in a new root tree node."""
        if element.dimension() != self.dimension:
            raise ValueError(
                f"Element dimension {element.dimension()} does not match "
                f"tree dimension {self.dimension}"
            )
        handle = self._allocate()
        self._nodes[handle] = TreeNode(handle=handle, level=0, element=element, root=handle)
        return handle

    # -------------------------------------------------------------------------
    # Split / merge
    # -------------------------------------------------------------------------

    def split(self, handle: int, node_factory: NodeFactory) -> List[int]:
        """
        Split a leaf into 2^d sons.

        Parameters:
            handle: Leaf to split
            node_factory: Passed on to LagrangeElement.split_into_children

        Returns:
            Handles of the new sons (empty if the node was already split;
            that is a no-op, not an error)
        """
        node = self._nodes[handle]
        if not node.is_leaf():
            logger.debug(f"Split of already split tree node {handle} ignored")
            return []

        child_elements = node.element.split_into_children(node_factory)
        for son_type, child_element in enumerate(child_elements):
            child = self._allocate()
            self._nodes[child] = TreeNode(
                handle=child,
                level=node.level + 1,
                element=child_element,
                root=node.root,
                parent=handle,
                son_type=son_type,
            )
            node.children.append(child)

        return list(node.children)

    def can_merge(self, handle: int) -> bool:
        """True if the node is split and all its sons are leaves."""
        node = self._nodes[handle]
        if node.is_leaf():
            return False
        return all(self._nodes[c].is_leaf() for c in node.children)

    def merge(self, handle: int, strict: bool = False) -> List[TreeNode]:
        """
        Remove the sons of a node whose sons are all leaves.

        Parameters:
            handle: Node to turn back into a leaf
            strict: Raise MergeError instead of ignoring a node whose sons
                    are refined

        Returns:
            The removed son tree nodes (empty if nothing was merged)
        """
        node = self._nodes[handle]
        if node.is_leaf():
            logger.debug(f"Merge of leaf {handle} ignored")
            return []

        if not self.can_merge(handle):
            if strict:
                raise MergeError(f"Tree node {handle} has refined sons and cannot be merged")
            logger.debug(f"Merge of tree node {handle} ignored: sons are refined")
            return []

        removed = [self._nodes.pop(c) for c in node.children]
        node.children = []
        return removed

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def leaves(self, start: Optional[int] = None) -> List[int]:
        """
        Leaf handles, depth first in son-type order.

        Parameters:
            start: Root of the subtree to traverse (all trees if None)
        """
        if start is None:
            roots = sorted(h for h, n in self._nodes.items() if n.is_root())
            result = []
            for r in roots:
                result.extend(self.leaves(r))
            return result

        result = []
        stack = [start]
        while stack:
            h = stack.pop()
            node = self._nodes[h]
            if node.is_leaf():
                result.append(h)
            else:
                stack.extend(reversed(node.children))
        return result

    def ancestors(self, handle: int) -> List[int]:
        """Handles from the father up to the root."""
        result = []
        node = self._nodes[handle]
        while node.parent is not None:
            result.append(node.parent)
            node = self._nodes[node.parent]
        return result

    def path_to_root(self, handle: int) -> List[int]:
        """
        Son types from the root down to this node.

        The path of a root is empty; its length equals the node's level.
        """
        path = []
        node = self._nodes[handle]
        while node.parent is not None:
            path.append(node.son_type)
            node = self._nodes[node.parent]
        path.reverse()
        return path

    def position(self, handle: int) -> Tuple[int, ...]:
        """Integer cell position of the node inside its root at its level."""
        return position_from_path(self.path_to_root(handle), self.dimension)

    def descend(self, root: int, path: Sequence[int]) -> int:
        """
        Follow a son-type path down from a root.

        Stops early at a leaf, i.e. returns the deepest existing node on
        the path (which is coarser than the path if the tree is not
        refined that far).
        """
        handle = root
        for son_type in path:
            node = self._nodes[handle]
            if node.is_leaf():
                break
            handle = node.children[son_type]
        return handle

    def leaves_touching(self, handle: int, direction: Sequence[int]) -> List[int]:
        """
        Leaves of the subtree at handle that touch the boundary entity
        (face/edge/vertex) on the given side.

        For each axis with direction d != 0 only sons in the half towards
        d are followed.
        """
        result = []
        stack = [handle]
        while stack:
            h = stack.pop()
            node = self._nodes[h]
            if node.is_leaf():
                result.append(h)
                continue
            for child in node.children:
                son_type = self._nodes[child].son_type
                keep = True
                for a, d in enumerate(direction):
                    bit = (son_type >> a) & 1
                    if (d > 0 and bit == 0) or (d < 0 and bit == 1):
                        keep = False
                        break
                if keep:
                    stack.append(child)
        return sorted(result)


def position_from_path(path: Sequence[int], dimension: int) -> Tuple[int, ...]:
    """Integer cell coordinates at level len(path) encoded by a son-type path."""
    pos = [0] * dimension
    for son_type in path:
        for a in range(dimension):
            pos[a] = 2 * pos[a] + ((son_type >> a) & 1)
    return tuple(pos)


def path_from_position(position: Sequence[int], level: int, dimension: int) -> List[int]:
    """Inverse of position_from_path for a given level."""
    path = []
    for l in range(level - 1, -1, -1):
        son_type = 0
        for a in range(dimension):
            son_type |= ((position[a] >> l) & 1) << a
        path.append(son_type)
    return path
