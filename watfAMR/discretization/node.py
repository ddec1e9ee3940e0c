"""
Mesh nodes and hanging-node constraints.

A node is a geometric point carrying nodal values. Nodes are shared
between all elements (at any refinement level) that have a node at that
position, and each node knows which tree nodes use it:

    node in tree[handle].element.nodes()  <=>  handle in node.elements

A node whose position lies on the boundary of a finer element but which
is not a node of the coarser neighbour is "hanging": its values are not
unknowns but the weighted sum of the values of its master nodes, stored
in a HangInfo.
"""

import numpy as np
from typing import List, Tuple, Set, Optional, Dict
from dataclasses import dataclass, field


@dataclass
class HangInfo:
    """
    Constraint of a hanging node: value = sum_i weight_i * value(master_i).

    Attributes:
        masters: Ordered (master node ID, weight) pairs. Masters are never
                 hanging themselves; chains are resolved when the
                 constraint is built.
    """
    masters: List[Tuple[int, float]] = field(default_factory=list)

    @property
    def n_master(self) -> int:
        return len(self.masters)

    @property
    def master_ids(self) -> List[int]:
        return [m for m, _ in self.masters]

    @property
    def weights(self) -> np.ndarray:
        return np.array([w for _, w in self.masters])

    def weight_sum(self) -> float:
        """Sum of weights (1.0 for a partition of unity)."""
        return float(sum(w for _, w in self.masters))

    def master_weight(self, node_id: int) -> float:
        """Weight of a given master (0.0 if it is not a master)."""
        for m, w in self.masters:
            if m == node_id:
                return w
        return 0.0


@dataclass(eq=False)
class Node:
    """
    Mesh node.

    Attributes:
        id: Unique identifier (stable for the lifetime of the node)
        coordinates: Physical coordinates, shape (n_dim,)
        values: Nodal values, shape (n_values,)
        pinned: Per-value flags; pinned values are not unknowns
        boundaries: Names of the mesh boundaries the node lies on
        hanging: Constraint if the node is hanging, else None
        elements: Handles of the tree nodes whose element uses this node
    """
    id: int
    coordinates: np.ndarray
    values: np.ndarray = None
    pinned: np.ndarray = None
    boundaries: Set[str] = field(default_factory=set)
    hanging: Optional[HangInfo] = None
    elements: Set[int] = field(default_factory=set)

    def __post_init__(self):
        self.coordinates = np.asarray(self.coordinates, dtype=np.float64)
        if self.values is None:
            self.values = np.zeros(1)
        self.values = np.array(self.values, dtype=np.float64, ndmin=1)
        if self.pinned is None:
            self.pinned = np.zeros(len(self.values), dtype=bool)
        self.pinned = np.array(self.pinned, dtype=bool, ndmin=1)
        if len(self.pinned) != len(self.values):
            raise ValueError("pinned flags must match number of values")

    @property
    def n_dim(self) -> int:
        return len(self.coordinates)

    @property
    def n_values(self) -> int:
        return len(self.values)

    @property
    def x(self) -> float:
        return self.coordinates[0]

    @property
    def y(self) -> float:
        return self.coordinates[1]

    @property
    def z(self) -> Optional[float]:
        return self.coordinates[2] if self.n_dim > 2 else None

    def is_hanging(self) -> bool:
        return self.hanging is not None

    def is_on_boundary(self, boundary: Optional[str] = None) -> bool:
        if boundary is None:
            return bool(self.boundaries)
        return boundary in self.boundaries

    def pin(self, value_index: int = 0, value: Optional[float] = None) -> None:
        """Pin a value, optionally setting it."""
        self.pinned[value_index] = True
        if value is not None:
            self.values[value_index] = value

    def unpin(self, value_index: int = 0) -> None:
        self.pinned[value_index] = False

    def is_pinned(self, value_index: int = 0) -> bool:
        return bool(self.pinned[value_index])

    def add_element(self, handle: int) -> None:
        self.elements.add(handle)

    def remove_element(self, handle: int) -> None:
        self.elements.discard(handle)

    def hanging_value(self, nodes: Dict[int, 'Node'], value_index: int = 0) -> float:
        """
        Value implied by the constraint (own value if not hanging).

        Parameters:
            nodes: Node lookup by ID (the mesh's node dictionary)
            value_index: Which nodal value
        """
        if self.hanging is None:
            return float(self.values[value_index])
        return float(sum(w * nodes[m].values[value_index]
                         for m, w in self.hanging.masters))

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other) -> bool:
        if isinstance(other, Node):
            return self.id == other.id
        return False

    def __repr__(self) -> str:
        return (f"Node(id={self.id}, x={self.coordinates}, "
                f"hanging={self.is_hanging()}, n_elements={len(self.elements)})")
