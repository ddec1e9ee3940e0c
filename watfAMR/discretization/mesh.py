"""
Refineable mesh of Lagrange elements.

The Mesh class is the central data structure that:
1. Owns all nodes (shared between elements by geometric identity)
2. Owns the tree arena wrapping every element, active or not
3. Maintains the bidirectional Node <-> tree node linking
4. Optionally carries a refinement capability (forest, neighbour
   locator, hanging-node resolver) chosen at construction

Bidirectional linking invariant:
    node in arena[handle].element.nodes()  <=>  handle in node.elements

Leaves of the trees are the active elements; split tree nodes keep their
elements so they can be merged again.

Nodes are found by position through a spatial hash: when an element is
split, every son node is first looked up at its position, so neighbouring
elements refined independently end up sharing nodes. A node that loses
its last element is removed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .element import ElementKind, LagrangeElement
from .node import Node
from ..config import AdaptivityConfig
from ..constraints.hanging import HangingNodeResolver
from ..constraints.numbering import DofMap, assign_equation_numbers
from ..errors import StructuralError
from ..tree.forest import Face, FaceConnection, TreeForest
from ..tree.neighbors import NeighborInfo, NeighborLocator
from ..tree.tree import TreeArena, TreeNode

logger = logging.getLogger(__name__)

BoundaryPredicate = Callable[[np.ndarray], bool]


class NodeRegistry:
    """
    Spatial hash of node positions.

    Positions within tol of each other are the same node. Buckets are
    much larger than tol, and the 3^d buckets around a query point are
    searched so that points straddling a bucket boundary are found.
    """

    def __init__(self, tol: float = 1.0e-10, cell_size: Optional[float] = None):
        if tol <= 0.0:
            raise ValueError("Tolerance must be positive")
        self.tol = tol
        self.cell_size = cell_size if cell_size is not None else 1.0e3 * tol
        self._buckets: Dict[Tuple[int, ...], List[Tuple[int, np.ndarray]]] = {}
        self._n_entries = 0

    def __len__(self) -> int:
        return self._n_entries

    def _key(self, x: np.ndarray) -> Tuple[int, ...]:
        return tuple(int(k) for k in np.floor(x / self.cell_size))

    def find(self, x: Sequence[float]) -> Optional[int]:
        """Node ID at position x, or None."""
        x = np.asarray(x, dtype=np.float64)
        key = self._key(x)
        for offset in np.ndindex(*(3,) * len(key)):
            bucket = self._buckets.get(tuple(k + o - 1 for k, o in zip(key, offset)))
            if not bucket:
                continue
            for node_id, y in bucket:
                if np.max(np.abs(x - y)) <= self.tol:
                    return node_id
        return None

    def add(self, node_id: int, x: Sequence[float]) -> None:
        x = np.array(x, dtype=np.float64)
        self._buckets.setdefault(self._key(x), []).append((node_id, x))
        self._n_entries += 1

    def remove(self, node_id: int, x: Sequence[float]) -> None:
        key = self._key(np.asarray(x, dtype=np.float64))
        bucket = self._buckets.get(key, [])
        for i, (nid, _) in enumerate(bucket):
            if nid == node_id:
                del bucket[i]
                self._n_entries -= 1
                if not bucket:
                    del self._buckets[key]
                return
        raise KeyError(f"Node {node_id} is not registered at {x}")


@dataclass
class DirichletBC:
    """
    Dirichlet boundary condition: value = g on a named boundary.

    Attributes:
        boundary: Name of the mesh boundary
        value: Constant, or callable g(x, y[, z])
        value_index: Which nodal value is prescribed
    """
    boundary: str
    value: Union[float, Callable[..., float]] = 0.0
    value_index: int = 0

    @classmethod
    def homogeneous(cls, boundary: str, value_index: int = 0) -> 'DirichletBC':
        """Create homogeneous Dirichlet BC (u = 0)."""
        return cls(boundary, 0.0, value_index)

    def value_at(self, x: np.ndarray) -> float:
        if callable(self.value):
            return float(self.value(*x))
        return float(self.value)


@dataclass
class RefinementCapability:
    """Everything a mesh needs to be adapted, attached at construction."""
    forest: TreeForest
    locator: NeighborLocator
    resolver: HangingNodeResolver


class Mesh:
    """
    Mesh of tensor-product Lagrange elements.

    Attributes:
        dimension: Spatial dimension
        nnode_1d: Nodes per element per direction
        n_values: Values stored at every node
        config: AdaptivityConfig (tolerances and adaptation limits)
        boundaries: Boundary name -> predicate on node position
        refinement: RefinementCapability, or None for a fixed mesh

    Key invariant:
        The bidirectional linking between tree nodes and mesh nodes is
        always consistent. split/merge update both sides.
    """

    def __init__(self, dimension: int, nnode_1d: int, n_values: int = 1,
                 config: Optional[AdaptivityConfig] = None,
                 boundaries: Optional[Dict[str, BoundaryPredicate]] = None):
        """
        Create an empty mesh. Use from_coarse_mesh or the build_* functions.
        """
        self.kind = ElementKind.for_dimension(dimension)
        self.dimension = dimension
        self.nnode_1d = nnode_1d
        if n_values < 1:
            raise ValueError("Need at least one value per node")
        self.n_values = n_values
        self.config = config if config is not None else AdaptivityConfig()
        self.boundaries: Dict[str, BoundaryPredicate] = dict(boundaries or {})

        self._nodes: Dict[int, Node] = {}
        self._next_node_id = 0
        self._registry = NodeRegistry(self.config.node_tol)
        self.arena = TreeArena(dimension)
        self.roots: List[int] = []
        self.refinement: Optional[RefinementCapability] = None

        self._dirichlet_bcs: List[DirichletBC] = []
        self._corrupt: Optional[str] = None

    @classmethod
    def from_coarse_mesh(cls, coordinates: np.ndarray, connectivity: Sequence[Sequence[int]],
                         dimension: int, nnode_1d: int = 2,
                         boundaries: Optional[Dict[str, BoundaryPredicate]] = None,
                         n_values: int = 1,
                         config: Optional[AdaptivityConfig] = None,
                         refineable: bool = True,
                         adjacency: Optional[Dict[Tuple[int, Face], FaceConnection]] = None,
                         boundary_faces=None) -> 'Mesh':
        """
        Build a mesh from a coarse (level 0) mesh.

        Parameters:
            coordinates: Node coordinates, shape (n_nodes, dimension)
            connectivity: Per element, node indices in local order
                          (first direction fastest)
            dimension: Spatial dimension (1, 2 or 3)
            nnode_1d: Nodes per element per direction
            boundaries: Boundary name -> predicate(x) used to tag nodes,
                        including nodes created by refinement
            n_values: Values per node
            config: AdaptivityConfig
            refineable: Attach the refinement capability
            adjacency, boundary_faces: Explicit root adjacency table;
                        derived from shared vertices if omitted

        Returns:
            Mesh with one root per coarse element

        Example:
            coords = np.array([[0, 0], [1, 0], [0, 1], [1, 1]], dtype=float)
            mesh = Mesh.from_coarse_mesh(coords, [[0, 1, 2, 3]], dimension=2)
        """
        coordinates = np.asarray(coordinates, dtype=np.float64)
        if coordinates.ndim != 2 or coordinates.shape[1] != dimension:
            raise ValueError(
                f"Coordinates must have shape (n_nodes, {dimension}), got {coordinates.shape}"
            )

        mesh = cls(dimension, nnode_1d, n_values=n_values, config=config,
                   boundaries=boundaries)

        node_of_index = [mesh.find_or_create_node(x) for x in coordinates]
        for conn in connectivity:
            element = LagrangeElement(mesh.kind, nnode_1d, [node_of_index[i] for i in conn])
            handle = mesh.arena.add_root(element)
            mesh._link(handle)
            mesh.roots.append(handle)

        # Coordinates that no element references are not part of the mesh
        for node in node_of_index:
            if not node.elements and node.id in mesh._nodes:
                mesh._remove_node(node)

        if refineable:
            forest = TreeForest(mesh.arena, mesh.roots, adjacency, boundary_faces)
            mesh.refinement = RefinementCapability(
                forest=forest,
                locator=NeighborLocator(forest),
                resolver=HangingNodeResolver(mesh, mesh.config.geometry_tol),
            )

        logger.debug(f"Mesh with {len(mesh.roots)} root elements and "
                     f"{mesh.n_nodes} nodes (refineable={refineable})")
        mesh.verify_linking_invariant()
        return mesh

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def nodes(self) -> Dict[int, Node]:
        """All nodes by ID."""
        return self._nodes

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def n_elements(self) -> int:
        """Number of active (leaf) elements."""
        return len(self.leaves())

    @property
    def is_refineable(self) -> bool:
        return self.refinement is not None

    @property
    def forest(self) -> TreeForest:
        return self._require_refinement().forest

    @property
    def locator(self) -> NeighborLocator:
        return self._require_refinement().locator

    @property
    def is_corrupt(self) -> bool:
        return self._corrupt is not None

    @property
    def corruption_reason(self) -> Optional[str]:
        return self._corrupt

    def mark_corrupt(self, reason: str) -> None:
        """Flag the mesh as unusable after a structural failure mid-adaptation."""
        logger.error(f"Mesh marked corrupt: {reason}")
        self._corrupt = reason

    def _require_refinement(self) -> RefinementCapability:
        if self.refinement is None:
            raise RuntimeError("Mesh was built without refinement capability")
        return self.refinement

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def find_or_create_node(self, x: Sequence[float],
                            values: Optional[np.ndarray] = None) -> Node:
        """
        Node at position x, creating it if none exists.

        Used as the node factory when elements are split. Existing nodes
        keep their values; new nodes take the given values (zeros if None)
        and are tagged with every boundary whose predicate holds at x.
        """
        x = np.asarray(x, dtype=np.float64)
        existing = self._registry.find(x)
        if existing is not None:
            return self._nodes[existing]

        if values is None:
            values = np.zeros(self.n_values)
        node = Node(id=self._next_node_id, coordinates=x.copy(),
                    values=np.array(values, dtype=np.float64))
        self._next_node_id += 1
        node.boundaries = {name for name, on in self.boundaries.items() if on(x)}

        self._nodes[node.id] = node
        self._registry.add(node.id, x)
        return node

    def _remove_node(self, node: Node) -> None:
        del self._nodes[node.id]
        self._registry.remove(node.id, node.coordinates)

    def _link(self, handle: int) -> None:
        for node in self.arena[handle].element.nodes():
            node.add_element(handle)

    def _unlink(self, handle: int, element: LagrangeElement) -> None:
        for node in element.nodes():
            node.remove_element(handle)
            if not node.elements and node.id in self._nodes:
                self._remove_node(node)

    def set_values(self, fct: Callable[..., float], value_index: int = 0) -> None:
        """Set one value at every node from a function of position."""
        for node in self._nodes.values():
            node.values[value_index] = fct(*node.coordinates)

    def hanging_nodes(self) -> List[Node]:
        return [self._nodes[i] for i in sorted(self._nodes) if self._nodes[i].is_hanging()]

    @property
    def n_hanging(self) -> int:
        return sum(1 for n in self._nodes.values() if n.is_hanging())

    # -------------------------------------------------------------------------
    # Elements and trees
    # -------------------------------------------------------------------------

    def leaves(self) -> List[int]:
        """Handles of the active elements."""
        if self.refinement is None:
            return list(self.roots)
        return self.refinement.forest.leaves()

    def get_active_elements(self) -> Iterator[LagrangeElement]:
        for h in self.leaves():
            yield self.arena[h].element

    def element(self, handle: int) -> LagrangeElement:
        return self.arena[handle].element

    def tree_node(self, handle: int) -> TreeNode:
        return self.arena[handle]

    def level(self, handle: int) -> int:
        return self.arena[handle].level

    def max_level(self) -> int:
        if self.refinement is None:
            return 0
        return self.refinement.forest.max_level()

    def min_level(self) -> int:
        if self.refinement is None:
            return 0
        return self.refinement.forest.min_level()

    def split(self, handle: int) -> bool:
        """
        Split a leaf into 2^d sons.

        Returns:
            False if the tree node was already split (no-op)
        """
        forest = self._require_refinement().forest
        children = forest.split(handle, self.find_or_create_node)
        if not children:
            return False
        for child in children:
            self._link(child)
        return True

    def merge(self, handle: int, strict: bool = False) -> bool:
        """
        Merge the sons of a tree node back into it.

        Parameters:
            handle: Tree node whose sons are removed
            strict: Raise MergeError if a son is itself split

        Returns:
            False if nothing was merged (leaf, or refined sons in
            non-strict mode)
        """
        forest = self._require_refinement().forest
        removed = forest.merge(handle, strict=strict)
        if not removed:
            return False
        for child in removed:
            self._unlink(child.handle, child.element)
        return True

    def locate_neighbor(self, handle: int, direction: Sequence[int]) -> Optional[NeighborInfo]:
        return self.locator.locate(handle, direction)

    # -------------------------------------------------------------------------
    # Boundary conditions and numbering
    # -------------------------------------------------------------------------

    def add_dirichlet_bc(self, bc: DirichletBC) -> None:
        if bc.boundary not in self.boundaries:
            raise ValueError(f"Unknown boundary: {bc.boundary}. "
                             f"Known: {sorted(self.boundaries)}")
        if not 0 <= bc.value_index < self.n_values:
            raise ValueError(f"Invalid value index: {bc.value_index}")
        self._dirichlet_bcs.append(bc)

    def apply_dirichlet_bcs(self) -> int:
        """
        Pin and set prescribed values on all boundary nodes.

        Called on every renumbering so nodes created by refinement are
        covered. Returns the number of pinned values.
        """
        n_pinned = 0
        for bc in self._dirichlet_bcs:
            for node in self._nodes.values():
                if bc.boundary in node.boundaries:
                    node.pin(bc.value_index, bc.value_at(node.coordinates))
                    n_pinned += 1
        return n_pinned

    def resolve_hanging_nodes(self):
        """Rebuild all hanging-node constraints (no-op on a fixed mesh)."""
        if self.refinement is None:
            return {}
        return self.refinement.resolver.resolve()

    def assign_equation_numbers(self) -> DofMap:
        """
        Apply pins, rebuild constraints from scratch and number unknowns.

        Returns:
            DofMap for the solver
        """
        self.apply_dirichlet_bcs()
        self.resolve_hanging_nodes()
        return assign_equation_numbers(self)

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def verify_linking_invariant(self) -> None:
        """
        Verify the bidirectional node <-> tree node linking.

        Raises StructuralError if the invariant is violated.
        """
        for tree_node in self.arena:
            for node in tree_node.element.nodes():
                if self._nodes.get(node.id) is not node:
                    raise StructuralError(
                        f"Tree node {tree_node.handle} references unknown node {node.id}"
                    )
                if tree_node.handle not in node.elements:
                    raise StructuralError(
                        f"Bidirectional linking violated: "
                        f"node {node.id} not linked back to tree node {tree_node.handle}"
                    )

        for node_id, node in self._nodes.items():
            if not node.elements:
                raise StructuralError(f"Node {node_id} is not used by any element")
            for handle in node.elements:
                if handle not in self.arena:
                    raise StructuralError(
                        f"Node {node_id} references non-existent tree node {handle}"
                    )
                if node_id not in self.arena[handle].element.node_ids:
                    raise StructuralError(
                        f"Bidirectional linking violated: "
                        f"tree node {handle} not linked back to node {node_id}"
                    )


# -----------------------------------------------------------------------------
# Structured coarse meshes
# -----------------------------------------------------------------------------

_BOUNDARY_NAMES = (("left", "right"), ("bottom", "top"), ("front", "back"))


def build_structured_mesh(n_elem: Sequence[int], lengths: Sequence[float],
                          nnode_1d: int = 2, n_values: int = 1,
                          config: Optional[AdaptivityConfig] = None,
                          origin: Optional[Sequence[float]] = None,
                          refineable: bool = True) -> Mesh:
    """
    Build a box mesh of n_elem[0] x n_elem[1] x ... root elements.

    Boundaries are named per axis: left/right (x), bottom/top (y),
    front/back (z), lower end first.

    Parameters:
        n_elem: Number of root elements per direction
        lengths: Box edge lengths
        nnode_1d: Nodes per element per direction
        n_values: Values per node
        config: AdaptivityConfig
        origin: Lower corner of the box (zeros if None)
        refineable: Attach the refinement capability

    Returns:
        Mesh
    """
    dim = len(n_elem)
    if len(lengths) != dim:
        raise ValueError("n_elem and lengths must have the same length")
    if any(n < 1 for n in n_elem):
        raise ValueError("Need at least one element per direction")
    if any(l <= 0.0 for l in lengths):
        raise ValueError("Lengths must be positive")
    origin = np.zeros(dim) if origin is None else np.asarray(origin, dtype=np.float64)

    order = nnode_1d - 1
    n_nodes_dir = [n * order + 1 for n in n_elem]
    axes = [np.linspace(origin[a], origin[a] + lengths[a], n_nodes_dir[a]) for a in range(dim)]

    # Global node index: first direction fastest
    strides = [int(np.prod(n_nodes_dir[:a])) for a in range(dim)]
    coordinates = np.array([[axes[a][idx[a]] for a in range(dim)]
                            for idx in (tuple(reversed(t)) for t in np.ndindex(*reversed(n_nodes_dir)))])

    local = [tuple(reversed(t)) for t in np.ndindex(*(nnode_1d,) * dim)]
    connectivity = []
    for e in (tuple(reversed(t)) for t in np.ndindex(*reversed(list(n_elem)))):
        conn = []
        for t in local:
            conn.append(sum((e[a] * order + t[a]) * strides[a] for a in range(dim)))
        connectivity.append(conn)

    tol = 1.0e-10 * max(lengths)
    boundaries = {}
    for a in range(dim):
        lower, upper = _BOUNDARY_NAMES[a]
        lo = origin[a]
        hi = origin[a] + lengths[a]
        boundaries[lower] = (lambda x, a=a, v=lo: abs(x[a] - v) < tol)
        boundaries[upper] = (lambda x, a=a, v=hi: abs(x[a] - v) < tol)

    return Mesh.from_coarse_mesh(coordinates, connectivity, dim, nnode_1d,
                                 boundaries=boundaries, n_values=n_values,
                                 config=config, refineable=refineable)


def build_line_mesh(n_elem: int, length: float = 1.0, nnode_1d: int = 2,
                    **kwargs) -> Mesh:
    """Line mesh of n_elem root elements on [0, length]."""
    return build_structured_mesh((n_elem,), (length,), nnode_1d, **kwargs)


def build_rectangle_mesh(nx: int, ny: int, lx: float = 1.0, ly: float = 1.0,
                         nnode_1d: int = 2, **kwargs) -> Mesh:
    """
    Rectangle mesh of nx x ny root quads on [0, lx] x [0, ly].

    Example:
        mesh = build_rectangle_mesh(2, 2)
        mesh.split(mesh.roots[0])
    """
    return build_structured_mesh((nx, ny), (lx, ly), nnode_1d, **kwargs)


def build_brick_mesh(nx: int, ny: int, nz: int, lx: float = 1.0, ly: float = 1.0,
                     lz: float = 1.0, nnode_1d: int = 2, **kwargs) -> Mesh:
    """Brick mesh of nx x ny x nz root hexes."""
    return build_structured_mesh((nx, ny, nz), (lx, ly, lz), nnode_1d, **kwargs)
