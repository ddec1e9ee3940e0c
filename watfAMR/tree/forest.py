"""
Tree forest: the roots of a refineable mesh and how they touch.

Each element of the coarse (level 0) mesh is the root of one tree. The
forest records, for every root face, which root lies on the other side
and how the two roots' reference frames are related:

    adjacency[(root, (axis, side))] = FaceConnection(...)

A face is (axis, side) with side -1 (lower end of the axis) or +1 (upper
end). A FaceConnection stores where the face leads (neighbouring root and
the face of that root that is shared) plus an axis permutation and
per-axis flips that carry integer cell positions and direction vectors
from one root's frame into the other's. This lets neighbour searches run
across roots whose local axes are rotated or mirrored with respect to
each other, as happens in unstructured coarse meshes.

The table is built once from the coarse mesh (build_root_adjacency) or
supplied by a mesh generator, is checked for symmetry on construction and
never changes afterwards.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from .tree import TreeArena
from ..discretization.element import NodeFactory
from ..errors import AdjacencyError

logger = logging.getLogger(__name__)

Face = Tuple[int, int]


def all_faces(dimension: int) -> List[Face]:
    """Faces of a reference element, ordered (0,-1), (0,+1), (1,-1), ..."""
    return [(axis, side) for axis in range(dimension) for side in (-1, 1)]


@dataclass(frozen=True)
class FaceConnection:
    """
    Link from one root face to the adjacent root.

    Attributes:
        source_face: The face of the owning root this entry belongs to
        root: Handle of the root on the other side
        face: The face of that root which is shared
        axis_map: axis_map[k] is the neighbour axis corresponding to own axis k
        flips: flips[k] is True if own axis k runs backwards in the neighbour
    """
    source_face: Face
    root: int
    face: Face
    axis_map: Tuple[int, ...]
    flips: Tuple[bool, ...]

    def transform_position(self, position: Sequence[int], n_cells: int) -> Tuple[int, ...]:
        """
        Carry a cell position that has left the owning root through
        source_face into the neighbour root's frame.

        Parameters:
            position: Integer cell coordinates, possibly outside [0, n_cells)
                      along source_face's axis
            n_cells: Cells per direction at the level of the position (2**level)
        """
        normal = self.source_face[0]
        result = [0] * len(position)
        for k, value in enumerate(position):
            if k == normal:
                value = value - n_cells if value >= n_cells else value + n_cells
            if self.flips[k]:
                value = n_cells - 1 - value
            result[self.axis_map[k]] = value
        return tuple(result)

    def transform_direction(self, direction: Sequence[int]) -> Tuple[int, ...]:
        """Express a direction vector in the neighbour root's frame."""
        result = [0] * len(direction)
        for k, d in enumerate(direction):
            result[self.axis_map[k]] = -d if self.flips[k] else d
        return tuple(result)

    def inverse(self, owner: int) -> 'FaceConnection':
        """The entry the neighbour root must hold for the same face."""
        n = len(self.axis_map)
        axis_map = [0] * n
        flips = [False] * n
        for k in range(n):
            axis_map[self.axis_map[k]] = k
            flips[self.axis_map[k]] = self.flips[k]
        return FaceConnection(
            source_face=self.face,
            root=owner,
            face=self.source_face,
            axis_map=tuple(axis_map),
            flips=tuple(flips),
        )


def _vertex_bits(vertex: int, dimension: int) -> Tuple[int, ...]:
    return tuple((vertex >> a) & 1 for a in range(dimension))


def _face_vertices(face: Face, dimension: int) -> List[int]:
    axis, side = face
    bit = 1 if side > 0 else 0
    return [v for v in range(2 ** dimension) if _vertex_bits(v, dimension)[axis] == bit]


def build_root_adjacency(arena: TreeArena, roots: Sequence[int]
                         ) -> Tuple[Dict[Tuple[int, Face], FaceConnection], Set[Tuple[int, Face]]]:
    """
    Derive the root adjacency table from shared vertex nodes.

    Two root faces are connected when they have the same set of vertex
    nodes. The axis permutation and flips are read off by following the
    tangential edges of the face from its first vertex.

    Parameters:
        arena: Tree arena holding the roots
        roots: Root handles

    Returns:
        (adjacency, boundary_faces)

    Raises:
        AdjacencyError: a face is shared by more than two roots
    """
    dim = arena.dimension
    face_owners: Dict[frozenset, List[Tuple[int, Face]]] = {}
    vertex_ids: Dict[int, List[int]] = {}

    for r in roots:
        vertices = arena[r].element.vertex_nodes()
        vertex_ids[r] = [n.id for n in vertices]
        for face in all_faces(dim):
            key = frozenset(vertex_ids[r][v] for v in _face_vertices(face, dim))
            face_owners.setdefault(key, []).append((r, face))

    adjacency: Dict[Tuple[int, Face], FaceConnection] = {}
    boundary: Set[Tuple[int, Face]] = set()

    for key, owners in face_owners.items():
        if len(owners) == 1:
            boundary.add(owners[0])
            continue
        if len(owners) > 2:
            raise AdjacencyError(f"Face with vertices {sorted(key)} is shared by {len(owners)} roots")

        (r, face), (rn, face_n) = owners
        conn = _connection_from_vertices(r, face, rn, face_n, vertex_ids, dim)
        adjacency[(r, face)] = conn
        adjacency[(rn, face_n)] = conn.inverse(r)

    return adjacency, boundary


def _connection_from_vertices(r: int, face: Face, rn: int, face_n: Face,
                              vertex_ids: Dict[int, List[int]], dim: int) -> FaceConnection:
    axis, side = face
    axis_n, side_n = face_n

    # Vertex id -> bits in the neighbour frame
    bits_n = {vid: _vertex_bits(v, dim) for v, vid in enumerate(vertex_ids[rn])}

    axis_map = [0] * dim
    flips = [False] * dim

    # Normal direction: leaving through side s and entering through side s_n
    # keeps the orientation only if the sides are opposite
    axis_map[axis] = axis_n
    flips[axis] = (side == side_n)

    base = _face_vertices(face, dim)[0]
    base_bits_n = bits_n[vertex_ids[r][base]]
    for k in range(dim):
        if k == axis:
            continue
        other = base | (1 << k)
        other_bits_n = bits_n[vertex_ids[r][other]]
        changed = [a for a in range(dim) if other_bits_n[a] != base_bits_n[a]]
        if len(changed) != 1 or changed[0] == axis_n:
            raise AdjacencyError(f"Inconsistent vertex ordering between roots {r} and {rn}")
        axis_map[k] = changed[0]
        flips[k] = base_bits_n[changed[0]] == 1

    return FaceConnection(source_face=face, root=rn, face=face_n,
                          axis_map=tuple(axis_map), flips=tuple(flips))


class TreeForest:
    """
    The roots of a refineable mesh plus their adjacency table.

    Attributes:
        arena: TreeArena holding every tree node
        roots: Root handles in coarse-mesh order
    """

    def __init__(self, arena: TreeArena, roots: Sequence[int],
                 adjacency: Optional[Dict[Tuple[int, Face], FaceConnection]] = None,
                 boundary_faces: Optional[Set[Tuple[int, Face]]] = None):
        """
        Parameters:
            arena: Arena containing the roots
            roots: Root handles
            adjacency: Root adjacency table (derived from shared vertices if None)
            boundary_faces: Root faces on the domain boundary. If given, every
                            root face must be either connected or a boundary
                            face. If None, every unconnected face is boundary.
        """
        self.arena = arena
        self.roots = list(roots)

        if adjacency is None:
            adjacency, derived_boundary = build_root_adjacency(arena, self.roots)
            if boundary_faces is None:
                boundary_faces = derived_boundary

        self._adjacency = dict(adjacency)
        if boundary_faces is None:
            boundary_faces = {(r, f) for r in self.roots for f in all_faces(arena.dimension)
                              if (r, f) not in self._adjacency}
        self._boundary_faces = set(boundary_faces)

        self._check_adjacency()
        logger.debug(f"Forest with {len(self.roots)} roots, "
                     f"{len(self._adjacency) // 2} connected root faces")

    @property
    def dimension(self) -> int:
        return self.arena.dimension

    @property
    def adjacency(self) -> Dict[Tuple[int, Face], FaceConnection]:
        return dict(self._adjacency)

    @property
    def boundary_faces(self) -> Set[Tuple[int, Face]]:
        return set(self._boundary_faces)

    def _check_adjacency(self) -> None:
        """
        Verify the table is symmetric and covers every root face.

        Raises AdjacencyError on violation.
        """
        root_set = set(self.roots)
        for (r, face), conn in self._adjacency.items():
            if r not in root_set or conn.root not in root_set:
                raise AdjacencyError(f"Adjacency entry {(r, face)} refers to a non-root")
            if conn.source_face != face:
                raise AdjacencyError(f"Adjacency entry {(r, face)} has source face {conn.source_face}")
            reverse = self._adjacency.get((conn.root, conn.face))
            if reverse is None:
                raise AdjacencyError(
                    f"Adjacency not symmetric: {(r, face)} -> {(conn.root, conn.face)} "
                    f"has no reverse entry"
                )
            if reverse != conn.inverse(r):
                raise AdjacencyError(
                    f"Adjacency not symmetric: orientation of {(r, face)} and "
                    f"{(conn.root, conn.face)} do not match"
                )
            if (r, face) in self._boundary_faces:
                raise AdjacencyError(f"Root face {(r, face)} is both connected and on the boundary")

        for r in self.roots:
            for face in all_faces(self.dimension):
                if (r, face) not in self._adjacency and (r, face) not in self._boundary_faces:
                    raise AdjacencyError(f"Root face {(r, face)} is neither connected nor on the boundary")

    def connection(self, root: int, face: Face) -> Optional[FaceConnection]:
        """
        Look up the root across a root face.

        Returns:
            FaceConnection, or None for a domain-boundary face

        Raises:
            AdjacencyError: the face is unknown to the table
        """
        conn = self._adjacency.get((root, face))
        if conn is not None:
            return conn
        if (root, face) in self._boundary_faces:
            return None
        raise AdjacencyError(f"No adjacency information for root {root}, face {face}")

    # -------------------------------------------------------------------------
    # Tree mutation
    # -------------------------------------------------------------------------

    def split(self, handle: int, node_factory: NodeFactory) -> List[int]:
        return self.arena.split(handle, node_factory)

    def merge(self, handle: int, strict: bool = False):
        return self.arena.merge(handle, strict=strict)

    def leaves(self) -> List[int]:
        result = []
        for r in self.roots:
            result.extend(self.arena.leaves(r))
        return result

    def max_level(self) -> int:
        return max((self.arena[h].level for h in self.leaves()), default=0)

    def min_level(self) -> int:
        return min((self.arena[h].level for h in self.leaves()), default=0)
