"""
Hanging-node detection and constraint construction.

Where a leaf meets a coarser leaf, the nodes of the fine leaf on the
shared face (edge, vertex) that are not nodes of the coarse element
cannot carry independent values without breaking continuity. Each such
node is constrained to the coarse element's interpolant:

    u(hanging) = sum_j psi_j(s) u(coarse node j)

where s are the local coordinates of the hanging node in the coarse
element. Example: bilinear quads, the edge midpoint on the coarse side
gets two masters of weight 1/2; biquadratic quads, the quarter point
gets three masters with weights 3/8, 3/4 and -1/8.

If a master is itself hanging (possible where refinement levels differ
by more than one, or along edges in 3D), its constraint is substituted
until only non-hanging masters remain.

Constraints are rebuilt from scratch every time; nothing is updated
incrementally.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

import numpy as np

from ..discretization.element import LagrangeElement
from ..discretization.node import HangInfo, Node
from ..errors import GeometryError, StructuralError
from ..tree.neighbors import all_directions

if TYPE_CHECKING:
    from ..discretization.mesh import Mesh

logger = logging.getLogger(__name__)

# Shape function values below this are not masters
WEIGHT_TOL = 1.0e-12


class HangingNodeResolver:
    """
    Rebuilds hanging-node constraints of a refineable mesh.

    Attributes:
        mesh: Mesh with refinement capability
        tol: Permitted excursion of a located node outside the coarse
             element (local coordinates)
    """

    def __init__(self, mesh: 'Mesh', tol: float = 1.0e-8):
        self.mesh = mesh
        self.tol = tol

    def resolve(self) -> Dict[int, HangInfo]:
        """
        Detect all hanging nodes and store their constraints on the nodes.

        Returns:
            Node ID -> HangInfo (masters never hanging, weights sum to 1)

        Raises:
            GeometryError: a node could not be located in its coarse
                           neighbour, or two distinct nodes coincide
            StructuralError: cyclic constraint chain
        """
        mesh = self.mesh
        nodes = mesh.nodes
        for node in nodes.values():
            node.hanging = None

        direct: Dict[int, List[Tuple[int, float]]] = {}
        directions = all_directions(mesh.dimension)

        for handle in mesh.leaves():
            fine = mesh.element(handle)
            for direction in directions:
                info = mesh.locate_neighbor(handle, direction)
                if info is None or info.level_difference <= 0:
                    continue

                coarse = mesh.element(info.handle)
                coarse_ids = set(coarse.node_ids)
                for local in fine.local_nodes_on(direction):
                    node = fine.node(local)
                    if node.id in direct or node.id in coarse_ids:
                        continue
                    direct[node.id] = self._masters_in(coarse, node)

        expanded: Dict[int, List[Tuple[int, float]]] = {}
        for node_id in sorted(direct):
            self._expand(node_id, direct, expanded, set())

        result = {}
        for node_id in sorted(expanded):
            info = HangInfo(masters=expanded[node_id])
            nodes[node_id].hanging = info
            result[node_id] = info

        logger.debug(f"Resolved {len(result)} hanging nodes on {len(mesh.leaves())} leaves")
        return result

    def _masters_in(self, coarse: LagrangeElement, node: Node) -> List[Tuple[int, float]]:
        """Coarse-element interpolation weights at the node position."""
        tol = self.mesh.config.node_tol
        for other in coarse.nodes():
            if np.max(np.abs(other.coordinates - node.coordinates)) <= tol:
                raise GeometryError(
                    f"Nodes {node.id} and {other.id} coincide at {node.coordinates}"
                )

        s = coarse.local_coordinates_of(node.coordinates, tol=self.tol)
        psi = coarse.shape_functions_at(s)
        return [(coarse.node(j).id, float(psi[j]))
                for j in range(coarse.n_nodes) if abs(psi[j]) > WEIGHT_TOL]

    def _expand(self, node_id: int,
                direct: Dict[int, List[Tuple[int, float]]],
                expanded: Dict[int, List[Tuple[int, float]]],
                visiting: Set[int]) -> List[Tuple[int, float]]:
        """Substitute hanging masters recursively, merging duplicates."""
        if node_id in expanded:
            return expanded[node_id]
        if node_id in visiting:
            raise StructuralError(f"Cyclic hanging-node constraint through node {node_id}")
        visiting.add(node_id)

        weights: Dict[int, float] = {}
        order: List[int] = []
        for master, w in direct[node_id]:
            if master in direct:
                chain = self._expand(master, direct, expanded, visiting)
            else:
                chain = [(master, 1.0)]
            for m, wm in chain:
                if m not in weights:
                    weights[m] = 0.0
                    order.append(m)
                weights[m] += w * wm

        visiting.discard(node_id)
        expanded[node_id] = [(m, weights[m]) for m in order if abs(weights[m]) > WEIGHT_TOL]
        return expanded[node_id]


def update_hanging_values(mesh: 'Mesh') -> int:
    """
    Overwrite the values of hanging nodes with their constrained values.

    Returns:
        Number of nodes updated
    """
    nodes = mesh.nodes
    count = 0
    for node in nodes.values():
        if node.hanging is None:
            continue
        values = np.zeros(node.n_values)
        for master, w in node.hanging.masters:
            values += w * nodes[master].values
        node.values[:] = values
        count += 1
    return count


def check_partition_of_unity(constraints: Dict[int, HangInfo],
                             tol: float = 1.0e-10) -> Optional[int]:
    """ID of the first constraint whose weights do not sum to 1, else None."""
    for node_id, info in constraints.items():
        if abs(info.weight_sum() - 1.0) > tol:
            return node_id
    return None
