"""
Element abstraction for refineable Lagrange finite elements.

One generic element class covers lines, quadrilaterals and hexahedra;
the kind is an enum tag rather than a subclass, so callers never need to
downcast. Each element:
- Maps the reference element [0,1]^d isoparametrically onto physical space
- References its nodes (shared, owned by the mesh)
- Evaluates shape functions and their derivatives
- Locates global points in its local coordinates
- Splits itself into 2^d children covering the dyadic sub-boxes

Son types: bit a of the son type is the position of the child along
reference axis a (0 = lower half, 1 = upper half). For a quad:

    2 | 3
    --+--
    0 | 1
"""

from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .basis import LagrangeBasis
from .node import Node
from ..quadrature.gauss import GaussQuadrature
from ..errors import GeometryError, NumericalError


class ElementKind(Enum):
    """Element shape, tagged by parametric dimension."""
    LINE = 1
    QUAD = 2
    HEX = 3

    @classmethod
    def for_dimension(cls, n_dim: int) -> 'ElementKind':
        for kind in cls:
            if kind.value == n_dim:
                return kind
        raise ValueError(f"Unsupported dimension: {n_dim}")

    @property
    def n_dim(self) -> int:
        return self.value

    @property
    def n_sons(self) -> int:
        return 2 ** self.value


# Signature of the callback used when splitting: (position, values) -> Node
NodeFactory = Callable[[np.ndarray, np.ndarray], Node]


class LagrangeElement:
    """
    Tensor-product Lagrange element.

    Attributes:
        kind: ElementKind
        nnode_1d: Nodes per direction
        basis: LagrangeBasis on [0,1]^d
    """

    MAX_NEWTON_ITER = 20
    NEWTON_TOL = 1.0e-13

    def __init__(self, kind: ElementKind, nnode_1d: int, nodes: List[Node]):
        self.kind = kind
        self.nnode_1d = nnode_1d
        self.basis = LagrangeBasis(kind.n_dim, nnode_1d)
        if len(nodes) != self.basis.n_basis:
            raise ValueError(
                f"{kind.name} element with nnode_1d={nnode_1d} needs "
                f"{self.basis.n_basis} nodes, got {len(nodes)}"
            )
        self._nodes = list(nodes)

    def __repr__(self) -> str:
        return (f"LagrangeElement({self.kind.name}, nnode_1d={self.nnode_1d}, "
                f"nodes={self.node_ids})")

    # -------------------------------------------------------------------------
    # Contract used by the refinement tree
    # -------------------------------------------------------------------------

    def dimension(self) -> int:
        return self.kind.n_dim

    def nodes(self) -> List[Node]:
        """Nodes in local order."""
        return list(self._nodes)

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def node_ids(self) -> List[int]:
        return [n.id for n in self._nodes]

    def node(self, local: int) -> Node:
        return self._nodes[local]

    def shape_functions_at(self, s: Sequence[float]) -> np.ndarray:
        """Shape function values at local coordinates s."""
        psi = self.basis.eval(s)
        if not np.all(np.isfinite(psi)):
            raise NumericalError(f"Non-finite shape functions at s={tuple(s)}")
        return psi

    def local_coordinates_of(self, x: Sequence[float],
                             tol: float = 1.0e-8) -> np.ndarray:
        """
        Find local coordinates of a global point.

        Newton iteration on the isoparametric map (exact after one step for
        affine elements).

        Parameters:
            x: Global point
            tol: Permitted excursion outside [0,1]^d

        Returns:
            Local coordinates, clipped to [0,1]^d

        Raises:
            GeometryError: point outside the element beyond tol, or Newton
                           did not converge
        """
        x = np.asarray(x, dtype=np.float64)
        s = np.full(self.dimension(), 0.5)

        converged = False
        for _ in range(self.MAX_NEWTON_ITER):
            residual = x - self.interpolated_x(s)
            jac = self.jacobian(s)
            try:
                ds = np.linalg.solve(jac, residual)
            except np.linalg.LinAlgError as exc:
                raise GeometryError(f"Singular element map in {self!r}") from exc
            s = s + ds
            if np.max(np.abs(ds)) < self.NEWTON_TOL:
                converged = True
                break

        if not converged or not np.all(np.isfinite(s)):
            raise GeometryError(f"Could not locate point {x} in {self!r}")

        if np.any(s < -tol) or np.any(s > 1.0 + tol):
            raise GeometryError(
                f"Point {x} lies outside {self!r} (local coordinates {s})"
            )

        return np.clip(s, 0.0, 1.0)

    def split_into_children(self, node_factory: NodeFactory) -> List['LagrangeElement']:
        """
        Build the 2^d son elements.

        Son nodes sit at the dyadic positions inside this element. The
        factory returns an existing node when one is already at that
        position (shared with this element or a refined neighbour) and a
        new node otherwise; new nodes receive values interpolated from
        this element.

        Parameters:
            node_factory: Callable (x, values) -> Node

        Returns:
            Children ordered by son type
        """
        local_nodes = self.basis.local_node_coordinates()
        children = []

        for son_type in range(self.kind.n_sons):
            lower, _ = self.son_bounds(son_type)
            son_nodes = []
            for t in local_nodes:
                s = lower + 0.5 * t
                son_nodes.append(node_factory(self.interpolated_x(s),
                                              self.interpolated_values(s)))
            children.append(LagrangeElement(self.kind, self.nnode_1d, son_nodes))

        return children

    def son_bounds(self, son_type: int) -> Tuple[np.ndarray, np.ndarray]:
        """Local bounds (lower, upper) of a son within this element."""
        bits = np.array([(son_type >> a) & 1 for a in range(self.dimension())],
                        dtype=np.float64)
        lower = 0.5 * bits
        return lower, lower + 0.5

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    def nodal_coordinates(self) -> np.ndarray:
        """Node coordinates, shape (n_nodes, n_dim)."""
        return np.array([n.coordinates for n in self._nodes])

    def interpolated_x(self, s: Sequence[float]) -> np.ndarray:
        return self.basis.eval(s) @ self.nodal_coordinates()

    def jacobian(self, s: Sequence[float]) -> np.ndarray:
        """Jacobian J[i, j] = dx_i / ds_j."""
        _, dpsids = self.basis.eval_ders(s)
        return self.nodal_coordinates().T @ dpsids

    def dshape_eulerian(self, s: Sequence[float]) -> Tuple[np.ndarray, np.ndarray, float]:
        """
        Shape functions and their global derivatives.

        Returns:
            (psi, dpsidx, det_jac) with dpsidx of shape (n_nodes, n_dim)
        """
        psi, dpsids = self.basis.eval_ders(s)
        jac = self.nodal_coordinates().T @ dpsids
        det_jac = np.linalg.det(jac)
        if not np.isfinite(det_jac) or abs(det_jac) < 1.0e-300:
            raise NumericalError(f"Degenerate Jacobian in {self!r}")
        dpsidx = dpsids @ np.linalg.inv(jac)
        return psi, dpsidx, det_jac

    def vertex_nodes(self) -> List[Node]:
        """Corner nodes, ordered by vertex number (bit a = upper end of axis a)."""
        n = self.nnode_1d - 1
        result = []
        for v in range(self.kind.n_sons):
            tensor = [n * ((v >> a) & 1) for a in range(self.dimension())]
            result.append(self._nodes[self.basis.local_index(tensor)])
        return result

    def local_nodes_on(self, direction: Sequence[int]) -> List[int]:
        """
        Local node numbers on the boundary entity in a given direction.

        direction has entries in {-1, 0, +1}; one non-zero entry selects a
        face, two an edge, three a vertex.
        """
        n = self.nnode_1d - 1
        selected = []
        for local in range(self.n_nodes):
            tensor = self.basis.tensor_index(local)
            on = True
            for a, d in enumerate(direction):
                if d < 0 and tensor[a] != 0:
                    on = False
                elif d > 0 and tensor[a] != n:
                    on = False
            if on:
                selected.append(local)
        return selected

    def centroid(self) -> np.ndarray:
        return self.interpolated_x(np.full(self.dimension(), 0.5))

    def size(self) -> float:
        """Length, area or volume of the element."""
        quad = GaussQuadrature.for_element(self.dimension(), self.nnode_1d)
        total = 0.0
        for q in range(quad.n_points):
            total += quad.weights[q] * abs(np.linalg.det(self.jacobian(quad.points[q])))
        return total

    # -------------------------------------------------------------------------
    # Field interpolation
    # -------------------------------------------------------------------------

    def nodal_values(self, value_index: Optional[int] = None) -> np.ndarray:
        """
        Nodal values in local order.

        Returns shape (n_nodes, n_values), or (n_nodes,) for one value index.
        """
        vals = np.array([n.values for n in self._nodes])
        if value_index is None:
            return vals
        return vals[:, value_index]

    def interpolated_values(self, s: Sequence[float]) -> np.ndarray:
        """All interpolated values at s, shape (n_values,)."""
        return self.basis.eval(s) @ self.nodal_values()

    def interpolated_value(self, s: Sequence[float], value_index: int = 0) -> float:
        return float(self.basis.eval(s) @ self.nodal_values(value_index))

    def interpolated_gradient(self, s: Sequence[float], value_index: int = 0) -> np.ndarray:
        """Global gradient of one interpolated value at s."""
        _, dpsidx, _ = self.dshape_eulerian(s)
        return self.nodal_values(value_index) @ dpsidx
