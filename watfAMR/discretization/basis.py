"""
Lagrange shape functions on the reference element [0,1]^d.

Elements are tensor products of 1D Lagrange polynomials through
nnode_1d equally spaced points (nnode_1d = 2: bilinear/trilinear,
nnode_1d = 3: biquadratic/triquadratic).

Local node numbering runs the first direction fastest:

    local index = i_0 + nnode_1d * i_1 + nnode_1d**2 * i_2

so in 2D with nnode_1d = 2 the nodes are (0,0), (1,0), (0,1), (1,1).

The same ordering is used for quadrature points and for son types of the
refinement tree, which keeps every tensor loop in the package consistent.
"""

import numpy as np
from typing import Tuple, Sequence
from functools import lru_cache


def lagrange_basis_1d(n_nodes: int, s: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate 1D Lagrange basis and first derivative at s.

    Parameters:
        n_nodes: Number of equally spaced nodes on [0, 1] (>= 2)
        s: Local coordinate

    Returns:
        (psi, dpsi) arrays of shape (n_nodes,)
    """
    nodes = local_nodes_1d(n_nodes)
    psi = np.ones(n_nodes)
    dpsi = np.zeros(n_nodes)

    for i in range(n_nodes):
        for j in range(n_nodes):
            if j == i:
                continue
            psi[i] *= (s - nodes[j]) / (nodes[i] - nodes[j])

        # Product rule over the factors
        for k in range(n_nodes):
            if k == i:
                continue
            term = 1.0 / (nodes[i] - nodes[k])
            for j in range(n_nodes):
                if j == i or j == k:
                    continue
                term *= (s - nodes[j]) / (nodes[i] - nodes[j])
            dpsi[i] += term

    return psi, dpsi


@lru_cache(maxsize=8)
def local_nodes_1d(n_nodes: int) -> np.ndarray:
    """Equally spaced 1D node positions on [0, 1]."""
    if n_nodes < 2:
        raise ValueError("Need at least 2 nodes per direction")
    return np.linspace(0.0, 1.0, n_nodes)


class LagrangeBasis:
    """
    Tensor-product Lagrange basis on [0,1]^d.

    Attributes:
        n_dim: Number of reference directions
        nnode_1d: Nodes per direction
    """

    def __init__(self, n_dim: int, nnode_1d: int):
        if not 1 <= n_dim <= 3:
            raise ValueError(f"Unsupported dimension: {n_dim}")
        if nnode_1d < 2:
            raise ValueError("Need at least 2 nodes per direction")
        self.n_dim = n_dim
        self.nnode_1d = nnode_1d

    @property
    def n_basis(self) -> int:
        """Total number of tensor-product basis functions."""
        return self.nnode_1d ** self.n_dim

    @property
    def order(self) -> int:
        """Polynomial order per direction."""
        return self.nnode_1d - 1

    def tensor_index(self, local: int) -> Tuple[int, ...]:
        """Split a local node number into per-direction indices."""
        idx = []
        for _ in range(self.n_dim):
            idx.append(local % self.nnode_1d)
            local //= self.nnode_1d
        return tuple(idx)

    def local_index(self, tensor: Sequence[int]) -> int:
        """Inverse of tensor_index."""
        local = 0
        for d in range(self.n_dim - 1, -1, -1):
            local = local * self.nnode_1d + tensor[d]
        return local

    def local_node_coordinates(self) -> np.ndarray:
        """
        Reference coordinates of all local nodes.

        Returns:
            Array of shape (n_basis, n_dim)
        """
        nodes = local_nodes_1d(self.nnode_1d)
        return np.array([[nodes[i] for i in self.tensor_index(j)]
                         for j in range(self.n_basis)])

    def eval(self, s: Sequence[float]) -> np.ndarray:
        """
        Evaluate all basis functions at a point.

        Parameters:
            s: Local coordinates in [0,1]^d

        Returns:
            Array of shape (n_basis,)
        """
        psi_1d = [lagrange_basis_1d(self.nnode_1d, s[d])[0]
                  for d in range(self.n_dim)]

        result = psi_1d[-1]
        for d in range(self.n_dim - 2, -1, -1):
            result = np.outer(result, psi_1d[d]).flatten()

        return result

    def eval_ders(self, s: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate basis functions and their local derivatives.

        Parameters:
            s: Local coordinates in [0,1]^d

        Returns:
            (psi, dpsids) with shapes (n_basis,) and (n_basis, n_dim)
        """
        ders_1d = [lagrange_basis_1d(self.nnode_1d, s[d])
                   for d in range(self.n_dim)]

        psi = ders_1d[-1][0]
        for d in range(self.n_dim - 2, -1, -1):
            psi = np.outer(psi, ders_1d[d][0]).flatten()

        dpsids = np.zeros((self.n_basis, self.n_dim))
        for deriv_dir in range(self.n_dim):
            dpsi = None
            for d in range(self.n_dim - 1, -1, -1):
                factor = ders_1d[d][1] if d == deriv_dir else ders_1d[d][0]
                dpsi = factor if dpsi is None else np.outer(dpsi, factor).flatten()
            dpsids[:, deriv_dir] = dpsi

        return psi, dpsids
