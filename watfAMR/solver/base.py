"""
Base solver class for refineable Lagrange meshes.

This module defines the abstract interface for solvers and the common
element-by-element assembly with hanging-node constraints.

Design principles:
1. Solver operates element-by-element over the active (leaf) elements
2. Subclasses only compute element matrices in the local node basis
3. The DofMap decides where each local row/column goes: a free value to
   its equation, a pinned value to the right-hand side, a hanging value
   to its masters scaled by the constraint weights
4. Solver knows NOTHING about trees or neighbours

The assembly loop is:
    for element in leaves:
        K_e, f_e = compute_element_matrices(element, quadrature)
        for local node a, for (master, w_a) in dof_map.expand(node_a):
            f[eq(master)] += w_a f_e[a]
            for local node b, for (master_b, w_b) in dof_map.expand(node_b):
                free:   K[eq(master), eq(master_b)] += w_a w_b K_e[a, b]
                pinned: f[eq(master)] -= w_a w_b K_e[a, b] u(master_b)

Scalar problems only: value index 0 of every node is the unknown.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve

from ..constraints.hanging import update_hanging_values
from ..constraints.numbering import DofMap, PINNED
from ..discretization.element import LagrangeElement
from ..discretization.mesh import Mesh
from ..errors import NumericalError
from ..quadrature.gauss import GaussQuadrature

logger = logging.getLogger(__name__)


class Solver(ABC):
    """
    Abstract base class for solvers.

    Subclasses implement specific PDEs by overriding:
    - compute_element_matrices: Builds element stiffness and load
    """

    value_index = 0

    def __init__(self, mesh: Mesh):
        """
        Initialize solver with mesh.

        Parameters:
            mesh: Mesh (boundary conditions are registered on the mesh)
        """
        self.mesh = mesh
        self.dof_map: Optional[DofMap] = None

        # Storage for assembled system
        self.K = None  # Global stiffness matrix
        self.f = None  # Global load vector
        self.u = None  # Solution vector

    @property
    def n_dof(self) -> int:
        return 0 if self.dof_map is None else self.dof_map.n_dof

    @abstractmethod
    def compute_element_matrices(self, element: LagrangeElement,
                                 quadrature: GaussQuadrature) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute element stiffness matrix and load vector.

        Parameters:
            element: Active element
            quadrature: Quadrature rule for integration

        Returns:
            (K_e, f_e) with shapes (n_nodes, n_nodes) and (n_nodes,)
        """
        pass

    def assemble(self, n_gauss_per_dir: Optional[Tuple[int, ...]] = None):
        """
        Number the unknowns and assemble the global system.

        Parameters:
            n_gauss_per_dir: Number of Gauss points per direction.
                             Defaults to nnode_1d in each direction.
        """
        mesh = self.mesh
        self.dof_map = mesh.assign_equation_numbers()
        dof_map = self.dof_map
        n_dof = dof_map.n_dof
        nodes = mesh.nodes
        i_val = self.value_index

        if n_gauss_per_dir is None:
            quadrature = GaussQuadrature.for_element(mesh.dimension, mesh.nnode_1d)
        else:
            quadrature = GaussQuadrature(n_gauss_per_dir)

        row_indices = []
        col_indices = []
        values = []
        self.f = np.zeros(n_dof)

        for element in mesh.get_active_elements():
            K_e, f_e = self.compute_element_matrices(element, quadrature)

            targets = [dof_map.expand(nid, i_val) for nid in element.node_ids]

            for a, targets_a in enumerate(targets):
                for master_a, w_a in targets_a:
                    i_global = dof_map.equation(master_a, i_val)
                    if i_global == PINNED:
                        continue
                    self.f[i_global] += w_a * f_e[a]

                    for b, targets_b in enumerate(targets):
                        for master_b, w_b in targets_b:
                            j_global = dof_map.equation(master_b, i_val)
                            contribution = w_a * w_b * K_e[a, b]
                            if j_global == PINNED:
                                self.f[i_global] -= contribution * nodes[master_b].values[i_val]
                            else:
                                row_indices.append(i_global)
                                col_indices.append(j_global)
                                values.append(contribution)

        self.K = sparse.csr_matrix(
            (values, (row_indices, col_indices)),
            shape=(n_dof, n_dof)
        )
        logger.debug(f"Assembled {n_dof} equations from {mesh.n_elements} elements")

    def solve(self) -> np.ndarray:
        """
        Solve the linear system and write the solution into the nodes.

        Hanging values are updated from their masters afterwards.

        Returns:
            Solution vector u (free values only)
        """
        if self.K is None or self.f is None:
            raise RuntimeError("System not assembled. Call assemble() first.")

        if self.dof_map.n_dof == 0:
            self.u = np.zeros(0)
        else:
            self.u = np.atleast_1d(spsolve(self.K, self.f))
        if not np.all(np.isfinite(self.u)):
            raise NumericalError("Linear solve produced non-finite values")

        self.dof_map.scatter(self.u, self.mesh.nodes)
        update_hanging_values(self.mesh)
        return self.u

    def run(self, n_gauss_per_dir: Optional[Tuple[int, ...]] = None) -> np.ndarray:
        """
        Convenience method to assemble and solve.

        Parameters:
            n_gauss_per_dir: Quadrature points per direction

        Returns:
            Solution vector
        """
        self.assemble(n_gauss_per_dir)
        return self.solve()
