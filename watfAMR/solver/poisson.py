"""
Poisson equation solver.

Solves the scalar Poisson equation:
    -div(k grad u) = f    in Omega
                 u = g    on Gamma_D (Dirichlet boundary)

Weak form:
    integral_Omega k grad u . grad v dOmega = integral_Omega f v dOmega

Element stiffness matrix:
    K_ij = integral_e k grad psi_i . grad psi_j dOmega

Element load vector:
    f_i = integral_e f psi_i dOmega

Works in 1D, 2D and 3D; the source is called as f(x), f(x, y) or
f(x, y, z).
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from .base import Solver
from ..discretization.element import LagrangeElement
from ..discretization.mesh import Mesh
from ..quadrature.gauss import GaussQuadrature


@dataclass
class PoissonParameters:
    """
    Physical parameters of the Poisson problem.

    Attributes:
        source: Source function f(*x), zero if None
        diffusivity: Diffusion coefficient k
    """
    source: Optional[Callable[..., float]] = None
    diffusivity: float = 1.0

    def source_at(self, x: np.ndarray) -> float:
        if self.source is None:
            return 0.0
        return float(self.source(*x))


class PoissonSolver(Solver):
    """
    Solver for the Poisson equation.

    Example usage:
        mesh = build_rectangle_mesh(4, 4)
        for name in ("left", "right", "bottom", "top"):
            mesh.add_dirichlet_bc(DirichletBC.homogeneous(name))

        solver = PoissonSolver(mesh, PoissonParameters(source=lambda x, y: 1.0))
        u = solver.run()
    """

    def __init__(self, mesh: Mesh, parameters: Optional[PoissonParameters] = None):
        super().__init__(mesh)
        self.parameters = parameters if parameters is not None else PoissonParameters()

    def compute_element_matrices(self, element: LagrangeElement,
                                 quadrature: GaussQuadrature) -> Tuple[np.ndarray, np.ndarray]:
        n_local = element.n_nodes
        K_e = np.zeros((n_local, n_local))
        f_e = np.zeros(n_local)
        coords = element.nodal_coordinates()
        k = self.parameters.diffusivity

        for q in range(quadrature.n_points):
            psi, dpsidx, det_jac = element.dshape_eulerian(quadrature.points[q])
            dV = quadrature.weights[q] * abs(det_jac)
            x = psi @ coords

            K_e += k * (dpsidx @ dpsidx.T) * dV
            f_e += self.parameters.source_at(x) * psi * dV

        return K_e, f_e


def compute_l2_error(mesh: Mesh, u_exact: Callable[..., float],
                     value_index: int = 0) -> float:
    """
    L2 norm of u_h - u_exact over the active elements.

    Parameters:
        mesh: Mesh holding the discrete solution
        u_exact: Exact solution u(*x)
        value_index: Which nodal value holds u_h

    Returns:
        ||u_h - u_exact||_L2
    """
    total = 0.0
    for element in mesh.get_active_elements():
        quad = GaussQuadrature.for_element(mesh.dimension, element.nnode_1d, rule="enriched")
        u_nodes = element.nodal_values(value_index)
        coords = element.nodal_coordinates()
        for q in range(quad.n_points):
            s = quad.points[q]
            psi = element.shape_functions_at(s)
            det_jac = np.linalg.det(element.jacobian(s))
            x = psi @ coords
            diff = psi @ u_nodes - u_exact(*x)
            total += diff * diff * quad.weights[q] * abs(det_jac)
    return float(np.sqrt(total))
