"""
watfAMR - Adaptive Mesh Refinement with hanging-node constraints

A research-grade kernel for hierarchical h-refinement of tensor-product
Lagrange finite element meshes (binary trees in 1D, quadtrees in 2D,
octrees in 3D), with neighbour finding across refinement levels and
root elements, hanging-node constraints and error-driven adaptation.

Key modules:
- tree: Refinement trees, forest of roots, neighbour locator
- discretization: Lagrange basis, nodes, elements, refineable mesh
- constraints: Hanging-node resolution and equation numbering
- adaptivity: Z2 error estimator and adaptation driver
- solver: Constraint-aware assembly, Poisson model problem
- quadrature: Gauss-Legendre integration

Quick start:
    from watfAMR.discretization.mesh import build_rectangle_mesh, DirichletBC
    from watfAMR.solver.poisson import PoissonSolver, PoissonParameters
    from watfAMR.adaptivity import AdaptationDriver, Z2ErrorEstimator

    # Create mesh and boundary conditions
    mesh = build_rectangle_mesh(4, 4)
    for name in ("left", "right", "bottom", "top"):
        mesh.add_dirichlet_bc(DirichletBC.homogeneous(name))

    # Solve, estimate, adapt, solve again
    solver = PoissonSolver(mesh, PoissonParameters(source=lambda x, y: 1.0))
    driver = AdaptationDriver(mesh, Z2ErrorEstimator())
    for cycle in range(3):
        solver.run()
        report = driver.adapt()

Manual refinement:
    mesh = build_rectangle_mesh(2, 2)
    mesh.split(mesh.roots[0])
    mesh.assign_equation_numbers()
    for node in mesh.hanging_nodes():
        print(node.coordinates, node.hanging.masters)
"""

__version__ = "0.1.0"
__author__ = "Wataru Fukuda"

# Core imports for convenience
from .config import AdaptivityConfig, load_config, save_config
from .errors import (StructuralError, AdjacencyError, BalanceError, MergeError,
                     GeometryError, NumericalError)
from .discretization.mesh import (Mesh, DirichletBC, build_line_mesh,
                                  build_rectangle_mesh, build_brick_mesh)
from .adaptivity import AdaptationDriver, AdaptationReport, Z2ErrorEstimator, DummyErrorEstimator
from .solver.poisson import PoissonSolver, PoissonParameters, compute_l2_error
from .logging_config import setup_logging
