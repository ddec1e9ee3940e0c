"""
Integration tests for the Poisson solver on refined meshes.
"""

import pytest
import numpy as np
from numpy.testing import assert_almost_equal, assert_array_almost_equal

from watfAMR.adaptivity import AdaptationDriver, DummyErrorEstimator, Z2ErrorEstimator
from watfAMR.discretization.mesh import DirichletBC, build_rectangle_mesh, build_brick_mesh
from watfAMR.solver.poisson import PoissonSolver, PoissonParameters, compute_l2_error

SIDES_2D = ("left", "right", "bottom", "top")


def fix_all_sides(mesh, value=0.0, sides=SIDES_2D):
    for name in sides:
        mesh.add_dirichlet_bc(DirichletBC(name, value))


class TestPoissonSolverBasic:
    """Basic tests for Poisson solver."""

    def test_solver_creates(self, square_mesh):
        """Test that solver can be created."""
        solver = PoissonSolver(square_mesh)
        assert solver.n_dof == 0
        assert solver.mesh is square_mesh
        assert solver.parameters.diffusivity == 1.0

    def test_solve_before_assemble(self, square_mesh):
        """Test solve before assembly raises."""
        with pytest.raises(RuntimeError):
            PoissonSolver(square_mesh).solve()

    def test_assembly(self, refined_square_mesh):
        """Test system assembly."""
        solver = PoissonSolver(refined_square_mesh, PoissonParameters(source=lambda x, y: 1.0))
        solver.assemble()
        assert solver.K.shape == (solver.n_dof, solver.n_dof)
        assert solver.f.shape == (solver.n_dof,)
        # Load integrates to the area when nothing is pinned
        assert_almost_equal(solver.f.sum(), 1.0)

    def test_stiffness_symmetric(self, refined_square_mesh):
        """Test that stiffness matrix is symmetric."""
        solver = PoissonSolver(refined_square_mesh)
        solver.assemble()
        K = solver.K.toarray()
        assert_array_almost_equal(K, K.T, decimal=12)

    def test_stiffness_positive_definite_with_bcs(self, refined_square_mesh):
        """Test stiffness is positive definite with Dirichlet conditions."""
        fix_all_sides(refined_square_mesh)
        solver = PoissonSolver(refined_square_mesh)
        solver.assemble()
        assert np.all(np.linalg.eigvalsh(solver.K.toarray()) > 0.0)

    def test_constant_in_null_space(self, refined_square_mesh):
        """Test constants are in the null space without conditions."""
        # Constraints preserve constants, so the unconstrained operator
        # annihilates them
        solver = PoissonSolver(refined_square_mesh)
        solver.assemble()
        assert_array_almost_equal(solver.K @ np.ones(solver.n_dof), 0.0)


class TestExactSolutions:
    """Solutions contained in the discrete space are reproduced."""

    def test_linear_with_hanging_nodes(self, refined_square_mesh):
        """Test a linear field is reproduced with hanging nodes."""
        mesh = refined_square_mesh
        fix_all_sides(mesh, lambda x, y: 1.0 + 2.0 * x + 3.0 * y)
        PoissonSolver(mesh).run()
        assert mesh.n_hanging == 2
        for node in mesh.nodes.values():
            assert_almost_equal(node.values[0], 1.0 + 2.0 * node.x + 3.0 * node.y)

    def test_biquadratic_with_hanging_nodes(self, quadratic_square_mesh):
        """Test with u = x(1-x)y(1-y) on biquadratic elements."""
        def u_exact(x, y):
            return x * (1 - x) * y * (1 - y)

        def source(x, y):
            return 2 * y * (1 - y) + 2 * x * (1 - x)

        mesh = quadratic_square_mesh
        mesh.split(0)
        mesh.split(mesh.arena[0].children[3])
        fix_all_sides(mesh)
        PoissonSolver(mesh, PoissonParameters(source=source)).run()

        assert mesh.n_hanging > 0
        assert compute_l2_error(mesh, u_exact) < 1e-10

    def test_line(self, line_mesh):
        """Test -u'' = 1 on a refined line mesh."""
        # -u'' = 1, u(0) = u(1) = 0; linear elements are exact at the nodes
        line_mesh.split(1)
        fix_all_sides(line_mesh, sides=("left", "right"))
        PoissonSolver(line_mesh, PoissonParameters(source=lambda x: 1.0)).run()
        for node in line_mesh.nodes.values():
            assert_almost_equal(node.values[0], 0.5 * node.x * (1.0 - node.x))

    def test_trilinear_with_hanging_nodes(self):
        """Test a linear field is reproduced on hexes with hanging nodes."""
        mesh = build_brick_mesh(2, 2, 2)
        mesh.split(0)
        exact = lambda x, y, z: x - 2.0 * y + 0.5 * z
        fix_all_sides(mesh, exact, sides=SIDES_2D + ("front", "back"))
        PoissonSolver(mesh).run()
        for node in mesh.nodes.values():
            assert_almost_equal(node.values[0], exact(*node.coordinates))

    def test_linear_across_rotated_roots(self, rotated_mesh_with_boundary):
        """Test a linear field is reproduced when hanging nodes sit on a rotated face."""
        mesh = rotated_mesh_with_boundary
        driver = AdaptationDriver(mesh)
        driver.refine_selected([1])
        driver.refine_selected([mesh.arena[1].children[2]])
        assert mesh.n_hanging > 0

        exact = lambda x, y: 1.0 - 3.0 * x + 2.0 * y
        mesh.add_dirichlet_bc(DirichletBC("outer", exact))
        PoissonSolver(mesh).run()
        for node in mesh.nodes.values():
            assert_almost_equal(node.values[0], exact(node.x, node.y))

    def test_diffusivity_scales_solution(self):
        """Test the solution scales with 1/k."""
        results = []
        for k in (1.0, 2.0):
            mesh = build_rectangle_mesh(4, 4)
            fix_all_sides(mesh)
            solver = PoissonSolver(mesh, PoissonParameters(source=lambda x, y: 1.0,
                                                           diffusivity=k))
            results.append(solver.run())
        assert_array_almost_equal(results[1], 0.5 * results[0])


class TestConvergence:

    @staticmethod
    def _sin_sin_error(n_elem, nnode_1d):
        def u_exact(x, y):
            return np.sin(np.pi * x) * np.sin(np.pi * y)

        def source(x, y):
            return 2 * np.pi ** 2 * np.sin(np.pi * x) * np.sin(np.pi * y)

        mesh = build_rectangle_mesh(n_elem, n_elem, nnode_1d=nnode_1d)
        fix_all_sides(mesh)
        PoissonSolver(mesh, PoissonParameters(source=source)).run()
        return compute_l2_error(mesh, u_exact)

    def test_h_convergence_bilinear(self):
        """Test h-convergence for bilinear elements."""
        errors = [self._sin_sin_error(n, 2) for n in (4, 8, 16)]
        rates = [np.log(errors[i] / errors[i + 1]) / np.log(2) for i in range(2)]
        assert rates[0] > 1.8
        assert rates[1] > 1.9

    def test_h_convergence_biquadratic(self):
        """Test h-convergence for biquadratic elements."""
        errors = [self._sin_sin_error(n, 3) for n in (2, 4, 8)]
        rate = np.log(errors[1] / errors[2]) / np.log(2)
        assert rate > 2.7


class TestAdaptiveSolve:
    """Solve, estimate, adapt, solve again."""

    def test_linear_solution_survives_adaptation(self, square_mesh):
        """Test a linear field is reproduced after adaptation cycles."""
        def at_origin(element):
            return 1.0 if np.allclose(element.nodal_coordinates().min(axis=0), 0.0) else 5e-4

        exact = lambda x, y: 2.0 * x - y
        fix_all_sides(square_mesh, exact)
        driver = AdaptationDriver(square_mesh, DummyErrorEstimator(at_origin))
        for _ in range(3):
            PoissonSolver(square_mesh).run()
            driver.adapt()
        PoissonSolver(square_mesh).run()

        assert square_mesh.n_hanging > 0
        for node in square_mesh.nodes.values():
            assert_almost_equal(node.values[0], exact(node.x, node.y))

    def test_z2_driven_refinement_reduces_error(self):
        """Test Z2-driven refinement reduces the L2 error."""
        def u_exact(x, y):
            return np.sin(np.pi * x) * np.sin(np.pi * y)

        def source(x, y):
            return 2 * np.pi ** 2 * np.sin(np.pi * x) * np.sin(np.pi * y)

        mesh = build_rectangle_mesh(4, 4)
        fix_all_sides(mesh)
        estimator = Z2ErrorEstimator()
        driver = AdaptationDriver(mesh, estimator)
        parameters = PoissonParameters(source=source)

        PoissonSolver(mesh, parameters).run()
        # Refine the elements within a factor two of the largest indicator
        mesh.config.max_permitted_error = 0.5 * max(estimator.get_element_errors(mesh).values())
        mesh.config.min_permitted_error = 0.0
        before = compute_l2_error(mesh, u_exact)
        report = driver.adapt()
        PoissonSolver(mesh, parameters).run()
        after = compute_l2_error(mesh, u_exact)

        assert report.n_refined > 0
        assert after < before
