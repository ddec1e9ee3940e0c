"""
Tests for error estimators.
"""

import pytest
import numpy as np
from numpy.testing import assert_almost_equal

from watfAMR.adaptivity.error_estimator import (Z2ErrorEstimator, DummyErrorEstimator,
                                                monomial_exponents, eval_monomials)
from watfAMR.config import AdaptivityConfig
from watfAMR.discretization.mesh import build_rectangle_mesh
from watfAMR.errors import NumericalError


class TestMonomials:

    def test_counts(self):
        """Test number of terms in complete polynomials."""
        assert len(monomial_exponents(1, 2)) == 3
        assert len(monomial_exponents(2, 1)) == 3
        assert len(monomial_exponents(2, 2)) == 6
        assert len(monomial_exponents(3, 1)) == 4
        assert monomial_exponents(2, 2)[0] == (0, 0)

    def test_values(self):
        """Test monomial evaluation at a point."""
        exps = monomial_exponents(2, 1)
        values = eval_monomials(np.array([[2.0, 3.0]]), exps)
        assert sorted(values[0]) == [1.0, 2.0, 3.0]


class TestDummyEstimator:

    def test_values_per_leaf(self, refined_square_mesh):
        """Test one indicator per leaf from the user function."""
        estimator = DummyErrorEstimator(lambda el: el.size())
        errors = estimator.get_element_errors(refined_square_mesh)
        assert set(errors) == set(refined_square_mesh.leaves())
        assert_almost_equal(errors[1], 0.25)
        assert_almost_equal(errors[refined_square_mesh.arena[0].children[0]], 0.0625)

    def test_non_finite(self, square_mesh):
        """Test non-finite indicators raise NumericalError."""
        estimator = DummyErrorEstimator(lambda el: np.nan)
        with pytest.raises(NumericalError):
            estimator.get_element_errors(square_mesh)

    def test_negative(self, square_mesh):
        """Test negative indicators are rejected."""
        estimator = DummyErrorEstimator(lambda el: -1.0)
        with pytest.raises(ValueError):
            estimator.get_element_errors(square_mesh)


class TestZ2Estimator:

    def test_linear_field_has_no_error(self, refined_square_mesh):
        """Test a linear field has zero error on a mesh with hanging nodes."""
        mesh = refined_square_mesh
        mesh.set_values(lambda x, y: 1.0 + x + 2.0 * y)
        errors = Z2ErrorEstimator().get_element_errors(mesh)
        assert set(errors) == set(mesh.leaves())
        assert max(errors.values()) < 1e-10

    def test_quadratic_field_has_error(self, square_mesh):
        """Test a quadratic field on bilinear elements has positive error."""
        square_mesh.set_values(lambda x, y: x * x)
        errors = Z2ErrorEstimator().get_element_errors(square_mesh)
        assert min(errors.values()) > 0.0
        assert all(np.isfinite(list(errors.values())))

    def test_quadratic_elements_recover_quadratic_flux(self, quadratic_square_mesh):
        """Test quadratic elements recover the flux of a quadratic field exactly."""
        # Flux of a quadratic field is linear, which the order-2 fit contains
        quadratic_square_mesh.set_values(lambda x, y: x * x + x * y)
        errors = Z2ErrorEstimator().get_element_errors(quadratic_square_mesh)
        assert max(errors.values()) < 1e-8

    def test_normalisation(self, square_mesh):
        """Test normalisation by the global and a reference flux norm."""
        square_mesh.set_values(lambda x, y: x * x)
        raw = Z2ErrorEstimator(normalise=False).get_element_errors(square_mesh)
        estimator = Z2ErrorEstimator()
        scaled = estimator.get_element_errors(square_mesh)
        assert estimator.last_flux_norm > 0.0
        for h in raw:
            assert_almost_equal(scaled[h], raw[h] / estimator.last_flux_norm)

        fixed = Z2ErrorEstimator(reference_flux_norm=2.0).get_element_errors(square_mesh)
        for h in raw:
            assert_almost_equal(fixed[h], raw[h] / 2.0)

    def test_normalisation_from_mesh_config(self):
        """Test that the mesh config decides normalisation when the estimator does not."""
        mesh = build_rectangle_mesh(2, 2, config=AdaptivityConfig(normalise_errors=False))
        mesh.set_values(lambda x, y: 10.0 * x * x)
        from_config = Z2ErrorEstimator().get_element_errors(mesh)
        raw = Z2ErrorEstimator(normalise=False).get_element_errors(mesh)
        for h in raw:
            assert_almost_equal(from_config[h], raw[h])

        # An explicit argument wins over the config
        estimator = Z2ErrorEstimator(normalise=True)
        scaled = estimator.get_element_errors(mesh)
        for h in raw:
            assert_almost_equal(scaled[h], raw[h] / estimator.last_flux_norm)

    def test_zero_field(self, square_mesh):
        """Test a zero field gives zero indicators."""
        errors = Z2ErrorEstimator().get_element_errors(square_mesh)
        assert all(e == 0.0 for e in errors.values())

    def test_from_config(self):
        """Test estimator settings taken from a config."""
        config = AdaptivityConfig(recovery_order=2, normalise_errors=False)
        estimator = Z2ErrorEstimator.from_config(config)
        assert estimator.recovery_order == 2
        assert not estimator.normalise

    def test_invalid_arguments(self):
        """Test invalid recovery order and reference norm are rejected."""
        with pytest.raises(ValueError):
            Z2ErrorEstimator(recovery_order=-1)
        with pytest.raises(ValueError):
            Z2ErrorEstimator(reference_flux_norm=0.0)

    def test_line_mesh(self, line_mesh):
        """Test the estimator on a line mesh."""
        line_mesh.set_values(lambda x: x ** 3)
        errors = Z2ErrorEstimator().get_element_errors(line_mesh)
        assert len(errors) == 4
        assert max(errors.values()) > 0.0
