"""
Unit tests for Gauss-Legendre quadrature.
"""

import pytest
import numpy as np
from numpy.testing import assert_almost_equal

from watfAMR.quadrature.gauss import gauss_legendre_1d, gauss_legendre_tensor, GaussQuadrature


class TestGaussLegendre1D:
    """Tests for 1D Gauss-Legendre quadrature."""

    def test_weights_sum_to_one(self):
        """Test that weights sum to 1 (domain is [0,1])."""
        for n in [1, 2, 3, 4, 5]:
            pts, wts = gauss_legendre_1d(n)
            assert_almost_equal(np.sum(wts), 1.0, decimal=14)

    def test_points_in_domain(self):
        """Test that all points are in [0, 1]."""
        for n in [1, 2, 3, 4, 5]:
            pts, wts = gauss_legendre_1d(n)
            assert np.all(pts > 0.0)
            assert np.all(pts < 1.0)

    def test_integrate_polynomial(self):
        """Test exact integration of polynomials up to degree 2n-1."""
        pts, wts = gauss_legendre_1d(2)
        assert_almost_equal(np.sum(pts**3 * wts), 0.25, decimal=14)

        pts, wts = gauss_legendre_1d(3)
        assert_almost_equal(np.sum(pts**5 * wts), 1 / 6, decimal=14)

    def test_invalid_n(self):
        """Zero points is rejected."""
        with pytest.raises(ValueError):
            gauss_legendre_1d(0)


class TestGaussLegendreTensor:
    """Tests for tensor-product rules."""

    def test_first_direction_fastest(self):
        """Points run through the first direction first."""
        pts, wts = gauss_legendre_tensor((2, 3))
        pts_1d, _ = gauss_legendre_1d(2)
        assert pts.shape == (6, 2)
        assert_almost_equal(pts[0, 0], pts_1d[0])
        assert_almost_equal(pts[1, 0], pts_1d[1])
        assert_almost_equal(pts[0, 1], pts[1, 1])

    def test_integrate_2d_monomial(self):
        """∫∫ x^2 y^3 = 1/12 on the unit square."""
        pts, wts = gauss_legendre_tensor((2, 2))
        result = np.sum(pts[:, 0]**2 * pts[:, 1]**3 * wts)
        assert_almost_equal(result, 1 / 12, decimal=14)

    def test_weights_sum_3d(self):
        """3D weights sum to the unit cube volume."""
        pts, wts = gauss_legendre_tensor((2, 3, 4))
        assert pts.shape == (24, 3)
        assert_almost_equal(np.sum(wts), 1.0, decimal=14)


class TestGaussQuadrature:
    """Tests for the GaussQuadrature class."""

    def test_n_points(self):
        """Total number of points."""
        quad = GaussQuadrature((3, 2))
        assert quad.n_points == 6
        assert quad.points.shape == (6, 2)

    def test_for_element(self):
        """Full rule uses nnode_1d points, enriched one more."""
        assert GaussQuadrature.for_element(2, 3).n_points == 9
        assert GaussQuadrature.for_element(2, 3, rule="enriched").n_points == 16
        assert GaussQuadrature.for_element(3, 2).n_points == 8

    def test_unknown_rule(self):
        """Test unknown rules are rejected."""
        with pytest.raises(ValueError):
            GaussQuadrature.for_element(2, 2, rule="reduced")

    def test_unsupported_dimension(self):
        """Test unsupported dimensions are rejected."""
        with pytest.raises(ValueError):
            GaussQuadrature((2, 2, 2, 2))
