"""
Gauss-Legendre quadrature for numerical integration.

n points integrate polynomials up to degree 2n-1 exactly. For Lagrange
elements with nnode_1d nodes per direction (order nnode_1d - 1) the
stiffness integrand on an affine element has degree 2*(nnode_1d - 1) per
direction, so nnode_1d points per direction suffice; the error estimator
uses one more.

The reference domain is [0, 1]^d, matching the local coordinates used by
the elements and by the son-type subdivision of the refinement tree.

Usage:
    points, weights = gauss_legendre_1d(n)                  # on [0,1]
    points, weights = gauss_legendre_tensor((n_x, n_y))     # on [0,1]^2
"""

import itertools

import numpy as np
from typing import Tuple
from functools import lru_cache


@lru_cache(maxsize=16)
def gauss_legendre_1d(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss-Legendre quadrature points and weights on [0, 1].

    Parameters:
        n: Number of quadrature points

    Returns:
        (points, weights) where:
        - points: Array of n quadrature points in [0, 1]
        - weights: Array of n quadrature weights (sum to 1)
    """
    if n < 1:
        raise ValueError("Need at least 1 quadrature point")

    points_std, weights_std = np.polynomial.legendre.leggauss(n)

    # Map from [-1, 1] to [0, 1]
    points = 0.5 * (points_std + 1.0)
    weights = 0.5 * weights_std

    return points.copy(), weights.copy()


def gauss_legendre_tensor(n_points_per_dir: Tuple[int, ...]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Tensor-product Gauss-Legendre quadrature on [0,1]^d.

    Points are ordered with the first direction running fastest, the same
    ordering as the element nodes.

    Parameters:
        n_points_per_dir: Number of points in each direction

    Returns:
        (points, weights) with shapes (n_total, d) and (n_total,)
    """
    if len(n_points_per_dir) == 0:
        raise ValueError("Need at least one direction")

    rules = [gauss_legendre_1d(n) for n in n_points_per_dir]
    n_dim = len(rules)

    points = []
    weights = []
    # itertools.product runs the last factor fastest, so reverse the axes
    for idx in itertools.product(*[range(len(r[0])) for r in reversed(rules)]):
        idx = idx[::-1]
        points.append([rules[d][0][idx[d]] for d in range(n_dim)])
        weights.append(np.prod([rules[d][1][idx[d]] for d in range(n_dim)]))

    return np.array(points), np.array(weights)


class GaussQuadrature:
    """
    Gauss quadrature for element integration.

    Attributes:
        n_points_per_dir: Number of quadrature points per direction
        n_dim: Number of directions
    """

    def __init__(self, n_points_per_dir: Tuple[int, ...]):
        """
        Initialize Gauss quadrature.

        Parameters:
            n_points_per_dir: Number of points in each direction
        """
        n_points_per_dir = tuple(int(n) for n in n_points_per_dir)
        if not 1 <= len(n_points_per_dir) <= 3:
            raise ValueError(f"Unsupported dimension: {len(n_points_per_dir)}")

        self.n_points_per_dir = n_points_per_dir
        self.n_dim = len(n_points_per_dir)
        self._points, self._weights = gauss_legendre_tensor(n_points_per_dir)

    @property
    def n_points(self) -> int:
        """Total number of quadrature points."""
        return len(self._weights)

    @property
    def points(self) -> np.ndarray:
        """Quadrature points on [0,1]^d, shape (n_points, n_dim)."""
        return self._points

    @property
    def weights(self) -> np.ndarray:
        """Quadrature weights, shape (n_points,)."""
        return self._weights

    @classmethod
    def for_element(cls, n_dim: int, nnode_1d: int,
                    rule: str = "full") -> 'GaussQuadrature':
        """
        Create quadrature rule for a Lagrange element.

        Parameters:
            n_dim: Element dimension
            nnode_1d: Nodes per direction (order + 1)
            rule: "full" for nnode_1d points per direction,
                  "enriched" for nnode_1d + 1 (error integrals)

        Returns:
            GaussQuadrature instance
        """
        if rule == "full":
            n = nnode_1d
        elif rule == "enriched":
            n = nnode_1d + 1
        else:
            raise ValueError(f"Unknown rule: {rule}")

        return cls((n,) * n_dim)
