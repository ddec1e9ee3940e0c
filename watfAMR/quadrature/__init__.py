"""
Quadrature rules on the reference element [0,1]^d.
"""

from .gauss import gauss_legendre_1d, gauss_legendre_tensor, GaussQuadrature
