"""
Element error estimators.

An estimator maps every leaf of a mesh to a non-negative error indicator:

    errors = estimator.get_element_errors(mesh)   # {handle: indicator}

It only reads the mesh.

Z2ErrorEstimator follows the Zienkiewicz-Zhu idea: the raw flux (by
default the gradient of nodal value 0) is discontinuous between
elements; a smooth flux recovered by a least-squares polynomial fit over
a patch of neighbouring elements is a better approximation, and the
difference between the two measures the error:

    eta_e = sqrt( integral_e |flux_raw - flux_recovered|^2 dV )

The patch of a leaf is the leaf plus every leaf touching it (across
faces, edges and vertices, at any level). Flux samples are taken at the
Gauss points of the patch elements. The fit uses a complete polynomial of
the recovery order in coordinates centred and scaled on the leaf; if the
patch has too few samples the order is lowered until the fit is
determined.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

import numpy as np

from ..discretization.element import LagrangeElement
from ..errors import NumericalError
from ..quadrature.gauss import GaussQuadrature

if TYPE_CHECKING:
    from ..discretization.mesh import Mesh

logger = logging.getLogger(__name__)

FluxFunction = Callable[[LagrangeElement, np.ndarray], np.ndarray]


class ErrorEstimator(ABC):
    """
    Abstract base class for error estimators.

    Subclasses implement get_element_errors.
    """

    @abstractmethod
    def get_element_errors(self, mesh: 'Mesh') -> Dict[int, float]:
        """
        Compute one error indicator per leaf.

        Parameters:
            mesh: Mesh (not modified)

        Returns:
            Leaf handle -> non-negative indicator

        Raises:
            NumericalError: an indicator is not finite
        """
        pass


def _check_indicator(handle: int, value: float) -> float:
    if not np.isfinite(value):
        raise NumericalError(f"Non-finite error indicator for element {handle}: {value}")
    if value < 0.0:
        raise ValueError(f"Negative error indicator for element {handle}: {value}")
    return float(value)


def monomial_exponents(n_dim: int, order: int) -> List[Tuple[int, ...]]:
    """Exponents of a complete polynomial of total degree <= order."""
    exps = [e for e in itertools.product(range(order + 1), repeat=n_dim) if sum(e) <= order]
    return sorted(exps, key=lambda e: (sum(e), tuple(reversed(e))))


def eval_monomials(x: np.ndarray, exponents: List[Tuple[int, ...]]) -> np.ndarray:
    """
    Monomial values.

    Parameters:
        x: Points, shape (n_points, n_dim)
        exponents: From monomial_exponents

    Returns:
        Array of shape (n_points, n_terms)
    """
    x = np.atleast_2d(x)
    result = np.ones((x.shape[0], len(exponents)))
    for k, e in enumerate(exponents):
        for a, p in enumerate(e):
            if p:
                result[:, k] *= x[:, a] ** p
    return result


def gradient_flux(value_index: int = 0) -> FluxFunction:
    """Flux = gradient of one interpolated nodal value."""
    def flux(element: LagrangeElement, s: np.ndarray) -> np.ndarray:
        return element.interpolated_gradient(s, value_index)
    return flux


class Z2ErrorEstimator(ErrorEstimator):
    """
    Zienkiewicz-Zhu flux recovery estimator.

    Attributes:
        flux_fct: (element, s) -> flux vector; gradient of value 0 if None
        recovery_order: Order of the recovered flux (element order if None)
        normalise: Divide indicators by the global flux norm
                   (mesh.config.normalise_errors if None)
        reference_flux_norm: Fixed norm to divide by instead of the
                             computed global one
    """

    def __init__(self, flux_fct: Optional[FluxFunction] = None,
                 recovery_order: Optional[int] = None,
                 normalise: Optional[bool] = None,
                 reference_flux_norm: Optional[float] = None):
        self.flux_fct = flux_fct if flux_fct is not None else gradient_flux(0)
        if recovery_order is not None and recovery_order < 0:
            raise ValueError("recovery_order must be non-negative")
        self.recovery_order = recovery_order
        self.normalise = normalise
        if reference_flux_norm is not None and reference_flux_norm <= 0.0:
            raise ValueError("reference_flux_norm must be positive")
        self.reference_flux_norm = reference_flux_norm
        self.last_flux_norm: Optional[float] = None

    @classmethod
    def from_config(cls, config, flux_fct: Optional[FluxFunction] = None) -> 'Z2ErrorEstimator':
        """Estimator with recovery order and normalisation from an AdaptivityConfig."""
        return cls(flux_fct=flux_fct, recovery_order=config.recovery_order,
                   normalise=config.normalise_errors)

    def _samples(self, element: LagrangeElement) -> Tuple[np.ndarray, np.ndarray]:
        """Gauss point positions and raw fluxes of one element."""
        quad = GaussQuadrature.for_element(element.dimension(), element.nnode_1d)
        x = np.array([element.interpolated_x(s) for s in quad.points])
        flux = np.array([np.atleast_1d(self.flux_fct(element, s)) for s in quad.points])
        return x, flux

    def _patch(self, mesh: 'Mesh', handle: int) -> List[int]:
        if not mesh.is_refineable:
            return [handle]
        return [handle] + mesh.locator.all_leaf_neighbors(handle)

    def get_element_errors(self, mesh: 'Mesh') -> Dict[int, float]:
        leaves = mesh.leaves()
        samples = {h: self._samples(mesh.element(h)) for h in leaves}

        order = self.recovery_order
        if order is None:
            order = mesh.config.recovery_order
        if order is None:
            order = mesh.nnode_1d - 1

        normalise = self.normalise
        if normalise is None:
            normalise = mesh.config.normalise_errors

        errors: Dict[int, float] = {}
        flux_norm_sq = 0.0

        for h in leaves:
            element = mesh.element(h)
            patch = self._patch(mesh, h)
            x = np.vstack([samples[p][0] for p in patch])
            flux = np.vstack([samples[p][1] for p in patch])

            centre = element.centroid()
            scale = np.max(np.ptp(x, axis=0))
            if scale <= 0.0:
                scale = 1.0

            p = order
            exponents = monomial_exponents(mesh.dimension, p)
            while len(exponents) > len(x) and p > 0:
                p -= 1
                exponents = monomial_exponents(mesh.dimension, p)

            basis = eval_monomials((x - centre) / scale, exponents)
            coeffs, _, _, _ = np.linalg.lstsq(basis, flux, rcond=None)

            quad = GaussQuadrature.for_element(mesh.dimension, element.nnode_1d, rule="enriched")
            err_sq = 0.0
            for q in range(quad.n_points):
                s = quad.points[q]
                x_q = element.interpolated_x(s)
                dV = quad.weights[q] * abs(np.linalg.det(element.jacobian(s)))
                raw = np.atleast_1d(self.flux_fct(element, s))
                recovered = eval_monomials(((x_q - centre) / scale)[None, :], exponents)[0] @ coeffs
                diff = raw - recovered
                err_sq += float(diff @ diff) * dV
                flux_norm_sq += float(raw @ raw) * dV

            errors[h] = np.sqrt(err_sq)

        flux_norm = np.sqrt(flux_norm_sq)
        self.last_flux_norm = float(flux_norm)

        divisor = 1.0
        if self.reference_flux_norm is not None:
            divisor = self.reference_flux_norm
        elif normalise and flux_norm > 0.0:
            divisor = flux_norm

        return {h: _check_indicator(h, e / divisor) for h, e in errors.items()}


class DummyErrorEstimator(ErrorEstimator):
    """
    Indicators from a user function of the element.

    Useful to drive refinement towards a known feature, or in tests:

        estimator = DummyErrorEstimator(lambda el: 1.0 if el.centroid()[0] < 0.5 else 0.0)
    """

    def __init__(self, fct: Callable[[LagrangeElement], float]):
        self.fct = fct

    def get_element_errors(self, mesh: 'Mesh') -> Dict[int, float]:
        return {h: _check_indicator(h, float(self.fct(mesh.element(h))))
                for h in mesh.leaves()}
