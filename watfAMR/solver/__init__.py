from .base import Solver
from .poisson import PoissonSolver, PoissonParameters, compute_l2_error
