"""
Error taxonomy for the refinement / constraint engine.

Two families of errors leave this package:

- StructuralError: the mesh topology is inconsistent (adjacency table
  broken, balance cascade not converging, merge of a node with refined
  children in strict mode, node lookup outside the element). These abort
  the adaptation cycle. Split/merge are not transactional, so the mesh
  instance must be considered unusable afterwards.
- NumericalError: non-finite values coming out of error estimation or
  shape-function evaluation. Reported upward, never retried here.

Policy violations (splitting a split node, merging where children are
refined) are not errors: the operation is a no-op and returns False.
"""


class StructuralError(RuntimeError):
    """Fatal topology/geometry inconsistency in a refineable mesh."""


class AdjacencyError(StructuralError):
    """Root adjacency table is missing an entry or is not symmetric."""


class BalanceError(StructuralError):
    """2:1 balancing did not converge within the permitted number of passes."""


class MergeError(StructuralError):
    """Strict merge requested on a node whose children are not all leaves."""


class GeometryError(StructuralError, ValueError):
    """A global point could not be located in an element within tolerance."""


class NumericalError(ArithmeticError):
    """Non-finite value produced by an estimator or basis evaluation."""
