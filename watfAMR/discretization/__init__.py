"""
Discretization module for refineable Lagrange meshes.

Provides:
- LagrangeBasis: Tensor-product shape functions on [0,1]^d
- Node, HangInfo: Shared mesh nodes and their hanging constraints
- LagrangeElement, ElementKind: Generic line/quad/hex element
- Mesh: Nodes, elements and the optional refinement capability
"""

from .basis import LagrangeBasis, lagrange_basis_1d, local_nodes_1d
from .node import Node, HangInfo
from .element import LagrangeElement, ElementKind

# Mesh pulls in the tree package, which itself imports element.py.
# Import it directly: from watfAMR.discretization.mesh import ...
