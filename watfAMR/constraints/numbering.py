"""
Equation numbering.

Every nodal value is one of:
- free: owns an equation number 0..n_dof-1
- pinned (PINNED): prescribed, not an unknown
- constrained (Constrained): hanging, equal to a weighted sum of master values

Equation numbers are assigned sequentially over nodes in ID order and,
within a node, over value indices, skipping pinned and hanging values.
The numbering is rebuilt after every adaptation; numbers from an older
DofMap are meaningless afterwards.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Tuple, Union

import numpy as np

from ..discretization.node import Node

if TYPE_CHECKING:
    from ..discretization.mesh import Mesh

PINNED = -1


@dataclass(frozen=True)
class Constrained:
    """Hanging value: sum of weight * value(master node)."""
    masters: Tuple[Tuple[int, float], ...]


Equation = Union[int, Constrained]


class DofMap:
    """
    Map (node ID, value index) -> equation number, PINNED or Constrained.

    Attributes:
        n_dof: Number of unknowns
        n_values: Values per node
    """

    def __init__(self, equations: Dict[Tuple[int, int], Equation], n_dof: int, n_values: int):
        self._equations = equations
        self.n_dof = n_dof
        self.n_values = n_values

    def equation(self, node_id: int, value_index: int = 0) -> Equation:
        return self._equations[(node_id, value_index)]

    def is_pinned(self, node_id: int, value_index: int = 0) -> bool:
        eqn = self.equation(node_id, value_index)
        return not isinstance(eqn, Constrained) and eqn == PINNED

    def is_constrained(self, node_id: int, value_index: int = 0) -> bool:
        return isinstance(self.equation(node_id, value_index), Constrained)

    def is_free(self, node_id: int, value_index: int = 0) -> bool:
        eqn = self.equation(node_id, value_index)
        return not isinstance(eqn, Constrained) and eqn != PINNED

    def expand(self, node_id: int, value_index: int = 0) -> List[Tuple[int, float]]:
        """
        Non-hanging nodes a value depends on, with weights.

        A free or pinned value depends on itself with weight 1. Assembly
        distributes a contribution for the value to these nodes
        (d/d master = weight * d/d hanging).
        """
        eqn = self.equation(node_id, value_index)
        if isinstance(eqn, Constrained):
            return list(eqn.masters)
        return [(node_id, 1.0)]

    def free_equations(self) -> Dict[Tuple[int, int], int]:
        return {k: v for k, v in self._equations.items()
                if not isinstance(v, Constrained) and v != PINNED}

    def gather(self, nodes: Dict[int, Node]) -> np.ndarray:
        """Vector of current free values."""
        u = np.zeros(self.n_dof)
        for (node_id, i), eqn in self.free_equations().items():
            u[eqn] = nodes[node_id].values[i]
        return u

    def scatter(self, u: np.ndarray, nodes: Dict[int, Node]) -> None:
        """Write a solution vector back into the free nodal values."""
        u = np.asarray(u)
        if len(u) != self.n_dof:
            raise ValueError(f"Vector of length {len(u)} does not match {self.n_dof} unknowns")
        for (node_id, i), eqn in self.free_equations().items():
            nodes[node_id].values[i] = u[eqn]


def assign_equation_numbers(mesh: 'Mesh') -> DofMap:
    """
    Number the unknowns of a mesh whose pins and constraints are current.

    Returns:
        DofMap
    """
    equations: Dict[Tuple[int, int], Equation] = {}
    n_dof = 0
    for node_id in sorted(mesh.nodes):
        node = mesh.nodes[node_id]
        for i in range(node.n_values):
            if node.hanging is not None:
                equations[(node_id, i)] = Constrained(tuple(node.hanging.masters))
            elif node.is_pinned(i):
                equations[(node_id, i)] = PINNED
            else:
                equations[(node_id, i)] = n_dof
                n_dof += 1
    return DofMap(equations, n_dof, mesh.n_values)
