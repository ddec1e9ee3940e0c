"""
Hanging-node constraints and equation numbering.
"""

from .hanging import HangingNodeResolver, update_hanging_values, check_partition_of_unity
from .numbering import DofMap, Constrained, PINNED, assign_equation_numbers
