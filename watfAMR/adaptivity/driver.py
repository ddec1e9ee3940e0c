"""
Adaptation driver: one error-driven refine/unrefine cycle.

State machine of a cycle:

    IDLE -> ESTIMATING -> MARKING -> REFINING -> UNREFINING
         -> BALANCING -> RENUMBERING -> IDLE

- ESTIMATING: error indicator for every leaf
- MARKING: indicator > max_permitted_error selects a leaf for splitting,
  indicator < min_permitted_error makes it a merge candidate. A father is
  merged only if all its sons are candidates and leaves; otherwise the
  merge is rejected (and counted).
- REFINING / UNREFINING: split the selected leaves, then merge the
  selected fathers (a merge that would leave a face neighbour two levels
  finer is rejected as well)
- BALANCING: split leaves until face-adjacent leaves differ by at most
  one level
- RENUMBERING: pin Dirichlet values, rebuild hanging-node constraints,
  number the unknowns

Split and merge are not transactional. A StructuralError in any phase
marks the mesh corrupt, and every later cycle on it raises.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set, Tuple

from .error_estimator import ErrorEstimator
from ..config import AdaptivityConfig
from ..constraints.hanging import update_hanging_values
from ..constraints.numbering import DofMap
from ..errors import BalanceError, StructuralError
from ..tree.neighbors import face_directions

if TYPE_CHECKING:
    from ..discretization.mesh import Mesh

logger = logging.getLogger(__name__)


class AdaptationState(Enum):
    IDLE = "idle"
    ESTIMATING = "estimating"
    MARKING = "marking"
    REFINING = "refining"
    UNREFINING = "unrefining"
    BALANCING = "balancing"
    RENUMBERING = "renumbering"


@dataclass
class AdaptationReport:
    """
    Outcome of one adaptation.

    Attributes:
        n_refined: Leaves split on request (selection or marking)
        n_unrefined: Fathers merged
        merges_rejected: Merges that could not be carried out
        n_balance_splits: Extra splits made by 2:1 balancing
        balance_passes: Balancing passes, including the final one that
                        found nothing to split
        n_hanging: Hanging nodes after renumbering
        n_dof: Unknowns after renumbering
        n_elements: Leaves after the adaptation
        max_error, min_error: Range of the indicators (estimating cycles)
        dof_map: Numbering after the adaptation
    """
    n_refined: int = 0
    n_unrefined: int = 0
    merges_rejected: int = 0
    n_balance_splits: int = 0
    balance_passes: int = 0
    n_hanging: int = 0
    n_dof: int = 0
    n_elements: int = 0
    max_error: float = 0.0
    min_error: float = 0.0
    dof_map: Optional[DofMap] = field(default=None, repr=False)


class AdaptationDriver:
    """
    Runs adaptation cycles on a refineable mesh.

    Example:
        mesh = build_rectangle_mesh(4, 4)
        driver = AdaptationDriver(mesh, Z2ErrorEstimator())
        solver.run()
        report = driver.adapt()

    Attributes:
        mesh: Mesh with refinement capability
        estimator: ErrorEstimator (needed by adapt only)
        config: AdaptivityConfig (the mesh's if None)
        state: Current AdaptationState
    """

    def __init__(self, mesh: 'Mesh', estimator: Optional[ErrorEstimator] = None,
                 config: Optional[AdaptivityConfig] = None):
        if not mesh.is_refineable:
            raise ValueError("Adaptation needs a mesh with refinement capability")
        self.mesh = mesh
        self.estimator = estimator
        self.config = config if config is not None else mesh.config
        self.state = AdaptationState.IDLE
        self.dof_map: Optional[DofMap] = None

    # -------------------------------------------------------------------------
    # Limits
    # -------------------------------------------------------------------------

    @property
    def max_permitted_error(self) -> float:
        return self.config.max_permitted_error

    @property
    def min_permitted_error(self) -> float:
        return self.config.min_permitted_error

    @property
    def max_refinement_level(self) -> int:
        return self.config.max_refinement_level

    @property
    def min_refinement_level(self) -> int:
        return self.config.min_refinement_level

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    @contextmanager
    def _cycle(self):
        if self.mesh.is_corrupt:
            raise StructuralError(
                f"Mesh is corrupt after an earlier failure: {self.mesh.corruption_reason}"
            )
        try:
            yield
        except StructuralError as exc:
            self.mesh.mark_corrupt(f"{type(exc).__name__} while {self.state.value}: {exc}")
            raise
        finally:
            self.state = AdaptationState.IDLE

    def adapt(self) -> AdaptationReport:
        """
        One full estimate/mark/refine/unrefine/balance/renumber cycle.

        Returns:
            AdaptationReport

        Raises:
            StructuralError: topology inconsistency (mesh becomes corrupt)
            NumericalError: non-finite indicators (mesh unchanged)
        """
        if self.estimator is None:
            raise ValueError("No error estimator set")

        report = AdaptationReport()
        with self._cycle():
            update_hanging_values(self.mesh)

            errors = self.estimate()
            if errors:
                report.max_error = max(errors.values())
                report.min_error = min(errors.values())

            to_refine, to_merge, rejected = self.mark(errors)
            report.merges_rejected += rejected

            self.state = AdaptationState.REFINING
            report.n_refined = self._split_all(to_refine)

            self.state = AdaptationState.UNREFINING
            merged, rejected = self._merge_all(to_merge)
            report.n_unrefined = merged
            report.merges_rejected += rejected

            self._finish(report)

        self.doc_adaptivity(report)
        return report

    def estimate(self) -> Dict[int, float]:
        self.state = AdaptationState.ESTIMATING
        return self.estimator.get_element_errors(self.mesh)

    def mark(self, errors: Dict[int, float]) -> Tuple[List[int], List[int], int]:
        """
        Select leaves to split and fathers to merge.

        Returns:
            (leaves to split, fathers to merge, number of rejected merges)
        """
        self.state = AdaptationState.MARKING
        mesh = self.mesh

        to_refine = []
        candidates: Set[int] = set()
        for h in sorted(errors):
            level = mesh.level(h)
            if errors[h] > self.max_permitted_error:
                if level < self.max_refinement_level:
                    to_refine.append(h)
            elif errors[h] < self.min_permitted_error and level > self.min_refinement_level:
                candidates.add(h)

        fathers = sorted({mesh.tree_node(h).parent for h in candidates})
        to_merge = []
        rejected = 0
        for f in fathers:
            sons = mesh.tree_node(f).children
            if all(s in candidates for s in sons):
                to_merge.append(f)
            else:
                logger.debug(f"Merge of tree node {f} rejected: not all sons selected")
                rejected += 1

        logger.debug(f"Marked {len(to_refine)} leaves for refinement, "
                     f"{len(to_merge)} fathers for unrefinement")
        return to_refine, to_merge, rejected

    def _split_all(self, handles: Iterable[int]) -> int:
        count = 0
        for h in handles:
            if self.mesh.tree_node(h).level >= self.max_refinement_level:
                logger.debug(f"Tree node {h} is at the maximum refinement level")
                continue
            if self.mesh.split(h):
                count += 1
        return count

    def _breaks_balance(self, father: int) -> bool:
        """True if merging the father would leave a face neighbour two levels finer."""
        mesh = self.mesh
        locator = mesh.locator
        level = mesh.level(father)
        for son in mesh.tree_node(father).children:
            for d in face_directions(mesh.dimension):
                for nb in locator.leaf_neighbors(son, d):
                    if mesh.level(nb) > level + 1:
                        return True
        return False

    def _merge_all(self, fathers: Iterable[int]) -> Tuple[int, int]:
        merged = 0
        rejected = 0
        for f in fathers:
            node = self.mesh.tree_node(f)
            if node.is_leaf():
                continue
            if node.level < self.min_refinement_level or not self.mesh.arena.can_merge(f):
                logger.debug(f"Merge of tree node {f} rejected")
                rejected += 1
                continue
            if self._breaks_balance(f):
                logger.debug(f"Merge of tree node {f} rejected: would break 2:1 balance")
                rejected += 1
                continue
            if self.mesh.merge(f):
                merged += 1
            else:
                rejected += 1
        return merged, rejected

    def _finish(self, report: AdaptationReport) -> None:
        report.n_balance_splits, report.balance_passes = self.balance()
        self.dof_map = self.renumber()
        report.dof_map = self.dof_map
        report.n_dof = self.dof_map.n_dof
        report.n_hanging = self.mesh.n_hanging
        report.n_elements = len(self.mesh.leaves())

    def balance(self) -> Tuple[int, int]:
        """
        Split leaves until face-adjacent leaves differ by at most one level.

        Returns:
            (number of splits, number of passes)

        Raises:
            BalanceError: still unbalanced after max_balance_passes passes
        """
        self.state = AdaptationState.BALANCING
        mesh = self.mesh
        arena = mesh.arena
        locator = mesh.locator
        directions = face_directions(mesh.dimension)

        n_splits = 0
        for n_pass in range(1, self.config.max_balance_passes + 1):
            to_split = []
            for h in mesh.leaves():
                level = arena[h].level
                for d in directions:
                    info = locator.locate(h, d)
                    if info is None or info.is_leaf:
                        continue
                    towards_me = tuple(-x for x in info.direction)
                    if any(arena[nb].level > level + 1
                           for nb in arena.leaves_touching(info.handle, towards_me)):
                        to_split.append(h)
                        break

            if not to_split:
                return n_splits, n_pass

            for h in to_split:
                if mesh.split(h):
                    n_splits += 1
                    logger.debug(f"Balancing split of tree node {h}")

        raise BalanceError(
            f"Mesh not 2:1 balanced after {self.config.max_balance_passes} passes"
        )

    def renumber(self) -> DofMap:
        self.state = AdaptationState.RENUMBERING
        return self.mesh.assign_equation_numbers()

    # -------------------------------------------------------------------------
    # Explicit refinement
    # -------------------------------------------------------------------------

    def refine_selected(self, handles: Iterable[int]) -> AdaptationReport:
        """Split the given leaves, then balance and renumber."""
        report = AdaptationReport()
        with self._cycle():
            update_hanging_values(self.mesh)
            self.state = AdaptationState.REFINING
            report.n_refined = self._split_all(sorted(set(handles)))
            self._finish(report)
        self.doc_adaptivity(report)
        return report

    def unrefine_selected(self, fathers: Iterable[int]) -> AdaptationReport:
        """
        Merge the sons of the given tree nodes, then balance and renumber.

        A father with a split son stays split; the request is counted in
        merges_rejected.
        """
        report = AdaptationReport()
        with self._cycle():
            update_hanging_values(self.mesh)
            self.state = AdaptationState.UNREFINING
            report.n_unrefined, report.merges_rejected = self._merge_all(sorted(set(fathers)))
            self._finish(report)
        self.doc_adaptivity(report)
        return report

    def refine_uniformly(self) -> AdaptationReport:
        """Split every leaf below the maximum refinement level."""
        return self.refine_selected(self.mesh.leaves())

    def unrefine_uniformly(self) -> AdaptationReport:
        """Merge every father whose sons are all leaves."""
        mesh = self.mesh
        fathers = {mesh.tree_node(h).parent for h in mesh.leaves()
                   if mesh.tree_node(h).parent is not None}
        return self.unrefine_selected(f for f in fathers if mesh.arena.can_merge(f))

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def doc_adaptivity(self, report: AdaptationReport) -> None:
        """Log a one-cycle summary."""
        logger.info(
            f"Adaptation: {report.n_refined} refined, {report.n_unrefined} unrefined, "
            f"{report.merges_rejected} merges rejected, {report.n_balance_splits} balancing "
            f"splits in {report.balance_passes} passes"
        )
        logger.info(
            f"Mesh: {report.n_elements} elements, levels {self.mesh.min_level()}-"
            f"{self.mesh.max_level()}, {report.n_hanging} hanging nodes, {report.n_dof} unknowns"
        )
        if report.max_error > 0.0:
            logger.info(f"Error indicators: min {report.min_error:.3e}, "
                        f"max {report.max_error:.3e} "
                        f"(permitted {self.min_permitted_error:.1e}-{self.max_permitted_error:.1e})")
