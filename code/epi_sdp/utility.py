"""
Utility matrix construction.

Utility is taken on the outcome of each (state, action) pair, not on the
originating state: the signal reflects prevalence after this period's
intervention. For a stochastic outcome the expected utility over its support
is used.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .errors import SnapFailure
from .grid_space import GridSpace
from .models import CostModel, DynamicsModel, TransitionDistribution, evaluate_outcomes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UtilityMatrix:
    """Read-only utility array of shape (n_states, n_actions)"""

    values: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        if values.ndim != 2:
            raise ValueError(f"Utility matrix must be 2-D, got shape {values.shape}")
        values.flags.writeable = False
        object.__setattr__(self, "values", values)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def to_buffer(self) -> Tuple[np.ndarray, Tuple[int, int]]:
        """Flat row-major buffer and its dimensions (n_states, n_actions)"""
        return np.ravel(self.values, order="C").copy(), self.shape

    @classmethod
    def from_buffer(cls, buffer: np.ndarray, shape: Tuple[int, int]) -> "UtilityMatrix":
        return cls(np.asarray(buffer, dtype=float).reshape(tuple(shape), order="C"))


class UtilityMatrixBuilder:
    """
    Builds utility[i, a] = E[cost(step(state_i, action_a))].

    Parameters:
        snap_tol: Outcomes must be snappable onto the state grid within this
                  tolerance, so the utility never describes a state the
                  transition tensor cannot represent
        n_workers: Thread count for outcome evaluation (1 = serial)
    """

    def __init__(self, snap_tol: float, n_workers: int = 1):
        self.snap_tol = snap_tol
        self.n_workers = n_workers

    def build(
        self,
        grid: GridSpace,
        action_grid: GridSpace,
        dynamics: DynamicsModel,
        cost: CostModel,
        outcomes: Optional[List[List[TransitionDistribution]]] = None,
    ) -> UtilityMatrix:
        """
        Parameters:
            grid: State grid
            action_grid: Action grid
            dynamics: One-period transition model
            cost: Per-period utility model
            outcomes: Outcome table shared with the tensor builder; computed if None

        Raises:
            SnapFailure: An outcome is outside the snap tolerance (tagged with its cell)
        """
        n_s, n_a = grid.size(), action_grid.size()
        if outcomes is None:
            outcomes = evaluate_outcomes(grid.points, action_grid.points, dynamics, self.n_workers)

        values = np.empty((n_s, n_a))
        for i in range(n_s):
            for a in range(n_a):
                dist = outcomes[i][a]
                try:
                    grid.nearest_indices(dist.values, self.snap_tol)
                except SnapFailure as exc:
                    raise exc.at_cell(i, a) from exc
                values[i, a] = float(np.dot(dist.probabilities, cost.evaluate_many(dist.values)))

        logger.info("Utility matrix built: shape %s, range [%.6f, %.6f]",
                    values.shape, np.min(values), np.max(values))
        return UtilityMatrix(values)
