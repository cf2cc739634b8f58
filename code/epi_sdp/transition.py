"""
Transition tensor construction.

For every (state index i, action index a) the dynamics outcome is snapped onto
the state grid and its probability mass written to P[i, :, a]. Every row is
then checked to sum to 1; an unnormalized row would silently corrupt every
backward-induction value, so the check is not optional.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .errors import SnapFailure, TensorIntegrityError
from .grid_space import GridSpace
from .models import DynamicsModel, TransitionDistribution, evaluate_outcomes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionTensor:
    """
    Read-only probability tensor indexed by (state, next_state, action).

    Attributes:
        probabilities: Array of shape (n_states, n_states, n_actions)
    """

    probabilities: np.ndarray

    def __post_init__(self):
        probabilities = np.array(self.probabilities, dtype=float)
        if probabilities.ndim != 3 or probabilities.shape[0] != probabilities.shape[1]:
            raise ValueError(f"Transition tensor must have shape (S, S, A), got {probabilities.shape}")
        probabilities.flags.writeable = False
        object.__setattr__(self, "probabilities", probabilities)

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.probabilities.shape

    @property
    def n_states(self) -> int:
        return self.probabilities.shape[0]

    @property
    def n_actions(self) -> int:
        return self.probabilities.shape[2]

    def row_sums(self) -> np.ndarray:
        """Sum over next states, shape (n_states, n_actions)"""
        return self.probabilities.sum(axis=1)

    def absorbing_states(self) -> np.ndarray:
        """Indices of states that map to themselves with probability 1 under every action"""
        diagonal = np.diagonal(self.probabilities, axis1=0, axis2=1)  # (n_actions, n_states)
        return np.flatnonzero(np.all(diagonal == 1.0, axis=0))

    def check_integrity(self, prob_tol: float = 1e-6) -> None:
        """
        Raises:
            TensorIntegrityError: If any row sum differs from 1 by more than `prob_tol`
                                  or any cell lies outside [0, 1]
        """
        sums = self.row_sums()
        out_of_range = np.any((self.probabilities < 0.0) | (self.probabilities > 1.0 + prob_tol), axis=1)
        bad = (np.abs(sums - 1.0) > prob_tol) | out_of_range | ~np.isfinite(sums)
        if np.any(bad):
            pairs = np.argwhere(bad)
            raise TensorIntegrityError([tuple(p) for p in pairs], sums[bad], prob_tol)

    def to_buffer(self) -> Tuple[np.ndarray, Tuple[int, int, int]]:
        """Flat row-major buffer and its dimensions (n_states, n_states, n_actions)"""
        return np.ravel(self.probabilities, order="C").copy(), self.shape

    @classmethod
    def from_buffer(cls, buffer: np.ndarray, shape: Tuple[int, int, int],
                    prob_tol: float = 1e-6) -> "TransitionTensor":
        """Rebuild from `to_buffer` output; the integrity check runs again"""
        tensor = cls(np.asarray(buffer, dtype=float).reshape(tuple(shape), order="C"))
        tensor.check_integrity(prob_tol)
        return tensor


class TransitionTensorBuilder:
    """
    Builds a TransitionTensor from a state grid, an action grid and dynamics.

    Parameters:
        snap_tol: Maximum distance between a computed next state and its grid point
        prob_tol: Allowed deviation of each row sum from 1
        n_workers: Thread count for outcome evaluation (1 = serial)
    """

    def __init__(self, snap_tol: float, prob_tol: float = 1e-6, n_workers: int = 1):
        self.snap_tol = snap_tol
        self.prob_tol = prob_tol
        self.n_workers = n_workers

    def build(
        self,
        grid: GridSpace,
        action_grid: GridSpace,
        dynamics: DynamicsModel,
        outcomes: Optional[List[List[TransitionDistribution]]] = None,
    ) -> TransitionTensor:
        """
        Parameters:
            grid: State grid
            action_grid: Action grid
            dynamics: One-period transition model
            outcomes: Precomputed outcome table (see `evaluate_outcomes`); computed if None

        Returns:
            TransitionTensor of shape (|S|, |S|, |A|)

        Raises:
            SnapFailure: A next state is outside the snap tolerance (tagged with its cell)
            TensorIntegrityError: A row does not sum to 1
        """
        start_time = time.time()
        n_s, n_a = grid.size(), action_grid.size()
        logger.info("Building transition tensor: %d states x %d actions (%d cells)",
                    n_s, n_a, n_s * n_s * n_a)

        if outcomes is None:
            outcomes = evaluate_outcomes(grid.points, action_grid.points, dynamics, self.n_workers)

        probabilities = np.zeros((n_s, n_s, n_a))
        for i in range(n_s):
            for a in range(n_a):
                dist = outcomes[i][a]
                try:
                    indices = grid.nearest_indices(dist.values, self.snap_tol)
                except SnapFailure as exc:
                    raise exc.at_cell(i, a) from exc
                np.add.at(probabilities[i, :, a], indices, dist.probabilities)

        tensor = TransitionTensor(probabilities)
        tensor.check_integrity(self.prob_tol)

        logger.info("Transition tensor built in %.3f seconds", time.time() - start_time)
        return tensor
