"""
Deterministic policy extraction with a median tie-break.

Action values are rounded to a fixed number of decimals so that floating
noise does not separate near-equal actions. When several actions share the
rounded maximum, the action at the median position of the tied index set is
chosen: the middle element for an odd count, the lower-middle element for an
even count. Because actions are ordered by grid index, this keeps the policy
curve away from wall-to-wall corner solutions and makes it reproducible.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import SolverError
from .grid_space import GridSpace

logger = logging.getLogger(__name__)


def median_tie_break(tied: Sequence[int]) -> int:
    """Lower-median element of the ascending tied action indices"""
    tied = sorted(int(a) for a in tied)
    if not tied:
        raise ValueError("Cannot break a tie over an empty action set")
    return tied[(len(tied) - 1) // 2]


@dataclass(frozen=True)
class Policy:
    """
    Per-state action recommendation.

    Attributes:
        action_indices: Chosen action grid index per state, shape (n_states,)
        tie_counts: Number of actions sharing the rounded maximum per state
        action_grid: Grid used to translate indices to action values (optional)
    """

    action_indices: np.ndarray
    tie_counts: np.ndarray
    action_grid: Optional[GridSpace] = None

    def __post_init__(self):
        for name in ("action_indices", "tie_counts"):
            array = np.array(getattr(self, name), dtype=np.int64)
            array.flags.writeable = False
            object.__setattr__(self, name, array)

    def __len__(self) -> int:
        return self.action_indices.shape[0]

    @property
    def action_values(self) -> np.ndarray:
        """Action values per state"""
        if self.action_grid is None:
            raise ValueError("Policy was extracted without an action grid")
        return self.action_grid.points[self.action_indices]

    @property
    def tied_states(self) -> np.ndarray:
        """Indices of states where the tie-break was applied"""
        return np.flatnonzero(self.tie_counts > 1)


class PolicyExtractor:
    """
    Parameters:
        rounding_digits: Decimal places applied to action values before comparing
    """

    def __init__(self, rounding_digits: int = 6):
        if rounding_digits < 0:
            raise ValueError(f"rounding_digits must be non-negative, got {rounding_digits}")
        self.rounding_digits = int(rounding_digits)

    def extract(self, q_values: np.ndarray, action_grid: Optional[GridSpace] = None) -> Policy:
        """
        Parameters:
            q_values: Action-value matrix, shape (n_states, n_actions)
            action_grid: Optional action grid attached to the policy

        Raises:
            SolverError: If some state has no finite action value
        """
        q_values = np.asarray(q_values, dtype=float)
        if q_values.ndim != 2:
            raise ValueError(f"Q matrix must be 2-D, got shape {q_values.shape}")
        if action_grid is not None and action_grid.size() != q_values.shape[1]:
            raise ValueError(f"Action grid has {action_grid.size()} points, "
                             f"Q matrix has {q_values.shape[1]} actions")

        rounded = np.round(q_values, self.rounding_digits)
        finite = np.isfinite(rounded)
        missing = ~np.any(finite, axis=1)
        if np.any(missing):
            raise SolverError(np.flatnonzero(missing))

        rounded = np.where(finite, rounded, -np.inf)
        best = np.max(rounded, axis=1)

        n_s = q_values.shape[0]
        action_indices = np.empty(n_s, dtype=np.int64)
        tie_counts = np.empty(n_s, dtype=np.int64)
        for s in range(n_s):
            tied = np.flatnonzero(rounded[s] == best[s])
            tie_counts[s] = tied.shape[0]
            action_indices[s] = median_tie_break(tied)

        logger.debug("Extracted policy for %d states, %d with ties", n_s, int(np.sum(tie_counts > 1)))
        return Policy(action_indices, tie_counts, action_grid)

    def extract_sequence(self, q_history: Sequence[np.ndarray],
                         action_grid: Optional[GridSpace] = None) -> List[Policy]:
        """One policy per period, in period order t = 0 ... T-1"""
        return [self.extract(q, action_grid) for q in q_history]
