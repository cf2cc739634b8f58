"""
Finite-horizon backward induction (NumPy).

    V_T[s] = 0
    Q_t[:, a] = U[:, a] + delta * P[:, :, a] @ V_{t+1}     for t = T-1 ... 0
    V_t[s] = max_a Q_t[s, a]

Each period produces a fresh, read-only V_t from the previous one; nothing is
mutated across periods. Only (V_0, Q_0) is returned by default, which yields a
single time-invariant policy; `keep_history=True` keeps every Q_t so a
per-period policy sequence can be extracted.

Cost is O(T * |S| * |A| * |S|) time and O(|S|^2 * |A|) memory for the tensor:
a 0.01 grid on [0, 1] for both states and actions is 101 x 101 x 101, about
1.03M cells.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .errors import ConfigError, SolverError
from .transition import TransitionTensor
from .utility import UtilityMatrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackwardInductionResult:
    """
    Attributes:
        value: V_0, shape (n_states,)
        q_values: Q_0, shape (n_states, n_actions)
        q_history: [Q_0, Q_1, ..., Q_{T-1}] when history was kept, else empty
        solve_time: Wall time in seconds
    """

    value: np.ndarray
    q_values: np.ndarray
    q_history: List[np.ndarray] = field(default_factory=list)
    solve_time: float = 0.0


def validate_solver_params(discount: float, horizon: int) -> None:
    if not (0.0 < discount <= 1.0):
        raise ConfigError(f"Discount factor must lie in (0, 1], got {discount}",
                          field="discount", value=discount)
    if int(horizon) != horizon or horizon < 1:
        raise ConfigError(f"Horizon must be a positive integer, got {horizon}",
                          field="horizon", value=horizon)


def check_shapes(transition: TransitionTensor, utility: UtilityMatrix) -> None:
    n_s, _, n_a = transition.shape
    if utility.shape != (n_s, n_a):
        raise ConfigError(f"Utility matrix shape {utility.shape} does not match "
                          f"transition tensor shape {transition.shape}")


def finite_max(q_values: np.ndarray, period: Optional[int] = None) -> np.ndarray:
    """
    Row-wise maximum over finite entries.

    Raises:
        SolverError: If some row has no finite entry
    """
    finite = np.isfinite(q_values)
    missing = ~np.any(finite, axis=1)
    if np.any(missing):
        raise SolverError(np.flatnonzero(missing), period=period)
    return np.max(np.where(finite, q_values, -np.inf), axis=1)


def _freeze(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


class ValueIterationSolver:
    """
    Backward-induction solver over a TransitionTensor / UtilityMatrix pair.

    Parameters:
        discount: Per-period discount factor in (0, 1]
        horizon: Number of periods T
        n_workers: Threads used for the per-action Q columns of one period
        keep_history: Retain Q_t for every period
        prob_tol: Row-sum tolerance checked on the tensor before solving
    """

    def __init__(self, discount: float = 0.95, horizon: int = 20,
                 n_workers: int = 1, keep_history: bool = False, prob_tol: float = 1e-6):
        validate_solver_params(discount, horizon)
        self.discount = float(discount)
        self.horizon = int(horizon)
        self.n_workers = n_workers
        self.keep_history = keep_history
        self.prob_tol = float(prob_tol)

    def backup(self, transition: TransitionTensor, utility: UtilityMatrix,
               next_value: np.ndarray, executor: Optional[ThreadPoolExecutor] = None) -> np.ndarray:
        """One Bellman backup: Q[:, a] = U[:, a] + delta * P[:, :, a] @ V_next"""
        P = transition.probabilities
        U = utility.values
        if executor is None:
            return U + self.discount * np.einsum("ija,j->ia", P, next_value)

        q_values = np.empty(U.shape)

        def column(a: int) -> None:
            q_values[:, a] = U[:, a] + self.discount * (P[:, :, a] @ next_value)

        # list() waits for every column before the period is published
        list(executor.map(column, range(U.shape[1])))
        return q_values

    def solve(self, transition: TransitionTensor, utility: UtilityMatrix) -> BackwardInductionResult:
        """
        Run backward induction from t = T-1 down to t = 0.

        Returns:
            BackwardInductionResult with V_0 and Q_0

        Raises:
            TensorIntegrityError: If some row of the tensor is not a distribution
            SolverError: If a state has no finite action value in some period
        """
        check_shapes(transition, utility)
        transition.check_integrity(self.prob_tol)
        start_time = time.time()
        n_s = transition.n_states
        logger.info("Backward induction: %d states, %d actions, horizon %d, discount %s",
                    n_s, transition.n_actions, self.horizon, self.discount)

        executor = ThreadPoolExecutor(max_workers=self.n_workers) if self.n_workers > 1 else None
        try:
            value = _freeze(np.zeros(n_s))
            q_values = None
            q_history = []
            for t in range(self.horizon - 1, -1, -1):
                q_values = _freeze(self.backup(transition, utility, value, executor))
                value = _freeze(finite_max(q_values, period=t))
                if self.keep_history:
                    q_history.append(q_values)
                logger.debug("Period %d: value range [%.6f, %.6f]", t, np.min(value), np.max(value))
        finally:
            if executor is not None:
                executor.shutdown()

        q_history.reverse()
        solve_time = time.time() - start_time
        logger.info("Backward induction completed in %.3f seconds, value range [%.6f, %.6f]",
                    solve_time, np.min(value), np.max(value))
        return BackwardInductionResult(value=value, q_values=q_values,
                                       q_history=q_history, solve_time=solve_time)
