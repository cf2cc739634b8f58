"""
Exception hierarchy for the disease-control SDP solver.

Every error carries the offending indices/values so a failed configuration
can be diagnosed without re-running the pipeline. None of them are retried:
construction is deterministic and would fail the same way again.
"""

from typing import List, Optional, Sequence, Tuple


class SDPError(Exception):
    """Base class for all solver errors"""


class ConfigError(SDPError, ValueError):
    """Invalid grid bounds/steps, discount, horizon or degenerate model parameters"""

    def __init__(self, message: str, field: Optional[str] = None, value=None):
        self.field = field
        self.value = value
        super().__init__(message)


class SnapFailure(SDPError):
    """
    A continuous value lies farther from every grid point than the tolerance.

    Attributes:
        value: The value that could not be snapped
        best_candidate: Index of the closest grid point
        distance: Distance to that grid point
        tolerance: Tolerance that was exceeded
        state_index, action_index: Originating (state, action) cell, when known
    """

    def __init__(
        self,
        value: float,
        best_candidate: int,
        distance: float,
        tolerance: float,
        state_index: Optional[int] = None,
        action_index: Optional[int] = None,
    ):
        self.value = value
        self.best_candidate = best_candidate
        self.distance = distance
        self.tolerance = tolerance
        self.state_index = state_index
        self.action_index = action_index

        message = (f"Value {value!r} is {distance:.3e} from nearest grid index "
                   f"{best_candidate}, tolerance {tolerance:.3e}")
        if state_index is not None:
            message += f" (state index {state_index}, action index {action_index})"
        super().__init__(message)

    def at_cell(self, state_index: int, action_index: int) -> "SnapFailure":
        """Copy of this failure tagged with the (state, action) cell that produced it"""
        return SnapFailure(
            self.value, self.best_candidate, self.distance, self.tolerance,
            state_index=state_index, action_index=action_index,
        )


class TensorIntegrityError(SDPError):
    """
    A transition row (i, ., a) does not sum to 1 within the probability tolerance,
    or holds mass outside [0, 1].

    Attributes:
        pairs: Offending (state_index, action_index) pairs
        row_sums: Row sums for those pairs, same order
    """

    def __init__(self, pairs: Sequence[Tuple[int, int]], row_sums: Sequence[float], tolerance: float):
        self.pairs: List[Tuple[int, int]] = [(int(i), int(a)) for i, a in pairs]
        self.row_sums: List[float] = [float(s) for s in row_sums]
        self.tolerance = tolerance

        i, a = self.pairs[0]
        super().__init__(
            f"Transition row (state {i}, action {a}) sums to {self.row_sums[0]!r}, "
            f"expected 1 within {tolerance:.1e}; {len(self.pairs)} bad row(s) in total"
        )


class SolverError(SDPError, RuntimeError):
    """No action attains a finite maximum for some state"""

    def __init__(self, state_indices: Sequence[int], period: Optional[int] = None):
        self.state_indices: List[int] = [int(s) for s in state_indices]
        self.period = period

        where = f" at period {period}" if period is not None else ""
        super().__init__(
            f"No finite action value{where} for state indices {self.state_indices[:10]}"
            + (" ..." if len(self.state_indices) > 10 else "")
        )
