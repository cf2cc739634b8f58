"""
Discretized one-dimensional grid with tolerance-aware nearest-point lookup.

Continuous dynamics almost never land exactly on a grid value, so state and
action identity is carried by integer indices and every value-to-index
conversion goes through `nearest_index` / `nearest_indices`.
"""

import logging
from typing import Union

import numpy as np

from .errors import ConfigError, SnapFailure

logger = logging.getLogger(__name__)


class GridSpace:
    """
    Ordered, evenly spaced, immutable set of points covering [lo, hi].

    Parameters:
        lo: Lower bound
        hi: Upper bound
        step: Spacing between consecutive points
        grid_tol: Allowed deviation from even spacing (also absorbs (hi - lo)
                  not being an exact float multiple of step)
    """

    def __init__(self, lo: float, hi: float, step: float, grid_tol: float = 1e-9):
        if not np.isfinite([lo, hi, step]).all():
            raise ConfigError(f"Grid bounds and step must be finite, got lo={lo}, hi={hi}, step={step}")
        if step <= 0:
            raise ConfigError(f"Grid step must be positive, got {step}", field="step", value=step)
        if hi <= lo:
            raise ConfigError(f"Grid upper bound {hi} must exceed lower bound {lo}", field="hi", value=hi)

        n_intervals = int(round((hi - lo) / step))
        if n_intervals < 1 or abs(lo + n_intervals * step - hi) > grid_tol * max(1.0, n_intervals):
            raise ConfigError(
                f"Interval [{lo}, {hi}] is not a whole number of steps of {step}",
                field="step", value=step,
            )

        points = np.linspace(lo, hi, n_intervals + 1)
        spacing = np.diff(points)
        if np.any(spacing <= 0) or np.max(np.abs(spacing - step)) > grid_tol:
            raise ConfigError(f"Grid over [{lo}, {hi}] with step {step} is not evenly spaced "
                              f"within {grid_tol}")
        points.flags.writeable = False

        self.lo = float(lo)
        self.hi = float(hi)
        self.step = float(step)
        self.grid_tol = float(grid_tol)
        self._points = points

    @classmethod
    def build(cls, lo: float, hi: float, step: float, grid_tol: float = 1e-9) -> "GridSpace":
        return cls(lo, hi, step, grid_tol)

    @classmethod
    def from_config(cls, grid_config, grid_tol: float = 1e-9) -> "GridSpace":
        """Build from a GridConfig record"""
        return cls(grid_config.lo, grid_config.hi, grid_config.step, grid_tol)

    @property
    def points(self) -> np.ndarray:
        """Read-only array of grid values"""
        return self._points

    def size(self) -> int:
        return self._points.shape[0]

    def __len__(self) -> int:
        return self.size()

    def value_at(self, index: int) -> float:
        return float(self._points[index])

    def nearest_index(self, value: float, tolerance: float) -> int:
        """
        Index of the grid point closest to `value`.

        A value exactly halfway between two points maps to the lower index.

        Raises:
            SnapFailure: If the closest point is farther than `tolerance`
        """
        return int(self.nearest_indices(np.asarray([value], dtype=float), tolerance)[0])

    def nearest_indices(self, values: Union[np.ndarray, list], tolerance: float) -> np.ndarray:
        """
        Vectorized `nearest_index`.

        Raises:
            SnapFailure: For the first value (in input order) outside `tolerance`
        """
        values = np.asarray(values, dtype=float)
        if values.size == 0:
            return np.zeros(values.shape, dtype=np.int64)

        points = self._points
        upper = np.clip(np.searchsorted(points, values, side="left"), 0, points.shape[0] - 1)
        lower = np.clip(upper - 1, 0, points.shape[0] - 1)
        d_upper = np.abs(points[upper] - values)
        d_lower = np.abs(points[lower] - values)
        indices = np.where(d_lower <= d_upper, lower, upper)
        distances = np.minimum(d_lower, d_upper)

        # NaN distances compare False, so they are caught here too
        bad = ~(distances <= tolerance)
        if np.any(bad):
            k = int(np.flatnonzero(bad.ravel())[0])
            raise SnapFailure(float(values.ravel()[k]), int(indices.ravel()[k]),
                              float(distances.ravel()[k]), tolerance)
        return indices.astype(np.int64)

    def __repr__(self) -> str:
        return f"GridSpace(lo={self.lo}, hi={self.hi}, step={self.step}, size={self.size()})"
