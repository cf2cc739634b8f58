"""
Single parameterized pipeline: grids -> transition tensor & utility matrix ->
backward induction -> policy.

Scenario variation is configuration-record variation: every scenario runs
through the same `SDPPipeline`, and any parameter change rebuilds the tensor
and utility matrix from scratch.

Usage Example:
----------
```python
config = SDPConfig.from_yaml("configs/scenarios.yaml")
result = SDPPipeline(config).run()

states, actions = result.policy_curve()
path = result.predict(x0=0.3, periods=10)
result.save("baseline.npz")
```
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .config import SDPConfig
from .grid_space import GridSpace
from .models import CostModel, DynamicsModel, PrevalenceCost, ReservoirSISDynamics, evaluate_outcomes
from .policy import Policy, PolicyExtractor
from .solver_cpu import ValueIterationSolver
from .solver_gpu import TorchValueIterationSolver
from .transition import TransitionTensor, TransitionTensorBuilder
from .utility import UtilityMatrix, UtilityMatrixBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SDPResult:
    """
    Artifacts of one pipeline run.

    Attributes:
        config: Configuration record the run was built from
        state_grid, action_grid: Grids used
        transition: Transition tensor (|S|, |S|, |A|)
        utility: Utility matrix (|S|, |A|)
        value: V_0 per state
        q_values: Q_0 per (state, action)
        policy: Policy extracted from Q_0
        policy_sequence: Per-period policies (only with keep_history)
        solve_time: Backward induction wall time in seconds
    """

    config: SDPConfig
    state_grid: GridSpace
    action_grid: GridSpace
    transition: TransitionTensor
    utility: UtilityMatrix
    value: np.ndarray
    q_values: np.ndarray
    policy: Policy
    policy_sequence: List[Policy] = field(default_factory=list)
    solve_time: float = 0.0

    def policy_curve(self, exclude_absorbing: bool = True) -> Tuple[np.ndarray, np.ndarray]:
        """
        State values and recommended action values.

        Absorbing states (e.g. zero prevalence) have no meaningful recommendation
        and are dropped unless `exclude_absorbing` is False.
        """
        keep = np.ones(self.state_grid.size(), dtype=bool)
        if exclude_absorbing:
            keep[self.transition.absorbing_states()] = False
        return self.state_grid.points[keep], self.policy.action_values[keep]

    def predict(self, x0: float, periods: int) -> Dict[str, np.ndarray]:
        """
        Follow the policy on the grid from initial prevalence `x0`.

        Each period moves to the most probable next state of the chosen action.

        Returns:
            Dictionary with keys:
                - 'states': State values, shape (periods + 1,)
                - 'actions': Action values, shape (periods,)
                - 'utilities': Utility per period, shape (periods,)
                - 'discounted_total': Discounted sum of utilities
        """
        if periods < 1:
            raise ValueError(f"periods must be positive, got {periods}")

        i = self.state_grid.nearest_index(x0, self.config.snap_tolerance)
        state_idx = np.zeros(periods + 1, dtype=np.int64)
        action_idx = np.zeros(periods, dtype=np.int64)
        utilities = np.zeros(periods)
        state_idx[0] = i
        for t in range(periods):
            a = self.policy.action_indices[i]
            action_idx[t] = a
            utilities[t] = self.utility.values[i, a]
            i = int(np.argmax(self.transition.probabilities[i, :, a]))
            state_idx[t + 1] = i

        discount_factors = self.config.discount ** np.arange(periods)
        return {
            "states": self.state_grid.points[state_idx],
            "actions": self.action_grid.points[action_idx],
            "utilities": utilities,
            "discounted_total": float(np.sum(utilities * discount_factors)),
        }

    def save(self, path: Union[str, Path]) -> Path:
        """
        Persist arrays as flat row-major buffers with their dimensions (numpy .npz).
        """
        path = Path(path)
        if path.suffix != ".npz":
            path = path.with_name(path.name + ".npz")
        transition_buffer, transition_shape = self.transition.to_buffer()
        utility_buffer, utility_shape = self.utility.to_buffer()
        np.savez(
            path,
            config=np.array(self.config.model_dump_json()),
            transition=transition_buffer,
            transition_shape=np.array(transition_shape),
            utility=utility_buffer,
            utility_shape=np.array(utility_shape),
            value=self.value,
            q_values=self.q_values,
            action_indices=self.policy.action_indices,
            tie_counts=self.policy.tie_counts,
            solve_time=np.array(self.solve_time),
        )
        logger.info("Saved result to %s", path)
        return path

    def summary(self) -> Dict[str, Any]:
        """Headline numbers of the run"""
        return {
            "states": self.state_grid.size(),
            "actions": self.action_grid.size(),
            "tensor_cells": int(np.prod(self.transition.shape)),
            "horizon": self.config.horizon,
            "discount": self.config.discount,
            "value_range": (float(np.min(self.value)), float(np.max(self.value))),
            "tied_states": int(self.policy.tied_states.shape[0]),
            "solve_time": self.solve_time,
        }


def load_result(path: Union[str, Path]) -> SDPResult:
    """Rebuild an SDPResult saved with `SDPResult.save`; per-period policies are not stored"""
    with np.load(Path(path), allow_pickle=False) as data:
        config = SDPConfig.model_validate_json(str(data["config"]))
        state_grid = GridSpace.from_config(config.state_grid, config.tolerances.grid)
        action_grid = GridSpace.from_config(config.action_grid, config.tolerances.grid)
        transition = TransitionTensor.from_buffer(data["transition"], tuple(data["transition_shape"]),
                                                  config.tolerances.probability)
        utility = UtilityMatrix.from_buffer(data["utility"], tuple(data["utility_shape"]))
        policy = Policy(data["action_indices"], data["tie_counts"], action_grid)
        value = data["value"].copy()
        q_values = data["q_values"].copy()
        solve_time = float(data["solve_time"])

    value.flags.writeable = False
    q_values.flags.writeable = False
    return SDPResult(config=config, state_grid=state_grid, action_grid=action_grid,
                     transition=transition, utility=utility, value=value, q_values=q_values,
                     policy=policy, solve_time=solve_time)


class SDPPipeline:
    """
    Builds and solves the disease-control MDP for one configuration record.

    Parameters:
        config: Configuration record
        dynamics: Transition model; defaults to ReservoirSISDynamics(config.model)
        cost: Utility model; defaults to PrevalenceCost(config.cost_per_case)
    """

    def __init__(self, config: Optional[SDPConfig] = None,
                 dynamics: Optional[DynamicsModel] = None,
                 cost: Optional[CostModel] = None):
        self.config = config or SDPConfig()
        self.dynamics = dynamics if dynamics is not None else ReservoirSISDynamics(self.config.model)
        self.cost = cost if cost is not None else PrevalenceCost(self.config.cost_per_case)

        grid_tol = self.config.tolerances.grid
        self.state_grid = GridSpace.from_config(self.config.state_grid, grid_tol)
        self.action_grid = GridSpace.from_config(self.config.action_grid, grid_tol)

    def build_arrays(self) -> Tuple[TransitionTensor, UtilityMatrix]:
        """Evaluate the dynamics once and build both the tensor and the utility matrix"""
        config = self.config
        n_cells = self.state_grid.size() ** 2 * self.action_grid.size()
        logger.info("State grid: %d points, action grid: %d points, tensor cells: %d",
                    self.state_grid.size(), self.action_grid.size(), n_cells)

        outcomes = evaluate_outcomes(self.state_grid.points, self.action_grid.points,
                                     self.dynamics, config.n_workers)
        transition = TransitionTensorBuilder(
            config.snap_tolerance, config.tolerances.probability, config.n_workers,
        ).build(self.state_grid, self.action_grid, self.dynamics, outcomes)
        utility = UtilityMatrixBuilder(config.snap_tolerance, config.n_workers).build(
            self.state_grid, self.action_grid, self.dynamics, self.cost, outcomes)
        return transition, utility

    def make_solver(self):
        config = self.config
        if config.backend == "torch":
            return TorchValueIterationSolver(config.discount, config.horizon,
                                             device=config.device, keep_history=config.keep_history,
                                             prob_tol=config.tolerances.probability)
        return ValueIterationSolver(config.discount, config.horizon,
                                    n_workers=config.n_workers, keep_history=config.keep_history,
                                    prob_tol=config.tolerances.probability)

    def run(self) -> SDPResult:
        start_time = time.time()
        transition, utility = self.build_arrays()
        solution = self.make_solver().solve(transition, utility)

        extractor = PolicyExtractor(self.config.rounding_digits)
        policy = extractor.extract(solution.q_values, self.action_grid)
        policy_sequence = extractor.extract_sequence(solution.q_history, self.action_grid)

        logger.info("Pipeline finished in %.3f seconds (%d tied states)",
                    time.time() - start_time, policy.tied_states.shape[0])
        return SDPResult(
            config=self.config,
            state_grid=self.state_grid,
            action_grid=self.action_grid,
            transition=transition,
            utility=utility,
            value=solution.value,
            q_values=solution.q_values,
            policy=policy,
            policy_sequence=policy_sequence,
            solve_time=solution.solve_time,
        )
