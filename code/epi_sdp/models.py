"""
Dynamics and cost collaborators.

`DynamicsModel.step(state, action)` advances prevalence by one decision period
and `CostModel.evaluate(state)` gives the per-period utility of occupying a
state (costs are expressed as negative magnitudes, the solver maximizes).
Both are pure functions of their inputs and an immutable parameter record,
so columns of the outcome table can be evaluated concurrently.

A dynamics model may return either a float (deterministic collapse onto one
next state) or a `TransitionDistribution` over several next states.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
from scipy.integrate import solve_ivp

from .config import TransmissionParams
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionDistribution:
    """Finite distribution over next-state values"""

    values: np.ndarray
    probabilities: np.ndarray

    def __post_init__(self):
        values = np.atleast_1d(np.asarray(self.values, dtype=float))
        probabilities = np.atleast_1d(np.asarray(self.probabilities, dtype=float))
        if values.shape != probabilities.shape or values.ndim != 1:
            raise ValueError(f"values {values.shape} and probabilities {probabilities.shape} "
                             f"must be 1-D arrays of the same length")
        if not np.all(np.isfinite(probabilities)) or np.any(probabilities < 0.0):
            raise ValueError(f"Probabilities must be finite and non-negative, got {probabilities}")
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "probabilities", probabilities)

    @classmethod
    def point(cls, value: float) -> "TransitionDistribution":
        """Deterministic outcome"""
        return cls(np.array([float(value)]), np.array([1.0]))

    @property
    def is_deterministic(self) -> bool:
        return self.values.shape[0] == 1


Outcome = Union[float, TransitionDistribution]


def as_distribution(outcome: Outcome) -> TransitionDistribution:
    if isinstance(outcome, TransitionDistribution):
        return outcome
    return TransitionDistribution.point(float(outcome))


class DynamicsModel(ABC):
    """One-period state transition f(state, action) -> next state"""

    @abstractmethod
    def step(self, state: float, action: float) -> Outcome:
        ...

    def step_many(self, states: np.ndarray, action: float) -> Sequence[Outcome]:
        """Outcomes for every state under one action; override to vectorize"""
        return [self.step(float(s), action) for s in states]


class CostModel(ABC):
    """Per-period utility g(state)"""

    @abstractmethod
    def evaluate(self, state: float) -> float:
        ...

    def evaluate_many(self, states: np.ndarray) -> np.ndarray:
        return np.array([self.evaluate(float(s)) for s in states], dtype=float)


class CallableDynamics(DynamicsModel):
    """Wrap a plain function `func(state, action)` as a DynamicsModel"""

    def __init__(self, func: Callable[[float, float], Outcome]):
        self.func = func

    def step(self, state: float, action: float) -> Outcome:
        return self.func(state, action)


class CallableCost(CostModel):
    """Wrap a plain function `func(state)` as a CostModel"""

    def __init__(self, func: Callable[[float], float]):
        self.func = func

    def evaluate(self, state: float) -> float:
        return float(self.func(state))


class PrevalenceCost(CostModel):
    """Cost proportional to prevalence: g(s) = -cost_per_case * s"""

    def __init__(self, cost_per_case: float = 100.0):
        if cost_per_case <= 0:
            raise ConfigError(f"cost_per_case must be positive, got {cost_per_case}",
                              field="cost_per_case", value=cost_per_case)
        self.cost_per_case = float(cost_per_case)

    def evaluate(self, state: float) -> float:
        return -self.cost_per_case * float(state)

    def evaluate_many(self, states: np.ndarray) -> np.ndarray:
        return -self.cost_per_case * np.asarray(states, dtype=float)


class ReservoirSISDynamics(DynamicsModel):
    """
    SIS prevalence with an environmental reservoir, integrated over one period.

        dI/dt = (beta_direct * I + beta_env * W) * (1 - I) - gamma_eff * I
        dW/dt = shedding * I - decay_eff * W

    with gamma_eff = recovery + treatment_efficacy * budget * a and
    decay_eff = env_decay + sanitation_efficacy * budget * (1 - a), where the
    action a in [0, 1] is the capital fraction spent on treatment. The reservoir
    starts each period at its quasi-equilibrium W0 = shedding * I / decay_eff.
    Zero prevalence is absorbing.

    Parameters:
        params: Epidemiological parameter record
        rtol, atol: solve_ivp tolerances
    """

    def __init__(self, params: Optional[TransmissionParams] = None,
                 rtol: float = 1e-8, atol: float = 1e-10):
        params = params or TransmissionParams()
        if params.env_decay <= 0:
            raise ConfigError("Environmental decay rate must be positive (reservoir "
                              "equilibrium divides by it)", field="env_decay", value=params.env_decay)
        if params.recovery <= 0:
            raise ConfigError("Recovery rate must be positive", field="recovery", value=params.recovery)
        self.params = params
        self.rtol = rtol
        self.atol = atol

    def recovery_rate(self, action: float) -> float:
        p = self.params
        return p.recovery + p.treatment_efficacy * p.budget * action

    def decay_rate(self, action: float) -> float:
        p = self.params
        return p.env_decay + p.sanitation_efficacy * p.budget * (1.0 - action)

    def basic_reproduction_number(self, action: float) -> float:
        """R0 of the linearized system at the disease-free state"""
        p = self.params
        return (p.beta_direct + p.beta_env * p.shedding / self.decay_rate(action)) / self.recovery_rate(action)

    def step(self, state: float, action: float) -> float:
        return float(self.step_many(np.array([state], dtype=float), action)[0])

    def step_many(self, states: np.ndarray, action: float) -> np.ndarray:
        """Integrate every state of one action column as a single ODE system"""
        states = np.asarray(states, dtype=float)
        n = states.shape[0]
        p = self.params
        gamma_eff = self.recovery_rate(action)
        decay_eff = self.decay_rate(action)

        def rhs(t, y):
            I = y[:n]
            W = y[n:]
            dI = (p.beta_direct * I + p.beta_env * W) * (1.0 - I) - gamma_eff * I
            dW = p.shedding * I - decay_eff * W
            return np.concatenate([dI, dW])

        y0 = np.concatenate([states, p.shedding * states / decay_eff])
        sol = solve_ivp(rhs, (0.0, p.period), y0, method="RK45",
                        rtol=self.rtol, atol=self.atol)
        if not sol.success:
            raise ConfigError(f"Integration failed for action {action} with {p!r}: {sol.message}",
                              field="model", value={"action": action, "params": p.model_dump()})

        next_states = sol.y[:n, -1]
        # zero prevalence stays exactly zero
        next_states[states == 0.0] = 0.0
        return np.clip(next_states, 0.0, 1.0)


def evaluate_outcomes(
    states: np.ndarray,
    actions: np.ndarray,
    dynamics: DynamicsModel,
    n_workers: int = 1,
) -> List[List[TransitionDistribution]]:
    """
    Evaluate the dynamics over every (state, action) grid pair.

    Each action column is evaluated independently and written to its own slot,
    so columns can run on a thread pool without locking.

    Returns:
        outcomes[i][a]: TransitionDistribution for state index i and action index a
    """
    n_s, n_a = len(states), len(actions)

    def column(a: int) -> List[TransitionDistribution]:
        raw = dynamics.step_many(states, float(actions[a]))
        if len(raw) != n_s:
            raise ValueError(f"step_many returned {len(raw)} outcomes for {n_s} states")
        return [as_distribution(o) for o in raw]

    if n_workers > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            columns = list(executor.map(column, range(n_a)))
    else:
        columns = [column(a) for a in range(n_a)]

    logger.debug("Evaluated %d x %d outcome table", n_s, n_a)
    return [[columns[a][i] for a in range(n_a)] for i in range(n_s)]
