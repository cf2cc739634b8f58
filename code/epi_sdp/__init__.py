"""
Stochastic dynamic programming for disease-control capital allocation.

Discretizes prevalence (state) and the capital split between treatment and
environmental control (action) onto grids, builds the transition tensor and
utility matrix, runs finite-horizon backward induction and extracts a
deterministic policy with a median tie-break.
"""

from .config import (
    GridConfig,
    SDPConfig,
    ToleranceConfig,
    TransmissionParams,
    load_config,
    load_scenarios,
)
from .errors import ConfigError, SDPError, SnapFailure, SolverError, TensorIntegrityError
from .grid_space import GridSpace
from .models import (
    CallableCost,
    CallableDynamics,
    CostModel,
    DynamicsModel,
    PrevalenceCost,
    ReservoirSISDynamics,
    TransitionDistribution,
    evaluate_outcomes,
)
from .pipeline import SDPPipeline, SDPResult, load_result
from .policy import Policy, PolicyExtractor, median_tie_break
from .solver_cpu import BackwardInductionResult, ValueIterationSolver
from .transition import TransitionTensor, TransitionTensorBuilder
from .utility import UtilityMatrix, UtilityMatrixBuilder

__version__ = "0.1.0"

__all__ = [
    "GridConfig",
    "SDPConfig",
    "ToleranceConfig",
    "TransmissionParams",
    "load_config",
    "load_scenarios",
    "ConfigError",
    "SDPError",
    "SnapFailure",
    "SolverError",
    "TensorIntegrityError",
    "GridSpace",
    "CallableCost",
    "CallableDynamics",
    "CostModel",
    "DynamicsModel",
    "PrevalenceCost",
    "ReservoirSISDynamics",
    "TransitionDistribution",
    "evaluate_outcomes",
    "SDPPipeline",
    "SDPResult",
    "load_result",
    "Policy",
    "PolicyExtractor",
    "median_tie_break",
    "BackwardInductionResult",
    "ValueIterationSolver",
    "TransitionTensor",
    "TransitionTensorBuilder",
    "UtilityMatrix",
    "UtilityMatrixBuilder",
]
