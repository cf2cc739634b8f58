"""
PyTorch backend for backward induction.

Same recurrence and result type as `solver_cpu.ValueIterationSolver`, with the
tensor-vector products running on a torch device. Computation stays in float64
so results match the NumPy backend up to summation order.
"""

import logging
import time

import numpy as np

from .errors import SolverError
from .solver_cpu import BackwardInductionResult, check_shapes, validate_solver_params
from .transition import TransitionTensor
from .utility import UtilityMatrix

logger = logging.getLogger(__name__)

try:
    import torch
    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False


class TorchValueIterationSolver:
    """
    Backward-induction solver on a torch device.

    Parameters:
        discount: Per-period discount factor in (0, 1]
        horizon: Number of periods T
        device: 'cuda', 'cpu' or 'auto'
        keep_history: Retain Q_t for every period
        prob_tol: Row-sum tolerance checked on the tensor before solving
    """

    def __init__(self, discount: float = 0.95, horizon: int = 20,
                 device: str = "auto", keep_history: bool = False, prob_tol: float = 1e-6):
        if not TORCH_AVAILABLE:
            raise ImportError("PyTorch not installed. Please install with: pip install epi-sdp[gpu]")
        validate_solver_params(discount, horizon)

        if device == "auto":
            self.device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        else:
            self.device = torch.device(device)
        self.discount = float(discount)
        self.horizon = int(horizon)
        self.keep_history = keep_history
        self.prob_tol = float(prob_tol)

    def solve(self, transition: TransitionTensor, utility: UtilityMatrix) -> BackwardInductionResult:
        check_shapes(transition, utility)
        transition.check_integrity(self.prob_tol)
        start_time = time.time()
        logger.info("Backward induction on %s: %d states, %d actions, horizon %d",
                    self.device, transition.n_states, transition.n_actions, self.horizon)

        P = torch.as_tensor(np.array(transition.probabilities), dtype=torch.float64, device=self.device)
        U = torch.as_tensor(np.array(utility.values), dtype=torch.float64, device=self.device)

        with torch.no_grad():
            value = torch.zeros(transition.n_states, dtype=torch.float64, device=self.device)
            q_history = []
            q_values = None
            for t in range(self.horizon - 1, -1, -1):
                q_values = U + self.discount * torch.einsum("ija,j->ia", P, value)
                finite = torch.isfinite(q_values)
                missing = ~finite.any(dim=1)
                if bool(missing.any()):
                    raise SolverError(torch.nonzero(missing).flatten().cpu().numpy(), period=t)
                masked = torch.where(finite, q_values, torch.full_like(q_values, -float("inf")))
                value = masked.max(dim=1).values
                if self.keep_history:
                    q_history.append(_to_numpy(q_values))

        q_history.reverse()
        solve_time = time.time() - start_time
        logger.info("Backward induction completed in %.3f seconds", solve_time)
        return BackwardInductionResult(value=_to_numpy(value), q_values=_to_numpy(q_values),
                                       q_history=q_history, solve_time=solve_time)


def _to_numpy(tensor) -> np.ndarray:
    array = tensor.detach().cpu().numpy().copy()
    array.flags.writeable = False
    return array
