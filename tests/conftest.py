"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from epi_sdp import CallableCost, CallableDynamics, GridSpace, SDPConfig

# step(state, action) table of the three-state worked example
WORKED_TABLE = {
    (0.0, 0.0): 0.0,
    (0.0, 1.0): 0.0,
    (0.5, 0.0): 0.5,
    (0.5, 1.0): 0.0,
    (1.0, 0.0): 1.0,
    (1.0, 1.0): 0.5,
}


@pytest.fixture
def project_root():
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def scenarios_path(project_root):
    return project_root / "configs" / "scenarios.yaml"


@pytest.fixture
def worked_grids():
    """State grid {0, 0.5, 1} and action grid {0, 1}."""
    return GridSpace.build(0.0, 1.0, 0.5), GridSpace.build(0.0, 1.0, 1.0)


@pytest.fixture
def worked_dynamics():
    return CallableDynamics(lambda s, a: WORKED_TABLE[(round(s, 6), round(a, 6))])


@pytest.fixture
def linear_cost():
    return CallableCost(lambda s: -100.0 * s)


@pytest.fixture
def coarse_config():
    """Reference model on 0.05 grids, small enough for fast tests."""
    return SDPConfig(
        state_grid={"lo": 0.0, "hi": 1.0, "step": 0.05},
        action_grid={"lo": 0.0, "hi": 1.0, "step": 0.1},
        horizon=10,
        discount=0.95,
    )
