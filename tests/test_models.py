"""Tests for the dynamics and cost collaborators."""

import numpy as np
import pytest

from epi_sdp import (
    CallableDynamics,
    ConfigError,
    PrevalenceCost,
    SDPError,
    ReservoirSISDynamics,
    TransitionDistribution,
    TransmissionParams,
    evaluate_outcomes,
)


@pytest.fixture
def dynamics():
    return ReservoirSISDynamics(TransmissionParams())


class TestReservoirSISDynamics:
    """One-period reservoir SIS transition."""

    @pytest.mark.parametrize("action", [0.0, 0.25, 0.5, 1.0])
    def test_zero_prevalence_is_absorbing(self, dynamics, action):
        assert dynamics.step(0.0, action) == pytest.approx(0.0, abs=1e-15)

    def test_outcomes_stay_in_unit_interval(self, dynamics):
        states = np.linspace(0.0, 1.0, 21)
        for action in (0.0, 0.5, 1.0):
            next_states = dynamics.step_many(states, action)
            assert np.all(next_states >= 0.0)
            assert np.all(next_states <= 1.0)

    def test_failed_integration_raises_config_error(self, dynamics, monkeypatch):
        class FailedSolution:
            success = False
            message = "step size fell below minimum"

        monkeypatch.setattr("epi_sdp.models.solve_ivp", lambda *args, **kwargs: FailedSolution())
        with pytest.raises(SDPError) as excinfo:
            dynamics.step(0.5, 0.25)
        assert isinstance(excinfo.value, ConfigError)
        assert excinfo.value.value["action"] == 0.25
        assert excinfo.value.value["params"]["recovery"] == TransmissionParams().recovery

    def test_monotone_in_prevalence(self, dynamics):
        states = np.linspace(0.0, 1.0, 41)
        for action in (0.0, 0.3, 1.0):
            next_states = dynamics.step_many(states, action)
            assert np.all(np.diff(next_states) >= -1e-9)

    def test_batched_matches_single_step(self, dynamics):
        states = np.array([0.1, 0.4, 0.8])
        batched = dynamics.step_many(states, 0.6)
        single = [dynamics.step(s, 0.6) for s in states]
        np.testing.assert_allclose(batched, single, rtol=1e-6, atol=1e-8)

    def test_intervention_rates(self, dynamics):
        p = dynamics.params
        assert dynamics.recovery_rate(1.0) == pytest.approx(p.recovery + p.treatment_efficacy * p.budget)
        assert dynamics.decay_rate(0.0) == pytest.approx(p.env_decay + p.sanitation_efficacy * p.budget)
        assert dynamics.decay_rate(1.0) == pytest.approx(p.env_decay)

    def test_basic_reproduction_number(self):
        params = TransmissionParams(beta_direct=0.2, beta_env=0.6, shedding=0.5, recovery=0.4,
                                    env_decay=0.5, treatment_efficacy=0.0, sanitation_efficacy=0.0)
        model = ReservoirSISDynamics(params)
        # (0.2 + 0.6 * 0.5 / 0.5) / 0.4
        assert model.basic_reproduction_number(0.5) == pytest.approx(2.0)

    def test_disease_dies_out_below_threshold(self):
        params = TransmissionParams(beta_direct=0.05, beta_env=0.05, recovery=0.5)
        model = ReservoirSISDynamics(params)
        assert model.basic_reproduction_number(0.0) < 1.0
        assert model.step(0.5, 0.0) < 0.5

    def test_zero_environmental_decay_is_rejected(self):
        params = TransmissionParams.model_construct(**{**TransmissionParams().model_dump(), "env_decay": 0.0})
        with pytest.raises(ConfigError) as excinfo:
            ReservoirSISDynamics(params)
        assert excinfo.value.field == "env_decay"


class TestCostAndOutcomes:
    """Cost models and outcome tables."""

    def test_prevalence_cost(self):
        cost = PrevalenceCost(100.0)
        assert cost.evaluate(0.25) == pytest.approx(-25.0)
        np.testing.assert_allclose(cost.evaluate_many(np.array([0.0, 0.5, 1.0])), [0.0, -50.0, -100.0])

    def test_prevalence_cost_rejects_non_positive_weight(self):
        with pytest.raises(ConfigError):
            PrevalenceCost(0.0)

    def test_distribution_shape_mismatch(self):
        with pytest.raises(ValueError):
            TransitionDistribution(np.array([0.1, 0.2]), np.array([1.0]))

    @pytest.mark.parametrize("probabilities", [[1.5, -0.5], [np.nan, 1.0], [np.inf, 0.0]])
    def test_distribution_rejects_invalid_mass(self, probabilities):
        with pytest.raises(ValueError):
            TransitionDistribution(np.array([0.5, 0.5]), np.array(probabilities))

    def test_floats_become_point_distributions(self):
        dynamics = CallableDynamics(lambda s, a: s * (1.0 - a))
        outcomes = evaluate_outcomes(np.array([0.0, 0.5]), np.array([0.0, 1.0]), dynamics)
        assert outcomes[1][0].is_deterministic
        np.testing.assert_allclose(outcomes[1][0].values, [0.5])
        np.testing.assert_allclose(outcomes[1][1].values, [0.0])
        np.testing.assert_allclose(outcomes[1][1].probabilities, [1.0])

    def test_parallel_columns_match_serial(self, dynamics):
        states = np.linspace(0.0, 1.0, 11)
        actions = np.linspace(0.0, 1.0, 6)
        serial = evaluate_outcomes(states, actions, dynamics, n_workers=1)
        parallel = evaluate_outcomes(states, actions, dynamics, n_workers=3)
        for i in range(len(states)):
            for a in range(len(actions)):
                np.testing.assert_array_equal(serial[i][a].values, parallel[i][a].values)
