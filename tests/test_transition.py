"""Tests for transition tensor construction and its integrity gate."""

import numpy as np
import pytest

from epi_sdp import (
    CallableDynamics,
    GridSpace,
    ReservoirSISDynamics,
    SnapFailure,
    TensorIntegrityError,
    TransitionDistribution,
    TransitionTensor,
    TransitionTensorBuilder,
)


class TestDeterministicTensor:
    """Deterministic collapse onto one next state."""

    def test_worked_example_cells(self, worked_grids, worked_dynamics):
        grid, actions = worked_grids
        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, worked_dynamics)

        assert tensor.shape == (3, 3, 2)
        expected_next = {(0, 0): 0, (0, 1): 0, (1, 0): 1, (1, 1): 0, (2, 0): 2, (2, 1): 1}
        for (i, a), j in expected_next.items():
            assert tensor.probabilities[i, j, a] == 1.0
            assert tensor.probabilities[i, :, a].sum() == 1.0

    def test_rows_are_stochastic_for_reference_model(self):
        grid = GridSpace.build(0.0, 1.0, 0.05)
        actions = GridSpace.build(0.0, 1.0, 0.25)
        tensor = TransitionTensorBuilder(snap_tol=0.025 + 1e-9).build(grid, actions, ReservoirSISDynamics())

        np.testing.assert_allclose(tensor.row_sums(), 1.0, atol=1e-6)
        assert np.all((tensor.probabilities == 0.0) | (tensor.probabilities == 1.0))

    def test_tight_tolerance_raises_snap_failure_with_cell(self):
        grid = GridSpace.build(0.0, 1.0, 0.05)
        actions = GridSpace.build(0.0, 1.0, 0.5)
        with pytest.raises(SnapFailure) as excinfo:
            TransitionTensorBuilder(snap_tol=1e-15).build(grid, actions, ReservoirSISDynamics())
        failure = excinfo.value
        assert failure.state_index is not None
        assert failure.action_index is not None
        assert failure.distance > 1e-15

    def test_tensor_is_read_only(self, worked_grids, worked_dynamics):
        grid, actions = worked_grids
        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, worked_dynamics)
        with pytest.raises(ValueError):
            tensor.probabilities[0, 0, 0] = 0.5

    def test_absorbing_states(self, worked_grids, worked_dynamics):
        grid, actions = worked_grids
        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, worked_dynamics)
        np.testing.assert_array_equal(tensor.absorbing_states(), [0])


class TestStochasticTensor:
    """Distribution-valued dynamics."""

    def test_mass_is_split_and_accumulated(self, worked_grids):
        grid, actions = worked_grids

        def coin_flip(s, a):
            if a == 0.0:
                return s
            return TransitionDistribution(np.array([s, 0.0]), np.array([0.5, 0.5]))

        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, CallableDynamics(coin_flip))
        assert tensor.probabilities[0, 0, 1] == pytest.approx(1.0)
        assert tensor.probabilities[2, 2, 1] == pytest.approx(0.5)
        assert tensor.probabilities[2, 0, 1] == pytest.approx(0.5)
        np.testing.assert_allclose(tensor.row_sums(), 1.0)

    def test_unnormalized_rows_are_rejected(self, worked_grids):
        grid, actions = worked_grids

        def leaky(s, a):
            return TransitionDistribution(np.array([s, 0.0]), np.array([0.5, 0.4]))

        with pytest.raises(TensorIntegrityError) as excinfo:
            TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, CallableDynamics(leaky))
        error = excinfo.value
        assert len(error.pairs) == 6
        assert (1, 0) in error.pairs
        assert error.row_sums[0] == pytest.approx(0.9)

    def test_negative_mass_is_rejected(self):
        probabilities = np.zeros((2, 2, 1))
        probabilities[0, :, 0] = [1.5, -0.5]
        probabilities[1, 1, 0] = 1.0
        with pytest.raises(TensorIntegrityError) as excinfo:
            TransitionTensor(probabilities).check_integrity()
        assert excinfo.value.pairs == [(0, 0)]


class TestSerialization:
    """Flat row-major buffers."""

    def test_buffer_round_trip(self, worked_grids, worked_dynamics):
        grid, actions = worked_grids
        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, worked_dynamics)
        buffer, shape = tensor.to_buffer()

        assert buffer.ndim == 1
        assert shape == (3, 3, 2)
        # row-major: cell (i, j, a) lives at (i * 3 + j) * 2 + a
        assert buffer[(2 * 3 + 1) * 2 + 1] == 1.0

        restored = TransitionTensor.from_buffer(buffer, shape)
        np.testing.assert_array_equal(restored.probabilities, tensor.probabilities)

    def test_corrupted_buffer_fails_integrity(self, worked_grids, worked_dynamics):
        grid, actions = worked_grids
        tensor = TransitionTensorBuilder(snap_tol=1e-9).build(grid, actions, worked_dynamics)
        buffer, shape = tensor.to_buffer()
        buffer[0] = 0.0
        with pytest.raises(TensorIntegrityError):
            TransitionTensor.from_buffer(buffer, shape)
