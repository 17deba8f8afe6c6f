import numpy as np
import pytest

from fhncalib.datagen import (
    dataset_from_config,
    generate_dataset,
    observation_noise,
    observation_times,
)
from fhncalib.solver import solve
from tests.conftest import TRUE_PARAMS


def test_observation_times():
    times = observation_times()
    assert len(times) == 10
    assert times[0] == 1.0
    assert times[-1] == 10.0
    assert np.all(np.diff(times) > 0)
    np.testing.assert_allclose(np.diff(times), 1.0)


@pytest.mark.parametrize("kwargs", [{"n": 1}, {"start": 5.0, "stop": 5.0}])
def test_observation_times_rejects_degenerate_grids(kwargs):
    with pytest.raises(ValueError):
        observation_times(**kwargs)


def test_noise_is_reproducible_for_a_fixed_seed():
    a = observation_noise(np.random.default_rng(123), (2, 10), 0.2)
    b = observation_noise(np.random.default_rng(123), (2, 10), 0.2)
    c = observation_noise(np.random.default_rng(124), (2, 10), 0.2)
    np.testing.assert_array_equal(a, b)
    assert not np.array_equal(a, c)


def test_noise_moments_across_seeds():
    draws = np.concatenate(
        [
            observation_noise(np.random.default_rng(seed), (2, 10), 0.2).ravel()
            for seed in range(500)
        ]
    )
    assert draws.size == 10_000
    assert abs(draws.mean()) < 0.02
    assert draws.std() == pytest.approx(0.2, rel=0.1)


@pytest.mark.parametrize("sigma", [0.0, -0.2, float("nan")])
def test_noise_rejects_non_positive_sigma(sigma):
    with pytest.raises(ValueError):
        observation_noise(np.random.default_rng(0), (2, 10), sigma)


def test_dataset_shape_and_dtype(dataset):
    assert dataset.data.shape == (2, 10)
    assert dataset.clean.shape == (2, 10)
    assert np.issubdtype(dataset.data.dtype, np.floating)
    assert dataset.sigma == 0.2
    assert dataset.true_params == TRUE_PARAMS


def test_dataset_is_read_only(dataset):
    with pytest.raises(ValueError):
        dataset.data[0, 0] = 0.0
    with pytest.raises(ValueError):
        dataset.times[0] = 0.0


def test_first_observation_is_trajectory_plus_seeded_noise(problem):
    times = observation_times()
    dataset = generate_dataset(problem, times, 0.2, np.random.default_rng(7))

    expected_noise = np.random.default_rng(7).normal(0.0, 0.2, size=(2, 10))
    trajectory = solve(problem)

    np.testing.assert_allclose(dataset.clean[:, 0], trajectory(1.0))
    np.testing.assert_allclose(dataset.data[:, 0], trajectory(1.0) + expected_noise[:, 0])
    np.testing.assert_allclose(dataset.noise, expected_noise)


def test_dataset_from_config_uses_data_seed(experiment_config, problem):
    a = dataset_from_config(experiment_config, problem)
    b = dataset_from_config(experiment_config, problem)
    c = dataset_from_config(experiment_config, problem, seed=experiment_config.data_seed + 1)
    np.testing.assert_array_equal(a.data, b.data)
    np.testing.assert_array_equal(a.clean, c.clean)
    assert not np.array_equal(a.data, c.data)
