from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from fhncalib.config_schema import ExperimentConfig, SolverConfig
from fhncalib.model import ODEProblem
from fhncalib.solver import solve


@dataclass(frozen=True)
class SyntheticDataset:
    """
    Noisy observations of a trajectory.

    Attributes:
        times: Observation times, shape (n_obs,).
        clean: Noise-free states at the observation times, shape (n_states, n_obs).
        data: Observed states, `clean` plus Gaussian noise, shape (n_states, n_obs).
        sigma: Standard deviation of the observation noise.
        true_params: Parameter vector the trajectory was generated with.
    """

    times: np.ndarray
    clean: np.ndarray
    data: np.ndarray
    sigma: float
    true_params: Tuple[float, ...]

    @property
    def noise(self) -> np.ndarray:
        return self.data - self.clean

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape


def observation_times(
    start: float = 1.0, stop: float = 10.0, n: int = 10
) -> np.ndarray:
    """Equally spaced observation times in [start, stop], both ends included."""
    if n < 2:
        raise ValueError(f"Need at least two observation times, got n={n}")
    if stop <= start:
        raise ValueError("stop must be greater than start")
    return np.linspace(start, stop, n)


def observation_noise(
    rng: np.random.Generator, shape: Tuple[int, ...], sigma: float
) -> np.ndarray:
    """Independent zero-mean Gaussian noise with standard deviation `sigma`."""
    if not sigma > 0:
        raise ValueError(f"Noise standard deviation must be positive, got {sigma}")
    return rng.normal(0.0, sigma, size=shape)


def _read_only(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=np.float64)
    a.flags.writeable = False
    return a


def generate_dataset(
    problem: ODEProblem,
    times: np.ndarray,
    sigma: float,
    rng: np.random.Generator,
    params=None,
    solver_config: Optional[SolverConfig] = None,
) -> SyntheticDataset:
    """Sample the trajectory at `times` and perturb every state with N(0, sigma^2).

    The noise is drawn once from `rng`; the returned arrays are read-only so the
    same dataset can be handed to every inference back-end.
    """
    params = problem.params if params is None else params
    trajectory = solve(problem, params=params, solver_config=solver_config)
    clean = trajectory.evaluate(times)
    noisy = clean + observation_noise(rng, clean.shape, sigma)

    return SyntheticDataset(
        times=_read_only(times),
        clean=_read_only(clean),
        data=_read_only(noisy),
        sigma=float(sigma),
        true_params=tuple(float(p) for p in params),
    )


def dataset_from_config(
    experiment_config: ExperimentConfig,
    problem: ODEProblem,
    seed: Optional[int] = None,
) -> SyntheticDataset:
    """Generate the experiment's dataset; `seed` overrides the configured data seed."""
    start, stop, n = experiment_config.obs_times
    rng = np.random.default_rng(
        experiment_config.data_seed if seed is None else seed
    )
    return generate_dataset(
        problem,
        observation_times(start, stop, n),
        experiment_config.obs_noise_std,
        rng,
        params=experiment_config.true_params,
        solver_config=experiment_config.solver,
    )
