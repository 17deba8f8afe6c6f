"""Prior distributions and the shared log posterior.

Structural parameters get truncated normal priors; the observation noise
variance gets an inverse-gamma prior. Every prior carries the bijection
between the real line and its support so samplers can work in unconstrained
space.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import jax
import jax.numpy as jnp
import numpy as np
import numpyro.distributions as dist
from jax import config
from numpyro.distributions.transforms import biject_to

from fhncalib.config_schema import ExperimentConfig, NoisePrior, Parameter, SolverConfig
from fhncalib.model import ODEProblem
from fhncalib.solver import solve_at

config.update("jax_enable_x64", True)

TRUNCATED_NORMAL = "truncated_normal"
INVERSE_GAMMA = "inverse_gamma"


class PriorConfigError(ValueError):
    """Raised when a prior is specified with invalid parameters."""


class ParameterPrior:
    """A named prior distribution together with its unconstraining bijection."""

    def __init__(self, distribution: dist.Distribution, name: str, record: Dict[str, Any]):
        self.distribution = distribution
        self.name = name
        self.record = record
        self.bijector = biject_to(distribution.support)

    def forward(self, x):
        """Map an unconstrained value onto the support."""
        return self.bijector(x)

    def inverse(self, y):
        """Map a value on the support to the real line."""
        return self.bijector.inv(y)

    def log_abs_det_jacobian(self, x):
        return self.bijector.log_abs_det_jacobian(x, self.forward(x))

    def log_prob(self, value):
        return self.distribution.log_prob(value)

    def sample(self, key: jax.Array, n: int) -> jax.Array:
        return self.distribution.sample(key, (n,))

    def __repr__(self) -> str:
        return f"ParameterPrior(name={self.name!r}, {self.record})"


@dataclass
class PriorSet:
    """Structural-parameter priors plus an optional noise-variance prior."""

    structural: List[ParameterPrior]
    noise: Optional[ParameterPrior] = None

    @property
    def all(self) -> List[ParameterPrior]:
        return self.structural + ([self.noise] if self.noise is not None else [])

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.all]

    @property
    def structural_names(self) -> List[str]:
        return [p.name for p in self.structural]

    def __len__(self) -> int:
        return len(self.all)


def _check_finite(name: str, **values) -> None:
    for key, value in values.items():
        if not math.isfinite(value):
            raise PriorConfigError(f"Prior '{name}': {key}={value} is not finite")


def truncated_normal_prior(
    name: str, loc: float, scale: float, lower: float, upper: float
) -> ParameterPrior:
    _check_finite(name, loc=loc, scale=scale, lower=lower, upper=upper)
    if not scale > 0:
        raise PriorConfigError(f"Prior '{name}': scale must be positive, got {scale}")
    if not lower < upper:
        raise PriorConfigError(
            f"Prior '{name}': lower bound {lower} must be below upper bound {upper}"
        )
    record = {
        "name": name,
        "family": TRUNCATED_NORMAL,
        "loc": float(loc),
        "scale": float(scale),
        "lower": float(lower),
        "upper": float(upper),
    }
    distribution = dist.TruncatedNormal(
        loc=float(loc), scale=float(scale), low=float(lower), high=float(upper)
    )
    return ParameterPrior(distribution, name=name, record=record)


def inverse_gamma_prior(name: str, concentration: float, rate: float) -> ParameterPrior:
    _check_finite(name, concentration=concentration, rate=rate)
    if not (concentration > 0 and rate > 0):
        raise PriorConfigError(
            f"Prior '{name}': concentration and rate must be positive, "
            f"got ({concentration}, {rate})"
        )
    record = {
        "name": name,
        "family": INVERSE_GAMMA,
        "concentration": float(concentration),
        "rate": float(rate),
    }
    distribution = dist.InverseGamma(float(concentration), float(rate))
    return ParameterPrior(distribution, name=name, record=record)


def parameter_prior(parameter: Parameter) -> ParameterPrior:
    lower, upper = parameter.range
    return truncated_normal_prior(
        parameter.name, parameter.loc, parameter.scale, lower, upper
    )


def noise_prior(noise: NoisePrior) -> ParameterPrior:
    return inverse_gamma_prior(noise.name, noise.concentration, noise.rate)


def build_priors(
    experiment_config: ExperimentConfig, include_noise: bool = True
) -> PriorSet:
    """Build and validate the experiment's priors.

    Raises:
        PriorConfigError: If any prior is misconfigured or names collide.
    """
    structural = [parameter_prior(p) for p in experiment_config.parameters]
    noise = noise_prior(experiment_config.noise_prior) if include_noise else None
    priors = PriorSet(structural=structural, noise=noise)
    if len(set(priors.names)) != len(priors.names):
        raise PriorConfigError(f"Duplicate prior names: {priors.names}")
    return priors


def prior_to_record(prior: ParameterPrior) -> Dict[str, Any]:
    return dict(prior.record)


def prior_from_record(record: Dict[str, Any]) -> ParameterPrior:
    family = record.get("family")
    if family == TRUNCATED_NORMAL:
        return truncated_normal_prior(
            record["name"],
            record["loc"],
            record["scale"],
            record["lower"],
            record["upper"],
        )
    if family == INVERSE_GAMMA:
        return inverse_gamma_prior(
            record["name"], record["concentration"], record["rate"]
        )
    raise PriorConfigError(f"Unknown prior family: {family!r}")


def initial_position(priors: PriorSet) -> jnp.ndarray:
    """Prior means mapped to unconstrained space."""
    return jnp.array(
        [p.inverse(p.distribution.mean) for p in priors.all], dtype=jnp.float64
    )


def constrain(priors: PriorSet, positions) -> Dict[str, np.ndarray]:
    """Map unconstrained draws of shape (..., n_params) to named constrained draws."""
    positions = jnp.asarray(positions)
    return {
        p.name: np.asarray(p.forward(positions[..., i]))
        for i, p in enumerate(priors.all)
    }


def gaussian_log_likelihood(ys, data, sigma):
    """Independent Gaussian likelihood of `data` (n_states, n_obs) around `ys.T`."""
    return jnp.sum(dist.Normal(ys.T, sigma).log_prob(data))


def make_log_posterior(
    problem: ODEProblem,
    times,
    data,
    priors: PriorSet,
    solver_config: Optional[SolverConfig] = None,
    noise_std: Optional[float] = None,
) -> Callable[[jax.Array], jax.Array]:
    """Log posterior over a flat unconstrained vector ordered as `priors.all`.

    When the prior set has no noise prior the likelihood uses the fixed
    `noise_std`. A failed ODE solve gives a log density of -inf.
    """
    if priors.noise is None and noise_std is None:
        raise ValueError("Either a noise prior or a fixed noise_std is required")

    times = jnp.asarray(times, dtype=jnp.float64)
    data = jnp.asarray(data, dtype=jnp.float64)
    n_struct = len(priors.structural)
    all_priors = priors.all

    def log_posterior(position: jax.Array) -> jax.Array:
        values = []
        lp = 0.0
        for i, prior in enumerate(all_priors):
            x = prior.forward(position[i])
            lp = lp + prior.log_prob(x) + prior.log_abs_det_jacobian(position[i])
            values.append(x)

        params = jnp.stack(values[:n_struct])
        sigma = jnp.sqrt(values[n_struct]) if priors.noise is not None else noise_std

        ys, ok = solve_at(problem, params, times, solver_config)
        lp = lp + gaussian_log_likelihood(ys, data, sigma)
        return jnp.where(ok & jnp.isfinite(lp), lp, -jnp.inf)

    return log_posterior
