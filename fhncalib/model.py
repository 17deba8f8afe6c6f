"""FitzHugh-Nagumo excitable-system model.

Two states (v, w) and four parameters (a, b, tau_inv, l):

    dv/dt = v - 0.33 v^3 - w + l
    dw/dt = tau_inv (v + a - b w)
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import jax.numpy as jnp
from jax import config

from fhncalib.config_schema import ExperimentConfig

config.update("jax_enable_x64", True)

STATE_NAMES = ("v", "w")


def fitzhugh_nagumo(t, u, p):
    """Vector field in the diffrax `f(t, y, args)` convention."""
    v, w = u[0], u[1]
    a, b, tau_inv, l = p[0], p[1], p[2], p[3]
    dv = v - 0.33 * v**3 - w + l
    dw = tau_inv * (v + a - b * w)
    return jnp.stack([dv, dw])


# Vector fields addressable by name across a process boundary.
VECTOR_FIELDS = {"fitzhugh_nagumo": fitzhugh_nagumo}


def vector_field_name(vector_field: Callable) -> str:
    for name, f in VECTOR_FIELDS.items():
        if f is vector_field:
            return name
    raise KeyError(f"Vector field {vector_field!r} is not registered in VECTOR_FIELDS")


@dataclass(frozen=True)
class ODEProblem:
    """
    An initial value problem.

    Attributes:
        vector_field: Callable `f(t, u, p)` returning du/dt.
        u0: Initial state.
        tspan: Integration interval (t0, t1).
        params: Default parameter vector, used when a solve is given none.
    """

    vector_field: Callable
    u0: Tuple[float, ...]
    tspan: Tuple[float, float]
    params: Optional[Tuple[float, ...]] = None

    @property
    def n_states(self) -> int:
        return len(self.u0)


def fitzhugh_nagumo_problem(experiment_config: ExperimentConfig) -> ODEProblem:
    """Build the reference FHN problem; default parameters are the ground truth."""
    return ODEProblem(
        vector_field=fitzhugh_nagumo,
        u0=tuple(float(x) for x in experiment_config.initial_state),
        tspan=tuple(float(t) for t in experiment_config.tspan),
        params=experiment_config.true_params,
    )
