"""Adaptive ODE integration with diffrax.

`solve` is the eager entry point: it checks the solver result and raises
`IntegrationError` instead of handing back non-finite states. `solve_at` is
the traceable variant used inside log densities, where a failed solve must
turn into a rejected proposal rather than an exception.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import diffrax as dfx
import jax
import jax.numpy as jnp
import numpy as np
from jax import config

from fhncalib.config_schema import SolverConfig
from fhncalib.model import ODEProblem

config.update("jax_enable_x64", True)


class IntegrationError(RuntimeError):
    """Raised when the integrator fails or produces non-finite states."""


# Explicit Runge-Kutta schemes with an embedded error estimate.
ADAPTIVE_SOLVERS = {
    "Tsit5": dfx.Tsit5,
    "Dopri5": dfx.Dopri5,
    "Dopri8": dfx.Dopri8,
    "Bosh3": dfx.Bosh3,
    "Heun": dfx.Heun,
}


def get_solver(method: str) -> dfx.AbstractSolver:
    try:
        return ADAPTIVE_SOLVERS[method]()
    except KeyError:
        raise ValueError(
            f"Unknown solver {method!r}; choose from {sorted(ADAPTIVE_SOLVERS)}"
        ) from None


def _diffeqsolve(
    problem: ODEProblem,
    params,
    saveat: dfx.SaveAt,
    solver_config: SolverConfig,
) -> dfx.Solution:
    t0, t1 = problem.tspan
    return dfx.diffeqsolve(
        dfx.ODETerm(problem.vector_field),
        get_solver(solver_config.method),
        t0=t0,
        t1=t1,
        dt0=None,
        y0=jnp.asarray(problem.u0, dtype=jnp.float64),
        args=params,
        saveat=saveat,
        stepsize_controller=dfx.PIDController(
            rtol=solver_config.rtol, atol=solver_config.atol
        ),
        max_steps=solver_config.max_steps,
        throw=False,
    )


def _resolve_params(problem: ODEProblem, params):
    if params is None:
        if problem.params is None:
            raise ValueError("No parameter vector given and the problem has no default")
        params = problem.params
    return jnp.asarray(params, dtype=jnp.float64)


@dataclass(frozen=True)
class Trajectory:
    """Dense solution of an ODEProblem, queryable anywhere in its time span."""

    solution: dfx.Solution
    tspan: Tuple[float, float]

    def evaluate(self, t: Union[float, Sequence[float], np.ndarray]) -> np.ndarray:
        """
        State(s) at time(s) `t`.

        Returns:
            Array of shape (n_states,) for a scalar time or (n_states, len(t)) for
            a sequence of times, matching the column-per-observation layout of
            the synthetic dataset.
        """
        ts = np.asarray(t, dtype=np.float64)
        t0, t1 = self.tspan
        if np.any(ts < t0) or np.any(ts > t1):
            raise ValueError(f"Requested time outside the solved span {self.tspan}")
        if ts.ndim == 0:
            return np.asarray(self.solution.evaluate(float(ts)))
        states = jax.vmap(self.solution.evaluate)(jnp.asarray(ts))
        return np.asarray(states).T

    __call__ = evaluate


def solve(
    problem: ODEProblem,
    params=None,
    ts: Optional[Sequence[float]] = None,
    solver_config: Optional[SolverConfig] = None,
) -> Union[Trajectory, np.ndarray]:
    """Integrate `problem` with an adaptive solver and a PID step-size controller.

    Args:
        problem: The initial value problem.
        params: Parameter vector; defaults to `problem.params`.
        ts: Optional output times. When omitted a dense `Trajectory` is returned.
        solver_config: Integrator tolerances.

    Returns:
        A `Trajectory`, or an array of states with shape (len(ts), n_states).

    Raises:
        IntegrationError: If the solver does not finish successfully or any saved
            state is non-finite.
    """
    solver_config = solver_config or SolverConfig()
    p = _resolve_params(problem, params)
    if ts is None:
        saveat = dfx.SaveAt(t1=True, dense=True)
    else:
        saveat = dfx.SaveAt(ts=jnp.asarray(ts, dtype=jnp.float64))

    sol = _diffeqsolve(problem, p, saveat, solver_config)

    if not bool(sol.result == dfx.RESULTS.successful):
        raise IntegrationError(
            f"Integration failed for params={np.asarray(p).tolist()}: "
            f"{sol.result}"
        )
    ys = np.asarray(sol.ys)
    if not np.all(np.isfinite(ys)):
        raise IntegrationError(
            f"Integration produced non-finite states for params={np.asarray(p).tolist()}"
        )

    if ts is None:
        return Trajectory(solution=sol, tspan=problem.tspan)
    return ys


def solve_at(
    problem: ODEProblem,
    params,
    ts,
    solver_config: Optional[SolverConfig] = None,
) -> Tuple[jax.Array, jax.Array]:
    """Traceable solve at fixed output times.

    Returns:
        (ys, ok): states of shape (len(ts), n_states) with non-finite entries
        zeroed, and a boolean flag that is False when the solve failed.
    """
    solver_config = solver_config or SolverConfig()
    sol = _diffeqsolve(problem, params, dfx.SaveAt(ts=ts), solver_config)
    ys = sol.ys
    ok = (sol.result == dfx.RESULTS.successful) & jnp.all(jnp.isfinite(ys))
    return jnp.where(ok, ys, 0.0), ok
