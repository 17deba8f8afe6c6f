import jax.numpy as jnp
import numpy as np
import pytest
from scipy.integrate import solve_ivp

from fhncalib.config_schema import SolverConfig
from fhncalib.model import ODEProblem
from fhncalib.solver import IntegrationError, Trajectory, solve, solve_at
from tests.conftest import TRUE_PARAMS

# FHN state at t=1 from (1, 1) under the true parameters, fixed-step RK4 with h=1/4000.
REFERENCE_STATE_T1 = np.array([1.126932768451953, 1.075309454456205])

TIGHT = SolverConfig(rtol=1e-10, atol=1e-12, max_steps=100_000)


def _blow_up_problem():
    # du/dt = u^2 from u(0) = 1 diverges at t = 1.
    return ODEProblem(
        vector_field=lambda t, u, p: u**2,
        u0=(1.0, 1.0),
        tspan=(0.0, 10.0),
        params=TRUE_PARAMS,
    )


def test_trajectory_matches_pinned_reference(problem):
    trajectory = solve(problem, solver_config=TIGHT)
    assert isinstance(trajectory, Trajectory)
    np.testing.assert_allclose(trajectory(1.0), REFERENCE_STATE_T1, rtol=1e-6)


def test_default_tolerances_are_close_to_reference(problem):
    trajectory = solve(problem)
    np.testing.assert_allclose(trajectory.evaluate(1.0), REFERENCE_STATE_T1, rtol=1e-4)


def test_agrees_with_scipy_dop853(problem):
    ts = np.linspace(0.5, 10.0, 20)
    ours = solve(problem, ts=ts, solver_config=TIGHT)

    def rhs(t, u):
        v, w = u
        a, b, tau_inv, l = TRUE_PARAMS
        return [v - 0.33 * v**3 - w + l, tau_inv * (v + a - b * w)]

    ref = solve_ivp(
        rhs, (0.0, 10.0), [1.0, 1.0], method="DOP853", t_eval=ts, rtol=1e-12, atol=1e-12
    )
    assert ref.success
    np.testing.assert_allclose(ours, ref.y.T, rtol=1e-6, atol=1e-8)


def test_discrete_output_matches_dense_interpolant(problem):
    ts = np.linspace(1.0, 10.0, 10)
    states = solve(problem, ts=ts)
    trajectory = solve(problem)

    assert states.shape == (10, 2)
    np.testing.assert_allclose(states, trajectory.evaluate(ts).T, rtol=1e-5, atol=1e-7)


def test_explicit_params_override_default(problem):
    other = (0.9, 0.6, 0.2, 0.1)
    a = solve(problem, params=other, ts=[5.0])
    b = solve(problem, ts=[5.0])
    assert not np.allclose(a, b)


def test_evaluate_outside_span_raises(problem):
    trajectory = solve(problem)
    with pytest.raises(ValueError):
        trajectory.evaluate(10.5)
    with pytest.raises(ValueError):
        trajectory.evaluate([-1.0, 2.0])


def test_missing_params_raises():
    problem = ODEProblem(
        vector_field=lambda t, u, p: -u, u0=(1.0,), tspan=(0.0, 1.0), params=None
    )
    with pytest.raises(ValueError):
        solve(problem)


def test_blow_up_raises_integration_error():
    with pytest.raises(IntegrationError):
        solve(_blow_up_problem(), solver_config=SolverConfig(max_steps=256))


def test_solve_at_flags_failure_without_raising():
    ys, ok = solve_at(
        _blow_up_problem(),
        jnp.asarray(TRUE_PARAMS),
        jnp.linspace(1.0, 10.0, 10),
        SolverConfig(max_steps=256),
    )
    assert not bool(ok)
    assert np.all(np.isfinite(np.asarray(ys)))


def test_solve_at_success(problem):
    ts = jnp.linspace(1.0, 10.0, 10)
    ys, ok = solve_at(problem, jnp.asarray(TRUE_PARAMS), ts)
    assert bool(ok)
    np.testing.assert_allclose(np.asarray(ys), solve(problem, ts=np.asarray(ts)))


def test_alternative_solver_method(problem):
    ts = np.linspace(1.0, 10.0, 10)
    tsit5 = solve(problem, ts=ts, solver_config=TIGHT)
    dopri5 = solve(
        problem,
        ts=ts,
        solver_config=SolverConfig(
            method="Dopri5", rtol=1e-10, atol=1e-12, max_steps=100_000
        ),
    )
    np.testing.assert_allclose(dopri5, tsit5, rtol=1e-7, atol=1e-9)


def test_unknown_solver_method(problem):
    with pytest.raises(ValueError, match="Unknown solver"):
        solve(problem, solver_config=SolverConfig(method="Euler"))
