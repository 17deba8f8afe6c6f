import numpy as np
import pytest

from fhncalib.model import (
    ODEProblem,
    fitzhugh_nagumo,
    fitzhugh_nagumo_problem,
    vector_field_name,
)
from tests.conftest import TRUE_PARAMS


def test_vector_field_at_reference_point():
    du = np.asarray(fitzhugh_nagumo(0.0, np.array([1.0, 1.0]), np.array(TRUE_PARAMS)))

    # dv = 1 - 0.33 - 1 + 0.5, dw = 0.08 * (1 + 0.7 - 0.8)
    assert du.shape == (2,)
    assert du[0] == pytest.approx(0.17, abs=1e-9)
    assert du[1] == pytest.approx(0.072, abs=1e-9)


def test_vector_field_is_time_independent():
    u = np.array([-0.3, 1.7])
    p = np.array(TRUE_PARAMS)
    np.testing.assert_allclose(
        np.asarray(fitzhugh_nagumo(0.0, u, p)), np.asarray(fitzhugh_nagumo(7.5, u, p))
    )


def test_forcing_only_enters_dv():
    u = np.array([0.2, -0.4])
    base = np.asarray(fitzhugh_nagumo(0.0, u, np.array([0.7, 0.8, 0.08, 0.0])))
    forced = np.asarray(fitzhugh_nagumo(0.0, u, np.array([0.7, 0.8, 0.08, 0.5])))
    assert forced[0] - base[0] == pytest.approx(0.5)
    assert forced[1] == pytest.approx(base[1])


def test_problem_from_config(experiment_config):
    problem = fitzhugh_nagumo_problem(experiment_config)
    assert problem.u0 == (1.0, 1.0)
    assert problem.tspan == (0.0, 10.0)
    assert problem.params == TRUE_PARAMS
    assert problem.n_states == 2
    assert vector_field_name(problem.vector_field) == "fitzhugh_nagumo"


def test_unregistered_vector_field_has_no_name():
    problem = ODEProblem(vector_field=lambda t, u, p: u, u0=(1.0,), tspan=(0.0, 1.0))
    with pytest.raises(KeyError):
        vector_field_name(problem.vector_field)
