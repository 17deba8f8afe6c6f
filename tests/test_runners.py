import json

import jax
import numpy as np
import pytest
from numpyro import handlers

from fhncalib.config_schema import SamplerConfig
from fhncalib.model import ODEProblem
from fhncalib.priors import build_priors
from fhncalib.runners import (
    EXCLUDED,
    RUNNERS,
    BackendError,
    BlackjaxRunner,
    MiciRunner,
    NumpyroRunner,
    StaticHMCRunner,
    get_runner,
    run_inference,
)
from fhncalib.runners.mici import build_payload, parse_payload
from fhncalib.runners.numpyro import build_ode_model
from tests.conftest import TRUE_PARAMS, FakeRunner


def _payload(problem, dataset, priors, small_sampler, experiment_config):
    return build_payload(
        problem,
        dataset.times,
        dataset.data,
        priors,
        small_sampler,
        experiment_config.solver,
    )


def test_registry():
    assert set(RUNNERS) == {"blackjax", "mici", "numpyro", "hmc"}
    assert get_runner("numpyro") is NumpyroRunner
    assert "hmc" in EXCLUDED
    assert EXCLUDED["hmc"]


def test_unknown_backend():
    with pytest.raises(KeyError, match="Unknown backend"):
        get_runner("stan")


def test_runner_rejects_mismatched_data(problem, dataset, priors):
    with pytest.raises(ValueError):
        BlackjaxRunner(problem, dataset.times, dataset.data.T, priors)
    with pytest.raises(ValueError):
        BlackjaxRunner(problem, dataset.times[:-1], dataset.data, priors)


def test_fake_runner_result(problem, dataset, priors, quick_sampler):
    result = FakeRunner(
        problem, dataset.times, dataset.data, priors, sampler_config=quick_sampler
    ).run_inference()
    assert result.ok
    assert result.backend == "fake"
    assert result.elapsed >= 0
    assert set(result.samples) == set(priors.names)
    assert result.samples["a"].shape == (2, 20)
    assert result.mcmc_parameters["n_main_iter"] == 20


def test_payload_is_json_serializable(problem, dataset, priors, small_sampler, experiment_config):
    payload = _payload(problem, dataset, priors, small_sampler, experiment_config)
    decoded = json.loads(json.dumps(payload))
    assert decoded["model"] == "fitzhugh_nagumo"
    assert decoded["data_shape"] == [2, 10]
    assert decoded["parameter_names"] == ["a", "b", "tau_inv", "l"]


def test_payload_round_trip(problem, dataset, priors, small_sampler, experiment_config):
    payload = json.loads(
        json.dumps(_payload(problem, dataset, priors, small_sampler, experiment_config))
    )
    parsed_problem, times, data, parsed_priors, sampler, solver = parse_payload(payload)

    assert parsed_problem.vector_field is problem.vector_field
    assert parsed_problem.u0 == problem.u0
    assert parsed_problem.tspan == problem.tspan
    np.testing.assert_array_equal(times, dataset.times)
    np.testing.assert_array_equal(data, dataset.data)
    assert parsed_priors.names == priors.names
    assert [p.record for p in parsed_priors.all] == [p.record for p in priors.all]
    assert sampler == small_sampler
    assert solver == experiment_config.solver


@pytest.mark.parametrize(
    "mutate",
    [
        lambda p: p.pop("priors"),
        lambda p: p.update(schema_version=99),
        lambda p: p.update(model="lorenz"),
        lambda p: p.update(data_shape=[10, 2]),
        lambda p: p.update(data=p["data"][:-1]),
    ],
)
def test_bad_payload(mutate, problem, dataset, priors, small_sampler, experiment_config):
    payload = _payload(problem, dataset, priors, small_sampler, experiment_config)
    mutate(payload)
    with pytest.raises(BackendError):
        parse_payload(payload)


def test_payload_needs_registered_vector_field(dataset, priors, small_sampler, experiment_config):
    problem = ODEProblem(vector_field=lambda t, u, p: u, u0=(1.0, 1.0), tspan=(0.0, 10.0))
    with pytest.raises(KeyError):
        _payload(problem, dataset, priors, small_sampler, experiment_config)


def test_mici_worker_failure_surfaces_as_backend_error(
    problem, dataset, priors, quick_sampler, tmp_path
):
    failing = tmp_path / "failing_python"
    failing.write_text("#!/bin/sh\necho 'worker exploded' >&2\nexit 3\n")
    failing.chmod(0o755)

    runner = MiciRunner(
        problem,
        dataset.times,
        dataset.data,
        priors,
        sampler_config=quick_sampler,
        python_executable=str(failing),
    )
    with pytest.raises(BackendError, match="worker exploded"):
        runner.run_inference()


def test_numpyro_model_sites(problem, dataset, priors):
    model = build_ode_model(problem, priors)
    seeded = handlers.seed(model, jax.random.PRNGKey(0))
    trace = handlers.trace(seeded).get_trace(dataset.times, dataset.data)

    for name in priors.names:
        assert trace[name]["type"] == "sample"
        assert not trace[name]["is_observed"]
    assert trace["obs"]["is_observed"]
    assert trace["obs"]["value"].shape == (2, 10)


def test_numpyro_model_requires_noise(problem, experiment_config):
    priors = build_priors(experiment_config, include_noise=False)
    with pytest.raises(ValueError):
        build_ode_model(problem, priors)


def _check_result(result, priors, sampler):
    assert result.ok
    assert set(result.samples) == set(priors.names)
    for draws in result.samples.values():
        assert draws.shape == (sampler.n_chain, sampler.n_main_iter)
        assert np.all(np.isfinite(draws))
    assert result.elapsed > 0


@pytest.mark.slow
def test_blackjax_recovers_parameters(problem, dataset, priors, small_sampler):
    result = run_inference(
        "blackjax",
        problem,
        dataset.times,
        dataset.data,
        priors,
        sampler_config=small_sampler,
    )
    _check_result(result, priors, small_sampler)
    assert result.diverging.shape == (2, 300)
    assert "step_size" in result.algorithm_parameters
    for name, truth in zip(priors.structural_names, TRUE_PARAMS):
        draws = result.samples[name]
        assert abs(draws.mean() - truth) < 3 * draws.std() + 1e-3


@pytest.mark.slow
def test_numpyro_runs(problem, dataset, priors, small_sampler):
    result = NumpyroRunner(
        problem, dataset.times, dataset.data, priors, sampler_config=small_sampler
    ).run_inference()
    _check_result(result, priors, small_sampler)
    assert np.all(result.samples["sigma2"] > 0)


@pytest.mark.slow
def test_static_hmc_runs(problem, dataset, priors, quick_sampler):
    result = StaticHMCRunner(
        problem, dataset.times, dataset.data, priors, sampler_config=quick_sampler
    ).run_inference()
    _check_result(result, priors, quick_sampler)
    assert result.algorithm_parameters["num_integration_steps"] == 10


@pytest.mark.slow
def test_mici_runs_out_of_process(problem, dataset, priors):
    sampler = SamplerConfig(
        n_warm_up_iter=20, n_main_iter=20, n_chain=1, seed=3, max_tree_depth=6
    )
    result = MiciRunner(
        problem, dataset.times, dataset.data, priors, sampler_config=sampler
    ).run_inference()
    _check_result(result, priors, sampler)
    assert result.mcmc_parameters["n_process"] == 1
    assert result.algorithm_parameters["sampler_class"] == "DynamicMultinomialHMC"
