import json
import os

import arviz
import numpy as np
import pytest

from fhncalib.datahandler import (
    InferenceResult,
    from_inference_data,
    save_chains_to_netcdf,
    save_dataset,
    save_settings,
    setup_output_dir,
    to_inference_data,
)


@pytest.fixture
def result():
    rng = np.random.default_rng(0)
    diverging = np.zeros((2, 50), dtype=bool)
    diverging[1, 7] = True
    return InferenceResult(
        backend="blackjax",
        algorithm="nuts",
        samples={"a": rng.normal(0.7, 0.01, (2, 50)), "sigma2": rng.gamma(2.0, 0.02, (2, 50))},
        elapsed=3.25,
        diverging=diverging,
        algorithm_parameters={
            "step_size": np.array([0.1, 0.2]),
            "max_num_doublings": 10,
            "bounds": (0.0, 1.5),
            "fn": len,
        },
        mcmc_parameters={"n_warm_up_iter": 100, "n_main_iter": 50, "n_chain": 2},
    )


def test_failed_result():
    failed = InferenceResult.failed("mici", "BackendError: boom", elapsed=0.5)
    assert not failed.ok
    assert failed.n_divergent == 0
    assert failed.samples == {}
    with pytest.raises(ValueError):
        to_inference_data(failed)


def test_inference_data_attrs(result):
    inference_data = to_inference_data(result)
    assert inference_data.attrs["inference_library"] == "blackjax"
    assert inference_data.attrs["algorithm"] == "nuts"
    assert inference_data.posterior["a"].shape == (2, 50)
    assert int(inference_data.sample_stats["diverging"].sum()) == 1


def test_netcdf_round_trip(result, tmp_path):
    run_dir = setup_output_dir(str(tmp_path), result)
    assert os.path.basename(run_dir).endswith("_W100_N50")
    assert os.path.dirname(run_dir) == str(tmp_path / "blackjax")

    path = save_chains_to_netcdf(result, run_dir)
    loaded = from_inference_data(arviz.from_netcdf(path), "blackjax")

    assert loaded.algorithm == "nuts"
    assert loaded.elapsed == pytest.approx(3.25)
    assert loaded.n_divergent == 1
    np.testing.assert_allclose(loaded.samples["a"], result.samples["a"])
    np.testing.assert_allclose(loaded.samples["sigma2"], result.samples["sigma2"])


def test_settings_json(result, tmp_path):
    path = save_settings(result, str(tmp_path), {"jax": "0.4.30"}, cli_command="fhncalib run")
    with open(path) as f:
        settings = json.load(f)

    assert settings["backend"] == "blackjax"
    assert settings["status"] == "ok"
    assert settings["algorithm_parameters"] == {
        "step_size": [0.1, 0.2],
        "max_num_doublings": 10,
        "bounds": [0.0, 1.5],
    }
    assert settings["mcmc_parameters"]["n_chain"] == 2
    assert settings["library_versions"] == {"jax": "0.4.30"}


def test_save_dataset(dataset, tmp_path):
    path = save_dataset(dataset, str(tmp_path / "nested" / "dataset.json"))
    with open(path) as f:
        record = json.load(f)
    assert set(record) == {"times", "clean", "data", "sigma", "true_params"}
    np.testing.assert_allclose(record["data"], dataset.data)
