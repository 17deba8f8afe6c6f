import copy
from dataclasses import replace

import matplotlib
import numpy as np
import pytest

from fhncalib.config_schema import SamplerConfig
from fhncalib.datagen import dataset_from_config
from fhncalib.model import fitzhugh_nagumo_problem
from fhncalib.priors import build_priors
from fhncalib.runners.base import BaseRunner
from fhncalib.solver import IntegrationError
from fhncalib.utils import load_experiment_config

matplotlib.use("Agg")

TRUE_PARAMS = (0.7, 0.8, 0.08, 0.5)


class FakeRunner(BaseRunner):
    """Returns tight draws around the problem's default parameters without sampling."""

    backend_name = "fake"
    algorithm_name = "fixed_draws"

    def _run(self):
        cfg = self.sampler_config
        rng = np.random.default_rng(cfg.seed)
        shape = (cfg.n_chain, cfg.n_main_iter)
        samples = {
            name: value + 0.01 * rng.standard_normal(shape)
            for name, value in zip(self.priors.structural_names, self.problem.params)
        }
        if self.priors.noise is not None:
            samples[self.priors.noise.name] = 0.04 + 0.001 * np.abs(
                rng.standard_normal(shape)
            )
        return {
            "samples": samples,
            "diverging": np.zeros(shape, dtype=bool),
            "algorithm_parameters": {"note": "test double"},
        }


class BrokenRunner(BaseRunner):
    backend_name = "broken"
    algorithm_name = "none"

    def _run(self):
        raise IntegrationError("vector field produced non-finite values")


@pytest.fixture
def experiment_config():
    return copy.deepcopy(load_experiment_config())


@pytest.fixture
def problem(experiment_config):
    return fitzhugh_nagumo_problem(experiment_config)


@pytest.fixture
def priors(experiment_config):
    return build_priors(experiment_config)


@pytest.fixture
def dataset(experiment_config, problem):
    return dataset_from_config(experiment_config, problem)


@pytest.fixture
def small_sampler():
    return SamplerConfig(
        n_warm_up_iter=300,
        n_main_iter=300,
        n_chain=2,
        seed=11,
        target_accept=0.8,
        max_num_doublings=8,
        max_tree_depth=8,
        num_integration_steps=10,
    )


@pytest.fixture
def quick_sampler(small_sampler):
    return replace(small_sampler, n_warm_up_iter=5, n_main_iter=20)
