"""Sequential benchmark orchestration.

Data is generated once and shared read-only by every back-end. Back-ends run
one after another; any exception from a back-end is logged and recorded as a
failed result so the remaining back-ends still run and report.
"""

import logging
import os
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Type

import jax
import matplotlib.pyplot as plt

from fhncalib.analysis import format_report
from fhncalib.config_schema import ExperimentConfig, SamplerConfig
from fhncalib.datagen import SyntheticDataset, dataset_from_config
from fhncalib.datahandler import InferenceResult, save_dataset
from fhncalib.model import ODEProblem, fitzhugh_nagumo_problem
from fhncalib.plotting import (
    plot_data_and_trajectories,
    plot_posterior_chains_with_priors,
    plot_timings,
)
from fhncalib.priors import PriorSet, build_priors
from fhncalib.runners import EXCLUDED, RUNNERS, BaseRunner
from fhncalib.utils import get_library_versions

logger = logging.getLogger(__name__)


@dataclass
class Experiment:
    """Everything one comparison run needs and produces."""

    config: ExperimentConfig
    problem: ODEProblem
    dataset: SyntheticDataset
    priors: PriorSet
    results: List[InferenceResult] = field(default_factory=list)

    @property
    def true_values(self) -> Dict[str, float]:
        return dict(zip(self.config.parameter_names, self.dataset.true_params))

    def report(self) -> str:
        notes = {r.backend: EXCLUDED[r.backend] for r in self.results if r.backend in EXCLUDED}
        return format_report(self.results, self.true_values, notes=notes)


def prepare(experiment_config: ExperimentConfig, data_seed: Optional[int] = None) -> Experiment:
    """Build the problem, generate the dataset and validate the priors."""
    problem = fitzhugh_nagumo_problem(experiment_config)
    priors = build_priors(experiment_config)
    dataset = dataset_from_config(experiment_config, problem, seed=data_seed)
    logger.info(
        "Generated dataset of shape %s at %d observation times (sigma=%.2f)",
        dataset.shape,
        len(dataset.times),
        dataset.sigma,
    )
    return Experiment(
        config=experiment_config, problem=problem, dataset=dataset, priors=priors
    )


def run_backend(
    experiment: Experiment,
    backend: str,
    sampler_config: SamplerConfig,
    runners: Mapping[str, Type[BaseRunner]] = RUNNERS,
    output_dir: Optional[str] = None,
) -> InferenceResult:
    """Run a single back-end; failures become a failed InferenceResult."""
    start = time.perf_counter()
    try:
        runner = runners[backend](
            experiment.problem,
            experiment.dataset.times,
            experiment.dataset.data,
            experiment.priors,
            sampler_config=sampler_config,
            solver_config=experiment.config.solver,
        )
        return runner.run(output_dir=output_dir)
    except Exception as e:
        logger.exception("Back-end %s failed", backend)
        return InferenceResult.failed(
            backend,
            f"{type(e).__name__}: {e}",
            elapsed=time.perf_counter() - start,
        )


def run_experiment(
    experiment: Experiment,
    backends: Optional[Sequence[str]] = None,
    sampler_overrides: Optional[Dict[str, object]] = None,
    runners: Mapping[str, Type[BaseRunner]] = RUNNERS,
    output_dir: Optional[str] = None,
) -> Experiment:
    """Run each back-end in turn on the shared dataset.

    Args:
        experiment: Prepared experiment.
        backends: Back-end names; defaults to `config.backends`.
        sampler_overrides: SamplerConfig fields applied to every back-end
            (e.g. from the CLI).
        runners: Name -> runner class registry.
        output_dir: If given, per-back-end chains and settings are saved there.
    """
    backends = list(backends or experiment.config.backends)
    unknown = [b for b in backends if b not in runners]
    if unknown:
        raise KeyError(f"Unknown backend(s) {unknown}; choose from {sorted(runners)}")

    logger.info("Library versions: %s", get_library_versions())
    logger.info("JAX devices: %s", jax.devices())

    for backend in backends:
        if backend in EXCLUDED:
            logger.warning("Running excluded back-end %s: %s", backend, EXCLUDED[backend])
        sampler_config = experiment.config.sampler_config(backend)
        if sampler_overrides:
            sampler_config = replace(sampler_config, **sampler_overrides)
        experiment.results.append(
            run_backend(experiment, backend, sampler_config, runners, output_dir)
        )
    return experiment


def save_report(experiment: Experiment, output_dir: str) -> Dict[str, str]:
    """Write the text report, the dataset and the plots to `output_dir`."""
    os.makedirs(output_dir, exist_ok=True)
    paths = {}

    paths["report"] = os.path.join(output_dir, "report.txt")
    with open(paths["report"], "w") as f:
        f.write(experiment.report())

    paths["dataset"] = save_dataset(
        experiment.dataset, os.path.join(output_dir, "dataset.json")
    )

    fig, _ = plot_data_and_trajectories(
        experiment.problem,
        experiment.dataset,
        results=experiment.results,
        param_names=experiment.config.parameter_names,
    )
    paths["trajectories"] = os.path.join(output_dir, "trajectories.png")
    fig.savefig(paths["trajectories"])
    plt.close(fig)

    fig, _ = plot_timings(experiment.results)
    paths["timings"] = os.path.join(output_dir, "timings.png")
    fig.savefig(paths["timings"])
    plt.close(fig)

    for result in experiment.results:
        if not result.ok:
            continue
        axes = plot_posterior_chains_with_priors(
            result, experiment.priors, true_values=experiment.true_values
        )
        path = os.path.join(output_dir, f"trace_{result.backend}.png")
        axes[0, 0].figure.savefig(path)
        plt.close(axes[0, 0].figure)
        paths[f"trace_{result.backend}"] = path

    logger.info("Report and plots saved to %s", output_dir)
    return paths
