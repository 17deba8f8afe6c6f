"""Worker process for the mici back-end.

Usage: python -m fhncalib.runners.mici_worker <payload.json> <posterior.nc>
"""

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict

import mici
import numpy as np
from jax import config

from fhncalib.config_schema import SamplerConfig, SolverConfig
from fhncalib.datahandler import InferenceResult, to_inference_data
from fhncalib.freethreading import process_workers
from fhncalib.logging_utils import setup_logging
from fhncalib.model import ODEProblem
from fhncalib.priors import PriorSet, constrain, initial_position, make_log_posterior
from fhncalib.runners.mici import parse_payload

config.update("jax_enable_x64", True)

logger = logging.getLogger(__name__)


def sample(
    problem: ODEProblem,
    times: np.ndarray,
    data: np.ndarray,
    priors: PriorSet,
    sampler_config: SamplerConfig,
    solver_config: SolverConfig,
) -> InferenceResult:
    log_posterior = make_log_posterior(problem, times, data, priors, solver_config)

    def neg_log_dens(q):
        return -log_posterior(q)

    system = mici.systems.EuclideanMetricSystem(neg_log_dens=neg_log_dens, backend="jax")
    integrator = mici.integrators.LeapfrogIntegrator(system)

    tracer_index_dict = {prior.name: i for i, prior in enumerate(priors.all)}

    rng = np.random.default_rng(sampler_config.seed)
    sampler = mici.samplers.DynamicMultinomialHMC(
        system, integrator, rng, max_tree_depth=sampler_config.max_tree_depth
    )
    adapters = [
        mici.adapters.DualAveragingStepSizeAdapter(sampler_config.target_accept),
        mici.adapters.OnlineCovarianceMetricAdapter(),
    ]

    def trace_func(state):
        trace = {key: state.pos[index] for key, index in tracer_index_dict.items()}
        trace["hamiltonian"] = system.h(state)
        return trace

    init_state = np.asarray(initial_position(priors))

    start = time.perf_counter()
    _, traces, stats = sampler.sample_chains(
        sampler_config.n_warm_up_iter,
        sampler_config.n_main_iter,
        [init_state] * sampler_config.n_chain,
        adapters=adapters,
        trace_funcs=[trace_func],
        display_progress=False,
        **process_workers(sampler_config.n_process),
    )
    elapsed = time.perf_counter() - start

    # traces[name] is (n_chain, n_main_iter) in unconstrained space.
    positions = np.stack([np.asarray(traces[p.name]) for p in priors.all], axis=-1)
    diverging = stats.get("diverging")

    algorithm_parameters: Dict[str, Any] = {
        "sampler_class": sampler.__class__.__name__,
        "max_tree_depth": sampler_config.max_tree_depth,
        "target_accept": sampler_config.target_accept,
        "adapters": [a.__class__.__name__ for a in adapters],
    }
    if "accept_stat" in stats:
        algorithm_parameters["mean_accept_stat"] = float(np.mean(stats["accept_stat"]))

    return InferenceResult(
        backend="mici",
        algorithm=sampler.__class__.__name__,
        samples=constrain(priors, positions),
        elapsed=elapsed,
        diverging=None if diverging is None else np.asarray(diverging, dtype=bool),
        algorithm_parameters=algorithm_parameters,
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run mici on a serialized payload.")
    parser.add_argument("payload", type=str, help="Path to the JSON payload")
    parser.add_argument("output", type=str, help="Path of the NetCDF file to write")
    parser.add_argument("--log_level", type=str, default="WARNING")
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level)

    with open(args.payload, "r") as f:
        payload = json.load(f)
    problem, times, data, priors, sampler_config, solver_config = parse_payload(payload)

    result = sample(problem, times, data, priors, sampler_config, solver_config)

    inference_data = to_inference_data(result)
    inference_data.attrs["algorithm_parameters"] = json.dumps(result.algorithm_parameters)
    inference_data.to_netcdf(args.output)
    logger.info("Wrote %s", args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
