import logging
import sys
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import arviz
import numpy as np

from fhncalib.config_schema import SamplerConfig, SolverConfig
from fhncalib.datahandler import (
    InferenceResult,
    save_chains_to_netcdf,
    save_settings,
    setup_output_dir,
    to_inference_data,
)
from fhncalib.model import ODEProblem
from fhncalib.priors import PriorSet
from fhncalib.utils import get_library_versions

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when a back-end cannot produce a posterior (not for poor mixing)."""


class BaseRunner(ABC):
    """
    Common interface of the inference back-ends.

    A runner is given the ODE problem, the observation times, the (read-only)
    dataset, the priors and its sampler settings, and produces an
    `InferenceResult` holding named posterior draws and the elapsed wall-clock
    time. Subclasses only implement `_run`.
    """

    backend_name: str = ""
    algorithm_name: str = ""

    def __init__(
        self,
        problem: ODEProblem,
        times,
        data,
        priors: PriorSet,
        sampler_config: Optional[SamplerConfig] = None,
        solver_config: Optional[SolverConfig] = None,
    ):
        self.problem = problem
        self.times = np.asarray(times, dtype=np.float64)
        self.data = np.asarray(data, dtype=np.float64)
        self.priors = priors
        self.sampler_config = sampler_config or SamplerConfig()
        self.solver_config = solver_config or SolverConfig()

        expected = (problem.n_states, self.times.shape[0])
        if self.data.shape != expected:
            raise ValueError(
                f"Dataset shape {self.data.shape} does not match "
                f"(n_states, n_times) = {expected}"
            )

    @property
    def mcmc_parameters(self) -> Dict[str, Any]:
        return {
            "n_chain": self.sampler_config.n_chain,
            "n_warm_up_iter": self.sampler_config.n_warm_up_iter,
            "n_main_iter": self.sampler_config.n_main_iter,
            "seed": self.sampler_config.seed,
            "target_accept": self.sampler_config.target_accept,
        }

    @abstractmethod
    def _run(self) -> Dict[str, Any]:
        """
        Run the sampler.

        Returns:
            A dictionary containing:
            - samples: Dict of constrained draws (param_name -> [n_chain, n_draw])
            - diverging: Optional[np.ndarray] of divergence flags [n_chain, n_draw]
            - algorithm_parameters: Dict[str, Any]
            - extra_mcmc_params: Optional[Dict[str, Any]]
        """

    def run_inference(self) -> InferenceResult:
        """Run the sampler and time it."""
        logger.info(
            "Running %s (%s): %d chain(s), %d warm-up + %d main iterations",
            self.backend_name,
            self.algorithm_name,
            self.sampler_config.n_chain,
            self.sampler_config.n_warm_up_iter,
            self.sampler_config.n_main_iter,
        )
        start = time.perf_counter()
        output = self._run()
        elapsed = time.perf_counter() - start

        mcmc_parameters = self.mcmc_parameters
        if output.get("extra_mcmc_params"):
            mcmc_parameters.update(output["extra_mcmc_params"])

        result = InferenceResult(
            backend=self.backend_name,
            algorithm=self.algorithm_name,
            samples={k: np.asarray(v) for k, v in output["samples"].items()},
            elapsed=elapsed,
            diverging=output.get("diverging"),
            algorithm_parameters=output.get("algorithm_parameters", {}),
            mcmc_parameters=mcmc_parameters,
        )
        logger.info(
            "%s finished in %.2f s with %d divergent transition(s)",
            self.backend_name,
            elapsed,
            result.n_divergent,
        )
        return result

    def save_results(self, result: InferenceResult, output_dir: str) -> str:
        run_dir = setup_output_dir(output_dir, result)
        logger.info("Saving %s results to %s", result.backend, run_dir)
        save_chains_to_netcdf(result, run_dir)
        save_settings(
            result,
            run_dir,
            library_versions=get_library_versions(),
            cli_command=" ".join(sys.argv),
        )
        return run_dir

    def run(self, output_dir: Optional[str] = None) -> InferenceResult:
        """
        Execute the pipeline: run_inference() -> summary -> optional save_results().
        """
        result = self.run_inference()
        logger.info(
            "%s posterior summary:\n%s",
            self.backend_name,
            arviz.summary(to_inference_data(result)),
        )
        if output_dir:
            self.save_results(result, output_dir)
        return result
