from typing import Dict, Optional, Type

from fhncalib.config_schema import SamplerConfig, SolverConfig
from fhncalib.datahandler import InferenceResult
from fhncalib.model import ODEProblem
from fhncalib.priors import PriorSet
from fhncalib.runners.base import BackendError, BaseRunner
from fhncalib.runners.blackjax import BlackjaxRunner
from fhncalib.runners.hmc import EXCLUSION_NOTE, StaticHMCRunner
from fhncalib.runners.mici import MiciRunner
from fhncalib.runners.numpyro import NumpyroRunner

RUNNERS: Dict[str, Type[BaseRunner]] = {
    BlackjaxRunner.backend_name: BlackjaxRunner,
    MiciRunner.backend_name: MiciRunner,
    NumpyroRunner.backend_name: NumpyroRunner,
    StaticHMCRunner.backend_name: StaticHMCRunner,
}

# Back-ends kept out of the default comparison, with the reason reported alongside.
EXCLUDED: Dict[str, str] = {StaticHMCRunner.backend_name: EXCLUSION_NOTE}


def get_runner(name: str) -> Type[BaseRunner]:
    try:
        return RUNNERS[name]
    except KeyError:
        raise KeyError(
            f"Unknown backend {name!r}; choose from {sorted(RUNNERS)}"
        ) from None


def run_inference(
    backend: str,
    problem: ODEProblem,
    times,
    data,
    priors: PriorSet,
    sampler_config: Optional[SamplerConfig] = None,
    solver_config: Optional[SolverConfig] = None,
) -> InferenceResult:
    """Run one back-end by name and return its posterior draws and elapsed time."""
    runner_cls = get_runner(backend)
    runner = runner_cls(
        problem,
        times,
        data,
        priors,
        sampler_config=sampler_config,
        solver_config=solver_config,
    )
    return runner.run_inference()


__all__ = [
    "BackendError",
    "BaseRunner",
    "BlackjaxRunner",
    "EXCLUDED",
    "MiciRunner",
    "NumpyroRunner",
    "RUNNERS",
    "StaticHMCRunner",
    "get_runner",
    "run_inference",
]
