import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import arviz
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class InferenceResult:
    """
    Output of one inference back-end run.

    Attributes:
        backend: Back-end name (registry key).
        algorithm: Sampling algorithm name.
        samples: Constrained draws, parameter name -> array (n_chain, n_draw).
        elapsed: Wall-clock seconds spent in the back-end.
        diverging: Divergent-transition flags, shape (n_chain, n_draw).
        algorithm_parameters: Tuned/static sampler settings worth recording.
        mcmc_parameters: Chain counts, lengths and seed.
        status: "ok" or "failed".
        error: Failure message when status is "failed".
    """

    backend: str
    algorithm: str = ""
    samples: Dict[str, np.ndarray] = field(default_factory=dict)
    elapsed: float = float("nan")
    diverging: Optional[np.ndarray] = None
    algorithm_parameters: Dict[str, Any] = field(default_factory=dict)
    mcmc_parameters: Dict[str, Any] = field(default_factory=dict)
    status: str = "ok"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def n_divergent(self) -> int:
        if self.diverging is None:
            return 0
        return int(np.sum(self.diverging))

    @classmethod
    def failed(cls, backend: str, error: str, elapsed: float = float("nan")):
        return cls(backend=backend, status="failed", error=error, elapsed=elapsed)


def to_inference_data(result: InferenceResult) -> arviz.InferenceData:
    """Convert the posterior draws to ArviZ InferenceData."""
    if not result.samples:
        raise ValueError(f"Back-end '{result.backend}' produced no samples")
    sample_stats = None
    if result.diverging is not None:
        sample_stats = {"diverging": np.asarray(result.diverging, dtype=bool)}
    inference_data = arviz.from_dict(
        posterior={k: np.asarray(v) for k, v in result.samples.items()},
        sample_stats=sample_stats,
    )
    inference_data.attrs["inference_library"] = result.backend
    inference_data.attrs["algorithm"] = result.algorithm
    inference_data.attrs["elapsed"] = float(result.elapsed)
    inference_data.attrs["created_at"] = datetime.now().isoformat()
    return inference_data


def from_inference_data(
    inference_data: arviz.InferenceData, backend: str
) -> InferenceResult:
    """Rebuild an InferenceResult from InferenceData written by `to_inference_data`."""
    posterior = inference_data.posterior
    samples = {name: np.asarray(posterior[name].values) for name in posterior.data_vars}
    diverging = None
    if "sample_stats" in inference_data.groups() and (
        "diverging" in inference_data.sample_stats
    ):
        diverging = np.asarray(inference_data.sample_stats["diverging"].values)
    attrs = dict(inference_data.attrs)
    return InferenceResult(
        backend=backend,
        algorithm=str(attrs.get("algorithm", "")),
        samples=samples,
        elapsed=float(attrs.get("elapsed", float("nan"))),
        diverging=diverging,
    )


def _json_safe(d: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only JSON serializable values, converting arrays and numpy scalars."""
    out = {}
    for k, v in d.items():
        if callable(v):
            continue
        if isinstance(v, tuple):
            v = list(v)
        if isinstance(v, np.ndarray) or hasattr(v, "tolist"):
            v = np.asarray(v).tolist()
        if isinstance(v, dict):
            v = _json_safe(v)
        if isinstance(v, (str, int, float, bool, list, dict, type(None))):
            out[k] = v
    return out


def setup_output_dir(output_dir: str, result: InferenceResult) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    warm = result.mcmc_parameters.get("n_warm_up_iter", "")
    main = result.mcmc_parameters.get("n_main_iter", "")
    run_dir = os.path.join(output_dir, result.backend, f"{timestamp}_W{warm}_N{main}")
    os.makedirs(run_dir, exist_ok=True)
    return run_dir


def save_chains_to_netcdf(result: InferenceResult, run_dir: str) -> str:
    """Save the draws to `posterior.nc` in ArviZ InferenceData format."""
    path = os.path.join(run_dir, "posterior.nc")
    to_inference_data(result).to_netcdf(path)
    logger.info("Saved chains to %s", path)
    return path


def save_settings(
    result: InferenceResult,
    run_dir: str,
    library_versions: Dict[str, str],
    cli_command: str = "",
) -> str:
    settings = {
        "backend": result.backend,
        "algorithm": result.algorithm,
        "algorithm_parameters": _json_safe(result.algorithm_parameters),
        "mcmc_parameters": _json_safe(result.mcmc_parameters),
        "elapsed": result.elapsed,
        "status": result.status,
        "error": result.error,
        "library_versions": library_versions,
        "cli_command": cli_command,
    }
    path = os.path.join(run_dir, "mcmc_settings.json")
    with open(path, "w") as f:
        json.dump(settings, f, indent=2)
    return path


def save_dataset(dataset, path: str) -> str:
    """Write the synthetic dataset as JSON (times, clean, data, sigma, true params)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    record = _json_safe(asdict(dataset))
    with open(path, "w") as f:
        json.dump(record, f, indent=2)
    return path
