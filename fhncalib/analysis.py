import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

import arviz
import numpy as np
import pandas as pd

from fhncalib.config_schema import ExperimentConfig, SamplerConfig
from fhncalib.datagen import dataset_from_config
from fhncalib.datahandler import InferenceResult, to_inference_data
from fhncalib.model import fitzhugh_nagumo_problem
from fhncalib.priors import build_priors
from fhncalib.runners import run_inference

logger = logging.getLogger(__name__)

HDI_PROB = 0.94
RHAT_THRESHOLD = 1.01


def summarize(
    result: InferenceResult, true_values: Optional[Dict[str, float]] = None
) -> pd.DataFrame:
    """Per-parameter posterior summary (mean, sd, HDI, ESS, R-hat) plus the true value."""
    summary = arviz.summary(to_inference_data(result), hdi_prob=HDI_PROB)
    if true_values:
        summary["true"] = [true_values.get(name, np.nan) for name in summary.index]
    return summary


def diagnostics(result: InferenceResult) -> Dict[str, float]:
    """
    Convergence diagnostics for one run.

    A run is flagged unreliable if it had any divergent transition or, with
    more than one chain, any R-hat at or above RHAT_THRESHOLD.
    """
    if not result.ok:
        return {
            "n_divergent": np.nan,
            "min_ess_bulk": np.nan,
            "max_r_hat": np.nan,
            "reliable": False,
        }
    inference_data = to_inference_data(result)
    ess = arviz.ess(inference_data, method="bulk")
    min_ess = float(min(float(ess[v].min()) for v in ess.data_vars))

    n_chain = next(iter(result.samples.values())).shape[0]
    max_r_hat = np.nan
    if n_chain > 1:
        r_hat = arviz.rhat(inference_data)
        max_r_hat = float(max(float(r_hat[v].max()) for v in r_hat.data_vars))

    reliable = result.n_divergent == 0 and (
        np.isnan(max_r_hat) or max_r_hat < RHAT_THRESHOLD
    )
    return {
        "n_divergent": result.n_divergent,
        "min_ess_bulk": min_ess,
        "max_r_hat": max_r_hat,
        "reliable": bool(reliable),
    }


def compare(
    results: Sequence[InferenceResult],
    true_values: Optional[Dict[str, float]] = None,
) -> pd.DataFrame:
    """Side-by-side table: one column per back-end, rows for timing, diagnostics and means."""
    columns = {}
    for result in results:
        column = {
            "status": result.status,
            "elapsed_s": result.elapsed,
        }
        column.update(diagnostics(result))
        if result.ok:
            for name, draws in result.samples.items():
                column[f"{name} mean"] = float(np.mean(draws))
                column[f"{name} sd"] = float(np.std(draws))
        columns[result.backend] = column

    table = pd.DataFrame(columns)
    if true_values:
        table["true"] = pd.Series(
            {f"{name} mean": value for name, value in true_values.items()}
        )
    return table


def format_report(
    results: Sequence[InferenceResult],
    true_values: Optional[Dict[str, float]] = None,
    notes: Optional[Dict[str, str]] = None,
) -> str:
    lines = ["=== Back-end comparison ===", compare(results, true_values).to_string(), ""]
    for result in results:
        lines.append(f"--- {result.backend} ({result.algorithm or 'n/a'}) ---")
        if result.ok:
            lines.append(summarize(result, true_values).to_string())
        else:
            lines.append(f"FAILED: {result.error}")
        lines.append("")
    for backend, note in (notes or {}).items():
        lines.append(f"Note [{backend}]: {note}")
    return "\n".join(lines)


def recovers_truth(
    result: InferenceResult, true_values: Dict[str, float], n_sd: float = 3.0
) -> bool:
    """True if every named parameter's posterior mean is within `n_sd` posterior sd of its true value."""
    if not result.ok:
        return False
    for name, value in true_values.items():
        draws = np.asarray(result.samples[name])
        if abs(float(np.mean(draws)) - value) > n_sd * float(np.std(draws)):
            return False
    return True


@dataclass
class CalibrationReport:
    backend: str
    n_trials: int
    n_recovered: int
    n_failed: int
    trials: List[Dict[str, float]] = field(default_factory=list)

    @property
    def coverage(self) -> float:
        return self.n_recovered / self.n_trials if self.n_trials else float("nan")


def calibration_check(
    experiment_config: ExperimentConfig,
    backend: str,
    n_trials: int = 20,
    seed: int = 0,
    sampler_config: Optional[SamplerConfig] = None,
    n_sd: float = 3.0,
) -> CalibrationReport:
    """Repeat data generation + inference with independent seeds.

    Each trial draws fresh observation noise and uses a fresh sampler seed, and
    counts as recovered when every structural parameter's posterior mean lies
    within `n_sd` posterior sd of the truth. A failed run counts as not
    recovered.
    """
    problem = fitzhugh_nagumo_problem(experiment_config)
    priors = build_priors(experiment_config)
    base_sampler = sampler_config or experiment_config.sampler_config(backend)
    true_values = dict(zip(experiment_config.parameter_names, experiment_config.true_params))

    report = CalibrationReport(backend=backend, n_trials=n_trials, n_recovered=0, n_failed=0)
    for trial in range(n_trials):
        dataset = dataset_from_config(experiment_config, problem, seed=seed + trial)
        trial_sampler = replace(base_sampler, seed=base_sampler.seed + 7919 * (trial + 1))
        try:
            result = run_inference(
                backend,
                problem,
                dataset.times,
                dataset.data,
                priors,
                sampler_config=trial_sampler,
                solver_config=experiment_config.solver,
            )
        except Exception as e:
            logger.exception("Calibration trial %d of %s failed", trial, backend)
            result = InferenceResult.failed(backend, f"{type(e).__name__}: {e}")

        recovered = recovers_truth(result, true_values, n_sd=n_sd)
        report.n_recovered += int(recovered)
        report.n_failed += int(not result.ok)
        trial_record = {"trial": trial, "recovered": recovered, "status": result.status}
        if result.ok:
            trial_record.update(
                {name: float(np.mean(result.samples[name])) for name in true_values}
            )
        report.trials.append(trial_record)
        logger.info(
            "Calibration trial %d/%d (%s): recovered=%s", trial + 1, n_trials, backend, recovered
        )

    return report
